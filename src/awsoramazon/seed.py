import glob
import logging
import os
from typing import Any, Dict, List

import pandas as pd

from .config import settings
from .errors import BadRequest
from .models import validate_question_payload
from .questions import QuestionExists, QuestionRepository
from .store import create_store

logger = logging.getLogger(__name__)

DEFAULT_QUESTIONS: List[Dict[str, str]] = [
    {"id": "q1", "text": "Amazon EC2 provides virtual servers.", "answer": "aws"},
    {"id": "q2", "text": "Kindle Unlimited lets you read books for a flat fee.", "answer": "amazon"},
    {"id": "q3", "text": "Amazon S3 is an object storage service.", "answer": "aws"},
    {"id": "q4", "text": "Prime Video streams movies and TV shows.", "answer": "amazon"},
    {"id": "q5", "text": "IAM roles let you delegate access permissions.", "answer": "aws"},
    {"id": "q6", "text": "Amazon Fresh delivers groceries to your door.", "answer": "amazon"},
    {"id": "q7", "text": "CloudWatch collects metrics and logs.", "answer": "aws"},
    {"id": "q8", "text": "Fargate runs containers without managing servers.", "answer": "aws"},
    {"id": "q9", "text": "Fire TV Stick plays video on your television.", "answer": "amazon"},
    {"id": "q10", "text": "Route 53 is a managed DNS service.", "answer": "aws"},
]


# --- Service Layer: Question Seeding ---
class QuestionSeeder:
    """Loads question rows from CSV files and writes them to the store."""

    REQUIRED_COLUMNS = ("id", "text", "answer")

    def __init__(self, repository: QuestionRepository, directory: str):
        self.repository = repository
        self.directory = directory

    def load_rows(self) -> List[Dict[str, Any]]:
        if not os.path.isdir(self.directory):
            logger.warning(f"Seed directory {self.directory} not found. Using built-in questions.")
            return list(DEFAULT_QUESTIONS)

        rows: List[Dict[str, Any]] = []
        for file_path in sorted(glob.glob(os.path.join(self.directory, "*.csv"))):
            file_name = os.path.basename(file_path)
            df = pd.read_csv(file_path, encoding="utf-8", dtype=str)
            missing = [c for c in self.REQUIRED_COLUMNS if c not in df.columns]
            if missing:
                logger.error(f"Skipping {file_name}: Missing columns {missing}.")
                continue
            records = df.where(pd.notna(df), None).to_dict("records")
            rows.extend(records)
            logger.info(f"Loaded {len(records)} questions from {file_name}")

        if not rows:
            logger.warning("No CSV files found. Using built-in questions.")
            return list(DEFAULT_QUESTIONS)
        return rows

    def run(self) -> int:
        """Creates every loaded question that does not exist yet; returns the
        number created."""
        created = 0
        for row in self.load_rows():
            try:
                self.repository.create(validate_question_payload(row))
            except QuestionExists:
                logger.info(f"Question {row['id']} already exists, skipping")
                continue
            except BadRequest as e:
                logger.error(f"Skipping invalid row {row.get('id')}: {e.message}")
                continue
            created += 1
        logger.info(f"Seeded {created} questions")
        return created


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    QuestionSeeder(QuestionRepository(create_store(settings)), settings.SEED_DIR).run()
