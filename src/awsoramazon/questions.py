import base64
import binascii
import hashlib
import json
import logging
import time
from typing import Dict, List, Optional, Tuple

from .config import settings
from .models import Question, QuestionInput
from .store import ConditionFailed, KeyValueStore

logger = logging.getLogger(__name__)

QUESTION_PK = "QUESTION"
QUESTION_PREFIX = "QUESTION#"


class QuestionExists(Exception):
    pass


class QuestionNotFound(Exception):
    pass


class EtagMismatch(Exception):
    pass


def now_ms() -> int:
    return int(time.time() * 1000)


def hash_etag(question_id: str, updated_at: int, text: str, answer: str) -> str:
    payload = f"{question_id}:{updated_at}:{text}:{answer}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def encode_cursor(key: Optional[Dict[str, str]]) -> Optional[str]:
    if not key:
        return None
    return base64.b64encode(json.dumps(key).encode("utf-8")).decode("ascii")


def decode_cursor(cursor: Optional[str]) -> Optional[Dict[str, str]]:
    """Unreadable cursors restart the listing from the first page."""
    if not cursor:
        return None
    try:
        key = json.loads(base64.b64decode(cursor, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(key, dict) or not isinstance(key.get("SK"), str):
        return None
    return key


# --- Service Layer: Question Store Access ---
class QuestionRepository:
    """Reads and writes questions in the `QUESTION` partition."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @staticmethod
    def sort_key(question_id: str) -> str:
        return f"{QUESTION_PREFIX}{question_id}"

    def _build(self, question_id: str, data: QuestionInput) -> Question:
        updated_at = now_ms()
        return Question(
            id=question_id,
            slug=data.slug or question_id,
            text=data.text,
            answer=data.answer,
            namespace=data.namespace,
            updated_at=updated_at,
            etag=hash_etag(question_id, updated_at, data.text, data.answer),
        )

    def create(self, data: QuestionInput) -> Question:
        question = self._build(data.id, data)
        try:
            self.store.put(
                QUESTION_PK,
                self.sort_key(question.id),
                question.to_item(),
                if_not_exists=True,
            )
        except ConditionFailed:
            raise QuestionExists(question.id)
        logger.info(f"Created question {question.id}")
        return question

    def get(self, question_id: str) -> Optional[Question]:
        item = self.store.get(QUESTION_PK, self.sort_key(question_id))
        return Question.model_validate(item) if item else None

    def find(self, id_or_slug: str) -> Optional[Question]:
        """Looks up by id first, then by the first question whose slug or
        namespace equals `id_or_slug`."""
        question = self.get(id_or_slug)
        if question:
            return question

        start_key = None
        while True:
            result = self.store.query(
                QUESTION_PK,
                QUESTION_PREFIX,
                settings.QUESTION_BANK_LIMIT,
                start_key,
            )
            for item in result.items:
                if id_or_slug in (item.get("slug"), item.get("namespace")):
                    return Question.model_validate(item)
            if not result.last_key:
                return None
            start_key = result.last_key

    def list(
        self,
        limit: int,
        cursor: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Tuple[List[Question], Optional[str]]:
        # The namespace filter applies after the page is read, so filtered
        # pages may hold fewer than `limit` items.
        result = self.store.query(
            QUESTION_PK, QUESTION_PREFIX, limit, decode_cursor(cursor)
        )
        questions = [Question.model_validate(item) for item in result.items]
        if namespace:
            questions = [q for q in questions if q.namespace == namespace]
        return questions, encode_cursor(result.last_key)

    def update(self, id_or_slug: str, data: QuestionInput, if_match: str) -> Question:
        existing = self.find(id_or_slug)
        if not existing:
            raise QuestionNotFound(id_or_slug)
        if existing.etag and existing.etag != if_match:
            raise EtagMismatch(existing.id)

        question = self._build(existing.id, data)
        self.store.put(QUESTION_PK, self.sort_key(question.id), question.to_item())
        logger.info(f"Updated question {question.id} (etag {question.etag[:12]})")
        return question

    def delete(self, id_or_slug: str) -> Question:
        """Marks the question deleted; the store expires it after the TTL."""
        existing = self.find(id_or_slug)
        if not existing:
            raise QuestionNotFound(id_or_slug)

        ttl = int(time.time()) + settings.DELETE_TTL_SECONDS
        marked = existing.model_copy(update={"deleted": True, "ttl": ttl})
        self.store.put(
            QUESTION_PK,
            self.sort_key(existing.id),
            marked.to_item(),
            expire_at=ttl,
        )
        logger.info(f"Marked question {existing.id} for expiry at {ttl}")
        return marked

    def load_bank(self) -> List[Question]:
        """Returns the question bank in sort key order, capped at
        QUESTION_BANK_LIMIT items."""
        result = self.store.query(
            QUESTION_PK, QUESTION_PREFIX, settings.QUESTION_BANK_LIMIT
        )
        now = int(time.time())
        return [
            Question.model_validate(item)
            for item in result.items
            if not item.get("ttl") or item["ttl"] > now
        ]
