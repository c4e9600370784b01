import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, TypeVar

from .config import settings
from .models import CHOICES, AnswerEntry, AnswerRecord, GradeResult, Question

T = TypeVar("T")

MASK32 = 0xFFFFFFFF


class NoQuestions(Exception):
    """The question bank is empty."""


class GradingError(ValueError):
    pass


# --- Seeded RNG ---
def _imul(a: int, b: int) -> int:
    return (a * b) & MASK32


class SeededRandom:
    """Small-state 32-bit generator seeded from a string.

    All arithmetic wraps at 32 bits, so a quiz id replays to the same
    sequence wherever it is graded.
    """

    def __init__(self, seed: str):
        # JS string semantics: length and char codes are UTF-16 code units.
        units = seed.encode("utf-16-le")
        codes = [
            int.from_bytes(units[i : i + 2], "little") for i in range(0, len(units), 2)
        ]
        state = (1779033703 ^ len(codes)) & MASK32
        for code in codes:
            state = _imul(state ^ code, 3432918353)
            state = ((state << 13) | (state >> 19)) & MASK32
        self.state = state

    def next_uint32(self) -> int:
        s = self.state
        s = _imul(s ^ (s >> 16), 2246822507)
        s = _imul(s ^ (s >> 13), 3266489909)
        s ^= s >> 16
        self.state = s
        return s

    def random(self) -> float:
        return self.next_uint32() / 0x100000000


def shuffle(items: Sequence[T], seed: str) -> List[T]:
    """Fisher-Yates shuffle driven by SeededRandom; `items` is not modified."""
    rng = SeededRandom(seed)
    arr = list(items)
    for i in range(len(arr) - 1, 0, -1):
        j = int(rng.random() * (i + 1))
        arr[i], arr[j] = arr[j], arr[i]
    return arr


# --- Quiz Assembly ---
@dataclass
class Quiz:
    quiz_id: str
    questions: List[Question]


def clamp(value: Any, low: int, high: int, fallback: int) -> int:
    """Reads `value` the way a query string number is read: blank means 0,
    fractions truncate after clamping, and anything unparseable or NaN gives
    `fallback`."""
    if isinstance(value, str) and not value.strip():
        number = 0.0
    else:
        try:
            number = float(value)
        except (TypeError, ValueError, OverflowError):
            return fallback
    if math.isnan(number):
        return fallback
    return int(min(max(number, low), high))


def new_seed() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


# --- Strategy Pattern: Quiz Generators ---
class QuizGenerator(ABC):
    """Abstract Base Class for the ways a quiz is drawn from the bank."""

    @abstractmethod
    def order(self, bank: List[Question], seed: str) -> List[Question]:
        pass

    def assemble(
        self, bank: List[Question], seed: Optional[str] = None, count: Any = None
    ) -> Quiz:
        if not bank:
            raise NoQuestions()
        size = clamp(count, 1, settings.MAX_QUIZ_SIZE, settings.DEFAULT_QUIZ_SIZE)
        quiz_id = seed or new_seed()
        return Quiz(quiz_id=quiz_id, questions=self.order(bank, quiz_id)[:size])


class SeededQuizGenerator(QuizGenerator):
    """Standard mode: bank shuffled by the quiz id."""

    def order(self, bank: List[Question], seed: str) -> List[Question]:
        return shuffle(bank, seed)


class OrderedQuizGenerator(QuizGenerator):
    """Bank order, first N questions."""

    def order(self, bank: List[Question], seed: str) -> List[Question]:
        return list(bank)


class QuizFactory:
    """Factory to select the appropriate generator."""

    @staticmethod
    def create(mode: str = "shuffled") -> QuizGenerator:
        if mode == "ordered":
            return OrderedQuizGenerator()
        return SeededQuizGenerator()


def assemble(
    bank: List[Question], seed: Optional[str] = None, count: Any = None
) -> Quiz:
    return SeededQuizGenerator().assemble(bank, seed, count)


def sanitize_question(question: Question) -> Dict[str, Any]:
    """Player-facing fields only; the answer is withheld and an unset
    namespace is left out."""
    out = {
        "id": question.id,
        "slug": question.slug,
        "text": question.text,
        "namespace": question.namespace,
        "choices": list(CHOICES),
    }
    return {k: v for k, v in out.items() if v is not None}


# --- Grading ---
def grade(answers: Sequence[AnswerEntry], quiz_questions: Sequence[Question]) -> GradeResult:
    """Grades `answers` against the resolved quiz.

    The first unknown question id or invalid choice aborts grading with a
    GradingError; nothing is partially scored.
    """
    by_id = {q.id: q for q in quiz_questions}
    results = []
    score = 0

    for entry in answers:
        target = None
        if isinstance(entry.question_id, str):
            target = by_id.get(entry.question_id)
        if target is None:
            raise GradingError(f"Unknown questionId: {entry.question_id}")
        if entry.choice not in CHOICES:
            raise GradingError(f"Invalid choice for {entry.question_id}")

        correct = target.answer == entry.choice
        if correct:
            score += 1
        results.append(
            AnswerRecord(
                questionId=target.id,
                answer=entry.choice,
                correct=correct,
                correctAnswer=target.answer,
            )
        )

    return GradeResult(score=score, total=len(quiz_questions), results=results)
