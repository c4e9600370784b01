from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import BadRequest

CHOICES: List[str] = ["aws", "amazon"]

Answer = Literal["aws", "amazon"]


# --- Models ---
class Question(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    slug: str
    text: str
    answer: Answer
    namespace: Optional[str] = None
    updated_at: int = Field(alias="updatedAt")
    etag: str
    deleted: bool = False
    ttl: Optional[int] = None

    @property
    def state(self) -> str:
        return "expiring" if self.deleted else "active"

    def to_item(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_public(self) -> Dict[str, Any]:
        public = {
            "id": self.id,
            "slug": self.slug,
            "text": self.text,
            "answer": self.answer,
            "namespace": self.namespace,
            "updatedAt": self.updated_at,
            "etag": self.etag,
        }
        return {k: v for k, v in public.items() if v is not None}


class QuestionInput(BaseModel):
    id: Optional[str] = None
    slug: Optional[str] = None
    text: str
    answer: Answer
    namespace: Optional[str] = None


class AnswerEntry(BaseModel):
    question_id: Any = Field(default=None, alias="questionId")
    choice: Any = None


class QuizQuestionOut(BaseModel):
    id: str
    slug: str
    text: str
    namespace: Optional[str] = None
    choices: List[str]


class QuizOut(BaseModel):
    quizId: str
    questions: List[QuizQuestionOut]
    total: int


class QuizIdsOut(BaseModel):
    quizId: str
    ids: List[str]
    total: int


class AnswerRecord(BaseModel):
    questionId: str
    answer: str
    correct: bool
    correctAnswer: str


class GradeResult(BaseModel):
    score: int
    total: int
    results: List[AnswerRecord]


class QuestionPage(BaseModel):
    items: List[Dict[str, Any]]
    nextCursor: Optional[str] = None


# --- Validation ---
def validate_question_payload(payload: Any, require_id: bool = True) -> QuestionInput:
    """Checks a decoded request body and returns the typed question input.

    Raises BadRequest naming the first missing or invalid field.
    """
    if not isinstance(payload, dict):
        raise BadRequest("Request body is required")
    if require_id and (not payload.get("id") or not isinstance(payload["id"], str)):
        raise BadRequest("id is required")
    if not payload.get("text") or not isinstance(payload["text"], str):
        raise BadRequest("text is required")
    if payload.get("answer") not in CHOICES:
        raise BadRequest('answer must be "aws" or "amazon"')

    slug = payload.get("slug")
    namespace = payload.get("namespace")
    return QuestionInput(
        id=payload.get("id") if require_id else None,
        slug=slug if isinstance(slug, str) and slug else None,
        text=payload["text"],
        answer=payload["answer"],
        namespace=namespace if isinstance(namespace, str) and namespace else None,
    )


def validate_answers_payload(payload: Any) -> List[AnswerEntry]:
    if not isinstance(payload, dict) or not isinstance(payload.get("answers"), list):
        raise BadRequest("answers array is required")

    entries = []
    for index, raw in enumerate(payload["answers"]):
        if not isinstance(raw, dict):
            raise BadRequest(f"Invalid answer entry at index {index}")
        entries.append(AnswerEntry.model_validate(raw))
    return entries
