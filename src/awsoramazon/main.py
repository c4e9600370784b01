import json
import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

import redis
import uvicorn
from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.responses import JSONResponse

from .config import settings
from .errors import (
    ApiError,
    BadRequest,
    Conflict,
    NotFound,
    PreconditionFailed,
    PreconditionRequired,
    error_response,
)
from .idempotency import CachedResponse, IdempotencyCache
from .models import (
    QuestionPage,
    QuizIdsOut,
    QuizOut,
    validate_answers_payload,
    validate_question_payload,
)
from .questions import EtagMismatch, QuestionExists, QuestionNotFound, QuestionRepository
from .quiz import GradingError, NoQuestions, Quiz, QuizFactory, clamp, grade, sanitize_question
from .seed import QuestionSeeder
from .store import KeyValueStore, create_store

# --- Logging Setup ---
logger = logging.getLogger(__name__)
package_logger = logging.getLogger("awsoramazon")
package_logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)

if settings.LOG_TO_FILE:
    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    log_handler: logging.Handler = RotatingFileHandler(
        log_path, maxBytes=5_000_000, backupCount=3
    )
else:
    log_handler = logging.StreamHandler()
log_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
package_logger.addHandler(log_handler)

NO_QUESTIONS_MESSAGE = "No questions available. Seed the question store first."
CORS_HEADERS = {
    "Access-Control-Allow-Headers": "Content-Type,If-Match,If-None-Match,Idempotency-Key",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
}


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.store = create_store(settings)
    if settings.SEED_ON_STARTUP:
        QuestionSeeder(QuestionRepository(app.state.store), settings.SEED_DIR).run()
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)


@app.middleware("http")
async def cors_headers(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS" and origin:
        response = Response(status_code=204)
    else:
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"Unhandled error on {request.method} {request.url.path}")
            response = error_response(500, "InternalError", "Internal server error")
    if origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers.update(CORS_HEADERS)
    return response


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError):
    return exc.to_response()


# --- Dependencies ---
def get_store(request: Request) -> KeyValueStore:
    return request.app.state.store


def get_repository(store: KeyValueStore = Depends(get_store)) -> QuestionRepository:
    return QuestionRepository(store)


def get_idempotency_cache(store: KeyValueStore = Depends(get_store)) -> IdempotencyCache:
    return IdempotencyCache(store)


async def json_body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def build_quiz(
    repository: QuestionRepository, quiz_id: Optional[str], count: Any = None
) -> Quiz:
    if quiz_id is not None and not quiz_id.strip():
        raise BadRequest("quizId is required")
    try:
        return QuizFactory.create().assemble(repository.load_bank(), quiz_id, count)
    except NoQuestions:
        raise NotFound(NO_QUESTIONS_MESSAGE)


# --- Routes: Quizzes ---
@app.get("/api/quizzes", response_model=QuizOut, response_model_exclude_none=True)
def get_random_quiz(
    count: Optional[str] = None,
    repository: QuestionRepository = Depends(get_repository),
):
    quiz = build_quiz(repository, None, count)
    return QuizOut(
        quizId=quiz.quiz_id,
        questions=[sanitize_question(q) for q in quiz.questions],
        total=len(quiz.questions),
    )


@app.get("/api/quizzes/ids", response_model=QuizIdsOut)
def get_random_quiz_ids(
    count: Optional[str] = None,
    repository: QuestionRepository = Depends(get_repository),
):
    quiz = build_quiz(repository, None, count)
    return QuizIdsOut(
        quizId=quiz.quiz_id,
        ids=[q.id for q in quiz.questions],
        total=len(quiz.questions),
    )


@app.get(
    "/api/quizzes/{quiz_id}", response_model=QuizOut, response_model_exclude_none=True
)
def get_quiz(
    quiz_id: str,
    count: Optional[str] = None,
    repository: QuestionRepository = Depends(get_repository),
):
    quiz = build_quiz(repository, quiz_id, count)
    return QuizOut(
        quizId=quiz.quiz_id,
        questions=[sanitize_question(q) for q in quiz.questions],
        total=len(quiz.questions),
    )


@app.post("/api/quizzes/{quiz_id}")
def answer_quiz(
    quiz_id: str,
    count: Optional[str] = None,
    payload: Any = Depends(json_body),
    idempotency_key: Optional[str] = Header(None),
    repository: QuestionRepository = Depends(get_repository),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
):
    if not quiz_id.strip():
        raise BadRequest("quizId is required")
    answers = validate_answers_payload(payload)

    if idempotency_key:
        cached = cache.find(idempotency_key)
        if cached:
            return Response(
                content=cached.body,
                status_code=cached.status_code,
                headers=cached.headers,
            )

    quiz = build_quiz(repository, quiz_id, count)
    try:
        result = grade(answers, quiz.questions)
    except GradingError as e:
        raise BadRequest(str(e))

    response = CachedResponse(
        status_code=200,
        body=json.dumps(result.model_dump()),
        headers={"Content-Type": "application/json"},
    )
    if idempotency_key:
        response = cache.save(idempotency_key, response)
    return Response(
        content=response.body,
        status_code=response.status_code,
        headers=response.headers,
    )


# --- Routes: Questions ---
@app.get("/api/questions", response_model=QuestionPage, response_model_exclude_none=True)
def list_questions(
    limit: Optional[str] = None,
    cursor: Optional[str] = None,
    namespace: Optional[str] = None,
    repository: QuestionRepository = Depends(get_repository),
):
    page_size = clamp(limit, 1, settings.MAX_PAGE_SIZE, settings.DEFAULT_PAGE_SIZE)
    questions, next_cursor = repository.list(page_size, cursor, namespace)
    return QuestionPage(items=[q.to_public() for q in questions], nextCursor=next_cursor)


@app.post("/api/questions", status_code=201)
def create_question(
    payload: Any = Depends(json_body),
    repository: QuestionRepository = Depends(get_repository),
):
    data = validate_question_payload(payload)
    try:
        question = repository.create(data)
    except QuestionExists:
        raise Conflict("Question already exists")
    return JSONResponse(
        question.to_public(), status_code=201, headers={"ETag": question.etag}
    )


@app.get("/api/questions/{question_id}")
def get_question(
    question_id: str,
    repository: QuestionRepository = Depends(get_repository),
):
    question = repository.find(question_id)
    if not question:
        raise NotFound("Question not found")
    headers = {"ETag": question.etag} if question.etag else None
    return JSONResponse(question.to_public(), headers=headers)


@app.put("/api/questions/{question_id}")
def update_question(
    question_id: str,
    payload: Any = Depends(json_body),
    if_match: Optional[str] = Header(None),
    repository: QuestionRepository = Depends(get_repository),
):
    data = validate_question_payload(payload, require_id=False)
    if not if_match:
        raise PreconditionRequired("If-Match header is required")
    try:
        question = repository.update(question_id, data, if_match)
    except QuestionNotFound:
        raise NotFound("Question not found")
    except EtagMismatch:
        raise PreconditionFailed("ETag does not match")
    return JSONResponse(question.to_public(), headers={"ETag": question.etag})


@app.delete("/api/questions/{question_id}", status_code=204)
def delete_question(
    question_id: str,
    repository: QuestionRepository = Depends(get_repository),
):
    try:
        repository.delete(question_id)
    except QuestionNotFound:
        raise NotFound("Question not found")
    return Response(status_code=204)


@app.get("/health")
def health(store: KeyValueStore = Depends(get_store)):
    try:
        store.ping()
    except redis.RedisError as e:
        logger.error(f"Store ping failed: {e}")
        return JSONResponse({"status": "degraded", "store": False}, status_code=503)
    return {"status": "ok", "store": True}


if __name__ == "__main__":
    uvicorn.run("awsoramazon.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
