import pytest
from fastapi.testclient import TestClient

from awsoramazon.main import app, get_store
from awsoramazon.models import validate_question_payload
from awsoramazon.questions import QuestionRepository
from awsoramazon.store import MemoryStore

ANSWERS = ["aws", "amazon"]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def repository(store):
    return QuestionRepository(store)


@pytest.fixture
def seeded(repository):
    """Ten questions q1..q10, odd ids answered "aws", even ids "amazon"."""
    questions = []
    for n in range(1, 11):
        payload = {
            "id": f"q{n}",
            "text": f"Question number {n}",
            "answer": ANSWERS[(n + 1) % 2],
            "namespace": "compute" if n <= 5 else "retail",
        }
        questions.append(repository.create(validate_question_payload(payload)))
    return questions


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
