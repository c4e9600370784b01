import json

import pytest
from fastapi.testclient import TestClient

from awsoramazon.main import app, get_store

ORIGIN = "https://quiz.example.com"


def create(client, **fields):
    body = {"id": "q1", "text": "Amazon S3 stores objects.", "answer": "aws"}
    body.update(fields)
    return client.post("/api/questions", json=body)


# --- Quizzes ---
def test_quiz_for_seed(client, seeded):
    r = client.get("/api/quizzes/quiz-42")
    assert r.status_code == 200
    data = r.json()
    assert data["quizId"] == "quiz-42"
    assert data["total"] == 10
    # Bank is read in sort key order: q1, q10, q2, ..., q9.
    assert [q["id"] for q in data["questions"]] == [
        "q4", "q2", "q5", "q10", "q3", "q6", "q1", "q7", "q9", "q8",
    ]
    first = data["questions"][0]
    assert first["choices"] == ["aws", "amazon"]
    assert "answer" not in first
    assert set(first) == {"id", "slug", "text", "namespace", "choices"}


def test_quiz_for_seed_is_repeatable(client, seeded):
    assert client.get("/api/quizzes/abc").json() == client.get("/api/quizzes/abc").json()


def test_quiz_count_parameter(client, seeded):
    assert client.get("/api/quizzes/abc?count=3").json()["total"] == 3
    assert client.get("/api/quizzes/abc?count=0").json()["total"] == 1
    assert client.get("/api/quizzes/abc?count=oops").json()["total"] == 10


def test_random_quiz_uses_timestamp_seed(client, seeded):
    data = client.get("/api/quizzes?count=5").json()
    assert data["total"] == 5
    assert data["quizId"].endswith("Z")

    replay = client.get(f"/api/quizzes/{data['quizId']}?count=5").json()
    assert replay["questions"] == data["questions"]


def test_random_quiz_ids(client, seeded):
    data = client.get("/api/quizzes/ids?count=4").json()
    assert data["total"] == 4
    assert len(data["ids"]) == 4
    assert set(data["ids"]) <= {f"q{n}" for n in range(1, 11)}


@pytest.mark.parametrize("path", ["/api/quizzes", "/api/quizzes/ids", "/api/quizzes/s1"])
def test_quiz_with_empty_bank(client, path):
    r = client.get(path)
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NotFound"


# --- Grading ---
def test_grade_two_question_quiz(client):
    create(client, id="q1", answer="aws")
    create(client, id="q2", answer="amazon")

    r = client.post(
        "/api/quizzes/s1",
        json={"answers": [
            {"questionId": "q1", "choice": "aws"},
            {"questionId": "q2", "choice": "aws"},
        ]},
    )
    assert r.status_code == 200
    assert r.json() == {
        "score": 1,
        "total": 2,
        "results": [
            {"questionId": "q1", "answer": "aws", "correct": True, "correctAnswer": "aws"},
            {"questionId": "q2", "answer": "aws", "correct": False, "correctAnswer": "amazon"},
        ],
    }


def test_grade_question_outside_quiz(client, seeded):
    quiz_ids = [q["id"] for q in client.get("/api/quizzes/s1?count=2").json()["questions"]]
    outside = next(f"q{n}" for n in range(1, 11) if f"q{n}" not in quiz_ids)

    r = client.post(
        "/api/quizzes/s1?count=2",
        json={"answers": [{"questionId": outside, "choice": "aws"}]},
    )
    assert r.status_code == 400
    assert r.json()["error"] == {
        "code": "BadRequest",
        "message": f"Unknown questionId: {outside}",
    }


def test_grade_invalid_choice(client):
    create(client)
    r = client.post("/api/quizzes/s1", json={"answers": [{"questionId": "q1", "choice": "x"}]})
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Invalid choice for q1"


@pytest.mark.parametrize(
    "content",
    ["", "not json", '{"answers": "aws"}', "[]", '{"answers": [1]}'],
)
def test_grade_bad_body(client, content):
    create(client)
    r = client.post(
        "/api/quizzes/s1", content=content, headers={"Content-Type": "application/json"}
    )
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "BadRequest"


def test_grade_empty_bank(client):
    r = client.post("/api/quizzes/s1", json={"answers": []})
    assert r.status_code == 404


def test_idempotent_grading_replays_first_response(client):
    create(client, id="q1", answer="aws")
    create(client, id="q2", answer="amazon")
    headers = {"Idempotency-Key": "retry-1"}

    first = client.post(
        "/api/quizzes/s1",
        json={"answers": [{"questionId": "q1", "choice": "aws"}]},
        headers=headers,
    )
    # A different payload and a changed bank must not alter the replay.
    create(client, id="q3", answer="aws")
    second = client.post(
        "/api/quizzes/s1",
        json={"answers": [{"questionId": "q1", "choice": "amazon"}]},
        headers=headers,
    )

    assert first.status_code == second.status_code == 200
    assert first.content == second.content
    assert json.loads(first.content)["score"] == 1


def test_grading_without_key_is_recomputed(client):
    create(client, id="q1", answer="aws")
    one = client.post("/api/quizzes/s1", json={"answers": [{"questionId": "q1", "choice": "aws"}]})
    two = client.post("/api/quizzes/s1", json={"answers": [{"questionId": "q1", "choice": "amazon"}]})
    assert one.json()["score"] == 1
    assert two.json()["score"] == 0


def test_failed_grading_is_not_cached(client):
    create(client, id="q1", answer="aws")
    headers = {"Idempotency-Key": "retry-2"}
    bad = client.post(
        "/api/quizzes/s1",
        json={"answers": [{"questionId": "zzz", "choice": "aws"}]},
        headers=headers,
    )
    good = client.post(
        "/api/quizzes/s1",
        json={"answers": [{"questionId": "q1", "choice": "aws"}]},
        headers=headers,
    )
    assert bad.status_code == 400
    assert good.status_code == 200
    assert good.json()["score"] == 1


# --- Questions ---
def test_create_question(client):
    r = create(client, slug="s3", namespace="storage")
    assert r.status_code == 201
    data = r.json()
    assert data["id"] == "q1"
    assert data["slug"] == "s3"
    assert data["namespace"] == "storage"
    assert r.headers["ETag"] == data["etag"]
    assert isinstance(data["updatedAt"], int)


def test_create_duplicate_question(client):
    assert create(client, id="dup").status_code == 201
    r = create(client, id="dup")
    assert r.status_code == 409
    assert r.json() == {"error": {"code": "Conflict", "message": "Question already exists"}}


@pytest.mark.parametrize(
    "body,message",
    [
        ({}, "id is required"),
        ({"text": "t", "answer": "aws"}, "id is required"),
        ({"id": "q1", "answer": "aws"}, "text is required"),
        ({"id": "q1", "text": "t", "answer": "gcp"}, 'answer must be "aws" or "amazon"'),
    ],
)
def test_create_invalid_question(client, body, message):
    r = client.post("/api/questions", json=body)
    assert r.status_code == 400
    assert r.json()["error"] == {"code": "BadRequest", "message": message}


def test_get_question(client):
    etag = create(client, slug="s3").json()["etag"]
    r = client.get("/api/questions/q1")
    assert r.status_code == 200
    assert r.headers["ETag"] == etag
    assert client.get("/api/questions/s3").json()["id"] == "q1"
    assert client.get("/api/questions/missing").status_code == 404


def test_update_question(client):
    etag = create(client).json()["etag"]
    r = client.put(
        "/api/questions/q1",
        json={"text": "Kindle sells e-books.", "answer": "amazon"},
        headers={"If-Match": etag},
    )
    assert r.status_code == 200
    assert r.json()["answer"] == "amazon"
    assert r.headers["ETag"] != etag
    assert client.get("/api/questions/q1").json()["text"] == "Kindle sells e-books."


def test_update_without_if_match(client):
    create(client)
    r = client.put("/api/questions/q1", json={"text": "changed", "answer": "aws"})
    assert r.status_code == 428
    assert r.json()["error"]["code"] == "PreconditionRequired"
    assert client.get("/api/questions/q1").json()["text"] == "Amazon S3 stores objects."


def test_update_with_stale_if_match(client):
    etag = create(client).json()["etag"]
    client.put(
        "/api/questions/q1",
        json={"text": "first edit", "answer": "aws"},
        headers={"If-Match": etag},
    )
    r = client.put(
        "/api/questions/q1",
        json={"text": "second edit", "answer": "aws"},
        headers={"If-Match": etag},
    )
    assert r.status_code == 412
    assert r.json()["error"]["code"] == "PreconditionFailed"
    assert client.get("/api/questions/q1").json()["text"] == "first edit"


def test_update_missing_question(client):
    r = client.put(
        "/api/questions/nope",
        json={"text": "t", "answer": "aws"},
        headers={"If-Match": "x"},
    )
    assert r.status_code == 404


def test_update_invalid_body(client):
    create(client)
    r = client.put("/api/questions/q1", json={"text": "t"}, headers={"If-Match": "x"})
    assert r.status_code == 400


def test_delete_question(client):
    create(client)
    r = client.delete("/api/questions/q1")
    assert r.status_code == 204
    assert r.content == b""
    assert client.delete("/api/questions/missing").status_code == 404


def test_list_questions(client, seeded):
    r = client.get("/api/questions?limit=4")
    assert r.status_code == 200
    data = r.json()
    assert [q["id"] for q in data["items"]] == ["q1", "q10", "q2", "q3"]
    assert data["items"][0]["answer"] == "aws"

    rest = client.get("/api/questions", params={"limit": 50, "cursor": data["nextCursor"]}).json()
    assert [q["id"] for q in rest["items"]] == ["q4", "q5", "q6", "q7", "q8", "q9"]
    assert "nextCursor" not in rest


def test_list_questions_by_namespace(client, seeded):
    data = client.get("/api/questions?namespace=compute").json()
    assert sorted(q["id"] for q in data["items"]) == ["q1", "q2", "q3", "q4", "q5"]


# --- CORS, health, faults ---
def test_cors_headers_echo_origin(client):
    r = client.get("/api/questions/missing", headers={"Origin": ORIGIN})
    assert r.status_code == 404
    assert r.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert "Idempotency-Key" in r.headers["Access-Control-Allow-Headers"]
    assert r.headers["Access-Control-Allow-Methods"] == "GET,POST,PUT,DELETE,OPTIONS"


def test_no_cors_headers_without_origin(client):
    r = client.get("/api/questions")
    assert "Access-Control-Allow-Origin" not in r.headers


def test_preflight(client):
    r = client.options("/api/quizzes/s1", headers={"Origin": ORIGIN})
    assert r.status_code == 204
    assert r.headers["Access-Control-Allow-Origin"] == ORIGIN


def test_health(client):
    assert client.get("/health").json() == {"status": "ok", "store": True}


class BrokenStore:
    def query(self, *args, **kwargs):
        raise RuntimeError("store unavailable")


def test_store_fault_is_server_error():
    app.dependency_overrides[get_store] = lambda: BrokenStore()
    try:
        r = TestClient(app).get("/api/quizzes/s1", headers={"Origin": ORIGIN})
    finally:
        app.dependency_overrides.clear()
    assert r.status_code == 500
    assert r.json() == {
        "error": {"code": "InternalError", "message": "Internal server error"}
    }
    assert r.headers["Access-Control-Allow-Origin"] == ORIGIN
    assert r.headers["Access-Control-Allow-Methods"] == "GET,POST,PUT,DELETE,OPTIONS"


def test_update_with_empty_object(client):
    create(client)
    r = client.put("/api/questions/q1", json={}, headers={"If-Match": "x"})
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "text is required"


def test_create_without_body(client):
    r = client.post("/api/questions")
    assert r.status_code == 400
    assert r.json()["error"]["message"] == "Request body is required"


def test_missing_namespace_is_omitted(client):
    create(client)
    assert "namespace" not in client.get("/api/questions/q1").json()
    assert "namespace" not in client.get("/api/questions").json()["items"][0]

    question = client.get("/api/quizzes/s1").json()["questions"][0]
    assert set(question) == {"id", "slug", "text", "choices"}


def test_blank_limit_reads_as_one(client, seeded):
    assert len(client.get("/api/questions?limit=").json()["items"]) == 1
    assert len(client.get("/api/questions?limit=2.5").json()["items"]) == 2
