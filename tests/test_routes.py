"""
HTTP surface, with storage and LLM replaced by in-memory fakes.
"""

import json
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from main import app
from models.course_models import ModelCost, PaperDocument
from routes.dependencies import get_course_service, get_paper_service
from tests.fakes import FakeCostStorage, FakeLLM, InMemoryCourseStorage, build_course_service
from utils.model_config import ModelUsage

CONCEPTS_REPLY = json.dumps({
    "title": "Understanding the Transformer",
    "description": "Attention without recurrence",
    "concepts": [
        {"name": "A", "importance": "central", "reasoning": "Core"},
        {"name": "B", "importance": "supporting", "reasoning": "Known"},
        {"name": "C", "importance": "supporting", "reasoning": "Needed"},
    ],
})


class FakePaperService:
    async def load_arxiv_paper(self, raw_id: str) -> PaperDocument:
        return PaperDocument(
            arxiv_id="1706.03762",
            title="Attention Is All You Need",
            authors=["Ashish Vaswani"],
            pdf_url="https://arxiv.org/pdf/1706.03762",
            text="Transformer paper text. " * 100,
        )


@pytest.fixture()
def course_service():
    llm = FakeLLM()
    llm.queue(ModelUsage.CONCEPT_EXTRACTION, CONCEPTS_REPLY)
    cost_storage = FakeCostStorage([
        ModelCost(model_name="fake-model", cost_per_million_input_tokens=5, cost_per_million_output_tokens=10),
    ])
    return build_course_service(llm=llm, storage=InMemoryCourseStorage(), cost_storage=cost_storage)


@pytest.fixture()
def client(course_service) -> Iterator[TestClient]:
    app.dependency_overrides[get_course_service] = lambda: course_service
    app.dependency_overrides[get_paper_service] = lambda: FakePaperService()
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def _create_course(client: TestClient) -> str:
    response = client.post("/api/v1/papers/arxiv", data={"user_id": "user-1", "arxiv_id": "1706.03762"})
    assert response.status_code == 201
    return response.json()["course_id"]


def test_paper_to_syllabus_flow(client, course_service):
    course_id = _create_course(client)

    assessment = client.get(f"/api/v1/courses/{course_id}/assessment", params={"user_id": "user-1"})
    assert assessment.status_code == 200
    assert [c["name"] for c in assessment.json()["concepts"]] == ["A", "B", "C"]
    assert assessment.json()["syllabus_ready"] is False

    response = client.post(
        f"/api/v1/courses/{course_id}/assessment",
        json={"user_id": "user-1", "ratings": {"A": 0, "B": 3, "C": 2}},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["planned_concepts"] == ["A", "C"]
    assert len(body["course"]["modules"][0]["lessons"]) == 3
    assert body["course"]["modules"][1]["lessons"] == []
    assert "paper_content" not in body["course"]


def test_course_listing_includes_cost(client):
    course_id = _create_course(client)

    response = client.get("/api/v1/users/user-1/courses")

    assert response.status_code == 200
    courses = response.json()["courses"]
    assert [c["id"] for c in courses] == [course_id]
    # 100 input and 50 output tokens of concept extraction at 5 and 10 per million
    assert courses[0]["estimated_cost"] == pytest.approx(0.001)


def test_unknown_course_returns_error_body(client):
    response = client.get("/api/v1/courses/missing", params={"user_id": "user-1"})

    assert response.status_code == 404
    assert response.json()["error"] == "COURSE_NOT_FOUND"


def test_invalid_rating_is_a_bad_request(client):
    course_id = _create_course(client)

    response = client.post(
        f"/api/v1/courses/{course_id}/assessment",
        json={"user_id": "user-1", "ratings": {"A": 7}},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_RATING"


def test_lesson_out_of_range_is_not_found(client):
    course_id = _create_course(client)
    client.post(f"/api/v1/courses/{course_id}/assessment", json={"user_id": "user-1", "ratings": {"A": 0}})

    response = client.get(f"/api/v1/courses/{course_id}/modules/0/lessons/9", params={"user_id": "user-1"})

    assert response.status_code == 404
    assert response.json()["error"] == "LESSON_NOT_FOUND"


def test_status_endpoints(client):
    course_id = _create_course(client)
    client.post(f"/api/v1/courses/{course_id}/assessment", json={"user_id": "user-1", "ratings": {"A": 0, "C": 1}})

    status = client.get(f"/api/v1/courses/{course_id}/status", params={"user_id": "user-1"}).json()
    generation = client.get(f"/api/v1/courses/{course_id}/generation-status", params={"user_id": "user-1"}).json()

    assert [m["concept"] for m in status["modules"]] == ["A", "B", "C"]
    assert status["modules"][0]["lesson_count"] == 3
    assert generation["course_id"] == course_id
    assert any(task["kind"] == "lesson" for task in generation["tasks"])


def test_upload_rejects_non_pdf(client):
    response = client.post(
        "/api/v1/papers/upload",
        data={"user_id": "user-1"},
        files={"file": ("notes.txt", b"plain text", "text/plain")},
    )

    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_FILE_TYPE"


def test_models_endpoint_lists_every_usage(client):
    response = client.get("/api/v1/models")

    assert response.status_code == 200
    assert {row["usage"] for row in response.json()["models"]} == {usage.value for usage in ModelUsage}
