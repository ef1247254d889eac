"""Tests for api/main.py"""

import pytest
from fastapi.testclient import TestClient

import api.main as api_main
from conftest import FakeRedis, make_report
from learning_path.path_generator import PathGenerator, StudentProfile
from redis_store import RedisStore


@pytest.fixture
def client(monkeypatch, content_bundle):
    monkeypatch.setattr(api_main, "store", RedisStore(client=FakeRedis()))
    monkeypatch.setattr(api_main, "content", content_bundle)
    return TestClient(api_main.app)


def start(client, **overrides):
    body = {"user_id": "student-1", "jurisdiction_id": "ca", "min_questions": 3, "max_questions": 5}
    body.update(overrides)
    return client.post("/assessments", json=body)


def finish_assessment(client, answer="B"):
    started = start(client).json()
    assessment_id = started["assessment_id"]
    question = started["question"]
    result = None
    while question is not None:
        result = client.post(
            f"/assessments/{assessment_id}/responses",
            json={"item_id": question["item_id"], "selected_answer": answer, "time_seconds": 30},
        ).json()
        question = result["next_question"]
    return assessment_id, result


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["jurisdictions"] == ["ca"]
    assert body["items"] == 24


def test_start_assessment_hides_answer_key(client):
    response = start(client)
    assert response.status_code == 200

    body = response.json()
    assert body["status"] == "INITIALIZED"
    assert set(body["question"]) == {"item_id", "stem", "options", "topic", "difficulty", "selection_reason"}
    assert "correct_answer" not in body["question"]


def test_start_with_empty_pool_is_conflict(client):
    response = start(client, jurisdiction_id="nowhere")
    assert response.status_code == 409
    assert response.json()["reason"] == "no_content_available"


def test_full_assessment_flow(client):
    assessment_id, last = finish_assessment(client)

    assert last["completed"]
    assert last["questions_asked"] == 5
    assert last["termination_reason"] == "max_questions_reached"

    status = client.get(f"/assessments/{assessment_id}").json()
    assert status["status"] == "COMPLETED"

    report = client.get(f"/assessments/{assessment_id}/report").json()
    assert report["questions_asked"] == 5
    assert report["weak_concepts"]
    assert report["readiness_level"] == "NOT_READY"


def test_wrong_item_is_rejected(client):
    assessment_id = start(client).json()["assessment_id"]
    response = client.post(
        f"/assessments/{assessment_id}/responses",
        json={"item_id": "not-the-pending-one", "selected_answer": "A"},
    )
    assert response.status_code == 409


def test_answering_completed_assessment_is_conflict(client):
    assessment_id, _ = finish_assessment(client)
    response = client.post(
        f"/assessments/{assessment_id}/responses",
        json={"item_id": "ohms_law-0", "selected_answer": "A"},
    )
    assert response.status_code == 409


def test_unknown_assessment_is_404(client):
    assert client.get("/assessments/missing").status_code == 404
    assert client.get("/assessments/missing/report").status_code == 404


def test_report_before_completion_is_conflict(client):
    assessment_id = start(client).json()["assessment_id"]
    assert client.get(f"/assessments/{assessment_id}/report").status_code == 409
    assert client.post("/paths", json={"assessment_id": assessment_id, "user_id": "student-1"}).status_code == 409


def test_path_attempts_and_progress(client):
    assessment_id, _ = finish_assessment(client)

    path = client.post("/paths", json={"assessment_id": assessment_id, "user_id": "student-1"}).json()
    path_id = path["path_id"]
    assert path["steps"][0]["kind"] == "CONCEPT_STUDY"
    assert path["steps"][-1]["kind"] == "ASSESSMENT"
    assert client.get(f"/paths/{path_id}").json() == path

    first = client.post(
        f"/paths/{path_id}/attempts",
        json={"user_id": "student-1", "step_index": 0, "is_correct": True, "time_seconds": 120},
    ).json()
    assert first["completion"]["can_advance"]
    assert first["xp_awarded"] == 15
    assert first["streak"] == 1

    repeat = client.post(
        f"/paths/{path_id}/attempts",
        json={"user_id": "student-1", "step_index": 0, "is_correct": True},
    ).json()
    assert repeat["xp_awarded"] == 0

    progress = client.get(f"/paths/{path_id}/progress", params={"user_id": "student-1"}).json()
    assert progress["progress"]["steps_completed"] == 1
    assert progress["rewards"]["xp"] == 15


def test_step_outside_path_is_404(client):
    assessment_id, _ = finish_assessment(client)
    path_id = client.post("/paths", json={"assessment_id": assessment_id, "user_id": "u"}).json()["path_id"]

    response = client.post(f"/paths/{path_id}/attempts", json={"user_id": "u", "step_index": 99, "is_correct": True})
    assert response.status_code == 404
    assert client.get("/paths/missing").status_code == 404


def test_graph_endpoints(client):
    validation = client.get("/concepts/ca/validation").json()
    assert validation["is_valid"]
    assert validation["stats"]["max_depth"] == 4

    graph = client.get("/concepts/ca/graph").json()
    assert len(graph["nodes"]) == 6
    assert all(node["status"] == "unknown" for node in graph["nodes"])

    cycle = client.post("/concepts/ca/cycle-check", json={"concept_id": "ohms", "prerequisite_id": "branch"}).json()
    assert cycle["would_create_cycle"]

    chain = client.get("/concepts/ca/branch/chain").json()
    assert [c["id"] for c in chain] == ["ohms", "ampacity", "branch"]

    assert client.get("/concepts/ca/ghost/chain").status_code == 404
    assert client.get("/concepts/nowhere/validation").status_code == 404


def test_mastery_follows_path_attempts(client):
    assessment_id, _ = finish_assessment(client)
    path = client.post("/paths", json={"assessment_id": assessment_id, "user_id": "u"}).json()
    practice = next(s for s in path["steps"] if s["kind"] == "PRACTICE_SET")
    index = path["steps"].index(practice)

    for _ in range(3):
        client.post(f"/paths/{path['path_id']}/attempts", json={"user_id": "u", "step_index": index, "is_correct": True})

    mastery = client.get(f"/mastery/u/{practice['concept_id']}").json()
    assert mastery["attempts_used"] == 3
    assert mastery["overall_accuracy"] == 1.0

    graph = client.get("/concepts/ca/graph", params={"user_id": "u"}).json()
    scored = {n["id"]: n for n in graph["nodes"]}
    assert scored[practice["concept_id"]]["score"] is not None


def test_retry_after_interrupted_grant_still_rewards(client, content_bundle):
    generator = PathGenerator(content_bundle.concepts, content_bundle.similarity)
    path = generator.generate_learning_path(make_report("branch_circuits"), StudentProfile(user_id="u"), "ca", path_id="p1")
    api_main.store.save_path(path)

    client.post("/paths/p1/attempts", json={"user_id": "u", "step_index": 0, "is_correct": True})
    # A worker that claimed the milestone and died before saving the ledger
    api_main.store.client.sadd("rewards:u:milestones", "p1:m0")

    result = client.post("/paths/p1/attempts", json={"user_id": "u", "step_index": 1, "is_correct": True}).json()
    assert result["unlocked_milestones"] == ["p1:m0"]

    rewards = api_main.store.get_rewards("u")
    assert "early-progress" in rewards.badges
    assert rewards.unlocked_milestones == ["p1:m0"]
    assert rewards.xp == 15 + 38

    again = client.post("/paths/p1/attempts", json={"user_id": "u", "step_index": 1, "is_correct": True}).json()
    assert again["xp_awarded"] == 0
    assert again["unlocked_milestones"] == []
    assert api_main.store.get_rewards("u") == rewards
