"""
Tests for the HTTP boundary.

Uses FastAPI's TestClient with get_db overridden onto in-memory SQLite.
"""
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conftest import seed_case


@pytest.fixture
def session_factory():
    from case_engine.database import Base
    from case_engine.models import db_models  # noqa: F401

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def client(session_factory, locks):
    from case_engine.main import app
    from case_engine.database import get_db
    from case_engine.dependencies import get_case_scheduler
    from case_engine.services.orchestration import CaseScheduler, SqlAlchemyCaseRepository

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    @contextmanager
    def repository_scope():
        db = session_factory()
        try:
            yield SqlAlchemyCaseRepository(db)
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # One worker: every session shares the single StaticPool connection
    app.dependency_overrides[get_case_scheduler] = lambda: CaseScheduler(repository_scope, batch_size=1, locks=locks)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def task_ids(session_factory):
    db = session_factory()
    try:
        return seed_case(db)
    finally:
        db.close()


@pytest.fixture
def internal_headers():
    from case_engine.config import INTERNAL_API_KEY

    return {"X-Internal-Key": INTERNAL_API_KEY}


class TestCaseRoutes:

    def test_confirm_service_facts(self, client, task_ids):
        response = client.post("/cases/case-1/service-facts/confirm", json={
            "served_at": "2026-01-15",
            "return_filed_at": "2026-01-20",
            "service_method": "personal",
        })

        assert response.status_code == 200
        data = response.json()
        assert [d["key"] for d in data["deadlines"]] == [
            "answer_deadline_estimated",
            "default_earliest_info",
            "check_docket_after_answer_deadline",
        ]
        assert data["deadlines"][0]["due_at"] == "2026-02-02T16:00:00Z"
        assert data["gatekeeper"]["actions_applied"] == []

    def test_confirm_service_facts_unknown_case(self, client):
        response = client.post("/cases/nope/service-facts/confirm", json={"served_at": "2026-01-15"})

        assert response.status_code == 404
        assert "Case not found" in response.json()["detail"]

    def test_invalid_service_method_rejected(self, client, task_ids):
        response = client.post("/cases/case-1/service-facts/confirm", json={
            "served_at": "2026-01-15", "service_method": "carrier_pigeon",
        })
        assert response.status_code == 422

    def test_confirm_answer_deadline_unlocks_wait(self, client, task_ids):
        response = client.post("/cases/case-1/deadlines/confirm-answer-deadline", json={
            "confirmed_due_at": "2099-02-02T16:00:00Z",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["deadline"]["key"] == "answer_deadline_confirmed"
        assert data["deadline"]["source"] == "user_confirmed"
        assert len(data["reminders"]) == 3
        assert data["gatekeeper"]["actions_applied"] == ["unlock:wait_for_answer"]

    def test_create_and_list_deadlines(self, client, task_ids):
        created = client.post("/cases/case-1/deadlines", json={
            "key": "discovery_response_due_confirmed",
            "due_at": "2099-04-01T17:00:00Z",
            "source": "court_notice",
        })
        assert created.status_code == 200

        listed = client.get("/cases/case-1/deadlines")
        assert listed.status_code == 200
        deadlines = listed.json()["deadlines"]
        assert len(deadlines) == 1
        assert deadlines[0]["source"] == "court_notice"
        assert len(deadlines[0]["reminders"]) == 3

    def test_create_system_deadline_rejected(self, client, task_ids):
        response = client.post("/cases/case-1/deadlines", json={
            "key": "answer_deadline_estimated", "due_at": "2099-04-01T17:00:00Z", "source": "system",
        })
        assert response.status_code == 422

    def test_run_rules_with_explicit_now(self, client, task_ids):
        client.post("/cases/case-1/deadlines/confirm-answer-deadline", json={
            "confirmed_due_at": "2099-02-02T16:00:00Z",
        })

        response = client.post("/cases/case-1/rules/run", json={"now": "2099-02-03T00:00:00Z"})

        assert response.status_code == 200
        data = response.json()
        assert data["case_id"] == "case-1"
        assert data["rules_evaluated"] == 6
        assert data["actions_applied"] == ["complete:wait_for_answer", "unlock:check_docket_for_answer"]

    def test_run_rules_without_body(self, client, task_ids):
        response = client.post("/cases/case-1/rules/run")
        assert response.status_code == 200
        assert response.json()["actions_applied"] == []


    def test_run_risk_score(self, client, task_ids):
        response = client.post("/cases/case-1/rules/run-risk-score", json={"now": "2026-03-08T14:00:00Z"})

        assert response.status_code == 200
        data = response.json()
        assert data["case_id"] == "case-1"
        assert (data["overall_score"], data["risk_level"]) == (20, "high")
        assert data["evidence_risk"] == 40
        assert data["activity_risk"] == 40

    def test_run_risk_score_unknown_case(self, client):
        assert client.post("/cases/missing/rules/run-risk-score").status_code == 404


class TestTaskRoutes:

    def test_invalid_transition_is_422(self, client, task_ids):
        response = client.patch(f"/tasks/{task_ids['wait_for_answer']}", json={"status": "in_progress"})

        assert response.status_code == 422
        assert "Cannot transition from 'locked' to 'in_progress'" in response.json()["detail"]

    def test_unknown_task_is_404(self, client):
        response = client.patch("/tasks/missing", json={"status": "todo"})
        assert response.status_code == 404

    def test_docket_outcome_drives_branch(self, client, task_ids):
        client.post("/cases/case-1/deadlines/confirm-answer-deadline", json={
            "confirmed_due_at": "2099-02-02T16:00:00Z",
        })
        client.post("/cases/case-1/rules/run", json={"now": "2099-02-03T00:00:00Z"})

        check_docket = task_ids["check_docket_for_answer"]
        assert client.patch(f"/tasks/{check_docket}", json={"status": "in_progress"}).status_code == 200

        bad = client.patch(f"/tasks/{check_docket}", json={
            "status": "completed", "metadata": {"docket_result": "unsure"},
        })
        assert bad.status_code == 422

        good = client.patch(f"/tasks/{check_docket}", json={
            "status": "completed", "metadata": {"docket_result": "no_answer"},
        })
        assert good.status_code == 200
        assert good.json()["task"]["metadata"] == {"docket_result": "no_answer"}
        assert good.json()["gatekeeper"]["actions_applied"] == ["unlock:default_packet_prep"]


class TestEscalationRoutes:

    def test_acknowledge_unknown_is_404(self, client):
        response = client.patch("/reminder-escalations/missing/acknowledge")
        assert response.status_code == 404


class TestInternalRoutes:

    def test_sweeps_require_internal_key(self, client):
        assert client.post("/internal/gatekeeper-sweep").status_code == 422
        assert client.post(
            "/internal/gatekeeper-sweep", headers={"X-Internal-Key": "wrong"}
        ).status_code == 403

    def test_gatekeeper_sweep(self, client, task_ids, internal_headers):
        client.post("/cases/case-1/deadlines/confirm-answer-deadline", json={
            "confirmed_due_at": "2099-02-02T16:00:00Z",
        })

        response = client.post(
            "/internal/gatekeeper-sweep",
            params={"now": "2099-02-03T00:00:00Z"},
            headers=internal_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["job"] == "gatekeeper_sweep"
        assert (data["processed"], data["succeeded"], data["failed"]) == (1, 1, 0)
        assert data["details"][0]["actions_applied"] == [
            "complete:wait_for_answer", "unlock:check_docket_for_answer",
        ]

    def test_escalation_sweep_and_acknowledge(self, client, session_factory, task_ids, internal_headers):
        from scripts.seed_escalation_rules import seed_escalation_rules

        db = session_factory()
        try:
            seed_escalation_rules(db)
        finally:
            db.close()

        client.post("/cases/case-1/deadlines/confirm-answer-deadline", json={
            "confirmed_due_at": "2026-03-15T15:00:00Z",
        })

        first = client.post(
            "/internal/escalation-sweep", params={"now": "2026-03-08T14:00:00Z"}, headers=internal_headers
        )
        assert first.status_code == 200
        assert first.json()["triggered"] == 1

        second = client.post(
            "/internal/escalation-sweep", params={"now": "2026-03-08T20:00:00Z"}, headers=internal_headers
        )
        assert second.json()["triggered"] == 0

        from case_engine.models.db_models import ReminderEscalationDB

        db = session_factory()
        try:
            escalation_id = db.query(ReminderEscalationDB).first().id
        finally:
            db.close()

        response = client.patch(f"/reminder-escalations/{escalation_id}/acknowledge")
        assert response.status_code == 200
        assert response.json() == {"id": escalation_id, "acknowledged": True}


    def test_health_sweep(self, client, session_factory, task_ids, internal_headers):
        from case_engine.models.db_models import CaseRiskScoreDB, ReminderEscalationDB

        response = client.post(
            "/internal/health-sweep", params={"now": "2026-03-08T14:00:00Z"}, headers=internal_headers
        )

        assert response.status_code == 200
        data = response.json()
        assert data["job"] == "health_sweep"
        assert (data["processed"], data["succeeded"], data["failed"]) == (1, 1, 0)
        assert data["health_alerts_triggered"] == data["triggered"] == 1
        assert data["details"] == [
            {"case_id": "case-1", "overall_score": 20, "risk_level": "high", "alert_level": 3},
        ]

        db = session_factory()
        try:
            assert db.query(CaseRiskScoreDB).count() == 1
            alert = db.query(ReminderEscalationDB).one()
            assert (alert.deadline_id, alert.escalation_level) == (None, 3)
        finally:
            db.close()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
