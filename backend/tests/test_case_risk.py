"""
Tests for the case risk engine and the health alert evaluator.

Test Coverage:
1. Deadline and discovery-response categories count only the worst deadline
2. Evidence points add up; activity uses the latest event
3. Score is clamped to 0..100 and mapped onto risk levels
4. Inputs snapshot counts
5. Health alert thresholds and message safety
"""
import logging
from datetime import timedelta

import pytest

from conftest import utc


NOW = utc(2026, 3, 8, 14, 0)


def _materials(evidence=5, sets=1, exhibits=3, binders=1):
    from case_engine.models.domain import CaseMaterials

    return CaseMaterials(
        evidence_count=evidence, exhibit_set_count=sets, exhibit_count=exhibits, trial_binder_count=binders,
    )


def _deadline(key, due_at):
    from case_engine.models.domain import DeadlineSnapshot, DeadlineSource

    return DeadlineSnapshot(
        id=key, key=key, due_at=due_at, source=DeadlineSource.USER_CONFIRMED,
        case_id="case-1", created_at=utc(2026, 2, 1),
    )


def _event(kind="task_status_changed", created_at=NOW - timedelta(days=1)):
    from case_engine.models.domain import CaseEvent

    return CaseEvent(case_id="case-1", kind=kind, created_at=created_at)


def _score(deadlines=(), events=None, materials=None, now=NOW):
    from case_engine.services.rules import build_risk_input, calculate_case_risk

    events = [_event()] if events is None else events
    risk_input = build_risk_input(list(deadlines), events, materials or _materials())
    return calculate_case_risk(risk_input, now)


class TestCategories:

    def test_prepared_active_case_scores_full(self):
        from case_engine.models.domain import RiskLevel

        result = _score()

        assert result.overall_score == 100
        assert result.risk_level == RiskLevel.LOW
        assert result.breakdown == []

    @pytest.mark.parametrize("days,points", [
        (-1, 40), (0, 20), (3, 20), (4, 10), (7, 10), (8, 0),
    ])
    def test_deadline_thresholds(self, days, points):
        result = _score([_deadline("answer_deadline_confirmed", NOW + timedelta(days=days))])

        assert result.deadline_risk == points
        assert result.overall_score == 100 - points

    def test_only_worst_deadline_counts(self):
        result = _score([
            _deadline("trial_date", NOW + timedelta(days=5)),
            _deadline("answer_deadline_confirmed", NOW - timedelta(days=2)),
        ])

        assert result.deadline_risk == 40
        assert [item.to_dict() for item in result.breakdown] == [{
            "rule": "deadline_overdue",
            "points": 40,
            "detail": 'Deadline "answer_deadline_confirmed" is 2 day(s) overdue',
        }]

    def test_discovery_deadline_scored_as_response(self):
        result = _score([_deadline("discovery_response_due_confirmed", NOW + timedelta(days=2))])

        assert result.deadline_risk == 0
        assert result.response_risk == 30
        assert result.breakdown[0].rule == "discovery_response_due_soon"

    def test_overdue_discovery_response(self):
        result = _score([_deadline("discovery_response_due_confirmed", NOW - timedelta(days=1))])

        assert result.response_risk == 50

    def test_received_response_clears_response_risk(self):
        result = _score(
            [_deadline("discovery_response_due_confirmed", NOW - timedelta(days=1))],
            events=[_event(), _event("discovery_response_received", NOW - timedelta(days=3))],
        )

        assert result.response_risk == 0

    def test_evidence_points_add_up(self):
        result = _score(materials=_materials(evidence=0, sets=0, exhibits=0, binders=0))

        assert result.evidence_risk == 40
        assert [item.rule for item in result.breakdown] == [
            "low_evidence_count", "no_exhibit_set", "low_exhibit_count", "no_trial_binder",
        ]

    def test_partial_materials(self):
        result = _score(materials=_materials(evidence=3, sets=1, exhibits=1, binders=0))

        assert result.evidence_risk == 15
        assert [item.rule for item in result.breakdown] == ["low_exhibit_count", "no_trial_binder"]

    @pytest.mark.parametrize("idle_days,points", [(13, 0), (14, 20), (29, 20), (30, 40)])
    def test_activity_uses_latest_event(self, idle_days, points):
        events = [
            _event(created_at=NOW - timedelta(days=60)),
            _event(created_at=NOW - timedelta(days=idle_days)),
        ]

        assert _score(events=events).activity_risk == points

    def test_no_events_is_inactive(self):
        result = _score(events=[])

        assert result.activity_risk == 40
        assert result.breakdown[-1].rule == "no_activity"


class TestOverallScore:

    def test_clamped_at_zero(self):
        from case_engine.models.domain import RiskLevel

        result = _score(
            [
                _deadline("answer_deadline_confirmed", NOW - timedelta(days=1)),
                _deadline("discovery_response_due_confirmed", NOW - timedelta(days=1)),
            ],
            events=[],
            materials=_materials(evidence=0, sets=0, exhibits=0, binders=0),
        )

        assert (result.deadline_risk, result.response_risk, result.evidence_risk, result.activity_risk) == (
            40, 50, 40, 40,
        )
        assert result.overall_score == 0
        assert result.risk_level == RiskLevel.HIGH

    @pytest.mark.parametrize("score,level", [
        (100, "low"), (80, "low"), (79, "moderate"), (60, "moderate"),
        (59, "elevated"), (40, "elevated"), (39, "high"), (0, "high"),
    ])
    def test_risk_levels(self, score, level):
        from case_engine.services.rules.case_risk import to_risk_level

        assert to_risk_level(score).value == level

    def test_to_dict(self):
        data = _score(events=[]).to_dict()

        assert data["overall_score"] == 60
        assert data["risk_level"] == "moderate"
        assert data["breakdown"] == [
            {"rule": "no_activity", "points": 40, "detail": "No task events recorded"},
        ]


class TestInputsSnapshot:

    def test_counts(self):
        from case_engine.services.rules import build_inputs_snapshot, build_risk_input

        risk_input = build_risk_input(
            [
                _deadline("a", NOW - timedelta(days=1)),
                _deadline("b", NOW + timedelta(days=2)),
                _deadline("c", NOW + timedelta(days=5)),
                _deadline("discovery_response_due_confirmed", NOW + timedelta(days=1)),
            ],
            [_event(created_at=NOW - timedelta(days=4))],
            _materials(evidence=2, exhibits=1),
        )

        assert build_inputs_snapshot(risk_input, NOW) == {
            "overdue_deadlines": 1,
            "due_within_3_days": 1,
            "due_within_7_days": 2,
            "evidence_count": 2,
            "exhibit_count": 1,
            "days_since_last_activity": 4,
            "discovery_due_within_3_days": 1,
        }

    def test_no_events(self):
        from case_engine.services.rules import build_inputs_snapshot, build_risk_input

        risk_input = build_risk_input([], [], _materials())

        assert build_inputs_snapshot(risk_input, NOW)["days_since_last_activity"] == -1


class TestHealthAlert:

    @pytest.mark.parametrize("score,level", [(0, 3), (49, 3), (50, 2), (69, 2)])
    def test_thresholds(self, score, level):
        from case_engine.services.rules import evaluate_health_alert

        action = evaluate_health_alert("case-1", score, NOW)

        assert action.escalation_level == level
        assert action.case_id == "case-1"
        assert action.deadline_id is None
        assert action.triggered_at == NOW

    @pytest.mark.parametrize("score", [70, 100])
    def test_healthy_score_no_alert(self, score):
        from case_engine.services.rules import evaluate_health_alert

        assert evaluate_health_alert("case-1", score, NOW) is None

    def test_default_messages_are_safe(self):
        from case_engine.services.rules.escalation_engine import is_message_safe
        from case_engine.services.rules.health_alert import LEVEL_2_MESSAGE, LEVEL_3_MESSAGE

        assert is_message_safe(LEVEL_2_MESSAGE)
        assert is_message_safe(LEVEL_3_MESSAGE)

    def test_unsafe_message_dropped(self, monkeypatch, caplog):
        from case_engine.services.rules import health_alert

        monkeypatch.setattr(health_alert, "LEVEL_3_MESSAGE", "You must file immediately.")

        with caplog.at_level(logging.WARNING, logger="case_engine.services.rules.health_alert"):
            assert health_alert.evaluate_health_alert("case-1", 10, NOW) is None

        assert "Blocked unsafe health alert message" in caplog.text
