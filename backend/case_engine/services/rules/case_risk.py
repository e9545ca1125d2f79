"""
Case Risk Engine

AUTHORITY: SYSTEM
Deterministic health score for one case, from its deadlines, its activity
and the evidence the user has prepared. Pure: no I/O, no clock reads.

Key behaviors:
- The score starts at 100, loses the points of every category, clamped to 0..100
- Deadline and discovery-response categories count only their worst deadline
- Evidence points add up; activity is judged on the most recent event
- Day counts use the escalation evaluator's UTC calendar-date rule
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ...models.domain import (
    CaseEvent,
    CaseMaterials,
    DeadlineSnapshot,
    DiscoveryResponseDeadline,
    RiskBreakdownItem,
    RiskInput,
    RiskLevel,
    RiskResult,
)
from .escalation_engine import days_until


RISK_MODEL = "deterministic-v1"

# Deadline keys with this prefix are scored as discovery responses, not deadlines
DISCOVERY_DEADLINE_PREFIX = "discovery_response_due"
DISCOVERY_RESPONSE_EVENT = "discovery_response_received"

MIN_EVIDENCE_ITEMS = 3
MIN_EXHIBITS = 2

CategoryScore = Tuple[int, List[RiskBreakdownItem]]


def _worst(items: Sequence[RiskBreakdownItem]) -> CategoryScore:
    """Highest-scoring item; the first one wins a tie."""
    worst: Optional[RiskBreakdownItem] = None
    for item in items:
        if worst is None or item.points > worst.points:
            worst = item
    if worst is None:
        return 0, []
    return worst.points, [worst]


def score_deadline_risk(deadlines: Sequence[DeadlineSnapshot], now: datetime) -> CategoryScore:
    items = []
    for deadline in deadlines:
        days = days_until(now, deadline.due_at)
        if days < 0:
            items.append(RiskBreakdownItem(
                "deadline_overdue", 40, f'Deadline "{deadline.key}" is {abs(days)} day(s) overdue'
            ))
        elif days <= 3:
            items.append(RiskBreakdownItem(
                "deadline_within_3_days", 20, f'Deadline "{deadline.key}" is due in {days} day(s)'
            ))
        elif days <= 7:
            items.append(RiskBreakdownItem(
                "deadline_within_7_days", 10, f'Deadline "{deadline.key}" is due in {days} day(s)'
            ))
    return _worst(items)


def score_response_risk(
    discovery_deadlines: Sequence[DiscoveryResponseDeadline],
    now: datetime,
) -> CategoryScore:
    items = []
    for deadline in discovery_deadlines:
        if deadline.has_response:
            continue
        days = days_until(now, deadline.due_at)
        if days < 0:
            items.append(RiskBreakdownItem(
                "discovery_response_overdue", 50,
                f"Discovery response is {abs(days)} day(s) overdue with no response",
            ))
        elif days <= 3:
            items.append(RiskBreakdownItem(
                "discovery_response_due_soon", 30,
                f"Discovery response due in {days} day(s) with no response",
            ))
    return _worst(items)


def score_evidence_risk(materials: CaseMaterials) -> CategoryScore:
    items = []
    if materials.evidence_count < MIN_EVIDENCE_ITEMS:
        items.append(RiskBreakdownItem(
            "low_evidence_count", 15,
            f"Only {materials.evidence_count} evidence item(s) uploaded (recommend at least {MIN_EVIDENCE_ITEMS})",
        ))
    if materials.exhibit_set_count == 0:
        items.append(RiskBreakdownItem("no_exhibit_set", 10, "No exhibit set created"))
    if materials.exhibit_count < MIN_EXHIBITS:
        items.append(RiskBreakdownItem(
            "low_exhibit_count", 10,
            f"Only {materials.exhibit_count} exhibit(s) in set (recommend at least {MIN_EXHIBITS})",
        ))
    if materials.trial_binder_count == 0:
        items.append(RiskBreakdownItem("no_trial_binder", 5, "No trial binder generated"))
    return sum(item.points for item in items), items


def score_activity_risk(activity_times: Sequence[datetime], now: datetime) -> CategoryScore:
    if not activity_times:
        return 40, [RiskBreakdownItem("no_activity", 40, "No task events recorded")]

    days_since = days_until(max(activity_times), now)
    if days_since >= 30:
        return 40, [RiskBreakdownItem("inactive_30_days", 40, f"No activity in {days_since} days")]
    if days_since >= 14:
        return 20, [RiskBreakdownItem("inactive_14_days", 20, f"No activity in {days_since} days")]
    return 0, []


def to_risk_level(score: int) -> RiskLevel:
    if score >= 80:
        return RiskLevel.LOW
    if score >= 60:
        return RiskLevel.MODERATE
    if score >= 40:
        return RiskLevel.ELEVATED
    return RiskLevel.HIGH


def build_risk_input(
    deadlines: Sequence[DeadlineSnapshot],
    events: Sequence[CaseEvent],
    materials: CaseMaterials,
) -> RiskInput:
    """
    Split a case's deadlines into plain and discovery-response ones.

    A discovery response counts as received once any discovery_response_received
    event exists for the case.
    """
    has_response = any(event.kind == DISCOVERY_RESPONSE_EVENT for event in events)
    return RiskInput(
        deadlines=[d for d in deadlines if not d.key.startswith(DISCOVERY_DEADLINE_PREFIX)],
        activity_times=[event.created_at for event in events],
        materials=materials,
        discovery_response_deadlines=[
            DiscoveryResponseDeadline(due_at=d.due_at, has_response=has_response)
            for d in deadlines
            if d.key.startswith(DISCOVERY_DEADLINE_PREFIX)
        ],
    )


def calculate_case_risk(risk_input: RiskInput, now: datetime) -> RiskResult:
    deadline_score, deadline_items = score_deadline_risk(risk_input.deadlines, now)
    response_score, response_items = score_response_risk(risk_input.discovery_response_deadlines, now)
    evidence_score, evidence_items = score_evidence_risk(risk_input.materials)
    activity_score, activity_items = score_activity_risk(risk_input.activity_times, now)

    risk_points = deadline_score + response_score + evidence_score + activity_score
    overall = max(0, min(100, 100 - risk_points))

    return RiskResult(
        overall_score=overall,
        deadline_risk=deadline_score,
        response_risk=response_score,
        evidence_risk=evidence_score,
        activity_risk=activity_score,
        risk_level=to_risk_level(overall),
        breakdown=deadline_items + response_items + evidence_items + activity_items,
    )


def build_inputs_snapshot(risk_input: RiskInput, now: datetime) -> Dict[str, Any]:
    """Counts stored next to each score so a reader can see what it was computed from."""
    overdue = due_3 = due_7 = 0
    for deadline in risk_input.deadlines:
        days = days_until(now, deadline.due_at)
        if days < 0:
            overdue += 1
        elif days <= 3:
            due_3 += 1
            due_7 += 1
        elif days <= 7:
            due_7 += 1

    discovery_due_3 = sum(
        1 for d in risk_input.discovery_response_deadlines
        if not d.has_response and 0 <= days_until(now, d.due_at) <= 3
    )

    return {
        "overdue_deadlines": overdue,
        "due_within_3_days": due_3,
        "due_within_7_days": due_7,
        "evidence_count": risk_input.materials.evidence_count,
        "exhibit_count": risk_input.materials.exhibit_count,
        # -1 when the case has no events at all
        "days_since_last_activity": (
            days_until(max(risk_input.activity_times), now) if risk_input.activity_times else -1
        ),
        "discovery_due_within_3_days": discovery_due_3,
    }
