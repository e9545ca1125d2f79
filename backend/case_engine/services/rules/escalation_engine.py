"""
Escalation Evaluator

AUTHORITY: SYSTEM
Decides which multi-level reminder escalations fire for deadlines that are
coming due. Pure: reads its argument snapshot, performs no writes.

Key behaviors:
- Only deadlines inside [now, now + max(offset_days) + 1 day] are considered
- A rule fires when the whole calendar days left (UTC dates) equal its offset_days
- Dedup key is (deadline_id, escalation_level); acknowledgment is irrelevant
- no_event / status_not_changed rules are suppressed once the condition_key
  event has been recorded for the case after the deadline was created
- Rendered messages containing blocked phrases are dropped
"""
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from ...models.domain import (
    CaseEvent,
    ConditionType,
    DeadlineSnapshot,
    EscalationAction,
    EscalationRecord,
    EscalationRule,
)
from ...timeutils import ensure_utc

logger = logging.getLogger(__name__)


DUE_DATE_PLACEHOLDER = "{due_date}"

# Phrases that read as legal advice or threats; never sent to a user
BLOCKED_PHRASES: Tuple[str, ...] = (
    "you must",
    "file immediately",
    "sanctions",
    "legal penalty",
    "automatic judgment",
    "guaranteed outcome",
)


def is_message_safe(message: str) -> bool:
    lower = message.lower()
    return not any(phrase in lower for phrase in BLOCKED_PHRASES)


def days_until(from_: datetime, to: datetime) -> int:
    """Whole calendar days between two instants, using their UTC dates."""
    return (ensure_utc(to).date() - ensure_utc(from_).date()).days


def format_due_date(due_at: datetime) -> str:
    """March 15, 2026 (UTC date)."""
    due_at = ensure_utc(due_at)
    return f"{due_at:%B} {due_at.day}, {due_at.year}"


def render_message(template: str, due_at: datetime) -> str:
    return template.replace(DUE_DATE_PLACEHOLDER, format_due_date(due_at), 1)


def escalation_window(
    rules: Sequence[EscalationRule],
    now: datetime,
) -> Optional[Tuple[datetime, datetime]]:
    """
    Range of due times worth loading for these rules.

    Returns None when there are no rules (nothing can fire).
    """
    if not rules:
        return None
    now = ensure_utc(now)
    max_offset = max(rule.offset_days for rule in rules)
    return now, now + timedelta(days=max_offset + 1)


def check_condition(
    rule: EscalationRule,
    deadline: DeadlineSnapshot,
    events: Iterable[CaseEvent],
) -> bool:
    """
    True when the escalation should fire.

    Both no_event and status_not_changed fire while the condition_key event is
    absent from the case timeline since the deadline was created.
    """
    if ConditionType(rule.condition_type) == ConditionType.ALWAYS:
        return True

    if not rule.condition_key:
        return True

    created_at = ensure_utc(deadline.created_at)
    if created_at is None:
        # No anchor to compare events against; never suppress
        return True

    for event in events:
        if event.case_id != deadline.case_id or event.kind != rule.condition_key:
            continue
        if ensure_utc(event.created_at) >= created_at:
            return False

    return True


def evaluate_escalations(
    rules: Sequence[EscalationRule],
    deadlines: Sequence[DeadlineSnapshot],
    existing_escalations: Iterable[EscalationRecord],
    events: Sequence[CaseEvent],
    now: datetime,
) -> List[EscalationAction]:
    """
    Evaluate escalation rules against deadlines coming due.

    Returns new escalation actions only; never one for a (deadline_id, level)
    pair already present in existing_escalations.
    """
    window = escalation_window(rules, now)
    if window is None:
        return []

    window_start, window_end = window
    fired: Set[Tuple[str, int]] = {
        (e.deadline_id, e.escalation_level) for e in existing_escalations
    }
    actions: List[EscalationAction] = []

    for deadline in deadlines:
        due_at = ensure_utc(deadline.due_at)
        if due_at < window_start or due_at > window_end:
            continue

        days = days_until(window_start, due_at)
        if days < 0:
            continue

        matching_rules = [
            r for r in rules
            if r.deadline_key == deadline.key and r.offset_days == days
        ]

        for rule in matching_rules:
            if (deadline.id, rule.level) in fired:
                continue

            if not check_condition(rule, deadline, events):
                continue

            message = render_message(rule.message_template, due_at)

            if not is_message_safe(message):
                logger.warning(
                    f"Blocked unsafe message for deadline {deadline.id} level {rule.level}: \"{message}\""
                )
                continue

            fired.add((deadline.id, rule.level))
            actions.append(EscalationAction(
                case_id=deadline.case_id,
                deadline_id=deadline.id,
                escalation_level=rule.level,
                message=message,
                triggered_at=window_start,
            ))

    return actions


# =============================================================================
# DEFAULT RULE SET
# =============================================================================

# Seeded into escalation_rules by scripts/seed_escalation_rules.py
DEFAULT_ESCALATION_RULES: Tuple[EscalationRule, ...] = (
    EscalationRule(
        deadline_key="answer_deadline_confirmed", level=1, offset_days=7,
        message_template="Your answer deadline is on {due_date}. Start preparing your response.",
    ),
    EscalationRule(
        deadline_key="answer_deadline_confirmed", level=2, offset_days=3,
        condition_type=ConditionType.NO_EVENT, condition_key="answer_filed",
        message_template="Your answer deadline is on {due_date}. No answer has been filed yet.",
    ),
    EscalationRule(
        deadline_key="answer_deadline_confirmed", level=3, offset_days=1,
        condition_type=ConditionType.NO_EVENT, condition_key="answer_filed",
        message_template=(
            "URGENT: Your answer deadline is tomorrow ({due_date}). "
            "Missing this deadline may result in a default judgment."
        ),
    ),
    EscalationRule(
        deadline_key="discovery_response_due_confirmed", level=1, offset_days=7,
        message_template="Discovery responses are due on {due_date}. Review what you need to prepare.",
    ),
    EscalationRule(
        deadline_key="discovery_response_due_confirmed", level=2, offset_days=3,
        condition_type=ConditionType.NO_EVENT, condition_key="discovery_response_uploaded",
        message_template="Discovery responses are due on {due_date}. No responses have been uploaded yet.",
    ),
    EscalationRule(
        deadline_key="discovery_response_due_confirmed", level=3, offset_days=1,
        condition_type=ConditionType.NO_EVENT, condition_key="discovery_response_uploaded",
        message_template=(
            "URGENT: Discovery responses are due tomorrow ({due_date}). "
            "Prepare and upload your responses now."
        ),
    ),
)
