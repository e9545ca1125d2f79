"""
Health Alert Evaluator

AUTHORITY: SYSTEM
Turns a case health score into a priority alert. Alerts are stored with the
deadline escalations but carry no deadline; at most one per case per UTC day.
"""
import logging
from datetime import datetime
from typing import Optional

from ...models.domain import HealthAlertAction
from ...timeutils import ensure_utc
from .escalation_engine import is_message_safe

logger = logging.getLogger(__name__)


LEVEL_3_MAX_SCORE = 49
LEVEL_2_MAX_SCORE = 69

LEVEL_3_MESSAGE = "Your case health is low right now. Review deadlines and recent activity."
LEVEL_2_MESSAGE = "Your case health needs attention. Check upcoming deadlines and pending tasks."


def evaluate_health_alert(case_id: str, overall_score: int, now: datetime) -> Optional[HealthAlertAction]:
    """Level 3 at or below 49, level 2 at or below 69, otherwise nothing."""
    if overall_score <= LEVEL_3_MAX_SCORE:
        level, message = 3, LEVEL_3_MESSAGE
    elif overall_score <= LEVEL_2_MAX_SCORE:
        level, message = 2, LEVEL_2_MESSAGE
    else:
        return None

    if not is_message_safe(message):
        logger.warning(f"Blocked unsafe health alert message for case {case_id}")
        return None

    return HealthAlertAction(
        case_id=case_id,
        escalation_level=level,
        message=message,
        triggered_at=ensure_utc(now),
    )
