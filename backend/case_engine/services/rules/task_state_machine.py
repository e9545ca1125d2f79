"""
Task Status Machine

Transition table for checklist tasks.
User-driven changes are validated here at the boundary. The gatekeeper only
ever performs two system transitions: locked -> todo (unlock) and
todo|in_progress -> completed (auto-complete).
"""
from typing import Any, Dict, List, Tuple

from ...errors import InvalidTransitionError
from ...models.domain import TaskStatus


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# - USER transitions: listed in "allowed_transitions", validated on every update
# - SYSTEM transitions: listed in "system_transitions", performed by the gatekeeper
#
# =============================================================================

STATE_CONFIG: Dict[TaskStatus, Dict[str, Any]] = {
    TaskStatus.LOCKED: {
        "description": "Not yet actionable; waiting on a prerequisite",
        "allowed_transitions": [],
        "system_transitions": [TaskStatus.TODO],
    },
    TaskStatus.TODO: {
        "description": "Actionable, not started",
        "allowed_transitions": [TaskStatus.IN_PROGRESS, TaskStatus.SKIPPED],
        "system_transitions": [TaskStatus.COMPLETED],
    },
    TaskStatus.IN_PROGRESS: {
        "description": "Started by the user",
        "allowed_transitions": [
            TaskStatus.NEEDS_REVIEW,
            TaskStatus.COMPLETED,
            TaskStatus.SKIPPED,
        ],
        "system_transitions": [TaskStatus.COMPLETED],
    },
    TaskStatus.NEEDS_REVIEW: {
        "description": "Waiting for the user to review the result",
        "allowed_transitions": [TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS],
        "system_transitions": [],
    },
    TaskStatus.COMPLETED: {
        "description": "Done",
        "allowed_transitions": [],  # Terminal state
        "system_transitions": [],
    },
    TaskStatus.SKIPPED: {
        "description": "Skipped by the user; may be reopened",
        "allowed_transitions": [TaskStatus.TODO],
        "system_transitions": [],
    },
}


def allowed_transitions(from_status: TaskStatus) -> List[TaskStatus]:
    return list(STATE_CONFIG.get(TaskStatus(from_status), {}).get("allowed_transitions", []))


def can_transition(from_status: TaskStatus, to_status: TaskStatus) -> Tuple[bool, str]:
    """
    Check if a user-driven transition is allowed.

    Returns (allowed, reason)
    """
    from_status = TaskStatus(from_status)
    to_status = TaskStatus(to_status)

    if to_status in allowed_transitions(from_status):
        return True, "Transition allowed"

    return False, f"Cannot transition from {from_status.value} to {to_status.value}"


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> None:
    """Raise InvalidTransitionError unless the user may move from_status -> to_status."""
    allowed, _ = can_transition(from_status, to_status)
    if not allowed:
        raise InvalidTransitionError(
            TaskStatus(from_status).value,
            TaskStatus(to_status).value,
            [s.value for s in allowed_transitions(from_status)],
        )


def is_system_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    config = STATE_CONFIG.get(TaskStatus(from_status), {})
    return TaskStatus(to_status) in config.get("system_transitions", [])


def is_terminal_state(status: TaskStatus) -> bool:
    """Terminal when neither the user nor the system can move it further."""
    config = STATE_CONFIG.get(TaskStatus(status), {})
    return not config.get("allowed_transitions") and not config.get("system_transitions")
