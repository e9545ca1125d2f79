"""
Case Progression Rules

Pure, stateless computations. No database session, no clock reads beyond
the `now` passed in, no I/O. Safe to call from any number of threads.
"""

from .deadline_calculator import compute_deadlines_from_service_facts, CALC_VERSION
from .reminders import calculate_reminder_dates, REMINDER_OFFSETS_DAYS
from .task_state_machine import can_transition, validate_transition, STATE_CONFIG
from .gatekeeper import (
    evaluate_gatekeeper_rules,
    GatekeeperRule,
    GatekeeperSnapshot,
    GATEKEEPER_RULES,
)
from .escalation_engine import (
    evaluate_escalations,
    escalation_window,
    is_message_safe,
    BLOCKED_PHRASES,
    DEFAULT_ESCALATION_RULES,
)
from .case_risk import calculate_case_risk, build_risk_input, build_inputs_snapshot, RISK_MODEL
from .health_alert import evaluate_health_alert

__all__ = [
    'compute_deadlines_from_service_facts',
    'CALC_VERSION',
    'calculate_reminder_dates',
    'REMINDER_OFFSETS_DAYS',
    'can_transition',
    'validate_transition',
    'STATE_CONFIG',
    'evaluate_gatekeeper_rules',
    'GatekeeperRule',
    'GatekeeperSnapshot',
    'GATEKEEPER_RULES',
    'evaluate_escalations',
    'escalation_window',
    'is_message_safe',
    'BLOCKED_PHRASES',
    'DEFAULT_ESCALATION_RULES',
    'calculate_case_risk',
    'build_risk_input',
    'build_inputs_snapshot',
    'RISK_MODEL',
    'evaluate_health_alert',
]
