"""Case Engine - Data Models"""
from .domain import (
    # Enums
    TaskStatus, DeadlineSource, DocketOutcome, ConditionType, ReminderChannel,
    ReminderStatus, ServiceMethod, CaseStatus, TaskKey, DeadlineKey,
    # Input snapshots
    ServiceFacts, TaskSnapshot, DeadlineSnapshot, Reminder, EscalationRule,
    EscalationRecord, CaseEvent,
    # Engine output
    ComputedDeadline, UnlockTask, CompleteTask, GatekeeperAction, EscalationAction,
    # Orchestration results
    GatekeeperRunResult, BatchSummary,
    # Case health
    RiskLevel, CaseMaterials, DiscoveryResponseDeadline, RiskInput, RiskBreakdownItem,
    RiskResult, HealthAlertAction,
)

__all__ = [
    "TaskStatus", "DeadlineSource", "DocketOutcome", "ConditionType", "ReminderChannel",
    "ReminderStatus", "ServiceMethod", "CaseStatus", "TaskKey", "DeadlineKey",
    "ServiceFacts", "TaskSnapshot", "DeadlineSnapshot", "Reminder", "EscalationRule",
    "EscalationRecord", "CaseEvent",
    "ComputedDeadline", "UnlockTask", "CompleteTask", "GatekeeperAction", "EscalationAction",
    "GatekeeperRunResult", "BatchSummary",
    "RiskLevel", "CaseMaterials", "DiscoveryResponseDeadline", "RiskInput", "RiskBreakdownItem",
    "RiskResult", "HealthAlertAction",
]
