"""
Case Engine - Domain Models

Snapshots read by the rules engine and the actions it emits.
The rules engine consumes and produces only these structures; it never
touches ORM rows or the database session.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

from ..errors import InvalidMetadataError


# =============================================================================
# ENUMS
# =============================================================================

class TaskStatus(str, Enum):
    LOCKED = "locked"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    NEEDS_REVIEW = "needs_review"
    COMPLETED = "completed"
    SKIPPED = "skipped"


class DeadlineSource(str, Enum):
    """Provenance of a deadline. Only SYSTEM deadlines are owned by the engine."""
    SYSTEM = "system"
    USER_CONFIRMED = "user_confirmed"
    COURT_NOTICE = "court_notice"


class DocketOutcome(str, Enum):
    """Result of checking the docket after the answer deadline."""
    NO_ANSWER = "no_answer"
    ANSWER_FILED = "answer_filed"

    @classmethod
    def parse(cls, value: Any) -> Optional["DocketOutcome"]:
        """None when absent; raises InvalidMetadataError on anything outside the enum."""
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            raise InvalidMetadataError(
                DOCKET_RESULT_FIELD, value, [o.value for o in cls]
            ) from None

    @classmethod
    def from_metadata(cls, value: Any) -> Optional["DocketOutcome"]:
        """Lenient read of a stored value: anything outside the enum reads as no outcome."""
        try:
            return cls.parse(value)
        except InvalidMetadataError:
            return None


class ConditionType(str, Enum):
    ALWAYS = "always"
    NO_EVENT = "no_event"
    STATUS_NOT_CHANGED = "status_not_changed"


class ReminderChannel(str, Enum):
    EMAIL = "email"


class ReminderStatus(str, Enum):
    SCHEDULED = "scheduled"
    SENT = "sent"
    CANCELLED = "cancelled"


class ServiceMethod(str, Enum):
    PERSONAL = "personal"
    SUBSTITUTED = "substituted"
    CERTIFIED_MAIL = "certified_mail"
    PUBLICATION = "publication"
    OTHER = "other"


class CaseStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class TaskKey(str, Enum):
    """Tasks driven by the gatekeeper. Other task keys exist and are ignored by it."""
    WAIT_FOR_ANSWER = "wait_for_answer"
    CHECK_DOCKET_FOR_ANSWER = "check_docket_for_answer"
    DEFAULT_PACKET_PREP = "default_packet_prep"
    UPLOAD_ANSWER = "upload_answer"
    DISCOVERY_STARTER_PACK = "discovery_starter_pack"


class DeadlineKey(str, Enum):
    ANSWER_DEADLINE_ESTIMATED = "answer_deadline_estimated"
    ANSWER_DEADLINE_CONFIRMED = "answer_deadline_confirmed"
    DEFAULT_EARLIEST_INFO = "default_earliest_info"
    CHECK_DOCKET_AFTER_ANSWER_DEADLINE = "check_docket_after_answer_deadline"
    DISCOVERY_RESPONSE_DUE_CONFIRMED = "discovery_response_due_confirmed"


# Metadata field on check_docket_for_answer that selects the branch
DOCKET_RESULT_FIELD = "docket_result"


# =============================================================================
# INPUT SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class ServiceFacts:
    """User-confirmed facts about how and when the defendant was served."""
    served_at: Optional[date] = None
    return_filed_at: Optional[date] = None
    service_method: Optional[ServiceMethod] = None
    served_to: Optional[str] = None
    server_name: Optional[str] = None


@dataclass(frozen=True)
class TaskSnapshot:
    id: str
    task_key: str
    status: TaskStatus
    due_at: Optional[datetime] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)
    case_id: Optional[str] = None

    @property
    def docket_outcome(self) -> Optional[DocketOutcome]:
        return DocketOutcome.from_metadata(self.metadata.get(DOCKET_RESULT_FIELD))


@dataclass(frozen=True)
class DeadlineSnapshot:
    id: str
    key: str
    due_at: datetime
    source: DeadlineSource = DeadlineSource.SYSTEM
    case_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Reminder:
    id: str
    deadline_id: str
    send_at: datetime
    channel: ReminderChannel = ReminderChannel.EMAIL
    status: ReminderStatus = ReminderStatus.SCHEDULED


@dataclass(frozen=True)
class EscalationRule:
    """Static configuration: fire `level` when `offset_days` remain before a `deadline_key` deadline."""
    deadline_key: str
    level: int
    offset_days: int
    condition_type: ConditionType = ConditionType.ALWAYS
    condition_key: Optional[str] = None
    message_template: str = ""


@dataclass(frozen=True)
class EscalationRecord:
    """An escalation that already exists. Only (deadline_id, escalation_level) matters for dedup."""
    deadline_id: str
    escalation_level: int
    acknowledged: bool = False


@dataclass(frozen=True)
class CaseEvent:
    case_id: str
    kind: str
    created_at: datetime
    payload: Mapping[str, Any] = field(default_factory=dict)


# =============================================================================
# ENGINE OUTPUT
# =============================================================================

@dataclass(frozen=True)
class ComputedDeadline:
    key: str
    due_at: datetime
    rationale: str
    calc_version: str


@dataclass(frozen=True)
class UnlockTask:
    task_key: str
    due_at: Optional[datetime] = None

    @property
    def label(self) -> str:
        return f"unlock:{self.task_key}"


@dataclass(frozen=True)
class CompleteTask:
    task_key: str

    @property
    def label(self) -> str:
        return f"complete:{self.task_key}"


GatekeeperAction = Union[UnlockTask, CompleteTask]


@dataclass(frozen=True)
class EscalationAction:
    case_id: str
    deadline_id: str
    escalation_level: int
    message: str
    triggered_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "deadline_id": self.deadline_id,
            "escalation_level": self.escalation_level,
            "message": self.message,
            "triggered_at": self.triggered_at.isoformat(),
        }


# =============================================================================
# ORCHESTRATION RESULTS
# =============================================================================

@dataclass
class GatekeeperRunResult:
    actions_applied: List[str] = field(default_factory=list)
    # Size of the rule table consulted, not the number of actions produced
    rules_evaluated: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actions_applied": list(self.actions_applied),
            "rules_evaluated": self.rules_evaluated,
            "errors": list(self.errors),
        }


@dataclass
class BatchSummary:
    """Partial-success summary of a cron sweep."""
    job: str
    run_date: str
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    triggered: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)
    details: List[Dict[str, Any]] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "job": self.job,
            "run_date": self.run_date,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "triggered": self.triggered,
            "errors": list(self.errors),
            "details": list(self.details),
        }
        if self.message:
            result["message"] = self.message
        return result


# =============================================================================
# CASE HEALTH
# =============================================================================

class RiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    ELEVATED = "elevated"
    HIGH = "high"


@dataclass(frozen=True)
class CaseMaterials:
    """Counts of what the user has prepared. Written by the evidence and binder features."""
    evidence_count: int = 0
    exhibit_set_count: int = 0
    exhibit_count: int = 0
    trial_binder_count: int = 0


@dataclass(frozen=True)
class DiscoveryResponseDeadline:
    due_at: datetime
    has_response: bool = False


@dataclass(frozen=True)
class RiskInput:
    """Everything the risk engine reads. deadlines excludes discovery response deadlines."""
    deadlines: List[DeadlineSnapshot] = field(default_factory=list)
    activity_times: List[datetime] = field(default_factory=list)
    materials: CaseMaterials = field(default_factory=CaseMaterials)
    discovery_response_deadlines: List[DiscoveryResponseDeadline] = field(default_factory=list)


@dataclass(frozen=True)
class RiskBreakdownItem:
    rule: str
    points: int
    detail: str

    def to_dict(self) -> Dict[str, Any]:
        return {"rule": self.rule, "points": self.points, "detail": self.detail}


@dataclass(frozen=True)
class RiskResult:
    overall_score: int
    deadline_risk: int
    response_risk: int
    evidence_risk: int
    activity_risk: int
    risk_level: RiskLevel
    breakdown: List[RiskBreakdownItem] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "deadline_risk": self.deadline_risk,
            "response_risk": self.response_risk,
            "evidence_risk": self.evidence_risk,
            "activity_risk": self.activity_risk,
            "risk_level": self.risk_level.value,
            "breakdown": [item.to_dict() for item in self.breakdown],
        }


@dataclass(frozen=True)
class HealthAlertAction:
    """Case-level alert. Stored alongside deadline escalations with no deadline."""
    case_id: str
    escalation_level: int
    message: str
    triggered_at: datetime
    deadline_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "case_id": self.case_id,
            "deadline_id": self.deadline_id,
            "escalation_level": self.escalation_level,
            "message": self.message,
            "triggered_at": self.triggered_at.isoformat(),
        }
