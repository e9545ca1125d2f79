"""
SQLAlchemy implementation of the case repository port.

One instance wraps one Session and must not be shared across threads.
"""
import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from ...database import SessionLocal
from ...errors import NotFoundError
from ...models.db_models import (
    CaseDB,
    CaseRiskScoreDB,
    DeadlineDB,
    EscalationRuleDB,
    EvidenceItemDB,
    ExhibitDB,
    ExhibitSetDB,
    ReminderDB,
    ReminderEscalationDB,
    ServiceFactsDB,
    TaskDB,
    TaskEventDB,
    TrialBinderDB,
)
from ...models.domain import (
    DOCKET_RESULT_FIELD,
    CaseEvent,
    CaseMaterials,
    CaseStatus,
    ConditionType,
    DeadlineSnapshot,
    DeadlineSource,
    DocketOutcome,
    EscalationAction,
    EscalationRecord,
    EscalationRule,
    HealthAlertAction,
    Reminder,
    ReminderChannel,
    ReminderStatus,
    RiskResult,
    ServiceFacts,
    ServiceMethod,
    TaskSnapshot,
    TaskStatus,
)
from ...timeutils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def _value(v: Any) -> Any:
    """Enum members are stored by value."""
    return getattr(v, "value", v)


class SqlAlchemyCaseRepository:
    """Case repository backed by the ORM models in db_models."""

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    @contextmanager
    def transaction(self, case_id: Optional[str] = None) -> Iterator[None]:
        try:
            if case_id is not None:
                case = (
                    self.db.query(CaseDB)
                    .filter(CaseDB.id == case_id)
                    .with_for_update()
                    .first()
                )
                if case is None:
                    raise NotFoundError("Case", case_id)
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    # =========================================================================
    # CASES
    # =========================================================================

    def case_exists(self, case_id: str) -> bool:
        return self.db.query(CaseDB.id).filter(CaseDB.id == case_id).first() is not None

    def list_active_case_ids(self, offset: int, limit: int) -> List[str]:
        rows = (
            self.db.query(CaseDB.id)
            .filter(CaseDB.status == CaseStatus.ACTIVE.value)
            .order_by(CaseDB.id)
            .offset(offset)
            .limit(limit)
            .all()
        )
        return [row.id for row in rows]

    # =========================================================================
    # SERVICE FACTS
    # =========================================================================

    def get_service_facts(self, case_id: str) -> Optional[ServiceFacts]:
        row = self.db.query(ServiceFactsDB).filter(ServiceFactsDB.case_id == case_id).first()
        if row is None:
            return None
        return ServiceFacts(
            served_at=row.served_at,
            return_filed_at=row.return_filed_at,
            service_method=ServiceMethod(row.service_method) if row.service_method else None,
            served_to=row.served_to,
            server_name=row.server_name,
        )

    def upsert_service_facts(self, case_id: str, facts: ServiceFacts, confirmed_at: datetime) -> str:
        row = self.db.query(ServiceFactsDB).filter(ServiceFactsDB.case_id == case_id).first()
        if row is None:
            row = ServiceFactsDB(id=str(uuid4()), case_id=case_id)
            self.db.add(row)

        row.served_at = facts.served_at
        row.return_filed_at = facts.return_filed_at
        row.service_method = _value(facts.service_method)
        row.served_to = facts.served_to
        row.server_name = facts.server_name
        row.user_confirmed_at = ensure_utc(confirmed_at)
        self.db.flush()
        return row.id

    # =========================================================================
    # TASKS
    # =========================================================================

    @staticmethod
    def _task_snapshot(row: TaskDB) -> TaskSnapshot:
        metadata = dict(row.task_metadata or {})
        raw_outcome = metadata.get(DOCKET_RESULT_FIELD)
        if raw_outcome is not None and DocketOutcome.from_metadata(raw_outcome) is None:
            # Written by something other than update_task_status; the gatekeeper reads it as no outcome
            logger.warning(f"Task {row.id} has unrecognized {DOCKET_RESULT_FIELD}={raw_outcome!r}; ignoring it")
        return TaskSnapshot(
            id=row.id,
            task_key=row.task_key,
            status=TaskStatus(row.status),
            due_at=ensure_utc(row.due_at),
            metadata=metadata,
            case_id=row.case_id,
        )

    def list_tasks(self, case_id: str) -> List[TaskSnapshot]:
        rows = self.db.query(TaskDB).filter(TaskDB.case_id == case_id).order_by(TaskDB.created_at).all()
        return [self._task_snapshot(row) for row in rows]

    def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        row = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        return self._task_snapshot(row) if row else None

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> None:
        row = self.db.query(TaskDB).filter(TaskDB.id == task_id).first()
        if row is None:
            raise NotFoundError("Task", task_id)

        for name, value in changes.items():
            if name == "metadata":
                row.task_metadata = dict(value)
            elif name == "status":
                row.status = _value(value)
            elif name in ("due_at", "unlocked_at", "completed_at"):
                setattr(row, name, ensure_utc(value))
            else:
                raise ValueError(f"Unsupported task column: {name}")
        self.db.flush()

    # =========================================================================
    # DEADLINES & REMINDERS
    # =========================================================================

    @staticmethod
    def _deadline_snapshot(row: DeadlineDB) -> DeadlineSnapshot:
        return DeadlineSnapshot(
            id=row.id,
            key=row.key,
            due_at=ensure_utc(row.due_at),
            source=DeadlineSource(row.source),
            case_id=row.case_id,
            created_at=ensure_utc(row.created_at),
        )

    def list_deadlines(self, case_id: str) -> List[DeadlineSnapshot]:
        rows = (
            self.db.query(DeadlineDB)
            .filter(DeadlineDB.case_id == case_id)
            .order_by(DeadlineDB.due_at)
            .all()
        )
        return [self._deadline_snapshot(row) for row in rows]

    def list_deadlines_due_between(self, start: datetime, end: datetime) -> List[DeadlineSnapshot]:
        rows = (
            self.db.query(DeadlineDB)
            .filter(
                DeadlineDB.due_at >= ensure_utc(start),
                DeadlineDB.due_at <= ensure_utc(end),
            )
            .order_by(DeadlineDB.due_at)
            .all()
        )
        return [self._deadline_snapshot(row) for row in rows]

    def delete_deadlines(
        self,
        case_id: str,
        source: Optional[DeadlineSource] = None,
        keys: Optional[Sequence[str]] = None,
    ) -> int:
        query = self.db.query(DeadlineDB).filter(DeadlineDB.case_id == case_id)
        if source is not None:
            query = query.filter(DeadlineDB.source == _value(source))
        if keys is not None:
            query = query.filter(DeadlineDB.key.in_([_value(k) for k in keys]))

        rows = query.all()
        # Row-by-row delete so the ORM cascade removes reminders and escalations
        for row in rows:
            self.db.delete(row)
        self.db.flush()
        return len(rows)

    def insert_deadline(
        self,
        case_id: str,
        key: str,
        due_at: datetime,
        source: DeadlineSource,
        rationale: Optional[str] = None,
        calc_version: Optional[str] = None,
    ) -> DeadlineSnapshot:
        row = DeadlineDB(
            id=str(uuid4()),
            case_id=case_id,
            key=_value(key),
            due_at=ensure_utc(due_at),
            source=_value(source),
            rationale=rationale,
            calc_version=calc_version,
            created_at=utc_now(),
        )
        self.db.add(row)
        self.db.flush()
        return self._deadline_snapshot(row)

    def insert_reminders(self, case_id: str, deadline_id: str, send_times: Sequence[datetime]) -> int:
        for send_at in send_times:
            self.db.add(ReminderDB(
                id=str(uuid4()),
                case_id=case_id,
                deadline_id=deadline_id,
                channel=ReminderChannel.EMAIL.value,
                send_at=ensure_utc(send_at),
                status=ReminderStatus.SCHEDULED.value,
            ))
        self.db.flush()
        return len(send_times)

    def list_reminders(self, case_id: str) -> List[Reminder]:
        rows = (
            self.db.query(ReminderDB)
            .filter(ReminderDB.case_id == case_id)
            .order_by(ReminderDB.send_at)
            .all()
        )
        return [
            Reminder(
                id=row.id,
                deadline_id=row.deadline_id,
                send_at=ensure_utc(row.send_at),
                channel=ReminderChannel(row.channel),
                status=ReminderStatus(row.status),
            )
            for row in rows
        ]

    # =========================================================================
    # ESCALATIONS
    # =========================================================================

    def list_escalation_rules(self) -> List[EscalationRule]:
        rows = self.db.query(EscalationRuleDB).order_by(EscalationRuleDB.deadline_key, EscalationRuleDB.level).all()
        return [
            EscalationRule(
                deadline_key=row.deadline_key,
                level=row.level,
                offset_days=row.offset_days,
                condition_type=ConditionType(row.condition_type),
                condition_key=row.condition_key,
                message_template=row.message_template,
            )
            for row in rows
        ]

    def list_escalations_for_deadlines(self, deadline_ids: Sequence[str]) -> List[EscalationRecord]:
        if not deadline_ids:
            return []
        rows = (
            self.db.query(ReminderEscalationDB)
            .filter(ReminderEscalationDB.deadline_id.in_(list(deadline_ids)))
            .all()
        )
        return [
            EscalationRecord(
                deadline_id=row.deadline_id,
                escalation_level=row.escalation_level,
                acknowledged=bool(row.acknowledged),
            )
            for row in rows
        ]

    def insert_escalation(self, action: EscalationAction) -> str:
        row = ReminderEscalationDB(
            id=str(uuid4()),
            case_id=action.case_id,
            deadline_id=action.deadline_id,
            escalation_level=action.escalation_level,
            message=action.message,
            triggered_at=ensure_utc(action.triggered_at),
            acknowledged=False,
        )
        self.db.add(row)
        self.db.flush()
        return row.id

    def acknowledge_escalation(self, escalation_id: str) -> bool:
        row = self.db.query(ReminderEscalationDB).filter(ReminderEscalationDB.id == escalation_id).first()
        if row is None:
            return False
        row.acknowledged = True
        self.db.flush()
        return True

    # =========================================================================
    # CASE HEALTH
    # =========================================================================

    def get_case_materials(self, case_id: str) -> CaseMaterials:
        set_ids = [row.id for row in self.db.query(ExhibitSetDB.id).filter(ExhibitSetDB.case_id == case_id).all()]
        exhibit_count = 0
        if set_ids:
            exhibit_count = self.db.query(ExhibitDB).filter(ExhibitDB.exhibit_set_id.in_(set_ids)).count()
        return CaseMaterials(
            evidence_count=self.db.query(EvidenceItemDB).filter(EvidenceItemDB.case_id == case_id).count(),
            exhibit_set_count=len(set_ids),
            exhibit_count=exhibit_count,
            trial_binder_count=self.db.query(TrialBinderDB).filter(TrialBinderDB.case_id == case_id).count(),
        )

    def upsert_health_score(
        self,
        case_id: str,
        result: RiskResult,
        inputs_snapshot: Dict[str, Any],
        computed_at: datetime,
        model: str,
    ) -> str:
        computed_at = ensure_utc(computed_at)
        row = (
            self.db.query(CaseRiskScoreDB)
            .filter(
                CaseRiskScoreDB.case_id == case_id,
                CaseRiskScoreDB.computed_on == computed_at.date(),
            )
            .first()
        )
        if row is None:
            row = CaseRiskScoreDB(id=str(uuid4()), case_id=case_id, computed_on=computed_at.date())
            self.db.add(row)

        row.overall_score = result.overall_score
        row.deadline_risk = result.deadline_risk
        row.response_risk = result.response_risk
        row.evidence_risk = result.evidence_risk
        row.activity_risk = result.activity_risk
        row.risk_level = result.risk_level.value
        row.breakdown = [item.to_dict() for item in result.breakdown]
        row.inputs_snapshot = dict(inputs_snapshot)
        row.model = model
        row.computed_at = computed_at
        self.db.flush()
        return row.id

    def has_health_alert_on(self, case_id: str, day: date) -> bool:
        return (
            self.db.query(ReminderEscalationDB.id)
            .filter(
                ReminderEscalationDB.case_id == case_id,
                ReminderEscalationDB.health_alert_day == day,
            )
            .first()
            is not None
        )

    def insert_health_alert(self, action: HealthAlertAction) -> str:
        triggered_at = ensure_utc(action.triggered_at)
        row = ReminderEscalationDB(
            id=str(uuid4()),
            case_id=action.case_id,
            deadline_id=None,
            escalation_level=action.escalation_level,
            message=action.message,
            triggered_at=triggered_at,
            acknowledged=False,
            health_alert_day=triggered_at.date(),
        )
        self.db.add(row)
        self.db.flush()
        return row.id

    # =========================================================================
    # AUDIT TRAIL
    # =========================================================================

    def list_events(self, case_ids: Sequence[str]) -> List[CaseEvent]:
        if not case_ids:
            return []
        rows = (
            self.db.query(TaskEventDB)
            .filter(TaskEventDB.case_id.in_(list(case_ids)))
            .order_by(TaskEventDB.created_at)
            .all()
        )
        return [
            CaseEvent(
                case_id=row.case_id,
                kind=row.kind,
                created_at=ensure_utc(row.created_at),
                payload=dict(row.payload or {}),
            )
            for row in rows
        ]

    def append_event(
        self,
        case_id: str,
        kind: str,
        payload: Dict[str, Any],
        task_id: Optional[str] = None,
    ) -> None:
        self.db.add(TaskEventDB(
            id=str(uuid4()),
            case_id=case_id,
            task_id=task_id,
            kind=kind,
            payload=payload,
            created_at=utc_now(),
        ))
        self.db.flush()


@contextmanager
def repository_scope() -> Iterator[SqlAlchemyCaseRepository]:
    """Fresh session per unit of batch work. Used by the sweeps, one per case."""
    db = SessionLocal()
    try:
        yield SqlAlchemyCaseRepository(db)
    finally:
        db.close()
