"""
Case repository port.

The orchestrator talks to persistence only through this interface. The rules
engine never sees it. Implementations: SqlAlchemyCaseRepository (production)
and in-memory doubles in the test suite.

Rules for implementations:
1. transaction(case_id) is the unit of work: everything inside commits
   together or not at all, and holds an exclusive lock on the case.
2. Reads return domain snapshots, never ORM rows.
3. Writes raise on failure; the orchestrator decides what a failure means.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import ContextManager, Dict, List, Optional, Protocol, Sequence, Any

from ...models.domain import (
    CaseEvent,
    CaseMaterials,
    DeadlineSnapshot,
    DeadlineSource,
    EscalationAction,
    EscalationRecord,
    EscalationRule,
    HealthAlertAction,
    Reminder,
    RiskResult,
    ServiceFacts,
    TaskSnapshot,
)


class CaseRepository(Protocol):
    """Persistence collaborator for one unit of work at a time."""

    def transaction(self, case_id: Optional[str] = None) -> ContextManager[None]:
        """Open a unit of work, locking the case row when case_id is given."""
        ...

    # ---- cases --------------------------------------------------------------

    def case_exists(self, case_id: str) -> bool:
        ...

    def list_active_case_ids(self, offset: int, limit: int) -> List[str]:
        ...

    # ---- service facts ------------------------------------------------------

    def get_service_facts(self, case_id: str) -> Optional[ServiceFacts]:
        ...

    def upsert_service_facts(self, case_id: str, facts: ServiceFacts, confirmed_at: datetime) -> str:
        """Insert or replace the single facts row of a case. Returns its id."""
        ...

    # ---- tasks --------------------------------------------------------------

    def list_tasks(self, case_id: str) -> List[TaskSnapshot]:
        ...

    def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        ...

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> None:
        """Apply column changes (status, due_at, metadata, unlocked_at, completed_at)."""
        ...

    # ---- deadlines & reminders ----------------------------------------------

    def list_deadlines(self, case_id: str) -> List[DeadlineSnapshot]:
        ...

    def list_deadlines_due_between(self, start: datetime, end: datetime) -> List[DeadlineSnapshot]:
        ...

    def delete_deadlines(
        self,
        case_id: str,
        source: Optional[DeadlineSource] = None,
        keys: Optional[Sequence[str]] = None,
    ) -> int:
        """Delete matching deadlines together with their reminders. Returns rows deleted."""
        ...

    def insert_deadline(
        self,
        case_id: str,
        key: str,
        due_at: datetime,
        source: DeadlineSource,
        rationale: Optional[str] = None,
        calc_version: Optional[str] = None,
    ) -> DeadlineSnapshot:
        ...

    def insert_reminders(self, case_id: str, deadline_id: str, send_times: Sequence[datetime]) -> int:
        ...

    def list_reminders(self, case_id: str) -> List[Reminder]:
        ...

    # ---- escalations --------------------------------------------------------

    def list_escalation_rules(self) -> List[EscalationRule]:
        ...

    def list_escalations_for_deadlines(self, deadline_ids: Sequence[str]) -> List[EscalationRecord]:
        ...

    def insert_escalation(self, action: EscalationAction) -> str:
        ...

    def acknowledge_escalation(self, escalation_id: str) -> bool:
        """Set acknowledged=True. Returns False when the escalation does not exist."""
        ...

    # ---- case health --------------------------------------------------------

    def get_case_materials(self, case_id: str) -> CaseMaterials:
        """Evidence, exhibit and trial binder counts of a case."""
        ...

    def upsert_health_score(
        self,
        case_id: str,
        result: RiskResult,
        inputs_snapshot: Dict[str, Any],
        computed_at: datetime,
        model: str,
    ) -> str:
        """Store the score for the UTC day of computed_at, replacing that day's row. Returns its id."""
        ...

    def has_health_alert_on(self, case_id: str, day: date) -> bool:
        ...

    def insert_health_alert(self, action: HealthAlertAction) -> str:
        ...

    # ---- audit trail --------------------------------------------------------

    def list_events(self, case_ids: Sequence[str]) -> List[CaseEvent]:
        ...

    def append_event(
        self,
        case_id: str,
        kind: str,
        payload: Dict[str, Any],
        task_id: Optional[str] = None,
    ) -> None:
        ...
