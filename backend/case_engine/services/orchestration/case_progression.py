"""
Case Progression Service

Boundary glue between the pure rules engine and persistence.
Loads snapshots through the repository port, runs the rules, applies their
output as writes and records the case timeline.

Key behaviors:
- Every operation on a case holds that case's lock and runs in one unit of work
- System deadline regeneration is delete-all-then-insert inside one transaction
- The gatekeeper is re-run after every persisted mutation (no fixpoint loop)
- Gatekeeper actions and escalations are applied one by one; a failed action
  is reported and does not block the others
- Case health is stored as one score row per case per UTC day
"""
import logging
from contextlib import contextmanager
from datetime import datetime, tzinfo
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence

from ...errors import CaseEngineError, NotFoundError, OrchestrationError
from ...models.domain import (
    DOCKET_RESULT_FIELD,
    CompleteTask,
    DeadlineKey,
    DeadlineSource,
    DocketOutcome,
    EscalationAction,
    GatekeeperAction,
    GatekeeperRunResult,
    HealthAlertAction,
    RiskResult,
    ServiceFacts,
    TaskSnapshot,
    TaskStatus,
    UnlockTask,
)
from ...timeutils import ensure_utc, to_iso, utc_now
from ..rules.case_risk import RISK_MODEL, build_inputs_snapshot, build_risk_input, calculate_case_risk
from ..rules.deadline_calculator import CALC_VERSION, compute_deadlines_from_service_facts
from ..rules.gatekeeper import GATEKEEPER_RULES, GatekeeperRule, GatekeeperSnapshot, evaluate_gatekeeper_rules
from ..rules.health_alert import evaluate_health_alert
from ..rules.reminders import calculate_reminder_dates
from ..rules.task_state_machine import validate_transition
from .case_locks import CaseLockRegistry, case_locks
from .ports import CaseRepository

logger = logging.getLogger(__name__)


CONFIRMED_DEADLINE_RATIONALE = "Exact answer deadline confirmed by user from their citation."

# Task statuses each gatekeeper action may still be applied from
_ACTION_PRECONDITIONS = {
    UnlockTask: frozenset({TaskStatus.LOCKED}),
    CompleteTask: frozenset({TaskStatus.TODO, TaskStatus.IN_PROGRESS}),
}


class CaseProgressionService:
    """
    Applies rules-engine output to one case at a time.

    Usage:
        service = CaseProgressionService(SqlAlchemyCaseRepository(db))
        result = service.run_gatekeeper(case_id)
    """

    def __init__(
        self,
        repository: CaseRepository,
        clock: Callable[[], datetime] = utc_now,
        locks: CaseLockRegistry = case_locks,
        calendar: Optional[tzinfo] = None,
        rules: Sequence[GatekeeperRule] = GATEKEEPER_RULES,
    ):
        self.repository = repository
        self.clock = clock
        self.locks = locks
        self.calendar = calendar
        self.rules = rules

    @contextmanager
    def _unit_of_work(self, case_id: Optional[str], operation: str) -> Iterator[None]:
        """Transaction that turns unexpected persistence failures into OrchestrationError."""
        try:
            with self.repository.transaction(case_id):
                yield
        except CaseEngineError:
            raise
        except Exception as e:
            logger.error(f"{operation} failed for case {case_id}: {e}")
            raise OrchestrationError(f"{operation} failed: {e}", case_id=case_id) from e

    def _now(self, now: Optional[datetime] = None) -> datetime:
        return ensure_utc(now) if now is not None else ensure_utc(self.clock())

    # =========================================================================
    # SERVICE FACTS & SYSTEM DEADLINES
    # =========================================================================

    def confirm_service_facts(self, case_id: str, facts: ServiceFacts) -> Dict[str, Any]:
        """
        Upsert the case's service facts and regenerate its system deadlines.

        Reconfirming replaces every system deadline (and its reminders).
        """
        with self.locks.hold(case_id):
            now = self._now()
            with self._unit_of_work(case_id, "confirm_service_facts"):
                facts_id = self.repository.upsert_service_facts(case_id, facts, now)
                self.repository.append_event(case_id, "service_facts_confirmed", {
                    "service_facts_id": facts_id,
                    "served_at": str(facts.served_at) if facts.served_at else None,
                    "return_filed_at": str(facts.return_filed_at) if facts.return_filed_at else None,
                    "service_method": getattr(facts.service_method, "value", facts.service_method),
                    "served_to": facts.served_to,
                    "server_name": facts.server_name,
                })
                deadlines = self._regenerate_system_deadlines(case_id, facts, now)

            gatekeeper = self._gatekeeper_after_write(case_id, now)

        return {
            "service_facts_id": facts_id,
            "deadlines": deadlines,
            "gatekeeper": gatekeeper.to_dict(),
        }

    def recompute_system_deadlines(self, case_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Rebuild system deadlines from the stored service facts. Safe to retry."""
        with self.locks.hold(case_id):
            now = self._now(now)
            with self._unit_of_work(case_id, "recompute_system_deadlines"):
                facts = self.repository.get_service_facts(case_id) or ServiceFacts()
                deadlines = self._regenerate_system_deadlines(case_id, facts, now)

            gatekeeper = self._gatekeeper_after_write(case_id, now)

        return {"deadlines": deadlines, "gatekeeper": gatekeeper.to_dict()}

    def _regenerate_system_deadlines(
        self,
        case_id: str,
        facts: ServiceFacts,
        now: datetime,
    ) -> List[Dict[str, Any]]:
        """Full replace of SYSTEM deadlines. Must run inside a unit of work."""
        computed = compute_deadlines_from_service_facts(facts, self.calendar)

        deleted = self.repository.delete_deadlines(case_id, source=DeadlineSource.SYSTEM)

        created = []
        for deadline in computed:
            row = self.repository.insert_deadline(
                case_id,
                key=deadline.key,
                due_at=deadline.due_at,
                source=DeadlineSource.SYSTEM,
                rationale=deadline.rationale,
                calc_version=deadline.calc_version,
            )
            send_times = calculate_reminder_dates(deadline.due_at, now)
            reminders = self.repository.insert_reminders(case_id, row.id, send_times)
            created.append({
                "deadline_id": row.id,
                "key": deadline.key,
                "due_at": to_iso(deadline.due_at),
                "rationale": deadline.rationale,
                "calc_version": deadline.calc_version,
                "reminders_created": reminders,
            })

        self.repository.append_event(case_id, "deadlines_recomputed", {
            "deleted": deleted,
            "created": [d["key"] for d in created],
            "calc_version": CALC_VERSION,
        })
        logger.info(f"Regenerated system deadlines for case {case_id}: deleted={deleted}, created={len(created)}")

        return created

    # =========================================================================
    # USER / COURT DEADLINES
    # =========================================================================

    def confirm_answer_deadline(self, case_id: str, confirmed_due_at: datetime) -> Dict[str, Any]:
        """
        Record the exact answer deadline from the citation.

        Replaces the estimated and any previously confirmed answer deadline,
        schedules reminders and re-runs the gatekeeper (unlocks wait_for_answer).
        """
        with self.locks.hold(case_id):
            now = self._now()
            with self._unit_of_work(case_id, "confirm_answer_deadline"):
                self.repository.delete_deadlines(case_id, keys=[
                    DeadlineKey.ANSWER_DEADLINE_ESTIMATED.value,
                    DeadlineKey.ANSWER_DEADLINE_CONFIRMED.value,
                ])
                deadline = self.repository.insert_deadline(
                    case_id,
                    key=DeadlineKey.ANSWER_DEADLINE_CONFIRMED.value,
                    due_at=confirmed_due_at,
                    source=DeadlineSource.USER_CONFIRMED,
                    rationale=CONFIRMED_DEADLINE_RATIONALE,
                )
                send_times = calculate_reminder_dates(confirmed_due_at, now)
                reminders = self.repository.insert_reminders(case_id, deadline.id, send_times)
                self.repository.append_event(case_id, "answer_deadline_confirmed", {
                    "deadline_id": deadline.id,
                    "confirmed_due_at": to_iso(confirmed_due_at),
                    "reminders_created": reminders,
                })

            gatekeeper = self._gatekeeper_after_write(case_id, now)

        return {
            "deadline": _deadline_dict(deadline),
            "reminders": [to_iso(t) for t in send_times],
            "gatekeeper": gatekeeper.to_dict(),
        }

    def create_deadline(
        self,
        case_id: str,
        key: str,
        due_at: datetime,
        source: DeadlineSource = DeadlineSource.USER_CONFIRMED,
        rationale: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Add a user- or court-sourced deadline with its reminders."""
        source = DeadlineSource(source)
        if source == DeadlineSource.SYSTEM:
            raise ValueError("System deadlines are produced by the deadline calculator only")

        with self.locks.hold(case_id):
            now = self._now()
            with self._unit_of_work(case_id, "create_deadline"):
                deadline = self.repository.insert_deadline(
                    case_id, key=key, due_at=due_at, source=source, rationale=rationale,
                )
                send_times = calculate_reminder_dates(due_at, now)
                reminders = self.repository.insert_reminders(case_id, deadline.id, send_times)
                self.repository.append_event(case_id, "deadline_created", {
                    "deadline_id": deadline.id,
                    "key": key,
                    "due_at": to_iso(due_at),
                    "source": source.value,
                    "reminders_created": reminders,
                })

            gatekeeper = self._gatekeeper_after_write(case_id, now)

        return {
            "deadline": _deadline_dict(deadline),
            "reminders": [to_iso(t) for t in send_times],
            "gatekeeper": gatekeeper.to_dict(),
        }

    def list_deadlines(self, case_id: str) -> List[Dict[str, Any]]:
        """Deadlines ordered by due time, each with its reminders."""
        if not self.repository.case_exists(case_id):
            raise NotFoundError("Case", case_id)

        reminders_by_deadline: Dict[str, List[Dict[str, Any]]] = {}
        for reminder in self.repository.list_reminders(case_id):
            reminders_by_deadline.setdefault(reminder.deadline_id, []).append({
                "id": reminder.id,
                "channel": reminder.channel.value,
                "send_at": to_iso(reminder.send_at),
                "status": reminder.status.value,
            })

        deadlines = []
        for deadline in self.repository.list_deadlines(case_id):
            entry = _deadline_dict(deadline)
            entry["reminders"] = reminders_by_deadline.get(deadline.id, [])
            deadlines.append(entry)
        return deadlines

    # =========================================================================
    # TASKS
    # =========================================================================

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        User-driven status change, validated against the transition table.

        Metadata is merged into the task's existing metadata; the docket
        outcome must be one of DocketOutcome.
        """
        status = TaskStatus(status)
        task = self.repository.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        case_id = task.case_id

        with self.locks.hold(case_id):
            now = self._now()
            with self._unit_of_work(case_id, "update_task_status"):
                # Re-read under the case lock
                current = self.repository.get_task(task_id)
                if current is None:
                    raise NotFoundError("Task", task_id)
                validate_transition(current.status, status)

                changes: Dict[str, Any] = {"status": status}
                if status == TaskStatus.COMPLETED:
                    changes["completed_at"] = now
                if metadata:
                    DocketOutcome.parse(metadata.get(DOCKET_RESULT_FIELD))
                    changes["metadata"] = {**current.metadata, **metadata}

                self.repository.update_task(task_id, changes)
                self.repository.append_event(case_id, "task_status_changed", {
                    "from": current.status.value,
                    "to": status.value,
                    "task_key": current.task_key,
                }, task_id=task_id)

            gatekeeper = self._gatekeeper_after_write(case_id, now)
            updated = self.repository.get_task(task_id)

        return {"task": _task_dict(updated), "gatekeeper": gatekeeper.to_dict()}

    # =========================================================================
    # GATEKEEPER
    # =========================================================================

    def run_gatekeeper(self, case_id: str, now: Optional[datetime] = None) -> GatekeeperRunResult:
        """
        Load the case snapshot, evaluate the gatekeeper rules once, apply the actions.

        Each action is written in its own transaction so one failure does not
        block the rest; failures are reported in result.errors. Inside that
        transaction the task is re-read and the action is skipped when another
        writer has already moved it out of the status the rule saw.
        """
        with self.locks.hold(case_id):
            now = self._now(now)
            with self._unit_of_work(case_id, "gatekeeper snapshot"):
                tasks = self.repository.list_tasks(case_id)
                deadlines = self.repository.list_deadlines(case_id)

            snapshot = GatekeeperSnapshot.build(tasks, deadlines, now)
            actions = evaluate_gatekeeper_rules(snapshot, self.rules)
            result = GatekeeperRunResult(rules_evaluated=len(self.rules))

            if not actions:
                return result

            tasks_by_key: Dict[str, TaskSnapshot] = {}
            for task in tasks:
                tasks_by_key.setdefault(task.task_key, task)

            for action in actions:
                task = tasks_by_key.get(action.task_key)
                if task is None:
                    continue
                try:
                    with self.repository.transaction(case_id):
                        applied = self._apply_gatekeeper_action(case_id, task.id, action, now)
                except Exception as e:
                    logger.error(f"Gatekeeper action {action.label} failed for case {case_id}: {e}")
                    result.errors.append({"action": action.label, "error": str(e)})
                    continue
                if applied:
                    result.actions_applied.append(action.label)

            if result.actions_applied:
                with self._unit_of_work(case_id, "gatekeeper audit"):
                    self.repository.append_event(case_id, "gatekeeper_run", {
                        "actions_applied": list(result.actions_applied),
                        "evaluated_at": to_iso(now),
                    })
                logger.info(f"Gatekeeper applied {result.actions_applied} for case {case_id}")

        return result

    def _gatekeeper_after_write(self, case_id: str, now: datetime) -> GatekeeperRunResult:
        """Gatekeeper re-run following a committed write. A failure is reported; the write stands."""
        try:
            return self.run_gatekeeper(case_id, now)
        except CaseEngineError as e:
            logger.error(f"Gatekeeper re-run failed for case {case_id} after a committed write: {e}")
            return GatekeeperRunResult(
                rules_evaluated=len(self.rules),
                errors=[{"action": "gatekeeper", "error": str(e)}],
            )

    def _apply_gatekeeper_action(
        self,
        case_id: str,
        task_id: str,
        action: GatekeeperAction,
        now: datetime,
    ) -> bool:
        """Apply one action against the current task row. False when it no longer applies."""
        allowed = _ACTION_PRECONDITIONS.get(type(action))
        if allowed is None:
            raise TypeError(f"Unknown gatekeeper action: {action!r}")

        task = self.repository.get_task(task_id)
        if task is None or task.status not in allowed:
            logger.info(
                f"Gatekeeper action {action.label} skipped for case {case_id}: "
                f"task is now {task.status.value if task else 'missing'}"
            )
            return False

        if isinstance(action, UnlockTask):
            changes: Dict[str, Any] = {"status": TaskStatus.TODO, "unlocked_at": now}
            payload: Dict[str, Any] = {"task_key": action.task_key, "source": "gatekeeper"}
            if action.due_at is not None:
                changes["due_at"] = action.due_at
                payload["due_at"] = to_iso(action.due_at)
            self.repository.update_task(task.id, changes)
            self.repository.append_event(case_id, "task_unlocked", payload, task_id=task.id)

        elif isinstance(action, CompleteTask):
            self.repository.update_task(task.id, {"status": TaskStatus.COMPLETED, "completed_at": now})
            self.repository.append_event(case_id, "task_status_changed", {
                "task_key": action.task_key,
                "from": task.status.value,
                "to": TaskStatus.COMPLETED.value,
                "source": "gatekeeper",
            }, task_id=task.id)

        return True

    # =========================================================================
    # ESCALATIONS
    # =========================================================================

    def apply_escalations(self, case_id: str, actions: Sequence[EscalationAction]) -> List[EscalationAction]:
        """
        Persist evaluator output for one case with its audit events.

        Existing (deadline_id, level) pairs are re-checked under the case lock,
        so a concurrent sweep cannot double-fire. Returns the escalations written.
        """
        with self.locks.hold(case_id):
            with self._unit_of_work(case_id, "apply_escalations"):
                existing = {
                    (e.deadline_id, e.escalation_level)
                    for e in self.repository.list_escalations_for_deadlines(
                        sorted({a.deadline_id for a in actions})
                    )
                }
                written = []
                for action in actions:
                    key = (action.deadline_id, action.escalation_level)
                    if key in existing:
                        continue
                    self.repository.insert_escalation(action)
                    self.repository.append_event(case_id, "reminder_escalated", {
                        "deadline_id": action.deadline_id,
                        "escalation_level": action.escalation_level,
                        "message": action.message,
                    })
                    existing.add(key)
                    written.append(action)

        if written:
            logger.info(f"Escalations written for case {case_id}: {len(written)}")
        return written

    def acknowledge_escalation(self, escalation_id: str) -> None:
        """Mark one escalation acknowledged. Other levels for the same deadline can still fire."""
        with self._unit_of_work(None, "acknowledge_escalation"):
            if not self.repository.acknowledge_escalation(escalation_id):
                raise NotFoundError("Escalation", escalation_id)

    # =========================================================================
    # CASE HEALTH
    # =========================================================================

    def compute_case_health(self, case_id: str, now: Optional[datetime] = None) -> RiskResult:
        """
        Score the case and store the result as today's score row.

        Recomputing on the same UTC day overwrites that day's row.
        """
        now = self._now(now)
        with self.locks.hold(case_id):
            with self._unit_of_work(case_id, "compute_case_health"):
                risk_input = build_risk_input(
                    self.repository.list_deadlines(case_id),
                    self.repository.list_events([case_id]),
                    self.repository.get_case_materials(case_id),
                )
                result = calculate_case_risk(risk_input, now)
                self.repository.upsert_health_score(
                    case_id, result, build_inputs_snapshot(risk_input, now), now, model=RISK_MODEL,
                )

        logger.info(f"Case {case_id} health {result.overall_score} ({result.risk_level.value})")
        return result

    def apply_health_alert(
        self, case_id: str, overall_score: int, now: Optional[datetime] = None
    ) -> Optional[HealthAlertAction]:
        """Write a health alert for a low score unless the case already has one today."""
        now = self._now(now)
        action = evaluate_health_alert(case_id, overall_score, now)
        if action is None:
            return None

        with self.locks.hold(case_id):
            with self._unit_of_work(case_id, "apply_health_alert"):
                if self.repository.has_health_alert_on(case_id, now.date()):
                    return None
                self.repository.insert_health_alert(action)
                self.repository.append_event(case_id, "health_alert_triggered", {
                    "escalation_level": action.escalation_level,
                    "overall_score": overall_score,
                })

        logger.info(f"Health alert level {action.escalation_level} for case {case_id}")
        return action


def _deadline_dict(deadline) -> Dict[str, Any]:
    return {
        "id": deadline.id,
        "case_id": deadline.case_id,
        "key": deadline.key,
        "due_at": to_iso(deadline.due_at),
        "source": deadline.source.value,
    }


def _task_dict(task: Optional[TaskSnapshot]) -> Optional[Dict[str, Any]]:
    if task is None:
        return None
    return {
        "id": task.id,
        "case_id": task.case_id,
        "task_key": task.task_key,
        "status": task.status.value,
        "due_at": to_iso(task.due_at),
        "metadata": dict(task.metadata),
    }
