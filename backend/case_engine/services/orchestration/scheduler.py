"""
Case Scheduler

AUTHORITY: SYSTEM
Cron sweeps over many cases. Runs without user intervention.

Key behaviors:
- Gatekeeper sweep re-evaluates every active case (time-based unlocks)
- Escalation sweep loads the deadline window once, evaluates all rules
  in one pass, then persists per case
- Health sweep scores every active case and alerts at most once per case per day
- Cases are processed in groups of batch_size, concurrently within a group
- A failing case is recorded in the summary and never aborts the batch
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from ...config import BATCH_SIZE, CASE_PAGE_SIZE
from ...errors import CaseEngineError, OrchestrationError
from ...models.domain import BatchSummary, EscalationAction
from ...timeutils import ensure_utc, to_iso, utc_now
from ..rules.escalation_engine import escalation_window, evaluate_escalations
from .case_locks import CaseLockRegistry, case_locks
from .case_progression import CaseProgressionService
from .ports import CaseRepository

logger = logging.getLogger(__name__)


RepositoryFactory = Callable[[], AbstractContextManager]


class CaseScheduler:
    """
    Batch runner for the cron endpoints.

    repository_factory returns a context manager yielding a CaseRepository.
    Each case gets its own repository, so workers never share a session.
    """

    def __init__(
        self,
        repository_factory: RepositoryFactory,
        batch_size: int = BATCH_SIZE,
        clock: Callable[[], datetime] = utc_now,
        locks: CaseLockRegistry = case_locks,
        page_size: int = CASE_PAGE_SIZE,
    ):
        self.repository_factory = repository_factory
        self.batch_size = max(1, batch_size)
        self.clock = clock
        self.locks = locks
        self.page_size = page_size

    def _service(self, repository: CaseRepository, now: datetime) -> CaseProgressionService:
        return CaseProgressionService(repository, clock=lambda: now, locks=self.locks)

    # =========================================================================
    # GATEKEEPER SWEEP
    # =========================================================================

    def run_gatekeeper_sweep(self, now: Optional[datetime] = None) -> BatchSummary:
        """
        Re-run the gatekeeper for every active case.

        Time-based rules (R2) only fire when someone evaluates them after the
        deadline passes; this sweep is that someone.
        """
        now = ensure_utc(now) if now is not None else ensure_utc(self.clock())
        summary = BatchSummary(job="gatekeeper_sweep", run_date=to_iso(now))

        case_ids = self._load_active_case_ids()
        summary.processed = len(case_ids)
        if not case_ids:
            summary.message = "No active cases"
            return summary

        def work(case_id: str):
            with self.repository_factory() as repository:
                return self._service(repository, now).run_gatekeeper(case_id, now)

        for case_id, result, error in self._run_batches(case_ids, work):
            if error is not None:
                summary.failed += 1
                summary.errors.append({"case_id": case_id, "error": error})
                continue

            if result.errors:
                summary.failed += 1
                summary.errors.append({
                    "case_id": case_id,
                    "error": "; ".join(f"{e['action']}: {e['error']}" for e in result.errors),
                })
            else:
                summary.succeeded += 1

            if result.actions_applied:
                summary.triggered += len(result.actions_applied)
                summary.details.append({"case_id": case_id, "actions_applied": list(result.actions_applied)})

        logger.info(
            f"Gatekeeper sweep: processed={summary.processed}, succeeded={summary.succeeded}, "
            f"failed={summary.failed}, actions={summary.triggered}"
        )
        return summary

    def _load_active_case_ids(self) -> List[str]:
        case_ids: List[str] = []
        offset = 0
        with self.repository_factory() as repository:
            while True:
                page = repository.list_active_case_ids(offset, self.page_size)
                case_ids.extend(page)
                if len(page) < self.page_size:
                    break
                offset += self.page_size
        return case_ids

    # =========================================================================
    # ESCALATION SWEEP
    # =========================================================================

    def run_escalation_sweep(self, now: Optional[datetime] = None) -> BatchSummary:
        """
        Evaluate escalation rules for deadlines coming due and persist new escalations.

        The read phase failing is fatal for the run (raises OrchestrationError);
        persistence failures are isolated per case.
        """
        now = ensure_utc(now) if now is not None else ensure_utc(self.clock())
        summary = BatchSummary(job="escalation_sweep", run_date=to_iso(now))

        try:
            with self.repository_factory() as repository:
                rules = repository.list_escalation_rules()
                window = escalation_window(rules, now)
                if window is None:
                    summary.message = "No escalation rules configured"
                    return summary

                deadlines = repository.list_deadlines_due_between(*window)
                if not deadlines:
                    summary.message = "No deadlines in escalation window"
                    return summary

                existing = repository.list_escalations_for_deadlines([d.id for d in deadlines])
                case_ids = list(dict.fromkeys(d.case_id for d in deadlines))
                events = repository.list_events(case_ids)
        except Exception as e:
            logger.error(f"Escalation sweep could not load its snapshot: {e}")
            raise OrchestrationError(f"Escalation sweep failed: {e}") from e

        actions = evaluate_escalations(rules, deadlines, existing, events, now)

        by_case: Dict[str, List[EscalationAction]] = {}
        for action in actions:
            by_case.setdefault(action.case_id, []).append(action)

        summary.processed = len(by_case)
        if not by_case:
            summary.message = "No escalations due"
            return summary

        def work(case_id: str):
            with self.repository_factory() as repository:
                return self._service(repository, now).apply_escalations(case_id, by_case[case_id])

        for case_id, written, error in self._run_batches(list(by_case), work):
            if error is not None:
                summary.failed += 1
                summary.errors.append({"case_id": case_id, "error": error})
                continue
            summary.succeeded += 1
            summary.triggered += len(written)
            for action in written:
                summary.details.append({
                    "case_id": case_id,
                    "deadline_id": action.deadline_id,
                    "level": action.escalation_level,
                })

        logger.info(
            f"Escalation sweep: cases={summary.processed}, escalations={summary.triggered}, "
            f"failed={summary.failed}"
        )
        return summary

    # =========================================================================
    # HEALTH SWEEP
    # =========================================================================

    def run_health_sweep(self, now: Optional[datetime] = None) -> BatchSummary:
        """
        Score every active case and raise health alerts for low scores.

        A case fails when its score cannot be computed or stored. A failed
        alert is logged only; the score is already saved.
        """
        now = ensure_utc(now) if now is not None else ensure_utc(self.clock())
        summary = BatchSummary(job="health_sweep", run_date=to_iso(now))

        case_ids = self._load_active_case_ids()
        summary.processed = len(case_ids)
        if not case_ids:
            summary.message = "No active cases"
            return summary

        def work(case_id: str):
            with self.repository_factory() as repository:
                service = self._service(repository, now)
                result = service.compute_case_health(case_id, now)
                try:
                    alert = service.apply_health_alert(case_id, result.overall_score, now)
                except CaseEngineError as e:
                    logger.error(f"Health alert for case {case_id} failed: {e}")
                    alert = None
                return result, alert

        for case_id, outcome, error in self._run_batches(case_ids, work):
            if error is not None:
                summary.failed += 1
                summary.errors.append({"case_id": case_id, "error": error})
                continue

            result, alert = outcome
            summary.succeeded += 1
            detail = {
                "case_id": case_id,
                "overall_score": result.overall_score,
                "risk_level": result.risk_level.value,
            }
            if alert is not None:
                summary.triggered += 1
                detail["alert_level"] = alert.escalation_level
            summary.details.append(detail)

        logger.info(
            f"Health sweep: processed={summary.processed}, succeeded={summary.succeeded}, "
            f"failed={summary.failed}, alerts={summary.triggered}"
        )
        return summary

    # =========================================================================
    # BATCHING
    # =========================================================================

    def _run_batches(self, case_ids: Sequence[str], work: Callable[[str], Any]):
        """
        Run work(case_id) for each case, batch_size at a time.

        Yields (case_id, result, error) in input order; error is the message
        of whatever the work raised, result is None in that case.
        """
        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for start in range(0, len(case_ids), self.batch_size):
                batch = case_ids[start:start + self.batch_size]
                futures = [(case_id, pool.submit(work, case_id)) for case_id in batch]

                for case_id, future in futures:
                    try:
                        outcome = (case_id, future.result(), None)
                    except Exception as e:
                        logger.error(f"Case {case_id} failed: {e}")
                        outcome = (case_id, None, str(e))
                    yield outcome
