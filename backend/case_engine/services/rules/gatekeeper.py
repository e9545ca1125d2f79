"""
Gatekeeper Rules Engine

AUTHORITY: SYSTEM
Pure function that evaluates case state and returns actions to unlock or
complete tasks. Handles the non-linear task chain with branching (default
judgment vs contested case) and time-based triggers.

The rule table is evaluated once, in order, against a single immutable
snapshot. Later rules see the snapshot as loaded, not the state after earlier
actions, so a single call never chains rules (R1 unlock then R2 complete).
Multi-hop progress happens because the orchestrator re-runs the gatekeeper
after every persisted mutation and on the scheduled tick.

Every predicate re-checks the current status of the target task, so running
the table again over already-applied state yields no duplicate actions.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ...models.domain import (
    CompleteTask,
    DeadlineKey,
    DeadlineSnapshot,
    DocketOutcome,
    GatekeeperAction,
    TaskKey,
    TaskSnapshot,
    TaskStatus,
    UnlockTask,
)
from ...timeutils import ensure_utc


@dataclass(frozen=True)
class GatekeeperSnapshot:
    tasks: Tuple[TaskSnapshot, ...]
    deadlines: Tuple[DeadlineSnapshot, ...]
    now: datetime

    @classmethod
    def build(
        cls,
        tasks: Iterable[TaskSnapshot],
        deadlines: Iterable[DeadlineSnapshot],
        now: datetime,
    ) -> "GatekeeperSnapshot":
        return cls(tasks=tuple(tasks), deadlines=tuple(deadlines), now=ensure_utc(now))

    def task(self, key: str) -> Optional[TaskSnapshot]:
        return next((t for t in self.tasks if t.task_key == key), None)

    def deadline(self, key: str) -> Optional[DeadlineSnapshot]:
        return next((d for d in self.deadlines if d.key == key), None)


Predicate = Callable[[GatekeeperSnapshot], bool]
ActionBuilder = Callable[[GatekeeperSnapshot], GatekeeperAction]


@dataclass(frozen=True)
class GatekeeperRule:
    name: str
    conditions: Tuple[Predicate, ...]
    action: ActionBuilder
    description: str = field(default="", compare=False)

    def matches(self, snapshot: GatekeeperSnapshot) -> bool:
        return all(condition(snapshot) for condition in self.conditions)


# =============================================================================
# PREDICATES
# =============================================================================

def deadline_exists(key: str) -> Predicate:
    return lambda s: s.deadline(key) is not None


def deadline_passed(key: str) -> Predicate:
    def check(s: GatekeeperSnapshot) -> bool:
        deadline = s.deadline(key)
        return deadline is not None and s.now >= ensure_utc(deadline.due_at)
    return check


def task_status_in(key: str, *statuses: TaskStatus) -> Predicate:
    def check(s: GatekeeperSnapshot) -> bool:
        task = s.task(key)
        return task is not None and task.status in statuses
    return check


def docket_outcome_is(key: str, outcome: DocketOutcome) -> Predicate:
    def check(s: GatekeeperSnapshot) -> bool:
        task = s.task(key)
        return task is not None and task.docket_outcome == outcome
    return check


# =============================================================================
# ACTIONS
# =============================================================================

def unlock(task_key: str, due_at_from: Optional[str] = None) -> ActionBuilder:
    """Unlock a task, optionally carrying a deadline's due time onto it."""
    def build(s: GatekeeperSnapshot) -> GatekeeperAction:
        due_at = None
        if due_at_from is not None:
            deadline = s.deadline(due_at_from)
            due_at = deadline.due_at if deadline else None
        return UnlockTask(task_key=task_key, due_at=due_at)
    return build


def complete(task_key: str) -> ActionBuilder:
    return lambda s: CompleteTask(task_key=task_key)


# =============================================================================
# RULE TABLE
# =============================================================================

_CONFIRMED = DeadlineKey.ANSWER_DEADLINE_CONFIRMED.value
_WAIT = TaskKey.WAIT_FOR_ANSWER.value
_CHECK_DOCKET = TaskKey.CHECK_DOCKET_FOR_ANSWER.value
_DEFAULT_PACKET = TaskKey.DEFAULT_PACKET_PREP.value
_UPLOAD_ANSWER = TaskKey.UPLOAD_ANSWER.value
_DISCOVERY = TaskKey.DISCOVERY_STARTER_PACK.value

GATEKEEPER_RULES: Tuple[GatekeeperRule, ...] = (
    GatekeeperRule(
        name="R1",
        description="Unlock wait_for_answer once the answer deadline is confirmed",
        conditions=(
            deadline_exists(_CONFIRMED),
            task_status_in(_WAIT, TaskStatus.LOCKED),
        ),
        action=unlock(_WAIT, due_at_from=_CONFIRMED),
    ),
    GatekeeperRule(
        name="R2",
        description="Complete wait_for_answer when the confirmed deadline has passed",
        conditions=(
            deadline_passed(_CONFIRMED),
            task_status_in(_WAIT, TaskStatus.TODO, TaskStatus.IN_PROGRESS),
        ),
        action=complete(_WAIT),
    ),
    GatekeeperRule(
        name="R3",
        description="Unlock check_docket_for_answer when the confirmed deadline has passed",
        conditions=(
            deadline_passed(_CONFIRMED),
            task_status_in(_CHECK_DOCKET, TaskStatus.LOCKED),
        ),
        action=unlock(_CHECK_DOCKET),
    ),
    GatekeeperRule(
        name="R4",
        description="No answer on the docket: unlock default_packet_prep",
        conditions=(
            task_status_in(_CHECK_DOCKET, TaskStatus.COMPLETED),
            docket_outcome_is(_CHECK_DOCKET, DocketOutcome.NO_ANSWER),
            task_status_in(_DEFAULT_PACKET, TaskStatus.LOCKED),
        ),
        action=unlock(_DEFAULT_PACKET),
    ),
    GatekeeperRule(
        name="R5",
        description="Answer filed: unlock upload_answer",
        conditions=(
            task_status_in(_CHECK_DOCKET, TaskStatus.COMPLETED),
            docket_outcome_is(_CHECK_DOCKET, DocketOutcome.ANSWER_FILED),
            task_status_in(_UPLOAD_ANSWER, TaskStatus.LOCKED),
        ),
        action=unlock(_UPLOAD_ANSWER),
    ),
    GatekeeperRule(
        name="R6",
        description="Answer uploaded: unlock discovery_starter_pack",
        conditions=(
            task_status_in(_UPLOAD_ANSWER, TaskStatus.COMPLETED),
            task_status_in(_DISCOVERY, TaskStatus.LOCKED),
        ),
        action=unlock(_DISCOVERY),
    ),
)


def evaluate_gatekeeper_rules(
    snapshot: GatekeeperSnapshot,
    rules: Sequence[GatekeeperRule] = GATEKEEPER_RULES,
) -> List[GatekeeperAction]:
    """Single linear pass over the rule table. Zero side effects."""
    return [rule.action(snapshot) for rule in rules if rule.matches(snapshot)]
