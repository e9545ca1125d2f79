"""
Shared fixtures.

DATABASE_URL is pointed at SQLite before case_engine.database is imported,
so no test needs a PostgreSQL server.
"""
import copy
import os
import threading
from contextlib import contextmanager, nullcontext
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import uuid4

os.environ["DATABASE_URL"] = "sqlite://"

import pytest

from case_engine.errors import NotFoundError
from case_engine.models.domain import (
    CaseEvent,
    CaseMaterials,
    CaseStatus,
    DeadlineSnapshot,
    DeadlineSource,
    EscalationAction,
    EscalationRecord,
    EscalationRule,
    HealthAlertAction,
    Reminder,
    ServiceFacts,
    TaskKey,
    TaskSnapshot,
    TaskStatus,
)
from case_engine.services.orchestration.case_locks import CaseLockRegistry


def utc(year, month, day, hour=0, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class InMemoryCaseRepository:
    """
    CaseRepository double backed by dicts.

    transaction() snapshots the whole store and restores it on error, so
    rollback behaviour can be asserted. fail_when maps a method name to a
    predicate over its arguments; when the predicate is true the call raises.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0
        self.cases: Dict[str, str] = {}
        self.facts: Dict[str, ServiceFacts] = {}
        self.tasks: Dict[str, TaskSnapshot] = {}
        self.task_stamps: Dict[str, Dict[str, Any]] = {}
        self.deadlines: Dict[str, DeadlineSnapshot] = {}
        self.deadline_info: Dict[str, Dict[str, Any]] = {}
        self.reminders: Dict[str, Reminder] = {}
        self.reminder_cases: Dict[str, str] = {}
        self.rules: List[EscalationRule] = []
        self.escalations: Dict[str, Dict[str, Any]] = {}
        self.events: List[Dict[str, Any]] = []
        self.materials: Dict[str, CaseMaterials] = {}
        self.health_scores: Dict[tuple, Dict[str, Any]] = {}
        self.health_alerts: Dict[str, HealthAlertAction] = {}
        self.fail_when: Dict[str, Callable[..., bool]] = {}
        self.commits = 0
        self.rollbacks = 0

    # ---- test helpers --------------------------------------------------------

    def add_case(self, case_id: Optional[str] = None, status: str = CaseStatus.ACTIVE.value) -> str:
        case_id = case_id or str(uuid4())
        self.cases[case_id] = status
        return case_id

    def add_task(self, case_id, task_key, status=TaskStatus.LOCKED, metadata=None, due_at=None) -> str:
        task_id = str(uuid4())
        self.tasks[task_id] = TaskSnapshot(
            id=task_id,
            task_key=getattr(task_key, "value", task_key),
            status=TaskStatus(status),
            due_at=due_at,
            metadata=dict(metadata or {}),
            case_id=case_id,
        )
        self.task_stamps[task_id] = {}
        return task_id

    def seed_default_tasks(self, case_id) -> Dict[str, str]:
        return {key.value: self.add_task(case_id, key) for key in TaskKey}

    def add_deadline(self, case_id, key, due_at, source=DeadlineSource.USER_CONFIRMED, created_at=None) -> str:
        return self.insert_deadline(case_id, key, due_at, source, created_at=created_at).id

    def task_by_key(self, case_id, task_key) -> TaskSnapshot:
        key = getattr(task_key, "value", task_key)
        return next(t for t in self.tasks.values() if t.case_id == case_id and t.task_key == key)

    def deadlines_for(self, case_id) -> List[DeadlineSnapshot]:
        return sorted(
            (d for d in self.deadlines.values() if d.case_id == case_id),
            key=lambda d: d.due_at,
        )

    def event_kinds(self, case_id) -> List[str]:
        return [e["kind"] for e in self.events if e["case_id"] == case_id]

    def _check(self, name, *args):
        predicate = self.fail_when.get(name)
        if predicate is not None and predicate(*args):
            raise RuntimeError(f"{name} failed")

    def _state(self):
        return copy.deepcopy({
            k: v for k, v in self.__dict__.items()
            if k not in ("_lock", "_depth", "fail_when", "commits", "rollbacks")
        })

    # ---- port ----------------------------------------------------------------

    @contextmanager
    def transaction(self, case_id=None):
        with self._lock:
            if case_id is not None and case_id not in self.cases:
                raise NotFoundError("Case", case_id)
            saved = self._state() if self._depth == 0 else None
            self._depth += 1
            try:
                yield
            except Exception:
                if saved is not None:
                    self.__dict__.update(saved)
                    self.rollbacks += 1
                raise
            else:
                if saved is not None:
                    self.commits += 1
            finally:
                self._depth -= 1

    def case_exists(self, case_id):
        return case_id in self.cases

    def list_active_case_ids(self, offset, limit):
        active = sorted(c for c, status in self.cases.items() if status == CaseStatus.ACTIVE.value)
        return active[offset:offset + limit]

    def get_service_facts(self, case_id):
        return self.facts.get(case_id)

    def upsert_service_facts(self, case_id, facts, confirmed_at):
        self._check("upsert_service_facts", case_id)
        self.facts[case_id] = facts
        return f"facts-{case_id}"

    def list_tasks(self, case_id):
        return [t for t in self.tasks.values() if t.case_id == case_id]

    def get_task(self, task_id):
        return self.tasks.get(task_id)

    def update_task(self, task_id, changes):
        self._check("update_task", task_id, changes)
        task = self.tasks.get(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        fields = {}
        for name, value in changes.items():
            if name == "status":
                fields["status"] = TaskStatus(value)
            elif name == "metadata":
                fields["metadata"] = dict(value)
            elif name == "due_at":
                fields["due_at"] = value
            else:
                self.task_stamps[task_id][name] = value
        self.tasks[task_id] = replace(task, **fields)

    def list_deadlines(self, case_id):
        return self.deadlines_for(case_id)

    def list_deadlines_due_between(self, start, end):
        return sorted(
            (d for d in self.deadlines.values() if start <= d.due_at <= end),
            key=lambda d: d.due_at,
        )

    def delete_deadlines(self, case_id, source=None, keys=None):
        self._check("delete_deadlines", case_id)
        doomed = [
            d.id for d in self.deadlines.values()
            if d.case_id == case_id
            and (source is None or d.source == source)
            and (keys is None or d.key in keys)
        ]
        for deadline_id in doomed:
            del self.deadlines[deadline_id]
            self.deadline_info.pop(deadline_id, None)
            for reminder_id in [r.id for r in self.reminders.values() if r.deadline_id == deadline_id]:
                del self.reminders[reminder_id]
                del self.reminder_cases[reminder_id]
            for escalation_id in [
                e_id for e_id, e in self.escalations.items() if e["action"].deadline_id == deadline_id
            ]:
                del self.escalations[escalation_id]
        return len(doomed)

    def insert_deadline(self, case_id, key, due_at, source, rationale=None, calc_version=None, created_at=None):
        self._check("insert_deadline", case_id, key)
        deadline = DeadlineSnapshot(
            id=str(uuid4()),
            key=getattr(key, "value", key),
            due_at=due_at.astimezone(timezone.utc),
            source=DeadlineSource(source),
            case_id=case_id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.deadlines[deadline.id] = deadline
        self.deadline_info[deadline.id] = {"rationale": rationale, "calc_version": calc_version}
        return deadline

    def insert_reminders(self, case_id, deadline_id, send_times):
        self._check("insert_reminders", case_id, deadline_id)
        for send_at in send_times:
            reminder = Reminder(id=str(uuid4()), deadline_id=deadline_id, send_at=send_at)
            self.reminders[reminder.id] = reminder
            self.reminder_cases[reminder.id] = case_id
        return len(send_times)

    def list_reminders(self, case_id):
        return sorted(
            (r for r_id, r in self.reminders.items() if self.reminder_cases[r_id] == case_id),
            key=lambda r: r.send_at,
        )

    def list_escalation_rules(self):
        self._check("list_escalation_rules")
        return list(self.rules)

    def list_escalations_for_deadlines(self, deadline_ids):
        ids = set(deadline_ids)
        return [
            EscalationRecord(
                deadline_id=e["action"].deadline_id,
                escalation_level=e["action"].escalation_level,
                acknowledged=e["acknowledged"],
            )
            for e in self.escalations.values()
            if e["action"].deadline_id in ids
        ]

    def insert_escalation(self, action: EscalationAction):
        self._check("insert_escalation", action)
        escalation_id = str(uuid4())
        self.escalations[escalation_id] = {"action": action, "acknowledged": False}
        return escalation_id

    def acknowledge_escalation(self, escalation_id):
        escalation = self.escalations.get(escalation_id)
        if escalation is None:
            return False
        escalation["acknowledged"] = True
        return True

    # ---- case health ---------------------------------------------------------

    def get_case_materials(self, case_id):
        return self.materials.get(case_id, CaseMaterials())

    def upsert_health_score(self, case_id, result, inputs_snapshot, computed_at, model):
        self._check("upsert_health_score", case_id)
        key = (case_id, computed_at.date())
        row = self.health_scores.get(key)
        score_id = row["id"] if row else str(uuid4())
        self.health_scores[key] = {
            "id": score_id,
            "case_id": case_id,
            **result.to_dict(),
            "inputs_snapshot": dict(inputs_snapshot),
            "model": model,
            "computed_at": computed_at,
        }
        return score_id

    def has_health_alert_on(self, case_id, day: date):
        return any(
            a.case_id == case_id and a.triggered_at.date() == day
            for a in self.health_alerts.values()
        )

    def insert_health_alert(self, action: HealthAlertAction):
        self._check("insert_health_alert", action)
        alert_id = str(uuid4())
        self.health_alerts[alert_id] = action
        return alert_id

    # ---- events ----------------------------------------------------------------

    def list_events(self, case_ids: Sequence[str]):
        ids = set(case_ids)
        return [
            CaseEvent(case_id=e["case_id"], kind=e["kind"], created_at=e["created_at"], payload=e["payload"])
            for e in self.events
            if e["case_id"] in ids
        ]

    def append_event(self, case_id, kind, payload, task_id=None):
        self._check("append_event", case_id, kind)
        self.events.append({
            "case_id": case_id,
            "kind": kind,
            "payload": dict(payload),
            "task_id": task_id,
            "created_at": datetime.now(timezone.utc),
        })


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def repo():
    return InMemoryCaseRepository()


@pytest.fixture
def locks():
    return CaseLockRegistry()


@pytest.fixture
def fixed_now():
    return utc(2026, 3, 1, 12, 0)


@pytest.fixture
def service(repo, locks, fixed_now):
    from case_engine.services.orchestration import CaseProgressionService

    return CaseProgressionService(repo, clock=lambda: fixed_now, locks=locks)


@pytest.fixture
def repository_factory(repo):
    """Factory for CaseScheduler that hands every worker the same in-memory store."""
    return lambda: nullcontext(repo)


@pytest.fixture
def db_session():
    """Fresh in-memory SQLite schema per test."""
    from sqlalchemy import create_engine
    from sqlalchemy.orm import sessionmaker
    from sqlalchemy.pool import StaticPool

    from case_engine.database import Base
    from case_engine.models import db_models  # noqa: F401

    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def sql_repo(db_session):
    from case_engine.services.orchestration import SqlAlchemyCaseRepository

    return SqlAlchemyCaseRepository(db_session)


def seed_case(db, case_id="case-1", status="active", task_keys=None):
    """Insert a case row plus locked tasks. Returns {task_key: task_id}."""
    from case_engine.models.db_models import CaseDB, TaskDB

    db.add(CaseDB(id=case_id, title="Smith v. Doe", status=status))
    task_ids = {}
    for key in task_keys if task_keys is not None else [k.value for k in TaskKey]:
        task_id = str(uuid4())
        db.add(TaskDB(id=task_id, case_id=case_id, task_key=key, status="locked", task_metadata={}))
        task_ids[key] = task_id
    db.commit()
    return task_ids
