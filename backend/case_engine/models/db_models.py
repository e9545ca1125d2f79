"""
Case Engine - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Text, JSON, Boolean, ForeignKey,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from ..database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class CaseDB(Base):
    """A lawsuit being tracked. Unit of serialization for the orchestrator."""
    __tablename__ = "cases"

    id = Column(String(36), primary_key=True)  # UUID
    title = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # active / closed

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    service_facts = relationship("ServiceFactsDB", back_populates="case", uselist=False, cascade="all, delete-orphan")
    deadlines = relationship("DeadlineDB", back_populates="case", cascade="all, delete-orphan")
    tasks = relationship("TaskDB", back_populates="case", cascade="all, delete-orphan")
    events = relationship("TaskEventDB", back_populates="case", cascade="all, delete-orphan")


class ServiceFactsDB(Base):
    """
    User-confirmed service facts. One row per case (upsert).
    Date fields are local calendar dates, never UTC midnight.
    """
    __tablename__ = "service_facts"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, unique=True)

    served_at = Column(Date, nullable=True)
    return_filed_at = Column(Date, nullable=True)
    service_method = Column(String(30), nullable=True)
    served_to = Column(String(255), nullable=True)
    server_name = Column(String(255), nullable=True)

    user_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    case = relationship("CaseDB", back_populates="service_facts")


class DeadlineDB(Base):
    """
    A legally significant date. SYSTEM rows are owned by the deadline calculator
    and replaced wholesale on recomputation; user/court rows are never touched by it.
    """
    __tablename__ = "deadlines"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)

    key = Column(String(100), nullable=False)
    due_at = Column(DateTime(timezone=True), nullable=False, index=True)
    source = Column(String(20), nullable=False, default="system")  # system / user_confirmed / court_notice
    rationale = Column(Text, nullable=True)
    calc_version = Column(String(20), nullable=True)  # e.g. TX_V1, null for user/court deadlines

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    case = relationship("CaseDB", back_populates="deadlines")
    reminders = relationship("ReminderDB", back_populates="deadline", cascade="all, delete-orphan")
    escalations = relationship("ReminderEscalationDB", back_populates="deadline", cascade="all, delete-orphan")


class ReminderDB(Base):
    """Scheduled reminder at -7d/-3d/-1d. Deleted with its deadline."""
    __tablename__ = "reminders"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    deadline_id = Column(String(36), ForeignKey("deadlines.id", ondelete="CASCADE"), nullable=False, index=True)

    channel = Column(String(20), nullable=False, default="email")
    send_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="scheduled")  # scheduled / sent / cancelled

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    deadline = relationship("DeadlineDB", back_populates="reminders")


class TaskDB(Base):
    """Checklist step. Seeded at case creation, mutated by the gatekeeper or by the user."""
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("case_id", "task_key", name="uq_tasks_case_task_key"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)

    task_key = Column(String(100), nullable=False)
    title = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="locked")
    due_at = Column(DateTime(timezone=True), nullable=True)
    # Column named 'metadata' in the table; the attribute name is reserved in SQLAlchemy
    task_metadata = Column("metadata", JSON, nullable=False, default=dict)

    unlocked_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    case = relationship("CaseDB", back_populates="tasks")


class EscalationRuleDB(Base):
    """System configuration, not per-user. Read-only to the engine."""
    __tablename__ = "escalation_rules"
    __table_args__ = (
        UniqueConstraint("deadline_key", "level", name="uq_escalation_rules_key_level"),
        Index("idx_escalation_rules_key_offset", "deadline_key", "offset_days"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    deadline_key = Column(String(100), nullable=False)
    level = Column(Integer, nullable=False)  # 1..3
    offset_days = Column(Integer, nullable=False)
    condition_type = Column(String(30), nullable=False, default="always")  # always / no_event / status_not_changed
    condition_key = Column(String(100), nullable=True)
    message_template = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ReminderEscalationDB(Base):
    """
    A fired escalation. At most one per (deadline_id, escalation_level).
    Health alerts have no deadline and are unique per (case_id, health_alert_day).
    Only 'acknowledged' is ever updated; rows are never deleted by the engine.
    """
    __tablename__ = "reminder_escalations"
    __table_args__ = (
        UniqueConstraint("deadline_id", "escalation_level", name="uq_reminder_escalations_deadline_level"),
        UniqueConstraint("case_id", "health_alert_day", name="uq_reminder_escalations_health_case_day"),
        Index("idx_reminder_escalations_case_triggered", "case_id", "triggered_at"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False)
    deadline_id = Column(String(36), ForeignKey("deadlines.id", ondelete="CASCADE"), nullable=True)  # null for health alerts

    escalation_level = Column(Integer, nullable=False)
    message = Column(Text, nullable=False)
    triggered_at = Column(DateTime(timezone=True), nullable=False)
    acknowledged = Column(Boolean, nullable=False, default=False)
    health_alert_day = Column(Date, nullable=True)  # UTC date of triggered_at, health alerts only

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    deadline = relationship("DeadlineDB", back_populates="escalations")


class TaskEventDB(Base):
    """
    Append-only case timeline / audit trail.
    Also read by the escalation evaluator for suppression conditions.
    """
    __tablename__ = "task_events"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)

    kind = Column(String(50), nullable=False)  # task_unlocked, gatekeeper_run, reminder_escalated, etc.
    payload = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    case = relationship("CaseDB", back_populates="events")


class CaseRiskScoreDB(Base):
    """Daily case health score. One row per case per UTC day; a rerun overwrites it."""
    __tablename__ = "case_risk_scores"
    __table_args__ = (
        UniqueConstraint("case_id", "computed_on", name="uq_case_risk_scores_case_day"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    computed_on = Column(Date, nullable=False)  # UTC date of computed_at

    overall_score = Column(Integer, nullable=False)
    deadline_risk = Column(Integer, nullable=False)
    response_risk = Column(Integer, nullable=False)
    evidence_risk = Column(Integer, nullable=False)
    activity_risk = Column(Integer, nullable=False)
    risk_level = Column(String(20), nullable=False)  # low / moderate / elevated / high
    breakdown = Column(JSON, nullable=False, default=list)
    inputs_snapshot = Column(JSON, nullable=True)
    model = Column(String(50), nullable=True)

    computed_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


# =============================================================================
# CASE MATERIALS
# Written by the evidence and binder features; the engine only counts them.
# =============================================================================

class EvidenceItemDB(Base):
    __tablename__ = "evidence_items"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ExhibitSetDB(Base):
    __tablename__ = "exhibit_sets"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    exhibits = relationship("ExhibitDB", back_populates="exhibit_set", cascade="all, delete-orphan")


class ExhibitDB(Base):
    __tablename__ = "exhibits"

    id = Column(String(36), primary_key=True)  # UUID
    exhibit_set_id = Column(String(36), ForeignKey("exhibit_sets.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    exhibit_set = relationship("ExhibitSetDB", back_populates="exhibits")


class TrialBinderDB(Base):
    __tablename__ = "trial_binders"

    id = Column(String(36), primary_key=True)  # UUID
    case_id = Column(String(36), ForeignKey("cases.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
