"""
Case Engine - FastAPI Dependencies

Wires the orchestrator to a request-scoped database session.
"""
from fastapi import Depends
from sqlalchemy.orm import Session

from .database import get_db
from .services.orchestration import (
    CaseProgressionService,
    CaseScheduler,
    SqlAlchemyCaseRepository,
    repository_scope,
)


def get_case_service(db: Session = Depends(get_db)) -> CaseProgressionService:
    """Orchestrator bound to the request's session."""
    return CaseProgressionService(SqlAlchemyCaseRepository(db))


def get_case_scheduler() -> CaseScheduler:
    """Batch runner; opens its own session per case."""
    return CaseScheduler(repository_scope)
