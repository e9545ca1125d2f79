"""
Case Orchestration

Loads snapshots, runs the pure rules and applies their output.
Everything that touches persistence goes through the CaseRepository port.
"""

from .ports import CaseRepository
from .case_locks import CaseLockRegistry, case_locks
from .case_progression import CaseProgressionService
from .scheduler import CaseScheduler
from .sqlalchemy_repository import SqlAlchemyCaseRepository, repository_scope

__all__ = [
    'CaseRepository',
    'CaseLockRegistry',
    'case_locks',
    'CaseProgressionService',
    'CaseScheduler',
    'SqlAlchemyCaseRepository',
    'repository_scope',
]
