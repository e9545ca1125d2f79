"""
Case Engine - Errors

The rules engine itself is pure; anything it raises is a defect. These
errors belong to the orchestration layer and the HTTP boundary.
"""
from typing import List, Optional


class CaseEngineError(Exception):
    """Base class for case engine errors."""


class NotFoundError(CaseEngineError):
    """A case, task or escalation referenced by id does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class InvalidTransitionError(CaseEngineError):
    """A user-driven task status change violates the transition table."""

    def __init__(self, from_status: str, to_status: str, allowed: List[str]):
        self.from_status = from_status
        self.to_status = to_status
        self.allowed = allowed
        allowed_text = ", ".join(allowed) or "none"
        super().__init__(
            f"Cannot transition from '{from_status}' to '{to_status}'. Allowed: {allowed_text}"
        )


class InvalidMetadataError(CaseEngineError):
    """Task metadata carries a branch-selection value outside its enum."""

    def __init__(self, field: str, value: object, allowed: List[str]):
        self.field = field
        self.value = value
        self.allowed = allowed
        super().__init__(
            f"Invalid value for '{field}': {value!r}. Allowed: {', '.join(allowed)}"
        )


class OrchestrationError(CaseEngineError):
    """Persistence failed while applying engine output."""

    def __init__(self, message: str, case_id: Optional[str] = None):
        self.case_id = case_id
        super().__init__(message)
