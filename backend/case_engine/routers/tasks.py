"""
Task API Routes

User-driven status changes. The transition table is enforced here;
gatekeeper-only transitions (unlocking) are rejected.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_case_service
from ..models.domain import TaskStatus
from ..services.orchestration import CaseProgressionService
from .errors import http_errors


router = APIRouter(prefix="/tasks", tags=["tasks"])


class UpdateTaskRequest(BaseModel):
    """Request to change a task's status."""
    status: TaskStatus = Field(..., description="Target status")
    metadata: Optional[Dict[str, Any]] = Field(
        None, description="Merged into the task's metadata, e.g. {'docket_result': 'no_answer'}"
    )


@router.patch("/{task_id}", response_model=dict)
def update_task(
    task_id: str,
    request: UpdateTaskRequest,
    service: CaseProgressionService = Depends(get_case_service),
):
    """
    Update a task's status.

    Returns the updated task and what the gatekeeper applied afterwards.
    """
    with http_errors():
        return service.update_task_status(task_id, request.status, request.metadata)
