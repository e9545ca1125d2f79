"""
Reminder Escalation API Routes
"""
from fastapi import APIRouter, Depends

from ..dependencies import get_case_service
from ..services.orchestration import CaseProgressionService
from .errors import http_errors


router = APIRouter(prefix="/reminder-escalations", tags=["escalations"])


@router.patch("/{escalation_id}/acknowledge", response_model=dict)
def acknowledge_escalation(
    escalation_id: str,
    service: CaseProgressionService = Depends(get_case_service),
):
    """
    Mark an escalation as seen.

    Only this record changes; later levels for the same deadline still fire.
    """
    with http_errors():
        service.acknowledge_escalation(escalation_id)
    return {"id": escalation_id, "acknowledged": True}
