"""
Case API Routes

Service facts, deadlines, on-demand gatekeeper runs and health scores for a single case.
Every mutation re-runs the gatekeeper and returns what it applied.
"""
from datetime import date, datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..dependencies import get_case_service
from ..models.domain import DeadlineSource, ServiceFacts, ServiceMethod
from ..services.orchestration import CaseProgressionService
from .errors import http_errors


router = APIRouter(prefix="/cases", tags=["cases"])


# =============================================================================
# REQUEST MODELS
# =============================================================================

class ConfirmServiceFactsRequest(BaseModel):
    """User-confirmed service facts. Dates are local calendar dates."""
    served_at: Optional[date] = Field(None, description="Date the defendant was served")
    return_filed_at: Optional[date] = Field(None, description="Date the return of service was filed")
    service_method: Optional[ServiceMethod] = Field(None, description="How service was made")
    served_to: Optional[str] = Field(None, description="Person who received service")
    server_name: Optional[str] = Field(None, description="Process server")


class CreateDeadlineRequest(BaseModel):
    """User- or court-sourced deadline. System deadlines come from service facts only."""
    key: str = Field(..., min_length=1, description="Deadline key, e.g. discovery_response_due_confirmed")
    due_at: datetime = Field(..., description="Due instant (ISO-8601, UTC if no offset)")
    source: Literal["user_confirmed", "court_notice"] = Field(default="user_confirmed")
    rationale: Optional[str] = Field(None, description="Where the date came from")


class ConfirmAnswerDeadlineRequest(BaseModel):
    """Exact answer deadline read from the citation."""
    confirmed_due_at: datetime = Field(..., description="Confirmed answer deadline (ISO-8601)")


class RunRulesRequest(BaseModel):
    now: Optional[datetime] = Field(None, description="Evaluation instant; defaults to the server clock")


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.post("/{case_id}/service-facts/confirm", response_model=dict)
def confirm_service_facts(
    case_id: str,
    request: ConfirmServiceFactsRequest,
    service: CaseProgressionService = Depends(get_case_service),
):
    """
    Save service facts and regenerate system deadlines.

    Replaces every system deadline of the case. User and court deadlines are kept.
    """
    facts = ServiceFacts(
        served_at=request.served_at,
        return_filed_at=request.return_filed_at,
        service_method=request.service_method,
        served_to=request.served_to,
        server_name=request.server_name,
    )
    with http_errors():
        return service.confirm_service_facts(case_id, facts)


@router.post("/{case_id}/deadlines", response_model=dict)
def create_deadline(
    case_id: str,
    request: CreateDeadlineRequest,
    service: CaseProgressionService = Depends(get_case_service),
):
    """Add a deadline with reminders at 7, 3 and 1 days before."""
    with http_errors():
        return service.create_deadline(
            case_id,
            key=request.key,
            due_at=request.due_at,
            source=DeadlineSource(request.source),
            rationale=request.rationale,
        )


@router.get("/{case_id}/deadlines", response_model=dict)
def list_deadlines(
    case_id: str,
    service: CaseProgressionService = Depends(get_case_service),
):
    """Deadlines of a case ordered by due time, with their reminders."""
    with http_errors():
        deadlines = service.list_deadlines(case_id)
    return {"case_id": case_id, "deadlines": deadlines}


@router.post("/{case_id}/deadlines/confirm-answer-deadline", response_model=dict)
def confirm_answer_deadline(
    case_id: str,
    request: ConfirmAnswerDeadlineRequest,
    service: CaseProgressionService = Depends(get_case_service),
):
    """Replace the estimated answer deadline with the confirmed one."""
    with http_errors():
        return service.confirm_answer_deadline(case_id, request.confirmed_due_at)


@router.post("/{case_id}/rules/run", response_model=dict)
def run_rules(
    case_id: str,
    request: Optional[RunRulesRequest] = None,
    service: CaseProgressionService = Depends(get_case_service),
):
    """Evaluate the gatekeeper for one case and apply its actions."""
    now = request.now if request else None
    with http_errors():
        result = service.run_gatekeeper(case_id, now)
    return {"case_id": case_id, **result.to_dict()}


@router.post("/{case_id}/rules/run-risk-score", response_model=dict)
def run_risk_score(
    case_id: str,
    request: Optional[RunRulesRequest] = None,
    service: CaseProgressionService = Depends(get_case_service),
):
    """Compute and store today's health score for one case. Does not raise alerts."""
    now = request.now if request else None
    with http_errors():
        result = service.compute_case_health(case_id, now)
    return {"case_id": case_id, **result.to_dict()}
