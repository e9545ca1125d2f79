"""
Scheduler API Routes

Internal endpoints for system-automatic tasks, called by cron.
Gatekeeper sweep (time-based unlocks), escalation sweep and health sweep.
"""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from ..config import INTERNAL_API_KEY
from ..dependencies import get_case_scheduler
from ..services.orchestration import CaseScheduler
from .errors import http_errors


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/gatekeeper-sweep", response_model=dict)
def run_gatekeeper_sweep(
    now: Optional[datetime] = None,
    scheduler: CaseScheduler = Depends(get_case_scheduler),
    _: bool = Depends(verify_internal_key),
):
    """
    Re-evaluate the gatekeeper for every active case.

    System-automatic - applies time-based unlocks once deadlines pass.
    Per-case failures are reported, never abort the run.
    """
    with http_errors():
        return scheduler.run_gatekeeper_sweep(now).to_dict()


@router.post("/escalation-sweep", response_model=dict)
def run_escalation_sweep(
    now: Optional[datetime] = None,
    scheduler: CaseScheduler = Depends(get_case_scheduler),
    _: bool = Depends(verify_internal_key),
):
    """
    Fire due reminder escalations.

    System-automatic - each (deadline, level) fires at most once.
    """
    with http_errors():
        return scheduler.run_escalation_sweep(now).to_dict()


@router.post("/health-sweep", response_model=dict)
def run_health_sweep(
    now: Optional[datetime] = None,
    scheduler: CaseScheduler = Depends(get_case_scheduler),
    _: bool = Depends(verify_internal_key),
):
    """
    Score every active case and raise health alerts.

    System-automatic - one score row and at most one alert per case per UTC day.
    """
    with http_errors():
        summary = scheduler.run_health_sweep(now).to_dict()
    return {**summary, "health_alerts_triggered": summary["triggered"]}
