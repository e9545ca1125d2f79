"""
Case Engine - FastAPI Application

Main entry point for the case progression backend.

Architecture:
- ServiceFacts → DeadlineCalculator → system deadlines + reminders
- Tasks + Deadlines → Gatekeeper → unlock / complete actions
- Deadlines + Rules + Events → EscalationEvaluator → escalations
- CaseProgressionService applies all of the above through the repository port
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .routers import cases_router, tasks_router, escalations_router, scheduler_router
from .database import init_db


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize database on startup."""
    init_db()
    yield

# Create FastAPI app
app = FastAPI(
    lifespan=lifespan,
    title="Case Engine",
    description="""
    Case Engine - Case Progression & Deadline Rules

    Computes procedural deadlines for a civil defendant, unlocks checklist
    tasks as the case moves forward and escalates reminders as deadlines approach.

    ## Pipeline
    1. **Deadline Calculator**: ServiceFacts → system deadlines (TX_V1)
    2. **Reminder Scheduler**: deadline → reminders at 7/3/1 days before
    3. **Gatekeeper**: tasks + deadlines → unlock / complete actions
    4. **Escalation Evaluator**: rules + deadlines + events → escalations

    ## Key Principles
    - Rules are pure; only the orchestrator writes
    - System deadlines are replaced wholesale, user/court deadlines never touched
    - Each (deadline, level) escalation fires at most once
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(cases_router)
app.include_router(tasks_router)
app.include_router(escalations_router)
app.include_router(scheduler_router)


@app.get("/")
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Case Engine",
        "version": __version__,
        "description": "Case Progression & Deadline Rules Engine",
        "docs": "/docs",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# For running with: python -m case_engine.main
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
