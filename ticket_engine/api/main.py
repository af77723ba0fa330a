"""FastAPI application for the ticket assignment & workload scheduling API.

Endpoints:
    GET    /health                      → liveness + store / scheduler status
    POST   /tickets                     → 201  create + auto-assign
    GET    /tickets                     → filter by status, agent, owner, priority, category
    GET    /tickets/{id}
    POST   /tickets/{id}/start          → ASSIGNED → ONGOING
    POST   /tickets/{id}/complete       → ONGOING → COMPLETED (scored)
    POST   /tickets/{id}/close          → owner completes an ONGOING ticket
    POST   /tickets/{id}/assign         → auto-assign, or manual with agent_id
    POST   /agents                      → 201  promote a user to agent
    GET    /agents
    GET    /agents/leaderboard          → ranked by performance points
    GET    /agents/{id}
    GET    /agents/{id}/stats           → capacity + progress summary
    PUT    /agents/{id}/active          → (de)activate; deactivation reclaims
    PUT    /agents/{id}/level
    GET    /priorities
    GET    /categories                  → optional active filter
    POST   /categories                  → 201
    PUT    /categories/{name}/active    → retire / revive
    GET    /scheduler                   → job intervals + last reports
    POST   /scheduler/{job}/run         → run one sweep now
    GET    /events                      → notification audit log

Run API:      uvicorn ticket_engine.api.main:app --reload

Set optional env vars in .env:
    STORE_BACKEND=memory | redis
    REDIS_URL=redis://localhost:6379/0
    WEBHOOK_URL=https://hooks.slack.com/...   (empty = mock log)
    SCHEDULER_ENABLED=true
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ticket_engine.api.schemas import (
    ActiveIn,
    AgentAction,
    AgentIn,
    AgentOut,
    AgentStatsOut,
    AssignmentOut,
    CategoryIn,
    CategoryOut,
    HealthResponse,
    LeaderboardEntry,
    LevelIn,
    OwnerAction,
    PriorityOut,
    SweepOut,
    TicketIn,
    TicketOut,
)
from ticket_engine.config import SCHEDULER_ENABLED, STORE_BACKEND
from ticket_engine.domain.models import TicketStatus
from ticket_engine.errors import (
    CapacityInvariantError,
    ConflictError,
    InactiveCategoryError,
    NotFoundError,
    StoreError,
)
from ticket_engine.routing.assignment import AssignmentOutcome
from ticket_engine.routing.lifecycle import InvalidTransition
from ticket_engine.service import TicketDesk

# ── logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
)
logger = logging.getLogger(__name__)

# ── global state ──────────────────────────────────────────────────────────────
_state: dict = {
    "desk": None,
    "scheduler": None,
    "started_at": None,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting ticket engine API with store=%s", STORE_BACKEND)
    desk = TicketDesk()
    desk.seed_defaults()
    scheduler = desk.build_scheduler()
    if SCHEDULER_ENABLED:
        await scheduler.start()
    _state.update(desk=desk, scheduler=scheduler, started_at=datetime.now(timezone.utc))

    yield

    # Shutdown
    await scheduler.stop()
    desk.notifier.close()
    _state.update(desk=None, scheduler=None)


def _desk() -> TicketDesk:
    desk = _state["desk"]
    if desk is None:
        raise HTTPException(status_code=503, detail="Engine not initialised")
    return desk


def _ticket_or_409(result) -> TicketOut:
    if isinstance(result, InvalidTransition):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"ticket_id": result.ticket_id, "status": result.status.value,
                    "reason": result.reason},
        )
    return TicketOut.of(result)


def _assignment(o: AssignmentOutcome) -> AssignmentOut:
    return AssignmentOut(
        ticket_id=o.ticket_id, status=o.status, agent_id=o.agent_id,
        assigned=o.assigned, changed=o.changed,
    )


# ── App ──────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Ticket Engine",
    description=(
        "Capacity-aware ticket assignment, lifecycle tracking, performance "
        "scoring and periodic reconciliation of agent workload."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── error mapping ────────────────────────────────────────────────────────────

@app.exception_handler(NotFoundError)
async def _not_found(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
@app.exception_handler(CapacityInvariantError)
async def _conflict(request: Request, exc: Exception):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(InactiveCategoryError)
async def _inactive_category(request: Request, exc: InactiveCategoryError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def _store_down(request: Request, exc: StoreError):
    logger.error("Store failure on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# ── health ───────────────────────────────────────────────────────────────────

@app.get("/health", response_model=HealthResponse)
def health():
    desk = _desk()
    scheduler = _state["scheduler"]
    uptime = (datetime.now(timezone.utc) - _state["started_at"]).total_seconds()
    store_ok = desk.store.ping()
    return HealthResponse(
        status="ok" if store_ok else "degraded",
        store_backend=type(desk.store).__name__,
        store_reachable=store_ok,
        scheduler_running=bool(scheduler and scheduler.running),
        agents=len(desk.list_agents()) if store_ok else 0,
        open_tickets=len(desk.store.list_tickets(lambda t: t.is_open)) if store_ok else 0,
        uptime_seconds=round(uptime, 1),
    )


# ── tickets ──────────────────────────────────────────────────────────────────

@app.post("/tickets", response_model=TicketOut, status_code=status.HTTP_201_CREATED)
def create_ticket(req: TicketIn):
    ticket = _desk().create_ticket(
        owner_id=req.owner_id,
        title=req.title,
        description=req.description,
        priority=req.priority,
        category=req.category,
    )
    return TicketOut.of(ticket)


@app.get("/tickets", response_model=list[TicketOut])
def list_tickets(
    status: Optional[TicketStatus] = None,
    agent_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    priority: Optional[str] = None,
    category: Optional[str] = None,
):
    tickets = _desk().list_tickets(
        status=status, agent_id=agent_id, owner_id=owner_id,
        priority=priority, category=category,
    )
    return [TicketOut.of(t) for t in tickets]


@app.get("/tickets/{ticket_id}", response_model=TicketOut)
def get_ticket(ticket_id: str):
    return TicketOut.of(_desk().get_ticket(ticket_id))


@app.post("/tickets/{ticket_id}/start", response_model=TicketOut)
def start_ticket(ticket_id: str, req: AgentAction):
    return _ticket_or_409(_desk().start_ticket(ticket_id, req.agent_id))


@app.post("/tickets/{ticket_id}/complete", response_model=TicketOut)
def complete_ticket(ticket_id: str, req: AgentAction):
    return _ticket_or_409(_desk().complete_ticket(ticket_id, req.agent_id))


@app.post("/tickets/{ticket_id}/close", response_model=TicketOut)
def close_ticket(ticket_id: str, req: OwnerAction):
    """Owner-side completion; scored and credited like an agent completion."""
    return _ticket_or_409(_desk().complete_ticket_by_owner(ticket_id, req.owner_id))


@app.post("/tickets/{ticket_id}/assign", response_model=AssignmentOut)
def assign_ticket(ticket_id: str, req: Optional[AgentAction] = None):
    """Auto-assign, or move the ticket onto ``agent_id`` when given."""
    desk = _desk()
    if req is None:
        return _assignment(desk.assign_ticket(ticket_id))
    return _assignment(desk.assign_ticket_to_agent(ticket_id, req.agent_id))


# ── agents ───────────────────────────────────────────────────────────────────

@app.post("/agents", response_model=AgentOut, status_code=status.HTTP_201_CREATED)
def create_agent(req: AgentIn):
    return AgentOut.of(_desk().create_agent(req.user_ref, req.level))


@app.get("/agents", response_model=list[AgentOut])
def list_agents(active: Optional[bool] = None):
    return [AgentOut.of(a) for a in _desk().list_agents(active=active)]


@app.get("/agents/leaderboard", response_model=list[LeaderboardEntry])
def leaderboard():
    return [LeaderboardEntry(**row) for row in _desk().leaderboard()]


@app.get("/agents/{agent_id}", response_model=AgentOut)
def get_agent(agent_id: str):
    return AgentOut.of(_desk().get_agent(agent_id))


@app.get("/agents/{agent_id}/stats", response_model=AgentStatsOut)
def agent_stats(agent_id: str):
    return AgentStatsOut(**_desk().agent_stats(agent_id))


@app.put("/agents/{agent_id}/active", response_model=AgentOut)
def set_agent_active(agent_id: str, req: ActiveIn):
    return AgentOut.of(_desk().set_agent_active(agent_id, req.active))


@app.put("/agents/{agent_id}/level", response_model=AgentOut)
def change_agent_level(agent_id: str, req: LevelIn):
    return AgentOut.of(_desk().change_agent_level(agent_id, req.level))


# ── reference data ───────────────────────────────────────────────────────────

@app.get("/priorities", response_model=list[PriorityOut])
def list_priorities():
    return [PriorityOut.of(p) for p in _desk().list_priorities()]


@app.get("/categories", response_model=list[CategoryOut])
def list_categories(active: Optional[bool] = None):
    return [CategoryOut.of(c) for c in _desk().list_categories(active=active)]


@app.post("/categories", response_model=CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(req: CategoryIn):
    return CategoryOut.of(_desk().register_category(req.name, req.points, req.description))


@app.put("/categories/{name}/active", response_model=CategoryOut)
def set_category_active(name: str, req: ActiveIn):
    return CategoryOut.of(_desk().set_category_active(name, req.active))


# ── scheduler & events ───────────────────────────────────────────────────────

@app.get("/scheduler")
async def scheduler_status():
    scheduler = _state["scheduler"]
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialised")
    return {"running": scheduler.running, "jobs": scheduler.status()}


@app.post("/scheduler/{job}/run", response_model=SweepOut)
async def run_job(job: str):
    scheduler = _state["scheduler"]
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialised")
    if job not in scheduler.job_names:
        raise HTTPException(status_code=404, detail=f"Unknown job {job!r}")
    report = await scheduler.run_now(job)
    return SweepOut(**report.to_dict())


@app.get("/events")
def events():
    return {"events": _desk().notifier.get_event_log()}
