"""Pydantic schemas for the ticket engine API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ticket_engine.domain.models import Agent, AgentLevel, Category, Priority, Ticket, TicketStatus


# ── input ─────────────────────────────────────────────────────────────────────

class TicketIn(BaseModel):
    owner_id:    str = Field(..., min_length=1, examples=["user-42"])
    title:       str = Field(..., min_length=1, max_length=500,  examples=["Server down"])
    description: str = Field("", max_length=5000, examples=["Production API returning 500 errors"])
    priority:    str = Field(..., min_length=1, examples=["HIGH"])
    category:    str = Field(..., min_length=1, examples=["Technical"])


class AgentAction(BaseModel):
    """Body of start / complete / manual-assign calls."""
    agent_id: str = Field(..., min_length=1)


class OwnerAction(BaseModel):
    """Body of an owner-side completion."""
    owner_id: str = Field(..., min_length=1)


class AgentIn(BaseModel):
    user_ref: str = Field(..., min_length=1, examples=["user-7"])
    level:    AgentLevel = AgentLevel.JUNIOR


class ActiveIn(BaseModel):
    active: bool


class LevelIn(BaseModel):
    level: AgentLevel


class CategoryIn(BaseModel):
    name:        str = Field(..., min_length=1, max_length=100, examples=["Billing"])
    points:      int = Field(..., gt=0, examples=[2])
    description: str = Field("", max_length=500)


# ── output ────────────────────────────────────────────────────────────────────

class TicketOut(BaseModel):
    id:                     str
    title:                  str
    description:            str
    owner_ref:              str
    assigned_agent_ref:     Optional[str] = None
    priority:               str
    category:               str
    status:                 TicketStatus
    points:                 Optional[int] = None
    date_started:           Optional[datetime] = None
    expected_completion_at: Optional[datetime] = None
    completion_date:        Optional[datetime] = None
    created_at:             datetime

    @classmethod
    def of(cls, t: Ticket) -> "TicketOut":
        return cls(
            id=t.id,
            title=t.title,
            description=t.description,
            owner_ref=t.owner_ref,
            assigned_agent_ref=t.assigned_agent_ref,
            priority=t.priority.name,
            category=t.category.name,
            status=t.status,
            points=t.points,
            date_started=t.date_started,
            expected_completion_at=t.expected_completion_at,
            completion_date=t.completion_date,
            created_at=t.created_at,
        )


class AgentOut(BaseModel):
    id:                       str
    user_ref:                 str
    level:                    AgentLevel
    base_capacity:            int
    bonus_capacity:           int
    total_capacity:           int
    current_workload:         int
    is_active:                bool
    completed_tickets:        int
    total_performance_points: int

    @classmethod
    def of(cls, a: Agent) -> "AgentOut":
        return cls(
            id=a.id,
            user_ref=a.user_ref,
            level=a.level,
            base_capacity=a.base_capacity,
            bonus_capacity=a.bonus_capacity,
            total_capacity=a.total_capacity,
            current_workload=a.current_workload,
            is_active=a.is_active,
            completed_tickets=a.completed_tickets,
            total_performance_points=a.total_performance_points,
        )


class AgentStatsOut(BaseModel):
    agent_id:                 str
    user_ref:                 str
    level:                    AgentLevel
    base_capacity:            int
    total_capacity:           int
    current_workload:         int
    available_capacity:       int
    assigned_tickets:         int
    ongoing_tickets:          int
    completed_tickets:        int
    total_performance_points: int
    next_level_at:            Optional[int] = None


class LeaderboardEntry(BaseModel):
    rank:                     int
    agent_id:                 str
    user_ref:                 str
    level:                    AgentLevel
    total_performance_points: int
    completed_tickets:        int


class PriorityOut(BaseModel):
    name:             str
    weight:           int
    time_limit_hours: int

    @classmethod
    def of(cls, p: Priority) -> "PriorityOut":
        return cls(**p.to_dict())


class CategoryOut(BaseModel):
    name:        str
    points:      int
    description: str
    is_active:   bool

    @classmethod
    def of(cls, c: Category) -> "CategoryOut":
        return cls(**c.to_dict())


class AssignmentOut(BaseModel):
    ticket_id: str
    status:    TicketStatus
    agent_id:  Optional[str] = None
    assigned:  bool
    changed:   bool


class SweepOut(BaseModel):
    name:      str
    processed: int
    changed:   int
    failed:    int


class HealthResponse(BaseModel):
    status:            str
    store_backend:     str
    store_reachable:   bool
    scheduler_running: bool
    agents:            int
    open_tickets:      int
    uptime_seconds:    float
