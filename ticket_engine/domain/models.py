"""Domain entities: priorities, categories, agents and tickets.

Entities are plain dataclasses.  Each one round-trips through
``to_dict()`` / ``from_dict()`` so stores can persist them as JSON.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from ticket_engine.config import AGENT_LEVELS
from ticket_engine.errors import IllegalTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def _dt_out(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _dt_in(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ── Enumerations ─────────────────────────────────────────────────────────


class AgentLevel(str, Enum):
    JUNIOR = "JUNIOR"
    MID = "MID"
    SENIOR = "SENIOR"

    @property
    def base_capacity(self) -> int:
        return AGENT_LEVELS[self.value][0]

    @property
    def min_completed(self) -> int:
        return AGENT_LEVELS[self.value][1]

    @property
    def max_completed(self) -> int | None:
        return AGENT_LEVELS[self.value][2]

    @property
    def next_level(self) -> "AgentLevel | None":
        members = list(type(self))
        index = members.index(self)
        return members[index + 1] if index + 1 < len(members) else None

    @classmethod
    def for_completed(cls, completed: int) -> "AgentLevel":
        """Return the level whose completed-ticket range contains *completed*."""
        for level in cls:
            upper = level.max_completed
            if completed >= level.min_completed and (upper is None or completed <= upper):
                return level
        return cls.JUNIOR


class TicketStatus(str, Enum):
    NO_AGENT_AVAILABLE = "NO_AGENT_AVAILABLE"
    ASSIGNED = "ASSIGNED"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"


OPEN_STATUSES = frozenset({TicketStatus.ASSIGNED, TicketStatus.ONGOING})

# NO_AGENT_AVAILABLE -> ASSIGNED -> ONGOING -> COMPLETED, plus unassign from either
# open state.  COMPLETED is terminal.
_TRANSITIONS: dict[TicketStatus, frozenset[TicketStatus]] = {
    TicketStatus.NO_AGENT_AVAILABLE: frozenset({TicketStatus.ASSIGNED}),
    TicketStatus.ASSIGNED: frozenset({TicketStatus.ONGOING, TicketStatus.NO_AGENT_AVAILABLE}),
    TicketStatus.ONGOING: frozenset({TicketStatus.COMPLETED, TicketStatus.NO_AGENT_AVAILABLE}),
    TicketStatus.COMPLETED: frozenset(),
}


def can_transition(src: TicketStatus, dst: TicketStatus) -> bool:
    return TicketStatus(dst) in _TRANSITIONS[TicketStatus(src)]


# ── Configuration entities ───────────────────────────────────────────────


@dataclass(frozen=True)
class Priority:
    name: str
    weight: int
    time_limit_hours: int

    def __post_init__(self) -> None:
        if self.weight <= 0:
            raise ValueError(f"priority weight must be positive, got {self.weight}")
        if self.time_limit_hours <= 0:
            raise ValueError(
                f"priority time limit must be positive, got {self.time_limit_hours}"
            )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "weight": self.weight,
            "time_limit_hours": self.time_limit_hours,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Priority":
        return cls(**d)


@dataclass(frozen=True)
class Category:
    name: str
    points: int
    description: str = ""
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.points <= 0:
            raise ValueError(f"category points must be positive, got {self.points}")

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "points": self.points,
            "description": self.description,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Category":
        return cls(**d)


# ── Agents ───────────────────────────────────────────────────────────────


@dataclass
class Agent:
    """One staff member's capacity pool.

    ``current_workload`` is the summed priority weight of every ticket
    currently ASSIGNED or ONGOING for this agent.  Only the capacity
    helpers in :mod:`ticket_engine.domain.capacity` mutate it.
    """

    user_ref: str
    level: AgentLevel = AgentLevel.JUNIOR
    id: str = field(default_factory=new_id)
    base_capacity: int = -1
    bonus_capacity: int = 0
    current_workload: int = 0
    is_active: bool = True
    completed_tickets: int = 0
    total_performance_points: int = 0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.level = AgentLevel(self.level)
        if self.base_capacity < 0:
            self.base_capacity = self.level.base_capacity

    @property
    def total_capacity(self) -> int:
        return self.base_capacity + self.bonus_capacity

    @property
    def utilisation(self) -> float:
        if self.total_capacity <= 0:
            return 1.0
        return self.current_workload / self.total_capacity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_ref": self.user_ref,
            "level": self.level.value,
            "base_capacity": self.base_capacity,
            "bonus_capacity": self.bonus_capacity,
            "total_capacity": self.total_capacity,
            "current_workload": self.current_workload,
            "is_active": self.is_active,
            "completed_tickets": self.completed_tickets,
            "total_performance_points": self.total_performance_points,
            "created_at": _dt_out(self.created_at),
            "updated_at": _dt_out(self.updated_at),
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Agent":
        return cls(
            id=d["id"],
            user_ref=d["user_ref"],
            level=AgentLevel(d["level"]),
            base_capacity=d["base_capacity"],
            bonus_capacity=d.get("bonus_capacity", 0),
            current_workload=d.get("current_workload", 0),
            is_active=d.get("is_active", True),
            completed_tickets=d.get("completed_tickets", 0),
            total_performance_points=d.get("total_performance_points", 0),
            created_at=_dt_in(d.get("created_at")) or utcnow(),
            updated_at=_dt_in(d.get("updated_at")) or utcnow(),
        )


# ── Tickets ──────────────────────────────────────────────────────────────


@dataclass
class Ticket:
    """The unit of work.  Never deleted, only transitioned."""

    title: str
    description: str
    owner_ref: str
    priority: Priority
    category: Category
    id: str = field(default_factory=new_id)
    status: TicketStatus = TicketStatus.NO_AGENT_AVAILABLE
    assigned_agent_ref: str | None = None
    points: int | None = None
    date_started: datetime | None = None
    expected_completion_at: datetime | None = None
    completion_date: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    deadline_warning_sent: bool = False

    def __post_init__(self) -> None:
        self.status = TicketStatus(self.status)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def move_to(self, status: TicketStatus) -> None:
        """Set *status*, refusing any edge the state machine does not allow."""
        status = TicketStatus(status)
        if not can_transition(self.status, status):
            raise IllegalTransitionError(
                f"ticket {self.id}: {self.status.value} -> {status.value} is not allowed"
            )
        self.status = status

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "owner_ref": self.owner_ref,
            "assigned_agent_ref": self.assigned_agent_ref,
            "priority": self.priority.to_dict(),
            "category": self.category.to_dict(),
            "status": self.status.value,
            "points": self.points,
            "date_started": _dt_out(self.date_started),
            "expected_completion_at": _dt_out(self.expected_completion_at),
            "completion_date": _dt_out(self.completion_date),
            "created_at": _dt_out(self.created_at),
            "deadline_warning_sent": self.deadline_warning_sent,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "Ticket":
        return cls(
            id=d["id"],
            title=d["title"],
            description=d.get("description", ""),
            owner_ref=d["owner_ref"],
            assigned_agent_ref=d.get("assigned_agent_ref"),
            priority=Priority.from_dict(d["priority"]),
            category=Category.from_dict(d["category"]),
            status=TicketStatus(d["status"]),
            points=d.get("points"),
            date_started=_dt_in(d.get("date_started")),
            expected_completion_at=_dt_in(d.get("expected_completion_at")),
            completion_date=_dt_in(d.get("completion_date")),
            created_at=_dt_in(d.get("created_at")) or utcnow(),
            deadline_warning_sent=d.get("deadline_warning_sent", False),
        )
