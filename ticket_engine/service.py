"""TicketDesk: the in-process facade over the engine.

Wires one store, one notifier, the lifecycle, the assignment engine and
the sweeps together.  The HTTP layer and the scheduler both go through
the same instance.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from ticket_engine.config import (
    DEFAULT_CATEGORIES,
    DEFAULT_PRIORITIES,
    STORE_BACKEND,
)
from ticket_engine.domain.capacity import change_level
from ticket_engine.domain.models import Agent, AgentLevel, Category, Priority, Ticket, TicketStatus
from ticket_engine.errors import ConflictError, InactiveCategoryError
from ticket_engine.routing.assignment import AssignmentEngine, AssignmentOutcome
from ticket_engine.routing.lifecycle import InvalidTransition, TicketLifecycle
from ticket_engine.routing.notifier import Notifier
from ticket_engine.routing.scheduler import Scheduler
from ticket_engine.routing.sweeps import Sweeps
from ticket_engine.store.base import TicketStore
from ticket_engine.store.memory_store import MemoryStore

logger = logging.getLogger(__name__)


def build_store(backend: str = STORE_BACKEND) -> TicketStore:
    """Instantiate the configured store backend (``memory`` or ``redis``)."""
    if backend == "memory":
        return MemoryStore()
    if backend == "redis":
        from ticket_engine.store.redis_store import RedisStore
        return RedisStore()
    raise ValueError(f"Unknown store backend: {backend!r}")


class TicketDesk:
    """External interface of the ticket engine.

    Parameters
    ----------
    store : TicketStore, optional
        Defaults to :func:`build_store` for ``STORE_BACKEND``.
    notifier : Notifier, optional
    clock : callable, optional
        Source of "now" for starts, completions and deadline checks.
    """

    def __init__(
        self,
        store: TicketStore | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store or build_store()
        self.notifier = notifier or Notifier()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.lifecycle = TicketLifecycle(self.store, self.notifier, self.clock)
        self.engine = AssignmentEngine(self.store, self.notifier, self.lifecycle)
        self.sweeps = Sweeps(self.store, self.engine, self.lifecycle, self.notifier, self.clock)

    def build_scheduler(self) -> Scheduler:
        return Scheduler.for_sweeps(self.sweeps)

    # ── Reference data ───────────────────────────────────────────────

    def register_priority(self, name: str, weight: int, time_limit_hours: int) -> Priority:
        priority = Priority(name, weight, time_limit_hours)
        with self.store.transaction(names=[f"priority:{name}"]):
            if any(p.name == name for p in self.store.list_priorities()):
                raise ConflictError(f"priority {name!r} already exists")
            self.store.save_priority(priority)
        return priority

    def register_category(self, name: str, points: int, description: str = "") -> Category:
        category = Category(name, points, description)
        with self.store.transaction(names=[f"category:{name}"]):
            if any(c.name == name for c in self.store.list_categories()):
                raise ConflictError(f"category {name!r} already exists")
            self.store.save_category(category)
        return category

    def set_category_active(self, name: str, active: bool) -> Category:
        """Retire or revive a category; existing tickets keep their copy."""
        with self.store.transaction(names=[f"category:{name}"]):
            category = replace(self.store.get_category(name), is_active=active)
            self.store.save_category(category)
        logger.info("Category %s is now %s", name, "active" if active else "retired")
        return category

    def list_priorities(self) -> list[Priority]:
        return self.store.list_priorities()

    def list_categories(self, active: bool | None = None) -> list[Category]:
        return [
            c for c in self.store.list_categories()
            if active is None or c.is_active is active
        ]

    def seed_defaults(self) -> None:
        """Register the stock priorities and categories that are missing."""
        known = {p.name for p in self.store.list_priorities()}
        for name, (weight, hours) in DEFAULT_PRIORITIES.items():
            if name not in known:
                self.register_priority(name, weight, hours)
        known = {c.name for c in self.store.list_categories()}
        for name, (description, points) in DEFAULT_CATEGORIES.items():
            if name not in known:
                self.register_category(name, points, description)

    # ── Tickets ──────────────────────────────────────────────────────

    def create_ticket(
        self,
        owner_id: str,
        title: str,
        description: str,
        priority: str,
        category: str,
    ) -> Ticket:
        """Persist a new ticket and route it straight to the best agent.

        Raises :class:`InactiveCategoryError` for a retired category.
        """
        filed_under = self.store.get_category(category)
        if not filed_under.is_active:
            raise InactiveCategoryError(filed_under.name)
        ticket = Ticket(
            title=title,
            description=description,
            owner_ref=owner_id,
            priority=self.store.get_priority(priority),
            category=filed_under,
            created_at=self.clock(),
        )
        with self.store.transaction() as tx:
            tx.add_ticket(ticket)
        logger.info("Created ticket %s (%s/%s) for %s", ticket.id, priority, category, owner_id)
        self.engine.assign(ticket.id, announce=True)
        return self.store.get_ticket(ticket.id)

    def start_ticket(self, ticket_id: str, agent_id: str) -> Ticket | InvalidTransition:
        return self.lifecycle.start(ticket_id, agent_id)

    def complete_ticket(self, ticket_id: str, agent_id: str) -> Ticket | InvalidTransition:
        return self.lifecycle.complete(ticket_id, agent_id)

    def complete_ticket_by_owner(self, ticket_id: str, owner_id: str) -> Ticket | InvalidTransition:
        return self.lifecycle.complete_by_owner(ticket_id, owner_id)

    def assign_ticket(self, ticket_id: str) -> AssignmentOutcome:
        return self.engine.assign(ticket_id)

    def assign_ticket_to_agent(self, ticket_id: str, agent_id: str) -> AssignmentOutcome:
        return self.engine.assign_to_agent(ticket_id, agent_id)

    def get_ticket(self, ticket_id: str) -> Ticket:
        return self.store.get_ticket(ticket_id)

    def list_tickets(
        self,
        status: TicketStatus | None = None,
        agent_id: str | None = None,
        owner_id: str | None = None,
        priority: str | None = None,
        category: str | None = None,
    ) -> list[Ticket]:
        """Tickets matching every given filter, oldest first."""
        return self.store.list_tickets(
            lambda t: (status is None or t.status is TicketStatus(status))
            and (agent_id is None or t.assigned_agent_ref == agent_id)
            and (owner_id is None or t.owner_ref == owner_id)
            and (priority is None or t.priority.name == priority)
            and (category is None or t.category.name == category)
        )

    # ── Agents ───────────────────────────────────────────────────────

    def create_agent(self, user_ref: str, level: AgentLevel = AgentLevel.JUNIOR) -> Agent:
        """Promote *user_ref* to agent; a user can own only one agent."""
        with self.store.transaction(names=[f"user:{user_ref}"]) as tx:
            if self.store.find_agent_by_user(user_ref) is not None:
                raise ConflictError(f"user {user_ref!r} already has an agent")
            agent = tx.add_agent(Agent(user_ref=user_ref, level=AgentLevel(level)))
        logger.info("Created %s agent %s for user %s", agent.level.value, agent.id, user_ref)
        return agent

    def get_agent(self, agent_id: str) -> Agent:
        return self.store.get_agent(agent_id)

    def list_agents(self, active: bool | None = None) -> list[Agent]:
        return self.store.list_agents(lambda a: active is None or a.is_active is active)

    def set_agent_active(self, agent_id: str, active: bool) -> Agent:
        """Toggle availability; deactivation reclaims open tickets at once."""
        with self.store.transaction(agent_ids=[agent_id]) as tx:
            agent = tx.agent(agent_id)
            agent.is_active = active
            agent.updated_at = self.clock()
        logger.info("Agent %s is now %s", agent_id, "active" if active else "inactive")
        if not active:
            self.engine.reassign_from_agent(agent_id)
        return self.store.get_agent(agent_id)

    def change_agent_level(self, agent_id: str, level: AgentLevel) -> Agent:
        with self.store.transaction(agent_ids=[agent_id]) as tx:
            agent = tx.agent(agent_id)
            change_level(agent, AgentLevel(level))
        return self.store.get_agent(agent_id)

    def agent_status(self) -> dict:
        return self.engine.status()

    def agent_stats(self, agent_id: str) -> dict:
        """Capacity and progress summary for one agent.

        ``next_level_at`` is the completed-ticket count that unlocks the
        next level, or ``None`` once the agent is SENIOR.
        """
        agent = self.store.get_agent(agent_id)
        held = self.store.list_tickets(
            lambda t: t.assigned_agent_ref == agent_id and t.is_open
        )
        upcoming = agent.level.next_level
        return {
            "agent_id": agent.id,
            "user_ref": agent.user_ref,
            "level": agent.level.value,
            "base_capacity": agent.base_capacity,
            "total_capacity": agent.total_capacity,
            "current_workload": agent.current_workload,
            "available_capacity": agent.total_capacity - agent.current_workload,
            "assigned_tickets": sum(t.status is TicketStatus.ASSIGNED for t in held),
            "ongoing_tickets": sum(t.status is TicketStatus.ONGOING for t in held),
            "completed_tickets": agent.completed_tickets,
            "total_performance_points": agent.total_performance_points,
            "next_level_at": upcoming.min_completed if upcoming is not None else None,
        }

    def leaderboard(self) -> list[dict]:
        """Every agent ranked by performance points, highest first."""
        ranked = sorted(self.store.list_agents(), key=lambda a: -a.total_performance_points)
        return [
            {
                "rank": i,
                "agent_id": a.id,
                "user_ref": a.user_ref,
                "level": a.level.value,
                "total_performance_points": a.total_performance_points,
                "completed_tickets": a.completed_tickets,
            }
            for i, a in enumerate(ranked, start=1)
        ]
