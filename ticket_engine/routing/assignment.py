"""Capacity-aware agent selection and binding.

For a single ticket ``assign()`` picks the active agent with spare room
for the ticket's priority weight and the lowest relative utilisation
(``current_workload / total_capacity``), ties broken by agent id.

Selection runs on a snapshot; the binding itself happens in one store
transaction over the (ticket, agent) pair which re-checks everything, so
two concurrent callers can never over-commit the same agent.  When the
re-check fails the next-best candidate is tried, up to
``ASSIGN_MAX_ATTEMPTS`` times.

"No agent available" is an outcome, never an exception.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from ticket_engine.config import ASSIGN_MAX_ATTEMPTS
from ticket_engine.domain.capacity import add_workload, has_capacity_for, reduce_workload
from ticket_engine.domain.models import Agent, Priority, Ticket, TicketStatus, can_transition
from ticket_engine.routing.notifier import NoAgentAvailable, Notifier, TicketAssigned
from ticket_engine.store.base import TicketStore

if TYPE_CHECKING:
    from ticket_engine.routing.lifecycle import TicketLifecycle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AssignmentOutcome:
    ticket_id: str
    status: TicketStatus
    agent_id: str | None = None
    changed: bool = False

    @property
    def assigned(self) -> bool:
        return self.agent_id is not None

    @classmethod
    def of(cls, ticket: Ticket, changed: bool = False) -> "AssignmentOutcome":
        return cls(ticket.id, ticket.status, ticket.assigned_agent_ref, changed)


def release(ticket: Ticket, agent: Agent) -> None:
    """Give the ticket's weight back to *agent* (clamped at zero)."""
    reduce_workload(agent, ticket.priority.weight)


def _bind(ticket: Ticket, agent: Agent) -> None:
    add_workload(agent, ticket.priority.weight)
    ticket.assigned_agent_ref = agent.id
    ticket.move_to(TicketStatus.ASSIGNED)


def unbind(ticket: Ticket) -> None:
    """Put an open ticket back in the backlog.

    Workload must already be released.  Start timestamps are cleared and the
    deadline warning re-armed: work restarts with the next agent.
    """
    ticket.move_to(TicketStatus.NO_AGENT_AVAILABLE)
    ticket.assigned_agent_ref = None
    ticket.date_started = None
    ticket.expected_completion_at = None
    ticket.deadline_warning_sent = False


def _assignable(ticket: Ticket) -> bool:
    return can_transition(ticket.status, TicketStatus.ASSIGNED)


class AssignmentEngine:
    """Bind tickets to agents.

    Parameters
    ----------
    store : TicketStore
        Transactional store shared with the lifecycle and scheduler.
    notifier : Notifier
        Receives ``TicketAssigned`` / ``NoAgentAvailable`` after commit.
    lifecycle : TicketLifecycle
        Used to unbind tickets when reclaiming them from an agent.
    """

    def __init__(
        self,
        store: TicketStore,
        notifier: Notifier,
        lifecycle: "TicketLifecycle",
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._lifecycle = lifecycle

    # ── Selection ────────────────────────────────────────────────────

    def candidates(self, priority: Priority, exclude: set[str] | None = None) -> list[Agent]:
        exclude = exclude or set()
        pool = self._store.list_agents(
            lambda a: a.id not in exclude and has_capacity_for(a, priority.weight)
        )
        pool.sort(key=lambda a: (a.current_workload / a.total_capacity, a.id))
        return pool

    def find_best_agent(self, priority: Priority, exclude: set[str] | None = None) -> Agent | None:
        pool = self.candidates(priority, exclude)
        return pool[0] if pool else None

    # ── Binding ──────────────────────────────────────────────────────

    def assign(self, ticket_id: str, *, announce: bool = False) -> AssignmentOutcome:
        """Bind *ticket_id* to the best available agent.

        Idempotent: an already-bound or completed ticket is returned
        untouched.  With *announce*, a ``NoAgentAvailable`` event is
        emitted when nobody can take the ticket.
        """
        snapshot = self._store.get_ticket(ticket_id)
        if not _assignable(snapshot):
            return AssignmentOutcome.of(snapshot)

        tried: set[str] = set()
        for attempt in range(1, ASSIGN_MAX_ATTEMPTS + 1):
            candidate = self.find_best_agent(snapshot.priority, exclude=tried)
            if candidate is None:
                break
            with self._store.transaction([ticket_id], [candidate.id]) as tx:
                ticket = tx.ticket(ticket_id)
                if not _assignable(ticket):
                    return AssignmentOutcome.of(ticket)
                agent = tx.find_agent(candidate.id)
                if agent is not None and has_capacity_for(agent, ticket.priority.weight):
                    _bind(ticket, agent)
                    tx.after_commit(
                        lambda: self._notifier.emit(TicketAssigned(ticket.id, agent.id))
                    )
                    logger.info(
                        "Assigned ticket %s to agent %s (load=%d/%d)",
                        ticket.id, agent.id, agent.current_workload, agent.total_capacity,
                    )
                    return AssignmentOutcome.of(ticket, changed=True)
            logger.debug(
                "Candidate %s for ticket %s lost capacity (attempt %d)",
                candidate.id, ticket_id, attempt,
            )
            tried.add(candidate.id)

        return self._mark_unassigned(ticket_id, announce)

    def _mark_unassigned(self, ticket_id: str, announce: bool) -> AssignmentOutcome:
        """Leave *ticket_id* in the backlog; announce it when asked to."""
        with self._store.transaction([ticket_id]) as tx:
            ticket = tx.ticket(ticket_id)
            if not _assignable(ticket):
                return AssignmentOutcome.of(ticket)
            if announce:
                tx.after_commit(
                    lambda: self._notifier.emit(
                        NoAgentAvailable(ticket.id, priority=ticket.priority.name)
                    )
                )
        if announce:
            logger.warning(
                "No agent available for ticket %s (weight=%d)",
                ticket_id, ticket.priority.weight,
            )
        else:
            logger.debug("Ticket %s still waiting for an agent", ticket_id)
        return AssignmentOutcome.of(ticket)

    def assign_to_agent(self, ticket_id: str, agent_id: str) -> AssignmentOutcome:
        """Manually move *ticket_id* onto *agent_id*.

        An open ticket is first unbound (previous agent released, back to
        NO_AGENT_AVAILABLE) and then bound to the target, all in one
        transaction, so work restarts from ASSIGNED.  When the target lacks
        capacity the ticket is left exactly as it was.
        """
        for _ in range(ASSIGN_MAX_ATTEMPTS):
            snapshot = self._store.get_ticket(ticket_id)
            self._store.get_agent(agent_id)
            previous = snapshot.assigned_agent_ref
            with self._store.transaction([ticket_id], [agent_id, previous]) as tx:
                ticket = tx.ticket(ticket_id)
                if ticket.assigned_agent_ref != previous:
                    continue
                if ticket.status is TicketStatus.COMPLETED or previous == agent_id:
                    return AssignmentOutcome.of(ticket)
                target = tx.agent(agent_id)
                if not has_capacity_for(target, ticket.priority.weight):
                    logger.warning(
                        "Agent %s cannot take ticket %s (load=%d/%d, active=%s)",
                        agent_id, ticket_id, target.current_workload,
                        target.total_capacity, target.is_active,
                    )
                    return AssignmentOutcome(ticket.id, ticket.status, None, False)
                if ticket.is_open:
                    old = tx.find_agent(previous) if previous is not None else None
                    if old is not None:
                        release(ticket, old)
                    unbind(ticket)
                _bind(ticket, target)
                tx.after_commit(
                    lambda: self._notifier.emit(TicketAssigned(ticket.id, target.id))
                )
                logger.info(
                    "Manually assigned ticket %s: %s → %s", ticket_id, previous, agent_id,
                )
                return AssignmentOutcome.of(ticket, changed=True)
        snapshot = self._store.get_ticket(ticket_id)
        return AssignmentOutcome(snapshot.id, snapshot.status, None, False)

    # ── Reclaiming ───────────────────────────────────────────────────

    def reassign_from_agent(self, agent_id: str) -> list[AssignmentOutcome]:
        """Pull every open ticket off *agent_id* and route it again.

        Each ticket is unbound in its own transaction (workload released
        first), then offered to the remaining agents best-effort.
        """
        open_tickets = self._store.list_tickets(
            lambda t: t.assigned_agent_ref == agent_id and t.is_open
        )
        outcomes: list[AssignmentOutcome] = []
        for snapshot in open_tickets:
            self._lifecycle.force_unassign(snapshot.id, reason=f"agent {agent_id} unavailable")
            outcomes.append(self.assign(snapshot.id, announce=True))
        if open_tickets:
            logger.info(
                "Reclaimed %d ticket(s) from agent %s; %d re-assigned",
                len(open_tickets), agent_id, sum(o.assigned for o in outcomes),
            )
        return outcomes

    # ── Introspection ────────────────────────────────────────────────

    def status(self) -> dict:
        return {
            a.id: {
                "load": a.current_workload,
                "capacity": a.total_capacity,
                "utilisation": round(a.utilisation, 2),
                "active": a.is_active,
            }
            for a in self._store.list_agents()
        }
