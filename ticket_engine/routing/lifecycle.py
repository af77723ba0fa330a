"""Ticket state machine.

    NO_AGENT_AVAILABLE ──assign──▶ ASSIGNED ──start──▶ ONGOING ──complete──▶ COMPLETED
            ▲                         │                    │
            └──────force_unassign─────┴────────────────────┘

Only the assignment engine moves a ticket out of NO_AGENT_AVAILABLE.
COMPLETED is terminal.  Every request is checked against
:func:`can_transition` before anything is written; rejected requests come
back as :class:`InvalidTransition` values and leave the ticket untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from ticket_engine.domain.capacity import record_completion
from ticket_engine.domain.models import Ticket, TicketStatus, can_transition
from ticket_engine.domain.scoring import calculate_points
from ticket_engine.routing.assignment import release, unbind
from ticket_engine.routing.notifier import Notifier, TicketCompleted, TicketStarted
from ticket_engine.store.base import TicketStore, Transaction

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class InvalidTransition:
    """A rejected lifecycle request; the ticket was not modified."""

    ticket_id: str
    status: TicketStatus
    reason: str

    def __bool__(self) -> bool:
        return False


class TicketLifecycle:
    """Apply start / complete / force-unassign transitions.

    Parameters
    ----------
    store : TicketStore
    notifier : Notifier
    clock : callable
        Returns the current UTC time; injected so tests control "now".
    """

    def __init__(
        self,
        store: TicketStore,
        notifier: Notifier,
        clock: Clock = _utcnow,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock

    def _reject(self, ticket: Ticket, reason: str) -> InvalidTransition:
        logger.info("Rejected transition on ticket %s (%s): %s",
                    ticket.id, ticket.status.value, reason)
        return InvalidTransition(ticket.id, ticket.status, reason)

    def _refuse(self, ticket: Ticket, dst: TicketStatus, verb: str) -> InvalidTransition | None:
        if can_transition(ticket.status, dst):
            return None
        return self._reject(ticket, f"cannot {verb} a ticket in {ticket.status.value}")

    def start(self, ticket_id: str, agent_id: str) -> Ticket | InvalidTransition:
        with self._store.transaction([ticket_id]) as tx:
            ticket = tx.ticket(ticket_id)
            refused = self._refuse(ticket, TicketStatus.ONGOING, "start")
            if refused is not None:
                return refused
            if ticket.assigned_agent_ref != agent_id:
                return self._reject(ticket, f"ticket is not assigned to agent {agent_id}")
            now = self._clock()
            ticket.move_to(TicketStatus.ONGOING)
            ticket.date_started = now
            ticket.expected_completion_at = now + timedelta(hours=ticket.priority.time_limit_hours)
            ticket.deadline_warning_sent = False
            tx.after_commit(lambda: self._notifier.emit(TicketStarted(ticket.id, agent_id)))
        logger.info("Ticket %s started by agent %s", ticket_id, agent_id)
        return ticket

    def complete(self, ticket_id: str, agent_id: str) -> Ticket | InvalidTransition:
        """Finish an ONGOING ticket as its agent, score it and credit the agent."""
        with self._store.transaction([ticket_id], [agent_id]) as tx:
            ticket = tx.ticket(ticket_id)
            refused = self._refuse(ticket, TicketStatus.COMPLETED, "complete")
            if refused is not None:
                return refused
            if ticket.assigned_agent_ref != agent_id:
                return self._reject(ticket, f"ticket is not assigned to agent {agent_id}")
            points = self._finish(tx, ticket)
        logger.info("Ticket %s completed by agent %s for %d points", ticket_id, agent_id, points)
        return ticket

    def complete_by_owner(self, ticket_id: str, owner_id: str) -> Ticket | InvalidTransition:
        """Let the ticket's owner close an ONGOING ticket.

        Scoring and agent credit are identical to :meth:`complete`; only
        the caller check differs.
        """
        snapshot = self._store.get_ticket(ticket_id)
        agent_id = snapshot.assigned_agent_ref
        with self._store.transaction([ticket_id], [agent_id]) as tx:
            ticket = tx.ticket(ticket_id)
            if ticket.owner_ref != owner_id:
                return self._reject(ticket, f"ticket is not owned by {owner_id}")
            refused = self._refuse(ticket, TicketStatus.COMPLETED, "complete")
            if refused is not None:
                return refused
            if ticket.assigned_agent_ref != agent_id:
                return self._reject(ticket, "binding changed concurrently")
            points = self._finish(tx, ticket)
        logger.info("Ticket %s closed by owner %s for %d points", ticket_id, owner_id, points)
        return ticket

    def _finish(self, tx: Transaction, ticket: Ticket) -> int:
        agent = tx.agent(ticket.assigned_agent_ref)
        now = self._clock()
        points = calculate_points(ticket, now)
        release(ticket, agent)
        record_completion(agent, points)
        ticket.points = points
        ticket.completion_date = now
        ticket.move_to(TicketStatus.COMPLETED)
        tx.after_commit(
            lambda: self._notifier.emit(TicketCompleted(ticket.id, points, agent.id))
        )
        return points

    def force_unassign(self, ticket_id: str, reason: str = "") -> Ticket | InvalidTransition:
        """Return an open ticket to the backlog, releasing its workload.

        Start timestamps are cleared: work restarts with the next agent.
        """
        snapshot = self._store.get_ticket(ticket_id)
        with self._store.transaction([ticket_id], [snapshot.assigned_agent_ref]) as tx:
            ticket = tx.ticket(ticket_id)
            refused = self._refuse(ticket, TicketStatus.NO_AGENT_AVAILABLE, "unassign")
            if refused is not None:
                return refused
            previous = ticket.assigned_agent_ref
            if previous is not None:
                if previous != snapshot.assigned_agent_ref:
                    return self._reject(ticket, "binding changed concurrently")
                agent = tx.find_agent(previous)
                if agent is not None:
                    release(ticket, agent)
            unbind(ticket)
        logger.info("Ticket %s unassigned from agent %s (%s)", ticket_id, previous, reason)
        return ticket
