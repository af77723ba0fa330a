"""Reconciliation sweeps run by the scheduler.

Each sweep scans a snapshot, then handles every matching entity in its
own transaction.  A failure on one entity is logged and counted; the
sweep carries on with the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from ticket_engine.config import DEADLINE_WARNING_FRACTION
from ticket_engine.domain.models import Ticket, TicketStatus
from ticket_engine.routing.assignment import AssignmentEngine
from ticket_engine.routing.lifecycle import TicketLifecycle
from ticket_engine.routing.notifier import DeadlineApproaching, Notifier
from ticket_engine.store.base import TicketStore

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    name: str
    processed: int = 0
    changed: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "processed": self.processed,
            "changed": self.changed,
            "failed": self.failed,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def warning_due(ticket: Ticket, now: datetime) -> bool:
    """True once 75% of the allotted time has elapsed but the deadline has not."""
    if ticket.date_started is None or ticket.expected_completion_at is None:
        return False
    window = ticket.expected_completion_at - ticket.date_started
    threshold = ticket.date_started + window * DEADLINE_WARNING_FRACTION
    return threshold <= now < ticket.expected_completion_at


class Sweeps:
    """The four periodic reconciliation jobs, as parameterless methods."""

    def __init__(
        self,
        store: TicketStore,
        engine: AssignmentEngine,
        lifecycle: TicketLifecycle,
        notifier: Notifier,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._engine = engine
        self._lifecycle = lifecycle
        self._notifier = notifier
        self._clock = clock

    def _each(self, report: SweepReport, items, handle: Callable) -> SweepReport:
        for item in items:
            report.processed += 1
            try:
                if handle(item):
                    report.changed += 1
            except Exception:
                report.failed += 1
                logger.exception("%s sweep failed on %s", report.name, getattr(item, "id", item))
        logger.info(
            "%s sweep: processed=%d changed=%d failed=%d",
            report.name, report.processed, report.changed, report.failed,
        )
        return report

    # ── Jobs ─────────────────────────────────────────────────────────

    def pending(self) -> SweepReport:
        """Offer every NO_AGENT_AVAILABLE ticket to the assignment engine."""
        backlog = self._store.list_tickets(
            lambda t: t.status is TicketStatus.NO_AGENT_AVAILABLE
        )
        return self._each(
            SweepReport("pending"), backlog,
            lambda t: self._engine.assign(t.id).assigned,
        )

    def inactive_agents(self) -> SweepReport:
        """Reclaim open tickets still held by deactivated agents."""
        holders = {t.assigned_agent_ref for t in self._store.list_tickets(lambda t: t.is_open)}
        inactive = self._store.list_agents(lambda a: not a.is_active and a.id in holders)
        return self._each(
            SweepReport("inactive"), inactive,
            lambda a: bool(self._engine.reassign_from_agent(a.id)),
        )

    def validate_assignments(self) -> SweepReport:
        """Catch bindings to agents that are inactive or no longer exist."""
        agents = {a.id: a for a in self._store.list_agents()}

        def orphaned(t: Ticket) -> bool:
            if not t.is_open or t.assigned_agent_ref is None:
                return False
            agent = agents.get(t.assigned_agent_ref)
            return agent is None or not agent.is_active

        def repair(t: Ticket) -> bool:
            result = self._lifecycle.force_unassign(t.id, reason="validation sweep")
            if not result:
                return False
            self._engine.assign(t.id, announce=True)
            return True

        return self._each(SweepReport("validation"), self._store.list_tickets(orphaned), repair)

    def deadlines(self) -> SweepReport:
        """Warn once per start when an ONGOING ticket nears its deadline."""
        now = self._clock()
        due = self._store.list_tickets(
            lambda t: t.status is TicketStatus.ONGOING
            and not t.deadline_warning_sent
            and warning_due(t, now)
        )
        return self._each(SweepReport("deadline"), due, lambda t: self._warn(t.id, now))

    def _warn(self, ticket_id: str, now: datetime) -> bool:
        with self._store.transaction([ticket_id]) as tx:
            ticket = tx.ticket(ticket_id)
            if (
                ticket.status is not TicketStatus.ONGOING
                or ticket.deadline_warning_sent
                or not warning_due(ticket, now)
            ):
                return False
            ticket.deadline_warning_sent = True
            tx.after_commit(
                lambda: self._notifier.emit(DeadlineApproaching(
                    ticket.id,
                    ticket.assigned_agent_ref,
                    ticket.expected_completion_at.isoformat(),
                ))
            )
        logger.info("Deadline warning sent for ticket %s", ticket_id)
        return True

    def run_all(self) -> list[SweepReport]:
        return [self.inactive_agents(), self.validate_assignments(), self.pending(), self.deadlines()]
