"""Transactional store contract shared by the memory and Redis backends.

Every read-modify-write of a ticket or agent goes through
:meth:`TicketStore.transaction`:

1. lock exactly the requested entities, in canonical order;
2. hand out working copies;
3. on normal exit, check the capacity invariant of every agent and write
   all working copies in one atomic step, then run ``after_commit`` hooks;
4. on exception, discard the working copies and re-raise.

Plain reads (``get_*`` / ``list_*``) take no locks and return detached
snapshots.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterable, Iterator

from ticket_engine.domain.capacity import check_invariant
from ticket_engine.domain.models import Agent, Category, Priority, Ticket
from ticket_engine.errors import (
    AgentNotFound,
    CategoryNotFound,
    PriorityNotFound,
    StoreError,
    TicketNotFound,
)

LockKey = tuple[str, str]


def lock_keys(
    ticket_ids: Iterable[str] = (),
    agent_ids: Iterable[str] = (),
    names: Iterable[str] = (),
) -> list[LockKey]:
    """Canonical (sorted, de-duplicated) lock order for a transaction."""
    keys = {("agent", a) for a in agent_ids if a}
    keys |= {("name", n) for n in names if n}
    keys |= {("ticket", t) for t in ticket_ids if t}
    return sorted(keys)


class Transaction:
    """Working copies of the locked entities plus staged new ones."""

    def __init__(
        self,
        tickets: dict[str, Ticket | None],
        agents: dict[str, Agent | None],
    ) -> None:
        self._tickets = tickets
        self._agents = agents
        self._hooks: list[Callable[[], None]] = []

    # ── Tickets ──────────────────────────────────────────────────────

    def find_ticket(self, ticket_id: str) -> Ticket | None:
        if ticket_id not in self._tickets:
            raise StoreError(f"ticket {ticket_id!r} is not locked by this transaction")
        return self._tickets[ticket_id]

    def ticket(self, ticket_id: str) -> Ticket:
        ticket = self.find_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def add_ticket(self, ticket: Ticket) -> Ticket:
        self._tickets[ticket.id] = ticket
        return ticket

    # ── Agents ───────────────────────────────────────────────────────

    def find_agent(self, agent_id: str) -> Agent | None:
        if agent_id not in self._agents:
            raise StoreError(f"agent {agent_id!r} is not locked by this transaction")
        return self._agents[agent_id]

    def agent(self, agent_id: str) -> Agent:
        agent = self.find_agent(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    def add_agent(self, agent: Agent) -> Agent:
        self._agents[agent.id] = agent
        return agent

    # ── Commit plumbing ──────────────────────────────────────────────

    def after_commit(self, hook: Callable[[], None]) -> None:
        """Run *hook* once the writes are durable (skipped on rollback)."""
        self._hooks.append(hook)

    @property
    def staged_tickets(self) -> list[Ticket]:
        return [t for t in self._tickets.values() if t is not None]

    @property
    def staged_agents(self) -> list[Agent]:
        return [a for a in self._agents.values() if a is not None]

    def run_hooks(self) -> None:
        for hook in self._hooks:
            hook()


class TicketStore:
    """Base class; backends implement the underscore primitives."""

    def ping(self) -> bool:
        """True when the backing store is reachable."""
        return True

    # ── Transactions ─────────────────────────────────────────────────

    @contextmanager
    def transaction(
        self,
        ticket_ids: Iterable[str] = (),
        agent_ids: Iterable[str] = (),
        names: Iterable[str] = (),
    ) -> Iterator[Transaction]:
        ticket_ids = [t for t in ticket_ids if t]
        agent_ids = [a for a in agent_ids if a]
        keys = lock_keys(ticket_ids, agent_ids, names)
        with self._locked(keys):
            tx = Transaction(
                tickets={t: self._load_ticket(t) for t in ticket_ids},
                agents={a: self._load_agent(a) for a in agent_ids},
            )
            yield tx
            for agent in tx.staged_agents:
                check_invariant(agent)
            self._commit(tx.staged_tickets, tx.staged_agents)
        tx.run_hooks()

    # ── Snapshot reads ───────────────────────────────────────────────

    def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = self._load_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFound(ticket_id)
        return ticket

    def get_agent(self, agent_id: str) -> Agent:
        agent = self._load_agent(agent_id)
        if agent is None:
            raise AgentNotFound(agent_id)
        return agent

    def list_tickets(self, predicate: Callable[[Ticket], bool] | None = None) -> list[Ticket]:
        tickets = sorted(self._all_tickets(), key=lambda t: (t.created_at, t.id))
        return [t for t in tickets if predicate is None or predicate(t)]

    def list_agents(self, predicate: Callable[[Agent], bool] | None = None) -> list[Agent]:
        agents = sorted(self._all_agents(), key=lambda a: a.id)
        return [a for a in agents if predicate is None or predicate(a)]

    def find_agent_by_user(self, user_ref: str) -> Agent | None:
        matches = self.list_agents(lambda a: a.user_ref == user_ref)
        return matches[0] if matches else None

    # ── Reference data ───────────────────────────────────────────────

    def get_priority(self, name: str) -> Priority:
        priority = self._load_priority(name)
        if priority is None:
            raise PriorityNotFound(name)
        return priority

    def get_category(self, name: str) -> Category:
        category = self._load_category(name)
        if category is None:
            raise CategoryNotFound(name)
        return category

    # ── Backend primitives ───────────────────────────────────────────

    def _locked(self, keys: list[LockKey]):
        raise NotImplementedError

    def _load_ticket(self, ticket_id: str) -> Ticket | None:
        raise NotImplementedError

    def _load_agent(self, agent_id: str) -> Agent | None:
        raise NotImplementedError

    def _all_tickets(self) -> list[Ticket]:
        raise NotImplementedError

    def _all_agents(self) -> list[Agent]:
        raise NotImplementedError

    def _commit(self, tickets: list[Ticket], agents: list[Agent]) -> None:
        raise NotImplementedError

    def _load_priority(self, name: str) -> Priority | None:
        raise NotImplementedError

    def _load_category(self, name: str) -> Category | None:
        raise NotImplementedError

    def save_priority(self, priority: Priority) -> None:
        raise NotImplementedError

    def save_category(self, category: Category) -> None:
        raise NotImplementedError

    def list_priorities(self) -> list[Priority]:
        raise NotImplementedError

    def list_categories(self) -> list[Category]:
        raise NotImplementedError
