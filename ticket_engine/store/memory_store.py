"""In-process store: dicts of entities plus a per-entity lock registry.

Used by default (``STORE_BACKEND=memory``) and throughout the tests.
Stored objects are never handed out; every load returns a deep copy.
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, contextmanager
from copy import deepcopy

from ticket_engine.config import LOCK_TIMEOUT_SECONDS
from ticket_engine.domain.models import Agent, Category, Priority, Ticket
from ticket_engine.errors import StoreError
from ticket_engine.store.base import LockKey, TicketStore

logger = logging.getLogger(__name__)


class MemoryStore(TicketStore):
    """Thread-safe in-memory :class:`TicketStore`.

    Parameters
    ----------
    lock_timeout : float
        Seconds to wait for each entity lock before raising
        :class:`StoreError`.
    """

    def __init__(self, lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        self._lock_timeout = lock_timeout
        self._tickets: dict[str, Ticket] = {}
        self._agents: dict[str, Agent] = {}
        self._priorities: dict[str, Priority] = {}
        self._categories: dict[str, Category] = {}
        # Guards the dicts themselves; held only for the copy in/out.
        self._data_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._entity_locks: dict[LockKey, threading.Lock] = {}

    # ── Locking ──────────────────────────────────────────────────────

    def _entity_lock(self, key: LockKey) -> threading.Lock:
        with self._registry_lock:
            lock = self._entity_locks.get(key)
            if lock is None:
                lock = self._entity_locks[key] = threading.Lock()
            return lock

    @contextmanager
    def _locked(self, keys: list[LockKey]):
        with ExitStack() as stack:
            for key in keys:
                lock = self._entity_lock(key)
                if not lock.acquire(timeout=self._lock_timeout):
                    logger.error("Timed out waiting for lock %s:%s", *key)
                    raise StoreError(f"timed out locking {key[0]} {key[1]!r}")
                stack.callback(lock.release)
            yield

    # ── Entities ─────────────────────────────────────────────────────

    def _load_ticket(self, ticket_id: str) -> Ticket | None:
        with self._data_lock:
            return deepcopy(self._tickets.get(ticket_id))

    def _load_agent(self, agent_id: str) -> Agent | None:
        with self._data_lock:
            return deepcopy(self._agents.get(agent_id))

    def _all_tickets(self) -> list[Ticket]:
        with self._data_lock:
            return deepcopy(list(self._tickets.values()))

    def _all_agents(self) -> list[Agent]:
        with self._data_lock:
            return deepcopy(list(self._agents.values()))

    def _commit(self, tickets: list[Ticket], agents: list[Agent]) -> None:
        tickets, agents = deepcopy(tickets), deepcopy(agents)
        with self._data_lock:
            for ticket in tickets:
                self._tickets[ticket.id] = ticket
            for agent in agents:
                self._agents[agent.id] = agent
        logger.debug("Committed %d ticket(s), %d agent(s)", len(tickets), len(agents))

    # ── Reference data ───────────────────────────────────────────────

    def _load_priority(self, name: str) -> Priority | None:
        return self._priorities.get(name)

    def _load_category(self, name: str) -> Category | None:
        return self._categories.get(name)

    def save_priority(self, priority: Priority) -> None:
        self._priorities[priority.name] = priority

    def save_category(self, category: Category) -> None:
        self._categories[category.name] = category

    def list_priorities(self) -> list[Priority]:
        return sorted(self._priorities.values(), key=lambda p: p.weight)

    def list_categories(self) -> list[Category]:
        return sorted(self._categories.values(), key=lambda c: c.name)
