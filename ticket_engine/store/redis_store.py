"""Redis-backed store shared by every engine process.

Layout (prefix ``ticket_engine``):

* ``ticket_engine:ticket:<id>`` / ``ticket_engine:agent:<id>``: JSON
* ``ticket_engine:tickets`` / ``ticket_engine:agents``: id index sets
* ``ticket_engine:priorities`` / ``ticket_engine:categories``: hashes
* ``ticket_engine:lock:<kind>:<id>``: per-entity locks (SET NX + expiry)

Entity locks are taken in canonical order through redis-py's ``Lock``;
staged writes are flushed in a single MULTI/EXEC pipeline.
"""

from __future__ import annotations

import json
import logging
from contextlib import ExitStack, contextmanager

import redis
from redis.exceptions import LockError, RedisError

from ticket_engine.config import (
    LOCK_TIMEOUT_SECONDS,
    LOCK_TTL_SECONDS,
    REDIS_KEY_PREFIX,
    REDIS_URL,
)
from ticket_engine.domain.models import Agent, Category, Priority, Ticket
from ticket_engine.errors import StoreError
from ticket_engine.store.base import LockKey, TicketStore

logger = logging.getLogger(__name__)

# Redis key helpers
def _ticket_key(tid: str) -> str:      return f"{REDIS_KEY_PREFIX}:ticket:{tid}"
def _agent_key(aid: str) -> str:       return f"{REDIS_KEY_PREFIX}:agent:{aid}"
def _lock_key(key: LockKey) -> str:    return f"{REDIS_KEY_PREFIX}:lock:{key[0]}:{key[1]}"
_TICKET_INDEX = f"{REDIS_KEY_PREFIX}:tickets"
_AGENT_INDEX = f"{REDIS_KEY_PREFIX}:agents"
_PRIORITIES = f"{REDIS_KEY_PREFIX}:priorities"
_CATEGORIES = f"{REDIS_KEY_PREFIX}:categories"


class RedisStore(TicketStore):
    """:class:`TicketStore` over a synchronous redis-py client.

    Parameters
    ----------
    client : redis.Redis, optional
        Pre-built client (tests inject a mock).  Built from *redis_url*
        with ``decode_responses=True`` otherwise.
    redis_url : str
        Connection URL.  Defaults to ``REDIS_URL``.
    """

    def __init__(
        self,
        client: redis.Redis | None = None,
        redis_url: str = REDIS_URL,
        lock_ttl: float = LOCK_TTL_SECONDS,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self._redis = client or redis.Redis.from_url(
            redis_url, decode_responses=True, socket_connect_timeout=2,
        )
        self._lock_ttl = lock_ttl
        self._lock_timeout = lock_timeout

    def ping(self) -> bool:
        try:
            return bool(self._redis.ping())
        except RedisError as exc:
            logger.warning("Redis ping failed (%s)", exc)
            return False

    # ── Locking ──────────────────────────────────────────────────────

    @contextmanager
    def _locked(self, keys: list[LockKey]):
        with ExitStack() as stack:
            for key in keys:
                lock = self._redis.lock(
                    _lock_key(key),
                    timeout=self._lock_ttl,
                    blocking_timeout=self._lock_timeout,
                )
                try:
                    acquired = lock.acquire()
                except RedisError as exc:
                    raise StoreError(f"lock {key[0]} {key[1]!r} failed: {exc}") from exc
                if not acquired:
                    logger.error("Timed out waiting for lock %s:%s", *key)
                    raise StoreError(f"timed out locking {key[0]} {key[1]!r}")
                stack.callback(self._release, lock, key)
            yield

    @staticmethod
    def _release(lock, key: LockKey) -> None:
        try:
            lock.release()
        except LockError:
            # Expired under us; the TTL already freed it.
            logger.warning("Lock %s:%s expired before release", *key)

    # ── Entities ─────────────────────────────────────────────────────

    def _get(self, key: str) -> str | None:
        try:
            return self._redis.get(key)
        except RedisError as exc:
            raise StoreError(f"read {key} failed: {exc}") from exc

    def _load_ticket(self, ticket_id: str) -> Ticket | None:
        raw = self._get(_ticket_key(ticket_id))
        return Ticket.from_dict(json.loads(raw)) if raw else None

    def _load_agent(self, agent_id: str) -> Agent | None:
        raw = self._get(_agent_key(agent_id))
        return Agent.from_dict(json.loads(raw)) if raw else None

    def _load_many(self, index: str, key_fn) -> list[dict]:
        try:
            ids = sorted(self._redis.smembers(index))
            if not ids:
                return []
            raws = self._redis.mget([key_fn(i) for i in ids])
        except RedisError as exc:
            raise StoreError(f"scan {index} failed: {exc}") from exc
        return [json.loads(r) for r in raws if r]

    def _all_tickets(self) -> list[Ticket]:
        return [Ticket.from_dict(d) for d in self._load_many(_TICKET_INDEX, _ticket_key)]

    def _all_agents(self) -> list[Agent]:
        return [Agent.from_dict(d) for d in self._load_many(_AGENT_INDEX, _agent_key)]

    def _commit(self, tickets: list[Ticket], agents: list[Agent]) -> None:
        """Write every staged entity inside one MULTI/EXEC transaction."""
        try:
            with self._redis.pipeline(transaction=True) as pipe:
                for ticket in tickets:
                    pipe.set(_ticket_key(ticket.id), json.dumps(ticket.to_dict()))
                    pipe.sadd(_TICKET_INDEX, ticket.id)
                for agent in agents:
                    pipe.set(_agent_key(agent.id), json.dumps(agent.to_dict()))
                    pipe.sadd(_AGENT_INDEX, agent.id)
                pipe.execute()
        except RedisError as exc:
            raise StoreError(f"commit failed: {exc}") from exc
        logger.debug("Committed %d ticket(s), %d agent(s) (Redis)", len(tickets), len(agents))

    # ── Reference data ───────────────────────────────────────────────

    def _hash(self, op: str, key: str, *args):
        try:
            return getattr(self._redis, op)(key, *args)
        except RedisError as exc:
            raise StoreError(f"{op} {key} failed: {exc}") from exc

    def _load_priority(self, name: str) -> Priority | None:
        raw = self._hash("hget", _PRIORITIES, name)
        return Priority.from_dict(json.loads(raw)) if raw else None

    def _load_category(self, name: str) -> Category | None:
        raw = self._hash("hget", _CATEGORIES, name)
        return Category.from_dict(json.loads(raw)) if raw else None

    def save_priority(self, priority: Priority) -> None:
        self._hash("hset", _PRIORITIES, priority.name, json.dumps(priority.to_dict()))

    def save_category(self, category: Category) -> None:
        self._hash("hset", _CATEGORIES, category.name, json.dumps(category.to_dict()))

    def list_priorities(self) -> list[Priority]:
        raws = self._hash("hgetall", _PRIORITIES).values()
        return sorted((Priority.from_dict(json.loads(r)) for r in raws), key=lambda p: p.weight)

    def list_categories(self) -> list[Category]:
        raws = self._hash("hgetall", _CATEGORIES).values()
        return sorted((Category.from_dict(json.loads(r)) for r in raws), key=lambda c: c.name)
