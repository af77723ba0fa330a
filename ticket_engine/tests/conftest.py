"""Shared fixtures: a controllable clock, an in-memory store and a seeded desk."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ticket_engine.domain.capacity import add_workload
from ticket_engine.domain.models import Category, Priority, Ticket
from ticket_engine.routing.notifier import Notifier
from ticket_engine.service import TicketDesk
from ticket_engine.store.memory_store import MemoryStore

T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)

HIGH = Priority("HIGH", 30, 24)
TECHNICAL = Category("Technical", 3, "Outages, bugs and access problems")


class FakeClock:
    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(webhook_url="")


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(lock_timeout=5)


@pytest.fixture
def desk(store, notifier, clock) -> TicketDesk:
    d = TicketDesk(store=store, notifier=notifier, clock=clock)
    d.seed_defaults()
    return d


def make_ticket(**overrides) -> Ticket:
    fields = dict(
        title="VPN down",
        description="Cannot reach the office network",
        owner_ref="user-1",
        priority=HIGH,
        category=TECHNICAL,
    )
    fields.update(overrides)
    return Ticket(**fields)


def load_agent(store, agent_id: str, weight: int) -> None:
    """Put *weight* units of workload on an agent (test setup only)."""
    with store.transaction(agent_ids=[agent_id]) as tx:
        add_workload(tx.agent(agent_id), weight)
