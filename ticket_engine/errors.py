"""Exception hierarchy for the ticket engine.

Only hard failures are exceptions.  Expected outcomes such as "no agent
available" or a rejected lifecycle transition are returned as values.
"""

from __future__ import annotations


class TicketEngineError(Exception):
    """Base class for every error raised by the engine."""


class NotFoundError(TicketEngineError):
    entity = "entity"

    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__(f"{self.entity} {ref!r} not found")


class TicketNotFound(NotFoundError):
    entity = "ticket"


class AgentNotFound(NotFoundError):
    entity = "agent"


class PriorityNotFound(NotFoundError):
    entity = "priority"


class CategoryNotFound(NotFoundError):
    entity = "category"


class CapacityInvariantError(TicketEngineError):
    """``0 <= current_workload <= total_capacity`` was about to be broken.

    Always a programming error: callers must check capacity inside the
    same transaction that mutates workload.
    """


class ConflictError(TicketEngineError):
    """The request clashes with existing state (e.g. duplicate agent)."""


class StoreError(TicketEngineError):
    """The backing store failed (lock timeout, connection loss, ...)."""


class IllegalTransitionError(TicketEngineError):
    """A status write outside the ticket state machine.

    Lifecycle requests are checked with ``can_transition`` first and come
    back as ``InvalidTransition`` values; reaching this means a code path
    skipped that check.
    """


class InactiveCategoryError(TicketEngineError):
    """New tickets cannot be filed under a retired category."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"category {name!r} is not active")
