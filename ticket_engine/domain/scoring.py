"""Performance scoring for completed tickets.

Points reward speed and lightly penalise lateness:

* ``base = priority.weight * category.points``
* finishing early raises the multiplier up to ``1 + MAX_EARLY_BONUS``
* finishing late lowers it, never below ``MIN_EFFICIENCY``

Everything here is pure: no store access, no clock reads.
"""

from __future__ import annotations

import math
from datetime import datetime

from ticket_engine.config import (
    LATE_PENALTY_RATE,
    MAX_EARLY_BONUS,
    MIN_ACTUAL_HOURS,
    MIN_EFFICIENCY,
)
from ticket_engine.domain.models import Ticket


def base_points(ticket: Ticket) -> int:
    return ticket.priority.weight * ticket.category.points


def expected_hours(ticket: Ticket) -> float:
    """Hours the ticket was given, frozen at start time.

    Uses ``expected_completion_at - date_started`` when both are known so
    a later edit to the priority cannot change an in-flight score.
    """
    if ticket.date_started is not None and ticket.expected_completion_at is not None:
        return (ticket.expected_completion_at - ticket.date_started).total_seconds() / 3600
    return float(ticket.priority.time_limit_hours)


def efficiency_factor(expected: float, actual: float) -> float:
    """Multiplier for a ticket that took *actual* hours against *expected*.

    Parameters
    ----------
    expected : float
        Allotted hours.  Non-positive values disable scaling (factor 1.0).
    actual : float
        Hours spent; floored at ``MIN_ACTUAL_HOURS``.
    """
    if expected <= 0:
        return 1.0
    actual = max(actual, MIN_ACTUAL_HOURS)
    if actual <= expected:
        return 1.0 + min(MAX_EARLY_BONUS, (expected - actual) / expected)
    return max(MIN_EFFICIENCY, 1.0 - ((actual - expected) / expected) * LATE_PENALTY_RATE)


def round_half_up(value: float) -> int:
    # round(…, 9) absorbs float noise such as 90 * 0.95 == 85.49999…
    return int(math.floor(round(value, 9) + 0.5))


def calculate_points(ticket: Ticket, now: datetime) -> int:
    base = base_points(ticket)
    if ticket.date_started is None:
        return base
    actual = (now - ticket.date_started).total_seconds() / 3600
    return round_half_up(base * efficiency_factor(expected_hours(ticket), actual))
