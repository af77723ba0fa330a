"""Capacity arithmetic for agents.

These helpers are the only code allowed to touch ``current_workload``
and the capacity fields.  They operate on working copies handed out by
a store transaction; the store persists the result on commit.
"""

from __future__ import annotations

import logging

from ticket_engine.config import AUTO_LEVEL_PROGRESSION, CAPACITY_BONUS_EVERY
from ticket_engine.domain.models import Agent, AgentLevel, utcnow
from ticket_engine.errors import CapacityInvariantError

logger = logging.getLogger(__name__)


def has_capacity_for(agent: Agent, weight: int) -> bool:
    return agent.is_active and agent.current_workload + weight <= agent.total_capacity


def check_invariant(agent: Agent) -> None:
    """Raise :class:`CapacityInvariantError` unless ``0 <= load <= capacity``."""
    if not 0 <= agent.current_workload <= agent.total_capacity:
        raise CapacityInvariantError(
            f"agent {agent.id}: workload {agent.current_workload} "
            f"outside [0, {agent.total_capacity}]"
        )


def add_workload(agent: Agent, weight: int) -> None:
    if weight < 0:
        raise CapacityInvariantError(f"negative weight {weight} for agent {agent.id}")
    new_load = agent.current_workload + weight
    if new_load > agent.total_capacity:
        raise CapacityInvariantError(
            f"agent {agent.id}: workload {new_load} would exceed "
            f"capacity {agent.total_capacity}"
        )
    agent.current_workload = new_load
    agent.updated_at = utcnow()


def reduce_workload(agent: Agent, weight: int) -> None:
    # Clamped so a double release cannot drive workload negative.
    if weight > agent.current_workload:
        logger.warning(
            "Releasing %d from agent %s with workload %d, clamping to 0",
            weight, agent.id, agent.current_workload,
        )
    agent.current_workload = max(0, agent.current_workload - weight)
    agent.updated_at = utcnow()


def change_level(agent: Agent, level: AgentLevel) -> None:
    """Move *agent* to *level*; bonus capacity is carried over."""
    level = AgentLevel(level)
    new_total = level.base_capacity + agent.bonus_capacity
    if new_total < agent.current_workload:
        raise CapacityInvariantError(
            f"agent {agent.id}: level {level.value} capacity {new_total} is below "
            f"current workload {agent.current_workload}"
        )
    if level is not agent.level:
        logger.info("Agent %s level %s → %s", agent.id, agent.level.value, level.value)
    agent.level = level
    agent.base_capacity = level.base_capacity
    agent.updated_at = utcnow()


def record_completion(agent: Agent, points: int) -> None:
    """Credit a completed ticket and grow capacity accordingly.

    Every ``CAPACITY_BONUS_EVERY`` completed tickets add one unit of bonus
    capacity.  With ``AUTO_LEVEL_PROGRESSION`` on, the agent also moves to
    the level whose completed-ticket range it now falls into.  Capacity
    only ever grows along this path.
    """
    agent.completed_tickets += 1
    agent.total_performance_points += points
    agent.bonus_capacity = max(
        agent.bonus_capacity, agent.completed_tickets // CAPACITY_BONUS_EVERY
    )
    if AUTO_LEVEL_PROGRESSION:
        target = AgentLevel.for_completed(agent.completed_tickets)
        if target.base_capacity > agent.base_capacity:
            change_level(agent, target)
    agent.updated_at = utcnow()
