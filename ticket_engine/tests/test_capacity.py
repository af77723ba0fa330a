"""Tests for agent capacity arithmetic and level progression."""

import pytest

from ticket_engine.domain import capacity
from ticket_engine.domain.capacity import (
    add_workload,
    change_level,
    check_invariant,
    has_capacity_for,
    record_completion,
    reduce_workload,
)
from ticket_engine.domain.models import Agent, AgentLevel
from ticket_engine.errors import CapacityInvariantError


class TestAgentLevel:
    @pytest.mark.parametrize("level, base", [
        (AgentLevel.JUNIOR, 10),
        (AgentLevel.MID, 20),
        (AgentLevel.SENIOR, 50),
    ])
    def test_base_capacity(self, level, base):
        assert level.base_capacity == base
        assert Agent(user_ref="u", level=level).total_capacity == base

    @pytest.mark.parametrize("completed, level", [
        (0, AgentLevel.JUNIOR),
        (49, AgentLevel.JUNIOR),
        (50, AgentLevel.MID),
        (99, AgentLevel.MID),
        (100, AgentLevel.SENIOR),
        (1_000, AgentLevel.SENIOR),
    ])
    def test_for_completed(self, completed, level):
        assert AgentLevel.for_completed(completed) is level


class TestWorkload:
    def test_has_capacity_for_boundary(self):
        agent = Agent(user_ref="u")          # capacity 10
        assert has_capacity_for(agent, 10)
        assert not has_capacity_for(agent, 11)

    def test_inactive_agent_has_no_capacity(self):
        agent = Agent(user_ref="u", is_active=False)
        assert not has_capacity_for(agent, 1)

    def test_add_workload_up_to_capacity(self):
        agent = Agent(user_ref="u")
        add_workload(agent, 4)
        add_workload(agent, 6)
        assert agent.current_workload == 10

    def test_add_workload_past_capacity_raises(self):
        agent = Agent(user_ref="u")
        add_workload(agent, 8)
        with pytest.raises(CapacityInvariantError):
            add_workload(agent, 3)
        assert agent.current_workload == 8

    def test_add_negative_weight_raises(self):
        with pytest.raises(CapacityInvariantError):
            add_workload(Agent(user_ref="u"), -1)

    def test_reduce_workload_clamps_at_zero(self):
        agent = Agent(user_ref="u", current_workload=5)
        reduce_workload(agent, 30)
        assert agent.current_workload == 0

    def test_check_invariant(self):
        check_invariant(Agent(user_ref="u", current_workload=10))
        with pytest.raises(CapacityInvariantError):
            check_invariant(Agent(user_ref="u", current_workload=11))
        with pytest.raises(CapacityInvariantError):
            check_invariant(Agent(user_ref="u", current_workload=-1))


class TestLevelChange:
    def test_bonus_preserved_across_level_change(self):
        agent = Agent(user_ref="u", bonus_capacity=3)
        change_level(agent, AgentLevel.SENIOR)
        assert agent.base_capacity == 50
        assert agent.total_capacity == 53
        change_level(agent, AgentLevel.MID)
        assert agent.total_capacity == 23

    def test_demotion_below_workload_rejected(self):
        agent = Agent(user_ref="u", level=AgentLevel.SENIOR, current_workload=30)
        with pytest.raises(CapacityInvariantError):
            change_level(agent, AgentLevel.JUNIOR)
        assert agent.level is AgentLevel.SENIOR
        assert agent.total_capacity == 50


class TestRecordCompletion:
    def test_credits_points_and_count(self):
        agent = Agent(user_ref="u")
        record_completion(agent, 135)
        record_completion(agent, 86)
        assert agent.completed_tickets == 2
        assert agent.total_performance_points == 221

    def test_bonus_every_five_completions(self):
        agent = Agent(user_ref="u")
        for _ in range(4):
            record_completion(agent, 1)
        assert agent.bonus_capacity == 0
        record_completion(agent, 1)
        assert agent.bonus_capacity == 1
        assert agent.total_capacity == 11

    def test_auto_progression_to_mid(self, monkeypatch):
        monkeypatch.setattr(capacity, "AUTO_LEVEL_PROGRESSION", True)
        agent = Agent(user_ref="u", completed_tickets=49, bonus_capacity=9)
        record_completion(agent, 10)
        assert agent.level is AgentLevel.MID
        assert agent.total_capacity == 20 + 10

    def test_progression_disabled(self, monkeypatch):
        monkeypatch.setattr(capacity, "AUTO_LEVEL_PROGRESSION", False)
        agent = Agent(user_ref="u", completed_tickets=49)
        record_completion(agent, 10)
        assert agent.level is AgentLevel.JUNIOR

    def test_never_demotes_a_promoted_agent(self, monkeypatch):
        monkeypatch.setattr(capacity, "AUTO_LEVEL_PROGRESSION", True)
        agent = Agent(user_ref="u", level=AgentLevel.SENIOR)
        record_completion(agent, 10)
        assert agent.level is AgentLevel.SENIOR


class TestSerialisation:
    def test_agent_round_trip(self):
        agent = Agent(user_ref="u", level=AgentLevel.MID, bonus_capacity=2, current_workload=7)
        again = Agent.from_dict(agent.to_dict())
        assert again == agent
        assert agent.to_dict()["total_capacity"] == 22
