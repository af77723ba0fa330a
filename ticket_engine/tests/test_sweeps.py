"""Tests for the four reconciliation sweeps."""

import logging

from ticket_engine.domain.models import AgentLevel, TicketStatus
from ticket_engine.routing.notifier import DeadlineApproaching

from conftest import make_ticket


def _high(desk, owner="user-1"):
    return desk.create_ticket(owner, "Checkout broken", "", "HIGH", "Technical")


def _deactivate_silently(store, agent_id):
    """Flip is_active without the immediate reclaim the desk performs."""
    with store.transaction(agent_ids=[agent_id]) as tx:
        tx.agent(agent_id).is_active = False


class TestPendingSweep:
    def test_assigns_backlog_once_agents_exist(self, desk):
        tickets = [_high(desk, f"user-{i}") for i in range(3)]
        assert all(t.status is TicketStatus.NO_AGENT_AVAILABLE for t in tickets)
        agent = desk.create_agent("senior", AgentLevel.SENIOR)

        report = desk.sweeps.pending()

        assert (report.processed, report.changed, report.failed) == (3, 1, 0)
        assert desk.get_agent(agent.id).current_workload == 30
        assert len(desk.list_tickets(status=TicketStatus.NO_AGENT_AVAILABLE)) == 2

    def test_empty_backlog(self, desk):
        report = desk.sweeps.pending()
        assert report.processed == 0

    def test_waiting_backlog_is_not_logged_as_warning(self, desk, caplog):
        _high(desk)
        caplog.clear()
        with caplog.at_level(logging.DEBUG, logger="ticket_engine.routing.assignment"):
            desk.sweeps.pending()
            desk.sweeps.pending()
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]
        assert "still waiting for an agent" in caplog.text


class TestInactiveSweep:
    def test_reclaims_from_inactive_agent(self, desk, store):
        agent = desk.create_agent("solo", AgentLevel.SENIOR)
        t1 = _high(desk)
        t2 = desk.create_ticket("user-2", "Refund", "", "LOW", "Billing")
        _deactivate_silently(store, agent.id)

        report = desk.sweeps.inactive_agents()

        assert report.changed == 1
        assert desk.get_agent(agent.id).current_workload == 0
        for tid in (t1.id, t2.id):
            assert desk.get_ticket(tid).status is TicketStatus.NO_AGENT_AVAILABLE

    def test_ignores_inactive_agents_without_tickets(self, desk):
        agent = desk.create_agent("idle", AgentLevel.SENIOR)
        desk.set_agent_active(agent.id, False)
        assert desk.sweeps.inactive_agents().processed == 0


class TestValidationSweep:
    def test_repairs_binding_to_missing_agent(self, desk, store):
        ghost_ticket = make_ticket(status=TicketStatus.ONGOING, assigned_agent_ref="ghost")
        with store.transaction() as tx:
            tx.add_ticket(ghost_ticket)
        agent = desk.create_agent("senior", AgentLevel.SENIOR)

        report = desk.sweeps.validate_assignments()

        assert report.changed == 1
        repaired = desk.get_ticket(ghost_ticket.id)
        assert repaired.status is TicketStatus.ASSIGNED
        assert repaired.assigned_agent_ref == agent.id

    def test_repairs_binding_to_inactive_agent(self, desk, store):
        agent = desk.create_agent("solo", AgentLevel.SENIOR)
        ticket = _high(desk)
        _deactivate_silently(store, agent.id)

        report = desk.sweeps.validate_assignments()

        assert report.changed == 1
        assert desk.get_ticket(ticket.id).status is TicketStatus.NO_AGENT_AVAILABLE
        assert desk.get_agent(agent.id).current_workload == 0

    def test_healthy_bindings_untouched(self, desk):
        desk.create_agent("senior", AgentLevel.SENIOR)
        _high(desk)
        assert desk.sweeps.validate_assignments().processed == 0


class TestDeadlineSweep:
    def test_warns_once_after_three_quarters(self, desk, clock, notifier):
        agent = desk.create_agent("senior", AgentLevel.SENIOR)
        ticket = _high(desk)
        desk.start_ticket(ticket.id, agent.id)

        clock.advance(hours=17)
        assert desk.sweeps.deadlines().changed == 0

        clock.advance(hours=1)              # 18h of 24h
        assert desk.sweeps.deadlines().changed == 1
        assert notifier.events(DeadlineApproaching)[0].agent_id == agent.id

        clock.advance(hours=3)
        assert desk.sweeps.deadlines().processed == 0
        assert len(notifier.events(DeadlineApproaching)) == 1
        assert desk.get_ticket(ticket.id).deadline_warning_sent

    def test_no_warning_after_deadline(self, desk, clock, notifier):
        agent = desk.create_agent("senior", AgentLevel.SENIOR)
        ticket = _high(desk)
        desk.start_ticket(ticket.id, agent.id)
        clock.advance(hours=25)
        assert desk.sweeps.deadlines().changed == 0
        assert notifier.events(DeadlineApproaching) == []

    def test_restart_rearms_warning(self, desk, clock, notifier):
        agent = desk.create_agent("senior", AgentLevel.SENIOR)
        ticket = _high(desk)
        desk.start_ticket(ticket.id, agent.id)
        clock.advance(hours=20)
        desk.sweeps.deadlines()

        desk.lifecycle.force_unassign(ticket.id)
        desk.assign_ticket(ticket.id)
        desk.start_ticket(ticket.id, agent.id)
        clock.advance(hours=20)
        desk.sweeps.deadlines()

        assert len(notifier.events(DeadlineApproaching)) == 2


class TestFailureIsolation:
    def test_one_bad_ticket_does_not_abort_sweep(self, desk, monkeypatch):
        tickets = [_high(desk, f"user-{i}") for i in range(3)]
        desk.create_agent("senior", AgentLevel.SENIOR)
        real_assign = desk.engine.assign
        poisoned = tickets[0].id

        def flaky(ticket_id, **kwargs):
            if ticket_id == poisoned:
                raise RuntimeError("store hiccup")
            return real_assign(ticket_id, **kwargs)

        monkeypatch.setattr(desk.engine, "assign", flaky)
        report = desk.sweeps.pending()

        assert report.processed == 3
        assert report.failed == 1
        assert report.changed == 1
        assert desk.get_ticket(poisoned).status is TicketStatus.NO_AGENT_AVAILABLE

    def test_run_all_reports_every_job(self, desk):
        names = [r.name for r in desk.sweeps.run_all()]
        assert sorted(names) == ["deadline", "inactive", "pending", "validation"]
