"""HTTP tests for the FastAPI surface: status codes and wiring."""

from __future__ import annotations

import uuid
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from ticket_engine.api.main import app
from ticket_engine.store.memory_store import MemoryStore


@pytest.fixture(scope="module")
def client():
    # config is read at import time, so the app's module globals are patched directly
    with patch("ticket_engine.api.main.SCHEDULER_ENABLED", False), \
            patch("ticket_engine.service.build_store", MemoryStore), \
            TestClient(app) as c:
        yield c


def _agent(client, level="SENIOR") -> dict:
    resp = client.post("/agents", json={"user_ref": f"user-{uuid.uuid4()}", "level": level})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _ticket(client, priority="HIGH", category="Technical") -> dict:
    resp = client.post("/tickets", json={
        "owner_id": "owner-1",
        "title": "Checkout broken",
        "description": "500 on pay",
        "priority": priority,
        "category": category,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def _pin(client, ticket: dict, agent: dict) -> dict:
    """Manually move *ticket* onto *agent* so tests don't depend on routing order."""
    resp = client.post(f"/tickets/{ticket['id']}/assign", json={"agent_id": agent["id"]})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "ok"
        assert body["store_backend"] == "MemoryStore"
        assert body["store_reachable"] is True
        assert body["scheduler_running"] is False

    def test_unreachable_store_degrades(self, client):
        with patch.object(MemoryStore, "ping", return_value=False):
            body = client.get("/health").json()
        assert body["status"] == "degraded"
        assert body["store_reachable"] is False
        assert body["open_tickets"] == 0


class TestAgents:
    def test_create_and_fetch(self, client):
        agent = _agent(client, "MID")
        assert agent["total_capacity"] == 20
        resp = client.get(f"/agents/{agent['id']}")
        assert resp.status_code == 200
        assert resp.json()["level"] == "MID"

    def test_duplicate_user_conflicts(self, client):
        body = {"user_ref": f"user-{uuid.uuid4()}"}
        assert client.post("/agents", json=body).status_code == 201
        assert client.post("/agents", json=body).status_code == 409

    def test_unknown_agent_404(self, client):
        assert client.get("/agents/does-not-exist").status_code == 404

    def test_invalid_level_422(self, client):
        resp = client.post("/agents", json={"user_ref": "x", "level": "WIZARD"})
        assert resp.status_code == 422

    def test_demotion_below_workload_conflicts(self, client):
        agent = _agent(client)
        _pin(client, _ticket(client, priority="CRITICAL"), agent)
        resp = client.put(f"/agents/{agent['id']}/level", json={"level": "JUNIOR"})
        assert resp.status_code == 409

    def test_deactivation_reclaims_tickets(self, client):
        agent = _agent(client)
        ticket = _ticket(client)
        _pin(client, ticket, agent)

        resp = client.put(f"/agents/{agent['id']}/active", json={"active": False})

        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        assert resp.json()["current_workload"] == 0
        moved = client.get(f"/tickets/{ticket['id']}").json()
        assert moved["assigned_agent_ref"] != agent["id"]


class TestTickets:
    def test_unknown_priority_404(self, client):
        resp = client.post("/tickets", json={
            "owner_id": "o", "title": "t", "priority": "URGENT!!", "category": "Technical",
        })
        assert resp.status_code == 404

    def test_empty_title_422(self, client):
        resp = client.post("/tickets", json={
            "owner_id": "o", "title": "", "priority": "LOW", "category": "General",
        })
        assert resp.status_code == 422

    def test_unknown_ticket_404(self, client):
        assert client.get("/tickets/nope").status_code == 404

    def test_full_lifecycle(self, client):
        agent = _agent(client)
        ticket = _ticket(client)
        _pin(client, ticket, agent)
        action = {"agent_id": agent["id"]}

        started = client.post(f"/tickets/{ticket['id']}/start", json=action)
        assert started.status_code == 200
        assert started.json()["status"] == "ONGOING"

        done = client.post(f"/tickets/{ticket['id']}/complete", json=action)
        assert done.status_code == 200
        assert done.json()["status"] == "COMPLETED"
        assert done.json()["points"] == 135      # finished well inside 24h

        again = client.post(f"/tickets/{ticket['id']}/start", json=action)
        assert again.status_code == 409

    def test_start_with_wrong_agent_conflicts(self, client):
        agent, other = _agent(client), _agent(client)
        ticket = _ticket(client)
        _pin(client, ticket, agent)

        resp = client.post(f"/tickets/{ticket['id']}/start", json={"agent_id": other["id"]})

        assert resp.status_code == 409
        assert resp.json()["detail"]["status"] == "ASSIGNED"

    def test_filter_by_agent(self, client):
        agent = _agent(client)
        ticket = _ticket(client, priority="LOW", category="General")
        _pin(client, ticket, agent)
        resp = client.get("/tickets", params={"agent_id": agent["id"]})
        assert [t["id"] for t in resp.json()] == [ticket["id"]]

    def test_filter_by_priority_and_category(self, client):
        ticket = _ticket(client, priority="MEDIUM", category="Billing")
        resp = client.get("/tickets", params={"priority": "MEDIUM", "category": "Billing"})
        rows = resp.json()
        assert ticket["id"] in [t["id"] for t in rows]
        assert all(t["priority"] == "MEDIUM" and t["category"] == "Billing" for t in rows)

    def test_owner_closes_ongoing_ticket(self, client):
        agent = _agent(client)
        ticket = _ticket(client)
        _pin(client, ticket, agent)
        client.post(f"/tickets/{ticket['id']}/start", json={"agent_id": agent["id"]})

        wrong = client.post(f"/tickets/{ticket['id']}/close", json={"owner_id": "intruder"})
        assert wrong.status_code == 409

        closed = client.post(f"/tickets/{ticket['id']}/close", json={"owner_id": "owner-1"})
        assert closed.status_code == 200
        assert closed.json()["status"] == "COMPLETED"
        assert client.get(f"/agents/{agent['id']}").json()["completed_tickets"] == 1


class TestAgentProgress:
    def test_stats(self, client):
        agent = _agent(client, "MID")
        ticket = _ticket(client, priority="LOW", category="General")
        _pin(client, ticket, agent)

        resp = client.get(f"/agents/{agent['id']}/stats")

        assert resp.status_code == 200
        stats = resp.json()
        assert stats["current_workload"] == 10
        assert stats["available_capacity"] == 10
        assert stats["assigned_tickets"] == 1
        assert stats["next_level_at"] == 100

    def test_stats_unknown_agent_404(self, client):
        assert client.get("/agents/nobody/stats").status_code == 404

    def test_leaderboard_is_ranked(self, client):
        agent = _agent(client)
        ticket = _ticket(client, priority="LOW", category="General")
        _pin(client, ticket, agent)
        action = {"agent_id": agent["id"]}
        client.post(f"/tickets/{ticket['id']}/start", json=action)
        client.post(f"/tickets/{ticket['id']}/complete", json=action)

        resp = client.get("/agents/leaderboard")

        assert resp.status_code == 200
        board = resp.json()
        assert [row["rank"] for row in board] == list(range(1, len(board) + 1))
        points = [row["total_performance_points"] for row in board]
        assert points == sorted(points, reverse=True)
        assert agent["id"] in [row["agent_id"] for row in board]


class TestReferenceData:
    def test_priorities_listed_by_weight(self, client):
        names = [p["name"] for p in client.get("/priorities").json()]
        assert names == ["LOW", "MEDIUM", "HIGH", "CRITICAL"]

    def test_create_category_and_conflict(self, client):
        body = {"name": f"Cat-{uuid.uuid4().hex[:8]}", "points": 4}
        created = client.post("/categories", json=body)
        assert created.status_code == 201
        assert created.json()["is_active"] is True
        assert client.post("/categories", json=body).status_code == 409

    def test_non_positive_points_422(self, client):
        assert client.post("/categories", json={"name": "Zero", "points": 0}).status_code == 422

    def test_retired_category_rejects_new_tickets(self, client):
        name = f"Legacy-{uuid.uuid4().hex[:8]}"
        client.post("/categories", json={"name": name, "points": 1})

        retired = client.put(f"/categories/{name}/active", json={"active": False})
        assert retired.status_code == 200
        assert retired.json()["is_active"] is False

        resp = client.post("/tickets", json={
            "owner_id": "o", "title": "t", "priority": "LOW", "category": name,
        })
        assert resp.status_code == 422
        active = [c["name"] for c in client.get("/categories", params={"active": True}).json()]
        assert name not in active
        inactive = [c["name"] for c in client.get("/categories", params={"active": False}).json()]
        assert name in inactive

    def test_retire_unknown_category_404(self, client):
        resp = client.put("/categories/Nowhere/active", json={"active": False})
        assert resp.status_code == 404


class TestSchedulerAndEvents:
    def test_run_pending_sweep(self, client):
        resp = client.post("/scheduler/pending/run")
        assert resp.status_code == 200
        assert resp.json()["name"] == "pending"
        assert resp.json()["failed"] == 0

    def test_unknown_job_404(self, client):
        assert client.post("/scheduler/nonsense/run").status_code == 404

    def test_scheduler_status(self, client):
        jobs = client.get("/scheduler").json()["jobs"]
        assert set(jobs) == {"pending", "inactive", "validation", "deadline"}

    def test_events_logged(self, client):
        _agent(client)
        _ticket(client, priority="LOW", category="General")
        events = client.get("/events").json()["events"]
        assert any(e["event"] == "TicketAssigned" for e in events)
