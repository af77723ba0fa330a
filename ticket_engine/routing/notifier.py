"""Engine events and their delivery.

The engine emits an event after the transaction that caused it has
committed.  The :class:`Notifier` records every event in an in-memory
audit log and, when ``WEBHOOK_URL`` is set, POSTs a JSON payload with
``httpx``.  With no URL the payload is only logged (mock mode).

Delivery problems are logged and swallowed here so they can never roll
back or abort engine work.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

import httpx

from ticket_engine.config import WEBHOOK_TIMEOUT_SECONDS, WEBHOOK_URL

logger = logging.getLogger(__name__)


# ── Events ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Event:
    ticket_id: str

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {"event": self.kind, **asdict(self)}


@dataclass(frozen=True)
class TicketAssigned(Event):
    agent_id: str


@dataclass(frozen=True)
class TicketStarted(Event):
    agent_id: str


@dataclass(frozen=True)
class DeadlineApproaching(Event):
    agent_id: str
    expected_completion_at: str | None = None


@dataclass(frozen=True)
class TicketCompleted(Event):
    points: int
    agent_id: str | None = None


@dataclass(frozen=True)
class NoAgentAvailable(Event):
    priority: str = ""


@dataclass
class _Record:
    event: Event
    emitted_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict:
        return {**self.event.to_dict(), "emitted_at": self.emitted_at}


# ── Notifier ─────────────────────────────────────────────────────────────


class Notifier:
    """Record engine events in the audit log and forward them to a webhook.

    Parameters
    ----------
    webhook_url : str
        Target for JSON POSTs.  Empty string means log-only.
    http_client : httpx.Client, optional
        Injected client (tests); one is created lazily otherwise.
    """

    def __init__(
        self,
        webhook_url: str = WEBHOOK_URL,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._http = http_client
        self._log: list[_Record] = []
        self._lock = threading.Lock()

    def emit(self, event: Event) -> None:
        record = _Record(event)
        with self._lock:
            self._log.append(record)

        if not self._webhook_url:
            logger.info("[MOCK WEBHOOK] %s ticket=%s", event.kind, event.ticket_id)
            return
        self._post(record.to_dict())

    def _post(self, payload: dict) -> None:
        if self._http is None:
            self._http = httpx.Client(timeout=WEBHOOK_TIMEOUT_SECONDS)
        try:
            resp = self._http.post(self._webhook_url, json=payload)
            logger.info("Webhook sent → %s  status=%d", self._webhook_url, resp.status_code)
        except httpx.HTTPError:
            logger.exception("Webhook call failed, payload logged locally")

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    # ── Audit log ────────────────────────────────────────────────────

    def get_event_log(self) -> list[dict]:
        with self._lock:
            return [r.to_dict() for r in self._log]

    def events(self, kind: type[Event] | None = None) -> list[Event]:
        with self._lock:
            return [r.event for r in self._log if kind is None or isinstance(r.event, kind)]

    def clear_event_log(self) -> None:
        with self._lock:
            self._log.clear()
