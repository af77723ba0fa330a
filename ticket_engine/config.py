"""Centralised configuration, the single source of truth for the engine.

Every tunable is a module-level constant.  Values that differ between
deployments are read from the environment (``.env`` is honoured via
python-dotenv), everything else is a fixed business constant.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# ── Store ────────────────────────────────────────────────────────────────
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")      # memory | redis
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
REDIS_KEY_PREFIX = "ticket_engine"
LOCK_TTL_SECONDS = float(os.getenv("LOCK_TTL_SECONDS", "10"))
LOCK_TIMEOUT_SECONDS = float(os.getenv("LOCK_TIMEOUT_SECONDS", "5"))

# ── Notifications ────────────────────────────────────────────────────────
WEBHOOK_URL = os.getenv("WEBHOOK_URL", "")                # empty = mock log
WEBHOOK_TIMEOUT_SECONDS = 5.0

# ── Scheduler (seconds between sweeps) ───────────────────────────────────
SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", True)
PENDING_SWEEP_SECONDS = float(os.getenv("PENDING_SWEEP_SECONDS", "60"))
INACTIVE_SWEEP_SECONDS = float(os.getenv("INACTIVE_SWEEP_SECONDS", "30"))
VALIDATION_SWEEP_SECONDS = float(os.getenv("VALIDATION_SWEEP_SECONDS", "300"))
DEADLINE_SWEEP_SECONDS = float(os.getenv("DEADLINE_SWEEP_SECONDS", "900"))

# ── Capacity ─────────────────────────────────────────────────────────────
# level → (base capacity, min completed tickets, max completed tickets)
AGENT_LEVELS: dict[str, tuple[int, int, int | None]] = {
    "JUNIOR": (10, 0, 49),
    "MID": (20, 50, 99),
    "SENIOR": (50, 100, None),
}
CAPACITY_BONUS_EVERY = 5          # +1 bonus capacity per N completed tickets
AUTO_LEVEL_PROGRESSION = _env_bool("AUTO_LEVEL_PROGRESSION", True)
ASSIGN_MAX_ATTEMPTS = 3

# ── Scoring ──────────────────────────────────────────────────────────────
MIN_ACTUAL_HOURS = 0.5            # floor against near-zero durations
MAX_EARLY_BONUS = 0.5             # efficiency capped at 1.5
LATE_PENALTY_RATE = 0.2
MIN_EFFICIENCY = 0.8

# ── Deadlines ────────────────────────────────────────────────────────────
DEADLINE_WARNING_FRACTION = 0.75

# ── Seed data ────────────────────────────────────────────────────────────
# name → (weight, time limit in hours)
DEFAULT_PRIORITIES: dict[str, tuple[int, int]] = {
    "LOW": (10, 4),
    "MEDIUM": (20, 8),
    "HIGH": (30, 24),
    "CRITICAL": (40, 48),
}

DEFAULT_CATEGORIES: dict[str, tuple[str, int]] = {
    "General": ("General enquiries", 1),
    "Billing": ("Invoices, refunds and payments", 2),
    "Technical": ("Outages, bugs and access problems", 3),
}
