"""Durable storage for the risk engine.

- Abuse stats per IP and per device fingerprint
- Signal snapshots and risk scores
- Event log (finalize claims, stats write failures, blocklist changes)
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signup_guard.store.event_log import EventLog
from signup_guard.store.records import (
    RiskRecords,
    StoredRiskScore,
    build_score_row,
    build_signal_row,
    hash_email,
)
from signup_guard.store.stats import AbuseStatsStore, FingerprintStats, IpStats


class RiskStore:
    """All storage the engine needs, sharing one session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.stats = AbuseStatsStore(session_factory)
        self.records = RiskRecords(session_factory)
        self.events = EventLog(session_factory)


__all__ = [
    "AbuseStatsStore",
    "EventLog",
    "FingerprintStats",
    "IpStats",
    "RiskRecords",
    "RiskStore",
    "StoredRiskScore",
    "build_score_row",
    "build_signal_row",
    "hash_email",
]
