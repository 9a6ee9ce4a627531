"""Database module for the risk engine.

Provides SQLAlchemy models, async database session management, and utilities.
"""

from signup_guard.db.database import (
    Base,
    async_session,
    build_engine,
    build_session_factory,
    init_db,
)
from signup_guard.db.models import (
    AntifraudEvent,
    FingerprintStatsRow,
    IpStatsRow,
    RiskScoreRow,
    SignalRecordRow,
)

__all__ = [
    "AntifraudEvent",
    "Base",
    "FingerprintStatsRow",
    "IpStatsRow",
    "RiskScoreRow",
    "SignalRecordRow",
    "async_session",
    "build_engine",
    "build_session_factory",
    "init_db",
]
