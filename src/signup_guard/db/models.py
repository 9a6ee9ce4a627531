"""SQLAlchemy models for signal snapshots, risk scores, abuse stats and events.

Column types are kept portable (generic ``Uuid`` and ``JSON``) so the same
schema runs on PostgreSQL in production and SQLite in development.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from signup_guard.db.database import Base

# =============================================================================
# Signal Snapshot
# =============================================================================


class SignalRecordRow(Base):
    """Signals captured for a finalized signup.

    The email address itself is not stored, only its SHA-256 hash and domain.
    """

    __tablename__ = "antifraud_signals"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Network
    ip: Mapped[str] = mapped_column(String(45), default="")  # IPv6 max length
    ip_block: Mapped[str] = mapped_column(String(45), default="")
    asn: Mapped[int] = mapped_column(Integer, default=0)
    asn_org: Mapped[str] = mapped_column(String(255), default="")
    country: Mapped[str] = mapped_column(String(2), default="")
    network_classification: Mapped[str] = mapped_column(String(20))

    # Device
    user_agent: Mapped[str] = mapped_column(Text, default="")
    browser_family: Mapped[str] = mapped_column(String(50))
    browser_version: Mapped[str] = mapped_column(String(50), default="")
    os_family: Mapped[str] = mapped_column(String(50))
    os_version: Mapped[str] = mapped_column(String(50), default="")
    device_type: Mapped[str] = mapped_column(String(20))
    is_suspicious_user_agent: Mapped[bool] = mapped_column(Boolean, default=False)
    fingerprint_id: Mapped[str | None] = mapped_column(String(255))
    fingerprint_confidence: Mapped[float] = mapped_column(Float, default=0.0)
    screen_resolution: Mapped[str] = mapped_column(String(32), default="")
    language: Mapped[str] = mapped_column(String(35), default="")
    timezone: Mapped[str] = mapped_column(String(64), default="")

    # Email
    email_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    email_domain: Mapped[str] = mapped_column(String(255), default="")
    is_disposable_email: Mapped[bool] = mapped_column(Boolean, default=False)
    has_valid_mx: Mapped[bool] = mapped_column(Boolean, default=True)

    # Captcha
    captcha_outcome: Mapped[str] = mapped_column(String(16))
    captcha_score: Mapped[float | None] = mapped_column(Float)
    captcha_error_codes: Mapped[list] = mapped_column(JSON, default=list)

    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_antifraud_signals_account_id", "account_id"),
        Index("ix_antifraud_signals_ip_captured_at", "ip", "captured_at"),
        Index(
            "ix_antifraud_signals_fingerprint_captured_at",
            "fingerprint_id",
            "captured_at",
        ),
    )


# =============================================================================
# Risk Score
# =============================================================================


class RiskScoreRow(Base):
    """Final risk assessment for an account. Written once per account."""

    __tablename__ = "antifraud_risk_scores"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    score: Mapped[int] = mapped_column(Integer, nullable=False)
    decision: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="")

    # Per-category points
    network_points: Mapped[int] = mapped_column(Integer, default=0)
    device_points: Mapped[int] = mapped_column(Integer, default=0)
    email_points: Mapped[int] = mapped_column(Integer, default=0)
    captcha_points: Mapped[int] = mapped_column(Integer, default=0)
    velocity_points: Mapped[int] = mapped_column(Integer, default=0)

    # [{"category": ..., "flag": ..., "points": ...}, ...]
    flags: Mapped[list] = mapped_column(JSON, default=list)
    operational_flags: Mapped[list] = mapped_column(JSON, default=list)

    version: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


# =============================================================================
# Abuse Stats
# =============================================================================


class IpStatsRow(Base):
    """Per-IP counters for the current window."""

    __tablename__ = "antifraud_ip_stats"

    ip: Mapped[str] = mapped_column(String(45), primary_key=True)

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accounts_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    is_blocklisted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blocklist_reason: Mapped[str | None] = mapped_column(Text)


class FingerprintStatsRow(Base):
    """Per-fingerprint counters for the current window."""

    __tablename__ = "antifraud_fingerprint_stats"

    fingerprint_id: Mapped[str] = mapped_column(String(255), primary_key=True)

    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    accounts_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    is_blocklisted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blocklist_reason: Mapped[str | None] = mapped_column(Text)


# =============================================================================
# Event Log
# =============================================================================


class AntifraudEvent(Base):
    """Append-only audit log.

    ``(account_id, event_type)`` is unique, which is what makes finalize
    idempotent. Events without an account (blocklist changes) are not
    constrained since NULLs never collide.
    """

    __tablename__ = "antifraud_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[str | None] = mapped_column(String(64))
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("account_id", "event_type", name="uq_antifraud_events_account_type"),
        Index("ix_antifraud_events_event_type", "event_type"),
    )
