"""Abuse statistics per IP address and per device fingerprint.

Counters live in a fixed window per key: ``window_start`` marks when the
current window opened. Reads treat an expired window as empty; writes reset
it atomically in the same upsert that increments the counters, so concurrent
finalizations never lose an increment.

Distinct email and IP counts are derived from the stored signal snapshots
of the last window length.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import DateTime, case, func, literal, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signup_guard.db.database import upsert
from signup_guard.db.models import (
    AntifraudEvent,
    FingerprintStatsRow,
    IpStatsRow,
    SignalRecordRow,
)
from signup_guard.schemas import STATS_WINDOW_HOURS, EventType

logger = logging.getLogger("signup-guard-stats")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class IpStats:
    """Abuse counters for one IP in the current window."""

    ip: str
    attempts: int = 0
    accounts_created: int = 0
    distinct_emails: int = 0
    window_start: datetime | None = None
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    is_blocklisted: bool = False
    blocklist_reason: str | None = None


@dataclass(frozen=True)
class FingerprintStats:
    """Abuse counters for one device fingerprint in the current window."""

    fingerprint_id: str
    attempts: int = 0
    accounts_created: int = 0
    distinct_emails: int = 0
    distinct_ips: int = 0
    window_start: datetime | None = None
    first_seen_at: datetime | None = None
    last_seen_at: datetime | None = None
    is_blocklisted: bool = False
    blocklist_reason: str | None = None


class AbuseStatsStore:
    """Reads and atomically updates per-key abuse counters."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        window: timedelta = timedelta(hours=STATS_WINDOW_HOURS),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self.window = window
        self._clock = clock

    def _is_expired(self, window_start: datetime | None, now: datetime) -> bool:
        window_start = _as_utc(window_start)
        return window_start is None or window_start < now - self.window

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_ip_stats(self, ip: str) -> IpStats:
        """Get stats for an IP. Unseen or expired keys read as zero.

        Blocklist status and first-seen time survive window expiry.
        """
        now = self._clock()
        async with self._session_factory() as session:
            row = await session.get(IpStatsRow, ip)
            if row is None:
                return IpStats(ip=ip)

            if self._is_expired(row.window_start, now):
                return IpStats(
                    ip=ip,
                    first_seen_at=_as_utc(row.first_seen_at),
                    last_seen_at=_as_utc(row.last_seen_at),
                    is_blocklisted=row.is_blocklisted,
                    blocklist_reason=row.blocklist_reason,
                )

            distinct_emails = await session.scalar(
                select(func.count(func.distinct(SignalRecordRow.email_hash)))
                .where(SignalRecordRow.ip == ip)
                .where(SignalRecordRow.captured_at >= now - self.window)
            )

            return IpStats(
                ip=ip,
                attempts=row.attempts,
                accounts_created=row.accounts_created,
                distinct_emails=distinct_emails or 0,
                window_start=_as_utc(row.window_start),
                first_seen_at=_as_utc(row.first_seen_at),
                last_seen_at=_as_utc(row.last_seen_at),
                is_blocklisted=row.is_blocklisted,
                blocklist_reason=row.blocklist_reason,
            )

    async def get_fingerprint_stats(self, fingerprint_id: str) -> FingerprintStats:
        """Get stats for a device fingerprint. Unseen or expired keys read as zero."""
        now = self._clock()
        async with self._session_factory() as session:
            row = await session.get(FingerprintStatsRow, fingerprint_id)
            if row is None:
                return FingerprintStats(fingerprint_id=fingerprint_id)

            if self._is_expired(row.window_start, now):
                return FingerprintStats(
                    fingerprint_id=fingerprint_id,
                    first_seen_at=_as_utc(row.first_seen_at),
                    last_seen_at=_as_utc(row.last_seen_at),
                    is_blocklisted=row.is_blocklisted,
                    blocklist_reason=row.blocklist_reason,
                )

            result = await session.execute(
                select(
                    func.count(func.distinct(SignalRecordRow.email_hash)),
                    func.count(func.distinct(SignalRecordRow.ip)),
                )
                .where(SignalRecordRow.fingerprint_id == fingerprint_id)
                .where(SignalRecordRow.captured_at >= now - self.window)
            )
            distinct_emails, distinct_ips = result.one()

            return FingerprintStats(
                fingerprint_id=fingerprint_id,
                attempts=row.attempts,
                accounts_created=row.accounts_created,
                distinct_emails=distinct_emails or 0,
                distinct_ips=distinct_ips or 0,
                window_start=_as_utc(row.window_start),
                first_seen_at=_as_utc(row.first_seen_at),
                last_seen_at=_as_utc(row.last_seen_at),
                is_blocklisted=row.is_blocklisted,
                blocklist_reason=row.blocklist_reason,
            )

    # =========================================================================
    # Writes
    # =========================================================================

    async def increment_ip_stats(self, ip: str, account_created: bool) -> None:
        """Count one finalized attempt for an IP."""
        await self._increment(IpStatsRow, IpStatsRow.ip, ip, account_created)

    async def increment_fingerprint_stats(
        self, fingerprint_id: str, account_created: bool
    ) -> None:
        """Count one finalized attempt for a device fingerprint."""
        await self._increment(
            FingerprintStatsRow,
            FingerprintStatsRow.fingerprint_id,
            fingerprint_id,
            account_created,
        )

    async def _increment(self, model, key_column, key: str, account_created: bool) -> None:
        """Single-statement upsert: insert, or increment and reset if expired.

        The CASE expressions are evaluated against the stored row inside the
        database, never read back into Python first.
        """
        now = self._clock()
        created = 1 if account_created else 0
        expired = model.window_start < now - self.window
        now_param = literal(now, DateTime(timezone=True))

        async with self._session_factory() as session:
            stmt = upsert(session, model).values(
                {
                    key_column.key: key,
                    "attempts": 1,
                    "accounts_created": created,
                    "window_start": now,
                    "first_seen_at": now,
                    "last_seen_at": now,
                    "is_blocklisted": False,
                }
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[key_column.key],
                set_={
                    "attempts": case((expired, 1), else_=model.attempts + 1),
                    "accounts_created": case(
                        (expired, created), else_=model.accounts_created + created
                    ),
                    "window_start": case((expired, now_param), else_=model.window_start),
                    "last_seen_at": now_param,
                },
            )
            await session.execute(stmt)
            await session.commit()

    async def blocklist_ip(self, ip: str, reason: str) -> None:
        """Blocklist an IP. Every later attempt from it is blocked."""
        await self._blocklist(IpStatsRow, IpStatsRow.ip, ip, reason)
        logger.warning(f"IP blocklisted: {ip} ({reason})")

    async def blocklist_fingerprint(self, fingerprint_id: str, reason: str) -> None:
        """Blocklist a device fingerprint."""
        await self._blocklist(
            FingerprintStatsRow, FingerprintStatsRow.fingerprint_id, fingerprint_id, reason
        )
        logger.warning(f"Fingerprint blocklisted: {fingerprint_id} ({reason})")

    async def _blocklist(self, model, key_column, key: str, reason: str) -> None:
        now = self._clock()
        event_type = (
            EventType.IP_BLOCKLISTED
            if model is IpStatsRow
            else EventType.FINGERPRINT_BLOCKLISTED
        )

        async with self._session_factory() as session:
            stmt = upsert(session, model).values(
                {
                    key_column.key: key,
                    "attempts": 0,
                    "accounts_created": 0,
                    "window_start": now,
                    "first_seen_at": now,
                    "last_seen_at": now,
                    "is_blocklisted": True,
                    "blocklist_reason": reason,
                }
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[key_column.key],
                set_={"is_blocklisted": True, "blocklist_reason": reason},
            )
            await session.execute(stmt)
            session.add(
                AntifraudEvent(
                    account_id=None,
                    event_type=event_type.value,
                    payload={"key": key, "reason": reason},
                )
            )
            await session.commit()
