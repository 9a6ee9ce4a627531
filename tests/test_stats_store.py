"""Tests for abuse stats, score records and the event log (SQLite)."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from signup_guard.db.models import AntifraudEvent, SignalRecordRow
from signup_guard.schemas import EventType, NetworkClassification, RiskDecision, RiskFlag
from signup_guard.security.risk_scoring import RiskScorer
from signup_guard.store import build_score_row, build_signal_row, hash_email
from signup_guard.store.stats import AbuseStatsStore, FingerprintStats, IpStats

IP = "8.8.8.8"
FP = "fp_3f9a1c7e2b5d4a60"
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock for window tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def stats(session_factory, clock) -> AbuseStatsStore:
    return AbuseStatsStore(session_factory, clock=clock)


# =============================================================================
# Reads and Increments
# =============================================================================


class TestAbuseStats:
    """Tests for counters and windowing."""

    async def test_unseen_keys_read_as_zero(self, stats):
        assert await stats.get_ip_stats(IP) == IpStats(ip=IP)
        assert await stats.get_fingerprint_stats(FP) == FingerprintStats(fingerprint_id=FP)

    async def test_increment_counts_attempts_and_accounts(self, stats):
        await stats.increment_ip_stats(IP, account_created=True)
        await stats.increment_ip_stats(IP, account_created=False)
        await stats.increment_ip_stats(IP, account_created=True)

        ip_stats = await stats.get_ip_stats(IP)

        assert ip_stats.attempts == 3
        assert ip_stats.accounts_created == 2
        assert ip_stats.window_start == T0
        assert ip_stats.first_seen_at == T0

    async def test_fingerprint_increment(self, stats):
        await stats.increment_fingerprint_stats(FP, account_created=True)

        fp_stats = await stats.get_fingerprint_stats(FP)

        assert fp_stats.attempts == 1
        assert fp_stats.accounts_created == 1

    async def test_expired_window_reads_as_zero(self, stats, clock):
        await stats.increment_ip_stats(IP, account_created=True)

        clock.now = T0 + timedelta(hours=25)
        ip_stats = await stats.get_ip_stats(IP)

        assert ip_stats.attempts == 0
        assert ip_stats.accounts_created == 0
        assert ip_stats.first_seen_at == T0

    async def test_window_still_open_just_before_expiry(self, stats, clock):
        await stats.increment_ip_stats(IP, account_created=True)

        clock.now = T0 + timedelta(hours=23, minutes=59)
        assert (await stats.get_ip_stats(IP)).attempts == 1

    async def test_expired_window_resets_on_write(self, stats, clock):
        await stats.increment_ip_stats(IP, account_created=True)
        await stats.increment_ip_stats(IP, account_created=True)

        clock.now = T0 + timedelta(hours=30)
        await stats.increment_ip_stats(IP, account_created=False)
        ip_stats = await stats.get_ip_stats(IP)

        assert ip_stats.attempts == 1
        assert ip_stats.accounts_created == 0
        assert ip_stats.window_start == clock.now
        assert ip_stats.first_seen_at == T0
        assert ip_stats.last_seen_at == clock.now

    async def test_concurrent_increments_are_not_lost(self, stats):
        await asyncio.gather(
            *(stats.increment_ip_stats(IP, account_created=True) for _ in range(20))
        )

        ip_stats = await stats.get_ip_stats(IP)

        assert ip_stats.attempts == 20
        assert ip_stats.accounts_created == 20


# =============================================================================
# Blocklist
# =============================================================================


class TestBlocklist:
    """Tests for IP and fingerprint blocklisting."""

    async def test_blocklist_ip(self, stats, session_factory):
        await stats.blocklist_ip(IP, "chargeback ring")

        ip_stats = await stats.get_ip_stats(IP)
        assert ip_stats.is_blocklisted is True
        assert ip_stats.blocklist_reason == "chargeback ring"
        assert ip_stats.attempts == 0

        async with session_factory() as session:
            events = (await session.execute(select(AntifraudEvent))).scalars().all()
        assert [e.event_type for e in events] == [EventType.IP_BLOCKLISTED.value]
        assert events[0].payload == {"key": IP, "reason": "chargeback ring"}

    async def test_blocklist_survives_increments_and_expiry(self, stats, clock):
        await stats.increment_fingerprint_stats(FP, account_created=True)
        await stats.blocklist_fingerprint(FP, "bot farm")
        await stats.increment_fingerprint_stats(FP, account_created=True)

        fp_stats = await stats.get_fingerprint_stats(FP)
        assert fp_stats.is_blocklisted is True
        assert fp_stats.attempts == 2

        clock.now = T0 + timedelta(days=3)
        assert (await stats.get_fingerprint_stats(FP)).is_blocklisted is True


# =============================================================================
# Distinct Counts
# =============================================================================


class TestDistinctCounts:
    """Distinct emails and IPs come from stored signal snapshots."""

    async def test_distinct_emails_and_ips(
        self, store, session_factory, make_signals
    ):
        stats = store.stats
        now = datetime.now(timezone.utc)
        rows = []
        for i, (email, ip) in enumerate(
            [("a@example.com", IP), ("b@example.com", IP), ("a@example.com", "1.1.1.1")]
        ):
            signals = make_signals(ip=ip)
            signals = replace(
                signals,
                email=replace(signals.email, email=email),
                captured_at=now - timedelta(minutes=5),
            )
            rows.append(build_signal_row(f"acct-{i}", signals))
            await stats.increment_ip_stats(ip, account_created=True)
            await stats.increment_fingerprint_stats(FP, account_created=True)

        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()

        ip_stats = await stats.get_ip_stats(IP)
        fp_stats = await stats.get_fingerprint_stats(FP)

        assert ip_stats.distinct_emails == 2
        assert fp_stats.distinct_emails == 2
        assert fp_stats.distinct_ips == 2
        assert fp_stats.accounts_created == 3


# =============================================================================
# Records and Events
# =============================================================================


class TestRecords:
    """Tests for risk score persistence."""

    async def test_stored_score_round_trip(self, store, session_factory, make_signals):
        signals = make_signals(
            classification=NetworkClassification.DATACENTER, is_disposable=True
        )
        assessment = RiskScorer().score(signals, IpStats(ip=IP), FingerprintStats(FP))
        assessment.operational_flags.append(RiskFlag.STATS_UNAVAILABLE)

        async with session_factory() as session:
            session.add(build_score_row("acct-1", assessment))
            session.add(build_signal_row("acct-1", signals))
            await session.commit()

        stored = await store.records.get_risk_score("acct-1")

        assert stored.score == 50
        assert stored.decision == RiskDecision.REVIEW
        assert stored.breakdown.total() == stored.score
        assert stored.flags == [
            RiskFlag.DATACENTER_IP,
            RiskFlag.DISPOSABLE_EMAIL,
            RiskFlag.STATS_UNAVAILABLE,
        ]

    async def test_missing_score_is_none(self, store):
        assert await store.records.get_risk_score("nobody") is None

    def test_signal_row_never_stores_raw_email(self, make_signals):
        row = build_signal_row("acct-1", make_signals())

        assert row.email_hash == hash_email("jane@example.com")
        assert "jane" not in row.email_hash
        assert row.email_domain == "example.com"
        assert row.ip_block == "8.8.8.0/24"


class TestEventLog:
    """Tests for the event log."""

    async def test_claim_is_exclusive(self, store):
        first = await store.events.claim(
            "acct-1", EventType.SIGNUP_FINALIZED, {"n": 1}
        )
        second = await store.events.claim(
            "acct-1", EventType.SIGNUP_FINALIZED, {"n": 2}
        )

        assert first is True
        assert second is False
        event = await store.events.get("acct-1", EventType.SIGNUP_FINALIZED)
        assert event.payload == {"n": 1}

    async def test_failed_claim_writes_no_rows(self, store, session_factory, make_signals):
        signals = make_signals()
        await store.events.claim("acct-1", EventType.SIGNUP_FINALIZED, {})

        claimed = await store.events.claim(
            "acct-1",
            EventType.SIGNUP_FINALIZED,
            {},
            rows=[build_signal_row("acct-1", signals)],
        )

        assert claimed is False
        async with session_factory() as session:
            rows = (await session.execute(select(SignalRecordRow))).scalars().all()
        assert rows == []

    async def test_append_different_types_per_account(self, store):
        await store.events.append(EventType.STATS_WRITE_FAILED, {"keys": ["ip"]}, "acct-1")
        await store.events.claim("acct-1", EventType.SIGNUP_FINALIZED, {})

        event = await store.events.get("acct-1", EventType.STATS_WRITE_FAILED)
        assert event.payload == {"keys": ["ip"]}
