"""Persistence of signal snapshots and risk scores."""

import hashlib
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signup_guard.db.models import RiskScoreRow, SignalRecordRow
from signup_guard.schemas import RiskDecision, RiskFlag
from signup_guard.security.risk_scoring import RiskAssessment, RiskScoreBreakdown
from signup_guard.security.signals import SignalRecord, get_ip_block


def hash_email(email: str) -> str:
    """SHA-256 of the normalized address. Used to count distinct emails."""
    return hashlib.sha256(email.encode("utf-8")).hexdigest()


def build_signal_row(account_id: str, signals: SignalRecord) -> SignalRecordRow:
    """Map a signal snapshot onto its table row."""
    network, device, email, captcha = (
        signals.network,
        signals.device,
        signals.email,
        signals.captcha,
    )
    return SignalRecordRow(
        account_id=account_id,
        ip=network.ip,
        ip_block=get_ip_block(network.ip),
        asn=network.asn,
        asn_org=network.asn_org[:255],
        country=network.country[:2],
        network_classification=network.classification.value,
        user_agent=device.user_agent,
        browser_family=device.browser_family,
        browser_version=device.browser_version,
        os_family=device.os_family,
        os_version=device.os_version,
        device_type=device.device_type.value,
        is_suspicious_user_agent=device.is_suspicious_user_agent,
        fingerprint_id=device.fingerprint_id,
        fingerprint_confidence=device.fingerprint_confidence,
        screen_resolution=device.screen_resolution,
        language=device.language,
        timezone=device.timezone,
        email_hash=hash_email(email.email),
        email_domain=email.domain,
        is_disposable_email=email.is_disposable,
        has_valid_mx=email.has_valid_mx,
        captcha_outcome=captcha.outcome.value,
        captcha_score=captcha.provider_score,
        captcha_error_codes=list(captcha.error_codes),
        captured_at=signals.captured_at,
    )


def build_score_row(account_id: str, assessment: RiskAssessment) -> RiskScoreRow:
    """Map an assessment onto its table row, one point column per category."""
    breakdown = assessment.breakdown
    return RiskScoreRow(
        account_id=account_id,
        score=assessment.score,
        decision=assessment.decision.value,
        reason=assessment.reason,
        network_points=breakdown.network.points,
        device_points=breakdown.device.points,
        email_points=breakdown.email.points,
        captcha_points=breakdown.captcha.points,
        velocity_points=breakdown.velocity.points,
        flags=breakdown.to_flag_entries(),
        operational_flags=[flag.value for flag in assessment.operational_flags],
        version=assessment.version,
    )


@dataclass(frozen=True)
class StoredRiskScore:
    """A risk score as read back from storage."""

    account_id: str
    score: int
    decision: RiskDecision
    reason: str
    breakdown: RiskScoreBreakdown
    operational_flags: tuple[RiskFlag, ...]
    version: str
    created_at: datetime | None = None

    @property
    def flags(self) -> list[RiskFlag]:
        return self.breakdown.flags() + list(self.operational_flags)


class RiskRecords:
    """Read access to stored risk scores."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_risk_score(self, account_id: str) -> StoredRiskScore | None:
        """Get the stored assessment for an account, or None."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(RiskScoreRow).where(RiskScoreRow.account_id == account_id)
            )
            row = result.scalar_one_or_none()

        if row is None:
            return None

        return StoredRiskScore(
            account_id=row.account_id,
            score=row.score,
            decision=RiskDecision(row.decision),
            reason=row.reason,
            breakdown=RiskScoreBreakdown.from_flag_entries(row.flags or []),
            operational_flags=tuple(RiskFlag(flag) for flag in row.operational_flags or []),
            version=row.version,
            created_at=row.created_at,
        )
