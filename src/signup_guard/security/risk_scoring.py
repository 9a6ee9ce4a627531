"""Risk scoring system for anti-fraud protection.

Calculates a risk score (0-100) from the signals of one signup attempt and
the abuse stats of its IP and device fingerprint. Higher scores indicate
higher fraud risk.

Every point added to the score is attached to a flag, so a stored
assessment can always be explained (and re-summed) without re-running the
scorer.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from signup_guard.config import DEFAULT_LIMITS, AntifraudLimits
from signup_guard.schemas import (
    SCORING_VERSION,
    CaptchaOutcome,
    NetworkClassification,
    RiskCategory,
    RiskDecision,
    RiskFlag,
)
from signup_guard.security.signals import SignalRecord

if TYPE_CHECKING:
    from signup_guard.store.stats import FingerprintStats, IpStats

MAX_SCORE = 100

# Flags that force a block regardless of the total, in precedence order
HARD_BLOCK_FLAGS = {
    RiskFlag.CAPTCHA_FAILED: "Security verification failed",
    RiskFlag.BLOCKLISTED_IP: "IP address is blocklisted",
    RiskFlag.BLOCKLISTED_FINGERPRINT: "Device is blocklisted",
}


@dataclass(frozen=True)
class FlagHit:
    """A triggered flag and the points it contributed."""

    flag: RiskFlag
    points: int = 0


@dataclass
class CategoryScore:
    """Contribution of one scoring category."""

    category: RiskCategory
    hits: list[FlagHit] = field(default_factory=list)

    @property
    def points(self) -> int:
        return sum(hit.points for hit in self.hits)

    def add(self, flag: RiskFlag, points: int = 0) -> None:
        self.hits.append(FlagHit(flag, points))


@dataclass
class RiskScoreBreakdown:
    """Per-category contributions for one attempt."""

    network: CategoryScore = field(
        default_factory=lambda: CategoryScore(RiskCategory.NETWORK)
    )
    device: CategoryScore = field(
        default_factory=lambda: CategoryScore(RiskCategory.DEVICE)
    )
    email: CategoryScore = field(default_factory=lambda: CategoryScore(RiskCategory.EMAIL))
    captcha: CategoryScore = field(
        default_factory=lambda: CategoryScore(RiskCategory.CAPTCHA)
    )
    velocity: CategoryScore = field(
        default_factory=lambda: CategoryScore(RiskCategory.VELOCITY)
    )

    def categories(self) -> list[CategoryScore]:
        return [self.network, self.device, self.email, self.captcha, self.velocity]

    def total(self) -> int:
        """Calculate total risk score, clamped to [0, 100]."""
        return clamp_score(sum(c.points for c in self.categories()))

    def flags(self) -> list[RiskFlag]:
        """All triggered flags, in category order, without duplicates."""
        seen: list[RiskFlag] = []
        for category in self.categories():
            for hit in category.hits:
                if hit.flag not in seen:
                    seen.append(hit.flag)
        return seen

    def to_flag_entries(self) -> list[dict]:
        """Serialize every hit for storage."""
        return [
            {"category": c.category.value, "flag": hit.flag.value, "points": hit.points}
            for c in self.categories()
            for hit in c.hits
        ]

    @classmethod
    def from_flag_entries(cls, entries: list[dict]) -> "RiskScoreBreakdown":
        """Rebuild a breakdown from stored flag entries."""
        breakdown = cls()
        by_category = {c.category: c for c in breakdown.categories()}
        for entry in entries:
            category = by_category[RiskCategory(entry["category"])]
            category.add(RiskFlag(entry["flag"]), int(entry.get("points", 0)))
        return breakdown


@dataclass
class RiskAssessment:
    """Score, breakdown and decision for one attempt."""

    score: int
    breakdown: RiskScoreBreakdown
    decision: RiskDecision
    reason: str
    version: str = SCORING_VERSION
    # Zero-point flags describing how the assessment was produced
    operational_flags: list[RiskFlag] = field(default_factory=list)

    @property
    def flags(self) -> list[RiskFlag]:
        return self.breakdown.flags() + [
            flag for flag in self.operational_flags if flag not in self.breakdown.flags()
        ]


def clamp_score(value: int) -> int:
    return max(0, min(MAX_SCORE, value))


def _stepped(base: int, step: int, cap: int, excess: int) -> int:
    """Base penalty plus ``step`` per unit over the limit, capped."""
    return min(cap, base + step * max(0, excess))


class RiskScorer:
    """Deterministic scorer: signals + stats + limits -> assessment."""

    def __init__(self, limits: AntifraudLimits = DEFAULT_LIMITS):
        self.limits = limits

    def score(
        self,
        signals: SignalRecord,
        ip_stats: "IpStats",
        fingerprint_stats: "FingerprintStats",
        captcha_fail_closed: bool = False,
    ) -> RiskAssessment:
        """Calculate the risk assessment for a signup attempt.

        Args:
            signals: Signals captured for the attempt.
            ip_stats: Current window stats for the requesting IP.
            fingerprint_stats: Current window stats for the device fingerprint.
            captcha_fail_closed: Treat an unknown CAPTCHA outcome as failed.

        Returns:
            RiskAssessment with score, breakdown, decision and reason.
        """
        breakdown = RiskScoreBreakdown(
            network=self._score_network(signals, ip_stats),
            device=self._score_device(signals, fingerprint_stats),
            email=self._score_email(signals),
            captcha=self._score_captcha(signals, captcha_fail_closed),
            velocity=self._score_velocity(ip_stats, fingerprint_stats),
        )
        total = breakdown.total()
        decision, reason = self.decide(total, breakdown.flags())
        return RiskAssessment(
            score=total, breakdown=breakdown, decision=decision, reason=reason
        )

    def _score_network(self, signals: SignalRecord, ip_stats: "IpStats") -> CategoryScore:
        result = CategoryScore(RiskCategory.NETWORK)
        limits = self.limits

        classification = signals.network.classification
        if classification == NetworkClassification.DATACENTER:
            result.add(RiskFlag.DATACENTER_IP, limits.weight_datacenter_ip)
        elif classification == NetworkClassification.PROXY:
            result.add(RiskFlag.PROXY_DETECTED, limits.weight_proxy)
        elif classification == NetworkClassification.VPN:
            result.add(RiskFlag.VPN_DETECTED, limits.weight_vpn)
        elif classification == NetworkClassification.HOSTING:
            result.add(RiskFlag.HOSTING_IP, limits.weight_hosting_ip)
        elif classification == NetworkClassification.UNKNOWN:
            result.add(RiskFlag.UNKNOWN_NETWORK, limits.weight_unknown_network)

        if ip_stats.is_blocklisted:
            result.add(RiskFlag.BLOCKLISTED_IP, limits.weight_blocklisted)

        return result

    def _score_device(
        self, signals: SignalRecord, fingerprint_stats: "FingerprintStats"
    ) -> CategoryScore:
        result = CategoryScore(RiskCategory.DEVICE)
        limits = self.limits
        device = signals.device

        if not device.fingerprint_id:
            result.add(RiskFlag.FINGERPRINT_MISSING, limits.weight_fingerprint_missing)
        else:
            if device.fingerprint_confidence < limits.min_fingerprint_confidence:
                result.add(
                    RiskFlag.LOW_FINGERPRINT_CONFIDENCE,
                    limits.weight_low_fingerprint_confidence,
                )

            accounts = fingerprint_stats.accounts_created
            if accounts >= limits.max_accounts_per_fingerprint:
                result.add(
                    RiskFlag.FINGERPRINT_REUSED,
                    _stepped(
                        limits.weight_fingerprint_reused,
                        limits.weight_fingerprint_reused_step,
                        limits.cap_fingerprint_reused,
                        accounts - limits.max_accounts_per_fingerprint,
                    ),
                )

            if fingerprint_stats.is_blocklisted:
                result.add(RiskFlag.BLOCKLISTED_FINGERPRINT, limits.weight_blocklisted)

        if device.is_suspicious_user_agent:
            result.add(RiskFlag.SUSPICIOUS_USER_AGENT, limits.weight_suspicious_user_agent)

        return result

    def _score_email(self, signals: SignalRecord) -> CategoryScore:
        result = CategoryScore(RiskCategory.EMAIL)

        if signals.email.is_disposable:
            result.add(RiskFlag.DISPOSABLE_EMAIL, self.limits.weight_disposable_email)
        if not signals.email.has_valid_mx:
            result.add(RiskFlag.NO_MX_RECORDS, self.limits.weight_no_mx)

        return result

    def _score_captcha(
        self, signals: SignalRecord, captcha_fail_closed: bool
    ) -> CategoryScore:
        result = CategoryScore(RiskCategory.CAPTCHA)
        outcome = signals.captcha.outcome

        if outcome == CaptchaOutcome.UNKNOWN and captcha_fail_closed:
            outcome = CaptchaOutcome.FAIL

        if outcome == CaptchaOutcome.FAIL:
            result.add(RiskFlag.CAPTCHA_FAILED, self.limits.weight_captcha_failed)
        elif outcome == CaptchaOutcome.UNKNOWN:
            result.add(
                RiskFlag.CAPTCHA_UNAVAILABLE, self.limits.weight_captcha_unavailable
            )

        return result

    def _score_velocity(
        self, ip_stats: "IpStats", fingerprint_stats: "FingerprintStats"
    ) -> CategoryScore:
        result = CategoryScore(RiskCategory.VELOCITY)
        limits = self.limits

        if ip_stats.attempts >= limits.max_attempts_per_ip:
            result.add(
                RiskFlag.HIGH_VELOCITY_IP,
                _stepped(
                    limits.weight_ip_attempts,
                    limits.weight_ip_attempts_step,
                    limits.cap_ip_attempts,
                    ip_stats.attempts - limits.max_attempts_per_ip,
                ),
            )

        if ip_stats.accounts_created >= limits.max_accounts_per_ip:
            result.add(
                RiskFlag.MULTIPLE_ACCOUNTS_SAME_IP,
                _stepped(
                    limits.weight_ip_accounts,
                    limits.weight_ip_accounts_step,
                    limits.cap_ip_accounts,
                    ip_stats.accounts_created - limits.max_accounts_per_ip,
                ),
            )

        if fingerprint_stats.attempts >= limits.max_attempts_per_fingerprint:
            result.add(
                RiskFlag.HIGH_VELOCITY_FINGERPRINT, limits.weight_fingerprint_attempts
            )

        return result

    def decide(self, score: int, flags: list[RiskFlag]) -> tuple[RiskDecision, str]:
        """Determine decision based on hard rules, then thresholds.

        Threshold boundaries are inclusive: a score equal to a threshold
        takes the more severe decision.
        """
        for flag, reason in HARD_BLOCK_FLAGS.items():
            if flag in flags:
                return RiskDecision.BLOCK, reason

        if score >= self.limits.block_threshold:
            return RiskDecision.BLOCK, _reason("High risk score", score, flags)
        if score >= self.limits.review_threshold:
            return RiskDecision.REVIEW, _reason("Moderate risk score", score, flags)

        return RiskDecision.ALLOW, "Low risk profile"


def _reason(prefix: str, score: int, flags: list[RiskFlag]) -> str:
    top = ", ".join(flag.value for flag in flags[:3])
    return f"{prefix} ({score}): {top}" if top else f"{prefix} ({score})"


def is_allowed(decision: RiskDecision) -> bool:
    """Check if the decision lets account creation proceed without review."""
    return decision == RiskDecision.ALLOW


def calculate_risk_score(
    signals: SignalRecord,
    ip_stats: "IpStats",
    fingerprint_stats: "FingerprintStats",
    limits: AntifraudLimits = DEFAULT_LIMITS,
) -> RiskAssessment:
    """Calculate risk score and recommended decision.

    Args:
        signals: Signals captured for the attempt.
        ip_stats: Current stats for the IP.
        fingerprint_stats: Current stats for the fingerprint.
        limits: Scoring configuration.

    Returns:
        RiskAssessment.
    """
    return RiskScorer(limits).score(signals, ip_stats, fingerprint_stats)
