"""Signup risk engine.

Two phases around account creation:

1. ``validate_signup`` runs before the account exists. It extracts signals,
   runs the external validators, reads the abuse stats and scores the
   attempt. Nothing is written.
2. ``finalize_signup`` runs after the caller created the account. It
   persists the signal snapshot and score, counts the attempt against the
   IP and fingerprint, and returns the trust tier and credit grant. It is
   idempotent per account id.

The engine holds no per-request state and is shared by all requests.
"""

import logging
from dataclasses import dataclass, field, replace

from sqlalchemy.exc import SQLAlchemyError

from signup_guard.config import AntifraudConfig, ConfigurationError
from signup_guard.errors import FinalizeConflict, SignupInputError
from signup_guard.schemas import (
    DECISION_SEVERITY,
    EventType,
    RiskDecision,
    RiskFlag,
    SignupRequest,
    TrustLevel,
)
from signup_guard.security.email_validator import is_valid_email_format
from signup_guard.security.risk_scoring import (
    RiskAssessment,
    RiskScoreBreakdown,
    RiskScorer,
    is_allowed,
)
from signup_guard.security.signals import (
    SignalRecord,
    extract_device_signals,
    extract_email_signals,
    extract_network_signals,
    normalize_fingerprint,
    normalize_ip,
)
from signup_guard.security.validators import ValidatorSuite
from signup_guard.store import (
    FingerprintStats,
    IpStats,
    RiskStore,
    StoredRiskScore,
    build_score_row,
    build_signal_row,
)

logger = logging.getLogger("signup-guard-engine")

MAX_NAME_LENGTH = 255

# Store failures the engine degrades on instead of failing the request
STORE_ERRORS = (SQLAlchemyError, OSError)


# =============================================================================
# Results
# =============================================================================


@dataclass
class ValidationResult:
    """Outcome of ``validate_signup``.

    ``signals`` and ``assessment`` are kept in memory for finalize; they are
    None when antifraud is disabled or the assessment failed outright.
    """

    allowed: bool
    risk_score: int
    decision: RiskDecision
    reason: str
    trust_level: TrustLevel
    initial_credits: int
    flags: list[RiskFlag] = field(default_factory=list)
    degraded: bool = False
    signals: SignalRecord | None = None
    assessment: RiskAssessment | None = None


@dataclass
class FinalizeResult:
    """Outcome of ``finalize_signup``."""

    account_id: str
    trust_level: TrustLevel
    initial_credits: int
    decision: RiskDecision
    risk_score: int
    # True when an earlier finalize for this account was returned
    duplicate: bool = field(default=False, compare=False)

    def to_payload(self) -> dict:
        return {
            "trust_level": self.trust_level.value,
            "initial_credits": self.initial_credits,
            "decision": self.decision.value,
            "risk_score": self.risk_score,
        }

    @classmethod
    def from_payload(
        cls, account_id: str, payload: dict, duplicate: bool = False
    ) -> "FinalizeResult":
        return cls(
            account_id=account_id,
            trust_level=TrustLevel(payload["trust_level"]),
            initial_credits=int(payload["initial_credits"]),
            decision=RiskDecision(payload["decision"]),
            risk_score=int(payload["risk_score"]),
            duplicate=duplicate,
        )


# =============================================================================
# Engine
# =============================================================================


class RiskEngine:
    """Orchestrates signal extraction, validators, stats and scoring."""

    def __init__(
        self,
        config: AntifraudConfig,
        store: RiskStore | None,
        validators: ValidatorSuite | None = None,
    ):
        """Initialize the engine.

        Args:
            config: Loaded configuration.
            store: Durable store. Required even when antifraud is disabled.
            validators: External validators. Built from config when omitted.

        Raises:
            ConfigurationError: If no store is given.
        """
        if store is None:
            raise ConfigurationError("RiskEngine requires a store")

        self.config = config
        self.store = store
        self.validators = validators or ValidatorSuite.from_config(config)
        self.scorer = RiskScorer(config.limits)

    # =========================================================================
    # Policy helpers
    # =========================================================================

    def _credits_for(self, decision: RiskDecision, degraded: bool) -> int:
        if decision == RiskDecision.BLOCK:
            return 0
        if degraded:
            return self.config.degraded_credits
        if decision == RiskDecision.REVIEW:
            return self.config.review_credits
        return self.config.initial_credits

    @staticmethod
    def _trust_for(decision: RiskDecision, degraded: bool) -> TrustLevel:
        if decision == RiskDecision.ALLOW and not degraded:
            return TrustLevel.BASIC
        return TrustLevel.NEW

    def _result(
        self,
        assessment: RiskAssessment,
        signals: SignalRecord | None,
        degraded: bool = False,
    ) -> ValidationResult:
        decision = assessment.decision
        reason = assessment.reason
        if degraded:
            # The configured decision is a floor; a block stands
            floor = self.config.degraded_decision
            if DECISION_SEVERITY[floor] > DECISION_SEVERITY[decision]:
                decision = floor
                reason = "Risk checks degraded"

        return ValidationResult(
            allowed=is_allowed(decision),
            risk_score=assessment.score,
            decision=decision,
            reason=reason,
            trust_level=self._trust_for(decision, degraded),
            initial_credits=self._credits_for(decision, degraded),
            flags=assessment.flags,
            degraded=degraded,
            signals=signals,
            assessment=assessment,
        )

    # =========================================================================
    # Validate
    # =========================================================================

    def _check_input(self, request: SignupRequest) -> None:
        if not request.email or not request.email.strip():
            raise SignupInputError("email", "Email is required")
        if not is_valid_email_format(request.email):
            raise SignupInputError("email", "Invalid email format")
        if len(request.name or "") > MAX_NAME_LENGTH:
            raise SignupInputError("name", "Name is too long")

    async def validate_signup(self, request: SignupRequest) -> ValidationResult:
        """Assess a signup attempt before the account is created.

        Raises:
            SignupInputError: If the request cannot be scored.
        """
        self._check_input(request)

        if not self.config.enabled:
            return ValidationResult(
                allowed=True,
                risk_score=0,
                decision=RiskDecision.ALLOW,
                reason="Antifraud disabled",
                trust_level=TrustLevel.BASIC,
                initial_credits=self.config.initial_credits,
                flags=[RiskFlag.ANTIFRAUD_DISABLED],
            )

        try:
            return await self._assess(request)
        except Exception as e:
            logger.exception(f"Risk assessment failed, using degraded decision: {e!r}")
            assessment = RiskAssessment(
                score=0,
                breakdown=RiskScoreBreakdown(),
                decision=RiskDecision.ALLOW,
                reason="Risk assessment unavailable",
                operational_flags=[RiskFlag.DEGRADED_MODE],
            )
            return self._result(assessment, signals=None, degraded=True)

    async def _assess(self, request: SignupRequest) -> ValidationResult:
        email = extract_email_signals(request.email)
        device = extract_device_signals(request)
        ip = normalize_ip(request.ip)

        results = await self.validators.run(request.captcha_token, ip, email.domain)

        signals = SignalRecord(
            network=extract_network_signals(ip, results.ip_intel, request.country),
            device=device,
            email=replace(
                email,
                is_disposable=results.email_domain.is_disposable,
                has_valid_mx=results.email_domain.has_valid_mx,
            ),
            captcha=results.captcha,
        )

        ip_stats, fingerprint_stats, operational, store_down = await self._read_stats(
            ip, device.fingerprint_id
        )

        assessment = self.scorer.score(
            signals,
            ip_stats,
            fingerprint_stats,
            captcha_fail_closed=self.config.captcha_fail_closed,
        )
        if store_down:
            operational.append(RiskFlag.DEGRADED_MODE)
        assessment.operational_flags.extend(operational)

        logger.info(
            f"Signup assessed: domain={email.domain} ip={ip or '-'} "
            f"score={assessment.score} decision={assessment.decision.value}"
            + (f" degraded={list(results.degraded)}" if results.degraded else "")
        )
        return self._result(assessment, signals, degraded=store_down)

    async def _read_stats(
        self, ip: str, fingerprint_id: str | None
    ) -> tuple[IpStats, FingerprintStats, list[RiskFlag], bool]:
        """Read stats for both keys.

        A failed read counts as zero stats. Returns the operational flags to
        attach and whether every attempted read failed.
        """
        ip_stats = IpStats(ip=ip)
        fingerprint_stats = FingerprintStats(fingerprint_id=fingerprint_id or "")
        attempted = failed = 0

        if ip:
            attempted += 1
            try:
                ip_stats = await self.store.stats.get_ip_stats(ip)
            except STORE_ERRORS as e:
                failed += 1
                logger.warning(f"IP stats read failed for {ip}: {e!r}")

        if fingerprint_id:
            attempted += 1
            try:
                fingerprint_stats = await self.store.stats.get_fingerprint_stats(
                    fingerprint_id
                )
            except STORE_ERRORS as e:
                failed += 1
                logger.warning(f"Fingerprint stats read failed: {e!r}")

        operational = [RiskFlag.STATS_UNAVAILABLE] if failed else []
        return ip_stats, fingerprint_stats, operational, attempted > 0 and failed == attempted

    # =========================================================================
    # Finalize
    # =========================================================================

    async def finalize_signup(
        self,
        account_id: str,
        request: SignupRequest,
        validation: ValidationResult | None = None,
    ) -> FinalizeResult:
        """Record a created account and return its trust tier and credits.

        Calling it again for the same account returns the first result and
        changes nothing.

        Args:
            account_id: Id of the account the caller just created.
            request: The signup request that was validated.
            validation: Result of ``validate_signup``. Re-validated when None.

        Raises:
            SignupInputError: If account_id is empty.
            SQLAlchemyError: If the finalize record itself cannot be written.
            FinalizeConflict: If score or signal rows for the account exist
                without a finalize event.
        """
        if not account_id:
            raise SignupInputError("account_id", "Account id is required")

        if not self.config.enabled:
            return FinalizeResult(
                account_id=account_id,
                trust_level=TrustLevel.BASIC,
                initial_credits=self.config.initial_credits,
                decision=RiskDecision.ALLOW,
                risk_score=0,
            )

        if validation is None:
            validation = await self.validate_signup(request)

        result = FinalizeResult(
            account_id=account_id,
            trust_level=validation.trust_level,
            initial_credits=validation.initial_credits,
            decision=validation.decision,
            risk_score=validation.risk_score,
        )

        rows = []
        if validation.assessment is not None:
            assessment = replace(validation.assessment, decision=validation.decision)
            rows.append(build_score_row(account_id, assessment))
        if validation.signals is not None:
            rows.append(build_signal_row(account_id, validation.signals))

        claimed = await self.store.events.claim(
            account_id, EventType.SIGNUP_FINALIZED, result.to_payload(), rows
        )
        if not claimed:
            stored = await self.store.events.get(account_id, EventType.SIGNUP_FINALIZED)
            if stored is None:
                logger.error(f"Finalize rejected for {account_id} without a prior finalize event")
                raise FinalizeConflict(account_id)
            return FinalizeResult.from_payload(account_id, stored.payload, duplicate=True)

        if validation.signals is not None:
            ip = validation.signals.network.ip
            fingerprint_id = validation.signals.device.fingerprint_id
        else:
            ip = normalize_ip(request.ip)
            fingerprint_id = normalize_fingerprint(request.fingerprint_id)

        await self._record_stats(
            account_id,
            ip,
            fingerprint_id,
            account_created=validation.decision != RiskDecision.BLOCK,
        )

        logger.info(
            f"Signup finalized: account={account_id} decision={result.decision.value} "
            f"trust={result.trust_level.value} credits={result.initial_credits}"
        )
        return result

    async def _record_stats(
        self,
        account_id: str,
        ip: str,
        fingerprint_id: str | None,
        account_created: bool,
    ) -> None:
        """Increment both keys, each retried once. Failures never propagate."""
        increments = []
        if ip:
            increments.append(("ip", ip, self.store.stats.increment_ip_stats))
        if fingerprint_id:
            increments.append(
                ("fingerprint", fingerprint_id, self.store.stats.increment_fingerprint_stats)
            )

        failed = []
        for kind, key, increment in increments:
            for attempt in (1, 2):
                try:
                    await increment(key, account_created)
                    break
                except STORE_ERRORS as e:
                    if attempt == 1:
                        logger.warning(f"{kind} stats write failed, retrying: {e!r}")
                    else:
                        logger.warning(f"{kind} stats write failed twice for {account_id}: {e!r}")
                        failed.append(kind)

        if not failed:
            return

        try:
            await self.store.events.append(
                EventType.STATS_WRITE_FAILED,
                {"keys": failed, "ip": ip, "fingerprint_id": fingerprint_id},
                account_id=account_id,
            )
        except STORE_ERRORS as e:
            logger.error(f"Could not record stats write failure for {account_id}: {e!r}")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_risk_score(self, account_id: str) -> StoredRiskScore | None:
        """Get the stored risk assessment for an account."""
        return await self.store.records.get_risk_score(account_id)
