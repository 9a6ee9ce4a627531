"""Anti-fraud configuration.

Everything is loaded from environment variables once at startup and treated
as read-only afterwards. Secrets have no defaults; scoring weights, limits
and thresholds have defaults that can be overridden per deployment.
"""

import logging
import os
from dataclasses import dataclass, fields

from signup_guard.schemas import RiskDecision

logger = logging.getLogger("signup-guard-config")


class ConfigurationError(Exception):
    """Raised when configuration is missing or invalid."""

    pass


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    value = value.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {value!r}")


def _env_number(key: str, default, cast=int):
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from e


# =============================================================================
# Scoring Limits
# =============================================================================


@dataclass(frozen=True)
class AntifraudLimits:
    """Weights, velocity limits and decision thresholds for the scorer.

    Every field can be overridden with ``ANTIFRAUD_<FIELD_NAME_UPPERCASE>``,
    e.g. ``ANTIFRAUD_REVIEW_THRESHOLD=40``.
    """

    # Network weights
    weight_datacenter_ip: int = 25
    weight_proxy: int = 30
    weight_vpn: int = 20
    weight_hosting_ip: int = 15
    weight_unknown_network: int = 5
    weight_blocklisted: int = 100

    # Device weights
    weight_fingerprint_missing: int = 15
    weight_low_fingerprint_confidence: int = 15
    weight_fingerprint_reused: int = 35
    weight_fingerprint_reused_step: int = 10
    cap_fingerprint_reused: int = 55
    weight_suspicious_user_agent: int = 25
    min_fingerprint_confidence: float = 0.3

    # Email weights
    weight_disposable_email: int = 25
    weight_no_mx: int = 10

    # Captcha weights
    weight_captcha_failed: int = 40
    weight_captcha_unavailable: int = 15

    # Velocity weights
    weight_ip_attempts: int = 15
    weight_ip_attempts_step: int = 2
    cap_ip_attempts: int = 25
    weight_ip_accounts: int = 30
    weight_ip_accounts_step: int = 10
    cap_ip_accounts: int = 60
    weight_fingerprint_attempts: int = 15

    # Velocity limits (per 24h window)
    max_attempts_per_ip: int = 10
    max_accounts_per_ip: int = 3
    max_attempts_per_fingerprint: int = 5
    max_accounts_per_fingerprint: int = 2

    # Decision thresholds (inclusive)
    review_threshold: int = 50
    block_threshold: int = 80

    def __post_init__(self):
        if not 0 <= self.review_threshold <= self.block_threshold <= 100:
            raise ConfigurationError(
                "Thresholds must satisfy 0 <= review_threshold <= block_threshold <= 100 "
                f"(got review={self.review_threshold}, block={self.block_threshold})"
            )
        if not 0.0 <= self.min_fingerprint_confidence <= 1.0:
            raise ConfigurationError("min_fingerprint_confidence must be within [0, 1]")

    @classmethod
    def from_env(cls) -> "AntifraudLimits":
        """Load limits, applying any ANTIFRAUD_* overrides."""
        overrides = {}
        for f in fields(cls):
            key = f"ANTIFRAUD_{f.name.upper()}"
            cast = float if f.type in (float, "float") else int
            value = _env_number(key, None, cast)
            if value is not None:
                overrides[f.name] = value
        return cls(**overrides)


DEFAULT_LIMITS = AntifraudLimits()


# =============================================================================
# Engine Configuration
# =============================================================================


@dataclass(frozen=True)
class AntifraudConfig:
    """Engine configuration loaded from environment."""

    enabled: bool = True
    turnstile_secret_key: str = ""
    ipinfo_token: str | None = None
    doh_url: str = "https://cloudflare-dns.com/dns-query"

    # Treat an unreachable CAPTCHA provider as a failed challenge
    captcha_fail_closed: bool = False

    validator_timeout_seconds: float = 2.0
    deadline_seconds: float = 3.0

    # Credit grants per outcome
    initial_credits: int = 200
    review_credits: int = 50
    degraded_credits: int = 50

    # Decision used when the store cannot be reached during validation
    degraded_decision: RiskDecision = RiskDecision.REVIEW

    limits: AntifraudLimits = DEFAULT_LIMITS

    def __post_init__(self):
        if self.degraded_decision == RiskDecision.BLOCK:
            raise ConfigurationError(
                "ANTIFRAUD_DEGRADED_DECISION must be 'allow' or 'review'; "
                "blocking every signup during an outage is not supported"
            )
        if self.deadline_seconds <= 0 or self.validator_timeout_seconds <= 0:
            raise ConfigurationError("Validator timeouts must be positive")
        for name in ("initial_credits", "review_credits", "degraded_credits"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must not be negative")

    @classmethod
    def from_env(cls) -> "AntifraudConfig":
        """Load engine config from environment variables."""
        secret_key = os.getenv("TURNSTILE_SECRET_KEY", "")
        ipinfo_token = os.getenv("IPINFO_TOKEN") or None
        enabled = _env_bool("ANTIFRAUD_ENABLED", True)

        if enabled and not secret_key:
            logger.warning("TURNSTILE_SECRET_KEY not set - captcha checks are skipped")
        if enabled and not ipinfo_token:
            logger.warning("IPINFO_TOKEN not set - network classification is unknown")

        raw_decision = os.getenv("ANTIFRAUD_DEGRADED_DECISION", RiskDecision.REVIEW.value)
        try:
            degraded_decision = RiskDecision(raw_decision.strip().lower())
        except ValueError as e:
            raise ConfigurationError(
                f"ANTIFRAUD_DEGRADED_DECISION must be allow or review, got {raw_decision!r}"
            ) from e

        return cls(
            enabled=enabled,
            turnstile_secret_key=secret_key,
            ipinfo_token=ipinfo_token,
            doh_url=os.getenv("DOH_URL", "https://cloudflare-dns.com/dns-query"),
            captcha_fail_closed=_env_bool("ANTIFRAUD_CAPTCHA_FAIL_CLOSED", False),
            validator_timeout_seconds=_env_number(
                "ANTIFRAUD_VALIDATOR_TIMEOUT_SECONDS", 2.0, float
            ),
            deadline_seconds=_env_number("ANTIFRAUD_DEADLINE_SECONDS", 3.0, float),
            initial_credits=_env_number("ANTIFRAUD_INITIAL_CREDITS", 200),
            review_credits=_env_number("ANTIFRAUD_REVIEW_CREDITS", 50),
            degraded_credits=_env_number("ANTIFRAUD_DEGRADED_CREDITS", 50),
            degraded_decision=degraded_decision,
            limits=AntifraudLimits.from_env(),
        )


def load_config() -> AntifraudConfig:
    """Load and validate configuration. Fails fast with clear errors."""
    return AntifraudConfig.from_env()
