"""Shared enums and pydantic schemas for the signup risk engine.

Enums are plain ``str`` enums so they serialize straight into JSON columns
and API responses.
"""

from enum import Enum

from pydantic import BaseModel, Field

# =============================================================================
# Constants
# =============================================================================

# Bumped whenever the scoring rules change so stored scores stay comparable
SCORING_VERSION: str = "1.0"

# Rolling window used by the abuse counters
STATS_WINDOW_HOURS: int = 24


# =============================================================================
# Enums
# =============================================================================


class NetworkClassification(str, Enum):
    """What kind of network an IP address belongs to."""

    RESIDENTIAL = "residential"
    HOSTING = "hosting"
    DATACENTER = "datacenter"
    PROXY = "proxy"
    VPN = "vpn"
    UNKNOWN = "unknown"


class DeviceType(str, Enum):
    """Coarse device type parsed from the user agent."""

    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"


class CaptchaOutcome(str, Enum):
    """Result of the CAPTCHA verification."""

    SUCCESS = "success"
    FAIL = "fail"
    UNKNOWN = "unknown"  # Provider unreachable or timed out


class RiskCategory(str, Enum):
    """Scoring categories that make up the breakdown."""

    NETWORK = "network"
    DEVICE = "device"
    EMAIL = "email"
    CAPTCHA = "captcha"
    VELOCITY = "velocity"


class RiskFlag(str, Enum):
    """Symbolic reasons attached to a risk decision."""

    # Network
    DATACENTER_IP = "datacenter_ip"
    HOSTING_IP = "hosting_ip"
    PROXY_DETECTED = "proxy_detected"
    VPN_DETECTED = "vpn_detected"
    UNKNOWN_NETWORK = "unknown_network"
    BLOCKLISTED_IP = "blocklisted_ip"

    # Device
    FINGERPRINT_MISSING = "fingerprint_missing"
    LOW_FINGERPRINT_CONFIDENCE = "low_fingerprint_confidence"
    FINGERPRINT_REUSED = "fingerprint_reused"
    BLOCKLISTED_FINGERPRINT = "blocklisted_fingerprint"
    SUSPICIOUS_USER_AGENT = "suspicious_user_agent"

    # Email
    DISPOSABLE_EMAIL = "disposable_email"
    NO_MX_RECORDS = "no_mx_records"

    # Captcha
    CAPTCHA_FAILED = "captcha_failed"
    CAPTCHA_UNAVAILABLE = "captcha_unavailable"

    # Velocity
    HIGH_VELOCITY_IP = "high_velocity_ip"
    MULTIPLE_ACCOUNTS_SAME_IP = "multiple_accounts_same_ip"
    HIGH_VELOCITY_FINGERPRINT = "high_velocity_fingerprint"

    # Operational (never carry points)
    STATS_UNAVAILABLE = "stats_unavailable"
    DEGRADED_MODE = "degraded_mode"
    ANTIFRAUD_DISABLED = "antifraud_disabled"


class RiskDecision(str, Enum):
    """Outcome of the risk policy."""

    ALLOW = "allow"
    REVIEW = "review"
    BLOCK = "block"


class TrustLevel(str, Enum):
    """Initial trust tier stamped on a new account.

    The engine only ever assigns NEW or BASIC; the higher tiers are granted
    later by other parts of the product (email verification, payment, ...).
    """

    NEW = "new"
    BASIC = "basic"
    VERIFIED = "verified"
    TRUSTED = "trusted"
    PREMIUM = "premium"


class EventType(str, Enum):
    """Event log entry types."""

    SIGNUP_FINALIZED = "signup_finalized"
    STATS_WRITE_FAILED = "stats_write_failed"
    IP_BLOCKLISTED = "ip_blocklisted"
    FINGERPRINT_BLOCKLISTED = "fingerprint_blocklisted"


# Decisions ordered by severity, used when a floor is applied
DECISION_SEVERITY: dict[RiskDecision, int] = {
    RiskDecision.ALLOW: 0,
    RiskDecision.REVIEW: 1,
    RiskDecision.BLOCK: 2,
}


# =============================================================================
# Signup Request (engine input)
# =============================================================================


class SignupRequest(BaseModel):
    """Everything the engine needs to assess one signup attempt.

    ``ip`` and ``country`` come from the request context (never the client
    body); the rest is submitted by the signup form.
    """

    ip: str = ""
    country: str = ""
    email: str = ""
    name: str = ""
    fingerprint_id: str | None = None
    fingerprint_confidence: float = 0.0
    captcha_token: str = ""
    user_agent: str = ""
    screen_resolution: str = ""
    language: str = ""
    timezone: str = ""


# =============================================================================
# HTTP Request/Response Models
# =============================================================================


class SignupCheckPayload(BaseModel):
    """Request body for POST /antifraud/validate."""

    email: str
    name: str = ""
    fingerprint_id: str | None = None
    fingerprint_confidence: float = 0.0
    captcha_token: str = ""
    user_agent: str | None = None  # Falls back to the User-Agent header
    screen_resolution: str = ""
    language: str = ""
    timezone: str = ""


class SignupCheckResponse(BaseModel):
    """Public validation result. Never exposes individual flags."""

    allowed: bool
    risk_score: int = Field(..., ge=0, le=100)
    decision: RiskDecision
    reason: str
    initial_credits: int


class StoredRiskResponse(BaseModel):
    """Stored assessment for an account (audit view)."""

    account_id: str
    risk_score: int
    decision: RiskDecision
    reason: str
    flags: list[str]
    version: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    antifraud_enabled: bool
