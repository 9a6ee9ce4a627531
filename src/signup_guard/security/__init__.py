"""Security and anti-fraud module.

Provides multi-layer protection against abuse:
- Cloudflare Turnstile verification
- Email domain validation (disposable list + MX lookup)
- IP intelligence and network classification
- Device fingerprint and user agent signals
- Risk scoring
"""

from signup_guard.security.email_validator import (
    is_disposable_email,
    is_free_email,
    is_valid_email_format,
)
from signup_guard.security.ip_intel import IpIntelValidator
from signup_guard.security.mx_lookup import MxValidator
from signup_guard.security.risk_scoring import (
    RiskAssessment,
    RiskScorer,
    calculate_risk_score,
    is_allowed,
)
from signup_guard.security.signals import RequestContext, SignalRecord
from signup_guard.security.turnstile import TurnstileValidator
from signup_guard.security.validators import ValidatorResults, ValidatorSuite

__all__ = [
    "IpIntelValidator",
    "MxValidator",
    "RequestContext",
    "RiskAssessment",
    "RiskScorer",
    "SignalRecord",
    "TurnstileValidator",
    "ValidatorResults",
    "ValidatorSuite",
    "calculate_risk_score",
    "is_allowed",
    "is_disposable_email",
    "is_free_email",
    "is_valid_email_format",
]
