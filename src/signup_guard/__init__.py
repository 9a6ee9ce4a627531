"""Signup-time fraud risk engine.

Scores new-account requests (allow / review / block) from network, device,
email, CAPTCHA and velocity signals, and assigns the initial trust tier and
credit grant once the account exists.
"""

from signup_guard.config import AntifraudConfig, AntifraudLimits, ConfigurationError
from signup_guard.engine import FinalizeResult, RiskEngine, ValidationResult
from signup_guard.errors import FinalizeConflict, SignupInputError, ValidatorUnavailable
from signup_guard.schemas import RiskDecision, RiskFlag, SignupRequest, TrustLevel

__all__ = [
    "AntifraudConfig",
    "AntifraudLimits",
    "ConfigurationError",
    "FinalizeConflict",
    "FinalizeResult",
    "RiskDecision",
    "RiskEngine",
    "RiskFlag",
    "SignupInputError",
    "SignupRequest",
    "TrustLevel",
    "ValidationResult",
    "ValidatorUnavailable",
]
