"""Shared fixtures for the risk engine tests."""

from dataclasses import replace

import pytest

from signup_guard.config import AntifraudConfig
from signup_guard.db.database import build_engine, build_session_factory, init_db
from signup_guard.engine import RiskEngine
from signup_guard.schemas import CaptchaOutcome, NetworkClassification, SignupRequest
from signup_guard.security.mx_lookup import EmailDomainResult
from signup_guard.security.signals import (
    CaptchaSignals,
    DeviceSignals,
    EmailSignals,
    IpIntelResult,
    NetworkSignals,
    SignalRecord,
)
from signup_guard.security.validators import ValidatorResults
from signup_guard.store import RiskStore

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FINGERPRINT = "fp_3f9a1c7e2b5d4a60"

# =============================================================================
# Database
# =============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite database with all tables created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path}/risk.db")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def store(session_factory) -> RiskStore:
    return RiskStore(session_factory)


# =============================================================================
# Signals
# =============================================================================


@pytest.fixture
def make_signals():
    """Factory for a clean signal record; override any part with kwargs."""

    def _make(
        classification: NetworkClassification = NetworkClassification.RESIDENTIAL,
        fingerprint_id: str | None = FINGERPRINT,
        fingerprint_confidence: float = 0.9,
        suspicious_user_agent: bool = False,
        is_disposable: bool = False,
        has_valid_mx: bool = True,
        captcha: CaptchaOutcome = CaptchaOutcome.SUCCESS,
        ip: str = "8.8.8.8",
    ) -> SignalRecord:
        return SignalRecord(
            network=NetworkSignals(
                ip=ip, asn=7922, asn_org="Comcast", country="US", classification=classification
            ),
            device=DeviceSignals(
                user_agent=CHROME_UA,
                browser_family="chrome",
                browser_version="120.0.0.0",
                os_family="windows",
                os_version="10.0",
                is_suspicious_user_agent=suspicious_user_agent,
                fingerprint_id=fingerprint_id,
                fingerprint_confidence=fingerprint_confidence,
            ),
            email=EmailSignals(
                email="jane@example.com",
                local_part="jane",
                domain="example.com",
                is_disposable=is_disposable,
                has_valid_mx=has_valid_mx,
            ),
            captcha=CaptchaSignals(token="tok", outcome=captcha),
        )

    return _make


# =============================================================================
# Engine
# =============================================================================


class StubValidators:
    """Validator suite returning canned results."""

    def __init__(self, results: ValidatorResults):
        self.results = results
        self.calls = []

    async def run(self, token: str, ip: str, domain: str) -> ValidatorResults:
        self.calls.append((token, ip, domain))
        return replace(
            self.results,
            email_domain=replace(self.results.email_domain, domain=domain),
        )


def clean_results(**overrides) -> ValidatorResults:
    results = ValidatorResults(
        captcha=CaptchaSignals(token="tok", outcome=CaptchaOutcome.SUCCESS),
        ip_intel=IpIntelResult(asn=7922, asn_org="Comcast", country="US", asn_type="isp"),
        email_domain=EmailDomainResult(
            domain="example.com", is_disposable=False, has_valid_mx=True
        ),
    )
    return replace(results, **overrides)


@pytest.fixture
def validator_results():
    """Factory for validator results; clean residential attempt by default."""
    return clean_results


@pytest.fixture
def make_engine(store):
    """Factory for an engine on the test database with stubbed validators."""

    def _make(
        results: ValidatorResults | None = None,
        config: AntifraudConfig | None = None,
        risk_store: RiskStore | None = None,
    ) -> RiskEngine:
        return RiskEngine(
            config or AntifraudConfig(),
            risk_store or store,
            StubValidators(results or clean_results()),
        )

    return _make


@pytest.fixture
def signup_request():
    """Factory for a signup request from a clean residential client."""

    def _make(**overrides) -> SignupRequest:
        data = {
            "ip": "8.8.8.8",
            "email": "Jane@Example.com",
            "name": "Jane Doe",
            "fingerprint_id": FINGERPRINT,
            "fingerprint_confidence": 0.95,
            "captcha_token": "tok",
            "user_agent": CHROME_UA,
            "screen_resolution": "1920x1080",
            "language": "en-US",
            "timezone": "America/New_York",
        }
        data.update(overrides)
        return SignupRequest(**data)

    return _make
