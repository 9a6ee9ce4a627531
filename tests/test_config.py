"""Tests for environment-driven configuration."""

import pytest

from signup_guard.config import (
    AntifraudConfig,
    AntifraudLimits,
    ConfigurationError,
    load_config,
)
from signup_guard.schemas import RiskDecision


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "ANTIFRAUD_ENABLED",
        "TURNSTILE_SECRET_KEY",
        "IPINFO_TOKEN",
        "ANTIFRAUD_DEGRADED_DECISION",
        "ANTIFRAUD_REVIEW_THRESHOLD",
        "ANTIFRAUD_BLOCK_THRESHOLD",
        "ANTIFRAUD_DEADLINE_SECONDS",
    ):
        monkeypatch.delenv(key, raising=False)


class TestAntifraudConfig:
    """Tests for AntifraudConfig.from_env."""

    def test_defaults(self):
        config = load_config()

        assert config.enabled is True
        assert config.turnstile_secret_key == ""
        assert config.ipinfo_token is None
        assert config.degraded_decision == RiskDecision.REVIEW
        assert config.initial_credits == 200
        assert config.limits == AntifraudLimits()

    def test_overrides(self, monkeypatch):
        monkeypatch.setenv("ANTIFRAUD_ENABLED", "false")
        monkeypatch.setenv("TURNSTILE_SECRET_KEY", "secret")
        monkeypatch.setenv("IPINFO_TOKEN", "token")
        monkeypatch.setenv("ANTIFRAUD_DEGRADED_DECISION", " Allow ")
        monkeypatch.setenv("ANTIFRAUD_DEGRADED_CREDITS", "20")
        monkeypatch.setenv("ANTIFRAUD_DEADLINE_SECONDS", "1.5")

        config = AntifraudConfig.from_env()

        assert config.enabled is False
        assert config.turnstile_secret_key == "secret"
        assert config.ipinfo_token == "token"
        assert config.degraded_decision == RiskDecision.ALLOW
        assert config.degraded_credits == 20
        assert config.deadline_seconds == 1.5

    def test_block_is_not_a_degraded_decision(self, monkeypatch):
        monkeypatch.setenv("ANTIFRAUD_DEGRADED_DECISION", "block")
        with pytest.raises(ConfigurationError):
            AntifraudConfig.from_env()

    def test_unknown_degraded_decision(self, monkeypatch):
        monkeypatch.setenv("ANTIFRAUD_DEGRADED_DECISION", "maybe")
        with pytest.raises(ConfigurationError):
            AntifraudConfig.from_env()

    @pytest.mark.parametrize(
        "key,value",
        [
            ("ANTIFRAUD_ENABLED", "sometimes"),
            ("ANTIFRAUD_INITIAL_CREDITS", "lots"),
            ("ANTIFRAUD_INITIAL_CREDITS", "-1"),
            ("ANTIFRAUD_DEADLINE_SECONDS", "0"),
        ],
    )
    def test_invalid_values_fail_fast(self, monkeypatch, key, value):
        monkeypatch.setenv(key, value)
        with pytest.raises(ConfigurationError):
            load_config()

    def test_missing_secrets_only_warn(self, caplog):
        with caplog.at_level("WARNING", logger="signup-guard-config"):
            AntifraudConfig.from_env()

        assert "TURNSTILE_SECRET_KEY not set" in caplog.text
        assert "IPINFO_TOKEN not set" in caplog.text


class TestAntifraudLimits:
    """Tests for scoring limit overrides and validation."""

    def test_weight_and_threshold_overrides(self, monkeypatch):
        monkeypatch.setenv("ANTIFRAUD_WEIGHT_VPN", "35")
        monkeypatch.setenv("ANTIFRAUD_REVIEW_THRESHOLD", "40")
        monkeypatch.setenv("ANTIFRAUD_MIN_FINGERPRINT_CONFIDENCE", "0.5")

        limits = AntifraudLimits.from_env()

        assert limits.weight_vpn == 35
        assert limits.review_threshold == 40
        assert limits.min_fingerprint_confidence == 0.5
        assert limits.block_threshold == 80

    def test_non_numeric_override(self, monkeypatch):
        monkeypatch.setenv("ANTIFRAUD_WEIGHT_VPN", "high")
        with pytest.raises(ConfigurationError):
            AntifraudLimits.from_env()

    @pytest.mark.parametrize(
        "review,block", [(90, 80), (-1, 80), (50, 101)]
    )
    def test_threshold_ordering(self, review, block):
        with pytest.raises(ConfigurationError):
            AntifraudLimits(review_threshold=review, block_threshold=block)

    def test_equal_thresholds_are_allowed(self):
        limits = AntifraudLimits(review_threshold=70, block_threshold=70)
        assert limits.block_threshold == 70

    def test_confidence_bounds(self):
        with pytest.raises(ConfigurationError):
            AntifraudLimits(min_fingerprint_confidence=1.5)
