"""Cloudflare Turnstile verification.

Invisible CAPTCHA verification for bot protection.
https://developers.cloudflare.com/turnstile/
"""

import logging

import httpx

from signup_guard.errors import ValidatorUnavailable
from signup_guard.schemas import CaptchaOutcome
from signup_guard.security.signals import CaptchaSignals

logger = logging.getLogger("signup-guard-turnstile")

VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"

# Error codes that mean the provider itself is in trouble, not the token
PROVIDER_ERROR_CODES = frozenset(["internal-error"])


class TurnstileValidator:
    """Verifies Turnstile tokens against Cloudflare's siteverify endpoint."""

    name = "captcha"

    def __init__(
        self,
        secret_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 2.0,
        verify_url: str = VERIFY_URL,
    ):
        """Initialize the validator.

        Args:
            secret_key: Turnstile secret key. Empty disables verification.
            client: Shared HTTP client. A short-lived one is created per
                call when omitted.
            timeout: Per-request timeout in seconds.
            verify_url: Siteverify endpoint.
        """
        self.secret_key = secret_key
        self.timeout = timeout
        self.verify_url = verify_url
        self._client = client

    def fallback(self, token: str) -> CaptchaSignals:
        """Result used when the provider cannot be reached in time."""
        return CaptchaSignals(token=token, outcome=CaptchaOutcome.UNKNOWN)

    async def validate(self, token: str, remote_ip: str | None = None) -> CaptchaSignals:
        """Verify a Turnstile token.

        Args:
            token: The turnstile response token from the client.
            remote_ip: Optional client IP for additional verification.

        Returns:
            CaptchaSignals with SUCCESS or FAIL.

        Raises:
            ValidatorUnavailable: On transport errors, timeouts, or a
                provider-side failure.
        """
        # If not configured, allow (for development)
        if not self.secret_key:
            logger.warning("TURNSTILE_SECRET_KEY not set - skipping captcha check")
            return CaptchaSignals(token=token, outcome=CaptchaOutcome.SUCCESS)

        if not token:
            return CaptchaSignals(
                token="",
                outcome=CaptchaOutcome.FAIL,
                error_codes=("missing-input-response",),
            )

        payload = {
            "secret": self.secret_key,
            "response": token,
        }
        if remote_ip:
            payload["remoteip"] = remote_ip

        try:
            response = await self._post(payload)
            if response.status_code >= 500:
                raise ValidatorUnavailable(
                    self.name, f"siteverify returned {response.status_code}"
                )
            result = response.json()
        except httpx.TimeoutException as e:
            raise ValidatorUnavailable(self.name, "timeout") from e
        except httpx.HTTPError as e:
            raise ValidatorUnavailable(self.name, f"transport error: {e}") from e
        except ValueError as e:
            raise ValidatorUnavailable(self.name, "invalid JSON response") from e

        if not isinstance(result, dict):
            raise ValidatorUnavailable(self.name, "unexpected siteverify payload")

        error_codes = tuple(result.get("error-codes") or ())
        if PROVIDER_ERROR_CODES.intersection(error_codes):
            raise ValidatorUnavailable(self.name, f"provider error: {error_codes}")

        score = result.get("score")
        provider_score = float(score) if isinstance(score, (int, float)) else None

        if result.get("success"):
            return CaptchaSignals(
                token=token,
                outcome=CaptchaOutcome.SUCCESS,
                provider_score=provider_score,
            )

        logger.info(f"Turnstile verification failed: {list(error_codes)}")
        return CaptchaSignals(
            token=token,
            outcome=CaptchaOutcome.FAIL,
            provider_score=provider_score,
            error_codes=error_codes,
        )

    async def _post(self, payload: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(
                self.verify_url, data=payload, timeout=self.timeout
            )
        async with httpx.AsyncClient() as client:
            return await client.post(self.verify_url, data=payload, timeout=self.timeout)
