"""Concurrent execution of the external validators.

All validators for one attempt run as separate tasks under a single
deadline. Anything that fails, times out, or is still pending at the
deadline contributes its fallback value instead of failing the attempt.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from signup_guard.errors import ValidatorUnavailable
from signup_guard.security.ip_intel import IpIntelValidator
from signup_guard.security.mx_lookup import EmailDomainResult, MxValidator
from signup_guard.security.signals import CaptchaSignals, IpIntelResult
from signup_guard.security.turnstile import TurnstileValidator

logger = logging.getLogger("signup-guard-validators")

DEFAULT_DEADLINE_SECONDS = 3.0


@dataclass(frozen=True)
class ValidatorResults:
    """Combined validator output for one attempt."""

    captcha: CaptchaSignals
    ip_intel: IpIntelResult | None
    email_domain: EmailDomainResult
    degraded: tuple[str, ...] = ()  # Validators that fell back

    def is_degraded(self, name: str) -> bool:
        return name in self.degraded


class ValidatorSuite:
    """Runs the CAPTCHA, IP intelligence and email domain checks together."""

    def __init__(
        self,
        captcha: TurnstileValidator,
        ip_intel: IpIntelValidator,
        email_domain: MxValidator,
        deadline: float = DEFAULT_DEADLINE_SECONDS,
    ):
        self.captcha = captcha
        self.ip_intel = ip_intel
        self.email_domain = email_domain
        self.deadline = deadline

    @classmethod
    def from_config(cls, config, client: httpx.AsyncClient | None = None) -> "ValidatorSuite":
        """Build the default suite from an AntifraudConfig."""
        return cls(
            captcha=TurnstileValidator(
                config.turnstile_secret_key,
                client=client,
                timeout=config.validator_timeout_seconds,
            ),
            ip_intel=IpIntelValidator(
                config.ipinfo_token,
                client=client,
                timeout=config.validator_timeout_seconds,
            ),
            email_domain=MxValidator(
                client=client,
                timeout=config.validator_timeout_seconds,
                doh_url=config.doh_url,
            ),
            deadline=config.deadline_seconds,
        )

    async def run(self, token: str, ip: str, domain: str) -> ValidatorResults:
        """Run every validator concurrently and wait at most ``deadline``.

        If the caller is cancelled, in-flight validator calls are cancelled
        with it.
        """
        jobs: dict[str, tuple[Awaitable[Any], Callable[[], Any]]] = {
            self.captcha.name: (
                self.captcha.validate(token, ip or None),
                lambda: self.captcha.fallback(token),
            ),
            self.ip_intel.name: (
                self.ip_intel.validate(ip),
                lambda: self.ip_intel.fallback(ip),
            ),
            self.email_domain.name: (
                self.email_domain.validate(domain),
                lambda: self.email_domain.fallback(domain),
            ),
        }

        tasks = {name: asyncio.ensure_future(coro) for name, (coro, _) in jobs.items()}
        try:
            done, _ = await asyncio.wait(tasks.values(), timeout=self.deadline)
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks.values(), return_exceptions=True)

        results: dict[str, Any] = {}
        degraded: list[str] = []
        for name, task in tasks.items():
            fallback = jobs[name][1]
            if task not in done or task.cancelled():
                logger.warning(f"Validator {name} missed the {self.deadline}s deadline")
                results[name] = fallback()
                degraded.append(name)
                continue

            error = task.exception()
            if error is None:
                results[name] = task.result()
            elif isinstance(error, ValidatorUnavailable):
                logger.warning(f"Validator {name} unavailable: {error.reason}")
                results[name] = fallback()
                degraded.append(name)
            else:
                logger.error(f"Validator {name} failed unexpectedly: {error!r}")
                results[name] = fallback()
                degraded.append(name)

        return ValidatorResults(
            captcha=results[self.captcha.name],
            ip_intel=results[self.ip_intel.name],
            email_domain=results[self.email_domain.name],
            degraded=tuple(degraded),
        )
