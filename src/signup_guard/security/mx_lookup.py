"""Email domain checks: disposable-domain list and MX records.

MX records are resolved through a DNS-over-HTTPS JSON endpoint so the lookup
shares the HTTP client and timeout handling of the other validators.
"""

import logging
from dataclasses import dataclass

import httpx

from signup_guard.errors import ValidatorUnavailable
from signup_guard.security.email_validator import is_disposable_domain

logger = logging.getLogger("signup-guard-mx")

DOH_URL = "https://cloudflare-dns.com/dns-query"

DNS_TYPE_MX = 15
DNS_STATUS_NOERROR = 0
DNS_STATUS_NXDOMAIN = 3


@dataclass(frozen=True)
class EmailDomainResult:
    """Outcome of the email domain checks."""

    domain: str
    is_disposable: bool
    has_valid_mx: bool


class MxValidator:
    """Checks an email domain for disposability and valid MX records."""

    name = "email_domain"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 2.0,
        doh_url: str = DOH_URL,
    ):
        self.timeout = timeout
        self.doh_url = doh_url
        self._client = client

    def fallback(self, domain: str) -> EmailDomainResult:
        """Optimistic default used when DNS cannot be reached.

        The disposable check is a local lookup, so it still applies.
        """
        return EmailDomainResult(
            domain=domain,
            is_disposable=is_disposable_domain(domain),
            has_valid_mx=True,
        )

    async def validate(self, domain: str) -> EmailDomainResult:
        """Check a domain.

        Raises:
            ValidatorUnavailable: When the DNS resolver cannot be reached or
                answers with a server failure.
        """
        domain = (domain or "").strip().lower().rstrip(".")
        is_disposable = is_disposable_domain(domain)

        if not domain:
            return EmailDomainResult(domain="", is_disposable=False, has_valid_mx=False)

        has_valid_mx = await self._has_mx_records(domain)
        return EmailDomainResult(
            domain=domain, is_disposable=is_disposable, has_valid_mx=has_valid_mx
        )

    async def _has_mx_records(self, domain: str) -> bool:
        try:
            response = await self._get(domain)
            if response.status_code != 200:
                raise ValidatorUnavailable(
                    self.name, f"resolver returned {response.status_code}"
                )
            data = response.json()
        except httpx.TimeoutException as e:
            raise ValidatorUnavailable(self.name, "timeout") from e
        except httpx.HTTPError as e:
            raise ValidatorUnavailable(self.name, f"transport error: {e}") from e
        except ValueError as e:
            raise ValidatorUnavailable(self.name, "invalid JSON response") from e

        if not isinstance(data, dict):
            raise ValidatorUnavailable(self.name, "unexpected resolver payload")

        status = data.get("Status")
        if status == DNS_STATUS_NXDOMAIN:
            return False
        if status != DNS_STATUS_NOERROR:
            # SERVFAIL, REFUSED, ...: resolver trouble, not a verdict
            raise ValidatorUnavailable(self.name, f"DNS status {status}")

        answers = data.get("Answer") or []
        return any(answer.get("type") == DNS_TYPE_MX for answer in answers)

    async def _get(self, domain: str) -> httpx.Response:
        params = {"name": domain, "type": "MX"}
        headers = {"accept": "application/dns-json"}
        if self._client is not None:
            return await self._client.get(
                self.doh_url, params=params, headers=headers, timeout=self.timeout
            )
        async with httpx.AsyncClient() as client:
            return await client.get(
                self.doh_url, params=params, headers=headers, timeout=self.timeout
            )
