"""IP intelligence lookups via ipinfo.io.

Provides ASN, organization and privacy (VPN/proxy/Tor/hosting) facts for an
IP address. Classification into a network type happens in ``signals``.
"""

import ipaddress
import logging

import httpx

from signup_guard.errors import ValidatorUnavailable
from signup_guard.security.signals import IpIntelResult

logger = logging.getLogger("signup-guard-ip-intel")

IPINFO_URL = "https://ipinfo.io"


def _parse_asn(value: object) -> int:
    """Parse "AS15169" / "AS15169 Google LLC" / 15169 into an int."""
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return 0
    head = value.strip().split(" ", 1)[0].upper().removeprefix("AS")
    return int(head) if head.isdigit() else 0


def parse_ipinfo_response(data: dict) -> IpIntelResult:
    """Convert an ipinfo.io JSON payload into an IpIntelResult.

    Works with both the basic payload (``org`` only) and the paid one with
    ``asn`` and ``privacy`` objects.
    """
    asn_info = data.get("asn") if isinstance(data.get("asn"), dict) else {}
    privacy = data.get("privacy") if isinstance(data.get("privacy"), dict) else {}
    org = data.get("org") or ""

    asn = _parse_asn(asn_info.get("asn")) or _parse_asn(org)
    asn_org = asn_info.get("name") or (org.split(" ", 1)[1] if " " in org else "")

    return IpIntelResult(
        asn=asn,
        asn_org=asn_org,
        country=(data.get("country") or "").upper(),
        asn_type=(asn_info.get("type") or "").lower(),
        is_vpn=bool(privacy.get("vpn")),
        is_proxy=bool(privacy.get("proxy")) or bool(privacy.get("relay")),
        is_tor=bool(privacy.get("tor")),
        is_hosting=bool(privacy.get("hosting")),
    )


class IpIntelValidator:
    """Looks up IP intelligence for a signup attempt."""

    name = "ip_intel"

    def __init__(
        self,
        api_token: str | None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 2.0,
        base_url: str = IPINFO_URL,
    ):
        self.api_token = api_token
        self.timeout = timeout
        self.base_url = base_url.rstrip("/")
        self._client = client

    def fallback(self, ip: str) -> IpIntelResult | None:
        """No intelligence: the network classification becomes unknown."""
        return None

    async def validate(self, ip: str) -> IpIntelResult | None:
        """Look up an IP address.

        Returns None without calling out when no token is configured or the
        address is private/reserved.

        Raises:
            ValidatorUnavailable: On transport errors, timeouts, or a non-2xx
                response.
        """
        if not self.api_token or not ip:
            return None

        try:
            if not ipaddress.ip_address(ip).is_global:
                return None
        except ValueError:
            return None

        url = f"{self.base_url}/{ip}"
        try:
            response = await self._get(url)
            if response.status_code != 200:
                raise ValidatorUnavailable(
                    self.name, f"ipinfo returned {response.status_code}"
                )
            data = response.json()
        except httpx.TimeoutException as e:
            raise ValidatorUnavailable(self.name, "timeout") from e
        except httpx.HTTPError as e:
            raise ValidatorUnavailable(self.name, f"transport error: {e}") from e
        except ValueError as e:
            raise ValidatorUnavailable(self.name, "invalid JSON response") from e

        if not isinstance(data, dict) or data.get("bogon"):
            return None

        return parse_ipinfo_response(data)

    async def _get(self, url: str) -> httpx.Response:
        params = {"token": self.api_token}
        if self._client is not None:
            return await self._client.get(url, params=params, timeout=self.timeout)
        async with httpx.AsyncClient() as client:
            return await client.get(url, params=params, timeout=self.timeout)
