"""Signal extraction for anti-fraud.

Turns raw request data into normalized, immutable signal structs. Nothing in
this module performs I/O or raises on malformed input: missing or garbled
fields come back as explicit "unknown" values so the scorer can weight them.
"""

import ipaddress
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone

from signup_guard.schemas import (
    CaptchaOutcome,
    DeviceType,
    NetworkClassification,
    SignupRequest,
)
from signup_guard.security.email_validator import normalize_email

UNKNOWN = "unknown"

# =============================================================================
# Signal Types
# =============================================================================


@dataclass(frozen=True)
class IpIntelResult:
    """Raw facts returned by the IP intelligence lookup."""

    asn: int = 0
    asn_org: str = ""
    country: str = ""
    asn_type: str = ""  # isp, hosting, business, education, ...
    is_vpn: bool = False
    is_proxy: bool = False
    is_tor: bool = False
    is_hosting: bool = False


@dataclass(frozen=True)
class NetworkSignals:
    """Network signals for the requesting IP."""

    ip: str = ""
    asn: int = 0
    asn_org: str = ""
    country: str = ""
    classification: NetworkClassification = NetworkClassification.UNKNOWN


@dataclass(frozen=True)
class DeviceSignals:
    """Device signals from the user agent and the client-side fingerprint."""

    user_agent: str = ""
    browser_family: str = UNKNOWN
    browser_version: str = ""
    os_family: str = UNKNOWN
    os_version: str = ""
    device_type: DeviceType = DeviceType.UNKNOWN
    is_suspicious_user_agent: bool = False
    fingerprint_id: str | None = None
    fingerprint_confidence: float = 0.0
    screen_resolution: str = ""
    language: str = ""
    timezone: str = ""


@dataclass(frozen=True)
class EmailSignals:
    """Email signals. MX and disposable status are filled in by validators."""

    email: str = ""
    local_part: str = ""
    domain: str = ""
    is_disposable: bool = False
    has_valid_mx: bool = True


@dataclass(frozen=True)
class CaptchaSignals:
    """CAPTCHA verification outcome."""

    token: str = ""
    outcome: CaptchaOutcome = CaptchaOutcome.UNKNOWN
    provider_score: float | None = None
    error_codes: tuple[str, ...] = ()


@dataclass(frozen=True)
class SignalRecord:
    """All signals captured for one signup attempt."""

    network: NetworkSignals
    device: DeviceSignals
    email: EmailSignals
    captcha: CaptchaSignals
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# =============================================================================
# Request Context
# =============================================================================


@dataclass(frozen=True)
class RequestContext:
    """The only view of the raw HTTP request the engine ever sees."""

    ip: str
    country: str = ""
    user_agent: str = ""

    @classmethod
    def from_headers(
        cls, headers: Mapping[str, str], client_host: str | None = None
    ) -> "RequestContext":
        """Build a context from request headers.

        The client IP is taken from the first source holding a valid address:
        CF-Connecting-IP, X-Real-IP, the first X-Forwarded-For hop, then the
        socket peer address. Unparsable values are skipped.
        """
        lowered = {k.lower(): v for k, v in headers.items()}

        forwarded = lowered.get("x-forwarded-for", "")
        candidates = [
            lowered.get("cf-connecting-ip", ""),
            lowered.get("x-real-ip", ""),
            forwarded.split(",")[0] if forwarded else "",
            client_host or "",
        ]
        ip = next((ip for ip in map(normalize_ip, candidates) if ip), "")

        country = lowered.get("cf-ipcountry", "").upper()
        if country in ("XX", "T1"):  # Cloudflare: unknown / Tor
            country = ""

        return cls(ip=ip, country=country, user_agent=lowered.get("user-agent", ""))


# =============================================================================
# IP Helpers
# =============================================================================


def normalize_ip(ip: str) -> str:
    """Normalize an IP string: trim, strip IPv4 ports and IPv6 brackets.

    Returns "" for anything that is not a valid address.
    """
    candidate = (ip or "").strip()
    if candidate.startswith("[") and "]" in candidate:
        candidate = candidate[1 : candidate.index("]")]
    elif candidate.count(":") == 1:
        candidate = candidate.split(":", 1)[0]
    try:
        return str(ipaddress.ip_address(candidate))
    except ValueError:
        return ""


def get_ip_block(ip: str) -> str:
    """Group an IPv4 address into its /24 block; other values pass through."""
    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.{parts[2]}.0/24"
    return ip


# Known datacenter / cloud provider ASNs
DATACENTER_ASNS = frozenset(
    [
        # AWS
        14618,
        16509,
        7224,
        # Google Cloud
        15169,
        19527,
        36040,
        # Microsoft Azure
        8075,
        8068,
        8069,
        # DigitalOcean
        14061,
        # Linode
        63949,
        # Vultr
        20473,
        # OVH
        16276,
        # Hetzner
        24940,
        # Cloudflare
        13335,
        # Oracle Cloud
        31898,
    ]
)


def is_datacenter_asn(asn: int) -> bool:
    """Check whether the ASN belongs to a known datacenter."""
    return asn in DATACENTER_ASNS


def classify_network(intel: IpIntelResult | None) -> NetworkClassification:
    """Map IP intelligence facts to a network classification.

    Anonymizers win over hosting, hosting over residential. Without any
    lookup result the classification is UNKNOWN.
    """
    if intel is None:
        return NetworkClassification.UNKNOWN
    if intel.is_proxy or intel.is_tor:
        return NetworkClassification.PROXY
    if intel.is_vpn:
        return NetworkClassification.VPN
    if is_datacenter_asn(intel.asn):
        return NetworkClassification.DATACENTER
    if intel.is_hosting or intel.asn_type == "hosting":
        return NetworkClassification.HOSTING
    if intel.asn_type in ("isp", "residential"):
        return NetworkClassification.RESIDENTIAL
    return NetworkClassification.UNKNOWN


def extract_network_signals(
    ip: str, intel: IpIntelResult | None = None, country: str = ""
) -> NetworkSignals:
    """Build network signals from the client IP and an optional lookup."""
    normalized = normalize_ip(ip)
    if not normalized:
        return NetworkSignals(ip="", country=country)

    if intel is None:
        return NetworkSignals(ip=normalized, country=country)

    return NetworkSignals(
        ip=normalized,
        asn=intel.asn,
        asn_org=intel.asn_org,
        country=intel.country or country,
        classification=classify_network(intel),
    )


# =============================================================================
# User Agent
# =============================================================================

# Bot/automation indicators
SUSPICIOUS_USER_AGENTS = (
    "headlesschrome",
    "phantomjs",
    "selenium",
    "webdriver",
    "puppeteer",
    "playwright",
    "cypress",
    "bot",
    "crawler",
    "spider",
    "scraper",
    "curl",
    "wget",
    "python-requests",
    "python-urllib",
    "httpx",
    "aiohttp",
    "axios",
    "node-fetch",
    "go-http-client",
    "java/",
    "libwww",
)


def is_suspicious_user_agent(user_agent: str) -> bool:
    """Check if user agent looks like automation.

    A missing user agent is not evidence of automation; it parses to an
    unknown device instead.
    """
    ua = (user_agent or "").strip().lower()
    if not ua:
        return False
    return any(pattern in ua for pattern in SUSPICIOUS_USER_AGENTS)


def _version(pattern: str, user_agent: str) -> str:
    match = re.search(pattern, user_agent)
    return match.group(1).replace("_", ".") if match else ""


def parse_user_agent(user_agent: str) -> DeviceSignals:
    """Parse browser, OS and device type out of a user agent string.

    Unknown patterns yield "unknown" rather than an error.
    """
    ua = user_agent or ""

    # Browser (order matters: Edge and Opera also claim Chrome)
    browser_family, browser_version = UNKNOWN, ""
    if "Edg/" in ua:
        browser_family, browser_version = "edge", _version(r"Edg/(\d+\.\d+)", ua)
    elif "OPR/" in ua:
        browser_family, browser_version = "opera", _version(r"OPR/(\d+\.\d+)", ua)
    elif "Firefox/" in ua:
        browser_family, browser_version = "firefox", _version(r"Firefox/(\d+\.\d+)", ua)
    elif "Chrome/" in ua or "CriOS/" in ua:
        browser_family = "chrome"
        browser_version = _version(r"(?:Chrome|CriOS)/(\d+\.\d+)", ua)
    elif "Safari/" in ua and "Version/" in ua:
        browser_family, browser_version = "safari", _version(r"Version/(\d+\.\d+)", ua)

    # OS (iOS and Android before macOS and Linux, which they also mention)
    os_family, os_version = UNKNOWN, ""
    if "iPhone" in ua or "iPad" in ua:
        os_family, os_version = "ios", _version(r"OS (\d+[_.]\d+)", ua)
    elif "Android" in ua:
        os_family, os_version = "android", _version(r"Android (\d+(?:\.\d+)?)", ua)
    elif "Windows NT" in ua:
        os_family = "windows"
        os_version = {"10.0": "10", "6.3": "8.1", "6.2": "8", "6.1": "7"}.get(
            _version(r"Windows NT (\d+\.\d+)", ua), ""
        )
    elif "Mac OS X" in ua:
        os_family, os_version = "macos", _version(r"Mac OS X (\d+[_.]\d+)", ua)
    elif "CrOS" in ua:
        os_family = "chromeos"
    elif "Linux" in ua:
        os_family = "linux"

    # Device type
    if "iPad" in ua or "Tablet" in ua:
        device_type = DeviceType.TABLET
    elif "Mobile" in ua or "iPhone" in ua or "Android" in ua:
        device_type = DeviceType.MOBILE
    elif os_family in ("windows", "macos", "linux", "chromeos"):
        device_type = DeviceType.DESKTOP
    else:
        device_type = DeviceType.UNKNOWN

    return DeviceSignals(
        user_agent=ua,
        browser_family=browser_family,
        browser_version=browser_version,
        os_family=os_family,
        os_version=os_version,
        device_type=device_type,
        is_suspicious_user_agent=is_suspicious_user_agent(ua),
    )


# =============================================================================
# Fingerprint
# =============================================================================

MIN_FINGERPRINT_LENGTH = 10
GENERIC_FINGERPRINT = re.compile(r"^(0+|f+)$", re.IGNORECASE)


def normalize_fingerprint(fingerprint_id: str | None) -> str | None:
    """Return a usable fingerprint id, or None for missing/generic ones."""
    fp = (fingerprint_id or "").strip()
    if len(fp) < MIN_FINGERPRINT_LENGTH or GENERIC_FINGERPRINT.match(fp):
        return None
    return fp


def clamp_confidence(value: float | None) -> float:
    """Clamp a fingerprint confidence into [0, 1]; garbage becomes 0."""
    try:
        confidence = float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0
    if confidence != confidence:  # NaN
        return 0.0
    return min(1.0, max(0.0, confidence))


def extract_device_signals(request: SignupRequest) -> DeviceSignals:
    """Combine the parsed user agent with client-supplied device data."""
    parsed = parse_user_agent(request.user_agent)
    fingerprint_id = normalize_fingerprint(request.fingerprint_id)

    return DeviceSignals(
        user_agent=parsed.user_agent,
        browser_family=parsed.browser_family,
        browser_version=parsed.browser_version,
        os_family=parsed.os_family,
        os_version=parsed.os_version,
        device_type=parsed.device_type,
        is_suspicious_user_agent=parsed.is_suspicious_user_agent,
        fingerprint_id=fingerprint_id,
        fingerprint_confidence=(
            clamp_confidence(request.fingerprint_confidence) if fingerprint_id else 0.0
        ),
        screen_resolution=(request.screen_resolution or "").strip()[:32],
        language=(request.language or "").strip()[:35],
        timezone=(request.timezone or "").strip()[:64],
    )


# =============================================================================
# Email
# =============================================================================


def extract_email_signals(email: str) -> EmailSignals:
    """Lower-case and split the address. No lookups happen here."""
    normalized = normalize_email(email)
    if normalized.count("@") != 1:
        return EmailSignals(email=normalized)

    local_part, domain = normalized.split("@")
    return EmailSignals(email=normalized, local_part=local_part, domain=domain)
