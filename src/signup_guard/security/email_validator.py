"""Email normalisation and domain checks for anti-fraud.

Detects disposable email domains and categorizes email types. Everything
here is a local lookup; MX checks live in ``mx_lookup``.
"""

import re

# Common disposable email domains (top 100+)
# In production, refresh from a maintained blocklist
DISPOSABLE_DOMAINS = frozenset(
    [
        # Popular disposable email services
        "10minutemail.com",
        "10minutemail.net",
        "10minutemail.org",
        "guerrillamail.com",
        "guerrillamail.org",
        "guerrillamail.net",
        "guerrillamail.biz",
        "guerrillamail.de",
        "guerrillamailblock.com",
        "mailinator.com",
        "mailinator.net",
        "mailinator2.com",
        "maildrop.cc",
        "tempmail.com",
        "tempmail.net",
        "temp-mail.org",
        "temp-mail.io",
        "throwaway.email",
        "throwawaymail.com",
        "getnada.com",
        "getairmail.com",
        "fakeinbox.com",
        "dispostable.com",
        "mailnesia.com",
        "mintemail.com",
        "mohmal.com",
        "tempinbox.com",
        "yopmail.com",
        "yopmail.fr",
        "spamgourmet.com",
        "trashmail.com",
        "trashmail.net",
        "sharklasers.com",
        "grr.la",
        "spam4.me",
        "byom.de",
        "mailforspam.com",
        "emailondeck.com",
        "fakemail.fr",
        "jetable.org",
        "nada.email",
        "tempail.com",
        "tempr.email",
        "discard.email",
        "discardmail.com",
        "mailcatch.com",
        "mailsac.com",
        "mytrashmail.com",
        "wegwerfmail.de",
        "wegwerfmail.net",
        "crazymailing.com",
        "fakemailgenerator.com",
        "gmailnator.com",
        "mailpoof.com",
        "33mail.com",
        "anonymbox.com",
        "burnermail.io",
        "dropmail.me",
        "emailfake.com",
        "minuteinbox.com",
        "mytemp.email",
        "tempmailo.com",
        "harakirimail.com",
        "incognitomail.com",
    ]
)

# Common free email providers (not disposable, only informative)
FREE_EMAIL_DOMAINS = frozenset(
    [
        "gmail.com",
        "googlemail.com",
        "yahoo.com",
        "yahoo.com.br",
        "yahoo.co.uk",
        "hotmail.com",
        "outlook.com",
        "live.com",
        "msn.com",
        "icloud.com",
        "me.com",
        "aol.com",
        "protonmail.com",
        "proton.me",
        "mail.com",
        "zoho.com",
        "yandex.com",
        "gmx.com",
        "gmx.net",
    ]
)

EMAIL_REGEX = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: str) -> str:
    """Trim and lower-case an email address."""
    return (email or "").strip().lower()


def get_domain(email: str) -> str:
    """Extract domain from email address ("" when there is none)."""
    normalized = normalize_email(email)
    if "@" not in normalized:
        return ""
    return normalized.rsplit("@", 1)[1]


def is_valid_email_format(email: str) -> bool:
    """Check the address has a local part, an @ and a dotted domain."""
    return bool(EMAIL_REGEX.match(normalize_email(email)))


def is_disposable_domain(domain: str) -> bool:
    """Check if a domain (or its registrable parent) is disposable.

    ``mx.mailinator.com`` is matched through its parent ``mailinator.com``.
    """
    domain = (domain or "").strip().lower().rstrip(".")
    if not domain:
        return False
    if domain in DISPOSABLE_DOMAINS:
        return True
    parts = domain.split(".")
    return any(
        ".".join(parts[i:]) in DISPOSABLE_DOMAINS for i in range(1, len(parts) - 1)
    )


def is_disposable_email(email: str) -> bool:
    """Check if email uses a disposable domain.

    Args:
        email: Email address to check.

    Returns:
        True if the domain is known to be disposable.
    """
    return is_disposable_domain(get_domain(email))


def is_free_email(email: str) -> bool:
    """Check if email uses a free email provider."""
    return get_domain(email) in FREE_EMAIL_DOMAINS
