"""
Practitioner and invite codes, plus client contact normalisation.

Codes are short and human-enterable, drawn from an alphabet without the
easily confused characters 0/O and 1/I.
"""

import re
import secrets
from typing import Optional

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
DEFAULT_CODE_LENGTH = 6

_MIN_PHONE_LENGTH = 10
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def generate_code(length: int = DEFAULT_CODE_LENGTH) -> str:
    """Generate a random code from CODE_ALPHABET."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_invite_token() -> str:
    """URL-safe token identifying an invite."""
    return secrets.token_urlsafe(24)


def normalize_code(code: Optional[str]) -> str:
    """Trim and upper-case a human-entered code."""
    return (code or "").strip().upper()


def normalize_contact(contact: Optional[str]) -> Optional[str]:
    """
    Normalise a phone number or email address.

    Emails are lower-cased. Phone numbers lose whitespace, dashes and
    parentheses; a leading + is kept.

    Returns:
        The normalised contact, or None if it is neither a plausible email
        nor a phone number of at least ten characters.
    """
    value = (contact or "").strip()
    if not value:
        return None

    if "@" in value:
        value = value.lower()
        return value if _EMAIL_PATTERN.match(value) else None

    value = re.sub(r"[\s\-().]", "", value)
    digits = value[1:] if value.startswith("+") else value
    if not digits.isdigit() or len(value) < _MIN_PHONE_LENGTH:
        return None
    return value
