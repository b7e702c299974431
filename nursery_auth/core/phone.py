"""
Phone number normalization and validation.

Guardians and staff are matched by phone, so every lookup, challenge and
preference row uses the normalized form produced here.
"""

import re

# Accepted input shapes (before normalization):
#   09012345678, 090-1234-5678, +819012345678
_PHONE_PATTERNS = (
    re.compile(r"^0\d{10}$"),
    re.compile(r"^0\d{1,4}-\d{1,4}-\d{4}$"),
    re.compile(r"^\+81\d{10}$"),
)

_STRIP_RE = re.compile(r"[\s\-]")

CODE_RE = re.compile(r"^\d{6}$")


def normalize_phone(raw: str | None) -> str:
    """
    Strip hyphens and whitespace from a phone number.

    Args:
        raw: Phone number as entered by the user

    Returns:
        Normalized phone string ("" for empty input)
    """
    if not raw:
        return ""
    return _STRIP_RE.sub("", raw)


def is_valid_phone(raw: str) -> bool:
    """Check a user-entered phone number against the accepted formats."""
    candidate = raw.strip()
    return any(pattern.match(candidate) for pattern in _PHONE_PATTERNS)
