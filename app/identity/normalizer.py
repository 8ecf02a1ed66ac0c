"""
Canonical forms for matching phone numbers and email addresses.

Both normalizers are total: any input, including None or non-strings,
yields a string and never raises. An empty result never matches anything.
"""

from __future__ import annotations

import re
from typing import Any

_NON_DIGITS = re.compile(r"\D+")
_NATIONAL_DIGITS = 10


def _as_text(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        # Spreadsheet cells sometimes hold phone numbers as numbers.
        if isinstance(raw, float) and raw.is_integer():
            return str(int(raw))
        return str(raw)
    return ""


def normalize_phone(raw: Any) -> str:
    """
    Reduce a phone number to its trailing 10 digits.

    Formatting characters and a leading country code are dropped, so
    "(555) 123-4567", "555-123-4567" and "+1 555 123 4567" share one key.
    Inputs with fewer than 10 digits keep all of their digits.
    """

    digits = _NON_DIGITS.sub("", _as_text(raw))
    if len(digits) >= _NATIONAL_DIGITS:
        return digits[-_NATIONAL_DIGITS:]
    return digits


def normalize_email(raw: Any) -> str:
    return _as_text(raw).strip().lower()


def format_phone(raw: Any) -> str:
    """
    Display form used by the phone_format import transform.

    10 digits become "(XXX) XXX-XXXX", 11 digits "+X (XXX) XXX-XXXX";
    anything else is returned unchanged.
    """

    text = _as_text(raw)
    digits = _NON_DIGITS.sub("", text)
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11:
        return f"+{digits[0]} ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    return text
