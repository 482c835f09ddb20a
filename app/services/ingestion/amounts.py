"""Pure helpers for turning unstructured funding amounts into numbers and display strings."""

from __future__ import annotations

import re

AMOUNT_PATTERN = re.compile(r"\$?(\d+(?:\.\d+)?)\s*(million|billion|m|b)\b", re.IGNORECASE)
_DISPLAY_PATTERN = re.compile(r"\$?\s*(\d+(?:\.\d+)?)\s*([kmb]|thousand|million|billion)?\b", re.I)

_MULTIPLIERS = {
    "k": 1_000.0,
    "thousand": 1_000.0,
    "m": 1_000_000.0,
    "million": 1_000_000.0,
    "b": 1_000_000_000.0,
    "billion": 1_000_000_000.0,
}

UNDISCLOSED = "Undisclosed"


def find_amount(text: str) -> float | None:
    """Return the first million/billion amount in ``text`` as whole US dollars."""
    match = AMOUNT_PATTERN.search(text or "")
    if not match:
        return None
    value = float(match.group(1))
    return value * _MULTIPLIERS[match.group(2).lower()]


def format_amount(value: float | None) -> str:
    """``$X.XM`` below one billion, ``$X.XB`` otherwise, ``Undisclosed`` when unknown."""
    if value is None or value <= 0:
        return UNDISCLOSED
    if value >= 1_000_000_000:
        return f"${value / 1_000_000_000:.1f}B"
    return f"${value / 1_000_000:.1f}M"


def parse_amount(display: str | None) -> float | None:
    """Parse a display string such as ``$10.0M`` or ``2.5 billion`` back to dollars."""
    if not display:
        return None
    cleaned = display.replace(",", "").strip()
    if not cleaned or cleaned.lower() == UNDISCLOSED.lower():
        return None
    match = _DISPLAY_PATTERN.search(cleaned)
    if not match:
        return None
    value = float(match.group(1))
    unit = (match.group(2) or "").lower()
    return value * _MULTIPLIERS.get(unit, 1.0)
