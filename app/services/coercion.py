"""Coercion of loosely-typed AI output into column values.

Every function here is total: bad input yields ``None``, never an exception.
Gemini returns numbers as numbers, as French-formatted strings ("1 234,50"),
or as empty strings; dates as ISO, French (DD/MM/YYYY) or free text (parsed with dateutil).
"""
from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any

from dateutil import parser as date_parser

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_FR_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")
_YEAR_FIRST_RE = re.compile(r"^\d{4}\D")
_ENERGY_LETTER_RE = re.compile(r"^[A-G]$")
_ENERGY_TOKEN_RE = re.compile(r"\b([A-Ga-g])\b", re.ASCII)
_ENERGY_ANY_RE = re.compile(r"[A-Ga-g]")


def to_number(value: Any) -> float | None:
    """Finite float or None. Accepts spaces as thousands separators and a decimal comma."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None
    cleaned = re.sub(r"\s", "", value).replace(",", ".", 1)
    if not cleaned:
        return None
    try:
        n = float(cleaned)
    except ValueError:
        return None
    return n if math.isfinite(n) else None


def to_int(value: Any) -> int | None:
    """Rounded integer of :func:`to_number` (tantiemes, lot counts)."""
    n = to_number(value)
    if n is None:
        return None
    return int(math.floor(n + 0.5))


def round2(value: float) -> float:
    """Round to cents, half away from zero on .5 like the validation UI does."""
    return math.floor(value * 100 + 0.5) / 100


def to_iso_date(value: Any) -> str | None:
    """``YYYY-MM-DD`` or None."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    if _ISO_DATE_RE.match(s):
        return s
    m = _FR_DATE_RE.match(s)
    if m:
        return f"{m.group(3)}-{m.group(2)}-{m.group(1)}"
    # Day first for French numeric dates (05-03-2024), but not after a leading year
    dayfirst = not _YEAR_FIRST_RE.match(s)
    try:
        parsed = date_parser.parse(s, dayfirst=dayfirst, default=datetime(date.today().year, 1, 1))
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def to_energy_class_letter(value: Any) -> str | None:
    """Single DPE/GES class letter A-G, or None.

    Falls back to the first A-G character anywhere in the string, which can
    pick a letter out of unrelated words ("Bon" -> "B").
    """
    if not value or not isinstance(value, str):
        return None
    upper = value.strip().upper()
    if _ENERGY_LETTER_RE.match(upper):
        return upper
    m = _ENERGY_TOKEN_RE.search(value)
    if m:
        return m.group(1).upper()
    m = _ENERGY_ANY_RE.search(value)
    return m.group(0).upper() if m else None


def to_text(value: Any) -> str | None:
    """Stripped string or None for empty / non-scalar values."""
    if value is None or isinstance(value, (dict, list)):
        return None
    s = str(value).strip()
    return s or None
