"""Shared parsing and formatting helpers for the rule engine."""

import re
from datetime import date, datetime
from typing import Any, Optional


# ═══════════════════════════════════════════════════
# 1. AMOUNT PARSING
# ═══════════════════════════════════════════════════

def parse_amount(value: Any) -> Optional[float]:
    """Parse a monetary amount from various formats.

    Handles:
      - Numeric types (int, float)
      - Strings with Rs, ₹, INR prefixes
      - Lakh/crore text multipliers
      - Comma-separated numbers (Indian or western grouping)
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    for prefix in ("Rs.", "Rs", "₹", "INR"):
        s = s.replace(prefix, "")
    s = s.replace(",", "").strip()
    multiplier = 1
    s_lower = s.lower()
    if "crore" in s_lower or re.search(r'\d\s*cr\b', s_lower):
        s = re.sub(r'(?i)\s*(crores?|crs?)\.?', '', s)
        multiplier = 10_000_000
    elif "lakh" in s_lower or "lac" in s_lower:
        s = re.sub(r'(?i)\s*(lakhs?|lacs?)\.?', '', s)
        multiplier = 100_000
    s = s.replace(" ", "").strip()
    try:
        return float(s) * multiplier
    except ValueError:
        return None


def format_inr(amount: float) -> str:
    """Format an amount with Indian digit grouping: 480000 → ₹4,80,000."""
    negative = amount < 0
    whole = int(round(abs(amount)))
    digits = str(whole)
    if len(digits) > 3:
        head, tail = digits[:-3], digits[-3:]
        groups = []
        while len(head) > 2:
            groups.insert(0, head[-2:])
            head = head[:-2]
        if head:
            groups.insert(0, head)
        digits = ",".join(groups) + "," + tail
    return f"{'-' if negative else ''}₹{digits}"


# ═══════════════════════════════════════════════════
# 2. DATES
# ═══════════════════════════════════════════════════

_DATE_FORMATS = [
    "%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y", "%d.%m.%Y",
    "%Y/%m/%d", "%d %b %Y", "%d %B %Y",
    "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M:%SZ",
]


def parse_date(value: Any) -> Optional[date]:
    """Parse a date string trying multiple formats. Returns None when unparseable."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value or not isinstance(value, str):
        return None
    s = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(s, fmt).date()
        except ValueError:
            continue
    return None


def days_between(start: Optional[date], end: Optional[date]) -> Optional[int]:
    """Whole days from ``start`` to ``end``; None when either is missing."""
    if start is None or end is None:
        return None
    return (end - start).days


def quarter_label(d: date) -> str:
    return f"{d.year}-Q{(d.month - 1) // 3 + 1}"


# ═══════════════════════════════════════════════════
# 3. IDENTIFIER NORMALIZATION
# ═══════════════════════════════════════════════════

_WS_RE = re.compile(r"\s+")


def normalize_code(value: Any) -> str:
    """Uppercase, trim and collapse whitespace; '' for missing values.

    Survey / ward / block identifiers are compared exactly after this.
    """
    if value is None:
        return ""
    s = str(value).strip().upper()
    return _WS_RE.sub(" ", s)


def slugify_label(label: str, length: int = 4) -> str:
    """Letters-only prefix of a location label, e.g. 'Village Kondapuram…' → 'VILL'."""
    return re.sub(r"[^A-Za-z]", "", label)[:length].upper()
