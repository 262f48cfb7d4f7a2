"""
Cell and Header Normalization Layer.

Transforms raw header text and raw cell values into uniform
representations so that classifiers and the data normalizer operate on
clean, comparable data.

Header transformations (for classification):
1. Strip leading / trailing whitespace
2. Lowercase conversion
3. Collapse runs of whitespace, underscores and hyphens into one space

Cell coercion:
* Genuinely empty cells become ``None`` (never zero)
* Currency symbols, percent signs, thousands separators and surrounding
  spaces are stripped; if what remains is a finite number it is returned
  as ``float``
* Parenthetical negatives ``(1,200)`` become ``-1200.0``
* Everything else is kept as trimmed text
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from typing import Any, Optional, Tuple

from financial_inference.logging_setup import get_logger

logger = get_logger("cell_normalizer")


# Accepted textual date layouts, tried in order after ISO-8601.
# Month-first slashes win over day-first, matching spreadsheet exports
# from US-locale tools.
_DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m/%d/%y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d %Y",
    "%b %d, %Y",
    "%B %d %Y",
    "%B %d, %Y",
    "%d-%b-%Y",
    "%Y-%m",
    "%Y/%m",
    "%b %Y",
    "%B %Y",
)

_PERIOD_PATTERNS: list[re.Pattern] = [
    re.compile(r"^\d{4}-?q[1-4]$", re.IGNORECASE),                 # 2024-Q1
    re.compile(r"^q[1-4][\s\-]?\d{2,4}$", re.IGNORECASE),          # Q1 2024, Q1-24
    re.compile(r"^fy\s?\d{2,4}$", re.IGNORECASE),                  # FY2024
    re.compile(r"^\d{4}-\d{2}$"),                                  # 2024-03
    re.compile(r"^\d{4}-w\d{2}$", re.IGNORECASE),                  # 2024-W09
    re.compile(
        r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)[a-z]*[\s\-]\d{2,4}$",
        re.IGNORECASE,
    ),                                                             # Mar 2024
    re.compile(r"^\d{4}$"),                                        # 2024
]


class CellNormalizer:
    """Stateless header / cell normaliser.  All methods are pure functions."""

    # Currency symbols to strip from values
    _CURRENCY_RE = re.compile(r"[$€£¥₹]")

    # Parenthetical negative: ``(1234)`` → ``-1234``
    _PAREN_NEG_RE = re.compile(r"^\((.+)\)$")

    # Header separators collapsed into a single space
    _SEPARATOR_RE = re.compile(r"[\s_\-]+")

    # ------------------------------------------------------------------ #
    # Headers
    # ------------------------------------------------------------------ #

    def normalize_header(self, raw: str) -> str:
        """Return the classification form of a header: ``"Bill_Date"`` → ``"bill date"``."""
        text = str(raw).strip().lower()
        text = text.replace("–", "-").replace("—", "-")
        text = self._SEPARATOR_RE.sub(" ", text).strip()
        logger.debug("normalize_header: %r → %r", raw, text)
        return text

    @staticmethod
    def header_key(raw: Any) -> str:
        """Return the row key for a header: lower-cased and trimmed."""
        return "" if raw is None else str(raw).strip().lower()

    # ------------------------------------------------------------------ #
    # Values
    # ------------------------------------------------------------------ #

    def normalize_value(self, raw: Any) -> Tuple[Optional[float], list[str]]:
        """Attempt to parse a numeric financial value.

        Handles:
        * String numbers with commas: ``"1,23,456"``
        * Currency prefixes: ``"$12000"``
        * Parenthetical negatives: ``"(5000)"``
        * Percent suffixes: ``"12.5%"``
        * Already-numeric inputs (int / float)

        Returns
        -------
        tuple[float | None, list[str]]
            (parsed_value, list_of_warnings).  ``None`` if parsing fails.
        """
        warnings: list[str] = []

        if raw is None:
            warnings.append("Value is None")
            return None, warnings

        if isinstance(raw, bool):
            warnings.append("Boolean is not a numeric value")
            return None, warnings

        if isinstance(raw, (int, float)):
            if not math.isfinite(raw):
                warnings.append(f"Non-finite value: {raw!r}")
                return None, warnings
            return float(raw), warnings

        if not isinstance(raw, str):
            warnings.append(f"Unexpected value type: {type(raw).__name__}")
            return None, warnings

        text = raw.strip()
        if not text:
            warnings.append("Value is empty string")
            return None, warnings

        text = self._CURRENCY_RE.sub("", text).strip()

        m = self._PAREN_NEG_RE.match(text)
        if m:
            text = "-" + m.group(1).strip()

        text = text.replace(",", "").replace(" ", "")

        if text.endswith("%"):
            text = text[:-1]
            warnings.append("Percent symbol stripped; raw value treated as number")

        try:
            value = float(text)
        except ValueError:
            warnings.append(f"Cannot parse numeric value from: {raw!r}")
            return None, warnings

        if not math.isfinite(value):
            warnings.append(f"Non-finite value: {raw!r}")
            return None, warnings

        return value, warnings

    def to_number(self, raw: Any) -> Optional[float]:
        """Numeric value of *raw*, or ``None``."""
        value, _ = self.normalize_value(raw)
        return value

    def coerce_cell(self, raw: Any) -> Any:
        """Convert a raw cell into ``None``, ``float``, ``datetime`` or text."""
        if raw is None:
            return None
        if isinstance(raw, (datetime, date)):
            return raw
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)):
            return float(raw) if math.isfinite(raw) else str(raw)

        text = str(raw).strip()
        if not text:
            return None

        value, _ = self.normalize_value(text)
        return value if value is not None else text

    # ------------------------------------------------------------------ #
    # Dates and periods
    # ------------------------------------------------------------------ #

    @staticmethod
    def parse_date(raw: Any) -> Optional[date]:
        """Parse a calendar date from a cell; ``None`` when it is not one."""
        if raw is None or isinstance(raw, bool):
            return None
        if isinstance(raw, datetime):
            return raw.date()
        if isinstance(raw, date):
            return raw
        if not isinstance(raw, str):
            return None

        text = raw.strip()
        if not text or not any(ch.isdigit() for ch in text):
            return None

        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass

        for fmt in _DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt).date()
            except ValueError:
                continue
        return None

    @staticmethod
    def is_period_label(raw: Any) -> bool:
        """True for reporting-period labels such as ``2024-Q1`` or ``Mar 2024``."""
        if isinstance(raw, float) and raw.is_integer():
            raw = str(int(raw))
        if not isinstance(raw, str):
            return False
        text = raw.strip()
        return any(p.match(text) for p in _PERIOD_PATTERNS)
