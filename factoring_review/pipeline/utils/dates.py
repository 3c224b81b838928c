"""
Utilities for parsing document dates.

Documents mix ISO dates, slash dates, ``YYYY年M月D日`` and Japanese era dates
(``令和5年4月1日``, ``R5.4.1``, ``平成元年``). Everything is normalized with NFKC
first so full-width digits parse the same as ASCII ones.
"""

import re
import unicodedata
from datetime import date, datetime
from typing import Any, Optional

ERA_BASE_YEARS = {
    "明治": 1868,
    "大正": 1912,
    "昭和": 1926,
    "平成": 1989,
    "令和": 2019,
    "M": 1868,
    "T": 1912,
    "S": 1926,
    "H": 1989,
    "R": 2019,
}

_ERA_RE = re.compile(
    r"(明治|大正|昭和|平成|令和|(?<![A-Za-z])[MTSHR])\s*(元|\d{1,2})\s*[年./\-]\s*"
    r"(\d{1,2})\s*[月./\-]\s*(\d{1,2})\s*日?",
    re.IGNORECASE,
)
_YMD_RE = re.compile(r"(\d{4})\s*[年./\-]\s*(\d{1,2})\s*[月./\-]\s*(\d{1,2})\s*日?")
_COMPACT_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_MONTH_DAY_RE = re.compile(r"^(\d{1,2})\s*[月./\-]\s*(\d{1,2})\s*日?$")


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_doc_date(value: Any, default_year: Optional[int] = None) -> Optional[date]:
    """
    Parse a document date in any of the supported formats.

    Args:
      value: Raw value; ``date``/``datetime`` pass through, strings are parsed.
      default_year: Year used for month/day-only values (bank statement rows).

    Returns:
      A ``date`` if parsing succeeds, otherwise None.

    Example:
      >>> parse_doc_date("令和5年4月1日")
      datetime.date(2023, 4, 1)
      >>> parse_doc_date("H30.12.31")
      datetime.date(2018, 12, 31)
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    text = unicodedata.normalize("NFKC", value).strip()
    if not text:
        return None

    era = _ERA_RE.search(text)
    if era:
        base = ERA_BASE_YEARS.get(era.group(1)) or ERA_BASE_YEARS.get(era.group(1).upper())
        era_year = 1 if era.group(2) == "元" else int(era.group(2))
        return _safe_date(base + era_year - 1, int(era.group(3)), int(era.group(4)))

    ymd = _YMD_RE.search(text)
    if ymd:
        return _safe_date(int(ymd.group(1)), int(ymd.group(2)), int(ymd.group(3)))

    compact = _COMPACT_RE.match(text)
    if compact:
        return _safe_date(int(compact.group(1)), int(compact.group(2)), int(compact.group(3)))

    if default_year is not None:
        month_day = _MONTH_DAY_RE.match(text)
        if month_day:
            return _safe_date(default_year, int(month_day.group(1)), int(month_day.group(2)))

    return None


def month_key(value: date) -> str:
    """Return the ``YYYY-MM`` bucket of a date."""
    return f"{value.year:04d}-{value.month:02d}"


def shift_month(value: date, months: int) -> date:
    """Return the first day of the month ``months`` away from ``value``."""
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)
