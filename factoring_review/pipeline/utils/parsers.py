"""Deterministic text parsers.

These rules are used in two places: over free-text language-model output when
typed output is unavailable, and directly over OCR text when no language
model is configured.

Rules:
  1. A JSON object embedded in the text (fenced with ``` or bare) wins.
  2. Otherwise ``label: value`` lines are read (ASCII or full-width colon).
     A label matches a field when one of the field's aliases occurs in it.
     ``null``, ``none``, ``n/a``, ``-`` and ``不明`` are read as absent.
  3. Statement rows are lines shaped ``<date> <description> <amount> [balance]``.
     A leading ``-``, ``▲`` or ``△`` marks an outflow.
"""

import json
import math
import re
import unicodedata
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from factoring_review.pipeline.utils.dates import parse_doc_date

NULL_TOKENS = {"null", "none", "n/a", "na", "-", "不明", "なし", "該当なし", ""}
NEGATIVE_MARKS = ("-", "▲", "△", "−")

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_MAN_RE = re.compile(r"^(\d+(?:\.\d+)?)万(\d*)$")
_PLAIN_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")
_AMOUNT_IN_TEXT_RE = re.compile(
    r"(?:[¥]\s*-?\d[\d,]*|-?\d{1,3}(?:,\d{3})+(?:\s*円)?|-?\d+\s*円)"
)
_CJK_RE = re.compile(r"[\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff\uff66-\uff9f]")
_ASCII_ALNUM_RE = re.compile(r"[A-Za-z0-9]")


def normalize_text(value: str) -> str:
    """NFKC-normalize text (full-width digits and symbols to ASCII)."""
    return unicodedata.normalize("NFKC", value)


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse a money amount.

    Accepts numbers, ``¥``/``円`` markers, thousands separators, full-width
    digits, ``万`` units and a leading minus, ``▲`` or ``△``.

    Returns:
        Decimal amount, or None if the value is not an amount.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return Decimal(str(value))
    if not isinstance(value, str):
        return None

    text = normalize_text(value).strip()
    if text.casefold() in NULL_TOKENS:
        return None

    negative = False
    if text.startswith(NEGATIVE_MARKS):
        negative = True
        text = text[1:]
    elif text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    for token in ("¥", "円", "JPY", "jpy", ",", " ", "+"):
        text = text.replace(token, "")

    man = _MAN_RE.match(text)
    if man:
        amount = Decimal(man.group(1)) * 10000 + Decimal(man.group(2) or 0)
    elif _PLAIN_NUMBER_RE.match(text):
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None

    return -amount if negative else amount


def find_amounts(text: str) -> list[Decimal]:
    """Return every amount written with a currency marker or thousands separators."""
    amounts = []
    for match in _AMOUNT_IN_TEXT_RE.finditer(normalize_text(text)):
        amount = parse_amount(match.group(0))
        if amount is not None:
            amounts.append(amount)
    return amounts


def extract_json_object(text: str) -> Optional[dict]:
    """Return the first JSON object embedded in free text, if any."""
    if not text:
        return None

    candidates = [m.group(1) for m in _FENCED_JSON_RE.finditer(text)]
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        candidates.append(text[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def _clean_label(label: str) -> str:
    label = label.strip().strip("-*・•#").strip()
    return label.replace("**", "").strip().casefold()


def parse_labeled_lines(
    text: str,
    aliases: dict[str, tuple[str, ...]],
) -> dict[str, list[str]]:
    """Read ``label: value`` lines into a mapping of field name to values.

    Args:
        text: Free text (prose answer or OCR text)
        aliases: Field name to label aliases; the first matching field wins

    Returns:
        Field name to the non-absent values found, in text order.
    """
    found: dict[str, list[str]] = {}
    for raw_line in normalize_text(text or "").splitlines():
        if ":" not in raw_line:
            continue
        label, value = raw_line.split(":", 1)
        label = _clean_label(label)
        value = value.strip().strip("*").strip().strip("\"'").strip()
        if not label or value.casefold() in NULL_TOKENS:
            continue
        for field_name, field_aliases in aliases.items():
            if any(alias.casefold() in label for alias in field_aliases):
                found.setdefault(field_name, []).append(value)
                break
    return found


def parse_transaction_lines(
    text: str,
    default_year: Optional[int] = None,
) -> list[dict[str, Any]]:
    """Read statement rows shaped ``<date> <description> <amount> [balance]``.

    Returns:
        List of dicts with ``date``, ``description``, ``amount`` and ``balance``.
    """
    rows = []
    for raw_line in normalize_text(text or "").splitlines():
        tokens = raw_line.split()
        if len(tokens) < 3:
            continue

        row_date = parse_doc_date(tokens[0], default_year=default_year)
        if row_date is None:
            continue

        trailing: list[Decimal] = []
        rest = tokens[1:]
        while rest and len(trailing) < 2:
            amount = parse_amount(rest[-1])
            if amount is None:
                break
            trailing.insert(0, amount)
            rest = rest[:-1]

        if not trailing or not rest:
            continue

        rows.append(
            {
                "date": row_date,
                "description": " ".join(rest),
                "amount": trailing[0],
                "balance": trailing[1] if len(trailing) > 1 else None,
            }
        )
    return rows


def estimate_tokens(text: str) -> int:
    """Estimate model tokens: one per CJK character plus one per 4 ASCII alphanumerics."""
    if not text:
        return 0
    cjk = len(_CJK_RE.findall(text))
    ascii_alnum = len(_ASCII_ALNUM_RE.findall(text))
    return cjk + math.ceil(ascii_alnum / 4)
