"""Reconciliation matching strategies.

Each strategy attempts one kind of match between a reference value and the
extracted candidates and returns a StrategyHit on success or None. The
reconciler tries them in order and the first hit wins.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from itertools import combinations
from typing import Any, Optional

from factoring_review.pipeline.core.config import (
    AMOUNT_TOLERANCE,
    CONTAINMENT_MIN_LENGTH,
    SPLIT_SUM_MAX_PARTS,
)
from factoring_review.pipeline.models.dto import ExtractedField, MatchStrategy
from factoring_review.pipeline.processors.normalization import names_contain, normalize_name
from factoring_review.pipeline.utils.dates import parse_doc_date
from factoring_review.pipeline.utils.parsers import parse_amount


@dataclass
class StrategyHit:
    strategy: MatchStrategy
    found: Any
    matched: list[ExtractedField] = field(default_factory=list)
    ambiguous: bool = False


def _as_text(value: Any) -> str:
    return str(value).strip()


def try_exact_match(expected: Any, candidates: list[ExtractedField]) -> Optional[StrategyHit]:
    """Strategy 1: Identical value after trimming.

    Money compares as Decimal, so "1000" and "1000.00" are identical.

    Args:
        expected: Reference value
        candidates: Extracted candidates of one field

    Returns:
        StrategyHit for the first identical candidate, None otherwise
    """
    expected_amount = parse_amount(expected) if not isinstance(expected, str) else None
    for candidate in candidates:
        if expected_amount is not None and isinstance(candidate.value, Decimal):
            if candidate.value == expected_amount:
                return StrategyHit(MatchStrategy.EXACT, candidate.value, [candidate])
        elif _as_text(candidate.value) == _as_text(expected):
            return StrategyHit(MatchStrategy.EXACT, candidate.value, [candidate])
    return None


def try_normalized_match(expected: Any, candidates: list[ExtractedField]) -> Optional[StrategyHit]:
    """Strategy 2: Equality after normalization.

    Text is compared after NFKC width unification, whitespace removal,
    casefolding and legal-entity suffix stripping.

    Returns:
        StrategyHit for the first equal candidate, None otherwise
    """
    target = normalize_name(_as_text(expected))
    if not target:
        return None
    for candidate in candidates:
        if normalize_name(_as_text(candidate.value)) == target:
            return StrategyHit(MatchStrategy.NORMALIZED, candidate.value, [candidate])
    return None


def try_date_match(expected: Any, candidates: list[ExtractedField]) -> Optional[StrategyHit]:
    """Strategy 2 for dates: same calendar date in any supported format.

    Returns:
        StrategyHit for the first candidate on the same date, None otherwise
    """
    target = parse_doc_date(expected)
    if target is None:
        return None
    for candidate in candidates:
        if parse_doc_date(candidate.value) == target:
            return StrategyHit(MatchStrategy.NORMALIZED, candidate.value, [candidate])
    return None


def try_containment_match(
    expected: Any,
    candidates: list[ExtractedField],
    min_length: int = CONTAINMENT_MIN_LENGTH,
) -> Optional[StrategyHit]:
    """Strategy 3: One normalized value contains the other.

    Handles names printed with branch or department suffixes
    ("サンプル商事 東京支店" against "サンプル商事").

    Returns:
        StrategyHit for the first containing candidate, None otherwise
    """
    for candidate in candidates:
        if names_contain(_as_text(expected), _as_text(candidate.value), min_length):
            return StrategyHit(MatchStrategy.CONTAINMENT, candidate.value, [candidate])
    return None


def _combination_key(combo: tuple[tuple[int, ExtractedField], ...]) -> tuple:
    dates = [c.observed_on for _, c in combo if c.observed_on is not None]
    earliest = min(dates) if dates else date.max
    return (earliest, tuple(index for index, _ in combo))


def try_split_sum_match(
    expected: Any,
    candidates: list[ExtractedField],
    tolerance: Decimal = Decimal(AMOUNT_TOLERANCE),
    max_parts: int = SPLIT_SUM_MAX_PARTS,
) -> Optional[StrategyHit]:
    """Strategy 4: A set of amounts summing to the expected amount.

    Covers a payment split across several transfers, or a transfer that
    differs from the expected amount by a bank fee within ``tolerance``.
    Among qualifying sets the smallest wins; ties go to the set with the
    earliest date, then to the earliest candidates. A tie marks the hit
    ambiguous.

    Returns:
        StrategyHit with the matched amounts, None if no set qualifies
    """
    target = parse_amount(expected)
    if target is None:
        return None

    indexed = [
        (index, c) for index, c in enumerate(candidates) if isinstance(c.value, Decimal)
    ]
    for size in range(1, max_parts + 1):
        hits = [
            combo
            for combo in combinations(indexed, size)
            if abs(sum(c.value for _, c in combo) - target) <= tolerance
        ]
        if not hits:
            continue
        best = min(hits, key=_combination_key)
        matched = [c for _, c in best]
        found = matched[0].value if size == 1 else [c.value for c in matched]
        return StrategyHit(
            MatchStrategy.SPLIT_SUM,
            found,
            matched,
            ambiguous=len(hits) > 1,
        )
    return None
