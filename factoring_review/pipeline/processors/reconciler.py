"""Field-level reconciliation of extracted facts against reference data.

Order of strategies per field kind (first hit wins):

- money: exact, split-sum
- date:  exact, normalized (same calendar date)
- text:  exact, normalized, containment
- enum:  exact only (raw equality, value must be in the closed set)

No candidate at all is ``not_found``, never ``mismatch``. Confidence is a
fixed function of the strategy and only breaks ties downstream.
"""

import logging
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from factoring_review.pipeline.core.config import AMOUNT_TOLERANCE
from factoring_review.pipeline.errors.codes import ErrorCode, make_error
from factoring_review.pipeline.models.dto import (
    ExtractedField,
    FieldKind,
    MatchStatus,
    MatchStrategy,
    ReconciliationEntry,
    ReconciliationReport,
    ReferenceField,
)
from factoring_review.pipeline.processors.matching_strategies import (
    StrategyHit,
    try_containment_match,
    try_date_match,
    try_exact_match,
    try_normalized_match,
    try_split_sum_match,
)

logger = logging.getLogger(__name__)

STRATEGY_CONFIDENCE = {
    MatchStrategy.EXACT: 1.0,
    MatchStrategy.NORMALIZED: 0.98,
    MatchStrategy.SPLIT_SUM: 0.95,
    MatchStrategy.CONTAINMENT: 0.8,
}


class Reconciler:
    def __init__(self, tolerance: Decimal = Decimal(AMOUNT_TOLERANCE)):
        self.tolerance = tolerance

    def reconcile(
        self,
        reference: ReferenceField,
        found: Sequence[ExtractedField],
    ) -> ReconciliationEntry:
        """Reconcile one reference field against its extracted candidates.

        Raises:
            ValueError: If the reference value is absent; callers report those
                as REFERENCE_VALUE_MISSING instead of reconciling.
        """
        if not reference.is_present and not self._enum_set_only(reference):
            raise ValueError(f"Reference value for {reference.name} is absent")

        candidates = [c for c in found if c.value is not None and str(c.value).strip()]
        expected = self._expected(reference)
        if not candidates:
            return ReconciliationEntry(
                field=reference.name,
                expected=expected,
                found=None,
                status=MatchStatus.NOT_FOUND,
            )

        hit = self._match(reference, candidates)
        if hit is None:
            return ReconciliationEntry(
                field=reference.name,
                expected=expected,
                found=self._closest(reference, candidates),
                status=MatchStatus.MISMATCH,
                source_document_ids=_document_ids(candidates),
            )

        return ReconciliationEntry(
            field=reference.name,
            expected=expected,
            found=hit.found,
            status=MatchStatus.MATCH,
            match_strategy=hit.strategy,
            confidence=STRATEGY_CONFIDENCE[hit.strategy],
            source_document_ids=_document_ids(hit.matched),
            ambiguous=hit.ambiguous,
        )

    def reconcile_all(
        self,
        pairs: Iterable[tuple[ReferenceField, Sequence[ExtractedField]]],
    ) -> ReconciliationReport:
        """Reconcile many fields; absent references and ambiguity become annotations."""
        report = ReconciliationReport()
        for reference, found in pairs:
            if not reference.is_present and not self._enum_set_only(reference):
                report.annotations.append(
                    make_error(ErrorCode.REFERENCE_VALUE_MISSING.value.code, field=reference.name)
                )
                continue

            entry = self.reconcile(reference, found)
            if entry.ambiguous:
                report.annotations.append(
                    make_error(
                        ErrorCode.RECONCILIATION_AMBIGUOUS.value.code,
                        f"resolved to {entry.found}",
                        field=reference.name,
                    )
                )
            report.entries.append(entry)
        return report

    def _match(
        self, reference: ReferenceField, candidates: list[ExtractedField]
    ) -> Optional[StrategyHit]:
        expected = reference.expected_value

        if reference.kind == FieldKind.ENUM:
            return self._match_enum(reference, candidates)

        if reference.kind == FieldKind.MONEY:
            money = [c for c in candidates if isinstance(c.value, Decimal)]
            return try_exact_match(expected, money) or try_split_sum_match(
                expected, money, tolerance=self.tolerance
            )

        if reference.kind == FieldKind.DATE:
            return try_exact_match(expected, candidates) or try_date_match(expected, candidates)

        return (
            try_exact_match(expected, candidates)
            or try_normalized_match(expected, candidates)
            or try_containment_match(expected, candidates)
        )

    @staticmethod
    def _match_enum(
        reference: ReferenceField, candidates: list[ExtractedField]
    ) -> Optional[StrategyHit]:
        allowed = reference.allowed_values
        for candidate in candidates:
            value = candidate.value
            if allowed is not None and value not in allowed:
                continue
            if reference.expected_value is None or value == reference.expected_value:
                return StrategyHit(MatchStrategy.EXACT, value, [candidate])
        return None

    @staticmethod
    def _enum_set_only(reference: ReferenceField) -> bool:
        return reference.kind == FieldKind.ENUM and bool(reference.allowed_values)

    @staticmethod
    def _expected(reference: ReferenceField):
        if reference.expected_value is None and reference.allowed_values:
            return list(reference.allowed_values)
        return reference.expected_value

    @staticmethod
    def _closest(reference: ReferenceField, candidates: list[ExtractedField]):
        if reference.kind == FieldKind.MONEY and isinstance(reference.expected_value, Decimal):
            money = [c.value for c in candidates if isinstance(c.value, Decimal)]
            if money:
                return min(money, key=lambda v: abs(v - reference.expected_value))
        return candidates[0].value


def _document_ids(fields: Iterable[ExtractedField]) -> list[str]:
    ids: list[str] = []
    for f in fields:
        if f.source_document_id and f.source_document_id not in ids:
            ids.append(f.source_document_id)
    return ids
