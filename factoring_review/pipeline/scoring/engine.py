"""Weighted, banded case scoring.

Each sub-score turns one input value into full, half or zero points by
comparing it with two configured thresholds. A sub-score whose input is
missing gets zero points and is listed in ``missing_inputs``; the score is
then marked incomplete.

Sub-scores and default bands (weights total 100):

    discount_ratio          20  paid / face * 100            <=80 full, <=85 half
    invoice_match           10  invoice reconciliation       all match full, not_found half
    collateral_coverage     15  next inflows / paid * 100    >=100 full, >=80 half
    payment_stability       15  mean CV% of inflows          <=15 full, <=30 half
    bank_inflow_match       10  matched share of inflows     >=90 full, >=60 half
    identity_match          10  identity reconciliation      all match full, partial half
    counterparty_existence  10  mean search confidence       >=70 full, >=40 half
    negative_information    10  count of risk signals        0 full, 1 half
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from factoring_review.pipeline.core.config import STABILITY_MATERIALITY_THRESHOLD
from factoring_review.pipeline.models.dto import (
    BankReconciliation,
    CaseRecord,
    CaseScore,
    CollateralItem,
    CompanyVerification,
    MatchStatus,
    NegativeNewsResult,
    ReconciliationReport,
    SubScore,
)

logger = logging.getLogger(__name__)

# Bank risk kinds that count as negative information
NEGATIVE_BANK_RISK_KINDS = ("gambling", "factoring_company")


@dataclass(frozen=True)
class Band:
    """Two thresholds; ``lower_is_better`` flips the comparison."""

    max_points: float
    full: float
    half: float
    lower_is_better: bool = False

    def apply(self, value: float) -> tuple[float, str]:
        if self.lower_is_better:
            if value <= self.full:
                return self.max_points, "full"
            if value <= self.half:
                return self.max_points / 2, "half"
        else:
            if value >= self.full:
                return self.max_points, "full"
            if value >= self.half:
                return self.max_points / 2, "half"
        return 0.0, "zero"


@dataclass(frozen=True)
class Recommendation:
    approve_at: float = 80.0
    conditional_at: float = 60.0

    def classify(self, total: float) -> tuple[str, str]:
        if total >= self.approve_at:
            return "approve", "low"
        if total >= self.conditional_at:
            return "conditional", "medium"
        return "review", "high"


def _default_bands() -> dict[str, Band]:
    return {
        "discount_ratio": Band(20, 80, 85, lower_is_better=True),
        # 2 = every entry matched, 1 = nothing mismatched but something not found
        "invoice_match": Band(10, 2, 1),
        "collateral_coverage": Band(15, 100, 80),
        "payment_stability": Band(15, 15, 30, lower_is_better=True),
        "bank_inflow_match": Band(10, 90, 60),
        # 2 = every entry matched, 1 = at least one matched
        "identity_match": Band(10, 2, 1),
        "counterparty_existence": Band(10, 70, 40),
        "negative_information": Band(10, 0, 1, lower_is_better=True),
    }


@dataclass(frozen=True)
class ScoringConfig:
    bands: dict[str, Band] = field(default_factory=_default_bands)
    recommendation: Recommendation = field(default_factory=Recommendation)
    materiality_threshold: Decimal = Decimal(STABILITY_MATERIALITY_THRESHOLD)


@dataclass
class ScoringInputs:
    """Everything scoring reads. ``None`` means the producing stage had no output."""

    record: CaseRecord
    invoice: Optional[ReconciliationReport] = None
    bank: Optional[BankReconciliation] = None
    identity: Optional[ReconciliationReport] = None
    verifications: Optional[list[CompanyVerification]] = None
    negative_news: Optional[list[NegativeNewsResult]] = None


# ----------------------------------------------------------------------------
# Input values
# ----------------------------------------------------------------------------


def _sum_all(values: list[Optional[Decimal]]) -> Optional[Decimal]:
    if not values or any(v is None for v in values):
        return None
    return sum(values, Decimal(0))


def discount_ratio(record: CaseRecord) -> Optional[float]:
    face = _sum_all([p.face_amount for p in record.purchases])
    paid = _sum_all([p.paid_amount for p in record.purchases])
    if face is None or paid is None or face <= 0:
        return None
    return float(paid / face * 100)


def collateral_coverage(record: CaseRecord) -> Optional[float]:
    paid = _sum_all([p.paid_amount for p in record.purchases])
    upcoming = _sum_all([c.next_payment_amount for c in record.collaterals])
    if paid is None or upcoming is None or paid <= 0:
        return None
    return float(upcoming / paid * 100)


def coefficient_of_variation(amounts: list[Decimal]) -> float:
    """Population CV in percent over non-zero amounts; fewer than two gives 0."""
    values = [float(a) for a in amounts if a]
    if len(values) < 2:
        return 0.0
    mean = statistics.fmean(values)
    if mean == 0:
        return 0.0
    return statistics.pstdev(values) / abs(mean) * 100


def payment_stability(
    collaterals: list[CollateralItem],
    materiality_threshold: Decimal = Decimal(STABILITY_MATERIALITY_THRESHOLD),
) -> Optional[float]:
    """Mean CV% over counterparties whose mean inflow reaches the threshold."""
    ordered = sorted(collaterals, key=lambda c: c.company_name or "")
    cvs = []
    for collateral in ordered:
        amounts = [
            collateral.past_payments[m]
            for m in sorted(collateral.past_payments)
            if collateral.past_payments[m]
        ]
        if not amounts:
            continue
        mean = sum(amounts, Decimal(0)) / len(amounts)
        if mean < materiality_threshold:
            continue
        cvs.append(coefficient_of_variation(amounts))
    if not cvs:
        return None
    return statistics.fmean(cvs)


def _no_input(report: Optional[ReconciliationReport]) -> bool:
    return report is None or report.input_missing or not report.entries


def invoice_match_level(report: Optional[ReconciliationReport]) -> Optional[float]:
    if _no_input(report):
        return None
    if report.count(MatchStatus.MISMATCH):
        return 0.0
    if report.count(MatchStatus.NOT_FOUND):
        return 1.0
    return 2.0


def identity_match_level(report: Optional[ReconciliationReport]) -> Optional[float]:
    if _no_input(report):
        return None
    matched = report.count(MatchStatus.MATCH)
    if matched == len(report.entries):
        return 2.0
    return 1.0 if matched else 0.0


def bank_inflow_share(bank: Optional[BankReconciliation]) -> Optional[float]:
    if bank is None or bank.report.input_missing:
        return None
    entries = bank.report.entries_with_prefix("inflow")
    if not entries:
        return None
    matched = sum(1 for e in entries if e.status == MatchStatus.MATCH)
    return matched / len(entries) * 100


def mean_confidence(verifications: Optional[list[CompanyVerification]]) -> Optional[float]:
    if not verifications:
        return None
    return statistics.fmean(v.confidence for v in verifications)


def risk_signal_count(
    negative_news: Optional[list[NegativeNewsResult]],
    bank: Optional[BankReconciliation],
) -> Optional[float]:
    """People with negative news plus distinct negative bank risk kinds.

    Without a screening the count is unknown. Bank kinds are added only when a
    statement was read.
    """
    if negative_news is None:
        return None
    count = sum(1 for r in negative_news if r.has_negative_info)
    if bank is not None and not bank.report.input_missing:
        count += sum(1 for kind in NEGATIVE_BANK_RISK_KINDS if bank.risks.of_kind(kind))
    return float(count)


# ----------------------------------------------------------------------------
# Engine
# ----------------------------------------------------------------------------


class ScoringEngine:
    def __init__(self, config: Optional[ScoringConfig] = None):
        self.config = config or ScoringConfig()

    def score(self, inputs: ScoringInputs) -> CaseScore:
        """Compute the CaseScore. Pure: identical inputs give an identical score."""
        values = {
            "discount_ratio": discount_ratio(inputs.record),
            "invoice_match": invoice_match_level(inputs.invoice),
            "collateral_coverage": collateral_coverage(inputs.record),
            "payment_stability": payment_stability(
                inputs.record.collaterals, self.config.materiality_threshold
            ),
            "bank_inflow_match": bank_inflow_share(inputs.bank),
            "identity_match": identity_match_level(inputs.identity),
            "counterparty_existence": mean_confidence(inputs.verifications),
            "negative_information": risk_signal_count(inputs.negative_news, inputs.bank),
        }

        sub_scores = []
        missing = []
        for name, band in self.config.bands.items():
            value = values.get(name)
            if value is None:
                missing.append(name)
                sub_scores.append(
                    SubScore(
                        name=name,
                        points=0.0,
                        max_points=band.max_points,
                        band="zero",
                        input_missing=True,
                    )
                )
                continue
            points, label = band.apply(value)
            sub_scores.append(
                SubScore(
                    name=name,
                    points=points,
                    max_points=band.max_points,
                    band=label,
                    value=round(value, 4),
                )
            )

        total = round(sum(s.points for s in sub_scores), 4)
        recommendation, risk_level = self.config.recommendation.classify(total)
        if missing:
            logger.info(f"Scoring inputs missing: {', '.join(missing)}")
        return CaseScore(
            sub_scores=sub_scores,
            total_score=total,
            max_score=round(sum(b.max_points for b in self.config.bands.values()), 4),
            recommendation=recommendation,
            risk_level=risk_level,
            complete=not missing,
            missing_inputs=missing,
        )
