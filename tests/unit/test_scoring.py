"""Unit tests for banded case scoring."""

from decimal import Decimal

import pytest

from factoring_review.pipeline.models.dto import (
    BankReconciliation,
    BankRiskFlag,
    BankRiskReport,
    CaseRecord,
    CollateralItem,
    CompanyVerification,
    MatchStatus,
    NegativeNewsHit,
    NegativeNewsResult,
    PurchaseItem,
    ReconciliationEntry,
    ReconciliationReport,
)
from factoring_review.pipeline.scoring import Band, ScoringConfig, ScoringEngine, ScoringInputs
from factoring_review.pipeline.scoring.engine import (
    Recommendation,
    coefficient_of_variation,
    discount_ratio,
    identity_match_level,
    invoice_match_level,
    payment_stability,
    risk_signal_count,
)


def entry(field: str, status: MatchStatus) -> ReconciliationEntry:
    found = None if status == MatchStatus.NOT_FOUND else "x"
    return ReconciliationEntry(field=field, expected="x", found=found, status=status)


def report(*statuses, prefix="f") -> ReconciliationReport:
    return ReconciliationReport(
        entries=[entry(f"{prefix}[{i}]", s) for i, s in enumerate(statuses)]
    )


RECORD = CaseRecord(
    case_id="1001",
    purchases=[
        PurchaseItem(
            debtor_name="株式会社サンプル",
            face_amount=Decimal("4027740"),
            paid_amount=Decimal("3200000"),
        )
    ],
    collaterals=[
        CollateralItem(
            company_name="株式会社サンプル",
            next_payment_amount=Decimal("4000000"),
            past_payments={"2024-04": Decimal("4027740")},
        )
    ],
)


def full_inputs() -> ScoringInputs:
    return ScoringInputs(
        record=RECORD,
        invoice=report(MatchStatus.MATCH, MatchStatus.MATCH),
        bank=BankReconciliation(
            report=report(MatchStatus.MATCH, prefix="inflow"), risks=BankRiskReport()
        ),
        identity=report(MatchStatus.MATCH, MatchStatus.MATCH, MatchStatus.MATCH),
        verifications=[CompanyVerification(name="A", confidence=80)],
        negative_news=[NegativeNewsResult(name="山田太郎")],
    )


class TestBands:
    def test_higher_is_better(self):
        band = Band(10, 90, 60)
        assert band.apply(90) == (10, "full")
        assert band.apply(60) == (5, "half")
        assert band.apply(59.9) == (0.0, "zero")

    def test_lower_is_better(self):
        band = Band(20, 80, 85, lower_is_better=True)
        assert band.apply(79.45) == (20, "full")
        assert band.apply(85) == (10, "half")
        assert band.apply(85.1) == (0.0, "zero")

    def test_recommendation(self):
        rec = Recommendation()
        assert rec.classify(80) == ("approve", "low")
        assert rec.classify(60) == ("conditional", "medium")
        assert rec.classify(59.5) == ("review", "high")


class TestInputs:
    def test_discount_ratio(self):
        assert discount_ratio(RECORD) == pytest.approx(79.449, abs=1e-3)

    def test_discount_ratio_missing_amount(self):
        record = CaseRecord(case_id="1", purchases=[PurchaseItem(face_amount=Decimal("1"))])
        assert discount_ratio(record) is None

    def test_coefficient_of_variation(self):
        assert coefficient_of_variation([Decimal("100000"), Decimal("300000")]) == pytest.approx(50)
        assert coefficient_of_variation([Decimal("100000")]) == 0.0
        assert coefficient_of_variation([Decimal("100000"), Decimal("0")]) == 0.0

    def test_payment_stability_skips_immaterial_counterparties(self):
        collaterals = [
            CollateralItem(
                company_name="B",
                past_payments={"2024-03": Decimal("100000"), "2024-04": Decimal("300000")},
            ),
            CollateralItem(
                company_name="A",
                past_payments={"2024-03": Decimal("1000"), "2024-04": Decimal("90000")},
            ),
        ]
        assert payment_stability(collaterals) == pytest.approx(50)

    def test_payment_stability_without_material_counterparty(self):
        collaterals = [CollateralItem(company_name="A", past_payments={"2024-04": Decimal("10")})]
        assert payment_stability(collaterals) is None

    def test_match_levels(self):
        assert invoice_match_level(report(MatchStatus.MATCH)) == 2
        assert invoice_match_level(report(MatchStatus.MATCH, MatchStatus.NOT_FOUND)) == 1
        assert invoice_match_level(report(MatchStatus.NOT_FOUND, MatchStatus.MISMATCH)) == 0
        assert invoice_match_level(ReconciliationReport()) is None
        assert identity_match_level(report(MatchStatus.MATCH, MatchStatus.NOT_FOUND)) == 1
        assert identity_match_level(report(MatchStatus.NOT_FOUND)) == 0

    def test_match_levels_without_documents_are_missing(self):
        unread = report(MatchStatus.NOT_FOUND, MatchStatus.NOT_FOUND)
        unread.input_missing = True

        assert invoice_match_level(unread) is None
        assert identity_match_level(unread) is None
        assert invoice_match_level(None) is None

    def test_risk_signals_count_people_and_bank_kinds(self):
        news = [
            NegativeNewsResult(
                name="山田太郎",
                hits=[NegativeNewsHit(query="q", title="t", url="u", relevant=True)],
            ),
            NegativeNewsResult(name="鈴木花子"),
        ]
        bank = BankReconciliation(
            report=ReconciliationReport(),
            risks=BankRiskReport(
                flags=[
                    BankRiskFlag(kind="gambling", description="競馬"),
                    BankRiskFlag(kind="gambling", description="競輪"),
                    BankRiskFlag(kind="large_withdrawal", description="ATM"),
                ]
            ),
        )
        assert risk_signal_count(news, bank) == 2
        assert risk_signal_count(None, None) is None

    def test_risk_signals_unknown_without_screening(self):
        bank = BankReconciliation(report=ReconciliationReport(), risks=BankRiskReport())

        assert risk_signal_count(None, bank) is None
        assert risk_signal_count([], None) == 0

    def test_unread_statement_adds_no_bank_signals(self):
        bank = BankReconciliation(
            report=ReconciliationReport(input_missing=True),
            risks=BankRiskReport(flags=[BankRiskFlag(kind="gambling", description="競馬")]),
        )
        assert risk_signal_count([NegativeNewsResult(name="山田太郎")], bank) == 0


class TestScoringEngine:
    def test_full_score(self):
        score = ScoringEngine().score(full_inputs())

        assert score.total_score == 100
        assert score.max_score == 100
        assert score.complete is True
        assert score.recommendation == "approve"
        assert score.risk_level == "low"
        assert [s.name for s in score.sub_scores] == [
            "discount_ratio",
            "invoice_match",
            "collateral_coverage",
            "payment_stability",
            "bank_inflow_match",
            "identity_match",
            "counterparty_existence",
            "negative_information",
        ]

    def test_identical_inputs_give_identical_scores(self):
        engine = ScoringEngine()
        assert engine.score(full_inputs()) == engine.score(full_inputs())

    def test_missing_inputs_score_zero_and_mark_incomplete(self):
        inputs = full_inputs()
        inputs.bank = None
        inputs.verifications = None
        score = ScoringEngine().score(inputs)

        assert score.complete is False
        assert score.missing_inputs == ["bank_inflow_match", "counterparty_existence"]
        missing = [s for s in score.sub_scores if s.input_missing]
        assert all(s.points == 0 and s.band == "zero" for s in missing)
        assert score.total_score == 80

    def test_unscreened_and_unread_inputs_earn_nothing(self):
        inputs = full_inputs()
        inputs.negative_news = None
        inputs.invoice = report(MatchStatus.NOT_FOUND, MatchStatus.NOT_FOUND)
        inputs.invoice.input_missing = True
        score = ScoringEngine().score(inputs)

        assert score.complete is False
        assert score.missing_inputs == ["invoice_match", "negative_information"]
        points = {s.name: s.points for s in score.sub_scores}
        assert points["invoice_match"] == 0
        assert points["negative_information"] == 0
        assert score.total_score == 80

    def test_custom_bands(self):
        config = ScoringConfig(bands={"discount_ratio": Band(50, 70, 90, lower_is_better=True)})
        score = ScoringEngine(config).score(full_inputs())

        assert score.max_score == 50
        assert score.sub_scores[0].points == 25
        assert score.sub_scores[0].band == "half"
        assert score.recommendation == "review"
