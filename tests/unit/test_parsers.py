"""Unit tests for amount, date and free-text parsers."""

from datetime import date
from decimal import Decimal

import pytest

from factoring_review.pipeline.utils.dates import month_key, parse_doc_date, shift_month
from factoring_review.pipeline.utils.parsers import (
    estimate_tokens,
    extract_json_object,
    find_amounts,
    parse_amount,
    parse_labeled_lines,
    parse_transaction_lines,
)


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("¥1,000", Decimal("1000")),
            ("１２，０００円", Decimal("12000")),
            ("▲500", Decimal("-500")),
            ("△2,000", Decimal("-2000")),
            ("(300)", Decimal("-300")),
            ("12万", Decimal("120000")),
            ("1.5万3000", Decimal("18000")),
            (4027740, Decimal("4027740")),
            ("JPY 5,000", Decimal("5000")),
        ],
    )
    def test_written_amounts(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, True, "n/a", "不明", "abc", float("nan"), ""])
    def test_non_amounts(self, raw):
        assert parse_amount(raw) is None

    def test_zero_is_an_amount(self):
        assert parse_amount("0") == Decimal("0")

    def test_find_amounts_needs_a_marker(self):
        text = "請求書番号 12345\n小計 ¥3,660,000\n消費税 366,000円\n合計 4,026,000"
        assert find_amounts(text) == [
            Decimal("3660000"),
            Decimal("366000"),
            Decimal("4026000"),
        ]


class TestParseDocDate:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2024-03-31", date(2024, 3, 31)),
            ("2024/3/1", date(2024, 3, 1)),
            ("2024年3月31日", date(2024, 3, 31)),
            ("２０２４年３月３１日", date(2024, 3, 31)),
            ("令和5年4月1日", date(2023, 4, 1)),
            ("R5.4.1", date(2023, 4, 1)),
            ("H30.12.31", date(2018, 12, 31)),
            ("平成元年1月8日", date(1989, 1, 8)),
            ("昭和55年1月2日", date(1980, 1, 2)),
            ("20240331", date(2024, 3, 31)),
        ],
    )
    def test_supported_formats(self, raw, expected):
        assert parse_doc_date(raw) == expected

    def test_month_day_needs_default_year(self):
        assert parse_doc_date("3/31") is None
        assert parse_doc_date("3/31", default_year=2024) == date(2024, 3, 31)

    def test_invalid_calendar_date(self):
        assert parse_doc_date("2023-02-30") is None

    def test_dates_pass_through(self):
        assert parse_doc_date(date(2024, 1, 2)) == date(2024, 1, 2)

    def test_month_helpers(self):
        assert month_key(date(2024, 4, 10)) == "2024-04"
        assert shift_month(date(2024, 1, 15), -2) == date(2023, 11, 1)
        assert shift_month(date(2024, 12, 31), 1) == date(2025, 1, 1)


class TestFreeText:
    def test_fenced_json_wins(self):
        text = 'Here you go:\n```json\n{"debtor_name": "A", "total_amount": 10}\n```'
        assert extract_json_object(text) == {"debtor_name": "A", "total_amount": 10}

    def test_no_json(self):
        assert extract_json_object("no braces here") is None

    def test_labeled_lines_accept_full_width_colon(self):
        text = "請求先：株式会社サンプル\n**請求金額**: ¥1,000\n発行日: null"
        found = parse_labeled_lines(
            text,
            {
                "debtor_name": ("請求先",),
                "total_amount": ("請求金額",),
                "issue_date": ("発行日",),
            },
        )
        assert found == {"debtor_name": ["株式会社サンプル"], "total_amount": ["¥1,000"]}

    def test_transaction_rows(self):
        text = (
            "2024-04-10 カ)サンプル 2,500,000 5,000,000\n"
            "2024-04-15 家賃 -300,000 4,700,000\n"
            "残高のみ 100\n"
            "4/20 ATM ▲10,000"
        )
        rows = parse_transaction_lines(text, default_year=2024)

        assert [r["amount"] for r in rows] == [
            Decimal("2500000"),
            Decimal("-300000"),
            Decimal("-10000"),
        ]
        assert rows[0]["description"] == "カ)サンプル"
        assert rows[0]["balance"] == Decimal("5000000")
        assert rows[2]["date"] == date(2024, 4, 20)
        assert rows[2]["balance"] is None

    def test_token_estimate(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("請求書abcd") == 4
