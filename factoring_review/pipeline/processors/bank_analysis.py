"""Risk signals in bank statement transactions.

Checks:
- gambling: description mentions a betting venue or service
- large_withdrawal: a single outflow at or above LARGE_WITHDRAWAL_THRESHOLD
- same_day_transfer: money in and out of one account on the same day for
  nearly the same amount (pass-through funds)
- cross_account_transfer: money moved between the main and an auxiliary
  account within CROSS_ACCOUNT_MAX_DAYS, which can inflate apparent revenue
- factoring_company: a transaction with another factoring provider
"""

import logging
from decimal import Decimal
from itertools import product

from factoring_review.pipeline.core.config import (
    CROSS_ACCOUNT_MAX_DAYS,
    CROSS_ACCOUNT_TOLERANCE,
    FACTORING_COMPANY_NAMES,
    GAMBLING_KEYWORDS,
    LARGE_WITHDRAWAL_THRESHOLD,
    SAME_DAY_TRANSFER_TOLERANCE,
)
from factoring_review.pipeline.models.dto import BankRiskFlag, BankRiskReport, Transaction
from factoring_review.pipeline.processors.normalization import normalize_for_compare

logger = logging.getLogger(__name__)


def _mentions(description: str, keywords: tuple[str, ...]) -> bool:
    text = normalize_for_compare(description)
    return any(normalize_for_compare(k) in text for k in keywords)


def detect_gambling(transactions: list[Transaction]) -> list[BankRiskFlag]:
    return [
        BankRiskFlag(
            kind="gambling",
            description=t.description,
            amount=t.amount,
            transaction_date=t.transaction_date,
            account=t.account,
        )
        for t in transactions
        if _mentions(t.description, GAMBLING_KEYWORDS)
    ]


def detect_large_withdrawals(
    transactions: list[Transaction],
    threshold: Decimal = Decimal(LARGE_WITHDRAWAL_THRESHOLD),
) -> list[BankRiskFlag]:
    return [
        BankRiskFlag(
            kind="large_withdrawal",
            description=t.description,
            amount=t.amount,
            transaction_date=t.transaction_date,
            account=t.account,
        )
        for t in transactions
        if t.amount <= -threshold
    ]


def detect_same_day_transfers(
    transactions: list[Transaction],
    tolerance: Decimal = Decimal(SAME_DAY_TRANSFER_TOLERANCE),
) -> list[BankRiskFlag]:
    flags = []
    inflows = [t for t in transactions if t.amount > 0 and t.transaction_date]
    outflows = [t for t in transactions if t.amount < 0 and t.transaction_date]
    used: set[int] = set()
    for inflow in inflows:
        for index, outflow in enumerate(outflows):
            if index in used:
                continue
            if (
                outflow.account == inflow.account
                and outflow.transaction_date == inflow.transaction_date
                and abs(inflow.amount + outflow.amount) <= tolerance
            ):
                used.add(index)
                flags.append(
                    BankRiskFlag(
                        kind="same_day_transfer",
                        description=f"{inflow.description} -> {outflow.description}",
                        amount=inflow.amount,
                        transaction_date=inflow.transaction_date,
                        account=inflow.account,
                    )
                )
                break
    return flags


def detect_cross_account_transfers(
    transactions: list[Transaction],
    tolerance: Decimal = Decimal(CROSS_ACCOUNT_TOLERANCE),
    max_days: int = CROSS_ACCOUNT_MAX_DAYS,
) -> list[BankRiskFlag]:
    """Outflow from one account matched by an inflow to another account."""
    flags = []
    outflows = [t for t in transactions if t.amount < 0 and t.transaction_date]
    inflows = [t for t in transactions if t.amount > 0 and t.transaction_date]
    for outflow, inflow in product(outflows, inflows):
        if outflow.account == inflow.account:
            continue
        days = abs((inflow.transaction_date - outflow.transaction_date).days)
        if days <= max_days and abs(inflow.amount + outflow.amount) <= tolerance:
            flags.append(
                BankRiskFlag(
                    kind="cross_account_transfer",
                    description=f"{outflow.account}:{outflow.description} -> "
                    f"{inflow.account}:{inflow.description}",
                    amount=inflow.amount,
                    transaction_date=inflow.transaction_date,
                    account=inflow.account,
                )
            )
    return flags


def detect_factoring_companies(transactions: list[Transaction]) -> list[BankRiskFlag]:
    return [
        BankRiskFlag(
            kind="factoring_company",
            description=t.description,
            amount=t.amount,
            transaction_date=t.transaction_date,
            account=t.account,
        )
        for t in transactions
        if _mentions(t.description, FACTORING_COMPANY_NAMES)
    ]


def detect_risks(transactions: list[Transaction]) -> BankRiskReport:
    """Run every check over the transactions of all accounts."""
    flags = (
        detect_gambling(transactions)
        + detect_large_withdrawals(transactions)
        + detect_same_day_transfers(transactions)
        + detect_cross_account_transfers(transactions)
        + detect_factoring_companies(transactions)
    )
    if flags:
        logger.info("Bank statement risk flags: %d", len(flags))
    return BankRiskReport(flags=flags)
