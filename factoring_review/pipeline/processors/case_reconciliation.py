"""Pairs reference fields of a case with the extracted candidates for each.

Every builder returns ``(ReferenceField, candidates)`` pairs ready for
``Reconciler.reconcile_all``. Reference values come only from the case record;
candidates only from the documents.
"""

from typing import Optional

from factoring_review.pipeline.extraction.field_extractor import IDENTITY_DOCUMENT_TYPES
from factoring_review.pipeline.models.dto import (
    CaseRecord,
    ExtractedField,
    FieldKind,
    ReferenceField,
    Transaction,
)
from factoring_review.pipeline.processors.normalization import names_match
from factoring_review.pipeline.utils.dates import month_key

Pair = tuple[ReferenceField, list[ExtractedField]]


def _named(fields: list[ExtractedField], name: str) -> list[ExtractedField]:
    return [f for f in fields if f.name == name]


def invoice_pairs(record: CaseRecord, fields: list[ExtractedField]) -> list[Pair]:
    """Debtor name and face amount of every purchased receivable."""
    names = _named(fields, "debtor_name")
    amounts = _named(fields, "invoice_amount")
    pairs: list[Pair] = []
    for index, purchase in enumerate(record.purchases):
        pairs.append(
            (
                ReferenceField(
                    name=f"debtor_name[{index}]",
                    expected_value=purchase.debtor_name,
                    kind=FieldKind.TEXT,
                ),
                names,
            )
        )
        candidates = amounts
        if purchase.debtor_name:
            addressed = [
                a for a in amounts if a.label and names_match(purchase.debtor_name, a.label)
            ]
            candidates = addressed or amounts
        pairs.append(
            (
                ReferenceField(
                    name=f"invoice_amount[{index}]",
                    expected_value=purchase.face_amount,
                    kind=FieldKind.MONEY,
                ),
                candidates,
            )
        )
    return pairs


def inflow_candidates(
    company_name: str,
    month: str,
    transactions: list[Transaction],
    account: str = "main",
) -> list[ExtractedField]:
    """Positive transactions from ``company_name`` booked in ``month``."""
    candidates = []
    for t in transactions:
        if t.account != account or t.amount <= 0:
            continue
        if t.transaction_date is not None and month_key(t.transaction_date) != month:
            continue
        if not names_match(company_name, t.description):
            continue
        candidates.append(
            ExtractedField(
                name="inflow",
                value=t.amount,
                kind=FieldKind.MONEY,
                source_document_id=t.source_document_id,
                observed_on=t.transaction_date,
                label=t.description,
            )
        )
    return candidates


def bank_inflow_pairs(record: CaseRecord, transactions: list[Transaction]) -> list[Pair]:
    """Recorded past inflows of every collateral counterparty, month by month."""
    pairs: list[Pair] = []
    for index, collateral in enumerate(record.collaterals):
        for month in sorted(collateral.past_payments):
            expected = collateral.past_payments[month]
            candidates = (
                inflow_candidates(collateral.company_name, month, transactions)
                if collateral.company_name
                else []
            )
            pairs.append(
                (
                    ReferenceField(
                        name=f"inflow[{index}][{month}]",
                        expected_value=expected,
                        kind=FieldKind.MONEY,
                    ),
                    candidates,
                )
            )
    return pairs


def identity_pairs(record: CaseRecord, fields: list[ExtractedField]) -> list[Pair]:
    return [
        (
            ReferenceField(
                name="representative_name",
                expected_value=record.representative_name,
                kind=FieldKind.TEXT,
            ),
            _named(fields, "full_name"),
        ),
        (
            ReferenceField(
                name="representative_birth_date",
                expected_value=record.representative_birth_date,
                kind=FieldKind.DATE,
            ),
            _named(fields, "birth_date"),
        ),
        (
            ReferenceField(
                name="identity_document_type",
                kind=FieldKind.ENUM,
                allowed_values=tuple(t for t in IDENTITY_DOCUMENT_TYPES if t != "other"),
            ),
            _named(fields, "document_type"),
        ),
    ]


def registry_pairs(
    record: CaseRecord,
    registry: list[ExtractedField],
    collateral: list[ExtractedField],
) -> list[Pair]:
    """Applicant company against its registry; collateral companies against theirs."""
    pairs: list[Pair] = [
        (
            ReferenceField(
                name="applicant_company",
                expected_value=record.applicant_company,
                kind=FieldKind.TEXT,
            ),
            _named(registry, "company_name"),
        )
    ]
    collateral_names = _named(collateral, "company_name")
    for index, item in enumerate(record.collaterals):
        pairs.append(
            (
                ReferenceField(
                    name=f"collateral_company[{index}]",
                    expected_value=item.company_name,
                    kind=FieldKind.TEXT,
                ),
                collateral_names,
            )
        )
    return pairs


def unmatched_debtors(record: CaseRecord, collateral: list[ExtractedField]) -> list[str]:
    """Purchase debtors for which no collateral registry was read."""
    registered = [str(f.value) for f in _named(collateral, "company_name")]
    debtors: list[str] = []
    for purchase in record.purchases:
        name = purchase.debtor_name
        if not name or name in debtors:
            continue
        if not any(names_match(name, r) for r in registered):
            debtors.append(name)
    return debtors


def representative_names(
    record: CaseRecord, registry_fields: Optional[list[ExtractedField]]
) -> list[str]:
    """Applicant representative plus every representative read from registries."""
    names: list[str] = []
    candidates = [record.representative_name] + [
        str(f.value) for f in _named(registry_fields or [], "representative_name")
    ]
    for name in candidates:
        if name and not any(names_match(name, existing) for existing in names):
            names.append(name)
    return names
