"""Typed extraction schemas requested from the language model.

Amounts are accepted as numbers or as written on the document ("1,000円");
dates are kept as written and parsed during reconciliation.
"""

from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, Field, ValidationError, field_validator

from factoring_review.pipeline.utils.parsers import parse_amount


def _to_int_amount(value: Any) -> Any:
    if value is None or isinstance(value, int):
        return value
    amount = parse_amount(value)
    return int(amount) if amount is not None else None


Amount = Annotated[Optional[int], BeforeValidator(_to_int_amount)]


class InvoiceFacts(BaseModel):
    issuer_name: Optional[str] = None
    debtor_name: Optional[str] = None
    total_amount: Amount = None
    line_amounts: list[int] = Field(default_factory=list)
    issue_date: Optional[str] = None
    due_date: Optional[str] = None
    highlighted_items: list[str] = Field(default_factory=list)

    @field_validator("line_amounts", mode="before")
    @classmethod
    def _line_amounts(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        amounts = [_to_int_amount(v) for v in value]
        return [a for a in amounts if a is not None]


class TransactionFact(BaseModel):
    date: Optional[str] = None
    description: str = ""
    amount: Annotated[int, BeforeValidator(_to_int_amount)]
    balance: Amount = None


class BankStatementFacts(BaseModel):
    account_holder: Optional[str] = None
    bank_name: Optional[str] = None
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    transactions: list[TransactionFact] = Field(default_factory=list)

    @field_validator("transactions", mode="before")
    @classmethod
    def _transactions(cls, value: Any) -> list:
        # Rows without a readable amount are dropped, not the whole statement
        if not isinstance(value, list):
            return []
        rows = []
        for row in value:
            try:
                rows.append(TransactionFact.model_validate(row))
            except ValidationError:
                continue
        return rows


class IdentityFacts(BaseModel):
    document_type: Optional[str] = None
    full_name: Optional[str] = None
    birth_date: Optional[str] = None
    address: Optional[str] = None


class RegistryFacts(BaseModel):
    company_name: Optional[str] = None
    representative_names: list[str] = Field(default_factory=list)
    capital_amount: Amount = None
    established_date: Optional[str] = None
    head_office: Optional[str] = None


class CollateralFacts(RegistryFacts):
    """Registry extract of a collateral counterparty."""


class RelevanceJudgment(BaseModel):
    """Whether a search hit is about the screened person."""

    is_relevant: bool
    reason: str = ""
