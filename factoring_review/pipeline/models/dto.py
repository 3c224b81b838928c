"""Data models passed between pipeline components.

Reference data fetched from the record store is frozen for the lifetime of a
case. Extraction, reconciliation and enrichment outputs are written once by
the stage that produces them.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class DocumentCategory(str, Enum):
    INVOICE = "invoice"
    BANK_STATEMENT = "bank_statement"
    IDENTITY = "identity"
    REGISTRY = "registry"
    COLLATERAL = "collateral"


class MimeKind(str, Enum):
    IMAGE = "image"
    PAGED = "paged"


# ----------------------------------------------------------------------------
# Reference data
# ----------------------------------------------------------------------------


class AttachmentDescriptor(BaseModel):
    """Attachment as listed on the case record; bytes are fetched lazily."""

    model_config = ConfigDict(frozen=True)

    content_key: str
    name: str
    content_type: str = "application/octet-stream"
    size: Optional[int] = None
    role: Optional[str] = None  # "main" / "sub" for bank statements
    total_pages: Optional[int] = None


class PurchaseItem(BaseModel):
    """A receivable being purchased."""

    model_config = ConfigDict(frozen=True)

    debtor_name: Optional[str] = None
    face_amount: Optional[Decimal] = None
    paid_amount: Optional[Decimal] = None


class CollateralItem(BaseModel):
    """A counterparty whose future payments back the purchase.

    ``past_payments`` maps ``YYYY-MM`` to the inflow recorded for that month.
    """

    model_config = ConfigDict(frozen=True)

    company_name: Optional[str] = None
    next_payment_amount: Optional[Decimal] = None
    past_payments: dict[str, Optional[Decimal]] = Field(default_factory=dict)


class CaseRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    case_id: str
    applicant_company: Optional[str] = None
    representative_name: Optional[str] = None
    representative_birth_date: Optional[date] = None
    industry: Optional[str] = None
    purchases: list[PurchaseItem] = Field(default_factory=list)
    collaterals: list[CollateralItem] = Field(default_factory=list)
    attachments: dict[DocumentCategory, list[AttachmentDescriptor]] = Field(
        default_factory=dict
    )


class SourceDocument(BaseModel):
    """One attachment to extract. ``mime_kind`` is None for unsupported types."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: DocumentCategory
    mime_kind: Optional[MimeKind]
    name: str
    content_key: str
    content_type: str
    role: Optional[str] = None
    total_pages: Optional[int] = None


# ----------------------------------------------------------------------------
# Extraction
# ----------------------------------------------------------------------------


class BatchStatus(str, Enum):
    DONE = "done"
    FAILED = "failed"


class ExtractionBatch(BaseModel):
    document_id: str
    page_range: tuple[int, int]
    status: BatchStatus
    text: str = ""
    per_page_confidence: list[float] = Field(default_factory=list)
    error: Optional[str] = None


class ExtractionResult(BaseModel):
    document_id: str
    category: DocumentCategory
    role: Optional[str] = None
    full_text: str = ""
    pages_processed: int = 0
    requested_pages: int = 0
    confidence: float = 0.0
    cost_estimate: float = 0.0
    token_estimate: int = 0
    batches: list[ExtractionBatch] = Field(default_factory=list)
    provider_error: Optional[str] = None
    eof_reached: bool = False
    rate_limited: bool = False
    page_limit_reached: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        return any(b.status == BatchStatus.DONE for b in self.batches)


class SkippedDocument(BaseModel):
    document_id: str
    name: str
    category: DocumentCategory
    reason_code: str
    detail: Optional[str] = None


class CategoryExtraction(BaseModel):
    """All extraction results of one document category, in attachment order."""

    category: DocumentCategory
    results: list[ExtractionResult] = Field(default_factory=list)
    skipped: list[SkippedDocument] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def cost_estimate(self) -> float:
        return round(sum(r.cost_estimate for r in self.results), 6)

    @computed_field  # type: ignore[misc]
    @property
    def token_estimate(self) -> int:
        return sum(r.token_estimate for r in self.results)

    @computed_field  # type: ignore[misc]
    @property
    def pages_processed(self) -> int:
        return sum(r.pages_processed for r in self.results)

    @property
    def degraded(self) -> bool:
        return bool(self.skipped) or any(
            not r.success or r.provider_error for r in self.results
        )

    def successful(self, role: Optional[str] = None) -> list[ExtractionResult]:
        return [
            r
            for r in self.results
            if r.success and (role is None or r.role == role)
        ]


# ----------------------------------------------------------------------------
# Reconciliation
# ----------------------------------------------------------------------------


class FieldKind(str, Enum):
    MONEY = "money"
    DATE = "date"
    TEXT = "text"
    ENUM = "enum"


class ExtractedField(BaseModel):
    name: str
    value: Any
    kind: FieldKind
    source_document_id: Optional[str] = None
    observed_on: Optional[date] = None
    label: Optional[str] = None


class ReferenceField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    expected_value: Any = None
    kind: FieldKind
    allowed_values: Optional[tuple[str, ...]] = None

    @property
    def is_present(self) -> bool:
        if self.expected_value is None:
            return False
        if isinstance(self.expected_value, str):
            return bool(self.expected_value.strip())
        return True


class MatchStatus(str, Enum):
    MATCH = "match"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"


class MatchStrategy(str, Enum):
    EXACT = "exact"
    NORMALIZED = "normalized"
    CONTAINMENT = "containment"
    SPLIT_SUM = "split-sum"


class ReconciliationEntry(BaseModel):
    field: str
    expected: Any
    found: Any = None
    status: MatchStatus
    match_strategy: Optional[MatchStrategy] = None
    confidence: float = 0.0
    source_document_ids: list[str] = Field(default_factory=list)
    ambiguous: bool = False

    @model_validator(mode="after")
    def _found_matches_status(self) -> "ReconciliationEntry":
        if (self.status == MatchStatus.NOT_FOUND) != (self.found is None):
            raise ValueError("status is not_found exactly when found is absent")
        return self


class ReconciliationReport(BaseModel):
    """Entries per reference field.

    ``input_missing`` is set when no document of the category was read, so
    every entry is ``not_found`` for lack of input rather than on evidence.
    """

    entries: list[ReconciliationEntry] = Field(default_factory=list)
    annotations: list[dict[str, Any]] = Field(default_factory=list)
    input_missing: bool = False

    def count(self, status: MatchStatus) -> int:
        return sum(1 for e in self.entries if e.status == status)

    def entries_with_prefix(self, prefix: str) -> list[ReconciliationEntry]:
        return [e for e in self.entries if e.field.startswith(prefix)]


# ----------------------------------------------------------------------------
# Bank statements
# ----------------------------------------------------------------------------


class Transaction(BaseModel):
    """One statement line. Positive amounts are inflows."""

    transaction_date: Optional[date] = None
    description: str = ""
    amount: Decimal
    balance: Optional[Decimal] = None
    account: str = "main"
    source_document_id: Optional[str] = None


class BankRiskFlag(BaseModel):
    kind: str
    description: str
    amount: Optional[Decimal] = None
    transaction_date: Optional[date] = None
    account: Optional[str] = None


class BankRiskReport(BaseModel):
    flags: list[BankRiskFlag] = Field(default_factory=list)

    def of_kind(self, kind: str) -> list[BankRiskFlag]:
        return [f for f in self.flags if f.kind == kind]


class BankReconciliation(BaseModel):
    report: ReconciliationReport
    risks: BankRiskReport
    transactions: list[Transaction] = Field(default_factory=list)


class RegistryReconciliation(BaseModel):
    """Registry checks plus the people to screen for negative news."""

    report: ReconciliationReport
    unmatched_debtors: list[str] = Field(default_factory=list)
    representative_names: list[str] = Field(default_factory=list)


# ----------------------------------------------------------------------------
# Enrichment
# ----------------------------------------------------------------------------


class SearchHit(BaseModel):
    title: str = ""
    url: str = ""
    snippet: str = ""


class CompanyVerification(BaseModel):
    name: str
    verified: bool = False
    confidence: int = 0
    website_url: Optional[str] = None
    relevant_hits: int = 0
    total_hits: int = 0
    errors: list[str] = Field(default_factory=list)


class NegativeNewsHit(BaseModel):
    query: str
    title: str
    url: str
    snippet: str = ""
    relevant: bool = False
    reason: Optional[str] = None


class NegativeNewsResult(BaseModel):
    name: str
    hits: list[NegativeNewsHit] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[misc]
    @property
    def has_negative_info(self) -> bool:
        return any(h.relevant for h in self.hits)


# ----------------------------------------------------------------------------
# Scoring and report
# ----------------------------------------------------------------------------


class SubScore(BaseModel):
    name: str
    points: float
    max_points: float
    band: str
    value: Optional[float] = None
    input_missing: bool = False


class CaseScore(BaseModel):
    sub_scores: list[SubScore]
    total_score: float
    max_score: float
    recommendation: str
    risk_level: str
    complete: bool
    missing_inputs: list[str] = Field(default_factory=list)


class CaseEvaluation(BaseModel):
    case_id: str
    status: str
    score: Optional[CaseScore] = None
    score_complete: bool = False
    stages: list[dict[str, Any]] = Field(default_factory=list)
    skipped_documents: list[SkippedDocument] = Field(default_factory=list)
    reconciliation: dict[str, list[ReconciliationEntry]] = Field(default_factory=dict)
    bank_risks: list[BankRiskFlag] = Field(default_factory=list)
    unmatched_debtors: list[str] = Field(default_factory=list)
    company_verifications: list[CompanyVerification] = Field(default_factory=list)
    negative_news: list[NegativeNewsResult] = Field(default_factory=list)
    annotations: list[dict[str, Any]] = Field(default_factory=list)
    cost: dict[str, Any] = Field(default_factory=dict)
    duration_seconds: float = 0.0
