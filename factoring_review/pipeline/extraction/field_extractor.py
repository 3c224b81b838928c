"""Key-fact extraction from OCR text.

Typed output is requested first. When the language model has no typed output,
or returns an object that does not validate, the model is asked for
``label: value`` prose that is parsed by the rules in ``utils.parsers``. With
no language model at all the same rules run directly over the OCR text.

Rate limits propagate so the stage retry applies; any other provider error
drops to the next, simpler method.
"""

import logging
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from factoring_review.pipeline.core.config import LLM_PROMPT_TEXT_MAX_CHARS
from factoring_review.pipeline.core.exceptions import ExternalServiceError, RateLimitError
from factoring_review.pipeline.errors.codes import ErrorCode, make_error
from factoring_review.pipeline.models.dto import (
    CategoryExtraction,
    DocumentCategory,
    ExtractedField,
    ExtractionResult,
    FieldKind,
    Transaction,
)
from factoring_review.pipeline.models.facts import (
    BankStatementFacts,
    CollateralFacts,
    IdentityFacts,
    InvoiceFacts,
    RegistryFacts,
    TransactionFact,
)
from factoring_review.pipeline.ports.llm_port import LLMPort
from factoring_review.pipeline.processors.prompts import (
    build_prose_prompt,
    build_structured_prompt,
)
from factoring_review.pipeline.resilience.fan_out import gather_or_cancel
from factoring_review.pipeline.utils.dates import parse_doc_date
from factoring_review.pipeline.utils.parsers import (
    extract_json_object,
    find_amounts,
    parse_amount,
    parse_labeled_lines,
    parse_transaction_lines,
)

logger = logging.getLogger(__name__)

CATEGORY_SCHEMAS: dict[DocumentCategory, type[BaseModel]] = {
    DocumentCategory.INVOICE: InvoiceFacts,
    DocumentCategory.BANK_STATEMENT: BankStatementFacts,
    DocumentCategory.IDENTITY: IdentityFacts,
    DocumentCategory.REGISTRY: RegistryFacts,
    DocumentCategory.COLLATERAL: CollateralFacts,
}

_REGISTRY_ALIASES = {
    "company_name": ("商号", "会社名", "company"),
    "representative_names": ("代表取締役", "代表社員", "代表者", "representative"),
    "capital_amount": ("資本金", "capital"),
    "established_date": ("会社成立の年月日", "設立", "established"),
    "head_office": ("本店", "head office"),
}

LABEL_ALIASES: dict[DocumentCategory, dict[str, tuple[str, ...]]] = {
    DocumentCategory.INVOICE: {
        "issuer_name": ("請求元", "発行元", "issuer"),
        "debtor_name": ("請求先", "宛先", "debtor", "bill to"),
        "total_amount": ("請求金額", "ご請求額", "合計", "total"),
        "issue_date": ("発行日", "請求日", "issue date", "issue_date"),
        "due_date": ("支払期限", "支払期日", "due date", "due_date"),
        "highlighted_items": ("highlight", "マーカー", "強調"),
    },
    DocumentCategory.BANK_STATEMENT: {
        "account_holder": ("口座名義", "名義", "account holder", "account_holder"),
        "bank_name": ("銀行名", "bank"),
    },
    DocumentCategory.IDENTITY: {
        "document_type": ("書類", "document type", "document_type"),
        "full_name": ("氏名", "full name", "full_name", "name"),
        "birth_date": ("生年月日", "birth"),
        "address": ("住所", "address"),
    },
    DocumentCategory.REGISTRY: _REGISTRY_ALIASES,
    DocumentCategory.COLLATERAL: _REGISTRY_ALIASES,
}

_LIST_FIELDS = {"highlighted_items", "representative_names"}
_LIST_SEPARATORS = ("、", ",", "/")

IDENTITY_DOCUMENT_TYPES = (
    "driver_license",
    "passport",
    "my_number_card",
    "health_insurance_card",
    "residence_card",
    "other",
)
_DOCUMENT_TYPE_MARKERS = (
    ("運転免許", "driver_license"),
    ("免許", "driver_license"),
    ("driver", "driver_license"),
    ("パスポート", "passport"),
    ("旅券", "passport"),
    ("passport", "passport"),
    ("マイナンバー", "my_number_card"),
    ("個人番号", "my_number_card"),
    ("my_number", "my_number_card"),
    ("保険証", "health_insurance_card"),
    ("被保険者", "health_insurance_card"),
    ("insurance", "health_insurance_card"),
    ("在留", "residence_card"),
    ("residence", "residence_card"),
)


@dataclass
class DocumentFacts:
    """Typed facts of one document and the method that produced them."""

    document_id: str
    category: DocumentCategory
    facts: BaseModel
    method: str  # structured | prose | text
    role: Optional[str] = None
    annotations: list[dict[str, Any]] = field(default_factory=list)


def canonical_document_type(value: Optional[str]) -> Optional[str]:
    """Map a written identity document type onto the closed set."""
    if not value:
        return None
    text = unicodedata.normalize("NFKC", value).strip().casefold()
    if text in IDENTITY_DOCUMENT_TYPES:
        return text
    for marker, canonical in _DOCUMENT_TYPE_MARKERS:
        if marker in text:
            return canonical
    return "other"


def _split_list(values: list[str]) -> list[str]:
    items: list[str] = []
    for value in values:
        parts = [value]
        for separator in _LIST_SEPARATORS:
            parts = [p for part in parts for p in part.split(separator)]
        items.extend(p.strip() for p in parts if p.strip())
    return items


def _addressee_names(text: str) -> list[str]:
    names = []
    for line in unicodedata.normalize("NFKC", text).splitlines():
        line = line.strip()
        if line.endswith("御中") and len(line) > 2:
            names.append(line[: -len("御中")].strip())
    return names


def parse_prose_facts(category: DocumentCategory, text: str) -> BaseModel:
    """Build the category's facts object from free text with the deterministic rules."""
    schema = CATEGORY_SCHEMAS[category]

    # Label lines inside a JSON object are not labels
    embedded = extract_json_object(text)
    if embedded is not None:
        try:
            return schema.model_validate(embedded)
        except ValidationError:
            logger.warning("Embedded JSON did not match %s", schema.__name__)
            return schema()

    labeled = parse_labeled_lines(text, LABEL_ALIASES[category])
    data: dict[str, Any] = {}
    for name, values in labeled.items():
        data[name] = _split_list(values) if name in _LIST_FIELDS else values[0]

    if category == DocumentCategory.INVOICE:
        if "debtor_name" not in data:
            addressees = _addressee_names(text)
            if addressees:
                data["debtor_name"] = addressees[0]
        if parse_amount(data.get("total_amount")) is None:
            data.pop("total_amount", None)
            amounts = [a for a in find_amounts(text) if a > 0]
            if amounts:
                data["total_amount"] = int(max(amounts))

    if category == DocumentCategory.BANK_STATEMENT:
        data["transactions"] = [
            {
                "date": row["date"].isoformat(),
                "description": row["description"],
                "amount": int(row["amount"]),
                "balance": int(row["balance"]) if row["balance"] is not None else None,
            }
            for row in parse_transaction_lines(text)
        ]

    try:
        return schema.model_validate(data)
    except ValidationError:
        logger.warning("Parsed prose did not validate as %s", schema.__name__)
        return schema()


class FieldExtractor:
    def __init__(
        self,
        llm: Optional[LLMPort] = None,
        prompt_max_chars: int = LLM_PROMPT_TEXT_MAX_CHARS,
    ):
        self.llm = llm
        self.prompt_max_chars = prompt_max_chars

    async def extract_document(self, result: ExtractionResult) -> DocumentFacts:
        """Extract typed facts from one document's OCR text.

        Raises:
            RateLimitError: When the language model is rate limited.
        """
        category = result.category
        schema = CATEGORY_SCHEMAS[category]
        text = result.full_text[: self.prompt_max_chars]
        annotations: list[dict[str, Any]] = []

        if self.llm is not None and getattr(self.llm, "supports_structured_output", False):
            try:
                facts = await self.llm.generate_structured(
                    build_structured_prompt(category, text), schema
                )
                return DocumentFacts(result.document_id, category, facts, "structured", result.role)
            except RateLimitError:
                raise
            except ExternalServiceError as exc:
                logger.warning(
                    "Typed extraction failed, falling back to prose",
                    extra={"document_id": result.document_id, "error_code": exc.error_code},
                )
                annotations.append(
                    make_error(
                        ErrorCode.STRUCTURED_OUTPUT_FALLBACK.value.code,
                        exc.error_code,
                        document_id=result.document_id,
                    )
                )

        if self.llm is not None:
            try:
                prose = await self.llm.generate_text(build_prose_prompt(category, schema, text))
                facts = parse_prose_facts(category, prose)
                return DocumentFacts(
                    result.document_id, category, facts, "prose", result.role, annotations
                )
            except RateLimitError:
                raise
            except ExternalServiceError as exc:
                logger.warning(
                    "Prose extraction failed, parsing OCR text directly",
                    extra={"document_id": result.document_id, "error_code": exc.error_code},
                )

        facts = parse_prose_facts(category, result.full_text)
        return DocumentFacts(result.document_id, category, facts, "text", result.role, annotations)

    async def extract_category(
        self,
        extraction: CategoryExtraction,
        role: Optional[str] = None,
    ) -> list[DocumentFacts]:
        """Extract facts from every successful document of a category concurrently."""
        results = extraction.successful(role)
        return await gather_or_cancel(*(self.extract_document(r) for r in results))


# ----------------------------------------------------------------------------
# Facts to reconcilable fields
# ----------------------------------------------------------------------------


def invoice_fields(documents: list[DocumentFacts]) -> list[ExtractedField]:
    fields: list[ExtractedField] = []
    for doc in documents:
        facts: InvoiceFacts = doc.facts  # type: ignore[assignment]
        issued = parse_doc_date(facts.issue_date)
        if facts.debtor_name:
            fields.append(
                ExtractedField(
                    name="debtor_name",
                    value=facts.debtor_name,
                    kind=FieldKind.TEXT,
                    source_document_id=doc.document_id,
                )
            )
        amounts = [facts.total_amount] if facts.total_amount is not None else facts.line_amounts
        for amount in amounts:
            fields.append(
                ExtractedField(
                    name="invoice_amount",
                    value=parse_amount(amount),
                    kind=FieldKind.MONEY,
                    source_document_id=doc.document_id,
                    observed_on=issued,
                    label=facts.debtor_name,
                )
            )
        for item in facts.highlighted_items:
            fields.append(
                ExtractedField(
                    name="highlighted_item",
                    value=item,
                    kind=FieldKind.TEXT,
                    source_document_id=doc.document_id,
                )
            )
    return fields


def statement_transactions(documents: list[DocumentFacts]) -> list[Transaction]:
    transactions: list[Transaction] = []
    for doc in documents:
        facts: BankStatementFacts = doc.facts  # type: ignore[assignment]
        for row in facts.transactions:
            transactions.append(_to_transaction(row, doc))
    return transactions


def _to_transaction(row: TransactionFact, doc: DocumentFacts) -> Transaction:
    return Transaction(
        transaction_date=parse_doc_date(row.date),
        description=row.description,
        amount=parse_amount(row.amount),
        balance=parse_amount(row.balance),
        account=doc.role or "main",
        source_document_id=doc.document_id,
    )


def identity_fields(documents: list[DocumentFacts]) -> list[ExtractedField]:
    fields: list[ExtractedField] = []
    for doc in documents:
        facts: IdentityFacts = doc.facts  # type: ignore[assignment]
        values = (
            ("full_name", facts.full_name, FieldKind.TEXT),
            ("birth_date", facts.birth_date, FieldKind.DATE),
            ("document_type", canonical_document_type(facts.document_type), FieldKind.ENUM),
            ("address", facts.address, FieldKind.TEXT),
        )
        for name, value, kind in values:
            if value:
                fields.append(
                    ExtractedField(
                        name=name, value=value, kind=kind, source_document_id=doc.document_id
                    )
                )
    return fields


def registry_fields(documents: list[DocumentFacts]) -> list[ExtractedField]:
    fields: list[ExtractedField] = []
    for doc in documents:
        facts: RegistryFacts = doc.facts  # type: ignore[assignment]
        if facts.company_name:
            fields.append(
                ExtractedField(
                    name="company_name",
                    value=facts.company_name,
                    kind=FieldKind.TEXT,
                    source_document_id=doc.document_id,
                )
            )
        for representative in facts.representative_names:
            fields.append(
                ExtractedField(
                    name="representative_name",
                    value=representative,
                    kind=FieldKind.TEXT,
                    source_document_id=doc.document_id,
                    label=facts.company_name,
                )
            )
        if facts.capital_amount is not None:
            fields.append(
                ExtractedField(
                    name="capital_amount",
                    value=parse_amount(facts.capital_amount),
                    kind=FieldKind.MONEY,
                    source_document_id=doc.document_id,
                    label=facts.company_name,
                )
            )
        if facts.established_date:
            fields.append(
                ExtractedField(
                    name="established_date",
                    value=facts.established_date,
                    kind=FieldKind.DATE,
                    source_document_id=doc.document_id,
                    observed_on=parse_doc_date(facts.established_date),
                    label=facts.company_name,
                )
            )
    return fields
