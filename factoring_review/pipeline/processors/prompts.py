"""Prompt templates for field extraction and relevance judgment."""

import json

from pydantic import BaseModel

from factoring_review.pipeline.models.dto import DocumentCategory

CATEGORY_DESCRIPTIONS = {
    DocumentCategory.INVOICE: "an invoice (請求書) issued by the applicant",
    DocumentCategory.BANK_STATEMENT: "a bank statement or passbook (通帳)",
    DocumentCategory.IDENTITY: "an identity document (本人確認書類)",
    DocumentCategory.REGISTRY: "a corporate registry extract (登記簿謄本)",
    DocumentCategory.COLLATERAL: "a registry extract of a collateral counterparty",
}

STRUCTURED_TEMPLATE = """You are reading OCR text of {description}.
Extract the fields of the schema. Use null for anything not written in the text.
Write amounts as integers in yen and dates exactly as printed.
Text after "--- individual tokens ---" lists words the OCR saw separately,
including highlighted or handwritten marks.

OCR TEXT:
{text}
"""

PROSE_TEMPLATE = """You are reading OCR text of {description}.
Answer with one "label: value" line per field below, using null when absent.
Bank statement rows go one per line as "YYYY-MM-DD description amount balance",
with a leading minus for withdrawals.

FIELDS:
{fields}

OCR TEXT:
{text}
"""

RELEVANCE_TEMPLATE = """Decide whether this search result reports wrongdoing by the
person named "{name}" (not a namesake, not a victim, not a general article).

TITLE: {title}
SNIPPET: {snippet}
URL: {url}
"""


def build_structured_prompt(category: DocumentCategory, text: str) -> str:
    return STRUCTURED_TEMPLATE.format(
        description=CATEGORY_DESCRIPTIONS[category], text=text
    )


def build_prose_prompt(
    category: DocumentCategory, schema: type[BaseModel], text: str
) -> str:
    fields = "\n".join(f"- {name}" for name in schema.model_fields)
    return PROSE_TEMPLATE.format(
        description=CATEGORY_DESCRIPTIONS[category], fields=fields, text=text
    )


def build_relevance_prompt(name: str, title: str, snippet: str, url: str) -> str:
    return RELEVANCE_TEMPLATE.format(
        name=name,
        title=json.dumps(title, ensure_ascii=False),
        snippet=json.dumps(snippet, ensure_ascii=False),
        url=url,
    )
