"""kintone REST client implementing RecordStorePort.

Reads one case record and maps its field codes onto ``CaseRecord``. Field
codes are configurable through ``RecordFieldMap``; the defaults match the
underwriting app layout.
"""

import logging
from datetime import date
from typing import Any, Callable, Optional

import httpx
from pydantic import BaseModel, Field

from factoring_review.core.logging_utils import sanitize_case_id
from factoring_review.pipeline.clients.http_utils import error_message, parse_retry_after
from factoring_review.pipeline.core.config import (
    MAX_ATTACHMENT_BYTES,
    RECORD_STORE_TIMEOUT_SECONDS,
)
from factoring_review.pipeline.core.exceptions import (
    AttachmentFetchError,
    ExternalServiceError,
    RateLimitError,
)
from factoring_review.pipeline.models.dto import (
    AttachmentDescriptor,
    CaseRecord,
    CollateralItem,
    DocumentCategory,
    PurchaseItem,
)
from factoring_review.pipeline.utils.dates import month_key, parse_doc_date, shift_month
from factoring_review.pipeline.utils.parsers import parse_amount

logger = logging.getLogger(__name__)


class AttachmentField(BaseModel):
    field_code: str
    category: DocumentCategory
    role: Optional[str] = None


class RecordFieldMap(BaseModel):
    """Field codes of the case app."""

    applicant_company: str = "屋号"
    representative_name: str = "代表者名"
    representative_birth_date: str = "生年月日"
    industry: str = "業種"

    purchase_table: str = "買取情報"
    purchase_debtor: str = "会社名_第三債務者_買取"
    purchase_face_amount: str = "総債権額"
    purchase_paid_amount: str = "買取額"

    collateral_table: str = "担保情報"
    collateral_company: str = "会社名_第三債務者_担保"
    collateral_next_payment: str = "次回入金予定額"
    # Past inflow columns with their month offset from the evaluation date
    collateral_past_payments: dict[str, int] = Field(
        default_factory=lambda: {
            "過去の入金_先々月": -2,
            "過去の入金_先月": -1,
            "過去の入金_今月": 0,
        }
    )

    attachments: list[AttachmentField] = Field(
        default_factory=lambda: [
            AttachmentField(field_code="成因証書＿添付ファイル", category=DocumentCategory.INVOICE),
            AttachmentField(
                field_code="メイン通帳＿添付ファイル",
                category=DocumentCategory.BANK_STATEMENT,
                role="main",
            ),
            AttachmentField(
                field_code="その他通帳＿添付ファイル",
                category=DocumentCategory.BANK_STATEMENT,
                role="sub",
            ),
            AttachmentField(field_code="顧客情報＿添付ファイル", category=DocumentCategory.IDENTITY),
            AttachmentField(field_code="登記情報＿添付ファイル", category=DocumentCategory.REGISTRY),
            AttachmentField(field_code="担保情報＿添付ファイル", category=DocumentCategory.COLLATERAL),
        ]
    )


def _value(fields: dict, code: str) -> Any:
    entry = fields.get(code)
    if not isinstance(entry, dict):
        return None
    value = entry.get("value")
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _rows(fields: dict, code: str) -> list[dict]:
    rows = _value(fields, code) or []
    return [row.get("value", {}) for row in rows if isinstance(row, dict)]


def map_record(
    case_id: str,
    fields: dict,
    field_map: RecordFieldMap,
    as_of: date,
) -> CaseRecord:
    """Map a kintone record onto ``CaseRecord``."""
    purchases = [
        PurchaseItem(
            debtor_name=_value(row, field_map.purchase_debtor),
            face_amount=parse_amount(_value(row, field_map.purchase_face_amount)),
            paid_amount=parse_amount(_value(row, field_map.purchase_paid_amount)),
        )
        for row in _rows(fields, field_map.purchase_table)
    ]

    collaterals = []
    for row in _rows(fields, field_map.collateral_table):
        past = {
            month_key(shift_month(as_of, offset)): parse_amount(_value(row, code))
            for code, offset in field_map.collateral_past_payments.items()
        }
        collaterals.append(
            CollateralItem(
                company_name=_value(row, field_map.collateral_company),
                next_payment_amount=parse_amount(_value(row, field_map.collateral_next_payment)),
                past_payments=past,
            )
        )

    attachments: dict[DocumentCategory, list[AttachmentDescriptor]] = {}
    for mapping in field_map.attachments:
        for item in _value(fields, mapping.field_code) or []:
            size = item.get("size")
            attachments.setdefault(mapping.category, []).append(
                AttachmentDescriptor(
                    content_key=item["fileKey"],
                    name=item.get("name", item["fileKey"]),
                    content_type=item.get("contentType") or "application/octet-stream",
                    size=int(size) if size not in (None, "") else None,
                    role=mapping.role,
                )
            )

    return CaseRecord(
        case_id=case_id,
        applicant_company=_value(fields, field_map.applicant_company),
        representative_name=_value(fields, field_map.representative_name),
        representative_birth_date=parse_doc_date(_value(fields, field_map.representative_birth_date)),
        industry=_value(fields, field_map.industry),
        purchases=purchases,
        collaterals=collaterals,
        attachments=attachments,
    )


class KintoneRecordStoreClient:
    def __init__(
        self,
        base_url: str,
        api_token: str,
        app_id: str,
        field_map: Optional[RecordFieldMap] = None,
        timeout: float = RECORD_STORE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_attachment_bytes: int = MAX_ATTACHMENT_BYTES,
        today: Callable[[], date] = date.today,
    ):
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id
        self.field_map = field_map or RecordFieldMap()
        self.max_attachment_bytes = max_attachment_bytes
        self._today = today
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"X-Cybozu-API-Token": api_token},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_case(self, case_id: str) -> Optional[CaseRecord]:
        try:
            resp = await self._client.get(
                f"{self.base_url}/k/v1/records.json",
                params={"app": self.app_id, "query": f'$id = "{case_id}"'},
            )
        except httpx.TimeoutException as exc:
            raise ExternalServiceError("RECORD_STORE", "timeout") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                "RECORD_STORE", "unavailable", details={"reason": str(exc)}
            ) from exc

        if resp.status_code == 429:
            raise RateLimitError("RECORD_STORE", retry_after=parse_retry_after(resp))
        if resp.status_code >= 400:
            raise ExternalServiceError(
                "RECORD_STORE",
                "error",
                details={"http_code": resp.status_code, "body": error_message(resp)},
            )

        records = resp.json().get("records") or []
        if not records:
            logger.info("Case record not found", extra={"case_id": sanitize_case_id(case_id)})
            return None

        return map_record(case_id, records[0], self.field_map, self._today())

    async def fetch_attachment(self, content_key: str) -> bytes:
        try:
            resp = await self._client.get(
                f"{self.base_url}/k/v1/file.json", params={"fileKey": content_key}
            )
        except httpx.HTTPError as exc:
            raise AttachmentFetchError(content_key, "network", details={"detail": str(exc)}) from exc

        if resp.status_code >= 400:
            raise AttachmentFetchError(content_key, f"http_{resp.status_code}")

        content = resp.content
        if len(content) > self.max_attachment_bytes:
            raise AttachmentFetchError(
                content_key,
                "too_large",
                details={"size": len(content), "max_size": self.max_attachment_bytes},
            )
        return content
