"""Per-document and per-category extraction.

A document job fetches the attachment bytes, routes images to the single-image
call and paged documents to BatchExtractor, then attaches cost and token
estimates. Fetch failures and unsupported types become skipped documents;
nothing raised inside a document escapes the job.

A category runs its documents concurrently and merges the results once, in
attachment order. If every document of a category was stopped by a provider
rate limit, the category raises RateLimitError so the stage-level retry can
take over.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

from factoring_review.pipeline.core.config import (
    DEFAULT_MAX_PAGES,
    MAX_PAGES_BY_CATEGORY,
    OCR_COST_PER_PAGE_USD,
    SUPPORTED_IMAGE_TYPES,
    SUPPORTED_PAGED_TYPES,
)
from factoring_review.pipeline.core.exceptions import (
    AttachmentFetchError,
    ExtractionProviderError,
    RateLimitError,
)
from factoring_review.pipeline.errors.codes import ErrorCode
from factoring_review.pipeline.extraction.batch_extractor import BatchExtractor, page_text
from factoring_review.pipeline.models.dto import (
    AttachmentDescriptor,
    BatchStatus,
    CategoryExtraction,
    DocumentCategory,
    ExtractionBatch,
    ExtractionResult,
    MimeKind,
    SkippedDocument,
    SourceDocument,
)
from factoring_review.pipeline.ports.ocr_port import OCRPort
from factoring_review.pipeline.ports.record_store_port import RecordStorePort
from factoring_review.pipeline.resilience.fan_out import gather_or_cancel
from factoring_review.pipeline.utils.parsers import estimate_tokens

logger = logging.getLogger(__name__)


def mime_kind_for(content_type: str) -> Optional[MimeKind]:
    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type in SUPPORTED_PAGED_TYPES:
        return MimeKind.PAGED
    if content_type in SUPPORTED_IMAGE_TYPES:
        return MimeKind.IMAGE
    return None


def build_source_documents(
    category: DocumentCategory,
    attachments: list[AttachmentDescriptor],
) -> list[SourceDocument]:
    """Create the immutable document descriptors for one category."""
    return [
        SourceDocument(
            id=f"{category.value}-{index + 1}",
            category=category,
            mime_kind=mime_kind_for(attachment.content_type),
            name=attachment.name,
            content_key=attachment.content_key,
            content_type=attachment.content_type,
            role=attachment.role,
            total_pages=attachment.total_pages,
        )
        for index, attachment in enumerate(attachments)
    ]


def max_pages_for(category: DocumentCategory) -> int:
    return MAX_PAGES_BY_CATEGORY.get(category.value, DEFAULT_MAX_PAGES)


@dataclass
class DocumentExtractionJob:
    ocr: OCRPort
    record_store: RecordStorePort
    batch_extractor: Optional[BatchExtractor] = None
    cost_per_page: float = OCR_COST_PER_PAGE_USD

    def __post_init__(self) -> None:
        if self.batch_extractor is None:
            self.batch_extractor = BatchExtractor(self.ocr)

    async def run(
        self,
        document: SourceDocument,
        max_pages: Optional[int] = None,
    ) -> Union[ExtractionResult, SkippedDocument]:
        """Extract one document; never raises for per-file or per-batch errors."""
        if document.mime_kind is None:
            return self._skip(
                document,
                ErrorCode.UNSUPPORTED_CONTENT_TYPE.value.code,
                document.content_type,
            )

        try:
            content = await self.record_store.fetch_attachment(document.content_key)
        except AttachmentFetchError as exc:
            logger.warning(
                "Attachment fetch failed: %s",
                exc.reason,
                extra={"document_id": document.id, "error_code": exc.error_code},
            )
            return self._skip(document, ErrorCode.ATTACHMENT_FETCH_FAILED.value.code, exc.reason)

        limit = max_pages or max_pages_for(document.category)
        if document.mime_kind == MimeKind.IMAGE:
            result = await self._extract_image(document, content)
        else:
            result = await self.batch_extractor.extract(document, content, limit)

        result = result.model_copy(
            update={
                "cost_estimate": round(result.pages_processed * self.cost_per_page, 6),
                "token_estimate": estimate_tokens(result.full_text),
            }
        )
        logger.info(
            "Extracted %d/%d pages",
            result.pages_processed,
            result.requested_pages,
            extra={"document_id": document.id},
        )
        return result

    async def _extract_image(self, document: SourceDocument, content: bytes) -> ExtractionResult:
        try:
            page = await self.ocr.annotate_image(content)
        except (RateLimitError, ExtractionProviderError) as exc:
            return ExtractionResult(
                document_id=document.id,
                category=document.category,
                role=document.role,
                requested_pages=1,
                batches=[
                    ExtractionBatch(
                        document_id=document.id,
                        page_range=(1, 1),
                        status=BatchStatus.FAILED,
                        error=exc.message,
                    )
                ],
                provider_error=exc.message,
                rate_limited=isinstance(exc, RateLimitError),
            )

        text = page_text(page)
        return ExtractionResult(
            document_id=document.id,
            category=document.category,
            role=document.role,
            full_text=text,
            pages_processed=1,
            requested_pages=1,
            confidence=page.confidence,
            batches=[
                ExtractionBatch(
                    document_id=document.id,
                    page_range=(1, 1),
                    status=BatchStatus.DONE,
                    text=text,
                    per_page_confidence=[page.confidence],
                )
            ],
        )

    async def run_category(
        self,
        category: DocumentCategory,
        documents: list[SourceDocument],
        max_pages: Optional[int] = None,
    ) -> CategoryExtraction:
        """Extract every document of a category concurrently.

        Raises:
            RateLimitError: When every document was stopped by a rate limit.
        """
        outcomes = await gather_or_cancel(*(self.run(doc, max_pages) for doc in documents))

        extraction = CategoryExtraction(category=category)
        for outcome in outcomes:
            if isinstance(outcome, SkippedDocument):
                extraction.skipped.append(outcome)
            else:
                extraction.results.append(outcome)

        if extraction.results and all(
            r.rate_limited and not r.success for r in extraction.results
        ):
            raise RateLimitError("OCR", details={"category": category.value})

        return extraction

    @staticmethod
    def _skip(document: SourceDocument, reason_code: str, detail: Optional[str]) -> SkippedDocument:
        return SkippedDocument(
            document_id=document.id,
            name=document.name,
            category=document.category,
            reason_code=reason_code,
            detail=detail,
        )
