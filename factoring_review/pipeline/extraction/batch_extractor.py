"""Sequential batched text extraction for paged documents.

Pages are requested in contiguous batches no larger than the provider's
per-call limit, strictly in increasing order. When the page count is not known
up front, the first batch call doubles as the probe: a ``totalPages`` on its
response settles the count, otherwise PageProbe is consulted.

Stop conditions:
- "invalid pages" on a batch whose range is known to exist is the EOF marker;
  no later batch is attempted.
- Any other provider failure stops the document but keeps earlier batches.
"""

import logging
from typing import Optional

from factoring_review.pipeline.core.config import OCR_PAGES_PER_CALL, TOKEN_TEXT_HEADER
from factoring_review.pipeline.core.exceptions import (
    ExtractionPageBoundaryError,
    ExtractionProviderError,
    RateLimitError,
)
from factoring_review.pipeline.extraction.page_probe import PageProbe
from factoring_review.pipeline.models.dto import (
    BatchStatus,
    ExtractionBatch,
    ExtractionResult,
    SourceDocument,
)
from factoring_review.pipeline.ports.ocr_port import OCRPort, PageText

logger = logging.getLogger(__name__)


def page_text(page: PageText) -> str:
    """Both text modes of one page: block text, then de-duplicated tokens."""
    parts = [page.block_text.strip()]
    if page.tokens:
        parts.append(TOKEN_TEXT_HEADER)
        parts.append(" ".join(page.tokens))
    return "\n".join(p for p in parts if p)


class BatchExtractor:
    def __init__(
        self,
        ocr: OCRPort,
        pages_per_call: int = OCR_PAGES_PER_CALL,
        probe: Optional[PageProbe] = None,
    ):
        self.ocr = ocr
        self.pages_per_call = pages_per_call
        self.probe = probe or PageProbe(ocr)

    async def extract(
        self,
        document: SourceDocument,
        content: bytes,
        max_pages: int,
    ) -> ExtractionResult:
        """Extract text for pages 1..min(totalPages, max_pages) in order.

        Returns:
            ExtractionResult without cost and token estimates.
        """
        limit: Optional[int] = None
        page_limit_reached = False
        if document.total_pages is not None:
            limit = min(document.total_pages, max_pages)
            page_limit_reached = document.total_pages > max_pages

        batches: list[ExtractionBatch] = []
        provider_error: Optional[str] = None
        rate_limited = False
        eof_reached = False
        highest_attempted = 0
        next_page = 1

        while True:
            bound = limit if limit is not None else max_pages
            if next_page > bound:
                break
            end = min(next_page + self.pages_per_call - 1, bound)
            pages = list(range(next_page, end + 1))
            highest_attempted = max(highest_attempted, end)

            try:
                annotation = await self.ocr.annotate_pages(
                    content, pages, document.content_type
                )
            except ExtractionPageBoundaryError as exc:
                if limit is None:
                    probe = await self.probe.probe(
                        content,
                        document.content_type,
                        max_pages,
                        known_good=next_page - 1,
                        document_id=document.id,
                    )
                    limit = probe.total_pages
                    page_limit_reached = probe.source == "capped"
                    if probe.provider_error:
                        provider_error = probe.provider_error
                        rate_limited = probe.rate_limited
                    if limit >= next_page:
                        continue
                batches.append(self._failed(document.id, pages, exc.message))
                eof_reached = True
                break
            except (RateLimitError, ExtractionProviderError) as exc:
                logger.warning(
                    "OCR batch %d-%d failed; keeping %d earlier batches",
                    pages[0],
                    pages[-1],
                    len(batches),
                    extra={"document_id": document.id, "error_code": exc.error_code},
                )
                batches.append(self._failed(document.id, pages, exc.message))
                provider_error = exc.message
                rate_limited = isinstance(exc, RateLimitError)
                break

            batches.append(
                ExtractionBatch(
                    document_id=document.id,
                    page_range=(pages[0], pages[-1]),
                    status=BatchStatus.DONE,
                    text="\n\n".join(page_text(p) for p in annotation.pages),
                    per_page_confidence=[p.confidence for p in annotation.pages],
                )
            )

            if limit is None:
                if annotation.total_pages:
                    limit = min(annotation.total_pages, max_pages)
                    page_limit_reached = annotation.total_pages > max_pages
                else:
                    probe = await self.probe.probe(
                        content,
                        document.content_type,
                        max_pages,
                        known_good=end,
                        document_id=document.id,
                    )
                    limit = probe.total_pages
                    page_limit_reached = probe.source == "capped"
                    if probe.provider_error:
                        provider_error = probe.provider_error
                        rate_limited = probe.rate_limited

            next_page = end + 1

        done = [b for b in batches if b.status == BatchStatus.DONE]
        confidence = 0.0
        if done and done[0].per_page_confidence:
            confidence = done[0].per_page_confidence[0]

        return ExtractionResult(
            document_id=document.id,
            category=document.category,
            role=document.role,
            full_text="\n\n".join(b.text for b in done if b.text),
            pages_processed=sum(len(b.per_page_confidence) for b in done),
            requested_pages=limit if limit is not None else highest_attempted,
            confidence=confidence,
            batches=batches,
            provider_error=provider_error,
            eof_reached=eof_reached,
            rate_limited=rate_limited,
            page_limit_reached=page_limit_reached,
        )

    @staticmethod
    def _failed(document_id: str, pages: list[int], error: str) -> ExtractionBatch:
        return ExtractionBatch(
            document_id=document_id,
            page_range=(pages[0], pages[-1]),
            status=BatchStatus.FAILED,
            error=error,
        )
