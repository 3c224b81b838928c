"""Page-count discovery for paged documents.

The OCR provider does not always report how many pages a file has, and it
rejects a whole request when any requested page is past the end of the file.
The probe finds the real count with as few single-page calls as possible:

1. A count already reported by the provider is accepted without calls.
2. Page 1 is requested; a reported ``totalPages`` on that response wins.
3. Otherwise the probe strides forward until a page is rejected with the
   "invalid pages" signal, then bisects inside the last stride.

Any other provider failure stops probing and the last page known to exist
is used as the count.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from factoring_review.pipeline.core.config import PAGE_PROBE_STRIDE
from factoring_review.pipeline.core.exceptions import (
    ExtractionPageBoundaryError,
    ExtractionProviderError,
    RateLimitError,
)
from factoring_review.pipeline.ports.ocr_port import OCRPort

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    total_pages: int
    calls: int = 0
    source: str = "probed"  # reported | probed | capped
    provider_error: Optional[str] = None
    rate_limited: bool = False


class _ReportedTotal(Exception):
    def __init__(self, total: int):
        self.total = total


class PageProbe:
    def __init__(self, ocr: OCRPort, stride: int = PAGE_PROBE_STRIDE):
        self.ocr = ocr
        self.stride = stride

    async def probe(
        self,
        content: bytes,
        mime_type: str,
        max_pages: int,
        *,
        reported_total: Optional[int] = None,
        known_good: int = 0,
        document_id: Optional[str] = None,
    ) -> ProbeResult:
        """Return the page count of ``content``, capped at ``max_pages``.

        Args:
            content: Document bytes
            mime_type: Document MIME type passed to the provider
            max_pages: Upper bound; larger documents report ``source="capped"``
            reported_total: Count already reported by the provider, if any
            known_good: Highest page already known to exist
            document_id: Used for log context only
        """
        if reported_total is not None:
            return self._from_reported(reported_total, max_pages, calls=0)

        calls = 0
        low = min(known_good, max_pages)
        high: Optional[int] = None

        async def exists(page: int) -> bool:
            nonlocal calls
            calls += 1
            try:
                annotation = await self.ocr.annotate_pages(content, [page], mime_type)
            except ExtractionPageBoundaryError:
                return False
            if annotation.total_pages:
                raise _ReportedTotal(annotation.total_pages)
            return True

        try:
            if low < 1:
                if not await exists(1):
                    return ProbeResult(total_pages=0, calls=calls)
                low = 1

            page = low + self.stride
            while page <= max_pages:
                if not await exists(page):
                    high = page
                    break
                low = page
                page += self.stride

            if high is None:
                if low < max_pages:
                    if await exists(max_pages):
                        low = max_pages
                    else:
                        high = max_pages
                if high is None:
                    # Only a page past the cap shows that pages were cut
                    source = "capped" if await exists(max_pages + 1) else "probed"
                    return ProbeResult(total_pages=max_pages, calls=calls, source=source)

            while high - low > 1:
                middle = (low + high) // 2
                if await exists(middle):
                    low = middle
                else:
                    high = middle

        except _ReportedTotal as reported:
            return self._from_reported(reported.total, max_pages, calls=calls)
        except (RateLimitError, ExtractionProviderError) as exc:
            logger.warning(
                "Page probe stopped by provider error; using last known page %d",
                low,
                extra={"document_id": document_id, "error_code": exc.error_code},
            )
            return ProbeResult(
                total_pages=low,
                calls=calls,
                provider_error=exc.message,
                rate_limited=isinstance(exc, RateLimitError),
            )

        logger.debug(
            "Probed page count %d in %d calls",
            low,
            calls,
            extra={"document_id": document_id},
        )
        return ProbeResult(total_pages=low, calls=calls)

    @staticmethod
    def _from_reported(total: int, max_pages: int, calls: int) -> ProbeResult:
        if total > max_pages:
            return ProbeResult(total_pages=max_pages, calls=calls, source="capped")
        return ProbeResult(total_pages=total, calls=calls, source="reported")
