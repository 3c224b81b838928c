"""OCRPort protocol for vision OCR provider access."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass
class PageText:
    """Text of one page in both provider text modes."""

    page_number: int
    block_text: str = ""
    tokens: list[str] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class PagedAnnotation:
    """Provider response for one paged-document call.

    ``total_pages`` is set only when the provider reports it.
    """

    pages: list[PageText] = field(default_factory=list)
    total_pages: Optional[int] = None


class OCRPort(Protocol):
    """Abstraction over the OCR provider used by the extraction job.

    ``annotate_pages`` raises ExtractionPageBoundaryError when a requested page
    does not exist, RateLimitError on throttling and ExtractionProviderError
    on any other failure.
    """

    async def annotate_image(self, content: bytes) -> PageText: ...

    async def annotate_pages(
        self, content: bytes, pages: list[int], mime_type: str = "application/pdf"
    ) -> PagedAnnotation: ...
