"""In-memory implementations of the provider ports."""

from typing import Optional

from factoring_review.pipeline.core.exceptions import (
    AttachmentFetchError,
    ExtractionPageBoundaryError,
    ExtractionProviderError,
    ExternalServiceError,
    RateLimitError,
)
from factoring_review.pipeline.models.dto import CaseRecord, SearchHit
from factoring_review.pipeline.ports.ocr_port import PagedAnnotation, PageText


class FakeOCR:
    """Paged documents of ``total_pages`` pages.

    Page text is ``texts[content]`` when given, otherwise ``page <n>``.
    """

    def __init__(
        self,
        total_pages: int = 1,
        report_total: bool = False,
        fail_pages: tuple[int, ...] = (),
        rate_limit_pages: tuple[int, ...] = (),
        texts: Optional[dict[bytes, str]] = None,
        pages_by_content: Optional[dict[bytes, int]] = None,
        tokens: bool = True,
    ):
        self.total_pages = total_pages
        self.report_total = report_total
        self.fail_pages = set(fail_pages)
        self.rate_limit_pages = set(rate_limit_pages)
        self.texts = texts or {}
        self.pages_by_content = pages_by_content or {}
        self.tokens = tokens
        self.calls: list[list[int]] = []
        self.image_calls = 0

    def _page(self, content: bytes, number: int) -> PageText:
        text = self.texts.get(content, f"page {number}")
        return PageText(
            page_number=number,
            block_text=text,
            tokens=[f"tok{number}"] if self.tokens else [],
            confidence=0.9,
        )

    async def annotate_pages(
        self, content: bytes, pages: list[int], mime_type: str = "application/pdf"
    ) -> PagedAnnotation:
        self.calls.append(list(pages))
        total = self.pages_by_content.get(content, self.total_pages)
        if any(p in self.rate_limit_pages for p in pages):
            raise RateLimitError("OCR", retry_after=1)
        if any(p in self.fail_pages for p in pages):
            raise ExtractionProviderError("timeout")
        if any(p > total for p in pages):
            raise ExtractionPageBoundaryError(pages)
        return PagedAnnotation(
            pages=[self._page(content, p) for p in pages],
            total_pages=total if self.report_total else None,
        )

    async def annotate_image(self, content: bytes) -> PageText:
        self.image_calls += 1
        return self._page(content, 1)


class FakeRecordStore:
    def __init__(
        self,
        records: Optional[dict[str, CaseRecord]] = None,
        attachments: Optional[dict[str, bytes]] = None,
    ):
        self.records = records or {}
        self.attachments = attachments or {}
        self.fetched: list[str] = []

    async def fetch_case(self, case_id: str) -> Optional[CaseRecord]:
        return self.records.get(case_id)

    async def fetch_attachment(self, content_key: str) -> bytes:
        self.fetched.append(content_key)
        if content_key not in self.attachments:
            raise AttachmentFetchError(content_key, "http_404")
        return self.attachments[content_key]


class FakeSearch:
    """Returns ``results[query]``; rate limits ``rate_limits[query]`` times first."""

    def __init__(
        self,
        results: Optional[dict[str, list[SearchHit]]] = None,
        rate_limits: Optional[dict[str, int]] = None,
        failing: tuple[str, ...] = (),
        retry_after: Optional[float] = 20.0,
    ):
        self.results = results or {}
        self.rate_limits = dict(rate_limits or {})
        self.failing = set(failing)
        self.retry_after = retry_after
        self.queries: list[str] = []

    async def search(self, query: str, num_results: int = 5) -> list[SearchHit]:
        self.queries.append(query)
        if self.rate_limits.get(query, 0) > 0:
            self.rate_limits[query] -= 1
            raise RateLimitError("SEARCH", retry_after=self.retry_after)
        if query in self.failing:
            raise ExternalServiceError("SEARCH", "unavailable")
        return list(self.results.get(query, []))[:num_results]


class FakeLLM:
    """Typed answers by schema; prose answers from ``prose``."""

    def __init__(
        self,
        structured: Optional[dict[type, object]] = None,
        prose: str = "",
        supports_structured_output: bool = True,
        structured_error: Optional[Exception] = None,
    ):
        self.structured = structured or {}
        self.prose = prose
        self.supports_structured_output = supports_structured_output
        self.structured_error = structured_error
        self.prompts: list[str] = []

    async def generate_structured(self, prompt: str, schema: type):
        self.prompts.append(prompt)
        if self.structured_error is not None:
            raise self.structured_error
        if schema not in self.structured:
            raise ExternalServiceError("LLM", "invalid_response")
        return self.structured[schema]

    async def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.prose


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
