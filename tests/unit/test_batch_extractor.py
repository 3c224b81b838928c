"""Unit tests for batched extraction of paged documents."""

from typing import Optional

import pytest

from factoring_review.pipeline.core.config import TOKEN_TEXT_HEADER
from factoring_review.pipeline.extraction.batch_extractor import BatchExtractor, page_text
from factoring_review.pipeline.models.dto import (
    BatchStatus,
    DocumentCategory,
    MimeKind,
    SourceDocument,
)
from factoring_review.pipeline.ports.ocr_port import PageText
from tests.fakes import FakeOCR


def make_document(total_pages: Optional[int] = None) -> SourceDocument:
    return SourceDocument(
        id="invoice-1",
        category=DocumentCategory.INVOICE,
        mime_kind=MimeKind.PAGED,
        name="invoice.pdf",
        content_key="key-1",
        content_type="application/pdf",
        total_pages=total_pages,
    )


class TestPageText:
    def test_block_text_then_tokens(self):
        page = PageText(page_number=1, block_text=" 請求書 ", tokens=["請求書", "済"])
        assert page_text(page) == f"請求書\n{TOKEN_TEXT_HEADER}\n請求書 済"

    def test_tokens_section_omitted_when_empty(self):
        assert page_text(PageText(page_number=1, block_text="abc")) == "abc"


class TestBatching:
    """Contiguous batches of at most five pages, in order."""

    @pytest.mark.asyncio
    async def test_twelve_pages_with_reported_total(self):
        ocr = FakeOCR(total_pages=12, report_total=True)
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 20)

        assert ocr.calls == [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10], [11, 12]]
        assert result.pages_processed == 12
        assert result.requested_pages == 12
        assert result.success
        assert result.eof_reached is False
        assert [b.page_range for b in result.batches] == [(1, 5), (6, 10), (11, 12)]

    @pytest.mark.asyncio
    async def test_probes_when_total_not_reported(self):
        ocr = FakeOCR(total_pages=12)
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 50)

        assert ocr.calls == [
            [1, 2, 3, 4, 5],
            [15],
            [10],
            [12],
            [13],
            [6, 7, 8, 9, 10],
            [11, 12],
        ]
        assert result.pages_processed == 12

    @pytest.mark.asyncio
    async def test_known_page_count_skips_probing(self):
        ocr = FakeOCR(total_pages=7)
        result = await BatchExtractor(ocr).extract(make_document(total_pages=7), b"pdf", 20)

        assert ocr.calls == [[1, 2, 3, 4, 5], [6, 7]]
        assert result.pages_processed == 7

    @pytest.mark.asyncio
    async def test_short_document_probes_after_first_batch_fails(self):
        ocr = FakeOCR(total_pages=1, report_total=True)
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 20)

        assert ocr.calls == [[1, 2, 3, 4, 5], [1], [1]]
        assert result.pages_processed == 1
        assert result.success

    @pytest.mark.asyncio
    async def test_page_cap_is_reported(self):
        ocr = FakeOCR(total_pages=30, report_total=True)
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 8)

        assert ocr.calls == [[1, 2, 3, 4, 5], [6, 7, 8]]
        assert result.pages_processed == 8
        assert result.page_limit_reached is True

    @pytest.mark.asyncio
    async def test_document_of_exactly_max_pages_is_not_limited(self):
        ocr = FakeOCR(total_pages=10)
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 10)

        assert ocr.calls == [[1, 2, 3, 4, 5], [10], [11], [6, 7, 8, 9, 10]]
        assert result.pages_processed == 10
        assert result.page_limit_reached is False

    @pytest.mark.asyncio
    async def test_confidence_is_first_page_confidence(self):
        result = await BatchExtractor(FakeOCR(total_pages=2, report_total=True)).extract(
            make_document(), b"pdf", 20
        )
        assert result.confidence == 0.9


class TestStopConditions:
    @pytest.mark.asyncio
    async def test_invalid_pages_on_known_range_is_eof(self):
        ocr = FakeOCR(total_pages=7)
        result = await BatchExtractor(ocr).extract(make_document(total_pages=10), b"pdf", 20)

        assert ocr.calls == [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10]]
        assert result.eof_reached is True
        assert result.pages_processed == 5
        assert result.batches[-1].status == BatchStatus.FAILED

    @pytest.mark.asyncio
    async def test_provider_error_keeps_earlier_batches(self):
        ocr = FakeOCR(total_pages=12, report_total=True, fail_pages=(7,))
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 20)

        assert ocr.calls == [[1, 2, 3, 4, 5], [6, 7, 8, 9, 10]]
        assert result.pages_processed == 5
        assert result.success
        assert result.provider_error is not None
        assert result.rate_limited is False
        assert [b.status for b in result.batches] == [BatchStatus.DONE, BatchStatus.FAILED]
        assert "page 5" in result.full_text

    @pytest.mark.asyncio
    async def test_third_of_five_batches_fails(self):
        ocr = FakeOCR(total_pages=25, report_total=True, fail_pages=(11,))
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 50)

        assert len(ocr.calls) == 3
        assert result.pages_processed == 10
        assert result.success
        assert result.full_text.index("page 1\n") < result.full_text.index("page 10")
        assert "page 11" not in result.full_text

    @pytest.mark.asyncio
    async def test_rate_limited_first_batch(self):
        ocr = FakeOCR(total_pages=3, rate_limit_pages=(1,))
        result = await BatchExtractor(ocr).extract(make_document(), b"pdf", 20)

        assert result.success is False
        assert result.rate_limited is True
        assert result.pages_processed == 0
