"""Unit tests for per-document and per-category extraction."""

import pytest

from factoring_review.pipeline.core.exceptions import RateLimitError
from factoring_review.pipeline.errors.codes import ErrorCode
from factoring_review.pipeline.extraction.document_job import (
    DocumentExtractionJob,
    build_source_documents,
    max_pages_for,
    mime_kind_for,
)
from factoring_review.pipeline.models.dto import (
    AttachmentDescriptor,
    DocumentCategory,
    ExtractionResult,
    MimeKind,
    SkippedDocument,
)
from tests.fakes import FakeOCR, FakeRecordStore


def attachment(key: str, content_type: str = "application/pdf", role=None) -> AttachmentDescriptor:
    return AttachmentDescriptor(
        content_key=key, name=f"{key}.pdf", content_type=content_type, role=role
    )


class TestSourceDocuments:
    def test_ids_follow_attachment_order(self):
        documents = build_source_documents(
            DocumentCategory.BANK_STATEMENT,
            [attachment("a", role="main"), attachment("b", "image/png", role="sub")],
        )

        assert [d.id for d in documents] == ["bank_statement-1", "bank_statement-2"]
        assert [d.mime_kind for d in documents] == [MimeKind.PAGED, MimeKind.IMAGE]
        assert [d.role for d in documents] == ["main", "sub"]

    def test_mime_kind_ignores_parameters_and_case(self):
        assert mime_kind_for("Application/PDF; charset=binary") == MimeKind.PAGED
        assert mime_kind_for("image/jpeg") == MimeKind.IMAGE
        assert mime_kind_for("application/zip") is None
        assert mime_kind_for("") is None

    def test_page_caps_per_category(self):
        assert max_pages_for(DocumentCategory.BANK_STATEMENT) == 50
        assert max_pages_for(DocumentCategory.IDENTITY) == 10


class TestDocumentJob:
    """A document job never raises for per-file problems."""

    @pytest.mark.asyncio
    async def test_unsupported_type_is_skipped_without_fetch(self):
        store = FakeRecordStore()
        job = DocumentExtractionJob(ocr=FakeOCR(), record_store=store)
        [document] = build_source_documents(
            DocumentCategory.INVOICE, [attachment("x", "application/zip")]
        )

        outcome = await job.run(document)

        assert isinstance(outcome, SkippedDocument)
        assert outcome.reason_code == ErrorCode.UNSUPPORTED_CONTENT_TYPE.value.code
        assert store.fetched == []

    @pytest.mark.asyncio
    async def test_fetch_failure_is_skipped(self):
        job = DocumentExtractionJob(ocr=FakeOCR(), record_store=FakeRecordStore())
        [document] = build_source_documents(DocumentCategory.INVOICE, [attachment("missing")])

        outcome = await job.run(document)

        assert isinstance(outcome, SkippedDocument)
        assert outcome.reason_code == ErrorCode.ATTACHMENT_FETCH_FAILED.value.code
        assert outcome.detail == "http_404"

    @pytest.mark.asyncio
    async def test_image_uses_single_image_call(self):
        ocr = FakeOCR()
        store = FakeRecordStore(attachments={"img": b"png"})
        job = DocumentExtractionJob(ocr=ocr, record_store=store)
        [document] = build_source_documents(
            DocumentCategory.IDENTITY, [attachment("img", "image/png")]
        )

        result = await job.run(document)

        assert isinstance(result, ExtractionResult)
        assert ocr.image_calls == 1
        assert ocr.calls == []
        assert result.pages_processed == 1
        assert result.cost_estimate == 0.0015

    @pytest.mark.asyncio
    async def test_cost_and_tokens_are_estimated(self):
        ocr = FakeOCR(total_pages=12, report_total=True)
        store = FakeRecordStore(attachments={"doc": b"pdf"})
        job = DocumentExtractionJob(ocr=ocr, record_store=store)
        [document] = build_source_documents(DocumentCategory.INVOICE, [attachment("doc")])

        result = await job.run(document)

        assert result.pages_processed == 12
        assert result.cost_estimate == pytest.approx(0.018)
        assert result.token_estimate > 0


class TestCategoryExtraction:
    @pytest.mark.asyncio
    async def test_results_and_skips_keep_attachment_order(self):
        store = FakeRecordStore(attachments={"a": b"a", "c": b"c"})
        job = DocumentExtractionJob(ocr=FakeOCR(total_pages=1, report_total=True), record_store=store)
        documents = build_source_documents(
            DocumentCategory.INVOICE, [attachment("a"), attachment("b"), attachment("c")]
        )

        extraction = await job.run_category(DocumentCategory.INVOICE, documents)

        assert [r.document_id for r in extraction.results] == ["invoice-1", "invoice-3"]
        assert [s.document_id for s in extraction.skipped] == ["invoice-2"]
        assert extraction.pages_processed == 2
        assert extraction.degraded

    @pytest.mark.asyncio
    async def test_every_document_rate_limited_raises(self):
        store = FakeRecordStore(attachments={"a": b"a", "b": b"b"})
        job = DocumentExtractionJob(ocr=FakeOCR(rate_limit_pages=(1,)), record_store=store)
        documents = build_source_documents(
            DocumentCategory.INVOICE, [attachment("a"), attachment("b")]
        )

        with pytest.raises(RateLimitError):
            await job.run_category(DocumentCategory.INVOICE, documents)

    @pytest.mark.asyncio
    async def test_no_documents_is_an_empty_extraction(self):
        job = DocumentExtractionJob(ocr=FakeOCR(), record_store=FakeRecordStore())
        extraction = await job.run_category(DocumentCategory.REGISTRY, [])

        assert extraction.results == []
        assert extraction.degraded is False
