from __future__ import annotations

import logging
import time
from typing import Optional

from factoring_review.core.logging_utils import sanitize_case_id
from factoring_review.pipeline.case_stages import CaseStageFactory
from factoring_review.pipeline.core.config import MAX_STAGE_CONCURRENCY, OCR_PAGES_PER_CALL
from factoring_review.pipeline.errors.codes import ErrorCode, make_error
from factoring_review.pipeline.extraction.batch_extractor import BatchExtractor
from factoring_review.pipeline.extraction.document_job import DocumentExtractionJob
from factoring_review.pipeline.extraction.field_extractor import FieldExtractor
from factoring_review.pipeline.models.dto import CaseEvaluation
from factoring_review.pipeline.ports.llm_port import LLMPort
from factoring_review.pipeline.ports.ocr_port import OCRPort
from factoring_review.pipeline.ports.record_store_port import RecordStorePort
from factoring_review.pipeline.ports.search_port import SearchPort
from factoring_review.pipeline.report import build_case_evaluation, summarize_cost
from factoring_review.pipeline.resilience.retry import RetryPolicy
from factoring_review.pipeline.runner import StageRunner
from factoring_review.pipeline.scoring.engine import ScoringEngine
from factoring_review.pipeline.stages import CancellationToken, CaseContext, StageMiddleware

logger = logging.getLogger(__name__)


class CaseEvaluator:
    """Evaluates one case end to end with injected provider clients."""

    def __init__(
        self,
        record_store: RecordStorePort,
        ocr: OCRPort,
        search: SearchPort,
        llm: Optional[LLMPort] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = MAX_STAGE_CONCURRENCY,
        pages_per_call: int = OCR_PAGES_PER_CALL,
        scoring: Optional[ScoringEngine] = None,
        middleware: Optional[list[StageMiddleware]] = None,
    ) -> None:
        self.record_store = record_store
        job = DocumentExtractionJob(
            ocr=ocr,
            record_store=record_store,
            batch_extractor=BatchExtractor(ocr, pages_per_call=pages_per_call),
        )
        factory = CaseStageFactory(
            job=job,
            fields=FieldExtractor(llm),
            search=search,
            llm=llm,
            scoring=scoring,
        )
        self.runner = StageRunner(
            factory.build(),
            retry_policy=retry_policy,
            max_concurrency=max_concurrency,
            middleware=middleware,
        )

    async def evaluate(
        self,
        case_id: str,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CaseEvaluation:
        """Fetch the case, run every stage and build the report.

        A case id with no record gives ``status="not_found"`` at zero cost.
        Record store failures other than a missing record propagate.
        """
        t0 = time.perf_counter()
        extra = {"case_id": sanitize_case_id(case_id)}

        record = await self.record_store.fetch_case(case_id)
        if record is None:
            logger.info("Case record not found", extra=extra)
            return CaseEvaluation(
                case_id=case_id,
                status="not_found",
                annotations=[make_error(ErrorCode.RECORD_NOT_FOUND.value.code)],
                cost=summarize_cost([]),
                duration_seconds=round(time.perf_counter() - t0, 6),
            )

        ctx = CaseContext(case_id=case_id, record=record)
        outcome = await self.runner.run(ctx, cancel_token)
        if outcome.status == "cancelled":
            outcome.annotations.append(make_error(ErrorCode.CASE_CANCELLED.value.code))

        evaluation = build_case_evaluation(
            case_id, ctx, outcome, time.perf_counter() - t0
        )
        logger.info(
            f"Case evaluated: {evaluation.status}",
            extra={**extra, "duration_ms": round(evaluation.duration_seconds * 1000, 1)},
        )
        return evaluation
