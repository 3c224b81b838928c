"""The stage graph of a case evaluation.

    extract.<category>  ->  reconcile.<category>  --\
    enrich.company_verification  -------------------+->  score
    reconcile.registry  ->  enrich.negative_news  --/

Extraction runs per document category; bank statements fan out internally
into the main and auxiliary accounts. Field extraction happens inside the
reconcile stages. Only ``score`` is required.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from factoring_review.pipeline.errors.codes import ErrorCode, make_error
from factoring_review.pipeline.extraction.document_job import (
    DocumentExtractionJob,
    build_source_documents,
)
from factoring_review.pipeline.extraction.field_extractor import (
    DocumentFacts,
    FieldExtractor,
    identity_fields,
    invoice_fields,
    registry_fields,
    statement_transactions,
)
from factoring_review.pipeline.models.dto import (
    BankReconciliation,
    CaseRecord,
    CategoryExtraction,
    DocumentCategory,
    RegistryReconciliation,
)
from factoring_review.pipeline.ports.llm_port import LLMPort
from factoring_review.pipeline.ports.search_port import SearchPort
from factoring_review.pipeline.processors.bank_analysis import detect_risks
from factoring_review.pipeline.processors.case_reconciliation import (
    bank_inflow_pairs,
    identity_pairs,
    invoice_pairs,
    registry_pairs,
    representative_names,
    unmatched_debtors,
)
from factoring_review.pipeline.processors.company_verification import (
    company_names,
    verify_companies,
)
from factoring_review.pipeline.processors.negative_news import screen_people
from factoring_review.pipeline.processors.reconciler import Reconciler
from factoring_review.pipeline.resilience.fan_out import gather_or_cancel
from factoring_review.pipeline.scoring.engine import ScoringEngine, ScoringInputs
from factoring_review.pipeline.stages import CaseContext, Stage, StageResult

logger = logging.getLogger(__name__)

EXTRACT = "extract.{}"
RECONCILE = "reconcile.{}"
COMPANY_VERIFICATION = "enrich.company_verification"
NEGATIVE_NEWS = "enrich.negative_news"
SCORE = "score"


def extraction_annotations(extraction: CategoryExtraction) -> list[dict[str, Any]]:
    """Skip and degrade annotations for the documents of one category."""
    annotations = [
        make_error(s.reason_code, s.detail, document_id=s.document_id)
        for s in extraction.skipped
    ]
    for result in extraction.results:
        if not result.success:
            annotations.append(
                make_error(
                    ErrorCode.OCR_NO_TEXT.value.code,
                    result.provider_error,
                    document_id=result.document_id,
                )
            )
        elif result.provider_error:
            annotations.append(
                make_error(
                    ErrorCode.OCR_PROVIDER_ERROR.value.code,
                    result.provider_error,
                    document_id=result.document_id,
                    pages=result.pages_processed,
                )
            )
        if result.page_limit_reached:
            annotations.append(
                make_error(
                    ErrorCode.PAGE_LIMIT_REACHED.value.code,
                    document_id=result.document_id,
                    pages=result.pages_processed,
                )
            )
    return annotations


def _merge(category: DocumentCategory, parts: list[CategoryExtraction]) -> CategoryExtraction:
    return CategoryExtraction(
        category=category,
        results=[r for p in parts for r in p.results],
        skipped=[s for p in parts for s in p.skipped],
    )


def _fact_annotations(documents: list[DocumentFacts]) -> list[dict[str, Any]]:
    return [a for d in documents for a in d.annotations]


@dataclass
class CaseStageFactory:
    """Builds the stages of one case from injected collaborators."""

    job: DocumentExtractionJob
    fields: FieldExtractor
    search: SearchPort
    llm: Optional[LLMPort] = None
    reconciler: Optional[Reconciler] = None
    scoring: Optional[ScoringEngine] = None

    def __post_init__(self) -> None:
        self.reconciler = self.reconciler or Reconciler()
        self.scoring = self.scoring or ScoringEngine()

    def build(self) -> list[Stage]:
        categories = list(DocumentCategory)
        stages = [
            Stage(id=EXTRACT.format(c.value), execute=self._extract_stage(c))
            for c in categories
        ]
        stages += [
            Stage(
                id=RECONCILE.format("invoice"),
                execute=self.reconcile_invoice,
                depends_on=(EXTRACT.format("invoice"),),
            ),
            Stage(
                id=RECONCILE.format("bank_statement"),
                execute=self.reconcile_bank_statement,
                depends_on=(EXTRACT.format("bank_statement"),),
            ),
            Stage(
                id=RECONCILE.format("identity"),
                execute=self.reconcile_identity,
                depends_on=(EXTRACT.format("identity"),),
            ),
            Stage(
                id=RECONCILE.format("registry"),
                execute=self.reconcile_registry,
                depends_on=(EXTRACT.format("registry"), EXTRACT.format("collateral")),
            ),
            Stage(id=COMPANY_VERIFICATION, execute=self.verify_companies),
            Stage(
                id=NEGATIVE_NEWS,
                execute=self.screen_negative_news,
                depends_on=(RECONCILE.format("registry"),),
            ),
            Stage(
                id=SCORE,
                execute=self.score,
                depends_on=(
                    RECONCILE.format("invoice"),
                    RECONCILE.format("bank_statement"),
                    RECONCILE.format("identity"),
                    RECONCILE.format("registry"),
                    COMPANY_VERIFICATION,
                    NEGATIVE_NEWS,
                ),
                required=True,
            ),
        ]
        return stages

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract_stage(self, category: DocumentCategory):
        async def execute(ctx: CaseContext) -> StageResult:
            record: CaseRecord = ctx.record
            documents = build_source_documents(category, record.attachments.get(category, []))
            if category == DocumentCategory.BANK_STATEMENT:
                main = [d for d in documents if d.role != "sub"]
                sub = [d for d in documents if d.role == "sub"]
                parts = await gather_or_cancel(
                    self.job.run_category(category, main),
                    self.job.run_category(category, sub),
                )
                extraction = _merge(category, list(parts))
            else:
                extraction = await self.job.run_category(category, documents)

            return StageResult(
                output=extraction,
                degraded=extraction.degraded,
                reason="some documents were skipped or partly extracted"
                if extraction.degraded
                else None,
                annotations=extraction_annotations(extraction),
            )

        return execute

    async def _facts(
        self, ctx: CaseContext, category: DocumentCategory
    ) -> Optional[list[DocumentFacts]]:
        extraction: Optional[CategoryExtraction] = ctx.output(EXTRACT.format(category.value))
        if extraction is None:
            return None
        return await self.fields.extract_category(extraction)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_invoice(self, ctx: CaseContext) -> StageResult:
        documents = await self._facts(ctx, DocumentCategory.INVOICE)
        report = self.reconciler.reconcile_all(
            invoice_pairs(ctx.record, invoice_fields(documents or []))
        )
        report.input_missing = not documents
        return StageResult(
            output=report,
            degraded=documents is None,
            reason="no invoice extraction" if documents is None else None,
            annotations=report.annotations + _fact_annotations(documents or []),
        )

    async def reconcile_bank_statement(self, ctx: CaseContext) -> StageResult:
        documents = await self._facts(ctx, DocumentCategory.BANK_STATEMENT)
        transactions = statement_transactions(documents or [])
        report = self.reconciler.reconcile_all(bank_inflow_pairs(ctx.record, transactions))
        report.input_missing = not documents
        output = BankReconciliation(
            report=report,
            risks=detect_risks(transactions),
            transactions=transactions,
        )
        return StageResult(
            output=output,
            degraded=documents is None,
            reason="no bank statement extraction" if documents is None else None,
            annotations=report.annotations + _fact_annotations(documents or []),
        )

    async def reconcile_identity(self, ctx: CaseContext) -> StageResult:
        documents = await self._facts(ctx, DocumentCategory.IDENTITY)
        report = self.reconciler.reconcile_all(
            identity_pairs(ctx.record, identity_fields(documents or []))
        )
        report.input_missing = not documents
        return StageResult(
            output=report,
            degraded=documents is None,
            reason="no identity extraction" if documents is None else None,
            annotations=report.annotations + _fact_annotations(documents or []),
        )

    async def reconcile_registry(self, ctx: CaseContext) -> StageResult:
        registry_docs, collateral_docs = await gather_or_cancel(
            self._facts(ctx, DocumentCategory.REGISTRY),
            self._facts(ctx, DocumentCategory.COLLATERAL),
        )
        registry = registry_fields(registry_docs or [])
        collateral = registry_fields(collateral_docs or [])
        report = self.reconciler.reconcile_all(registry_pairs(ctx.record, registry, collateral))
        report.input_missing = not registry_docs and not collateral_docs
        output = RegistryReconciliation(
            report=report,
            unmatched_debtors=unmatched_debtors(ctx.record, collateral),
            representative_names=representative_names(ctx.record, registry),
        )
        missing = [
            name
            for name, docs in (("registry", registry_docs), ("collateral", collateral_docs))
            if docs is None
        ]
        return StageResult(
            output=output,
            degraded=bool(missing),
            reason=f"no {' / '.join(missing)} extraction" if missing else None,
            annotations=report.annotations
            + _fact_annotations((registry_docs or []) + (collateral_docs or [])),
        )

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    async def verify_companies(self, ctx: CaseContext) -> StageResult:
        record: CaseRecord = ctx.record
        names = company_names(
            record.applicant_company,
            [p.debtor_name for p in record.purchases],
            [c.company_name for c in record.collaterals],
        )
        verifications = await verify_companies(self.search, names, record.industry)
        failed = [v for v in verifications if v.errors]
        return StageResult(
            output=verifications,
            degraded=bool(failed),
            reason=f"search failed for {len(failed)} companies" if failed else None,
            annotations=[
                make_error(ErrorCode.SEARCH_FAILED.value.code, ", ".join(v.errors))
                for v in failed
            ],
        )

    async def screen_negative_news(self, ctx: CaseContext) -> StageResult:
        registry: Optional[RegistryReconciliation] = ctx.output(RECONCILE.format("registry"))
        names = (
            registry.representative_names
            if registry is not None
            else representative_names(ctx.record, None)
        )
        results = await screen_people(self.search, self.llm, names)
        failed = [r for r in results if r.errors]
        return StageResult(
            output=results,
            degraded=bool(failed),
            reason=f"search failed for {len(failed)} people" if failed else None,
            annotations=[
                make_error(ErrorCode.SEARCH_FAILED.value.code, ", ".join(r.errors))
                for r in failed
            ],
        )

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    async def score(self, ctx: CaseContext) -> StageResult:
        result = self.scoring.score(scoring_inputs(ctx))
        return StageResult(
            output=result,
            annotations=[
                make_error(ErrorCode.SCORING_INPUT_MISSING.value.code, field=name)
                for name in result.missing_inputs
            ],
        )


def scoring_inputs(ctx: CaseContext) -> ScoringInputs:
    return ScoringInputs(
        record=ctx.record,
        invoice=ctx.output(RECONCILE.format("invoice")),
        bank=ctx.output(RECONCILE.format("bank_statement")),
        identity=ctx.output(RECONCILE.format("identity")),
        verifications=ctx.output(COMPANY_VERIFICATION),
        negative_news=ctx.output(NEGATIVE_NEWS),
    )
