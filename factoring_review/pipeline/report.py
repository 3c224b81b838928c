"""Assembles the case report from stage outputs and stage records."""

from typing import Any, Optional

from factoring_review.pipeline.case_stages import (
    COMPANY_VERIFICATION,
    EXTRACT,
    NEGATIVE_NEWS,
    RECONCILE,
    SCORE,
)
from factoring_review.pipeline.models.dto import (
    BankReconciliation,
    CaseEvaluation,
    CaseScore,
    CategoryExtraction,
    DocumentCategory,
    ReconciliationReport,
    RegistryReconciliation,
)
from factoring_review.pipeline.runner import PipelineOutcome
from factoring_review.pipeline.stages import CaseContext


def _extractions(ctx: CaseContext) -> list[CategoryExtraction]:
    outputs = (ctx.output(EXTRACT.format(c.value)) for c in DocumentCategory)
    return [o for o in outputs if o is not None]


def summarize_cost(extractions: list[CategoryExtraction]) -> dict[str, Any]:
    return {
        "ocr_usd": round(sum(e.cost_estimate for e in extractions), 6),
        "pages_processed": sum(e.pages_processed for e in extractions),
        "token_estimate": sum(e.token_estimate for e in extractions),
    }


def _entries(report: Optional[ReconciliationReport]) -> list:
    return list(report.entries) if report is not None else []


def build_case_evaluation(
    case_id: str,
    ctx: CaseContext,
    outcome: PipelineOutcome,
    duration_seconds: float,
) -> CaseEvaluation:
    """Build the report payload.

    ``score_complete`` is true only when the pipeline completed without a
    degraded stage and no scoring input was missing. ``active_seconds`` per
    stage excludes waits between retries; ``duration_seconds`` includes them.
    """
    extractions = _extractions(ctx)
    bank: Optional[BankReconciliation] = ctx.output(RECONCILE.format("bank_statement"))
    registry: Optional[RegistryReconciliation] = ctx.output(RECONCILE.format("registry"))
    score: Optional[CaseScore] = ctx.output(SCORE)

    return CaseEvaluation(
        case_id=case_id,
        status=outcome.status,
        score=score,
        score_complete=score is not None and score.complete and outcome.status == "completed",
        stages=[
            {**r.to_dict(), "active_seconds": ctx.timers.get(r.stage_id)}
            for r in outcome.records
        ],
        skipped_documents=[s for e in extractions for s in e.skipped],
        reconciliation={
            "invoice": _entries(ctx.output(RECONCILE.format("invoice"))),
            "bank_statement": _entries(bank.report if bank else None),
            "identity": _entries(ctx.output(RECONCILE.format("identity"))),
            "registry": _entries(registry.report if registry else None),
        },
        bank_risks=list(bank.risks.flags) if bank else [],
        unmatched_debtors=list(registry.unmatched_debtors) if registry else [],
        company_verifications=ctx.output(COMPANY_VERIFICATION) or [],
        negative_news=ctx.output(NEGATIVE_NEWS) or [],
        annotations=outcome.annotations,
        cost=summarize_cost(extractions),
        duration_seconds=round(duration_seconds, 6),
    )
