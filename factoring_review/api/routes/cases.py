"""Case evaluation endpoint."""

import logging

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import JSONResponse

from factoring_review.api.schemas import ProblemDetail
from factoring_review.core.dependencies import get_case_evaluator
from factoring_review.core.logging_utils import sanitize_case_id
from factoring_review.pipeline.models.dto import CaseEvaluation
from factoring_review.pipeline.orchestrator import CaseEvaluator

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/v1/cases/{case_id}/evaluate",
    response_model=CaseEvaluation,
    tags=["cases"],
    responses={
        404: {"description": "Case record not found", "model": CaseEvaluation},
        502: {"description": "Provider error", "model": ProblemDetail},
        503: {"description": "Evaluator unavailable", "model": ProblemDetail},
    },
)
async def evaluate_case(
    request: Request,
    case_id: str = Path(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$"),
    evaluator: CaseEvaluator = Depends(get_case_evaluator),
):
    trace_id = getattr(request.state, "trace_id", None)
    logger.info(
        "[NEW REQUEST] evaluate case",
        extra={"trace_id": trace_id, "case_id": sanitize_case_id(case_id)},
    )

    evaluation = await evaluator.evaluate(case_id)

    logger.info(
        f"[RESPONSE] status={evaluation.status} time={evaluation.duration_seconds:.2f}s",
        extra={"trace_id": trace_id, "case_id": sanitize_case_id(case_id)},
    )

    if evaluation.status == "not_found":
        return JSONResponse(status_code=404, content=evaluation.model_dump(mode="json"))
    return evaluation
