"""FastAPI dependency injection functions."""

from fastapi import HTTPException, Request, status

from factoring_review.pipeline.orchestrator import CaseEvaluator


async def get_case_evaluator(request: Request) -> CaseEvaluator:
    """Get the case evaluator from app state.

    Raises:
        HTTPException: 503 if the evaluator was not initialized
    """
    evaluator = getattr(request.app.state, "case_evaluator", None)

    if evaluator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Case evaluator unavailable",
        )

    return evaluator
