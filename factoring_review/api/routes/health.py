from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from factoring_review.api.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request):
    ready = getattr(request.app.state, "case_evaluator", None) is not None

    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "healthy" if ready else "unhealthy",
            "service": "factoring-review",
            "version": "1.0.0",
            "evaluator": "ready" if ready else "unavailable",
        },
    )
