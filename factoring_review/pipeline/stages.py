"""Stage definitions, per-case context and stage middleware.

A Stage is a named async unit of work with declared dependencies. Stages
read the case record and the outputs of the stages they depend on from the
CaseContext; only the runner writes outputs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol

from factoring_review.core.logging_utils import sanitize_case_id
from factoring_review.pipeline.utils.timing import StageTimers

logger = logging.getLogger(__name__)


class StageState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StageResult:
    """Output of a stage, optionally flagged as partial."""

    output: Any = None
    degraded: bool = False
    reason: Optional[str] = None
    annotations: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class StageRecord:
    stage_id: str
    state: StageState = StageState.NOT_STARTED
    retries: int = 0
    reason: Optional[str] = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_id": self.stage_id,
            "state": self.state.value,
            "retries": self.retries,
            "reason": self.reason,
            "duration_seconds": round(self.duration_seconds, 6),
        }


class CancellationToken:
    """Cooperative cancellation checked before each stage starts."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class CaseContext:
    """Read-only view of a case for stages.

    ``outputs`` maps stage id to output for every stage that produced one; a
    degraded stage with no output is absent.
    """

    def __init__(self, case_id: str, record: Any = None, timers: Optional[StageTimers] = None):
        self.case_id = case_id
        self.record = record
        self.timers = timers or StageTimers()
        self._outputs: dict[str, Any] = {}
        self.outputs: Mapping[str, Any] = MappingProxyType(self._outputs)

    def output(self, stage_id: str, default: Any = None) -> Any:
        return self._outputs.get(stage_id, default)

    def _publish(self, stage_id: str, value: Any) -> None:
        self._outputs[stage_id] = value


StageFn = Callable[[CaseContext], Awaitable[Any]]


@dataclass(frozen=True)
class Stage:
    """A node of the stage graph.

    ``execute`` returns either a plain output or a StageResult. A failed
    ``required`` stage fails the whole pipeline.
    """

    id: str
    execute: StageFn
    depends_on: tuple[str, ...] = ()
    required: bool = False


class StageMiddleware(Protocol):
    async def __call__(self, stage: Stage, ctx: CaseContext, call_next: StageFn) -> Any: ...


class LoggingMiddleware:
    async def __call__(self, stage: Stage, ctx: CaseContext, call_next: StageFn) -> Any:
        extra = {"case_id": sanitize_case_id(ctx.case_id), "stage_id": stage.id}
        logger.info("Stage started", extra=extra)
        start = time.perf_counter()
        try:
            result = await call_next(ctx)
        except Exception as exc:
            logger.warning(
                f"Stage raised {type(exc).__name__}",
                extra={
                    **extra,
                    "duration_ms": round((time.perf_counter() - start) * 1000, 1),
                    "error_code": getattr(exc, "error_code", type(exc).__name__),
                },
            )
            raise
        logger.info(
            "Stage finished",
            extra={**extra, "duration_ms": round((time.perf_counter() - start) * 1000, 1)},
        )
        return result


class TimingMiddleware:
    """Accumulates each attempt's wall-clock time in ``ctx.timers``."""

    async def __call__(self, stage: Stage, ctx: CaseContext, call_next: StageFn) -> Any:
        with ctx.timers.timer(stage.id):
            return await call_next(ctx)


def chain_middleware(stage: Stage, middleware: list[StageMiddleware]) -> StageFn:
    """Wrap ``stage.execute`` so the first middleware runs outermost."""
    handler: StageFn = stage.execute
    for mw in reversed(middleware):
        handler = _bind(mw, stage, handler)
    return handler


def _bind(mw: StageMiddleware, stage: Stage, call_next: StageFn) -> StageFn:
    async def call(ctx: CaseContext) -> Any:
        return await mw(stage, ctx, call_next)

    return call
