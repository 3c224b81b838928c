"""Concurrent execution of a stage graph.

Every stage gets one task, created in topological order. A task waits for
its dependencies, then for a concurrency slot, then runs the stage through
the middleware chain inside the shared RetryPolicy. Stage failures never
escape a task: they become Degraded (or Failed for required stages) records.
"""

from __future__ import annotations

import asyncio
import heapq
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from factoring_review.core.logging_utils import sanitize_case_id
from factoring_review.pipeline.core.config import MAX_STAGE_CONCURRENCY
from factoring_review.pipeline.core.exceptions import PipelineDefinitionError
from factoring_review.pipeline.errors.codes import ErrorCode, make_error
from factoring_review.pipeline.resilience.retry import RetryExhaustedError, RetryPolicy
from factoring_review.pipeline.stages import (
    CancellationToken,
    CaseContext,
    LoggingMiddleware,
    Stage,
    StageMiddleware,
    StageRecord,
    StageResult,
    StageState,
    TimingMiddleware,
    chain_middleware,
)

logger = logging.getLogger(__name__)


@dataclass
class PipelineOutcome:
    status: str  # completed | degraded | failed | cancelled
    records: list[StageRecord]
    annotations: list[dict[str, Any]] = field(default_factory=list)

    def record(self, stage_id: str) -> StageRecord:
        return next(r for r in self.records if r.stage_id == stage_id)


def topological_order(stages: list[Stage]) -> list[Stage]:
    """Order stages so every stage follows its dependencies.

    Ties keep declaration order, so the result is deterministic.

    Raises:
        PipelineDefinitionError: On duplicate ids, unknown dependencies or cycles.
    """
    by_id: dict[str, Stage] = {}
    position: dict[str, int] = {}
    for index, stage in enumerate(stages):
        if stage.id in by_id:
            raise PipelineDefinitionError(f"Duplicate stage id: {stage.id}")
        by_id[stage.id] = stage
        position[stage.id] = index

    indegree = {s.id: 0 for s in stages}
    dependents: dict[str, list[str]] = {s.id: [] for s in stages}
    for stage in stages:
        for dep in stage.depends_on:
            if dep not in by_id:
                raise PipelineDefinitionError(
                    f"Stage {stage.id} depends on unknown stage {dep}"
                )
            indegree[stage.id] += 1
            dependents[dep].append(stage.id)

    ready = [(position[sid], sid) for sid, degree in indegree.items() if degree == 0]
    heapq.heapify(ready)
    ordered: list[Stage] = []
    while ready:
        _, sid = heapq.heappop(ready)
        ordered.append(by_id[sid])
        for child in dependents[sid]:
            indegree[child] -= 1
            if indegree[child] == 0:
                heapq.heappush(ready, (position[child], child))

    if len(ordered) != len(stages):
        cyclic = sorted(sid for sid, degree in indegree.items() if degree > 0)
        raise PipelineDefinitionError(f"Stage graph has a cycle through: {', '.join(cyclic)}")
    return ordered


class StageRunner:
    def __init__(
        self,
        stages: list[Stage],
        retry_policy: Optional[RetryPolicy] = None,
        max_concurrency: int = MAX_STAGE_CONCURRENCY,
        middleware: Optional[list[StageMiddleware]] = None,
    ):
        if max_concurrency < 1:
            raise PipelineDefinitionError("max_concurrency must be at least 1")
        self.stages = topological_order(stages)
        self.retry_policy = retry_policy or RetryPolicy()
        self.max_concurrency = max_concurrency
        self.middleware = (
            middleware if middleware is not None else [LoggingMiddleware(), TimingMiddleware()]
        )

    async def run(
        self,
        ctx: CaseContext,
        cancel_token: Optional[CancellationToken] = None,
    ) -> PipelineOutcome:
        token = cancel_token or CancellationToken()
        semaphore = asyncio.Semaphore(self.max_concurrency)
        records = {s.id: StageRecord(stage_id=s.id) for s in self.stages}
        annotations: list[dict[str, Any]] = []
        tasks: dict[str, asyncio.Task] = {}

        for stage in self.stages:
            deps = [tasks[d] for d in stage.depends_on]
            tasks[stage.id] = asyncio.create_task(
                self._run_stage(stage, deps, ctx, token, semaphore, records[stage.id], annotations)
            )
        await asyncio.gather(*tasks.values())

        ordered = [records[s.id] for s in self.stages]
        return PipelineOutcome(
            status=self._status(ordered, token),
            records=ordered,
            annotations=annotations,
        )

    async def _run_stage(
        self,
        stage: Stage,
        deps: list[asyncio.Task],
        ctx: CaseContext,
        token: CancellationToken,
        semaphore: asyncio.Semaphore,
        record: StageRecord,
        annotations: list[dict[str, Any]],
    ) -> None:
        if deps:
            await asyncio.gather(*deps)

        async with semaphore:
            if token.cancelled:
                record.state = StageState.CANCELLED
                record.reason = "cancelled before start"
                return

            record.state = StageState.RUNNING
            start = time.perf_counter()

            def on_retry(attempt: int, error: Exception) -> None:
                record.retries = attempt

            try:
                outcome = await self.retry_policy.execute(
                    chain_middleware(stage, self.middleware), ctx, on_retry=on_retry
                )
            except RetryExhaustedError as exc:
                record.retries = exc.retries
                self._fail(
                    stage, ctx, record, annotations, ErrorCode.RATE_LIMIT_EXHAUSTED, exc.last_error
                )
                return
            except Exception as exc:
                logger.error(
                    f"Stage {stage.id} failed: {type(exc).__name__}",
                    extra={"case_id": sanitize_case_id(ctx.case_id), "stage_id": stage.id},
                    exc_info=True,
                )
                self._fail(stage, ctx, record, annotations, ErrorCode.STAGE_DEGRADED, exc)
                return
            finally:
                record.duration_seconds = time.perf_counter() - start

            record.retries = outcome.retries
            if token.cancelled:
                record.state = StageState.CANCELLED
                record.reason = "cancelled while running; result discarded"
                return

            result = outcome.value
            if not isinstance(result, StageResult):
                result = StageResult(output=result)

            ctx._publish(stage.id, result.output)
            for annotation in result.annotations:
                annotations.append({"stage_id": stage.id, **annotation})
            if result.degraded:
                record.state = StageState.DEGRADED
                record.reason = result.reason
                annotations.append(
                    make_error(ErrorCode.STAGE_DEGRADED.value.code, result.reason, stage_id=stage.id)
                )
            else:
                record.state = StageState.COMPLETED

    @staticmethod
    def _fail(
        stage: Stage,
        ctx: CaseContext,
        record: StageRecord,
        annotations: list[dict[str, Any]],
        code: ErrorCode,
        error: Exception,
    ) -> None:
        reason = f"{type(error).__name__}: {error}"
        record.reason = reason
        if stage.required:
            record.state = StageState.FAILED
            annotations.append(
                make_error(ErrorCode.REQUIRED_STAGE_FAILED.value.code, reason, stage_id=stage.id)
            )
        else:
            record.state = StageState.DEGRADED
            annotations.append(make_error(code.value.code, reason, stage_id=stage.id))
        logger.warning(
            f"Stage {stage.id} {record.state.value}",
            extra={
                "case_id": sanitize_case_id(ctx.case_id),
                "stage_id": stage.id,
                "error_code": code.value.code,
                "retry_attempt": record.retries,
            },
        )

    @staticmethod
    def _status(records: list[StageRecord], token: CancellationToken) -> str:
        states = {r.state for r in records}
        if StageState.FAILED in states:
            return "failed"
        if token.cancelled and StageState.CANCELLED in states:
            return "cancelled"
        if StageState.DEGRADED in states:
            return "degraded"
        return "completed"
