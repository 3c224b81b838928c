"""
Lightweight helpers for measuring per-stage timings in the pipeline.

Stage timers accumulate elapsed wall-clock seconds per stage id so that the
case report can carry a duration per stage. A stage retried after a rate
limit accumulates the time of every attempt.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Dict


class StageTimers:
    """
    Accumulate elapsed time per stage id.

    Use `timer(name)` as a context manager around a stage attempt;
    each exit adds the elapsed seconds to `totals[name]`.
    """

    def __init__(self) -> None:
        self.totals: Dict[str, float] = {}

    @contextmanager
    def timer(self, name: str):
        """
        Measure and accumulate elapsed time for the given stage id.

        Args:
          name: Stage identifier (e.g. "extract.invoice").

        Yields:
          A context manager that measures the enclosed block.
        """
        start_time = time.perf_counter()
        try:
            yield
        finally:
            elapsed_time = time.perf_counter() - start_time
            self.totals[name] = self.totals.get(name, 0.0) + elapsed_time

    def get(self, name: str) -> float:
        return round(self.totals.get(name, 0.0), 6)
