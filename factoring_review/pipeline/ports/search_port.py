"""SearchPort protocol for web search."""

from __future__ import annotations

from typing import Protocol

from factoring_review.pipeline.models.dto import SearchHit


class SearchPort(Protocol):
    async def search(self, query: str, num_results: int = 5) -> list[SearchHit]: ...
