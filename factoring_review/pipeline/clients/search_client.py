from typing import Optional

import httpx

from factoring_review.pipeline.clients.http_utils import error_message, parse_retry_after
from factoring_review.pipeline.core.config import SEARCH_REQUEST_TIMEOUT_SECONDS
from factoring_review.pipeline.core.exceptions import ExternalServiceError, RateLimitError
from factoring_review.pipeline.models.dto import SearchHit

_QUOTA_MARKERS = ("ratelimitexceeded", "quota", "userratelimitexceeded")


class GoogleSearchClient:
    """Google Custom Search JSON API client implementing SearchPort."""

    def __init__(
        self,
        api_key: str,
        engine_id: str,
        base_url: str = "https://www.googleapis.com/customsearch/v1",
        timeout: float = SEARCH_REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.engine_id = engine_id
        self.base_url = base_url
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def search(self, query: str, num_results: int = 5) -> list[SearchHit]:
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": query,
            "num": max(1, min(num_results, 10)),
            "hl": "ja",
        }
        try:
            resp = await self._client.get(self.base_url, params=params)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError("SEARCH", "timeout") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError(
                "SEARCH", "unavailable", details={"reason": str(exc)}
            ) from exc

        if resp.status_code == 429:
            raise RateLimitError("SEARCH", retry_after=parse_retry_after(resp))
        if resp.status_code >= 400:
            message = error_message(resp)
            if resp.status_code == 403 and any(m in message.lower() for m in _QUOTA_MARKERS):
                raise RateLimitError("SEARCH", retry_after=parse_retry_after(resp))
            raise ExternalServiceError(
                "SEARCH", "error", details={"http_code": resp.status_code, "body": message}
            )

        items = resp.json().get("items") or []
        return [
            SearchHit(
                title=item.get("title", ""),
                url=item.get("link", ""),
                snippet=item.get("snippet", ""),
            )
            for item in items
        ]
