import base64
import logging
from typing import Any, Optional

import httpx

from factoring_review.pipeline.clients.http_utils import error_message, parse_retry_after
from factoring_review.pipeline.core.config import (
    INVALID_PAGES_SIGNAL,
    OCR_LANGUAGE_HINTS,
    OCR_PAGES_PER_CALL,
    OCR_REQUEST_TIMEOUT_SECONDS,
)
from factoring_review.pipeline.core.exceptions import (
    ExtractionPageBoundaryError,
    ExtractionProviderError,
    RateLimitError,
)
from factoring_review.pipeline.ports.ocr_port import PagedAnnotation, PageText

logger = logging.getLogger(__name__)

# google.rpc.Code.RESOURCE_EXHAUSTED inside a 200 response
_RPC_RESOURCE_EXHAUSTED = 8

_FEATURES = [{"type": "DOCUMENT_TEXT_DETECTION"}, {"type": "TEXT_DETECTION"}]


def _dedupe(tokens: list[str]) -> list[str]:
    seen: set[str] = set()
    unique = []
    for token in tokens:
        if token and token not in seen:
            seen.add(token)
            unique.append(token)
    return unique


def parse_page_response(resp: dict, page_number: int) -> PageText:
    """Normalize one annotate response into both text modes.

    The first ``textAnnotations`` element is the whole block and is skipped.
    """
    full = resp.get("fullTextAnnotation") or {}
    pages = full.get("pages") or []
    confidence = float(pages[0].get("confidence", 0.0)) if pages else 0.0
    tokens = [a.get("description", "") for a in (resp.get("textAnnotations") or [])[1:]]
    context = resp.get("context") or {}
    return PageText(
        page_number=int(context.get("pageNumber", page_number)),
        block_text=full.get("text", ""),
        tokens=_dedupe(tokens),
        confidence=confidence,
    )


class VisionOCRClient:
    """Google Vision REST client implementing OCRPort.

    Paged documents go through ``files:annotate`` with at most
    ``OCR_PAGES_PER_CALL`` pages per request; images through ``images:annotate``.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://vision.googleapis.com/v1",
        timeout: float = OCR_REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        language_hints: tuple[str, ...] = OCR_LANGUAGE_HINTS,
        pages_per_call: int = OCR_PAGES_PER_CALL,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.language_hints = list(language_hints)
        self.pages_per_call = pages_per_call
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._http()
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(
        self, path: str, payload: dict, pages: Optional[list[int]] = None
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{path}"
        try:
            resp = await self._http().post(url, params={"key": self.api_key}, json=payload)
        except httpx.TimeoutException as exc:
            raise ExtractionProviderError("timeout", details={"pages": pages}) from exc
        except httpx.HTTPError as exc:
            raise ExtractionProviderError(
                "unavailable", details={"reason": str(exc), "pages": pages}
            ) from exc

        if resp.status_code == 429:
            raise RateLimitError("OCR", retry_after=parse_retry_after(resp))

        if resp.status_code >= 400:
            message = error_message(resp)
            if pages and INVALID_PAGES_SIGNAL in message.lower():
                raise ExtractionPageBoundaryError(pages, details={"message": message})
            raise ExtractionProviderError(
                "error",
                details={"http_code": resp.status_code, "body": message, "pages": pages},
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise ExtractionProviderError("invalid_response", details={"pages": pages}) from exc

    @staticmethod
    def _raise_inner_error(error: dict, pages: Optional[list[int]]) -> None:
        message = str(error.get("message", ""))
        if pages and INVALID_PAGES_SIGNAL in message.lower():
            raise ExtractionPageBoundaryError(pages, details={"message": message})
        if error.get("code") == _RPC_RESOURCE_EXHAUSTED:
            raise RateLimitError("OCR")
        raise ExtractionProviderError("error", details={"body": message, "pages": pages})

    async def annotate_image(self, content: bytes) -> PageText:
        payload = {
            "requests": [
                {
                    "image": {"content": base64.b64encode(content).decode("ascii")},
                    "features": _FEATURES,
                    "imageContext": {"languageHints": self.language_hints},
                }
            ]
        }
        data = await self._post("images:annotate", payload)
        responses = data.get("responses") or [{}]
        resp = responses[0]
        if resp.get("error"):
            self._raise_inner_error(resp["error"], None)
        return parse_page_response(resp, 1)

    async def annotate_pages(
        self, content: bytes, pages: list[int], mime_type: str = "application/pdf"
    ) -> PagedAnnotation:
        if len(pages) > self.pages_per_call:
            raise ValueError(
                f"At most {self.pages_per_call} pages per call, got {len(pages)}"
            )

        payload = {
            "requests": [
                {
                    "inputConfig": {
                        "content": base64.b64encode(content).decode("ascii"),
                        "mimeType": mime_type,
                    },
                    "features": _FEATURES,
                    "pages": pages,
                    "imageContext": {"languageHints": self.language_hints},
                }
            ]
        }
        data = await self._post("files:annotate", payload, pages=pages)
        file_responses = data.get("responses") or [{}]
        file_resp = file_responses[0]
        if file_resp.get("error"):
            self._raise_inner_error(file_resp["error"], pages)

        page_texts = []
        for index, resp in enumerate(file_resp.get("responses") or []):
            if resp.get("error"):
                self._raise_inner_error(resp["error"], pages)
            fallback_number = pages[index] if index < len(pages) else index + 1
            page_texts.append(parse_page_response(resp, fallback_number))

        total = file_resp.get("totalPages")
        logger.debug(
            "OCR annotated pages %s (reported total=%s)",
            pages,
            total,
            extra={"service": "OCR", "pages": pages},
        )
        return PagedAnnotation(
            pages=page_texts,
            total_pages=int(total) if total else None,
        )
