import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from factoring_review.pipeline.clients.http_utils import error_message, parse_retry_after
from factoring_review.pipeline.core.config import (
    DEFAULT_LLM_MODEL,
    LLM_MAX_TOKENS,
    LLM_REQUEST_TIMEOUT_SECONDS,
)
from factoring_review.pipeline.core.exceptions import ExternalServiceError, RateLimitError
from factoring_review.pipeline.ports.llm_port import SchemaT

logger = logging.getLogger(__name__)


def _raise_llm_error(error_type: str, details: dict[str, Any], exc: Optional[Exception] = None):
    error = ExternalServiceError(service_name="LLM", error_type=error_type, details=details)
    if exc is not None:
        raise error from exc
    raise error


class OpenAICompatibleLLMClient:
    """Chat-completions client implementing LLMPort.

    Typed output uses ``response_format`` with the schema's JSON Schema. When
    ``structured_output`` is off the caller is expected to use
    ``generate_text`` and parse the prose.
    """

    def __init__(
        self,
        api_key: str,
        endpoint_url: str = "https://api.openai.com/v1/chat/completions",
        model: str = DEFAULT_LLM_MODEL,
        timeout: float = LLM_REQUEST_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        temperature: float = 0.0,
        max_tokens: int = LLM_MAX_TOKENS,
        structured_output: bool = True,
    ):
        self.endpoint_url = endpoint_url
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.supports_structured_output = structured_output
        self._client = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _complete(self, prompt: str, response_format: Optional[dict] = None) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        if response_format is not None:
            payload["response_format"] = response_format

        try:
            resp = await self._client.post(self.endpoint_url, json=payload)
        except httpx.TimeoutException as exc:
            _raise_llm_error("timeout", {}, exc)
        except httpx.HTTPError as exc:
            _raise_llm_error("unavailable", {"reason": str(exc)}, exc)

        if resp.status_code == 429:
            raise RateLimitError("LLM", retry_after=parse_retry_after(resp))
        if resp.status_code >= 400:
            _raise_llm_error(
                "error", {"http_code": resp.status_code, "body": error_message(resp)}
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            _raise_llm_error("invalid_response", {"reason": "missing message content"}, exc)

        if not isinstance(content, str):
            _raise_llm_error("invalid_response", {"reason": "message content is not text"})
        return content

    async def generate_structured(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        if not self.supports_structured_output:
            _raise_llm_error("invalid_response", {"reason": "typed output disabled"})

        response_format = {
            "type": "json_schema",
            "json_schema": {
                "name": schema.__name__,
                "schema": schema.model_json_schema(),
                "strict": False,
            },
        }
        content = await self._complete(prompt, response_format)
        try:
            return schema.model_validate_json(content)
        except ValidationError as exc:
            logger.warning(
                "LLM output did not match %s",
                schema.__name__,
                extra={"service": "LLM"},
            )
            _raise_llm_error(
                "invalid_response",
                {"schema": schema.__name__, "errors": exc.error_count()},
                exc,
            )

    async def generate_text(self, prompt: str) -> str:
        return await self._complete(prompt)
