"""LLMPort protocol for language-model extraction and judgment."""

from __future__ import annotations

from typing import Protocol, TypeVar

from pydantic import BaseModel

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class LLMPort(Protocol):
    """Abstraction over the language model.

    ``generate_structured`` returns an instance of ``schema`` or raises
    ExternalServiceError with error_type "invalid_response" when the provider
    cannot produce one. ``generate_text`` returns free text.
    """

    supports_structured_output: bool

    async def generate_structured(self, prompt: str, schema: type[SchemaT]) -> SchemaT: ...

    async def generate_text(self, prompt: str) -> str: ...
