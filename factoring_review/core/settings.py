"""
Centralized application settings using Pydantic.

Environment variables are read once at startup by ``load_settings()`` and the
resulting bundle is passed explicitly to every client that needs it. There are
no module-level settings instances.
"""

from dataclasses import dataclass

from pydantic import SecretStr, ValidationError
from pydantic_settings import BaseSettings

from factoring_review.pipeline.core.config import MAX_STAGE_CONCURRENCY
from factoring_review.pipeline.core.exceptions import ConfigurationError


class RecordStoreSettings(BaseSettings):
    """Record store (kintone REST) configuration."""

    RECORD_STORE_BASE_URL: str
    RECORD_STORE_API_TOKEN: SecretStr
    RECORD_STORE_APP_ID: str

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class OCRSettings(BaseSettings):
    """Vision OCR provider configuration."""

    OCR_API_KEY: SecretStr
    OCR_BASE_URL: str = "https://vision.googleapis.com/v1"
    OCR_PAGES_PER_CALL: int = 5

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class LLMSettings(BaseSettings):
    """Language model (OpenAI-compatible chat completions) configuration."""

    LLM_API_KEY: SecretStr
    LLM_ENDPOINT_URL: str = "https://api.openai.com/v1/chat/completions"
    LLM_MODEL: str = "gpt-4o"
    LLM_STRUCTURED_OUTPUT: bool = True

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class SearchSettings(BaseSettings):
    """Web search (Google Custom Search JSON API) configuration."""

    SEARCH_API_KEY: SecretStr
    SEARCH_ENGINE_ID: str
    SEARCH_BASE_URL: str = "https://www.googleapis.com/customsearch/v1"

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


class AppSettings(BaseSettings):
    """General application settings."""

    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    MAX_STAGE_CONCURRENCY: int = MAX_STAGE_CONCURRENCY
    RATE_LIMIT_MAX_RETRIES: int = 3
    RATE_LIMIT_DEFAULT_WAIT_SECONDS: float = 20.0

    model_config = {"case_sensitive": True, "env_file": ".env", "extra": "ignore"}


@dataclass(frozen=True)
class Settings:
    """All settings needed to build the provider clients and the evaluator."""

    record_store: RecordStoreSettings
    ocr: OCRSettings
    llm: LLMSettings
    search: SearchSettings
    app: AppSettings


def _missing_fields(exc: ValidationError) -> list[str]:
    return [
        str(err["loc"][0])
        for err in exc.errors()
        if err.get("type") == "missing" and err.get("loc")
    ]


def load_settings() -> Settings:
    """Read and validate every settings group.

    Raises:
        ConfigurationError: If any required credential or endpoint is missing.
            All missing variables are reported at once.
    """
    loaded = {}
    missing: list[str] = []
    groups = {
        "record_store": RecordStoreSettings,
        "ocr": OCRSettings,
        "llm": LLMSettings,
        "search": SearchSettings,
        "app": AppSettings,
    }
    for name, settings_cls in groups.items():
        try:
            loaded[name] = settings_cls()
        except ValidationError as exc:
            fields = _missing_fields(exc)
            if not fields:
                raise
            missing.extend(fields)

    if missing:
        raise ConfigurationError(missing=sorted(missing))

    return Settings(**loaded)
