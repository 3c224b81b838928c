"""Unit tests for settings loading."""

import pytest

from factoring_review.core.settings import load_settings
from factoring_review.pipeline.core.exceptions import ConfigurationError

REQUIRED = {
    "RECORD_STORE_BASE_URL": "https://example.cybozu.com",
    "RECORD_STORE_API_TOKEN": "record-token",
    "RECORD_STORE_APP_ID": "12",
    "OCR_API_KEY": "ocr-key",
    "LLM_API_KEY": "llm-key",
    "SEARCH_API_KEY": "search-key",
    "SEARCH_ENGINE_ID": "cx-1",
}


@pytest.fixture
def env(monkeypatch, tmp_path):
    # No stray .env from the working directory
    monkeypatch.chdir(tmp_path)
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    return monkeypatch


class TestLoadSettings:
    def test_loads_every_group(self, env):
        env.setenv("LLM_STRUCTURED_OUTPUT", "false")
        env.setenv("MAX_STAGE_CONCURRENCY", "2")

        settings = load_settings()

        assert settings.record_store.RECORD_STORE_APP_ID == "12"
        assert settings.ocr.OCR_API_KEY.get_secret_value() == "ocr-key"
        assert settings.ocr.OCR_PAGES_PER_CALL == 5
        assert settings.llm.LLM_STRUCTURED_OUTPUT is False
        assert settings.search.SEARCH_ENGINE_ID == "cx-1"
        assert settings.app.MAX_STAGE_CONCURRENCY == 2
        assert settings.app.RATE_LIMIT_MAX_RETRIES == 3

    def test_secrets_are_masked(self, env):
        settings = load_settings()
        assert "ocr-key" not in repr(settings.ocr)

    def test_all_missing_variables_are_reported(self, env):
        env.delenv("OCR_API_KEY")
        env.delenv("SEARCH_ENGINE_ID")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings()

        assert exc_info.value.missing == ["OCR_API_KEY", "SEARCH_ENGINE_ID"]
        assert exc_info.value.http_status == 500
