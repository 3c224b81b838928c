import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from factoring_review.core.settings import Settings, load_settings
from factoring_review.pipeline.clients.llm_client import OpenAICompatibleLLMClient
from factoring_review.pipeline.clients.record_store_client import KintoneRecordStoreClient
from factoring_review.pipeline.clients.search_client import GoogleSearchClient
from factoring_review.pipeline.clients.vision_ocr_client import VisionOCRClient
from factoring_review.pipeline.orchestrator import CaseEvaluator
from factoring_review.pipeline.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)


def build_clients(settings: Settings) -> dict:
    """Construct every provider client from explicit settings."""
    return {
        "record_store": KintoneRecordStoreClient(
            base_url=settings.record_store.RECORD_STORE_BASE_URL,
            api_token=settings.record_store.RECORD_STORE_API_TOKEN.get_secret_value(),
            app_id=settings.record_store.RECORD_STORE_APP_ID,
        ),
        "ocr": VisionOCRClient(
            api_key=settings.ocr.OCR_API_KEY.get_secret_value(),
            base_url=settings.ocr.OCR_BASE_URL,
            pages_per_call=settings.ocr.OCR_PAGES_PER_CALL,
        ),
        "llm": OpenAICompatibleLLMClient(
            api_key=settings.llm.LLM_API_KEY.get_secret_value(),
            endpoint_url=settings.llm.LLM_ENDPOINT_URL,
            model=settings.llm.LLM_MODEL,
            structured_output=settings.llm.LLM_STRUCTURED_OUTPUT,
        ),
        "search": GoogleSearchClient(
            api_key=settings.search.SEARCH_API_KEY.get_secret_value(),
            engine_id=settings.search.SEARCH_ENGINE_ID,
            base_url=settings.search.SEARCH_BASE_URL,
        ),
    }


def build_case_evaluator(settings: Settings, clients: dict) -> CaseEvaluator:
    return CaseEvaluator(
        record_store=clients["record_store"],
        ocr=clients["ocr"],
        search=clients["search"],
        llm=clients["llm"],
        retry_policy=RetryPolicy(
            max_retries=settings.app.RATE_LIMIT_MAX_RETRIES,
            default_wait_seconds=settings.app.RATE_LIMIT_DEFAULT_WAIT_SECONDS,
        ),
        max_concurrency=settings.app.MAX_STAGE_CONCURRENCY,
        pages_per_call=settings.ocr.OCR_PAGES_PER_CALL,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown tasks.

    Missing credentials raise ConfigurationError here, before any request
    is served.
    """
    settings = load_settings()

    logger.info("Initializing provider clients...")
    clients = build_clients(settings)
    app.state.clients = clients
    app.state.case_evaluator = build_case_evaluator(settings, clients)
    logger.info("Case evaluator ready")

    yield

    logger.info("Closing provider clients...")
    for name, client in clients.items():
        await client.aclose()
        logger.info(f"Closed {name} client")
