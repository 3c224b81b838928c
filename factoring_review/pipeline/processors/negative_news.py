"""Negative-news screening of people tied to a case.

Every keyword in NEGATIVE_NEWS_KEYWORDS is searched together with the
person's name. Each hit is judged by typed language-model output; without a
language model, or when the judgment fails, a hit is relevant when the
normalized name appears in its title or snippet.
"""

import logging
from typing import Optional

from factoring_review.core.logging_utils import sanitize_name
from factoring_review.pipeline.core.config import NEGATIVE_NEWS_KEYWORDS, SEARCH_RESULTS_PER_QUERY
from factoring_review.pipeline.core.exceptions import ExternalServiceError, RateLimitError
from factoring_review.pipeline.models.dto import NegativeNewsHit, NegativeNewsResult, SearchHit
from factoring_review.pipeline.models.facts import RelevanceJudgment
from factoring_review.pipeline.ports.llm_port import LLMPort
from factoring_review.pipeline.ports.search_port import SearchPort
from factoring_review.pipeline.processors.normalization import normalize_for_compare
from factoring_review.pipeline.processors.prompts import build_relevance_prompt
from factoring_review.pipeline.resilience.fan_out import gather_or_cancel

logger = logging.getLogger(__name__)


def mentions_name(name: str, hit: SearchHit) -> bool:
    target = normalize_for_compare(name)
    return bool(target) and target in normalize_for_compare(f"{hit.title} {hit.snippet}")


async def judge_hit(
    llm: Optional[LLMPort], name: str, hit: SearchHit
) -> tuple[bool, Optional[str]]:
    """Return (relevant, reason) for one hit.

    Raises:
        RateLimitError: When the language model is rate limited.
    """
    if llm is not None and getattr(llm, "supports_structured_output", False):
        try:
            judgment = await llm.generate_structured(
                build_relevance_prompt(name, hit.title, hit.snippet, hit.url),
                RelevanceJudgment,
            )
            return judgment.is_relevant, judgment.reason or None
        except RateLimitError:
            raise
        except ExternalServiceError as exc:
            logger.warning(
                "Relevance judgment failed, using name match",
                extra={"error_code": exc.error_code},
            )
    if mentions_name(name, hit):
        return True, "name mentioned"
    return False, None


async def screen_person(
    search: SearchPort,
    llm: Optional[LLMPort],
    name: str,
    keywords: tuple[str, ...] = NEGATIVE_NEWS_KEYWORDS,
) -> NegativeNewsResult:
    """Search ``name`` with each keyword and judge the hits.

    Raises:
        RateLimitError: When the search provider or language model is rate limited.
    """
    result = NegativeNewsResult(name=name)
    seen: set[str] = set()
    for keyword in keywords:
        query = f"{name} {keyword}"
        try:
            hits = await search.search(query, num_results=SEARCH_RESULTS_PER_QUERY)
        except RateLimitError:
            raise
        except ExternalServiceError as exc:
            logger.warning(
                "Negative news search failed",
                extra={
                    "service": exc.service_name,
                    "error_code": exc.error_code,
                    "subject": sanitize_name(name),
                },
            )
            result.errors.append(exc.error_code)
            continue

        for hit in hits:
            key = hit.url or hit.title
            if key in seen:
                continue
            seen.add(key)
            relevant, reason = await judge_hit(llm, name, hit)
            result.hits.append(
                NegativeNewsHit(
                    query=query,
                    title=hit.title,
                    url=hit.url,
                    snippet=hit.snippet,
                    relevant=relevant,
                    reason=reason,
                )
            )
    if result.has_negative_info:
        logger.info(
            "Negative news found for screened person", extra={"subject": sanitize_name(name)}
        )
    return result


async def screen_people(
    search: SearchPort, llm: Optional[LLMPort], names: list[str]
) -> list[NegativeNewsResult]:
    return await gather_or_cancel(*(screen_person(search, llm, n) for n in names))
