"""Company existence check through web search.

Confidence (0-100):
- any relevant hit: +40
- an official website among the relevant hits: +40
- at least 3 relevant hits: +20

A hit is relevant when the normalized company name is found in its title or
snippet with a ``partial_ratio`` of at least SEARCH_RELEVANCE_THRESHOLD.
"""

import logging
from typing import Optional
from urllib.parse import urlparse

from rapidfuzz import fuzz

from factoring_review.core.logging_utils import sanitize_name
from factoring_review.pipeline.core.config import (
    AGGREGATOR_DOMAINS,
    COMPANY_VERIFIED_THRESHOLD,
    SEARCH_RELEVANCE_THRESHOLD,
    SEARCH_RESULTS_PER_QUERY,
)
from factoring_review.pipeline.core.exceptions import ExternalServiceError, RateLimitError
from factoring_review.pipeline.models.dto import CompanyVerification, SearchHit
from factoring_review.pipeline.ports.search_port import SearchPort
from factoring_review.pipeline.processors.normalization import names_match, normalize_name
from factoring_review.pipeline.resilience.fan_out import gather_or_cancel

logger = logging.getLogger(__name__)


def relevance_score(name: str, hit: SearchHit) -> int:
    target = normalize_name(name)
    if not target:
        return 0
    text = normalize_name(f"{hit.title} {hit.snippet}")
    return int(fuzz.partial_ratio(target, text))


def is_aggregator(url: str) -> bool:
    host = (urlparse(url).hostname or "").lower()
    return any(host == d or host.endswith("." + d) for d in AGGREGATOR_DOMAINS)


def build_queries(name: str, industry_hint: Optional[str] = None) -> list[str]:
    queries = [name]
    if industry_hint and industry_hint.strip():
        queries.append(f"{name} {industry_hint.strip()}")
    return queries


def score_verification(
    name: str,
    hits: list[SearchHit],
    errors: Optional[list[str]] = None,
    threshold: int = SEARCH_RELEVANCE_THRESHOLD,
) -> CompanyVerification:
    """Compute the verification result from de-duplicated search hits."""
    relevant = [h for h in hits if relevance_score(name, h) >= threshold]
    website = next((h.url for h in relevant if h.url and not is_aggregator(h.url)), None)

    confidence = 0
    if relevant:
        confidence += 40
    if website:
        confidence += 40
    if len(relevant) >= 3:
        confidence += 20
    confidence = min(confidence, 100)

    return CompanyVerification(
        name=name,
        verified=confidence >= COMPANY_VERIFIED_THRESHOLD,
        confidence=confidence,
        website_url=website,
        relevant_hits=len(relevant),
        total_hits=len(hits),
        errors=errors or [],
    )


async def verify_company(
    search: SearchPort,
    name: str,
    industry_hint: Optional[str] = None,
    num_results: int = SEARCH_RESULTS_PER_QUERY,
) -> CompanyVerification:
    """Search for a company and score how well its existence is supported.

    Raises:
        RateLimitError: When the search provider is rate limited.
    """
    hits: list[SearchHit] = []
    seen: set[str] = set()
    errors: list[str] = []
    for query in build_queries(name, industry_hint):
        try:
            results = await search.search(query, num_results=num_results)
        except RateLimitError:
            raise
        except ExternalServiceError as exc:
            logger.warning(
                "Company search failed",
                extra={
                    "service": exc.service_name,
                    "error_code": exc.error_code,
                    "subject": sanitize_name(name),
                },
            )
            errors.append(exc.error_code)
            continue
        for hit in results:
            key = hit.url or hit.title
            if key in seen:
                continue
            seen.add(key)
            hits.append(hit)
    return score_verification(name, hits, errors)


def company_names(
    applicant: Optional[str],
    debtors: list[Optional[str]],
    collaterals: list[Optional[str]],
) -> list[str]:
    """Applicant, debtors and collateral companies without name-equivalent repeats."""
    names: list[str] = []
    for name in [applicant, *debtors, *collaterals]:
        if name and name.strip() and not any(names_match(name, n) for n in names):
            names.append(name.strip())
    return names


async def verify_companies(
    search: SearchPort,
    names: list[str],
    industry_hint: Optional[str] = None,
) -> list[CompanyVerification]:
    return await gather_or_cancel(*(verify_company(search, n, industry_hint) for n in names))
