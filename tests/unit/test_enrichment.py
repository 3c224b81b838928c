"""Unit tests for company verification and negative-news screening."""

import asyncio
import logging

import pytest

from factoring_review.pipeline.core.exceptions import ExternalServiceError, RateLimitError
from factoring_review.pipeline.models.dto import SearchHit
from factoring_review.pipeline.models.facts import RelevanceJudgment
from factoring_review.pipeline.processors.company_verification import (
    build_queries,
    company_names,
    is_aggregator,
    relevance_score,
    score_verification,
    verify_companies,
    verify_company,
)
from factoring_review.pipeline.processors.negative_news import (
    judge_hit,
    mentions_name,
    screen_people,
    screen_person,
)
from tests.fakes import FakeLLM, FakeSearch

OFFICIAL = SearchHit(title="株式会社サンプル 公式サイト", url="https://sample.co.jp/", snippet="")
WIKI = SearchHit(
    title="サンプル (企業)", url="https://ja.wikipedia.org/wiki/sample", snippet="東京の企業"
)
DIRECTORY = SearchHit(
    title="サンプル株式会社の会社概要", url="https://baseconnect.in/companies/1", snippet=""
)
UNRELATED = SearchHit(title="今日の天気", url="https://weather.example/", snippet="晴れ")


class SlowSearch:
    """Rate limits queries for ``limited``; answers the rest after a delay."""

    def __init__(self, limited: str, delay: float = 0.05):
        self.limited = limited
        self.delay = delay
        self.completed: list[str] = []

    async def search(self, query: str, num_results: int = 5) -> list[SearchHit]:
        if self.limited in query:
            raise RateLimitError("SEARCH", retry_after=20)
        await asyncio.sleep(self.delay)
        self.completed.append(query)
        return []


class TestRelevance:
    def test_name_in_title_is_relevant(self):
        assert relevance_score("株式会社サンプル", OFFICIAL) == 100
        assert relevance_score("株式会社サンプル", UNRELATED) < 80

    def test_empty_name_scores_zero(self):
        assert relevance_score("", OFFICIAL) == 0

    def test_aggregator_domains(self):
        assert is_aggregator("https://ja.wikipedia.org/wiki/x")
        assert is_aggregator("https://baseconnect.in/companies/1")
        assert not is_aggregator("https://sample.co.jp/")
        assert not is_aggregator("https://notwikipedia.org/")

    def test_queries_with_industry_hint(self):
        assert build_queries("株式会社サンプル") == ["株式会社サンプル"]
        assert build_queries("株式会社サンプル", " 製造業 ") == [
            "株式会社サンプル",
            "株式会社サンプル 製造業",
        ]


class TestScoreVerification:
    """Confidence is additive: relevant hit, official website, three or more hits."""

    def test_full_confidence(self):
        result = score_verification("株式会社サンプル", [OFFICIAL, WIKI, DIRECTORY, UNRELATED])

        assert result.confidence == 100
        assert result.verified is True
        assert result.website_url == "https://sample.co.jp/"
        assert result.relevant_hits == 3
        assert result.total_hits == 4

    def test_only_aggregators(self):
        result = score_verification("株式会社サンプル", [WIKI])

        assert result.confidence == 40
        assert result.verified is False
        assert result.website_url is None

    def test_no_hits(self):
        result = score_verification("株式会社サンプル", [])

        assert result.confidence == 0
        assert result.relevant_hits == 0


class TestVerifyCompany:
    @pytest.mark.asyncio
    async def test_hits_are_deduplicated_across_queries(self):
        search = FakeSearch(
            results={
                "株式会社サンプル": [OFFICIAL, WIKI],
                "株式会社サンプル 製造業": [OFFICIAL, DIRECTORY],
            }
        )
        result = await verify_company(search, "株式会社サンプル", "製造業")

        assert search.queries == ["株式会社サンプル", "株式会社サンプル 製造業"]
        assert result.total_hits == 3
        assert result.confidence == 100

    @pytest.mark.asyncio
    async def test_failed_query_is_recorded(self):
        search = FakeSearch(
            results={"株式会社サンプル": [OFFICIAL]},
            failing=("株式会社サンプル 製造業",),
        )
        result = await verify_company(search, "株式会社サンプル", "製造業")

        assert result.errors == ["SEARCH_UNAVAILABLE"]
        assert result.confidence == 80

    @pytest.mark.asyncio
    async def test_failed_query_logs_masked_name(self, caplog):
        search = FakeSearch(failing=("株式会社サンプル",))

        with caplog.at_level(logging.WARNING):
            await verify_company(search, "株式会社サンプル")

        record = next(r for r in caplog.records if r.getMessage() == "Company search failed")
        assert record.subject == "株式***プル"
        assert "株式会社サンプル" not in caplog.text

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self):
        search = FakeSearch(rate_limits={"株式会社サンプル": 1})

        with pytest.raises(RateLimitError):
            await verify_company(search, "株式会社サンプル")

    @pytest.mark.asyncio
    async def test_verify_companies_keeps_order(self):
        search = FakeSearch(results={"株式会社サンプル": [OFFICIAL]})
        results = await verify_companies(search, ["株式会社テスト商事", "株式会社サンプル"])

        assert [r.name for r in results] == ["株式会社テスト商事", "株式会社サンプル"]
        assert [r.confidence for r in results] == [0, 80]

    @pytest.mark.asyncio
    async def test_rate_limit_cancels_sibling_searches(self):
        search = SlowSearch(limited="A社")

        with pytest.raises(RateLimitError):
            await verify_companies(search, ["A社", "B社"])
        await asyncio.sleep(0.1)

        assert search.completed == []

    def test_company_names_skip_equivalent_and_blank(self):
        names = company_names(
            "株式会社テスト商事",
            ["株式会社サンプル", None],
            ["カ)サンプル", "  ", "有限会社ミナト"],
        )
        assert names == ["株式会社テスト商事", "株式会社サンプル", "有限会社ミナト"]


ARREST = SearchHit(title="山田太郎容疑者を逮捕", url="https://news.example/1", snippet="")
WEATHER = SearchHit(title="天気", url="https://news.example/2", snippet="晴れ")


class TestJudgeHit:
    def test_mentions_name_ignores_spacing(self):
        assert mentions_name("山田 太郎", ARREST)
        assert not mentions_name("山田太郎", WEATHER)
        assert not mentions_name("", WEATHER)

    @pytest.mark.asyncio
    async def test_language_model_judgment(self):
        llm = FakeLLM(
            structured={RelevanceJudgment: RelevanceJudgment(is_relevant=False, reason="namesake")}
        )
        assert await judge_hit(llm, "山田太郎", ARREST) == (False, "namesake")
        assert "山田太郎" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_falls_back_to_name_match(self):
        llm = FakeLLM(structured_error=ExternalServiceError("LLM", "invalid_response"))
        assert await judge_hit(llm, "山田太郎", ARREST) == (True, "name mentioned")
        assert await judge_hit(None, "山田太郎", WEATHER) == (False, None)

    @pytest.mark.asyncio
    async def test_without_structured_output_the_model_is_not_called(self):
        llm = FakeLLM(supports_structured_output=False)
        assert await judge_hit(llm, "山田太郎", ARREST) == (True, "name mentioned")
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_rate_limit_propagates(self):
        llm = FakeLLM(structured_error=RateLimitError("LLM", retry_after=5))
        with pytest.raises(RateLimitError):
            await judge_hit(llm, "山田太郎", ARREST)


class TestScreenPerson:
    @pytest.mark.asyncio
    async def test_each_keyword_is_searched_and_hits_deduplicated(self):
        search = FakeSearch(
            results={
                "山田太郎 詐欺": [ARREST],
                "山田太郎 逮捕": [ARREST, WEATHER],
            }
        )
        result = await screen_person(search, None, "山田太郎")

        assert search.queries == [
            "山田太郎 詐欺",
            "山田太郎 逮捕",
            "山田太郎 容疑",
            "山田太郎 被害",
        ]
        assert [h.url for h in result.hits] == ["https://news.example/1", "https://news.example/2"]
        assert result.hits[0].query == "山田太郎 詐欺"
        assert result.hits[0].relevant is True
        assert result.hits[1].relevant is False
        assert result.has_negative_info is True

    @pytest.mark.asyncio
    async def test_failed_keyword_is_recorded(self):
        search = FakeSearch(failing=("山田太郎 容疑",))
        result = await screen_person(search, None, "山田太郎")

        assert result.errors == ["SEARCH_UNAVAILABLE"]
        assert result.has_negative_info is False

    @pytest.mark.asyncio
    async def test_screen_people(self):
        search = FakeSearch(results={"鈴木花子 詐欺": [ARREST]})
        results = await screen_people(search, None, ["山田太郎", "鈴木花子"])

        assert [r.name for r in results] == ["山田太郎", "鈴木花子"]
        assert [r.has_negative_info for r in results] == [False, False]

    @pytest.mark.asyncio
    async def test_rate_limit_cancels_sibling_screenings(self):
        search = SlowSearch(limited="山田太郎")

        with pytest.raises(RateLimitError):
            await screen_people(search, None, ["山田太郎", "鈴木花子"])
        await asyncio.sleep(0.1)

        assert search.completed == []
