"""Tests for the analysis collaborator client."""
from __future__ import annotations

import asyncio

import pytest

from omnitruth.analysis_client import (
    AnalysisClient, FALLBACK_GRAPH_SUMMARY, FALLBACK_SUMMARY, REEL_AUTHOR, clean_json,
    fallback_analysis, parse_json,
)
from omnitruth.errors import AnalysisError
from omnitruth.models import (
    CommunityRole, ContextType, DateRange, PostType, SearchFilters, Severity, Verdict,
)


class TestParsing:
    def test_strips_code_fences(self):
        assert clean_json('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert clean_json('```\n[1, 2]\n```') == "[1, 2]"

    def test_empty_reply_is_empty_object(self):
        assert clean_json("") == "{}"
        assert clean_json(None) == "{}"
        assert parse_json(None) == {}

    def test_unparseable_raises(self):
        with pytest.raises(AnalysisError):
            parse_json("The analysis is: very trustworthy")

    def test_fallback_shape(self):
        result = fallback_analysis()
        assert result.trust_score == 50
        assert result.verdict == Verdict.UNVERIFIED
        assert result.summary == FALLBACK_SUMMARY
        assert result.reality_graph_summary == FALLBACK_GRAPH_SUMMARY
        assert result.intent.primary_motive == "Error"
        assert result.claims == []
        assert result.manipulation_flags == []


class TestAnalyzeTextDeeply:
    @pytest.mark.asyncio
    async def test_parses_fenced_reply(self, make_client):
        client = make_client('```json\n{"trustScore": 77, "verdict": "PARTIALLY_TRUE", "summary": "Mixed."}\n```')

        result = await client.analyze_text_deeply("Some claim", ContextType.NEWS)

        assert result.trust_score == 77
        assert result.verdict == Verdict.PARTIALLY_TRUE
        assert result.summary == "Mixed."
        assert result.reality_graph_summary == "Mixed."

    @pytest.mark.asyncio
    async def test_malformed_fields_get_defaults(self, make_client):
        client = make_client({
            "trustScore": "not a number",
            "verdict": "DEFINITELY_REAL",
            "summary": 42,
            "claims": "none",
            "manipulationFlags": [{"type": "Gaslighting", "severity": "extreme"}, "junk"],
            "intent": {"primaryMotive": "Persuade", "emotionalState": None},
            "sources": ["https://a.example", None, "https://a.example"],
        })

        result = await client.analyze_text_deeply("text")

        assert result.trust_score == 50
        assert result.verdict == Verdict.UNVERIFIED
        assert result.summary == "Analysis incomplete."
        assert result.claims == []
        assert len(result.manipulation_flags) == 1
        assert result.manipulation_flags[0].severity == Severity.LOW
        assert result.intent.primary_motive == "Persuade"
        assert result.intent.emotional_state == "Neutral"
        assert result.sources == ["https://a.example"]
        assert result != fallback_analysis()

    @pytest.mark.asyncio
    async def test_out_of_range_trust_is_clamped(self, make_client):
        result = await make_client({"trustScore": 140}).analyze_text_deeply("text")
        assert result.trust_score == 100

    @pytest.mark.asyncio
    async def test_zero_trust_is_kept(self, make_client):
        result = await make_client({"trustScore": 0, "verdict": "FAKE"}).analyze_text_deeply("text")
        assert result.trust_score == 0

    @pytest.mark.asyncio
    async def test_non_object_reply_gives_defaults(self, make_client):
        result = await make_client([1, 2, 3]).analyze_text_deeply("text")
        assert result.trust_score == 50
        assert result.verdict == Verdict.UNVERIFIED

    @pytest.mark.asyncio
    async def test_call_failure_returns_fallback(self, make_client):
        result = await make_client(RuntimeError("quota exceeded")).analyze_text_deeply("text")
        assert result == fallback_analysis()

    @pytest.mark.asyncio
    async def test_missing_api_key_returns_fallback(self):
        client = AnalysisClient(api_key="   ")
        result = await client.analyze_text_deeply("text")
        assert result == fallback_analysis()

    @pytest.mark.asyncio
    async def test_timeout_returns_fallback(self, make_client):
        client = make_client({})

        async def slow_create(**kwargs):
            await asyncio.sleep(1)

        client._client.chat.completions.create = slow_create
        client.timeout = 0.01

        result = await client.analyze_text_deeply("text")

        assert result == fallback_analysis()

    @pytest.mark.asyncio
    async def test_prompt_carries_text_and_context(self, make_client):
        client = make_client({})

        await client.analyze_text_deeply("You never listen to me.", ContextType.CHAT)

        call = client._client.calls[0]
        assert call["model"] == client.model
        prompt = call["messages"][-1]["content"]
        assert "You never listen to me." in prompt
        assert "CONTEXT: CHAT" in prompt
        assert "Sincerity/Health Score" in prompt


class TestRequestAnalysis:
    @pytest.mark.asyncio
    async def test_failure_raises(self, make_client):
        with pytest.raises(AnalysisError):
            await make_client(TimeoutError()).request_analysis("text")

    @pytest.mark.asyncio
    async def test_unparseable_reply_raises(self, make_client):
        with pytest.raises(AnalysisError):
            await make_client("not json at all").request_analysis("text")

    @pytest.mark.asyncio
    async def test_reply_echoing_fallback_text_is_a_result(self, make_client):
        client = make_client({
            "trustScore": 90,
            "verdict": "TRUE",
            "summary": FALLBACK_SUMMARY,
            "realityGraphSummary": FALLBACK_GRAPH_SUMMARY,
        })

        result = await client.request_analysis("text")

        assert result.trust_score == 90
        assert result.verdict == Verdict.TRUE


class TestRequestTrendingPosts:
    @pytest.mark.asyncio
    async def test_failure_raises(self, make_client):
        with pytest.raises(AnalysisError):
            await make_client(TimeoutError()).request_trending_posts()

    @pytest.mark.asyncio
    async def test_non_list_reply_raises(self, make_client):
        with pytest.raises(AnalysisError):
            await make_client({"posts": []}).request_trending_posts()

    @pytest.mark.asyncio
    async def test_empty_list_is_a_valid_answer(self, make_client):
        assert await make_client([]).request_trending_posts() == []


class TestGenerateReelPost:
    @pytest.mark.asyncio
    async def test_builds_generated_reel(self, make_client):
        client = make_client({
            "headline": "Dam Holds",
            "snippet": "Engineers confirm the structure survived the flood.",
            "imagePrompt": "a dam at dusk",
        })

        post = await client.generate_reel_post("river flood")

        assert post.type == PostType.GENERATED_REEL
        assert post.id.startswith("reel-")
        assert post.author == REEL_AUTHOR
        assert post.content == "Dam Holds - Engineers confirm the structure survived the flood."
        assert post.crowd_score == 50
        assert post.votes == []
        assert post.trust_score == 95
        assert post.verdict == Verdict.TRUE
        assert post.verification_details.reality_graph_summary == "Generated content."
        assert post.is_consistent
        assert "river flood" in client._client.calls[0]["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_low_trust_is_unverified(self, make_client):
        client = make_client({"headline": "H", "snippet": "S", "trustScore": 80})

        post = await client.generate_reel_post("topic")

        assert post.trust_score == 80
        assert post.verdict == Verdict.UNVERIFIED

    @pytest.mark.asyncio
    async def test_incomplete_reply_is_none(self, make_client):
        assert await make_client({"headline": "Only a headline"}).generate_reel_post("t") is None
        assert await make_client([{"headline": "H", "snippet": "S"}]).generate_reel_post("t") is None

    @pytest.mark.asyncio
    async def test_failure_is_none(self, make_client):
        assert await make_client(ConnectionError("offline")).generate_reel_post("t") is None


class TestFetchTrendingPosts:
    @pytest.mark.asyncio
    async def test_maps_items_to_verified_posts(self, make_client):
        client = make_client([
            {"headline": "Summit", "author": "Reuters", "content": "Leaders met.",
             "trustScore": 97, "verdict": "TRUE", "sourceUrl": "https://reuters.com/x"},
            {"content": "Markets rallied.", "verdict": "MOSTLY_TRUE"},
        ])

        posts = await client.fetch_trending_posts()

        assert len(posts) == 2
        first, second = posts
        assert first.id.startswith("trend-")
        assert first.id != second.id
        assert first.author == "Reuters"
        assert first.author_role == "Journalist"
        assert first.trust_score == 97
        assert first.crowd_score == 50
        assert first.votes == []
        assert first.verification_details.sources == ["https://reuters.com/x"]
        assert first.is_consistent
        assert second.author == "Global Chronicler"
        assert second.trust_score == 90
        assert second.verdict == Verdict.MOSTLY_TRUE

    @pytest.mark.asyncio
    async def test_items_without_content_are_skipped(self, make_client):
        posts = await make_client([{"author": "AP"}, "junk", {"content": "Real story."}]).fetch_trending_posts()
        assert [p.content for p in posts] == ["Real story."]

    @pytest.mark.asyncio
    async def test_non_list_reply_is_empty(self, make_client):
        assert await make_client({"posts": []}).fetch_trending_posts() == []

    @pytest.mark.asyncio
    async def test_failure_is_empty(self, make_client):
        assert await make_client(ConnectionError("offline")).fetch_trending_posts() == []


class TestPerformGlobalSearch:
    @pytest.mark.asyncio
    async def test_maps_results(self, make_client):
        client = make_client([
            {"author": "Dr. Lee", "authorRole": "Expert", "content": "Study retracted.",
             "trustScore": 35, "verdict": "MISLEADING", "verificationSummary": "Journal notice."},
            {"content": "Unattributed rumor."},
        ])

        posts = await client.perform_global_search("vaccine study")

        assert len(posts) == 2
        expert, rumor = posts
        assert expert.id.startswith("search-")
        assert expert.author_role == "Expert"
        assert expert.verdict == Verdict.MISLEADING
        assert expert.verification_details.summary == "Journal notice."
        assert expert.crowd_score == 50
        assert rumor.author == "Unknown Source"
        assert rumor.author_role == "Citizen"
        assert rumor.trust_score == 50
        assert rumor.verdict == Verdict.UNVERIFIED

    @pytest.mark.asyncio
    async def test_ids_differ_between_searches(self, make_client):
        client = make_client([{"content": "a"}], [{"content": "b"}])

        first = await client.perform_global_search("q")
        second = await client.perform_global_search("q")

        assert first[0].id != second[0].id

    @pytest.mark.asyncio
    async def test_filters_are_sent_and_enforced(self, make_client):
        client = make_client([
            {"authorRole": "Expert", "content": "kept", "verdict": "FAKE"},
            {"authorRole": "Citizen", "content": "wrong role", "verdict": "FAKE"},
            {"authorRole": "Expert", "content": "wrong verdict", "verdict": "TRUE"},
        ])
        filters = SearchFilters(
            date_range=DateRange.LAST_WEEK,
            author_role=CommunityRole.EXPERT,
            verdict=Verdict.FAKE,
        )

        posts = await client.perform_global_search("q", filters)

        assert [p.content for p in posts] == ["kept"]
        prompt = client._client.calls[0]["messages"][-1]["content"]
        assert "Date Range: LAST WEEK" in prompt
        assert "Author Role: Expert" in prompt
        assert "Verdict/Status: FAKE" in prompt

    @pytest.mark.asyncio
    async def test_no_filters_no_filter_block(self, make_client):
        client = make_client([])
        assert await client.perform_global_search("q") == []
        assert "strict filters" not in client._client.calls[0]["messages"][-1]["content"]

    @pytest.mark.asyncio
    async def test_failure_is_empty(self, make_client):
        assert await make_client("<html>503</html>").perform_global_search("q") == []
