"""Tests for attaching analysis results to stored posts."""
from __future__ import annotations

import asyncio

import pytest

from omnitruth.analysis_client import FALLBACK_GRAPH_SUMMARY, FALLBACK_SUMMARY
from omnitruth.errors import AnalysisError, PostNotFoundError
from omnitruth.models import AnalysisResult, ContextType, Verdict, VoteVerdict
from omnitruth.scoring_service import ScoringService
from omnitruth.verification import VerificationService, attach, needs_verification


class GatedClient:
    """Analysis client whose replies are released one by one by the test."""

    def __init__(self):
        self.gates: list[asyncio.Event] = []
        self.results: list = []
        self.calls = 0

    def add(self, result) -> asyncio.Event:
        gate = asyncio.Event()
        self.gates.append(gate)
        self.results.append(result)
        return gate

    async def request_analysis(self, text, context_type=ContextType.NEWS):
        idx = self.calls
        self.calls += 1
        await self.gates[idx].wait()
        result = self.results[idx]
        if isinstance(result, Exception):
            raise result
        return result


async def _wait_for_calls(client: GatedClient, count: int):
    while client.calls < count:
        await asyncio.sleep(0)


class TestAttach:
    def test_sets_summary_fields_from_result(self, make_post, sample_analysis):
        post = make_post(trust_score=50, verdict=Verdict.UNVERIFIED)

        verified = attach(post, sample_analysis)

        assert verified.trust_score == 82
        assert verified.verdict == Verdict.MOSTLY_TRUE
        assert verified.verification_details == sample_analysis
        assert verified.is_consistent

    def test_attach_is_idempotent(self, make_post, sample_analysis):
        post = make_post()
        once = attach(post, sample_analysis)
        assert attach(once, sample_analysis) == once

    def test_replaces_previous_result(self, make_post, sample_analysis):
        newer = AnalysisResult(trust_score=12, verdict=Verdict.FAKE, summary="Fabricated.")

        post = attach(attach(make_post(), sample_analysis), newer)

        assert post.verification_details == newer
        assert post.trust_score == 12
        assert post.verdict == Verdict.FAKE

    def test_keeps_votes_and_crowd_score(self, make_post, make_vote, sample_analysis):
        post = make_post(crowd_score=64, votes=[make_vote()], likes=7)

        verified = attach(post, sample_analysis)

        assert verified.crowd_score == 64
        assert verified.votes == post.votes
        assert verified.likes == 7

    def test_original_post_untouched(self, make_post, sample_analysis):
        post = make_post()
        attach(post, sample_analysis)
        assert post.verification_details is None
        assert post.trust_score == 50


class TestNeedsVerification:
    def test_unverified_post(self, make_post):
        assert needs_verification(make_post()) is True

    def test_verified_post(self, make_post, sample_analysis):
        post = attach(make_post(), sample_analysis)
        assert needs_verification(post) is False
        assert needs_verification(post, force=True) is True


class TestVerificationService:
    @pytest.mark.asyncio
    async def test_verifies_unanalyzed_post(self, store, make_post, make_client):
        store.insert(make_post(id="p1"))
        client = make_client({
            "trustScore": 15,
            "verdict": "fake",
            "summary": "No record of this event.",
            "claims": [{"text": "The bridge collapsed.", "status": "CONTRADICTED", "confidence": 0.8}],
        })
        service = VerificationService(store, client)

        outcome = await service.verify("p1")

        assert outcome.analyzed is True
        assert outcome.analysis_failed is False
        assert outcome.post.trust_score == 15
        assert outcome.post.verdict == Verdict.FAKE
        assert outcome.post.verification_details.claims[0].id == "1"
        assert store.get("p1") == outcome.post

    @pytest.mark.asyncio
    async def test_empty_reply_attaches_defaults(self, store, make_post, make_client):
        store.insert(make_post(id="p1", trust_score=70))
        service = VerificationService(store, make_client({}))

        outcome = await service.verify("p1")

        details = outcome.post.verification_details
        assert outcome.analyzed is True
        assert details.trust_score == 50
        assert details.verdict == Verdict.UNVERIFIED
        assert details.claims == []
        assert details.sources == []
        assert outcome.post.trust_score == 50

    @pytest.mark.asyncio
    async def test_skips_already_verified_post(self, store, make_post, make_client, sample_analysis):
        store.insert(attach(make_post(id="p1"), sample_analysis))
        client = make_client()
        service = VerificationService(store, client)

        outcome = await service.verify("p1")

        assert outcome.analyzed is False
        assert outcome.post.verification_details == sample_analysis
        assert client._client.calls == []

    @pytest.mark.asyncio
    async def test_force_reruns_analysis(self, store, make_post, make_client, sample_analysis):
        store.insert(attach(make_post(id="p1"), sample_analysis))
        service = VerificationService(store, make_client({"trustScore": 30, "verdict": "MISLEADING"}))

        outcome = await service.verify("p1", force=True)

        assert outcome.analyzed is True
        assert outcome.post.trust_score == 30
        assert outcome.post.verdict == Verdict.MISLEADING

    @pytest.mark.asyncio
    async def test_context_type_reaches_prompt(self, store, make_post, make_client):
        store.insert(make_post(id="p1"))
        client = make_client({})
        service = VerificationService(store, client)

        await service.verify("p1", context_type=ContextType.DEBATE)

        prompt = client._client.calls[0]["messages"][-1]["content"]
        assert "CONTEXT: DEBATE" in prompt

    @pytest.mark.asyncio
    async def test_failed_analysis_keeps_previous_state(self, store, make_post, make_client, sample_analysis):
        store.insert(attach(make_post(id="p1"), sample_analysis))
        service = VerificationService(store, make_client(ConnectionError("network down")))

        outcome = await service.verify("p1", force=True)

        assert outcome.analyzed is False
        assert outcome.analysis_failed is True
        assert outcome.post.verification_details == sample_analysis
        assert store.get("p1").trust_score == 82
        assert not service.is_verifying("p1")

    @pytest.mark.asyncio
    async def test_unparseable_reply_is_a_failure(self, store, make_post, make_client):
        store.insert(make_post(id="p1"))
        service = VerificationService(store, make_client("definitely not json"))

        outcome = await service.verify("p1")

        assert outcome.analysis_failed is True
        assert store.get("p1").verification_details is None

    @pytest.mark.asyncio
    async def test_unknown_post(self, store, make_client):
        service = VerificationService(store, make_client())
        with pytest.raises(PostNotFoundError):
            await service.verify("missing")

    @pytest.mark.asyncio
    async def test_stale_response_is_discarded(self, store, make_post):
        store.insert(make_post(id="p1"))
        client = GatedClient()
        first_gate = client.add(AnalysisResult(trust_score=10, verdict=Verdict.FAKE))
        second_gate = client.add(AnalysisResult(trust_score=95, verdict=Verdict.TRUE))
        service = VerificationService(store, client)

        first = asyncio.create_task(service.verify("p1", force=True))
        await _wait_for_calls(client, 1)
        assert service.is_verifying("p1")
        second = asyncio.create_task(service.verify("p1", force=True))
        await _wait_for_calls(client, 2)

        second_gate.set()
        second_outcome = await second
        first_gate.set()
        first_outcome = await first

        assert second_outcome.analyzed is True
        assert first_outcome.analyzed is False
        assert store.get("p1").trust_score == 95
        assert store.get("p1").verdict == Verdict.TRUE
        assert not service.is_verifying("p1")

    @pytest.mark.asyncio
    async def test_votes_during_analysis_are_kept(self, store, make_post, make_vote):
        store.insert(make_post(id="p1", crowd_score=50))
        client = GatedClient()
        gate = client.add(AnalysisResult(trust_score=40, verdict=Verdict.MISLEADING))
        service = VerificationService(store, client)

        task = asyncio.create_task(service.verify("p1"))
        await _wait_for_calls(client, 1)
        ScoringService(store, max_impact=10).cast_vote("p1", make_vote(VoteVerdict.REAL, 100))
        gate.set()
        outcome = await task

        assert outcome.analyzed is True
        assert outcome.post.crowd_score == 60
        assert len(outcome.post.votes) == 1
        assert outcome.post.trust_score == 40

    @pytest.mark.asyncio
    async def test_raised_analysis_error_is_a_failure(self, store, make_post):
        store.insert(make_post(id="p1"))
        client = GatedClient()
        client.add(AnalysisError("quota exceeded")).set()
        service = VerificationService(store, client)

        outcome = await service.verify("p1")

        assert outcome.analysis_failed is True
        assert store.get("p1").verification_details is None
        assert not service.is_verifying("p1")

    @pytest.mark.asyncio
    async def test_reply_echoing_fallback_text_is_attached(self, store, make_post, make_client):
        store.insert(make_post(id="p1"))
        service = VerificationService(store, make_client({
            "trustScore": 90,
            "verdict": "TRUE",
            "summary": FALLBACK_SUMMARY,
            "realityGraphSummary": FALLBACK_GRAPH_SUMMARY,
        }))

        outcome = await service.verify("p1")

        assert outcome.analyzed is True
        assert outcome.analysis_failed is False
        assert store.get("p1").trust_score == 90
        assert store.get("p1").verdict == Verdict.TRUE
