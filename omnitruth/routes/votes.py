"""
API routes for community votes on posts.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from omnitruth.errors import PostNotFoundError
from omnitruth.models import (
    CastVoteRequest, ConsensusSummaryResponse, Vote, VoteResultResponse, VoteWeightResponse,
    clamp_score, round_half_up,
)
from omnitruth.scoring_service import ScoringService
from omnitruth.store import PostStore, get_store


router = APIRouter(tags=["Votes"])


def get_scoring_service(store: PostStore = Depends(get_store)) -> ScoringService:
    """Dependency providing a scoring service bound to the shared store."""
    return ScoringService(store)


# =============================================================================
# Cast Vote
# =============================================================================


@router.post("/posts/{post_id}/votes", response_model=VoteResultResponse, status_code=201)
def cast_vote(
    post_id: str,
    request: CastVoteRequest,
    service: ScoringService = Depends(get_scoring_service)
) -> VoteResultResponse:
    """
    Cast a community vote on a post.

    The crowd score moves by up to 10 points, in proportion to the voter's
    credibility: REAL raises it, FAKE lowers it, UNSURE leaves it unchanged.
    Every vote is recorded in the post's history.
    """
    vote = request.to_vote()
    with service.store.lock:
        before = service.store.get(post_id)
        if before is None:
            raise HTTPException(status_code=404, detail="Post not found")
        try:
            post = service.cast_vote(post_id, vote)
        except PostNotFoundError:
            raise HTTPException(status_code=404, detail="Post not found")

    return VoteResultResponse(
        post=post,
        previous_crowd_score=before.crowd_score,
        crowd_score=post.crowd_score,
        weight=service.weight_for(vote.user_credibility),
    )


# =============================================================================
# Get Votes
# =============================================================================


@router.get("/posts/{post_id}/votes", response_model=List[Vote])
def get_votes_for_post(
    post_id: str,
    limit: int = Query(default=100, le=500),
    offset: int = 0,
    store: PostStore = Depends(get_store)
) -> List[Vote]:
    """Get a post's vote history in the order the votes were cast."""
    post = store.get(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post.votes[offset:offset + limit]


@router.get("/posts/{post_id}/consensus", response_model=ConsensusSummaryResponse)
def get_consensus_summary(
    post_id: str,
    service: ScoringService = Depends(get_scoring_service)
) -> ConsensusSummaryResponse:
    """
    Summarize a post's votes.

    ``consensusVolume`` counts every vote including UNSURE ones, and
    ``uncertainty`` is the share of UNSURE votes.
    """
    try:
        return ConsensusSummaryResponse(**service.summarize(post_id))
    except PostNotFoundError:
        raise HTTPException(status_code=404, detail="Post not found")


@router.get("/votes/weight", response_model=VoteWeightResponse)
def get_vote_weight(
    credibility: int = Query(..., description="Voter credibility (clamped to 0-100)"),
    service: ScoringService = Depends(get_scoring_service)
) -> VoteWeightResponse:
    """Impact points a vote from a voter with this credibility carries."""
    clamped = round_half_up(clamp_score(credibility))
    return VoteWeightResponse(credibility=clamped, weight=service.weight_for(clamped))
