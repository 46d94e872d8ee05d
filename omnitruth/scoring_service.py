"""
Crowd-consensus scoring for community votes.

Each vote moves a post's crowd score by an amount proportional to the
voter's credibility snapshot: a credibility-100 voter moves it by the full
``max_vote_impact`` points, a credibility-0 voter not at all. Many
low-credibility votes therefore shift the score far less than a few
high-credibility ones.

``ScoringService.cast_vote`` is the only place votes are applied; every
route that accepts a vote goes through it.
"""

import logging
from typing import Dict, Optional

import pandas as pd

from omnitruth.config import get_settings
from omnitruth.errors import PostNotFoundError
from omnitruth.models import (
    Post, Vote, VoteVerdict, CommunityRole, clamp_score, round_half_up
)
from omnitruth.store import PostStore


logger = logging.getLogger(__name__)


# =============================================================================
# Pure scoring functions
# =============================================================================


def vote_weight(credibility: float, max_impact: Optional[float] = None) -> float:
    """Score points a vote from a voter with ``credibility`` can move."""
    if max_impact is None:
        max_impact = get_settings().max_vote_impact
    return clamp_score(credibility) / 100 * max_impact


def vote_impact(vote: Vote, max_impact: Optional[float] = None) -> float:
    """Signed score change of a vote: +weight for REAL, -weight for FAKE, 0 for UNSURE."""
    weight = vote_weight(vote.user_credibility, max_impact)
    if vote.verdict == VoteVerdict.REAL:
        return weight
    if vote.verdict == VoteVerdict.FAKE:
        return -weight
    return 0.0


def apply_vote(current_crowd_score: int, vote: Vote, max_impact: Optional[float] = None) -> int:
    """
    Fold one vote into a crowd score.

    Args:
        current_crowd_score: Score before the vote (0-100)
        vote: The vote being cast
        max_impact: Points moved by a credibility-100 vote (default from settings)

    Returns:
        New crowd score, clamped to 0-100 and rounded half up
    """
    new_score = clamp_score(current_crowd_score + vote_impact(vote, max_impact))
    return round_half_up(new_score)


def replay_votes(start_score: int, post: Post, max_impact: Optional[float] = None) -> int:
    """Recompute a crowd score from ``start_score`` by applying the post's votes in order."""
    score = start_score
    for vote in post.votes:
        score = apply_vote(score, vote, max_impact)
    return score


# =============================================================================
# Vote aggregation
# =============================================================================


def summarize_votes(post: Post) -> Dict:
    """
    Summarize a post's vote history.

    ``consensus_volume`` counts every vote, UNSURE included, and
    ``uncertainty`` is the UNSURE share of the history. Neither feeds back
    into the crowd score.
    """
    summary = {
        "post_id": post.id,
        "crowd_score": post.crowd_score,
        "total_votes": len(post.votes),
        "consensus_volume": len(post.votes),
        "uncertainty": 0.0,
        "mean_credibility": None,
        "verdict_counts": {v.value: 0 for v in VoteVerdict},
        "role_counts": {r.value: 0 for r in CommunityRole},
    }
    if not post.votes:
        return summary

    votes_df = pd.DataFrame([
        {
            'verdict': v.verdict.value,
            'role': v.role.value,
            'credibility': v.user_credibility,
        }
        for v in post.votes
    ])

    verdict_counts = votes_df.groupby('verdict').size()
    role_counts = votes_df.groupby('role').size()
    for verdict, count in verdict_counts.items():
        summary["verdict_counts"][verdict] = int(count)
    for role, count in role_counts.items():
        summary["role_counts"][role] = int(count)

    summary["uncertainty"] = float(
        (votes_df['verdict'] == VoteVerdict.UNSURE.value).mean()
    )
    summary["mean_credibility"] = float(votes_df['credibility'].mean())
    return summary


# =============================================================================
# Service
# =============================================================================


class ScoringService:
    """
    Applies community votes to posts held in the store.

    The read of the current post, the score update and the write back all
    happen while holding the store lock, so concurrent votes on the same post
    are applied one after the other in submission order.
    """

    def __init__(self, store: PostStore, max_impact: Optional[float] = None):
        self.store = store
        self.max_impact = max_impact if max_impact is not None else get_settings().max_vote_impact

    def weight_for(self, credibility: float) -> float:
        return vote_weight(credibility, self.max_impact)

    def cast_vote(self, post_id: str, vote: Vote) -> Post:
        """
        Append a vote to a post and update its crowd score.

        The vote is recorded even when it does not move the score.

        Raises:
            PostNotFoundError: no post with ``post_id`` is stored
        """
        with self.store.lock:
            post = self.store.get(post_id)
            if post is None:
                raise PostNotFoundError(post_id)

            new_score = apply_vote(post.crowd_score, vote, self.max_impact)
            updated = post.model_copy(update={
                "crowd_score": new_score,
                "votes": [*post.votes, vote],
            })
            stored = self.store.update(updated)

        logger.info(
            f"Vote {vote.verdict.value} from {vote.user_id} "
            f"(credibility {vote.user_credibility}) on {post_id}: "
            f"{post.crowd_score} -> {new_score}"
        )
        return stored

    def summarize(self, post_id: str) -> Dict:
        """
        Vote summary for a stored post.

        Raises:
            PostNotFoundError: no post with ``post_id`` is stored
        """
        post = self.store.get(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return summarize_votes(post)
