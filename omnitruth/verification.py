"""
Verification attachment: merge AI analysis results into stored posts.

An analysis result replaces a post's verification details wholesale and
drives its top-level trust score and verdict, so the summary fields shown in
the feed never disagree with the detailed payload.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from omnitruth.analysis_client import AnalysisClient, get_analysis_client
from omnitruth.errors import AnalysisError, PostNotFoundError
from omnitruth.models import AnalysisResult, ContextType, Post
from omnitruth.store import PostStore, get_store


logger = logging.getLogger(__name__)


def attach(post: Post, result: AnalysisResult) -> Post:
    """
    Return a copy of ``post`` carrying ``result`` as its verification details.

    Attaching the same result twice yields the same post.
    """
    return post.model_copy(update={
        "verification_details": result,
        "trust_score": result.trust_score,
        "verdict": result.verdict,
    })


def needs_verification(post: Post, force: bool = False) -> bool:
    """Analysis runs for posts without details, or when a re-run is forced."""
    return force or post.verification_details is None


@dataclass
class VerificationOutcome:
    post: Post
    analyzed: bool
    analysis_failed: bool = False


class VerificationService:
    """
    Runs the analysis collaborator on stored posts and attaches the results.

    Each request on a post takes a fresh in-flight token. When two requests
    on the same post overlap, only the response holding the current token is
    attached; the stale one is discarded.
    """

    def __init__(self, store: PostStore, client: AnalysisClient):
        self.store = store
        self.client = client
        self._in_flight: Dict[str, object] = {}

    def is_verifying(self, post_id: str) -> bool:
        """Per-post loading flag."""
        return post_id in self._in_flight

    async def verify(
        self,
        post_id: str,
        force: bool = False,
        context_type: ContextType = ContextType.NEWS,
    ) -> VerificationOutcome:
        """
        Verify a stored post.

        Args:
            post_id: Post to verify
            force: Re-run even when details are already attached
            context_type: Framing passed to the analysis collaborator

        Raises:
            PostNotFoundError: no post with ``post_id`` is stored
        """
        post = self.store.get(post_id)
        if post is None:
            raise PostNotFoundError(post_id)

        if not needs_verification(post, force):
            return VerificationOutcome(post=post, analyzed=False)

        token = object()
        self._in_flight[post_id] = token
        result = None
        try:
            result = await self.client.request_analysis(post.content, context_type)
        except AnalysisError as e:
            logger.warning(f"Analysis failed for post {post_id}, keeping previous state: {e}")
        finally:
            is_current = self._in_flight.get(post_id) is token
            if is_current:
                del self._in_flight[post_id]

        if not is_current:
            logger.info(f"Discarding stale analysis response for post {post_id}")
            return VerificationOutcome(post=self._current(post_id), analyzed=False)

        if result is None:
            return VerificationOutcome(post=self._current(post_id), analyzed=False, analysis_failed=True)

        # Re-read so votes cast while the analysis was running are kept
        with self.store.lock:
            updated = self.store.update(attach(self._current(post_id), result))

        logger.info(
            f"Attached analysis to post {post_id}: "
            f"trust {updated.trust_score}, verdict {updated.verdict.value}"
        )
        return VerificationOutcome(post=updated, analyzed=True)

    def _current(self, post_id: str) -> Post:
        post = self.store.get(post_id)
        if post is None:
            raise PostNotFoundError(post_id)
        return post


# Global service instance (holds the in-flight tokens)
_service: Optional[VerificationService] = None


def get_verification_service() -> VerificationService:
    """Get or create the global verification service."""
    global _service
    if _service is None:
        _service = VerificationService(get_store(), get_analysis_client())
    return _service
