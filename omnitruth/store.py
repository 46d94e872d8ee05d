"""
Post store: the single writable collection of feed posts.

Every view (feed, search results, post detail, verification) reads and
writes posts through one ``PostStore`` instance. Views never keep their own
copies; they subscribe to change notifications and re-read instead.
"""

import logging
import threading
from datetime import datetime, UTC
from typing import Awaitable, Callable, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, sessionmaker

from omnitruth.database import PostRecord, VoteRecord, SessionLocal
from omnitruth.errors import ConsistencyError, DuplicatePostError
from omnitruth.models import AnalysisResult, Post, PostType, Verdict, Vote


logger = logging.getLogger(__name__)

StoreListener = Callable[[str, List[str]], None]
PostFetcher = Callable[[], Awaitable[List[Post]]]


class PostStore:
    """
    Authoritative collection of posts shared by every view.

    Mutations go through ``insert``, ``update``, ``like`` and ``refresh``
    only. Each mutation runs under a lock, so a read-modify-write done by a
    caller holding ``store.lock`` is atomic with respect to other writers.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        fetch_posts: Optional[PostFetcher] = None,
    ):
        """
        Initialize the store.

        Args:
            session_factory: SQLAlchemy session factory backing the store
            fetch_posts: Ingestion collaborator used by ``refresh``
        """
        self._session_factory = session_factory
        self._fetch_posts = fetch_posts
        self.lock = threading.RLock()
        self._listeners: List[StoreListener] = []
        self._is_loading = False
        self.last_refresh: Optional[datetime] = None
        self.last_refresh_failed = False

    @property
    def is_loading(self) -> bool:
        """True while a ``refresh`` is waiting on the ingestion collaborator."""
        return self._is_loading

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, listener: StoreListener) -> None:
        """Register ``listener(event, post_ids)`` to be called after every mutation."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, event: str, post_ids: List[str]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, post_ids)
            except Exception:
                logger.exception(f"Store listener failed on '{event}' event")

    # =========================================================================
    # Reads
    # =========================================================================

    def get_all(self) -> List[Post]:
        """Return every post, most recently inserted first."""
        with self._session_factory() as db:
            records = db.query(PostRecord).order_by(PostRecord.seq.desc()).all()
            return [_record_to_post(r) for r in records]

    def get(self, post_id: str) -> Optional[Post]:
        """Look a post up by id."""
        with self._session_factory() as db:
            record = db.get(PostRecord, post_id)
            return _record_to_post(record) if record else None

    def count(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(PostRecord.id)).scalar() or 0

    def count_votes(self) -> int:
        with self._session_factory() as db:
            return db.query(func.count(VoteRecord.id)).scalar() or 0

    # =========================================================================
    # Writes
    # =========================================================================

    def insert(self, post: Post) -> Post:
        """
        Add a post at the front of the collection.

        Raises:
            DuplicatePostError: a post with the same id is already stored
            ConsistencyError: the post's summary fields disagree with its details
        """
        _check_consistency(post)
        with self.lock:
            with self._session_factory() as db:
                if db.get(PostRecord, post.id) is not None:
                    raise DuplicatePostError(post.id)
                record = _new_record(post, seq=_next_seq(db))
                db.add(record)
                db.commit()
                stored = _record_to_post(record)

        logger.info(f"Inserted post {post.id}")
        self._notify("insert", [post.id])
        return stored

    def register(self, posts: Iterable[Post]) -> List[Post]:
        """
        Make sure every post is stored and return the stored records.

        Posts whose id is already present are not overwritten: the stored
        record (with its votes and verification) is returned instead.
        """
        result = []
        inserted = []
        with self.lock:
            with self._session_factory() as db:
                seq = _next_seq(db)
                for post in posts:
                    record = db.get(PostRecord, post.id)
                    if record is None:
                        _check_consistency(post)
                        record = _new_record(post, seq=seq)
                        db.add(record)
                        db.flush()
                        seq += 1
                        inserted.append(post.id)
                    result.append(record)
                db.commit()
                stored = [_record_to_post(r) for r in result]

        if inserted:
            logger.info(f"Registered {len(inserted)} new posts")
            self._notify("insert", inserted)
        return stored

    def update(self, post: Post) -> Optional[Post]:
        """
        Replace the stored post with the same id.

        Returns the stored post, or None (after logging a warning) when no
        post has that id.

        Raises:
            ConsistencyError: the update would drop or reorder recorded votes,
                or leave summary fields disagreeing with verification details
        """
        _check_consistency(post)
        with self.lock:
            with self._session_factory() as db:
                record = db.get(PostRecord, post.id)
                if record is None:
                    logger.warning(f"Update ignored, post {post.id} is not in the store")
                    return None

                existing_votes = [_record_to_vote(v) for v in record.votes]
                if post.votes[:len(existing_votes)] != existing_votes:
                    raise ConsistencyError(
                        f"Vote history of post {post.id} can only be appended to"
                    )

                _copy_fields(record, post)
                for position, vote in enumerate(post.votes[len(existing_votes):], len(existing_votes)):
                    record.votes.append(_new_vote_record(vote, position))

                db.commit()
                stored = _record_to_post(record)

        self._notify("update", [post.id])
        return stored

    def like(self, post_id: str) -> Optional[Post]:
        """Toggle the session user's like on a post."""
        with self.lock:
            with self._session_factory() as db:
                record = db.get(PostRecord, post_id)
                if record is None:
                    logger.warning(f"Like ignored, post {post_id} is not in the store")
                    return None
                if record.has_liked:
                    record.has_liked = False
                    record.likes = max(0, record.likes - 1)
                else:
                    record.has_liked = True
                    record.likes += 1
                db.commit()
                stored = _record_to_post(record)

        self._notify("update", [post_id])
        return stored

    async def refresh(self) -> List[Post]:
        """
        Replace the whole collection with a freshly fetched set.

        ``is_loading`` stays True until the collaborator resolves. If the
        collaborator raises, the current collection is kept and the failure
        is logged; the loading flag is always cleared.
        """
        if self._fetch_posts is None:
            raise RuntimeError("PostStore has no ingestion collaborator configured")

        self._is_loading = True
        try:
            fetched = await self._fetch_posts()
        except Exception:
            logger.exception("Feed refresh failed, keeping current posts")
            self.last_refresh_failed = True
            return self.get_all()
        finally:
            self._is_loading = False

        posts = _unique_by_id(fetched)
        with self.lock:
            with self._session_factory() as db:
                db.query(VoteRecord).delete()
                db.query(PostRecord).delete()
                # First fetched post gets the highest seq so it lists first
                for idx, post in enumerate(posts):
                    _check_consistency(post)
                    db.add(_new_record(post, seq=len(posts) - idx))
                db.commit()

        self.last_refresh = datetime.now(UTC)
        self.last_refresh_failed = False
        logger.info(f"Feed refreshed with {len(posts)} posts")
        self._notify("refresh", [p.id for p in posts])
        return self.get_all()


# =============================================================================
# Global store
# =============================================================================

_store: Optional[PostStore] = None


def get_store() -> PostStore:
    """Get or create the global store instance."""
    global _store
    if _store is None:
        from omnitruth.analysis_client import get_analysis_client
        _store = PostStore(SessionLocal, fetch_posts=get_analysis_client().request_trending_posts)
    return _store


# =============================================================================
# Helper Functions
# =============================================================================


def _next_seq(db: Session) -> int:
    return (db.query(func.max(PostRecord.seq)).scalar() or 0) + 1


def _unique_by_id(posts: Iterable[Post]) -> List[Post]:
    seen = set()
    unique = []
    for post in posts:
        if post.id in seen:
            logger.warning(f"Dropping duplicate post id {post.id} from fetched feed")
            continue
        seen.add(post.id)
        unique.append(post)
    return unique


def _check_consistency(post: Post):
    if not post.is_consistent:
        raise ConsistencyError(
            f"Post {post.id} trust score/verdict disagree with its verification details"
        )


def _new_record(post: Post, seq: int) -> PostRecord:
    record = PostRecord(id=post.id, seq=seq)
    _copy_fields(record, post)
    record.votes = [_new_vote_record(v, i) for i, v in enumerate(post.votes)]
    return record


def _copy_fields(record: PostRecord, post: Post):
    """Copy every non-vote field of ``post`` onto ``record``."""
    record.author = post.author
    record.author_role = post.author_role
    record.content = post.content
    record.image = post.image
    record.post_type = post.type.value
    record.timestamp = post.timestamp
    record.trust_score = post.trust_score
    record.crowd_score = post.crowd_score
    record.verdict = post.verdict.value
    record.verification_details = (
        post.verification_details.model_dump(mode="json", by_alias=True)
        if post.verification_details is not None else None
    )
    record.likes = post.likes
    record.comments = post.comments
    record.has_liked = post.has_liked


def _new_vote_record(vote: Vote, position: int) -> VoteRecord:
    return VoteRecord(
        position=position,
        user_id=vote.user_id,
        user_credibility=vote.user_credibility,
        role=vote.role.value,
        verdict=vote.verdict.value,
        reason=vote.reason,
        timestamp=vote.timestamp,
    )


def _record_to_vote(record: VoteRecord) -> Vote:
    return Vote(
        user_id=record.user_id,
        user_credibility=record.user_credibility,
        role=record.role,
        verdict=record.verdict,
        reason=record.reason or "",
        timestamp=record.timestamp,
    )


def _record_to_post(record: PostRecord) -> Post:
    """Convert a database PostRecord to a Post model."""
    return Post(
        id=record.id,
        author=record.author,
        author_role=record.author_role,
        content=record.content,
        image=record.image,
        timestamp=record.timestamp,
        trust_score=record.trust_score,
        crowd_score=record.crowd_score,
        verdict=Verdict(record.verdict),
        type=PostType(record.post_type),
        votes=[_record_to_vote(v) for v in record.votes],
        verification_details=(
            AnalysisResult.model_validate(record.verification_details)
            if record.verification_details is not None else None
        ),
        likes=record.likes,
        comments=record.comments,
        has_liked=record.has_liked,
    )
