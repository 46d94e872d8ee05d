"""
Database models and session management for the OmniTruth Feed API.

Uses SQLAlchemy with an in-memory SQLite database by default, so the post
store lives for the scope of one service session. Point ``OT_DATABASE_URL``
at a file or server database to keep the feed across restarts.
"""

from datetime import datetime, UTC
from typing import Optional, List

from sqlalchemy import (
    Integer, String, Text, DateTime, Boolean,
    ForeignKey, Index, UniqueConstraint, TypeDecorator, create_engine, JSON
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import (
    DeclarativeBase, relationship, sessionmaker, Mapped, mapped_column
)
from sqlalchemy.pool import StaticPool

from omnitruth.config import get_settings
from omnitruth.models import Verdict, PostType


# =============================================================================
# Database Setup
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class UTCDateTime(TypeDecorator):
    """Stores naive UTC timestamps and hands back timezone-aware UTC datetimes."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC)
        return value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


def get_engine(database_url: Optional[str] = None) -> Engine:
    """Create database engine."""
    settings = get_settings()
    url = database_url or settings.database_url
    kwargs = {"echo": settings.debug}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def create_session_factory(bind: Engine) -> sessionmaker:
    """Create a session factory bound to ``bind`` and make sure tables exist."""
    init_db(bind)
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


def init_db(bind: Optional[Engine] = None):
    """Initialize database tables."""
    Base.metadata.create_all(bind=bind or engine)


engine = get_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


# =============================================================================
# Database Models
# =============================================================================


class PostRecord(Base):
    """
    A feed post.

    ``seq`` records insertion order; the store lists posts by descending
    ``seq`` so the newest insert comes first.
    """

    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, index=True, nullable=False)

    # Descriptive fields
    author: Mapped[str] = mapped_column(String(200), nullable=False)
    author_role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    image: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    post_type: Mapped[str] = mapped_column(String(20), default=PostType.POST.value, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Scores
    trust_score: Mapped[int] = mapped_column(Integer, nullable=False)
    crowd_score: Mapped[int] = mapped_column(Integer, nullable=False)
    verdict: Mapped[str] = mapped_column(
        String(20),
        default=Verdict.UNVERIFIED.value,
        index=True,
        nullable=False
    )

    # Analysis payload (camelCase JSON, replaced wholesale on re-verification)
    verification_details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    # Engagement counters
    likes: Mapped[int] = mapped_column(Integer, default=0)
    comments: Mapped[int] = mapped_column(Integer, default=0)
    has_liked: Mapped[bool] = mapped_column(Boolean, default=False)

    # Relationships
    votes: Mapped[List["VoteRecord"]] = relationship(
        "VoteRecord",
        back_populates="post",
        order_by="VoteRecord.position",
        cascade="all, delete-orphan",
    )


class VoteRecord(Base):
    """
    A community vote on a post.

    ``position`` is the vote's index in the post's history; votes are only
    ever appended.
    """

    __tablename__ = "votes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    post_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("posts.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    user_id: Mapped[str] = mapped_column(String(128), index=True, nullable=False)
    user_credibility: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    verdict: Mapped[str] = mapped_column(String(10), nullable=False)
    reason: Mapped[str] = mapped_column(Text, default="")
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Relationships
    post: Mapped["PostRecord"] = relationship("PostRecord", back_populates="votes")

    __table_args__ = (
        UniqueConstraint('post_id', 'position', name='uq_post_vote_position'),
        Index('ix_votes_post_verdict', 'post_id', 'verdict'),
    )
