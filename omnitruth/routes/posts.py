"""
API routes for the feed: listing, publishing and refreshing posts.
"""

import uuid
from typing import Union

from fastapi import APIRouter, Depends, HTTPException, Query

from omnitruth.analysis_client import AnalysisClient, get_analysis_client
from omnitruth.config import get_settings
from omnitruth.errors import ConsistencyError, DuplicatePostError
from omnitruth.models import (
    ALL, CreatePostRequest, FeedResponse, GenerateReelRequest, Post, RefreshResponse,
    SortKey, Verdict,
)
from omnitruth.projector import project
from omnitruth.scheduler import get_scheduler
from omnitruth.store import PostStore, get_store
from omnitruth.verification import attach


router = APIRouter(prefix="/posts", tags=["Posts"])


# =============================================================================
# Feed
# =============================================================================


@router.get("/", response_model=FeedResponse)
def get_feed(
    verdict: str = Query(default=ALL, description="Verdict to keep, or ALL"),
    sort: SortKey = Query(default=SortKey.LATEST),
    store: PostStore = Depends(get_store)
) -> FeedResponse:
    """
    Get the feed, filtered by verdict and sorted.

    Posts with equal sort keys keep the store's order (newest insert first).
    """
    filter_verdict = parse_verdict_filter(verdict)
    posts = project(store.get_all(), filter_verdict, sort)
    return FeedResponse(
        posts=posts,
        total=len(posts),
        loading=store.is_loading,
        filter_verdict=filter_verdict,
        sort=sort,
    )


# =============================================================================
# Publish
# =============================================================================


@router.post("/", response_model=Post, status_code=201)
def create_post(
    request: CreatePostRequest,
    store: PostStore = Depends(get_store)
) -> Post:
    """
    Publish a user-authored post.

    The post starts with a neutral crowd score and no votes. When the request
    carries a pre-computed analysis, trust score and verdict are taken from it.
    """
    post = Post(
        id=request.id or f"post-{uuid.uuid4().hex}",
        author=request.author,
        author_role=request.author_role,
        content=request.content,
        image=request.image,
        type=request.type,
        crowd_score=get_settings().neutral_crowd_score,
    )
    if request.verification_details is not None:
        post = attach(post, request.verification_details)

    try:
        return store.insert(post)
    except DuplicatePostError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/reels", response_model=Post, status_code=201)
async def generate_reel(
    request: GenerateReelRequest,
    store: PostStore = Depends(get_store),
    client: AnalysisClient = Depends(get_analysis_client)
) -> Post:
    """
    Generate a breaking-news reel about a topic and publish it to the feed.

    The reel is a GENERATED_REEL post with a neutral crowd score and its
    verification details attached. Only the text is generated.
    """
    post = await client.generate_reel_post(request.topic)
    if post is None:
        raise HTTPException(status_code=502, detail="Reel generation failed")

    try:
        return store.insert(post)
    except DuplicatePostError as e:
        raise HTTPException(status_code=409, detail=str(e))


# =============================================================================
# Refresh
# =============================================================================


@router.post("/refresh", response_model=RefreshResponse)
async def refresh_feed(store: PostStore = Depends(get_store)) -> RefreshResponse:
    """
    Replace the feed with freshly ingested trending posts.

    If ingestion fails the current feed is kept and ``success`` is false.
    """
    if store.is_loading:
        raise HTTPException(status_code=409, detail="Feed refresh already in progress")
    try:
        posts = await store.refresh()
    except ConsistencyError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return RefreshResponse(
        success=not store.last_refresh_failed,
        posts_loaded=len(posts),
        loading=store.is_loading,
    )


@router.get("/refresh/status")
def get_refresh_status():
    """Get the status of the periodic feed refresh."""
    return get_scheduler().get_status()


# =============================================================================
# Single post
# =============================================================================


@router.get("/{post_id}", response_model=Post)
def get_post(post_id: str, store: PostStore = Depends(get_store)) -> Post:
    """Get a single post with its votes and verification details."""
    post = store.get(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.post("/{post_id}/like", response_model=Post)
def toggle_like(post_id: str, store: PostStore = Depends(get_store)) -> Post:
    """Like a post, or remove the like if already given."""
    post = store.like(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


# =============================================================================
# Helper Functions
# =============================================================================


def parse_verdict_filter(value: str) -> Union[Verdict, str]:
    """Parse a verdict filter query value ("ALL" or a verdict name)."""
    normalized = (value or ALL).strip().upper()
    if normalized == ALL:
        return ALL
    try:
        return Verdict(normalized)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown verdict filter: {value}")
