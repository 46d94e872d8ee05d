"""
Routes package for the OmniTruth Feed API.
"""

from omnitruth.routes.posts import router as posts_router
from omnitruth.routes.search import router as search_router
from omnitruth.routes.verification import router as verification_router
from omnitruth.routes.votes import router as votes_router

__all__ = ["posts_router", "search_router", "verification_router", "votes_router"]
