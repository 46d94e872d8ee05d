"""
API routes for global search.
"""

from fastapi import APIRouter, Depends

from omnitruth.analysis_client import AnalysisClient, get_analysis_client
from omnitruth.models import SearchRequest, SearchResponse
from omnitruth.projector import project
from omnitruth.store import PostStore, get_store


router = APIRouter(prefix="/search", tags=["Search"])


@router.post("/", response_model=SearchResponse)
async def search(
    request: SearchRequest,
    store: PostStore = Depends(get_store),
    client: AnalysisClient = Depends(get_analysis_client)
) -> SearchResponse:
    """
    Search the web for posts matching a query.

    Results are registered in the shared store, so votes and verifications
    on them are visible in every other view. A result whose id is already
    stored is returned as stored, and is dropped when its current verdict no
    longer matches the filter. An empty list means nothing was found or the
    search failed.
    """
    results = await client.perform_global_search(request.query, request.filters)
    posts = project(store.register(results), request.filters.verdict, sort_key=None)
    return SearchResponse(query=request.query, posts=posts, total=len(posts))
