"""
API routes for AI verification of posts and standalone text analysis.
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from omnitruth.analysis_client import AnalysisClient, get_analysis_client
from omnitruth.errors import PostNotFoundError
from omnitruth.models import AnalysisResult, AnalyzeTextRequest, ContextType, VerificationResponse
from omnitruth.verification import VerificationService, get_verification_service


router = APIRouter(tags=["Verification"])


@router.post("/posts/{post_id}/verify", response_model=VerificationResponse)
async def verify_post(
    post_id: str,
    force: bool = Query(default=False, description="Re-run even if the post is already verified"),
    context_type: ContextType = Query(default=ContextType.NEWS),
    service: VerificationService = Depends(get_verification_service)
) -> VerificationResponse:
    """
    Verify a post with the AI analysis engine.

    Runs only when the post has no verification details yet, or when
    ``force`` is set. The analysis replaces any previous one and sets the
    post's trust score and verdict. If the analysis fails the post is left
    as it was and ``analysisFailed`` is true.
    """
    try:
        outcome = await service.verify(post_id, force=force, context_type=context_type)
    except PostNotFoundError:
        raise HTTPException(status_code=404, detail="Post not found")

    return VerificationResponse(
        post=outcome.post,
        analyzed=outcome.analyzed,
        analysis_failed=outcome.analysis_failed,
    )


@router.get("/posts/{post_id}/verify/status")
def get_verification_status(
    post_id: str,
    service: VerificationService = Depends(get_verification_service)
):
    """Whether an analysis of this post is currently running."""
    if service.store.get(post_id) is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return {"postId": post_id, "verifying": service.is_verifying(post_id)}


@router.post("/analysis", response_model=AnalysisResult)
async def analyze_text(
    request: AnalyzeTextRequest,
    client: AnalysisClient = Depends(get_analysis_client)
) -> AnalysisResult:
    """
    Analyze arbitrary text (news, chat message or debate excerpt).

    The result is returned directly and is not stored.
    """
    return await client.analyze_text_deeply(request.text, request.context_type)
