"""
OmniTruth Feed API - FastAPI Application.

REST API over the shared post store: an AI-labelled news feed with
credibility-weighted community voting.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from omnitruth.config import get_settings
from omnitruth.database import engine, init_db
from omnitruth.models import HealthResponse
from omnitruth.routes import posts_router, search_router, verification_router, votes_router
from omnitruth.scheduler import start_scheduler, stop_scheduler
from omnitruth.store import PostStore, get_store


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting OmniTruth Feed API...")
    init_db()
    logger.info("Database initialized")

    if settings.refresh_on_startup:
        posts = await get_store().refresh()
        logger.info(f"Initial feed loaded with {len(posts)} posts")
    start_scheduler()

    yield

    # Shutdown
    stop_scheduler()
    logger.info("Shutting down OmniTruth Feed API...")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="""
## OmniTruth Feed API

A news feed where every post carries two independent signals:

- **Trust score**: set by the AI analysis engine (0-100), together with a
  verdict and a detailed analysis (claims, manipulation flags, intent, sources)
- **Crowd score**: community consensus (0-100), starting at a neutral 50

### How Voting Works

Each vote moves the crowd score by up to 10 points, in proportion to the
voter's credibility. A credibility-100 voter moves it by 10, a
credibility-50 voter by 5, a credibility-0 voter not at all. REAL votes raise
the score, FAKE votes lower it, UNSURE votes are recorded without moving it.

### API Flow

1. The feed is loaded from trending news (POST /posts/refresh)
2. Users read the feed filtered and sorted (GET /posts)
3. Users vote on posts (POST /posts/{id}/votes)
4. Users request a deep verification (POST /posts/{id}/verify)
    """,
    version=settings.app_version,
    lifespan=lifespan,
)

# Configure CORS
origins = settings.allowed_origins.split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include routers
app.include_router(posts_router, prefix="/api")
app.include_router(votes_router, prefix="/api")
app.include_router(verification_router, prefix="/api")
app.include_router(search_router, prefix="/api")


# Root endpoint
@app.get("/")
def root():
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "AI-labelled news feed with credibility-weighted community voting",
        "docs_url": "/docs",
        "openapi_url": "/openapi.json",
        "endpoints": {
            "posts": "/api/posts",
            "search": "/api/search",
            "analysis": "/api/analysis",
            "health": "/api/health",
        }
    }


# Health check at root level too
@app.get("/health")
def root_health():
    """Quick health check."""
    return {"status": "ok", "version": settings.app_version}


@app.get("/api/health", response_model=HealthResponse)
def health_check(store: PostStore = Depends(get_store)):
    """
    Health check endpoint.

    Returns service health status and basic statistics.
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_connected = True
    except Exception:
        logger.exception("Database health check failed")
        db_connected = False

    return HealthResponse(
        status="healthy" if db_connected else "degraded",
        version=settings.app_version,
        database_connected=db_connected,
        posts_count=store.count() if db_connected else 0,
        votes_count=store.count_votes() if db_connected else 0,
        loading=store.is_loading,
        last_refresh=store.last_refresh,
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "omnitruth.app:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.debug
    )
