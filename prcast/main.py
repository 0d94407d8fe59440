"""
FastAPI application entry point.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from prcast import __version__
from prcast.config import settings
from prcast.middleware.logging import RequestLoggingMiddleware
from prcast.api import pipeline, stages, webhooks
from prcast.utils.logging import setup_logging, get_logger

# Configure structured logging
setup_logging(settings.log_level)

logger = get_logger(__name__)

app = FastAPI(
    title="prcast",
    description="Narrated video walkthroughs and reports for merged pull requests",
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)


@app.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "version": __version__}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "prcast API",
        "version": __version__,
        "docs": "/docs"
    }


app.include_router(webhooks.router)
app.include_router(pipeline.router)
app.include_router(stages.router)

# Stored videos, audio, reports and screenshots
app.mount("/artifacts", StaticFiles(directory=settings.artifact_root, check_dir=False), name="artifacts")


@app.on_event("startup")
async def startup_event():
    """Initialize services on application startup."""
    logger.info("Starting prcast API")

    from prcast.services.store import get_event_store
    store = get_event_store()
    await store.initialize()
    logger.info("Event store initialized")

    from prcast.services.redis_client import get_redis_client
    redis_client = get_redis_client()
    await redis_client.initialize()
    logger.info("Redis client initialized")

    from prcast.services.repository_matcher import RepositoryMatcher
    conflicts = RepositoryMatcher().find_conflicts(await store.list_projects())
    for repository, projects in conflicts.items():
        logger.warning(
            f"Repository {repository} is connected to {len(projects)} projects; "
            "webhooks will be routed to the oldest",
            extra={"conflicting_project_ids": [p.id for p in projects]},
        )


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup services on application shutdown."""
    logger.info("Shutting down prcast API")

    from prcast.services.store import get_event_store
    await get_event_store().close()
    logger.info("Event store closed")

    from prcast.services.redis_client import get_redis_client
    await get_redis_client().close()
    logger.info("Redis client closed")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
