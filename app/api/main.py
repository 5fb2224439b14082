"""
FastAPI application main entry point.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routes import agent_router, calls_router, webhooks_router
from app.core.config import settings
from app.core.observability import configure_logging, init_sentry
from app.services.store import get_store

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    configure_logging()
    logger.info("Starting Agent G Orchestrator", environment=settings.environment)

    # Initialize Sentry for error tracking
    try:
        init_sentry()
    except Exception as e:
        logger.warning("Sentry initialization failed", error=str(e))

    store = get_store()
    try:
        await store.connect()
        logger.info("Agent store connected", backend=settings.store_backend)
    except Exception as e:
        logger.warning("Agent store connection failed", backend=settings.store_backend, error=str(e))

    yield

    # Shutdown
    logger.info("Shutting down Agent G Orchestrator")
    await store.disconnect()


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    Agent G: goal decomposition and multi-agent delegation.

    A free-text goal is planned into sub-tasks, delegated to domain agents
    (business planning, social content, voice-over, marketplace listings,
    avatars) and aggregated into one result, with optional voice callback
    and chat notification when the task finishes.
    """,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routes
app.include_router(agent_router, prefix=settings.api_v1_prefix)
app.include_router(calls_router, prefix=settings.api_v1_prefix)
app.include_router(webhooks_router, prefix=settings.api_v1_prefix)


# Health check endpoint
@app.get("/health")
async def health_check() -> dict:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
    }


# Root endpoint
@app.get("/")
async def root() -> dict:
    """Root endpoint with API information."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "endpoints": {
            "execute": f"{settings.api_v1_prefix}/agent/execute",
            "delegate": f"{settings.api_v1_prefix}/agent/delegate",
            "output": f"{settings.api_v1_prefix}/agent/output",
            "calls": f"{settings.api_v1_prefix}/agent/calls",
            "start_call": f"{settings.api_v1_prefix}/agent/calls/start",
            "telegram_webhook": f"{settings.api_v1_prefix}/webhook/telegram",
        },
    }

