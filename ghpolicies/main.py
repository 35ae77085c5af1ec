"""FastAPI main application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ghpolicies.core.config import settings
from ghpolicies.core.middleware import setup_middleware
from ghpolicies.core.exceptions import GHPoliciesError

from ghpolicies.api.scans import router as scans_router
from ghpolicies.api.repositories import router as repositories_router
from ghpolicies.api.action_logs import router as action_logs_router
from ghpolicies.api.webhooks import router as webhooks_router

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("ghpolicies")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting GitHub Policies API")

    # Redis check
    from ghpolicies.services.cache_service import cache_service
    if cache_service.health_check():
        logger.info("Redis connected")
    else:
        logger.warning("Redis not available, scan notifications disabled")

    yield

    logger.info("Shutting down GitHub Policies API")


app = FastAPI(
    title="GitHub Policies API",
    description="Repository policy compliance scanning and remediation",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Middleware
setup_middleware(app)


@app.exception_handler(GHPoliciesError)
async def ghpolicies_exception_handler(request: Request, exc: GHPoliciesError):
    return JSONResponse(
        status_code=400,
        content={"detail": exc.message},
    )

# Register routers
app.include_router(scans_router, prefix="/api")
app.include_router(repositories_router, prefix="/api")
app.include_router(action_logs_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
    }


@app.get("/api/health")
async def health():
    """Quick health check endpoint."""
    return {"status": "ok"}
