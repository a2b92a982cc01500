"""
FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from zapsocial.config import get_settings
from zapsocial.database import create_tables
from zapsocial.logging_setup import configure_logging
from zapsocial.routers import auth_router, integrations_router
from zapsocial.services.http import create_http_client

settings = get_settings()

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup: create database tables and the outbound HTTP client
    await create_tables()
    app.state.http_client = create_http_client(settings)
    logger.info("%s started", settings.app_name)
    yield
    # Shutdown
    await app.state.http_client.aclose()


app = FastAPI(
    title=settings.app_name,
    description="Social platform connections, token refresh and Meta webhooks",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.app_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers with /api/v1 prefix
app.include_router(auth_router, prefix="/api/v1")
app.include_router(integrations_router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}
