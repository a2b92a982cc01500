"""
Outbound HTTP client for platform APIs.
"""
import httpx
from fastapi import Request

from zapsocial.config import Settings


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Build the shared client; the app lifespan owns and closes it."""
    return httpx.AsyncClient(timeout=settings.http_timeout_seconds)


async def get_http_client(request: Request) -> httpx.AsyncClient:
    """Dependency returning the client created in the app lifespan."""
    return request.app.state.http_client
