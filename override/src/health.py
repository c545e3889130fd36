"""
Health check endpoint for the override API.

Provides a simple GET /health endpoint that returns {"status": "ok"} with
HTTP 200. It does not touch Redis and is intended for Docker HEALTHCHECK
and internal monitoring only.

CHANGELOG:
- 2026-10-10: Initial creation (STORY-013)

TODO:
- None
"""

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    """Return a simple health status.

    Returns:
        dict: ``{"status": "ok"}`` indicating the service is alive.
    """
    return {"status": "ok"}
