"""
GET /v1/readings: the derived power-source percentages the controller
currently sees.

CHANGELOG:
- 2026-10-11: Initial creation (STORY-014)

TODO:
- None
"""

from fastapi import APIRouter, HTTPException

from override.src.deps import TelemetryDep

router = APIRouter(prefix="/v1", tags=["readings"])


@router.get("/readings")
async def readings(telemetry: TelemetryDep) -> dict:
    """Return solar/grid/battery percentages for the latest telemetry.

    Raises:
        HTTPException: 404 if no telemetry has been published.
    """
    current = await telemetry.read()
    if current is None:
        raise HTTPException(status_code=404, detail="No telemetry available.")
    return current.model_dump(mode="json")
