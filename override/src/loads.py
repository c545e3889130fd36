"""
Load-list endpoints: assign a device to the essential or non-essential
list, and remove it again.

A device may appear in at most one list. New loads are ranked after every
load already in their list; removing a load does not renumber the rest.

CHANGELOG:
- 2026-10-10: Initial creation (STORY-013)

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Path, Response
from pydantic import BaseModel, ConfigDict, Field

from controller.src.models import LoadType
from override.src.deps import PolicyStoreDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["loads"])


class LoadCreate(BaseModel):
    """Request body for assigning a device to a load list."""

    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(min_length=1, alias="roomId")
    device_id: str = Field(min_length=1, alias="deviceId")
    load_type: LoadType = Field(alias="loadType")
    room_name: str = Field("", alias="roomName")
    device_name: str = Field("", alias="deviceName")


@router.post("/loads", status_code=201)
async def create_load(body: LoadCreate, policy_store: PolicyStoreDep) -> dict:
    """Assign a device to a load list and return the new LoadItem."""
    item = await policy_store.add_load(
        room_id=body.room_id,
        device_id=body.device_id,
        load_type=body.load_type,
        device_name=body.device_name,
        room_name=body.room_name,
    )
    logger.info("Load %s added to %s list (priority %d)", item.id, item.load_type.value, item.priority)
    return item.model_dump(by_alias=True, mode="json")


@router.delete("/loads/{load_id}", status_code=204)
async def delete_load(
    load_id: Annotated[str, Path(min_length=1)],
    policy_store: PolicyStoreDep,
) -> Response:
    """Remove a device from whichever list holds it."""
    await policy_store.remove_load(load_id)
    logger.info("Load %s removed", load_id)
    return Response(status_code=204)
