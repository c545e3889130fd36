"""
Policy endpoints: read and patch the policy, set the active source, and
trigger a manual "Save Power".

Writes are partial merges on the ``loadSettings`` document. The controller
treats them exactly like any other policy change: in automatic mode a
manual "Save Power" is lifted again as soon as the readings no longer
call for shedding.

CHANGELOG:
- 2026-10-11: Add POST /v1/save-power (STORY-014)
- 2026-10-10: Initial creation (STORY-013)

TODO:
- None
"""

import logging
from typing import Annotated

from fastapi import APIRouter, HTTPException, Path
from pydantic import BaseModel, ConfigDict, Field

from controller.src.models import OperatingMode, PowerSource
from controller.src.policy import parse_policy
from controller.src.sink import switch_off_loads
from override.src.deps import NotifierDep, PolicyStoreDep, SinkDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["policy"])

SAVE_POWER_MESSAGE = "Power saving mode activated - Non-essential loads turned off"

MIN_THRESHOLD = 5
MAX_THRESHOLD = 80


class PolicyUpdate(BaseModel):
    """Fields an operator may change; omitted fields keep their value."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    mode: OperatingMode | None = None
    active_source: PowerSource | None = Field(None, alias="activePowerSource")
    battery_threshold: int | None = Field(
        None, ge=MIN_THRESHOLD, le=MAX_THRESHOLD, alias="batteryThreshold"
    )
    solar_threshold: int | None = Field(
        None, ge=MIN_THRESHOLD, le=MAX_THRESHOLD, alias="solarThreshold"
    )
    grid_threshold: int | None = Field(
        None, ge=MIN_THRESHOLD, le=MAX_THRESHOLD, alias="gridThreshold"
    )


@router.get("/policy")
async def get_policy(policy_store: PolicyStoreDep) -> dict:
    """Return the current policy, or the defaults if none is stored."""
    policy = await policy_store.read() or parse_policy(None)
    return policy.model_dump(by_alias=True, mode="json")


@router.patch("/policy")
async def patch_policy(update: PolicyUpdate, policy_store: PolicyStoreDep) -> dict:
    """Merge the given fields into the policy.

    Raises:
        HTTPException: 422 if the body sets no field.
    """
    fields = update.model_dump(exclude_unset=True, by_alias=True, mode="json")
    if not fields:
        raise HTTPException(status_code=422, detail="No policy fields to update.")
    policy = await policy_store.update(fields)
    logger.info("Policy updated by operator: %s", fields)
    return policy.model_dump(by_alias=True, mode="json")


@router.put("/policy/active-source/{source}")
async def set_active_source(
    source: Annotated[PowerSource, Path()],
    policy_store: PolicyStoreDep,
) -> dict:
    """Mark *source* as the active power source."""
    policy = await policy_store.update({"activePowerSource": source.value})
    logger.info("Active power source set to %s", source.value)
    return policy.model_dump(by_alias=True, mode="json")


@router.post("/save-power")
async def save_power(
    policy_store: PolicyStoreDep,
    sink: SinkDep,
    notifier: NotifierDep,
) -> dict:
    """Switch every non-essential load off and mark shedding active.

    Command failures do not stop the others and are reported in the
    response; the flag is set regardless.
    """
    policy = await policy_store.read() or parse_policy(None)
    outcomes = await switch_off_loads(sink, policy.non_essential_loads)
    await policy_store.set_shed_active(True)
    await notifier.success(SAVE_POWER_MESSAGE)
    return {
        "switchedOff": sum(1 for outcome in outcomes if outcome.ok),
        "failed": [outcome.load.id for outcome in outcomes if not outcome.ok],
        "savePowerActive": True,
    }
