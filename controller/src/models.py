"""
Pydantic models for power readings, the load policy, and device commands.

Field aliases match the camelCase names the dashboard stores in the
document store (``savePowerActive``, ``nonEssentialLoads`` ...), so models
can be validated straight from stored JSON and dumped back with
``by_alias=True``. Python code uses the snake_case attribute names.

CHANGELOG:
- 2026-10-06: Add ControllerState (STORY-008)
- 2026-10-02: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_BATTERY_THRESHOLD = 40
DEFAULT_SOLAR_THRESHOLD = 20
DEFAULT_GRID_THRESHOLD = 10


class PowerSource(str, Enum):
    """A power source feeding the site."""

    SOLAR = "solar"
    GRID = "grid"
    BATTERY = "battery"


class OperatingMode(str, Enum):
    """Whether the controller may act on its own."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class LoadType(str, Enum):
    """Which load list a device belongs to."""

    ESSENTIAL = "essential"
    NON_ESSENTIAL = "non-essential"


class ControllerState(str, Enum):
    """Controller state: normal operation or non-essential loads forced off."""

    NORMAL = "normal"
    SHEDDING = "shedding"


class PowerReading(BaseModel):
    """Percentage level of a single power source."""

    source: PowerSource
    percentage: int = Field(ge=0, le=100)


class PowerReadings(BaseModel):
    """Derived percentages for every power source.

    A value of 0 means the source reported nothing (sensor absent or no
    data), never a critically low level.

    Attributes:
        solar: Solar share of total supply in percent.
        grid: Grid share of total supply in percent.
        battery: Battery state of charge in percent.
    """

    solar: int = Field(0, ge=0, le=100)
    grid: int = Field(0, ge=0, le=100)
    battery: int = Field(0, ge=0, le=100)

    def reading(self, source: PowerSource) -> PowerReading:
        """Return the reading for a single source."""
        return PowerReading(source=source, percentage=getattr(self, source.value))


class LoadItem(BaseModel):
    """A device assigned to the essential or non-essential load list.

    Attributes:
        id: Composite ``{roomId}-{deviceId}`` identifier.
        device_id: Device identifier within its room.
        device_name: Device name, denormalized for display.
        room_id: Room identifier.
        room_name: Room name, denormalized for display.
        load_type: List the device belongs to.
        priority: Rank assigned at insertion (list length + 1); never
            renumbered when other loads are removed.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    device_id: str = Field(alias="deviceId")
    device_name: str = Field("", alias="deviceName")
    room_id: str = Field(alias="roomId")
    room_name: str = Field("", alias="roomName")
    load_type: LoadType = Field(alias="loadType")
    priority: int = Field(ge=1)


class LoadPolicy(BaseModel):
    """The mutable load-shedding policy.

    ``shed_active`` is the single source of truth for whether non-essential
    loads are currently forced off. It is shared with external writers
    (the manual "Save Power" action), so it must be re-read before every
    decision.
    """

    model_config = ConfigDict(populate_by_name=True)

    mode: OperatingMode = OperatingMode.MANUAL
    active_source: PowerSource | None = Field(None, alias="activePowerSource")
    battery_threshold: int = Field(DEFAULT_BATTERY_THRESHOLD, alias="batteryThreshold")
    solar_threshold: int = Field(DEFAULT_SOLAR_THRESHOLD, alias="solarThreshold")
    grid_threshold: int = Field(DEFAULT_GRID_THRESHOLD, alias="gridThreshold")
    essential_loads: list[LoadItem] = Field(default_factory=list, alias="essentialLoads")
    non_essential_loads: list[LoadItem] = Field(
        default_factory=list, alias="nonEssentialLoads"
    )
    shed_active: bool = Field(False, alias="savePowerActive")

    def threshold_for(self, source: PowerSource) -> int:
        """Return the configured threshold for *source*."""
        if source is PowerSource.BATTERY:
            return self.battery_threshold
        if source is PowerSource.SOLAR:
            return self.solar_threshold
        return self.grid_threshold


class DeviceCommand(BaseModel):
    """A fire-and-forget on/off instruction for a single device."""

    device_id: str
    room_id: str
    is_on: bool
    timestamp: datetime
    device_name: str = ""
    room_name: str = ""

    @classmethod
    def switch_off(cls, load: LoadItem, timestamp: datetime) -> DeviceCommand:
        """Build an OFF command for a load list entry."""
        return cls(
            device_id=load.device_id,
            room_id=load.room_id,
            is_on=False,
            timestamp=timestamp,
            device_name=load.device_name,
            room_name=load.room_name,
        )
