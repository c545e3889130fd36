"""
Device command sink: write on/off commands into per-device documents.

A command merges ``{isOn, lastUpdated}`` into
``rooms/{roomId}/devices/{deviceId}`` and then appends an activity entry
to ``deviceLogs/{deviceId}``, the same record the dashboard writes when a
user toggles a device. Commands are fire-and-forget: there is no
acknowledgement from the device itself.

``switch_off_loads`` fans OFF commands out concurrently. Each command
succeeds or fails on its own; one failed device never stops the others.

CHANGELOG:
- 2026-10-06: Append activity log entry per command (STORY-009)
- 2026-10-04: Initial creation (STORY-007)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol

from redis.exceptions import RedisError

from controller.src.exceptions import CommandFailure
from controller.src.models import DeviceCommand, LoadItem

if TYPE_CHECKING:
    from controller.src.store import DocumentStore

logger = logging.getLogger(__name__)


class CommandSink(Protocol):
    """Anything that accepts device commands."""

    async def send(self, command: DeviceCommand) -> None: ...


def _epoch_ms(ts: datetime) -> int:
    """Return *ts* as integer milliseconds since the Unix epoch."""
    return int(ts.timestamp() * 1000)


class DeviceCommandSink:
    """Writes device commands to the realtime document store.

    Args:
        store: The realtime document store.
        rooms_path: Root path of the per-room device documents.
        device_logs_path: Root path of the per-device activity logs.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        rooms_path: str = "rooms",
        device_logs_path: str = "deviceLogs",
    ) -> None:
        self._store = store
        self._rooms_path = rooms_path
        self._device_logs_path = device_logs_path

    def device_path(self, room_id: str, device_id: str) -> str:
        """Return the document path of a device."""
        return f"{self._rooms_path}/{room_id}/devices/{device_id}"

    async def send(self, command: DeviceCommand) -> None:
        """Write *command* to its device document and log the activity.

        Raises:
            CommandFailure: If the device document could not be written.
        """
        ts_ms = _epoch_ms(command.timestamp)
        try:
            await self._store.update(
                self.device_path(command.room_id, command.device_id),
                {"isOn": command.is_on, "lastUpdated": ts_ms},
            )
        except RedisError as exc:
            raise CommandFailure(command.room_id, command.device_id) from exc

        action = "on" if command.is_on else "off"
        try:
            await self._store.push(
                f"{self._device_logs_path}/{command.device_id}",
                {
                    "deviceId": command.device_id,
                    "deviceName": command.device_name,
                    "roomId": command.room_id,
                    "roomName": command.room_name,
                    "action": action,
                    "timestamp": ts_ms,
                },
            )
        except RedisError:
            logger.warning(
                "Device %s/%s switched %s but the activity log write failed",
                command.room_id,
                command.device_id,
                action,
                exc_info=True,
            )
        logger.info("Device %s/%s switched %s", command.room_id, command.device_id, action)


@dataclass(frozen=True)
class CommandOutcome:
    """Result of one command in a fan-out."""

    load: LoadItem
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def switch_off_loads(
    sink: CommandSink,
    loads: list[LoadItem],
    *,
    now: datetime | None = None,
) -> list[CommandOutcome]:
    """Send an OFF command to every load concurrently.

    Waits until every command has been accepted or has failed. Failures are
    logged and reported in the outcomes, never raised.

    Args:
        sink: Where commands are sent.
        loads: Loads to switch off.
        now: Command timestamp (defaults to the current UTC time).

    Returns:
        One CommandOutcome per load, in the order of *loads*.
    """
    ts = now or datetime.now(tz=UTC)
    results = await asyncio.gather(
        *(sink.send(DeviceCommand.switch_off(load, ts)) for load in loads),
        return_exceptions=True,
    )

    outcomes = []
    for load, result in zip(loads, results, strict=True):
        if isinstance(result, Exception):
            logger.error(
                "OFF command failed for device %s/%s: %s",
                load.room_id,
                load.device_id,
                result,
            )
            outcomes.append(CommandOutcome(load=load, error=result))
        elif isinstance(result, BaseException):
            raise result
        else:
            outcomes.append(CommandOutcome(load=load))
    return outcomes
