"""
Load policy parsing, load-list edits, and the store-backed PolicyStore.

The ``loadSettings`` document is written by several parties (the
controller, the override API, the dashboard), so reads are tolerant:

- a falsy ``mode`` means ``manual``;
- falsy thresholds fall back to battery=40, solar=20, grid=10;
- load lists may be stored as a JSON array or as an object keyed by load
  id (the dashboard's layout), and are always written back keyed by id in
  list order;
- a load entry that does not validate is logged and dropped, the rest of
  the policy still parses (the next list edit writes it back without it).

Load-list edits are pure functions over the raw document so that
PolicyStore can run them inside an optimistic read-modify-write.

CHANGELOG:
- 2026-10-16: Drop invalid load entries instead of rejecting the policy
- 2026-10-07: Run load-list edits inside DocumentStore.modify (STORY-010)
- 2026-10-04: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from redis.exceptions import RedisError

from controller.src.exceptions import (
    DuplicateLoadError,
    LoadNotFoundError,
    PolicyWriteFailure,
)
from controller.src.models import (
    DEFAULT_BATTERY_THRESHOLD,
    DEFAULT_GRID_THRESHOLD,
    DEFAULT_SOLAR_THRESHOLD,
    LoadItem,
    LoadPolicy,
    LoadType,
    OperatingMode,
)

if TYPE_CHECKING:
    from controller.src.store import DocumentStore

logger = logging.getLogger(__name__)

_LIST_FIELDS: dict[LoadType, str] = {
    LoadType.ESSENTIAL: "essentialLoads",
    LoadType.NON_ESSENTIAL: "nonEssentialLoads",
}
"""Maps a load type to the document field holding its list."""


# ---------------------------------------------------------------------------
# Parsing and serialisation
# ---------------------------------------------------------------------------


def _raw_loads(raw: Any, load_type: LoadType) -> list[LoadItem]:
    """Return stored load entries as LoadItems in stored order.

    Entries that do not validate are logged and dropped so that one bad
    entry cannot make the whole policy unreadable.
    """
    if isinstance(raw, dict):
        entries = list(raw.values())
    elif isinstance(raw, list):
        entries = raw
    else:
        return []
    loads = []
    for position, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            continue
        entry = dict(entry)
        entry.setdefault("loadType", load_type.value)
        entry.setdefault("priority", position)
        try:
            loads.append(LoadItem.model_validate(entry))
        except ValidationError:
            logger.warning(
                "Dropping invalid %s load entry %r",
                load_type.value,
                entry.get("id"),
                exc_info=True,
            )
    return loads


def parse_policy(raw: dict[str, Any] | None) -> LoadPolicy:
    """Build a LoadPolicy from a stored ``loadSettings`` document.

    Args:
        raw: The stored document (None is treated as empty).

    Returns:
        The parsed policy with defaults applied.

    Raises:
        pydantic.ValidationError: If a present field has an invalid value
            (e.g. an unknown mode).
    """
    raw = raw or {}
    return LoadPolicy.model_validate(
        {
            "mode": raw.get("mode") or OperatingMode.MANUAL.value,
            "activePowerSource": raw.get("activePowerSource") or None,
            "batteryThreshold": raw.get("batteryThreshold") or DEFAULT_BATTERY_THRESHOLD,
            "solarThreshold": raw.get("solarThreshold") or DEFAULT_SOLAR_THRESHOLD,
            "gridThreshold": raw.get("gridThreshold") or DEFAULT_GRID_THRESHOLD,
            "essentialLoads": _raw_loads(raw.get("essentialLoads"), LoadType.ESSENTIAL),
            "nonEssentialLoads": _raw_loads(
                raw.get("nonEssentialLoads"), LoadType.NON_ESSENTIAL
            ),
            "savePowerActive": bool(raw.get("savePowerActive")),
        }
    )


def serialize_loads(items: list[LoadItem]) -> dict[str, dict[str, Any]]:
    """Serialise a load list as an object keyed by load id, keeping order."""
    return {item.id: item.model_dump(by_alias=True, mode="json") for item in items}


def policy_to_document(policy: LoadPolicy) -> dict[str, Any]:
    """Return the stored representation of a whole policy."""
    doc = policy.model_dump(
        by_alias=True,
        mode="json",
        exclude={"essential_loads", "non_essential_loads"},
    )
    doc["essentialLoads"] = serialize_loads(policy.essential_loads)
    doc["nonEssentialLoads"] = serialize_loads(policy.non_essential_loads)
    return doc


# ---------------------------------------------------------------------------
# Load-list edits (pure)
# ---------------------------------------------------------------------------


def load_id_for(room_id: str, device_id: str) -> str:
    """Return the composite load id of a device."""
    return f"{room_id}-{device_id}"


def make_load_item(
    *,
    room_id: str,
    device_id: str,
    load_type: LoadType,
    existing: list[LoadItem],
    device_name: str = "",
    room_name: str = "",
) -> LoadItem:
    """Build a LoadItem ranked after every load already in its list."""
    return LoadItem(
        id=load_id_for(room_id, device_id),
        device_id=device_id,
        device_name=device_name,
        room_id=room_id,
        room_name=room_name,
        load_type=load_type,
        priority=len(existing) + 1,
    )


def add_load(
    doc: dict[str, Any],
    *,
    room_id: str,
    device_id: str,
    load_type: LoadType,
    device_name: str = "",
    room_name: str = "",
) -> dict[str, Any]:
    """Return *doc* with the device appended to the list for *load_type*.

    Raises:
        DuplicateLoadError: If the device is already in either list.
    """
    policy = parse_policy(doc)
    load_id = load_id_for(room_id, device_id)
    if any(load.id == load_id for load in policy.essential_loads + policy.non_essential_loads):
        raise DuplicateLoadError(load_id)

    target = (
        policy.essential_loads
        if load_type is LoadType.ESSENTIAL
        else policy.non_essential_loads
    )
    target.append(
        make_load_item(
            room_id=room_id,
            device_id=device_id,
            load_type=load_type,
            existing=target,
            device_name=device_name,
            room_name=room_name,
        )
    )
    return {**doc, _LIST_FIELDS[load_type]: serialize_loads(target)}


def remove_load(doc: dict[str, Any], load_id: str) -> dict[str, Any]:
    """Return *doc* without the load *load_id*.

    Priorities of the remaining loads are left as they are.

    Raises:
        LoadNotFoundError: If neither list holds *load_id*.
    """
    policy = parse_policy(doc)
    for load_type, loads in (
        (LoadType.ESSENTIAL, policy.essential_loads),
        (LoadType.NON_ESSENTIAL, policy.non_essential_loads),
    ):
        remaining = [load for load in loads if load.id != load_id]
        if len(remaining) != len(loads):
            return {**doc, _LIST_FIELDS[load_type]: serialize_loads(remaining)}
    raise LoadNotFoundError(load_id)


# ---------------------------------------------------------------------------
# Store-backed policy
# ---------------------------------------------------------------------------


class PolicyStore:
    """Reads and writes the load policy document.

    Every write is a partial merge: fields not being written keep whatever
    value another writer last stored. Store errors on write are raised as
    :class:`~controller.src.exceptions.PolicyWriteFailure`.

    Args:
        store: The realtime document store.
        path: Document path of the policy.
    """

    def __init__(self, store: DocumentStore, *, path: str = "loadSettings") -> None:
        self._store = store
        self._path = path

    async def read(self) -> LoadPolicy | None:
        """Return the current policy, or None if none has been stored."""
        raw = await self._store.get(self._path)
        if not raw:
            return None
        return parse_policy(raw)

    async def update(self, fields: dict[str, Any]) -> LoadPolicy:
        """Merge *fields* (wire names) into the policy and return the result."""
        try:
            doc = await self._store.update(self._path, fields)
        except RedisError as exc:
            raise PolicyWriteFailure(f"Failed to update {self._path}: {exc}") from exc
        return parse_policy(doc)

    async def set_shed_active(self, active: bool) -> None:
        """Write the shared ``savePowerActive`` flag."""
        await self.update({"savePowerActive": active})

    async def add_load(
        self,
        *,
        room_id: str,
        device_id: str,
        load_type: LoadType,
        device_name: str = "",
        room_name: str = "",
    ) -> LoadItem:
        """Assign a device to a load list and return the created LoadItem.

        Raises:
            DuplicateLoadError: If the device is already in a list.
            PolicyWriteFailure: If the store write fails.
        """
        try:
            doc = await self._store.modify(
                self._path,
                lambda current: add_load(
                    current,
                    room_id=room_id,
                    device_id=device_id,
                    load_type=load_type,
                    device_name=device_name,
                    room_name=room_name,
                ),
            )
        except RedisError as exc:
            raise PolicyWriteFailure(f"Failed to add load to {self._path}: {exc}") from exc

        load_id = load_id_for(room_id, device_id)
        policy = parse_policy(doc)
        return next(
            load
            for load in policy.essential_loads + policy.non_essential_loads
            if load.id == load_id
        )

    async def remove_load(self, load_id: str) -> None:
        """Remove a device from whichever load list holds it.

        Raises:
            LoadNotFoundError: If no list holds *load_id*.
            PolicyWriteFailure: If the store write fails.
        """
        try:
            await self._store.modify(self._path, lambda current: remove_load(current, load_id))
        except RedisError as exc:
            raise PolicyWriteFailure(
                f"Failed to remove load from {self._path}: {exc}"
            ) from exc

    async def watch(self) -> AsyncIterator[LoadPolicy]:
        """Yield the policy now and after every change.

        Absent and unparseable documents are logged and skipped.
        """
        async with contextlib.aclosing(self._store.watch(self._path)) as snapshots:
            async for raw in snapshots:
                if not raw:
                    logger.debug("Policy document empty, skipping")
                    continue
                try:
                    policy = parse_policy(raw)
                except ValidationError:
                    logger.warning("Ignoring invalid policy document", exc_info=True)
                    continue
                yield policy
