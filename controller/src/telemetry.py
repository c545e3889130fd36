"""
Power-source telemetry: derive percentages from raw store snapshots.

The telemetry document published under ``powerSources`` carries raw
figures::

    {
        "solar":   {"current": {"generated": <W>}},
        "grid":    {"current": {"used": <W>}},
        "battery": {"status": {"currentCharge": <Wh>, "capacity": <Wh>}}
    }

``derive_readings`` projects it onto whole percentages. It is a pure
function: the full reading set is recomputed from every snapshot, with no
merge against the previous one. Missing or malformed fields count as 0
rather than raising, and a 0% reading is later treated as "no data".

CHANGELOG:
- 2026-10-05: Use round-half-up to match dashboard rounding (STORY-005)
- 2026-10-03: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import contextlib
import logging
import math
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from controller.src.models import PowerReadings

if TYPE_CHECKING:
    from controller.src.store import DocumentStore

logger = logging.getLogger(__name__)

DEFAULT_BATTERY_CAPACITY_WH: float = 5000.0
"""Battery capacity assumed when the telemetry does not report one."""


# ---------------------------------------------------------------------------
# Field access helpers
# ---------------------------------------------------------------------------


def _lookup(raw: Any, *keys: str) -> float | None:
    """Follow *keys* into nested dicts and return a numeric leaf or None."""
    value = raw
    for key in keys:
        if not isinstance(value, dict):
            return None
        value = value.get(key)
    if isinstance(value, bool) or not isinstance(value, int | float):
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return float(value)


def _round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero for positives."""
    return math.floor(value + 0.5)


def _percent(part: float, whole: float) -> int:
    """Return *part* as a whole percentage of *whole*, clamped to 0..100."""
    if whole <= 0:
        return 0
    return max(0, min(100, _round_half_up(part / whole * 100)))


# ---------------------------------------------------------------------------
# Pure derivation
# ---------------------------------------------------------------------------


def derive_readings(
    raw: dict[str, Any],
    *,
    default_capacity_wh: float = DEFAULT_BATTERY_CAPACITY_WH,
) -> PowerReadings:
    """Derive solar/grid/battery percentages from a raw telemetry snapshot.

    - solar%   = generated / (generated + used) * 100
    - grid%    = used / (generated + used) * 100
    - battery% = currentCharge / capacity * 100

    Any percentage whose denominator is 0 is 0. A missing capacity falls
    back to *default_capacity_wh*; an explicit capacity of 0 gives 0%.

    Args:
        raw: The ``powerSources`` document.
        default_capacity_wh: Capacity used when none is reported.

    Returns:
        PowerReadings with every percentage in 0..100.
    """
    generated = max(_lookup(raw, "solar", "current", "generated") or 0.0, 0.0)
    used = max(_lookup(raw, "grid", "current", "used") or 0.0, 0.0)
    total = generated + used

    charge = _lookup(raw, "battery", "status", "currentCharge") or 0.0
    capacity = _lookup(raw, "battery", "status", "capacity")
    if capacity is None:
        capacity = default_capacity_wh

    return PowerReadings(
        solar=_percent(generated, total),
        grid=_percent(used, total),
        battery=_percent(charge, capacity),
    )


# ---------------------------------------------------------------------------
# Store-backed source
# ---------------------------------------------------------------------------


class TelemetrySource:
    """Publishes derived readings for every change of the telemetry document.

    Args:
        store: The realtime document store.
        path: Document path of the telemetry.
        default_capacity_wh: Battery capacity assumed when not reported.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        path: str = "powerSources",
        default_capacity_wh: float = DEFAULT_BATTERY_CAPACITY_WH,
    ) -> None:
        self._store = store
        self._path = path
        self._default_capacity_wh = default_capacity_wh

    async def read(self) -> PowerReadings | None:
        """Return readings for the current snapshot, or None if absent."""
        raw = await self._store.get(self._path)
        if not raw:
            return None
        return derive_readings(raw, default_capacity_wh=self._default_capacity_wh)

    async def watch(self) -> AsyncIterator[PowerReadings]:
        """Yield derived readings now and after every telemetry change.

        Empty or absent snapshots are skipped.
        """
        async with contextlib.aclosing(self._store.watch(self._path)) as snapshots:
            async for raw in snapshots:
                if not raw:
                    logger.debug("Telemetry snapshot empty, skipping")
                    continue
                yield derive_readings(raw, default_capacity_wh=self._default_capacity_wh)
