"""
Tests for telemetry derivation and the store-backed TelemetrySource.

Verifies the percentage formulas, rounding, defaults for missing fields
and the battery capacity fallback, and that empty snapshots are skipped.

CHANGELOG:
- 2026-10-05: Add rounding tests (STORY-005)
- 2026-10-03: Initial creation -- TDD tests written first (STORY-004)

TODO:
- None
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from controller.src.models import PowerReadings
from controller.src.telemetry import TelemetrySource, derive_readings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _raw(
    generated: float | None = 3000,
    used: float | None = 1000,
    charge: float | None = 2500,
    capacity: float | None = 5000,
) -> dict:
    """Return a powerSources snapshot; None leaves the field out."""
    raw: dict = {"solar": {"current": {}}, "grid": {"current": {}}, "battery": {"status": {}}}
    if generated is not None:
        raw["solar"]["current"]["generated"] = generated
    if used is not None:
        raw["grid"]["current"]["used"] = used
    if charge is not None:
        raw["battery"]["status"]["currentCharge"] = charge
    if capacity is not None:
        raw["battery"]["status"]["capacity"] = capacity
    return raw


# ===========================================================================
# derive_readings
# ===========================================================================


class TestDeriveReadings:
    def test_shares_and_charge(self) -> None:
        readings = derive_readings(_raw())

        assert readings == PowerReadings(solar=75, grid=25, battery=50)

    def test_rounds_half_up(self) -> None:
        # 1 / 8 = 12.5% and 7 / 8 = 87.5%
        readings = derive_readings(_raw(generated=1, used=7, charge=125, capacity=1000))

        assert readings.solar == 13
        assert readings.grid == 88
        assert readings.battery == 13

    def test_no_supply_gives_zero_shares(self) -> None:
        readings = derive_readings(_raw(generated=0, used=0))

        assert readings.solar == 0
        assert readings.grid == 0

    def test_missing_capacity_uses_default(self) -> None:
        readings = derive_readings(_raw(charge=2000, capacity=None))

        assert readings.battery == 40

    def test_custom_default_capacity(self) -> None:
        readings = derive_readings(
            _raw(charge=2000, capacity=None), default_capacity_wh=10000
        )

        assert readings.battery == 20

    def test_zero_capacity_gives_zero(self) -> None:
        assert derive_readings(_raw(capacity=0)).battery == 0

    def test_charge_above_capacity_is_clamped(self) -> None:
        assert derive_readings(_raw(charge=6000, capacity=5000)).battery == 100

    def test_empty_snapshot_is_all_zero(self) -> None:
        assert derive_readings({}) == PowerReadings(solar=0, grid=0, battery=0)

    def test_non_numeric_fields_count_as_zero(self) -> None:
        raw = {
            "solar": {"current": {"generated": "lots"}},
            "grid": {"current": {"used": 500}},
            "battery": "offline",
        }

        readings = derive_readings(raw)

        assert readings == PowerReadings(solar=0, grid=100, battery=0)

    def test_boolean_is_not_a_number(self) -> None:
        readings = derive_readings(_raw(generated=True, used=100))

        assert readings.solar == 0

    def test_negative_generation_treated_as_zero(self) -> None:
        readings = derive_readings(_raw(generated=-200, used=800))

        assert readings.solar == 0
        assert readings.grid == 100


# ===========================================================================
# TelemetrySource
# ===========================================================================


def _store_with_snapshots(*snapshots: dict | None) -> MagicMock:
    async def _watch(path: str):
        for snapshot in snapshots:
            yield snapshot

    store = MagicMock()
    store.watch = MagicMock(side_effect=_watch)
    store.get = AsyncMock(return_value=snapshots[0] if snapshots else None)
    return store


class TestTelemetrySource:
    @pytest.mark.asyncio
    async def test_watch_derives_each_snapshot(self) -> None:
        store = _store_with_snapshots(_raw(charge=1000), _raw(charge=4000))
        source = TelemetrySource(store, path="powerSources")

        readings = [r async for r in source.watch()]

        assert [r.battery for r in readings] == [20, 80]
        store.watch.assert_called_once_with("powerSources")

    @pytest.mark.asyncio
    async def test_watch_skips_empty_snapshots(self) -> None:
        store = _store_with_snapshots(None, {}, _raw())
        source = TelemetrySource(store)

        readings = [r async for r in source.watch()]

        assert len(readings) == 1

    @pytest.mark.asyncio
    async def test_read_returns_none_when_absent(self) -> None:
        store = _store_with_snapshots()
        source = TelemetrySource(store)

        assert await source.read() is None

    @pytest.mark.asyncio
    async def test_read_uses_default_capacity(self) -> None:
        store = _store_with_snapshots(_raw(charge=2500, capacity=None))
        source = TelemetrySource(store, default_capacity_wh=10000)

        readings = await source.read()

        assert readings is not None
        assert readings.battery == 25
