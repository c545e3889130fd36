"""
Unit tests for the controller health writer module.

Tests verify:
- record_telemetry() and record_policy() stamp their timestamps.
- record_state() stamps last_transition_ts only when the state changes.
- The health file always contains all five fields.

CHANGELOG:
- 2026-10-08: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path

from controller.src.health import HealthWriter
from controller.src.models import ControllerState

_FIELDS = {
    "last_telemetry_ts",
    "last_policy_ts",
    "last_transition_ts",
    "state",
    "last_trigger_key",
}


def _read(path: Path) -> dict:
    return json.loads(path.read_text())


class TestRecordEvents:
    def test_record_telemetry_writes_file(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_telemetry()

        data = _read(health_path)
        assert set(data) == _FIELDS
        assert "T" in data["last_telemetry_ts"]
        assert data["last_policy_ts"] is None
        assert data["state"] == "normal"

    def test_record_policy_keeps_telemetry_ts(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(str(health_path))

        writer.record_telemetry()
        writer.record_policy()

        data = _read(health_path)
        assert data["last_telemetry_ts"] is not None
        assert data["last_policy_ts"] is not None


class TestRecordState:
    def test_transition_stamped_on_change(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_state(ControllerState.SHEDDING, "battery-40")

        data = _read(health_path)
        assert data["state"] == "shedding"
        assert data["last_trigger_key"] == "battery-40"
        assert data["last_transition_ts"] is not None

    def test_same_state_does_not_stamp(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_state(ControllerState.NORMAL, None)

        assert _read(health_path)["last_transition_ts"] is None

    def test_transition_ts_kept_while_state_unchanged(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_state(ControllerState.SHEDDING, "solar-20")
        first = _read(health_path)["last_transition_ts"]
        writer.record_state(ControllerState.SHEDDING, "solar-20")

        assert _read(health_path)["last_transition_ts"] == first

    def test_recovery_clears_trigger_key(self, tmp_path: Path) -> None:
        health_path = tmp_path / "health.json"
        writer = HealthWriter(health_path)

        writer.record_state(ControllerState.SHEDDING, "battery-40")
        writer.record_state(ControllerState.NORMAL, None)

        data = _read(health_path)
        assert data["state"] == "normal"
        assert data["last_trigger_key"] is None
