"""
Health file writer for the controller daemon.

Writes a JSON health file at a configurable path with five fields:
- last_telemetry_ts: ISO timestamp of the most recent telemetry event.
- last_policy_ts: ISO timestamp of the most recent policy event.
- last_transition_ts: ISO timestamp of the most recent normal/shedding
  transition.
- state: Current controller state (``normal`` or ``shedding``).
- last_trigger_key: Threshold that caused the current shed, if any.

The file is rewritten on every state change, providing a simple liveness
signal that Docker HEALTHCHECK or monitoring can inspect.

CHANGELOG:
- 2026-10-08: Initial creation (STORY-012)

TODO:
- None
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

from controller.src.models import ControllerState


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


class HealthWriter:
    """Writes controller health status to a JSON file.

    Each mutating method updates the in-memory state and immediately
    rewrites the health file so it always reflects the latest status.

    Args:
        path: Filesystem path for the health JSON file. Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._last_telemetry_ts: str | None = None
        self._last_policy_ts: str | None = None
        self._last_transition_ts: str | None = None
        self._state: ControllerState = ControllerState.NORMAL
        self._last_trigger_key: str | None = None

    def record_telemetry(self) -> None:
        """Record a telemetry event and write health file."""
        self._last_telemetry_ts = _now()
        self._write()

    def record_policy(self) -> None:
        """Record a policy event and write health file."""
        self._last_policy_ts = _now()
        self._write()

    def record_state(self, state: ControllerState, trigger_key: str | None) -> None:
        """Record the controller state, stamping a transition when it changed.

        Args:
            state: Current controller state.
            trigger_key: Current trigger key (None when not shedding).
        """
        if state is not self._state:
            self._last_transition_ts = _now()
        self._state = state
        self._last_trigger_key = trigger_key
        self._write()

    def _write(self) -> None:
        """Write the health JSON file with current state."""
        data = {
            "last_telemetry_ts": self._last_telemetry_ts,
            "last_policy_ts": self._last_policy_ts,
            "last_transition_ts": self._last_transition_ts,
            "state": self._state.value,
            "last_trigger_key": self._last_trigger_key,
        }
        self.path.write_text(json.dumps(data))
