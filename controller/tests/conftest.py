"""
Shared test fixtures for controller tests.

Provides environment variable fixtures for ControllerSettings tests and
in-memory collaborators (policy store, command sink) for controller tests.
All controller env vars are cleaned before each test to ensure isolation.

CHANGELOG:
- 2026-10-05: Add in-memory policy store and recording sink (STORY-008)
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from controller.src.exceptions import CommandFailure, PolicyWriteFailure
from controller.src.models import (
    DeviceCommand,
    LoadItem,
    LoadPolicy,
    LoadType,
    OperatingMode,
)

# All ControllerSettings environment variable names, used for cleanup.
_ALL_CONTROLLER_ENV_VARS = (
    "REDIS_URL",
    "KEY_PREFIX",
    "CHANNEL_PREFIX",
    "TELEMETRY_PATH",
    "POLICY_PATH",
    "ROOMS_PATH",
    "DEVICE_LOGS_PATH",
    "NOTIFICATION_CHANNEL",
    "DEFAULT_BATTERY_CAPACITY_WH",
    "HEALTH_PATH",
    "RESUBSCRIBE_MAX_BACKOFF_S",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _clean_controller_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all controller env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_CONTROLLER_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every ControllerSettings environment variable.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "REDIS_URL": "redis://:secret@redis.local:6379/2",
        "KEY_PREFIX": "site1:doc:",
        "CHANNEL_PREFIX": "site1:changes:",
        "TELEMETRY_PATH": "site1/powerSources",
        "POLICY_PATH": "site1/loadSettings",
        "ROOMS_PATH": "site1/rooms",
        "DEVICE_LOGS_PATH": "site1/deviceLogs",
        "NOTIFICATION_CHANNEL": "site1/notifications",
        "DEFAULT_BATTERY_CAPACITY_WH": "10000",
        "HEALTH_PATH": "/tmp/controller-health.json",
        "RESUBSCRIBE_MAX_BACKOFF_S": "30",
        "LOG_LEVEL": "debug",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def env_vars_required_only(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set only REDIS_URL; every other variable falls back to its default."""
    env = {"REDIS_URL": "redis://localhost:6379/0"}
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


def make_load(
    room_id: str = "lab-1",
    device_id: str = "ac-1",
    load_type: LoadType = LoadType.NON_ESSENTIAL,
    priority: int = 1,
) -> LoadItem:
    """Create a LoadItem with a matching composite id."""
    return LoadItem(
        id=f"{room_id}-{device_id}",
        device_id=device_id,
        device_name=device_id.upper(),
        room_id=room_id,
        room_name=room_id.title(),
        load_type=load_type,
        priority=priority,
    )


class InMemoryPolicyStore:
    """Policy store double holding one LoadPolicy.

    ``fail_writes`` makes set_shed_active raise PolicyWriteFailure, and
    ``writes`` records every flag value written.
    """

    def __init__(self, policy: LoadPolicy | None) -> None:
        self.policy = policy
        self.fail_writes = False
        self.writes: list[bool] = []
        self.reads = 0

    async def read(self) -> LoadPolicy | None:
        self.reads += 1
        if self.policy is None:
            return None
        return self.policy.model_copy(deep=True)

    async def set_shed_active(self, active: bool) -> None:
        if self.fail_writes:
            raise PolicyWriteFailure("store unavailable")
        self.writes.append(active)
        assert self.policy is not None
        self.policy = self.policy.model_copy(update={"shed_active": active})


class RecordingSink:
    """Command sink double recording every command.

    Commands for device ids in ``failing`` raise CommandFailure.
    """

    def __init__(self, failing: set[str] | None = None) -> None:
        self.commands: list[DeviceCommand] = []
        self.failing = failing or set()

    async def send(self, command: DeviceCommand) -> None:
        if command.device_id in self.failing:
            raise CommandFailure(command.room_id, command.device_id)
        self.commands.append(command)


@pytest.fixture()
def two_loads() -> list[LoadItem]:
    """Two non-essential loads."""
    return [
        make_load("lab-1", "ac-1", priority=1),
        make_load("classroom-2", "projector-1", priority=2),
    ]


@pytest.fixture()
def automatic_policy(two_loads: list[LoadItem]) -> LoadPolicy:
    """Automatic-mode policy with default thresholds and two non-essential loads."""
    return LoadPolicy(
        mode=OperatingMode.AUTOMATIC,
        essential_loads=[make_load("lab-1", "light-1", LoadType.ESSENTIAL)],
        non_essential_loads=two_loads,
    )


@pytest.fixture()
def policy_store(automatic_policy: LoadPolicy) -> InMemoryPolicyStore:
    return InMemoryPolicyStore(automatic_policy)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.warning = AsyncMock()
    notifier.success = AsyncMock()
    return notifier


@pytest.fixture()
def load_factory():
    """Return the make_load helper for tests that build their own loads."""
    return make_load
