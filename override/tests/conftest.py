"""
Shared test fixtures for override API tests.

Provides a TestClient whose dependencies are real PolicyStore, sink,
notifier and telemetry components built over an in-memory document store,
so tests can assert on the documents each endpoint writes. Environment
variables are set to test values so the application lifespan can start
without a real Redis server.

CHANGELOG:
- 2026-10-10: Initial creation with in-memory document store (STORY-013)
"""

import copy
from collections.abc import Callable, Generator
from typing import Any

import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from controller.src.notifier import Notifier
from controller.src.policy import PolicyStore
from controller.src.sink import DeviceCommandSink
from controller.src.telemetry import TelemetrySource
from override.src.deps import get_notifier, get_policy_store, get_sink, get_telemetry


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set required environment variables for testing."""
    monkeypatch.setenv("REDIS_URL", "redis://localhost:6379/0")


class InMemoryDocumentStore:
    """DocumentStore double keeping documents, logs and messages in dicts.

    Paths listed in ``failing_paths`` raise a Redis ConnectionError on
    every write.
    """

    def __init__(self) -> None:
        self.docs: dict[str, dict[str, Any]] = {}
        self.logs: dict[str, list[dict[str, Any]]] = {}
        self.published: list[tuple[str, str]] = []
        self.failing_paths: set[str] = set()

    def _check(self, path: str) -> None:
        if path in self.failing_paths:
            raise RedisConnectionError(f"write to {path} failed")

    async def get(self, path: str) -> dict[str, Any] | None:
        doc = self.docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, path: str, doc: dict[str, Any]) -> None:
        self._check(path)
        self.docs[path] = copy.deepcopy(doc)

    async def modify(
        self,
        path: str,
        mutate: Callable[[dict[str, Any]], dict[str, Any] | None],
    ) -> dict[str, Any]:
        self._check(path)
        doc = copy.deepcopy(self.docs.get(path) or {})
        updated = mutate(doc)
        if updated is None:
            updated = doc
        self.docs[path] = copy.deepcopy(updated)
        return updated

    async def update(self, path: str, fields: dict[str, Any]) -> dict[str, Any]:
        return await self.modify(path, lambda doc: {**doc, **fields})

    async def push(self, path: str, entry: dict[str, Any]) -> None:
        self._check(path)
        self.logs.setdefault(path, []).append(entry)

    async def publish(self, channel: str, message: str) -> None:
        self.published.append((channel, message))


def stored_load(room_id: str, device_id: str, load_type: str, priority: int) -> dict:
    """Return a load entry as the dashboard stores it."""
    return {
        "id": f"{room_id}-{device_id}",
        "deviceId": device_id,
        "deviceName": device_id.upper(),
        "roomId": room_id,
        "roomName": room_id.title(),
        "loadType": load_type,
        "priority": priority,
    }


@pytest.fixture()
def doc_store() -> InMemoryDocumentStore:
    """In-memory document store seeded with a policy holding three loads."""
    store = InMemoryDocumentStore()
    store.docs["loadSettings"] = {
        "mode": "automatic",
        "activePowerSource": "solar",
        "batteryThreshold": 40,
        "solarThreshold": 20,
        "gridThreshold": 10,
        "essentialLoads": {
            "lab-1-light-1": stored_load("lab-1", "light-1", "essential", 1),
        },
        "nonEssentialLoads": {
            "lab-1-ac-1": stored_load("lab-1", "ac-1", "non-essential", 1),
            "lab-2-fan-1": stored_load("lab-2", "fan-1", "non-essential", 2),
        },
        "savePowerActive": False,
    }
    return store


@pytest.fixture()
def client(doc_store: InMemoryDocumentStore) -> Generator[TestClient, None, None]:
    """Create a FastAPI TestClient wired to the in-memory document store.

    Uses a context manager so the application lifespan runs; every
    component the routes use is overridden to sit on *doc_store*.

    Yields:
        TestClient: Configured test client for the FastAPI app.
    """
    from override.src.main import app

    app.dependency_overrides[get_policy_store] = lambda: PolicyStore(doc_store)
    app.dependency_overrides[get_sink] = lambda: DeviceCommandSink(doc_store)
    app.dependency_overrides[get_notifier] = lambda: Notifier(doc_store)
    app.dependency_overrides[get_telemetry] = lambda: TelemetrySource(doc_store)
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()
