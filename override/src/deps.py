"""
FastAPI dependency injection providers.

Components are built once in the application lifespan and stored on
``app.state``; these providers hand them to route handlers so tests can
swap them through ``app.dependency_overrides``.

CHANGELOG:
- 2026-10-10: Initial creation (STORY-013)
"""

from typing import Annotated

from fastapi import Depends, Request

from controller.src.notifier import Notifier
from controller.src.policy import PolicyStore
from controller.src.sink import DeviceCommandSink
from controller.src.telemetry import TelemetrySource


def get_policy_store(request: Request) -> PolicyStore:
    """Return the PolicyStore built at startup."""
    return request.app.state.policy_store


def get_sink(request: Request) -> DeviceCommandSink:
    """Return the DeviceCommandSink built at startup."""
    return request.app.state.sink


def get_notifier(request: Request) -> Notifier:
    """Return the Notifier built at startup."""
    return request.app.state.notifier


def get_telemetry(request: Request) -> TelemetrySource:
    """Return the TelemetrySource built at startup."""
    return request.app.state.telemetry


# Type aliases for injecting components via FastAPI Depends().
# Usage in route handlers:
#   async def my_route(policy_store: PolicyStoreDep):
#       policy = await policy_store.read()
PolicyStoreDep = Annotated[PolicyStore, Depends(get_policy_store)]
SinkDep = Annotated[DeviceCommandSink, Depends(get_sink)]
NotifierDep = Annotated[Notifier, Depends(get_notifier)]
TelemetryDep = Annotated[TelemetrySource, Depends(get_telemetry)]
