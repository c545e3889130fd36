"""
Controller daemon main loop for automatic load shedding.

Runs three concurrent asyncio tasks:
1. **Telemetry subscription**: watches ``powerSources``, derives readings,
   and enqueues a telemetry event per snapshot.
2. **Policy subscription**: watches ``loadSettings`` and enqueues a policy
   event per change.
3. **Consumer**: takes events off the single queue in arrival order and
   applies each to the LoadController, so evaluations are serialized.

Both subscriptions are resilient: a dropped subscription is logged and
re-established with exponential backoff. An exception while handling one
event is logged and does not stop the consumer. Graceful shutdown on
SIGTERM/SIGINT sets a shared asyncio.Event; the consumer finishes the event
in progress (in-flight device commands complete), then both subscriptions
are cancelled, which unsubscribes them, and the Redis connection is closed.

Structured JSON logging is used for all events. A HealthWriter instance
tracks event timestamps and the controller state.

CHANGELOG:
- 2026-10-09: Re-subscribe with backoff after a dropped subscription (STORY-011)
- 2026-10-08: Add HealthWriter (STORY-012)
- 2026-10-06: Initial creation (STORY-010)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import signal
import sys
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit, urlunsplit

from controller.src.health import HealthWriter

if TYPE_CHECKING:
    from controller.src.engine import LoadController
    from controller.src.models import PowerReadings
    from controller.src.policy import PolicyStore
    from controller.src.telemetry import TelemetrySource

logger = logging.getLogger(__name__)

BASE_BACKOFF_S: float = 1.0
"""Initial delay before re-subscribing after a subscription failure."""

QUEUE_WAIT_S: float = 1.0
"""How long the consumer waits for an event before re-checking shutdown."""


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


def configure_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging for the controller daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr.

    Args:
        level: Root log level name.
    """

    class _JsonFormatter(logging.Formatter):
        """Minimal JSON log formatter."""

        def format(self, record: logging.LogRecord) -> str:
            log_entry = {
                "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
            }
            if record.exc_info and record.exc_info[1] is not None:
                log_entry["exception"] = self.formatException(record.exc_info)
            return json.dumps(log_entry)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)


def _masked_url(url: str) -> str:
    """Return *url* with any password replaced by ``***``."""
    parts = urlsplit(url)
    if not parts.password:
        return url
    userinfo = f"{parts.username}:***" if parts.username else ":***"
    host = parts.hostname or ""
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return urlunsplit(parts._replace(netloc=f"{userinfo}@{host}"))


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(settings: object) -> None:
    """Log a config summary at startup with the Redis password masked.

    Args:
        settings: A ControllerSettings instance (or any object with the same attrs).
    """
    logger.info(
        "Controller starting with config: "
        "redis_url=%s, key_prefix=%s, channel_prefix=%s, "
        "telemetry_path=%s, policy_path=%s, rooms_path=%s, "
        "device_logs_path=%s, notification_channel=%s, "
        "default_battery_capacity_wh=%s, health_path=%s, "
        "resubscribe_max_backoff_s=%s",
        _masked_url(settings.redis_url),  # type: ignore[attr-defined]
        settings.key_prefix,  # type: ignore[attr-defined]
        settings.channel_prefix,  # type: ignore[attr-defined]
        settings.telemetry_path,  # type: ignore[attr-defined]
        settings.policy_path,  # type: ignore[attr-defined]
        settings.rooms_path,  # type: ignore[attr-defined]
        settings.device_logs_path,  # type: ignore[attr-defined]
        settings.notification_channel,  # type: ignore[attr-defined]
        settings.default_battery_capacity_wh,  # type: ignore[attr-defined]
        settings.health_path,  # type: ignore[attr-defined]
        settings.resubscribe_max_backoff_s,  # type: ignore[attr-defined]
    )


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class EventKind(str, Enum):
    TELEMETRY = "telemetry"
    POLICY = "policy"


@dataclass(frozen=True)
class ControllerEvent:
    """One item on the consumer queue."""

    kind: EventKind
    readings: PowerReadings | None = None


def telemetry_event(readings: PowerReadings) -> ControllerEvent:
    return ControllerEvent(kind=EventKind.TELEMETRY, readings=readings)


def policy_event(_policy: object) -> ControllerEvent:
    # The controller re-reads the policy itself; the snapshot is not carried.
    return ControllerEvent(kind=EventKind.POLICY)


# ---------------------------------------------------------------------------
# Single-iteration functions (easily testable)
# ---------------------------------------------------------------------------


async def _handle_event(
    *,
    controller: LoadController,
    event: ControllerEvent,
    health: HealthWriter | None,
) -> None:
    """Apply one event to the controller.

    Catches all exceptions so that the consumer loop is never broken. After
    each event the health writer records the event and the controller state.

    Args:
        controller: The load controller.
        event: The event to apply.
        health: HealthWriter instance, or None to skip health writes.
    """
    try:
        if event.kind is EventKind.TELEMETRY and event.readings is not None:
            await controller.on_telemetry(event.readings)
        else:
            await controller.on_policy_change()
    except Exception:
        logger.error("Evaluation error on %s event", event.kind.value, exc_info=True)

    if health is not None:
        try:
            if event.kind is EventKind.TELEMETRY:
                health.record_telemetry()
            else:
                health.record_policy()
            health.record_state(controller.state, controller.last_trigger_key)
        except Exception:
            logger.warning("Failed to write health file", exc_info=True)


def _backoff_delay(failures: int, max_backoff_s: float) -> float:
    """Return the re-subscribe delay after *failures* consecutive failures."""
    if failures <= 0:
        return BASE_BACKOFF_S
    return min(BASE_BACKOFF_S * (2 ** (failures - 1)), max_backoff_s)


# ---------------------------------------------------------------------------
# Loop runners
# ---------------------------------------------------------------------------


async def _subscription_loop(
    *,
    name: str,
    subscribe: Callable[[], AsyncIterator[Any]],
    to_event: Callable[[Any], ControllerEvent],
    queue: asyncio.Queue[ControllerEvent],
    shutdown_event: asyncio.Event,
    max_backoff_s: float,
) -> None:
    """Pump a subscription into the queue until shutdown or cancellation.

    When the subscription raises or ends it is re-established after an
    exponentially growing delay, reset by the next successful update.

    Args:
        name: Name used in log messages.
        subscribe: Factory returning a fresh async iterator of updates.
        to_event: Converts one update into a queue event.
        queue: The consumer queue.
        shutdown_event: Event to signal graceful shutdown.
        max_backoff_s: Cap for the re-subscribe delay.
    """
    logger.info("%s subscription loop started", name)
    failures = 0
    while not shutdown_event.is_set():
        try:
            async with contextlib.aclosing(subscribe()) as updates:
                async for update in updates:
                    failures = 0
                    await queue.put(to_event(update))
            logger.warning("%s subscription ended, re-subscribing", name)
        except Exception:
            failures += 1
            logger.warning(
                "%s subscription failed (consecutive failures: %d)",
                name,
                failures,
                exc_info=True,
            )
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=_backoff_delay(failures, max_backoff_s),
            )
    logger.info("%s subscription loop stopped", name)


async def _consume_loop(
    *,
    controller: LoadController,
    queue: asyncio.Queue[ControllerEvent],
    shutdown_event: asyncio.Event,
    health: HealthWriter | None,
) -> None:
    """Apply queued events one at a time until shutdown_event is set.

    Args:
        controller: The load controller.
        queue: The consumer queue.
        shutdown_event: Event to signal graceful shutdown.
        health: HealthWriter instance, or None to skip health writes.
    """
    logger.info("Consumer loop started")
    while not shutdown_event.is_set():
        try:
            event = await asyncio.wait_for(queue.get(), timeout=QUEUE_WAIT_S)
        except TimeoutError:
            continue
        await _handle_event(controller=controller, event=event, health=health)
    logger.info("Consumer loop stopped")


# ---------------------------------------------------------------------------
# Concurrent runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_loops(
    *,
    controller: LoadController,
    telemetry: TelemetrySource,
    policy_store: PolicyStore,
    shutdown_event: asyncio.Event,
    health: HealthWriter | None = None,
    max_backoff_s: float = 60.0,
) -> None:
    """Run both subscriptions and the consumer until shutdown.

    When the shutdown_event is set the consumer finishes its current event,
    then both subscription tasks are cancelled and awaited so their
    subscriptions are released before returning.

    Args:
        controller: The load controller.
        telemetry: Source of telemetry readings.
        policy_store: Source of policy change notifications.
        shutdown_event: Event to signal graceful shutdown.
        health: HealthWriter instance, or None to skip health writes.
        max_backoff_s: Cap for the re-subscribe delay.
    """
    logger.info("Starting subscriptions and consumer")
    queue: asyncio.Queue[ControllerEvent] = asyncio.Queue()

    producers = [
        asyncio.create_task(
            _subscription_loop(
                name="telemetry",
                subscribe=telemetry.watch,
                to_event=telemetry_event,
                queue=queue,
                shutdown_event=shutdown_event,
                max_backoff_s=max_backoff_s,
            )
        ),
        asyncio.create_task(
            _subscription_loop(
                name="policy",
                subscribe=policy_store.watch,
                to_event=policy_event,
                queue=queue,
                shutdown_event=shutdown_event,
                max_backoff_s=max_backoff_s,
            )
        ),
    ]

    try:
        await _consume_loop(
            controller=controller,
            queue=queue,
            shutdown_event=shutdown_event,
            health=health,
        )
    finally:
        for task in producers:
            task.cancel()
        await asyncio.gather(*producers, return_exceptions=True)
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


async def async_main() -> None:
    """Async entrypoint: load config, build components, run loops.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.
    """
    configure_logging()

    from controller.src.config import ControllerSettings
    from controller.src.engine import LoadController
    from controller.src.notifier import Notifier
    from controller.src.policy import PolicyStore
    from controller.src.sink import DeviceCommandSink
    from controller.src.store import DocumentStore, create_redis
    from controller.src.telemetry import TelemetrySource

    settings = ControllerSettings()
    logging.getLogger().setLevel(settings.log_level)
    log_config_summary(settings)

    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(shutdown_event),
        )

    store = DocumentStore(
        create_redis(settings.redis_url),
        key_prefix=settings.key_prefix,
        channel_prefix=settings.channel_prefix,
    )
    telemetry = TelemetrySource(
        store,
        path=settings.telemetry_path,
        default_capacity_wh=settings.default_battery_capacity_wh,
    )
    policy_store = PolicyStore(store, path=settings.policy_path)
    controller = LoadController(
        policy_store=policy_store,
        sink=DeviceCommandSink(
            store,
            rooms_path=settings.rooms_path,
            device_logs_path=settings.device_logs_path,
        ),
        notifier=Notifier(store, channel=settings.notification_channel),
    )
    health = HealthWriter(settings.health_path)

    try:
        await run_loops(
            controller=controller,
            telemetry=telemetry,
            policy_store=policy_store,
            shutdown_event=shutdown_event,
            health=health,
            max_backoff_s=settings.resubscribe_max_backoff_s,
        )
    finally:
        await store.close()


def _handle_signal(shutdown_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the shutdown event.

    Args:
        shutdown_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    shutdown_event.set()


def main() -> None:
    """Synchronous entrypoint for the controller daemon."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
