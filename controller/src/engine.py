"""
Load controller: converge device state to the shedding decision.

The controller is driven by two event streams, telemetry and policy. Every
event runs one full evaluation under a lock, so evaluations never overlap:

1. Skip until telemetry has arrived.
2. Re-read the policy from the store. ``savePowerActive`` has other
   writers (the manual "Save Power" action), so a cached copy is never
   trusted.
3. Do nothing unless the policy mode is ``automatic``.
4. Compute the decision.
5. Activate when shedding is required, the policy is not already shedding,
   and the trigger key differs from the last one acted on. Activation
   switches every non-essential load off concurrently, then records
   ``savePowerActive = true`` even if some commands failed.
6. Deactivate when shedding is no longer required but the policy still
   says it is active. Deactivation only lifts the flag: devices stay off
   until someone switches them back on. If the flag never reached the
   store, recovery just forgets the trigger key, with no write and no
   notification.

The last trigger key is private, in-memory, and lost on restart.

CHANGELOG:
- 2026-10-16: Forget the trigger key on recovery when the flag write had failed
- 2026-10-06: Record trigger key before the fan-out so a failed flag write cannot re-trigger (STORY-009)
- 2026-10-05: Initial creation (STORY-008)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from pydantic import ValidationError
from redis.exceptions import RedisError

from controller.src.decision import ShedDecision, decide
from controller.src.exceptions import PolicyWriteFailure
from controller.src.models import (
    ControllerState,
    LoadPolicy,
    OperatingMode,
    PowerReadings,
)
from controller.src.sink import CommandSink, switch_off_loads

logger = logging.getLogger(__name__)

RECOVERED_MESSAGE = "Power levels recovered - Auto power save deactivated"


class PolicySource(Protocol):
    """Read access to the policy plus the shed flag write."""

    async def read(self) -> LoadPolicy | None: ...

    async def set_shed_active(self, active: bool) -> None: ...


class NotificationSink(Protocol):
    """User-facing notification surface."""

    async def warning(self, message: str) -> None: ...

    async def success(self, message: str) -> None: ...


def shed_message(decision: ShedDecision) -> str:
    """Return the notification text for an activation."""
    return (
        f"Auto Power Save: {decision.source.value} below {decision.threshold}% "
        "- Non-essential loads turned off"
    )


class LoadController:
    """Automatic load-shedding state machine.

    Args:
        policy_store: Where the policy is read and the shed flag written.
        sink: Where device commands are sent.
        notifier: Where user-facing notifications go.
    """

    def __init__(
        self,
        *,
        policy_store: PolicySource,
        sink: CommandSink,
        notifier: NotificationSink,
    ) -> None:
        self._policy_store = policy_store
        self._sink = sink
        self._notifier = notifier
        self._readings: PowerReadings | None = None
        self._last_trigger_key: str | None = None
        self._state = ControllerState.NORMAL
        self._lock = asyncio.Lock()

    @property
    def readings(self) -> PowerReadings | None:
        """Latest telemetry seen, or None before the first reading."""
        return self._readings

    @property
    def last_trigger_key(self) -> str | None:
        """Trigger key of the last activation, cleared on recovery."""
        return self._last_trigger_key

    @property
    def state(self) -> ControllerState:
        return self._state

    # ------------------------------------------------------------------
    # Event entry points
    # ------------------------------------------------------------------

    async def on_telemetry(self, readings: PowerReadings) -> None:
        """Store new readings and evaluate."""
        async with self._lock:
            self._readings = readings
            await self._evaluate()

    async def on_policy_change(self) -> None:
        """Evaluate after the policy changed."""
        async with self._lock:
            await self._evaluate()

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def _evaluate(self) -> None:
        if self._readings is None:
            logger.debug("No telemetry yet, skipping evaluation")
            return

        try:
            policy = await self._policy_store.read()
        except (RedisError, ValidationError):
            logger.error("Policy read failed, skipping evaluation", exc_info=True)
            return
        if policy is None:
            logger.debug("No policy stored yet, skipping evaluation")
            return
        if policy.mode is not OperatingMode.AUTOMATIC:
            return

        decision = decide(self._readings, policy)
        if decision.should_shed:
            if not policy.shed_active and decision.trigger_key != self._last_trigger_key:
                await self._activate(policy, decision)
        elif policy.shed_active:
            await self._deactivate()
        elif self._last_trigger_key is not None:
            # Flag never written (failed activation write) or cleared elsewhere.
            logger.info(
                "Readings recovered from %s with savePowerActive unset, resetting",
                self._last_trigger_key,
            )
            self._last_trigger_key = None
            self._state = ControllerState.NORMAL

    async def _activate(self, policy: LoadPolicy, decision: ShedDecision) -> None:
        self._last_trigger_key = decision.trigger_key

        outcomes = await switch_off_loads(self._sink, policy.non_essential_loads)
        failed = sum(1 for outcome in outcomes if not outcome.ok)

        try:
            await self._policy_store.set_shed_active(True)
        except PolicyWriteFailure:
            logger.error(
                "Failed to record savePowerActive=true for trigger %s",
                decision.trigger_key,
                exc_info=True,
            )

        self._state = ControllerState.SHEDDING
        logger.info(
            "Load shedding activated by %s: %d%% <= %d%% (%d of %d OFF commands failed)",
            decision.trigger_key,
            decision.percentage,
            decision.threshold,
            failed,
            len(outcomes),
        )
        await self._notifier.warning(shed_message(decision))

    async def _deactivate(self) -> None:
        try:
            await self._policy_store.set_shed_active(False)
        except PolicyWriteFailure:
            logger.error(
                "Failed to clear savePowerActive, will retry on next event",
                exc_info=True,
            )
            return

        logger.info("Load shedding released (was %s)", self._last_trigger_key)
        self._last_trigger_key = None
        self._state = ControllerState.NORMAL
        await self._notifier.success(RECOVERED_MESSAGE)
