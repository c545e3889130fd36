"""
Pure load-shedding decision.

Given the latest readings and the policy, decide whether non-essential
loads must be off and which threshold caused it. Only battery and solar
can force shedding; the grid threshold is configurable but is never
evaluated (the grid is the always-available backup). A reading of exactly
0% never triggers: it means the sensor reported nothing.

When battery and solar both fire in the same evaluation, the source with
the lower percentage wins; on a tie battery wins.

CHANGELOG:
- 2026-10-05: Pick the lowest triggered percentage instead of last-checked source (STORY-008)
- 2026-10-04: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

from dataclasses import dataclass

from controller.src.models import LoadPolicy, PowerReadings, PowerSource

TRIGGER_SOURCES: tuple[PowerSource, ...] = (PowerSource.BATTERY, PowerSource.SOLAR)
"""Sources that may force shedding, in tie-break order."""


@dataclass(frozen=True)
class ShedDecision:
    """Outcome of one evaluation.

    Attributes:
        should_shed: Whether non-essential loads must be off.
        source: Source whose threshold fired, when shedding.
        threshold: Threshold that fired, when shedding.
        percentage: Reading of the firing source, when shedding.
    """

    should_shed: bool
    source: PowerSource | None = None
    threshold: int | None = None
    percentage: int | None = None

    @property
    def trigger_key(self) -> str | None:
        """Identifier of the firing threshold, e.g. ``"battery-40"``."""
        if not self.should_shed or self.source is None:
            return None
        return f"{self.source.value}-{self.threshold}"


NO_SHED = ShedDecision(should_shed=False)


def is_triggered(percentage: int, threshold: int) -> bool:
    """Return True when a non-zero reading is at or below its threshold."""
    return 0 < percentage <= threshold


def decide(readings: PowerReadings, policy: LoadPolicy) -> ShedDecision:
    """Decide whether non-essential loads must be shed.

    The policy mode is not checked here; callers skip evaluation entirely
    in manual mode.

    Args:
        readings: Latest derived readings.
        policy: Current policy.

    Returns:
        The decision, carrying the firing source and threshold if any.
    """
    fired = [
        ShedDecision(
            should_shed=True,
            source=source,
            threshold=policy.threshold_for(source),
            percentage=readings.reading(source).percentage,
        )
        for source in TRIGGER_SOURCES
        if is_triggered(readings.reading(source).percentage, policy.threshold_for(source))
    ]
    if not fired:
        return NO_SHED
    # min() keeps the first of equal items, so battery wins ties.
    return min(fired, key=lambda decision: decision.percentage)
