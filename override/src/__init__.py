"""
Manual override HTTP API for the load-shedding controller.

Lets an operator change the mode, active source, thresholds and load lists,
and trigger a manual "Save Power". Every change is an ordinary write to the
policy document, which the controller picks up through its subscription.

CHANGELOG:
- 2026-10-10: Initial creation (STORY-013)

TODO:
- None
"""
