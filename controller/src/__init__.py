"""
Load-shedding controller daemon package.

Watches power-source telemetry and the load policy in the realtime document
store (Redis) and forces non-essential loads off when battery or solar
levels drop below their configured thresholds.

CHANGELOG:
- 2026-10-02: Initial creation (STORY-001)

TODO:
- None
"""
