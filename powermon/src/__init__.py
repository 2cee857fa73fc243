"""
Power-monitor session core.

Ingests readings from an ESP32 power/environment monitor, keeps a bounded
working set in memory, derives daily/weekly/monthly summaries and budget
projections, and drives the relay automation rules for the device.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-001)

TODO:
- None
"""
