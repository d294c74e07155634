"""Foundational types shared by the store, CLI, and API."""

from __future__ import annotations

from typing import NewType, TypedDict

EpochMs = NewType("EpochMs", int)


class ProjectConfig(TypedDict, total=False):
    """Shape of .jobtrack/config.json."""

    prefix: str
    version: int
    bottleneck_threshold_days: int
    reminder_interval_hours: float
    poll_interval_seconds: float
