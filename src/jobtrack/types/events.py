"""TypedDicts for db_events.py and db_alerts.py return types."""

from __future__ import annotations

from typing import TypedDict

from jobtrack.types.core import EpochMs


class EventRecord(TypedDict):
    """Row from the events table (SELECT * FROM events)."""

    id: int
    project_id: str
    event_type: str
    actor: str
    old_value: str | None
    new_value: str | None
    comment: str
    created_at: EpochMs


class DismissalRecord(TypedDict):
    """Row from the alert_dismissals table."""

    signature: str
    dismissed_at: EpochMs
    dismissed_by: str
