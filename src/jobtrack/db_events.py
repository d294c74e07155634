"""EventsMixin — lifecycle audit trail.

Every status change, overlay change, override, and billing/mockup update is
recorded as a row in ``events`` inside the same transaction as the write it
describes. All methods access ``self.conn`` etc. via Python's MRO when
composed into ``JobTrackDB``.
"""

from __future__ import annotations

from typing import cast

from jobtrack.db_base import DBMixinProtocol
from jobtrack.types.events import EventRecord


class EventsMixin(DBMixinProtocol):
    """Event recording and queries.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes.
    Actual implementations provided by ``JobTrackDB`` at composition time via MRO.
    """

    # -- Events (private) ----------------------------------------------------

    def _record_event(
        self,
        project_id: str,
        event_type: str,
        *,
        actor: str = "",
        old_value: str | None = None,
        new_value: str | None = None,
        comment: str = "",
    ) -> None:
        self.conn.execute(
            "INSERT INTO events (project_id, event_type, actor, old_value, new_value, comment, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (project_id, event_type, actor, old_value, new_value, comment, self.clock()),
        )

    # -- Queries -------------------------------------------------------------

    def get_project_events(self, project_id: str, *, limit: int = 50) -> list[EventRecord]:
        """Get events for a specific project, newest first."""
        self.get_project(project_id)  # raises KeyError if not found
        rows = self.conn.execute(
            "SELECT * FROM events WHERE project_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (project_id, limit),
        ).fetchall()
        return cast(list[EventRecord], [dict(r) for r in rows])

    def get_recent_events(self, limit: int = 20) -> list[EventRecord]:
        rows = self.conn.execute(
            "SELECT * FROM events ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return cast(list[EventRecord], [dict(r) for r in rows])

    def get_events_since(self, since: int, *, limit: int = 100) -> list[EventRecord]:
        """Get events after a given epoch-ms timestamp, ordered chronologically."""
        rows = self.conn.execute(
            "SELECT * FROM events WHERE created_at > ? ORDER BY created_at ASC, id ASC LIMIT ?",
            (since, limit),
        ).fetchall()
        return cast(list[EventRecord], [dict(r) for r in rows])
