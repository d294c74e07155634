"""AlertsMixin — persisted dismissal map for bottleneck alerts.

Maps an alert signature to the time it was last dismissed. Writes are
last-write-wins: the map is advisory and concurrent dismissals of the same
signature only move the reminder time.
"""

from __future__ import annotations

from typing import cast

from jobtrack.db_base import DBMixinProtocol
from jobtrack.types.events import DismissalRecord


class AlertsMixin(DBMixinProtocol):
    """Dismissal store methods for ``BottleneckMonitor``."""

    def get_dismissed_at(self, signature: str) -> int | None:
        row = self.conn.execute(
            "SELECT dismissed_at FROM alert_dismissals WHERE signature = ?",
            (signature,),
        ).fetchone()
        return None if row is None else int(row["dismissed_at"])

    def set_dismissed_at(self, signature: str, dismissed_at: int, *, actor: str = "") -> None:
        try:
            self.conn.execute(
                "INSERT INTO alert_dismissals (signature, dismissed_at, dismissed_by) VALUES (?, ?, ?) "
                "ON CONFLICT(signature) DO UPDATE SET dismissed_at = excluded.dismissed_at, "
                "dismissed_by = excluded.dismissed_by",
                (signature, dismissed_at, actor),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def list_dismissals(self, *, limit: int = 100) -> list[DismissalRecord]:
        rows = self.conn.execute(
            "SELECT * FROM alert_dismissals ORDER BY dismissed_at DESC LIMIT ?",
            (limit,),
        ).fetchall()
        return cast(list[DismissalRecord], [dict(r) for r in rows])

    def prune_dismissals(self, older_than: int) -> int:
        """Delete dismissals recorded before *older_than* (epoch ms). Returns rows removed.

        Signatures only ever grow in number, so old entries are dead weight once
        their reminder interval has long passed.
        """
        try:
            cursor = self.conn.execute("DELETE FROM alert_dismissals WHERE dismissed_at < ?", (older_than,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return cursor.rowcount
