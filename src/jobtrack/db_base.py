"""Shared utilities, types, and Protocol for DB mixins."""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from jobtrack.models import Project
    from jobtrack.pipelines import PipelineRegistry


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.get_project(), etc. without ``type: ignore`` on every call.
    Actual implementations are provided by JobTrackDB at composition time.
    """

    db_path: Path
    prefix: str
    clock: Callable[[], int]
    _conn: sqlite3.Connection | None
    registry: PipelineRegistry

    @property
    def conn(self) -> sqlite3.Connection: ...

    def _generate_unique_id(self, table: str, infix: str = "") -> str: ...

    def get_project(self, project_id: str) -> Project: ...

    def _record_event(
        self,
        project_id: str,
        event_type: str,
        *,
        actor: str = "",
        old_value: str | None = None,
        new_value: str | None = None,
        comment: str = "",
    ) -> None: ...
