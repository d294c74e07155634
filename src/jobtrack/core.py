"""Core database operations for the job tracker.

Single source of truth for all SQLite operations. The CLI, the HTTP API and
LifecycleService all go through ``JobTrackDB``. No daemon, no sync — just
direct SQLite with WAL mode.

Convention-based discovery: each installation has a `.jobtrack/` directory
containing `jobtrack.db` (SQLite), `config.json` (prefix, monitor settings)
and optionally `pipelines/*.json` overrides.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from jobtrack.bottlenecks import DEFAULT_POLL_INTERVAL_SECONDS, DEFAULT_THRESHOLD_DAYS
from jobtrack.db_alerts import AlertsMixin
from jobtrack.db_base import _now_ms
from jobtrack.db_events import EventsMixin
from jobtrack.db_projects import ProjectsMixin
from jobtrack.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from jobtrack.pipelines import PipelineRegistry
from jobtrack.types.core import ProjectConfig

logger = logging.getLogger(__name__)

JOBTRACK_DIR_NAME = ".jobtrack"
DB_FILENAME = "jobtrack.db"
CONFIG_FILENAME = "config.json"


def find_jobtrack_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .jobtrack/ directory.

    Returns the .jobtrack/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / JOBTRACK_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {JOBTRACK_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def default_config() -> ProjectConfig:
    return ProjectConfig(
        prefix="job",
        version=1,
        bottleneck_threshold_days=DEFAULT_THRESHOLD_DAYS,
        reminder_interval_hours=24,
        poll_interval_seconds=DEFAULT_POLL_INTERVAL_SECONDS,
    )


def read_config(jobtrack_dir: Path) -> ProjectConfig:
    """Read .jobtrack/config.json. Missing keys fall back to defaults; so does a corrupt file."""
    config = default_config()
    config_path = jobtrack_dir / CONFIG_FILENAME
    if not config_path.exists():
        return config
    try:
        raw = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return config
    if not isinstance(raw, dict):
        logger.warning("Ignoring %s: expected a JSON object", config_path)
        return config
    config.update(raw)  # type: ignore[typeddict-item]
    return config


def write_config(jobtrack_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .jobtrack/config.json."""
    config_path = jobtrack_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


class JobTrackDB(ProjectsMixin, EventsMixin, AlertsMixin):
    """Direct SQLite operations. No daemon, no sync. Importable by CLI and API."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        prefix: str = "job",
        registry: PipelineRegistry | None = None,
        clock: Callable[[], int] = _now_ms,
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.prefix = prefix
        self.registry = registry or PipelineRegistry()
        self.clock = clock
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread

    @classmethod
    def from_project(cls, project_path: Path | None = None, *, check_same_thread: bool = True) -> JobTrackDB:
        """Create a JobTrackDB by discovering .jobtrack/ from project_path (or cwd)."""
        jobtrack_dir = find_jobtrack_root(project_path)
        config = read_config(jobtrack_dir)
        registry = PipelineRegistry()
        registry.load(jobtrack_dir)
        db = cls(
            jobtrack_dir / DB_FILENAME,
            prefix=config.get("prefix", "job"),
            registry=registry,
            check_same_thread=check_same_thread,
        )
        db.initialize()
        return db

    def __enter__(self) -> JobTrackDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create tables on a fresh database and stamp the schema version.

        A database stamped with a newer version than this code knows about is
        refused rather than silently downgraded.
        """
        current_version = self.get_schema_version()
        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version > CURRENT_SCHEMA_VERSION:
            msg = (
                f"Database {self.db_path} has schema version {current_version}, "
                f"newer than supported version {CURRENT_SCHEMA_VERSION}. Upgrade jobtrack."
            )
            raise RuntimeError(msg)
        self.conn.commit()

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def reconnect(self, *, check_same_thread: bool = True) -> None:
        """Close and reopen, e.g. before handing the DB to another thread."""
        self.close()
        self._check_same_thread = check_same_thread

    def _generate_unique_id(self, table: str, infix: str = "") -> str:
        """Generate a unique ID using O(1) EXISTS checks against the PK index.

        *table* is always a hardcoded literal at the call site (never user input).
        """
        sep = f"-{infix}-" if infix else "-"
        for _ in range(10):
            candidate = f"{self.prefix}{sep}{uuid.uuid4().hex[:10]}"
            if self.conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone() is None:
                return candidate
        return f"{self.prefix}{sep}{uuid.uuid4().hex[:16]}"
