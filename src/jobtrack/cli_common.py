"""Shared CLI helpers for ``cli.py`` and the ``cli_commands/*.py`` modules.

Provides ``get_db()``, ``get_service()`` and the result/error printers so the
command modules can use them without circular imports.
"""

from __future__ import annotations

import json as json_mod
import sys
from typing import Any, NoReturn

import click

from jobtrack.core import (
    JOBTRACK_DIR_NAME,
    JobTrackDB,
    find_jobtrack_root,
    read_config,
)
from jobtrack.lifecycle import LifecycleService
from jobtrack.logging import setup_logging
from jobtrack.outcomes import LifecycleResult


def get_db() -> JobTrackDB:
    """Discover .jobtrack/ and return an initialized JobTrackDB."""
    try:
        jobtrack_dir = find_jobtrack_root()
    except FileNotFoundError:
        click.echo(f"No {JOBTRACK_DIR_NAME}/ found. Run 'jobtrack init' first.", err=True)
        sys.exit(1)
    setup_logging(jobtrack_dir)
    return JobTrackDB.from_project(jobtrack_dir.parent)


def get_service(db: JobTrackDB) -> LifecycleService:
    return LifecycleService.from_config(db, read_config(db.db_path.parent), clock=db.clock)


def fail(message: str, as_json: bool, **extra: Any) -> NoReturn:
    """Report an error the way every command does and exit 1."""
    if as_json:
        click.echo(json_mod.dumps({"error": message, **extra}))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def echo_json(data: Any) -> None:
    click.echo(json_mod.dumps(data, indent=2, default=str))


def report_result(result: LifecycleResult, as_json: bool, success_text: str | None = None) -> None:
    """Print a lifecycle result; blocked results exit 1."""
    if as_json:
        echo_json(result.to_dict())
        if not result.ok:
            sys.exit(1)
        return
    if result.ok:
        project = result.project
        assert project is not None
        click.echo(success_text or f"{project.id}: {result.message or 'ok'} [{project.status}]")
        if result.overridden:
            click.echo(f"  Overridden: {', '.join(c.value for c in result.overridden)}")
        return
    click.echo(f"Blocked ({result.code}): {result.message}", err=True)
    if result.missing:
        click.echo(f"  Missing: {', '.join(result.missing)}", err=True)
    if result.overridable:
        click.echo("  An admin can retry with --override.", err=True)
    sys.exit(1)
