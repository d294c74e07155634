"""Shared pytest fixtures for jobtrack tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from jobtrack.core import JobTrackDB
from jobtrack.lifecycle import LifecycleService
from jobtrack.models import Project
from tests._db_factory import FakeClock, make_db

LEAD = "lead-1"
ADMIN = "admin-1"
STAFF = "staff-1"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db(tmp_path: Path, clock: FakeClock) -> Generator[JobTrackDB, None, None]:
    """Fresh JobTrackDB for each test, driven by the fake clock."""
    d = make_db(tmp_path, clock=clock)
    yield d
    d.close()


@pytest.fixture
def service(db: JobTrackDB, clock: FakeClock) -> LifecycleService:
    return LifecycleService(db, clock=clock)


@pytest.fixture
def project(db: JobTrackDB) -> Project:
    """A Standard project led by ``LEAD``, sitting at Pending Proof Reading."""
    return db.create_project("Annual report", lead_id=LEAD, status="Pending Proof Reading", actor=ADMIN)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
