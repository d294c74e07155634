"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient

import jobtrack.api as api_module
from jobtrack.api import create_app
from jobtrack.core import JobTrackDB, default_config


@pytest.fixture
def api_db(db: JobTrackDB) -> JobTrackDB:
    """The shared test DB, reconnected so handlers may use it from any thread."""
    db.reconnect(check_same_thread=False)
    return db


@pytest.fixture
async def client(api_db: JobTrackDB) -> AsyncIterator[AsyncClient]:
    """Test client backed by the fake-clock DB and default config."""
    api_module._db = api_db
    api_module._config = default_config()
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    api_module._db = None
    api_module._config = None
