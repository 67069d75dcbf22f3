"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

import etraxis.api as api_module
from etraxis.api import ACTOR_HEADER, create_app
from etraxis.models import User
from tests._db_factory import Workflow, build_workflow, make_db


def as_user(user: User) -> dict[str, str]:
    """Request headers identifying *user* as the actor."""
    return {ACTOR_HEADER: user.email}


@pytest.fixture
def api_workflow(tmp_path: Path) -> Iterator[Workflow]:
    """A populated workflow on a connection usable from the app's threads."""
    db = make_db(tmp_path, check_same_thread=False)
    yield build_workflow(db)
    db.close()


@pytest.fixture
async def client(api_workflow: Workflow) -> AsyncIterator[AsyncClient]:
    """Test client acting as the administrator unless a request overrides the header."""
    api_module._db = api_workflow.db
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers=as_user(api_workflow.admin)) as c:
        yield c
    api_module._db = None
