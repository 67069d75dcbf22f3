"""Shared pytest fixtures for etraxis tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from etraxis.core import EtraxisDB
from etraxis.models import User
from tests._db_factory import Workflow, build_workflow, make_admin, make_db


@pytest.fixture
def db(tmp_path: Path) -> Generator[EtraxisDB, None, None]:
    """Fresh EtraxisDB for each test."""
    d = make_db(tmp_path)
    yield d
    d.close()


@pytest.fixture
def admin(db: EtraxisDB) -> User:
    """The first (administrator) account of an empty directory."""
    return make_admin(db)


@pytest.fixture
def workflow(db: EtraxisDB) -> Workflow:
    """EtraxisDB with a complete, unlocked "Bug report" workflow.

    See :class:`tests._db_factory.Workflow` for what it contains.
    """
    return build_workflow(db)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
