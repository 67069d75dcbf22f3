"""Core database access for the issue tracker.

Single source of truth for all SQLite operations. Both the CLI and the HTTP
API import from this module; they differ only in how they identify the
acting user.

Convention-based discovery: each installation has an `.etraxis/` directory
containing `etraxis.db` (SQLite), `config.json` and the attachment store.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any

from etraxis.db_accounts import AccountsMixin
from etraxis.db_events import EventsMixin
from etraxis.db_fields import FieldsMixin
from etraxis.db_files import FilesMixin
from etraxis.db_issues import IssuesMixin
from etraxis.db_links import LinksMixin
from etraxis.db_permissions import PermissionsMixin
from etraxis.db_projects import ProjectsMixin
from etraxis.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from etraxis.db_workflow import WorkflowMixin
from etraxis.types.core import ProjectConfig

logger = logging.getLogger(__name__)

ETRAXIS_DIR_NAME = ".etraxis"
DB_FILENAME = "etraxis.db"
CONFIG_FILENAME = "config.json"
DEFAULT_FILES_DIR = "files"
DEFAULT_FILES_MAXSIZE = 10  # MB
FILES_MAXSIZE_ENV = "ETRAXIS_FILES_MAXSIZE"


def find_etraxis_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .etraxis/ directory.

    Returns the .etraxis/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / ETRAXIS_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {ETRAXIS_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def default_config() -> ProjectConfig:
    return ProjectConfig(version=CURRENT_SCHEMA_VERSION, files_maxsize=DEFAULT_FILES_MAXSIZE, files_dir=DEFAULT_FILES_DIR)


def read_config(etraxis_dir: Path) -> ProjectConfig:
    """Read .etraxis/config.json. Returns defaults if missing or corrupt.

    ``ETRAXIS_FILES_MAXSIZE`` in the environment overrides ``files_maxsize``.
    """
    config = default_config()
    config_path = etraxis_dir / CONFIG_FILENAME
    if config_path.exists():
        try:
            loaded = json.loads(config_path.read_text())
        except (json.JSONDecodeError, OSError) as exc:
            logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        else:
            if isinstance(loaded, dict):
                config.update(loaded)  # type: ignore[typeddict-item]
            else:
                logger.warning("Ignoring %s: expected a JSON object", config_path)

    override = os.environ.get(FILES_MAXSIZE_ENV)
    if override:
        try:
            config["files_maxsize"] = int(override)
        except ValueError:
            logger.warning("Ignoring %s=%r: not an integer", FILES_MAXSIZE_ENV, override)
    return config


def write_config(etraxis_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .etraxis/config.json."""
    config_path = etraxis_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# EtraxisDB
# ---------------------------------------------------------------------------


class EtraxisDB(
    AccountsMixin,
    ProjectsMixin,
    WorkflowMixin,
    FieldsMixin,
    PermissionsMixin,
    IssuesMixin,
    EventsMixin,
    FilesMixin,
    LinksMixin,
):
    """Direct SQLite operations. Importable by the CLI and the API."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        files_dir: str | Path | None = None,
        files_maxsize: int = DEFAULT_FILES_MAXSIZE,
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.files_dir = Path(files_dir) if files_dir is not None else self.db_path.parent / DEFAULT_FILES_DIR
        self.files_maxsize = files_maxsize
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread

    @classmethod
    def from_project(cls, project_path: Path | None = None, *, check_same_thread: bool = True) -> EtraxisDB:
        """Create an EtraxisDB by discovering .etraxis/ from project_path (or cwd)."""
        etraxis_dir = find_etraxis_root(project_path)
        config = read_config(etraxis_dir)
        db = cls(
            etraxis_dir / DB_FILENAME,
            files_dir=etraxis_dir / config.get("files_dir", DEFAULT_FILES_DIR),
            files_maxsize=int(config.get("files_maxsize", DEFAULT_FILES_MAXSIZE)),
            check_same_thread=check_same_thread,
        )
        db.initialize()
        return db

    def __enter__(self) -> EtraxisDB:
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
        """Create tables on a fresh database and stamp the schema version."""
        current_version = self.get_schema_version()
        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version > CURRENT_SCHEMA_VERSION:
            msg = (
                f"Database schema version {current_version} is newer than this etraxis "
                f"(supports {CURRENT_SCHEMA_VERSION}); upgrade etraxis"
            )
            raise ValueError(msg)
        self.conn.commit()
        self.files_dir.mkdir(parents=True, exist_ok=True)

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
