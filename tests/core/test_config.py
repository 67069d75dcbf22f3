# tests/core/test_config.py
"""Tests for etraxis.core: installation discovery, config, schema setup."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from etraxis.core import (
    CONFIG_FILENAME,
    DB_FILENAME,
    ETRAXIS_DIR_NAME,
    EtraxisDB,
    default_config,
    find_etraxis_root,
    read_config,
    write_config,
)
from etraxis.db_schema import CURRENT_SCHEMA_VERSION


class TestFindRoot:
    def test_finds_in_cwd(self, tmp_path: Path) -> None:
        (tmp_path / ETRAXIS_DIR_NAME).mkdir()
        assert find_etraxis_root(tmp_path) == (tmp_path / ETRAXIS_DIR_NAME).resolve()

    def test_walks_up_from_subdirectory(self, tmp_path: Path) -> None:
        (tmp_path / ETRAXIS_DIR_NAME).mkdir()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_etraxis_root(nested) == (tmp_path / ETRAXIS_DIR_NAME).resolve()

    def test_missing_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match=r"No \.etraxis/ directory found"):
            find_etraxis_root(tmp_path)


class TestReadConfig:
    def test_no_file_gets_defaults(self, tmp_path: Path) -> None:
        assert read_config(tmp_path) == default_config()

    def test_round_trip_keeps_custom_keys(self, tmp_path: Path) -> None:
        write_config(tmp_path, {**default_config(), "files_maxsize": 2})
        assert read_config(tmp_path)["files_maxsize"] == 2

    def test_corrupt_file_falls_back(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text("{not json")
        assert read_config(tmp_path) == default_config()

    def test_non_object_is_ignored(self, tmp_path: Path) -> None:
        (tmp_path / CONFIG_FILENAME).write_text(json.dumps([1, 2]))
        assert read_config(tmp_path) == default_config()

    def test_env_overrides_files_maxsize(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        write_config(tmp_path, {**default_config(), "files_maxsize": 2})
        monkeypatch.setenv("ETRAXIS_FILES_MAXSIZE", "25")
        assert read_config(tmp_path)["files_maxsize"] == 25

    def test_env_garbage_is_ignored(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ETRAXIS_FILES_MAXSIZE", "lots")
        assert read_config(tmp_path)["files_maxsize"] == default_config()["files_maxsize"]


class TestSchema:
    def test_initialize_stamps_version(self, db: EtraxisDB) -> None:
        assert db.get_schema_version() == CURRENT_SCHEMA_VERSION

    def test_initialize_is_idempotent(self, db: EtraxisDB) -> None:
        db.initialize()
        assert db.get_schema_version() == CURRENT_SCHEMA_VERSION

    def test_initialize_creates_files_dir(self, db: EtraxisDB) -> None:
        assert db.files_dir.is_dir()

    def test_newer_schema_is_refused(self, tmp_path: Path) -> None:
        conn = sqlite3.connect(str(tmp_path / "future.db"))
        conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION + 1}")
        conn.close()
        future = EtraxisDB(tmp_path / "future.db")
        with pytest.raises(ValueError, match="newer than this etraxis"):
            future.initialize()
        future.close()

    def test_foreign_keys_enforced(self, db: EtraxisDB) -> None:
        assert db.conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1


class TestFromProject:
    def test_uses_config(self, tmp_path: Path) -> None:
        etraxis_dir = tmp_path / ETRAXIS_DIR_NAME
        etraxis_dir.mkdir()
        write_config(etraxis_dir, {**default_config(), "files_maxsize": 3, "files_dir": "attachments"})
        with EtraxisDB.from_project(tmp_path) as db:
            assert db.db_path == etraxis_dir.resolve() / DB_FILENAME
            assert db.files_maxsize == 3
            assert db.files_dir == etraxis_dir.resolve() / "attachments"
            assert db.files_dir.is_dir()
