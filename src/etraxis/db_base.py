"""Shared utilities, exceptions, and Protocol for DB mixins."""

from __future__ import annotations

import math
import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from etraxis.models import Field, Group, Issue, Project, State, Template, User

SECONDS_PER_DAY = 86400


def _now_ts() -> int:
    return int(datetime.now(UTC).timestamp())


def _like_pattern(text: str) -> str:
    """Substring pattern for ``LIKE ? ESCAPE '\\'`` that treats % and _ literally."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _ceil_days(seconds: int) -> int:
    return math.ceil(seconds / SECONDS_PER_DAY)


class ConflictError(ValueError):
    """The operation collides with existing data (duplicate name, entity in use, wrong state)."""


class AccessDeniedError(PermissionError):
    """The acting user is not allowed to perform the operation."""


class FieldValidationError(ValueError):
    """One or more field values failed validation.

    ``errors`` maps the field id (as a string) to a human-readable message.
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = dict(errors)
        summary = "; ".join(f"{key}: {message}" for key, message in sorted(self.errors.items()))
        super().__init__(f"Invalid field values: {summary}")


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.get_issue(), etc. Actual implementations are provided by
    EtraxisDB at composition time.
    """

    db_path: Path
    files_dir: Path
    files_maxsize: int
    _conn: sqlite3.Connection | None

    @property
    def conn(self) -> sqlite3.Connection: ...

    def get_user(self, user_id: int) -> User: ...

    def get_group(self, group_id: int) -> Group: ...

    def get_project(self, project_id: int) -> Project: ...

    def get_template(self, template_id: int) -> Template: ...

    def get_state(self, state_id: int) -> State: ...

    def get_field(self, field_id: int) -> Field: ...

    def get_issue(self, issue_id: int) -> Issue: ...


def require_admin(actor: User | None, action: str) -> None:
    """Raise AccessDeniedError unless *actor* is an enabled administrator."""
    if actor is None or not actor.admin or actor.disabled:
        msg = f"You are not allowed to {action}."
        raise AccessDeniedError(msg)
