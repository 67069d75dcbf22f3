"""Domain entities returned by EtraxisDB.

Plain mutable dataclasses hydrated from sqlite3.Row objects. Derived flags
(age, critical, frozen, suspended) are computed at access time.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from etraxis.db_base import _ceil_days, _now_ts
from etraxis.types.core import (
    FieldDict,
    GroupDict,
    IssueDict,
    ListItemDict,
    ProjectDict,
    StateDict,
    TemplateDict,
    UserDict,
)


@dataclass
class User:
    id: int
    email: str
    fullname: str
    description: str = ""
    admin: bool = False
    disabled: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> User:
        return cls(
            id=row["id"],
            email=row["email"],
            fullname=row["fullname"],
            description=row["description"],
            admin=bool(row["admin"]),
            disabled=bool(row["disabled"]),
        )

    def to_dict(self) -> UserDict:
        return UserDict(
            id=self.id,
            email=self.email,
            fullname=self.fullname,
            description=self.description,
            admin=self.admin,
            disabled=self.disabled,
        )


@dataclass
class Group:
    id: int
    project_id: int | None
    name: str
    description: str = ""

    @property
    def is_global(self) -> bool:
        return self.project_id is None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Group:
        return cls(id=row["id"], project_id=row["project_id"], name=row["name"], description=row["description"])

    def to_dict(self) -> GroupDict:
        return GroupDict(
            id=self.id,
            project_id=self.project_id,
            name=self.name,
            description=self.description,
            is_global=self.is_global,
        )


@dataclass
class Project:
    id: int
    name: str
    description: str = ""
    suspended: bool = False
    created_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Project:
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            suspended=bool(row["suspended"]),
            created_at=row["created_at"],
        )

    def to_dict(self) -> ProjectDict:
        return ProjectDict(
            id=self.id,
            name=self.name,
            description=self.description,
            suspended=self.suspended,
            created_at=self.created_at,
        )


@dataclass
class Template:
    id: int
    project_id: int
    name: str
    prefix: str
    description: str = ""
    locked: bool = True
    critical_age: int | None = None
    frozen_time: int | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Template:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            name=row["name"],
            prefix=row["prefix"],
            description=row["description"],
            locked=bool(row["locked"]),
            critical_age=row["critical_age"],
            frozen_time=row["frozen_time"],
        )

    def to_dict(self) -> TemplateDict:
        return TemplateDict(
            id=self.id,
            project_id=self.project_id,
            name=self.name,
            prefix=self.prefix,
            description=self.description,
            locked=self.locked,
            critical_age=self.critical_age,
            frozen_time=self.frozen_time,
        )


@dataclass
class State:
    id: int
    template_id: int
    name: str
    type: str = "intermediate"
    responsible: str = "keep"

    @property
    def is_final(self) -> bool:
        return self.type == "final"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> State:
        return cls(
            id=row["id"],
            template_id=row["template_id"],
            name=row["name"],
            type=row["type"],
            responsible=row["responsible"],
        )

    def to_dict(self) -> StateDict:
        return StateDict(
            id=self.id,
            template_id=self.template_id,
            name=self.name,
            type=self.type,
            responsible=self.responsible,
        )


@dataclass
class Field:
    id: int
    state_id: int
    name: str
    type: str
    description: str = ""
    position: int = 1
    required: bool = False
    removed_at: int | None = None
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def is_removed(self) -> bool:
        return self.removed_at is not None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Field:
        return cls(
            id=row["id"],
            state_id=row["state_id"],
            name=row["name"],
            type=row["type"],
            description=row["description"],
            position=row["position"],
            required=bool(row["required"]),
            removed_at=row["removed_at"],
            parameters=json.loads(row["parameters"] or "{}"),
        )

    def to_dict(self) -> FieldDict:
        return FieldDict(
            id=self.id,
            state_id=self.state_id,
            name=self.name,
            type=self.type,
            description=self.description,
            position=self.position,
            required=self.required,
            removed=self.is_removed,
            parameters=dict(self.parameters),
        )


@dataclass
class ListItem:
    id: int
    field_id: int
    value: int
    text: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ListItem:
        return cls(id=row["id"], field_id=row["field_id"], value=row["value"], text=row["text"])

    def to_dict(self) -> ListItemDict:
        return ListItemDict(id=self.id, field_id=self.field_id, value=self.value, text=self.text)


@dataclass
class Issue:
    id: int
    subject: str
    state_id: int
    state_name: str
    state_type: str
    template_id: int
    template_prefix: str
    project_id: int
    author_id: int
    responsible_id: int | None = None
    origin_id: int | None = None
    created_at: int = 0
    changed_at: int = 0
    closed_at: int | None = None
    resumes_at: int | None = None
    # Denormalized from the template/project for the permission checks
    critical_age: int | None = None
    frozen_time: int | None = None
    template_locked: bool = False
    project_suspended: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> Issue:
        """Build from a row of ``_ISSUE_SELECT`` (issues joined with state, template, project)."""
        return cls(
            id=row["id"],
            subject=row["subject"],
            state_id=row["state_id"],
            state_name=row["state_name"],
            state_type=row["state_type"],
            template_id=row["template_id"],
            template_prefix=row["template_prefix"],
            project_id=row["project_id"],
            author_id=row["author_id"],
            responsible_id=row["responsible_id"],
            origin_id=row["origin_id"],
            created_at=row["created_at"],
            changed_at=row["changed_at"],
            closed_at=row["closed_at"],
            resumes_at=row["resumes_at"],
            critical_age=row["critical_age"],
            frozen_time=row["frozen_time"],
            template_locked=bool(row["template_locked"]),
            project_suspended=bool(row["project_suspended"]),
        )

    @property
    def full_id(self) -> str:
        return f"{self.template_prefix}-{self.id:03d}"

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    @property
    def age(self) -> int:
        """Days the issue has been (or was) open, rounded up."""
        end = self.closed_at if self.closed_at is not None else _now_ts()
        return _ceil_days(end - self.created_at)

    @property
    def is_critical(self) -> bool:
        return not self.is_closed and self.critical_age is not None and self.age > self.critical_age

    @property
    def is_frozen(self) -> bool:
        if self.closed_at is None or self.frozen_time is None:
            return False
        return _ceil_days(_now_ts() - self.closed_at) > self.frozen_time

    @property
    def is_suspended(self) -> bool:
        return self.resumes_at is not None and self.resumes_at > _now_ts()

    def to_dict(self) -> IssueDict:
        return IssueDict(
            id=self.id,
            full_id=self.full_id,
            subject=self.subject,
            template_id=self.template_id,
            project_id=self.project_id,
            state_id=self.state_id,
            state=self.state_name,
            author_id=self.author_id,
            responsible_id=self.responsible_id,
            origin_id=self.origin_id,
            created_at=self.created_at,
            changed_at=self.changed_at,
            closed_at=self.closed_at,
            resumes_at=self.resumes_at,
            age=self.age,
            is_closed=self.is_closed,
            is_critical=self.is_critical,
            is_frozen=self.is_frozen,
            is_suspended=self.is_suspended,
        )
