"""Foundational Literal aliases and TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import Any, Literal, TypedDict

StateType = Literal["initial", "intermediate", "final"]
StateResponsible = Literal["assign", "keep", "remove"]
SystemRole = Literal["anyone", "author", "responsible"]
FieldAccess = Literal["R", "RW"]
FieldType = Literal["checkbox", "date", "decimal", "duration", "issue", "list", "number", "string", "text"]

TemplatePermission = Literal[
    "issue.view",
    "issue.create",
    "issue.edit",
    "issue.reassign",
    "issue.suspend",
    "issue.resume",
    "issue.delete",
    "comment.add",
    "comment.private",
    "file.attach",
    "file.delete",
    "dependency.manage",
    "relatedissue.manage",
]

EventType = Literal[
    "issue.created",
    "issue.edited",
    "state.changed",
    "issue.reopened",
    "issue.closed",
    "issue.assigned",
    "issue.reassigned",
    "issue.suspended",
    "issue.resumed",
    "comment.public",
    "comment.private",
    "file.attached",
    "file.deleted",
    "dependency.added",
    "dependency.removed",
    "relatedissue.added",
    "relatedissue.removed",
]

STATE_TYPES: frozenset[str] = frozenset({"initial", "intermediate", "final"})
STATE_RESPONSIBLES: frozenset[str] = frozenset({"assign", "keep", "remove"})
SYSTEM_ROLES: frozenset[str] = frozenset({"anyone", "author", "responsible"})
FIELD_ACCESS: frozenset[str] = frozenset({"R", "RW"})
FIELD_TYPES: frozenset[str] = frozenset(
    {"checkbox", "date", "decimal", "duration", "issue", "list", "number", "string", "text"}
)
TEMPLATE_PERMISSIONS: tuple[str, ...] = (
    "issue.view",
    "issue.create",
    "issue.edit",
    "issue.reassign",
    "issue.suspend",
    "issue.resume",
    "issue.delete",
    "comment.add",
    "comment.private",
    "file.attach",
    "file.delete",
    "dependency.manage",
    "relatedissue.manage",
)


class ProjectConfig(TypedDict, total=False):
    """Shape of .etraxis/config.json."""

    version: int
    files_maxsize: int
    files_dir: str


class PaginatedResult(TypedDict):
    """Envelope returned by paginated query methods."""

    results: list[dict[str, Any]]
    total: int
    limit: int
    offset: int
    has_more: bool


class UserDict(TypedDict):
    id: int
    email: str
    fullname: str
    description: str
    admin: bool
    disabled: bool


class GroupDict(TypedDict):
    id: int
    project_id: int | None
    name: str
    description: str
    is_global: bool


class ProjectDict(TypedDict):
    id: int
    name: str
    description: str
    suspended: bool
    created_at: int


class TemplateDict(TypedDict):
    id: int
    project_id: int
    name: str
    prefix: str
    description: str
    locked: bool
    critical_age: int | None
    frozen_time: int | None


class StateDict(TypedDict):
    id: int
    template_id: int
    name: str
    type: str
    responsible: str


class FieldDict(TypedDict):
    id: int
    state_id: int
    name: str
    type: str
    description: str
    position: int
    required: bool
    removed: bool
    parameters: dict[str, Any]


class ListItemDict(TypedDict):
    id: int
    field_id: int
    value: int
    text: str


class IssueDict(TypedDict):
    id: int
    full_id: str
    subject: str
    template_id: int
    project_id: int
    state_id: int
    state: str
    author_id: int
    responsible_id: int | None
    origin_id: int | None
    created_at: int
    changed_at: int
    closed_at: int | None
    resumes_at: int | None
    age: int
    is_closed: bool
    is_critical: bool
    is_frozen: bool
    is_suspended: bool
