"""TypedDicts for issue history records."""

from __future__ import annotations

from typing import Any, TypedDict


class EventRecord(TypedDict):
    id: int
    issue_id: int
    type: str
    user_id: int
    user: str
    created_at: int
    parameter: str | None


class ChangeRecord(TypedDict):
    id: int
    event_id: int
    user_id: int
    created_at: int
    field_id: int | None
    field: str
    old_value: Any
    new_value: Any


class CommentRecord(TypedDict):
    id: int
    event_id: int
    user_id: int
    user: str
    created_at: int
    body: str
    private: bool


class FileRecordDict(TypedDict):
    id: int
    event_id: int
    uid: str
    name: str
    size: int
    mime: str
    created_at: int
    removed: bool


class FieldValueRecord(TypedDict):
    field_id: int
    field: str
    type: str
    state_id: int
    transition_id: int
    value: Any
    rendered: Any
