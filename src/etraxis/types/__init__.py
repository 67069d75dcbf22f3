"""Typed return-value contracts for etraxis core and API layers."""

from __future__ import annotations

from etraxis.types.core import (
    FieldDict,
    GroupDict,
    IssueDict,
    ListItemDict,
    PaginatedResult,
    ProjectConfig,
    ProjectDict,
    StateDict,
    TemplateDict,
    UserDict,
)
from etraxis.types.events import (
    ChangeRecord,
    CommentRecord,
    EventRecord,
    FieldValueRecord,
    FileRecordDict,
)

__all__ = [
    "ChangeRecord",
    "CommentRecord",
    "EventRecord",
    "FieldDict",
    "FieldValueRecord",
    "FileRecordDict",
    "GroupDict",
    "IssueDict",
    "ListItemDict",
    "PaginatedResult",
    "ProjectConfig",
    "ProjectDict",
    "StateDict",
    "TemplateDict",
    "UserDict",
]

# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
