"""LinksMixin: dependencies between issues and related-issue links."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from etraxis.db_base import AccessDeniedError, ConflictError, DBMixinProtocol, _now_ts
from etraxis.db_issues import _ISSUE_SELECT
from etraxis.models import Issue

if TYPE_CHECKING:
    from etraxis.models import User

logger = logging.getLogger(__name__)


class LinksMixin(DBMixinProtocol):
    """Directed issue-to-issue links.

    A dependency blocks closing: an issue cannot move to a final state while
    any issue it depends on is still open.
    """

    if TYPE_CHECKING:
        # From PermissionsMixin
        def can_view(self, issue: Issue, user: User) -> bool: ...

        def can_manage_dependencies(self, issue: Issue, user: User) -> bool: ...

        def can_manage_related_issues(self, issue: Issue, user: User) -> bool: ...

        # From EventsMixin
        def _record_event(
            self,
            issue_id: int,
            event_type: str,
            user_id: int,
            parameter: str | int | None = None,
            *,
            created_at: int | None = None,
        ) -> int: ...

        # From IssuesMixin
        def _viewable_issue(self, issue_id: int, user: User) -> Issue: ...

    def _linked_issues(self, table: str, column: str, issue_id: int, user: User) -> list[Issue]:
        rows = self.conn.execute(
            f"{_ISSUE_SELECT} JOIN {table} l ON l.{column} = i.id WHERE l.issue_id = ? ORDER BY i.id",
            (issue_id,),
        ).fetchall()
        return [issue for issue in map(Issue.from_row, rows) if self.can_view(issue, user)]

    def _add_link(
        self,
        *,
        table: str,
        column: str,
        issue: Issue,
        target: Issue,
        event_type: str,
        actor: User,
    ) -> None:
        now = _now_ts()
        try:
            event_id = self._record_event(issue.id, event_type, actor.id, target.full_id, created_at=now)
            self.conn.execute(
                f"INSERT INTO {table} (issue_id, {column}, event_id) VALUES (?, ?, ?)",
                (issue.id, target.id, event_id),
            )
            self.conn.execute("UPDATE issues SET changed_at = ? WHERE id = ?", (now, issue.id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    def _remove_link(
        self,
        *,
        table: str,
        column: str,
        issue: Issue,
        target: Issue,
        event_type: str,
        actor: User,
    ) -> None:
        row = self.conn.execute(
            f"SELECT 1 FROM {table} WHERE issue_id = ? AND {column} = ?", (issue.id, target.id)
        ).fetchone()
        if row is None:
            raise KeyError(target.id)
        now = _now_ts()
        try:
            self._record_event(issue.id, event_type, actor.id, target.full_id, created_at=now)
            self.conn.execute(f"DELETE FROM {table} WHERE issue_id = ? AND {column} = ?", (issue.id, target.id))
            self.conn.execute("UPDATE issues SET changed_at = ? WHERE id = ?", (now, issue.id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    # -- Dependencies --------------------------------------------------------

    def add_dependency(self, issue_id: int, dependency_id: int, *, actor: User) -> None:
        """Make *issue_id* depend on *dependency_id*."""
        issue = self.get_issue(issue_id)
        if not self.can_manage_dependencies(issue, actor):
            msg = f"You are not allowed to manage dependencies of issue {issue.full_id}."
            raise AccessDeniedError(msg)
        target = self._viewable_issue(dependency_id, actor)
        if target.id == issue.id:
            msg = "An issue cannot depend on itself."
            raise ValueError(msg)
        existing = self.conn.execute(
            "SELECT issue_id FROM dependencies WHERE (issue_id = ? AND dependency_id = ?)"
            " OR (issue_id = ? AND dependency_id = ?)",
            (issue.id, target.id, target.id, issue.id),
        ).fetchone()
        if existing is not None:
            if existing["issue_id"] == issue.id:
                msg = f"Issue {issue.full_id} already depends on {target.full_id}."
            else:
                msg = f"Issue {target.full_id} already depends on {issue.full_id}."
            raise ConflictError(msg)
        self._add_link(
            table="dependencies",
            column="dependency_id",
            issue=issue,
            target=target,
            event_type="dependency.added",
            actor=actor,
        )
        logger.info(
            "Dependency added: %s -> %s", issue.full_id, target.full_id,
            extra={"actor": actor.email, "issue": issue.full_id},
        )

    def remove_dependency(self, issue_id: int, dependency_id: int, *, actor: User) -> None:
        issue = self.get_issue(issue_id)
        if not self.can_manage_dependencies(issue, actor):
            msg = f"You are not allowed to manage dependencies of issue {issue.full_id}."
            raise AccessDeniedError(msg)
        self._remove_link(
            table="dependencies",
            column="dependency_id",
            issue=issue,
            target=self.get_issue(dependency_id),
            event_type="dependency.removed",
            actor=actor,
        )

    def get_dependencies(self, issue_id: int, *, user: User) -> list[Issue]:
        """Issues *issue_id* depends on that *user* can view."""
        self._viewable_issue(issue_id, user)
        return self._linked_issues("dependencies", "dependency_id", issue_id, user)

    # -- Related issues ------------------------------------------------------

    def add_related_issue(self, issue_id: int, related_id: int, *, actor: User) -> None:
        issue = self.get_issue(issue_id)
        if not self.can_manage_related_issues(issue, actor):
            msg = f"You are not allowed to manage related issues of issue {issue.full_id}."
            raise AccessDeniedError(msg)
        target = self._viewable_issue(related_id, actor)
        if target.id == issue.id:
            msg = "An issue cannot be related to itself."
            raise ValueError(msg)
        existing = self.conn.execute(
            "SELECT 1 FROM related_issues WHERE issue_id = ? AND related_id = ?", (issue.id, target.id)
        ).fetchone()
        if existing is not None:
            msg = f"Issue {target.full_id} is already related to {issue.full_id}."
            raise ConflictError(msg)
        self._add_link(
            table="related_issues",
            column="related_id",
            issue=issue,
            target=target,
            event_type="relatedissue.added",
            actor=actor,
        )

    def remove_related_issue(self, issue_id: int, related_id: int, *, actor: User) -> None:
        issue = self.get_issue(issue_id)
        if not self.can_manage_related_issues(issue, actor):
            msg = f"You are not allowed to manage related issues of issue {issue.full_id}."
            raise AccessDeniedError(msg)
        self._remove_link(
            table="related_issues",
            column="related_id",
            issue=issue,
            target=self.get_issue(related_id),
            event_type="relatedissue.removed",
            actor=actor,
        )

    def get_related_issues(self, issue_id: int, *, user: User) -> list[Issue]:
        self._viewable_issue(issue_id, user)
        return self._linked_issues("related_issues", "related_id", issue_id, user)
