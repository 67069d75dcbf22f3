"""EventsMixin: the issue history (events, field changes) and comments."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from etraxis.db_base import AccessDeniedError, DBMixinProtocol, _now_ts
from etraxis.types.events import ChangeRecord, CommentRecord, EventRecord
from etraxis.validation import clean_text

if TYPE_CHECKING:
    from etraxis.models import Field, Issue, User

logger = logging.getLogger(__name__)

MAX_EVENT_PARAMETER = 100
MAX_COMMENT_BODY = 10000


class EventsMixin(DBMixinProtocol):
    """Append-only issue history."""

    if TYPE_CHECKING:
        # From PermissionsMixin
        def can_view(self, issue: Issue, user: User) -> bool: ...

        def can_add_comment(self, issue: Issue, user: User) -> bool: ...

        def can_add_private_comment(self, issue: Issue, user: User) -> bool: ...

        def can_read_private_comment(self, issue: Issue, user: User) -> bool: ...

        def can_read_field(self, field: Field, user: User, issue: Issue | None = None) -> bool: ...

    def _record_event(
        self,
        issue_id: int,
        event_type: str,
        user_id: int,
        parameter: str | int | None = None,
        *,
        created_at: int | None = None,
    ) -> int:
        """Insert an event row without committing. Returns the event id."""
        if parameter is not None:
            parameter = str(parameter)[:MAX_EVENT_PARAMETER]
        cursor = self.conn.execute(
            "INSERT INTO events (issue_id, type, user_id, created_at, parameter) VALUES (?, ?, ?, ?, ?)",
            (issue_id, event_type, user_id, created_at if created_at is not None else _now_ts(), parameter),
        )
        return int(cursor.lastrowid or 0)

    def _visible_issue(self, issue_id: int, user: User) -> Issue:
        issue = self.get_issue(issue_id)
        if not self.can_view(issue, user):
            msg = f"You are not allowed to view issue {issue.full_id}."
            raise AccessDeniedError(msg)
        return issue

    def get_events(self, issue_id: int, *, user: User) -> list[EventRecord]:
        """Return the issue history, oldest first.

        Private comment events are left out for users who cannot read them.
        """
        issue = self._visible_issue(issue_id, user)
        rows = self.conn.execute(
            "SELECT e.*, u.fullname AS user_fullname FROM events e JOIN users u ON u.id = e.user_id"
            " WHERE e.issue_id = ? ORDER BY e.created_at, e.id",
            (issue_id,),
        ).fetchall()
        show_private = self.can_read_private_comment(issue, user)
        return [
            EventRecord(
                id=r["id"],
                issue_id=r["issue_id"],
                type=r["type"],
                user_id=r["user_id"],
                user=r["user_fullname"],
                created_at=r["created_at"],
                parameter=r["parameter"],
            )
            for r in rows
            if show_private or r["type"] != "comment.private"
        ]

    def get_changes(self, issue_id: int, *, user: User) -> list[ChangeRecord]:
        """Field and subject edits of the issue; fields the user cannot read are hidden."""
        issue = self._visible_issue(issue_id, user)
        rows = self.conn.execute(
            "SELECT c.*, e.user_id, e.created_at, f.name AS field_name FROM changes c"
            " JOIN events e ON e.id = c.event_id"
            " LEFT JOIN fields f ON f.id = c.field_id"
            " WHERE e.issue_id = ? ORDER BY e.created_at, c.id",
            (issue_id,),
        ).fetchall()
        readable: dict[int, bool] = {}
        result: list[ChangeRecord] = []
        for r in rows:
            field_id = r["field_id"]
            if field_id is not None:
                if field_id not in readable:
                    readable[field_id] = self.can_read_field(self.get_field(field_id), user, issue)
                if not readable[field_id]:
                    continue
            result.append(
                ChangeRecord(
                    id=r["id"],
                    event_id=r["event_id"],
                    user_id=r["user_id"],
                    created_at=r["created_at"],
                    field_id=field_id,
                    field=r["field_name"] if field_id is not None else "subject",
                    old_value=r["old_value"],
                    new_value=r["new_value"],
                )
            )
        return result

    # -- Comments ------------------------------------------------------------

    def add_comment(self, issue_id: int, body: str, *, private: bool = False, actor: User) -> CommentRecord:
        issue = self.get_issue(issue_id)
        allowed = self.can_add_private_comment(issue, actor) if private else self.can_add_comment(issue, actor)
        if not allowed:
            msg = "You are not allowed to comment on this issue."
            raise AccessDeniedError(msg)
        body = clean_text(body, "body", MAX_COMMENT_BODY, multiline=True)
        now = _now_ts()
        try:
            event_id = self._record_event(
                issue_id, "comment.private" if private else "comment.public", actor.id, created_at=now
            )
            cursor = self.conn.execute(
                "INSERT INTO comments (event_id, body, private) VALUES (?, ?, ?)",
                (event_id, body, int(private)),
            )
            self.conn.execute("UPDATE issues SET changed_at = ? WHERE id = ?", (now, issue_id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("Comment added to %s", issue.full_id, extra={"actor": actor.email, "issue": issue.full_id})
        return CommentRecord(
            id=int(cursor.lastrowid or 0),
            event_id=event_id,
            user_id=actor.id,
            user=actor.fullname,
            created_at=now,
            body=body,
            private=private,
        )

    def get_comments(self, issue_id: int, *, user: User) -> list[CommentRecord]:
        issue = self._visible_issue(issue_id, user)
        sql = (
            "SELECT c.*, e.user_id, e.created_at, u.fullname AS user_fullname FROM comments c"
            " JOIN events e ON e.id = c.event_id JOIN users u ON u.id = e.user_id"
            " WHERE e.issue_id = ?"
        )
        if not self.can_read_private_comment(issue, user):
            sql += " AND c.private = 0"
        sql += " ORDER BY e.created_at, c.id"
        return [
            CommentRecord(
                id=r["id"],
                event_id=r["event_id"],
                user_id=r["user_id"],
                user=r["user_fullname"],
                created_at=r["created_at"],
                body=r["body"],
                private=bool(r["private"]),
            )
            for r in self.conn.execute(sql, (issue_id,)).fetchall()
        ]
