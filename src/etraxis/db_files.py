"""FilesMixin: attachments stored on disk under the configured files directory."""

from __future__ import annotations

import logging
import mimetypes
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

from etraxis.db_base import AccessDeniedError, DBMixinProtocol, _now_ts
from etraxis.types.events import FileRecordDict
from etraxis.validation import clean_text

if TYPE_CHECKING:
    from etraxis.models import Issue, User

logger = logging.getLogger(__name__)

MAX_FILE_NAME = 100
DEFAULT_MIME = "application/octet-stream"


def _file_record(row: Any) -> FileRecordDict:
    return FileRecordDict(
        id=row["id"],
        event_id=row["event_id"],
        uid=row["uid"],
        name=row["name"],
        size=row["size"],
        mime=row["mime"],
        created_at=row["created_at"],
        removed=row["removed_at"] is not None,
    )


class FilesMixin(DBMixinProtocol):
    """Issue attachments."""

    if TYPE_CHECKING:
        # From PermissionsMixin
        def can_view(self, issue: Issue, user: User) -> bool: ...

        def can_attach_file(self, issue: Issue, user: User) -> bool: ...

        def can_delete_file(self, issue: Issue, user: User) -> bool: ...

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

    def attach_file(
        self,
        issue_id: int,
        name: str,
        data: bytes,
        *,
        mime: str | None = None,
        actor: User,
    ) -> FileRecordDict:
        """Store *data* as a new attachment of the issue."""
        issue = self.get_issue(issue_id)
        if not self.can_attach_file(issue, actor):
            msg = f"You are not allowed to attach files to issue {issue.full_id}."
            raise AccessDeniedError(msg)
        name = clean_text(Path(name or "").name, "name", MAX_FILE_NAME)
        limit = self.files_maxsize * 1024 * 1024
        if len(data) > limit:
            msg = f"The file is too large ({len(data)} bytes). Allowed maximum size is {self.files_maxsize} MB."
            raise ValueError(msg)
        mime = mime or mimetypes.guess_type(name)[0] or DEFAULT_MIME
        uid = str(uuid.uuid4())
        path = self.files_dir / uid
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

        now = _now_ts()
        try:
            event_id = self._record_event(issue_id, "file.attached", actor.id, name, created_at=now)
            cursor = self.conn.execute(
                "INSERT INTO files (event_id, uid, name, size, mime) VALUES (?, ?, ?, ?, ?)",
                (event_id, uid, name, len(data), mime),
            )
            self.conn.execute("UPDATE issues SET changed_at = ? WHERE id = ?", (now, issue_id))
        except Exception:
            self.conn.rollback()
            path.unlink(missing_ok=True)
            raise
        self.conn.commit()
        logger.info(
            "File attached to %s: %s (%d bytes)", issue.full_id, name, len(data),
            extra={"actor": actor.email, "issue": issue.full_id},
        )
        return self.get_file(int(cursor.lastrowid or 0))

    def get_file(self, file_id: int) -> FileRecordDict:
        row = self.conn.execute(
            "SELECT f.*, e.created_at, e.issue_id FROM files f JOIN events e ON e.id = f.event_id WHERE f.id = ?",
            (file_id,),
        ).fetchone()
        if row is None:
            raise KeyError(file_id)
        return _file_record(row)

    def _file_issue_id(self, file_id: int) -> int:
        row = self.conn.execute(
            "SELECT e.issue_id FROM files f JOIN events e ON e.id = f.event_id WHERE f.id = ?", (file_id,)
        ).fetchone()
        if row is None:
            raise KeyError(file_id)
        return int(row["issue_id"])

    def get_files(self, issue_id: int, *, user: User, include_removed: bool = False) -> list[FileRecordDict]:
        issue = self.get_issue(issue_id)
        if not self.can_view(issue, user):
            msg = f"You are not allowed to view issue {issue.full_id}."
            raise AccessDeniedError(msg)
        sql = "SELECT f.*, e.created_at FROM files f JOIN events e ON e.id = f.event_id WHERE e.issue_id = ?"
        if not include_removed:
            sql += " AND f.removed_at IS NULL"
        sql += " ORDER BY e.created_at, f.id"
        return [_file_record(r) for r in self.conn.execute(sql, (issue_id,)).fetchall()]

    def get_file_path(self, file_id: int, *, user: User) -> tuple[FileRecordDict, Path]:
        """Return the record and on-disk path of a live attachment the user can see."""
        record = self.get_file(file_id)
        if record["removed"]:
            raise KeyError(file_id)
        issue = self.get_issue(self._file_issue_id(file_id))
        if not self.can_view(issue, user):
            msg = f"You are not allowed to view issue {issue.full_id}."
            raise AccessDeniedError(msg)
        path = self.files_dir / record["uid"]
        if not path.is_file():
            raise KeyError(file_id)
        return record, path

    def delete_file(self, file_id: int, *, actor: User) -> None:
        """Mark the attachment removed and drop its bytes; the history keeps the record."""
        record = self.get_file(file_id)
        if record["removed"]:
            raise KeyError(file_id)
        issue = self.get_issue(self._file_issue_id(file_id))
        if not self.can_delete_file(issue, actor):
            msg = f"You are not allowed to delete files of issue {issue.full_id}."
            raise AccessDeniedError(msg)
        now = _now_ts()
        try:
            self._record_event(issue.id, "file.deleted", actor.id, record["name"], created_at=now)
            self.conn.execute("UPDATE files SET removed_at = ? WHERE id = ?", (now, file_id))
            self.conn.execute("UPDATE issues SET changed_at = ? WHERE id = ?", (now, issue.id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        (self.files_dir / record["uid"]).unlink(missing_ok=True)
        logger.info(
            "File deleted from %s: %s", issue.full_id, record["name"],
            extra={"actor": actor.email, "issue": issue.full_id},
        )
