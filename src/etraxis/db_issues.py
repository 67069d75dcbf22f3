"""IssuesMixin: issue lifecycle, the state machine, field values, watchers and read marks."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, time
from typing import TYPE_CHECKING, Any

from etraxis.db_base import AccessDeniedError, ConflictError, DBMixinProtocol, _like_pattern, _now_ts
from etraxis.db_permissions import issue_roles
from etraxis.field_strategies import ValueContext, get_strategy, normalize_value_keys, validate_field_values
from etraxis.models import Field, Issue, State, User
from etraxis.types.core import PaginatedResult
from etraxis.types.events import FieldValueRecord
from etraxis.validation import clean_text, parse_iso_date

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from etraxis.models import ListItem

logger = logging.getLogger(__name__)

MAX_SUBJECT = 250

_ISSUE_SELECT = (
    "SELECT i.*, s.name AS state_name, s.type AS state_type, s.template_id AS template_id,"
    " t.prefix AS template_prefix, t.project_id AS project_id,"
    " t.critical_age AS critical_age, t.frozen_time AS frozen_time,"
    " t.locked AS template_locked, p.suspended AS project_suspended"
    " FROM issues i"
    " JOIN states s ON s.id = i.state_id"
    " JOIN templates t ON t.id = s.template_id"
    " JOIN projects p ON p.id = t.project_id"
)


class IssuesMixin(DBMixinProtocol):
    """Issues and their journey through a template's states."""

    if TYPE_CHECKING:
        # From ProjectsMixin
        def get_initial_state_id(self, template_id: int) -> int | None: ...

        # From WorkflowMixin
        def get_responsibles(self, state_id: int) -> list[User]: ...

        # From FieldsMixin
        def list_fields(self, state_id: int, *, include_removed: bool = False) -> list[Field]: ...

        def list_list_items(self, field_id: int) -> list[ListItem]: ...

        # From PermissionsMixin
        def can_view(self, issue: Issue, user: User) -> bool: ...

        def can_create_issue(self, template_id: int, user: User) -> bool: ...

        def can_update(self, issue: Issue, user: User) -> bool: ...

        def can_delete(self, issue: Issue, user: User) -> bool: ...

        def can_change_state(self, issue: Issue, user: User) -> bool: ...

        def can_reassign(self, issue: Issue, user: User) -> bool: ...

        def can_suspend(self, issue: Issue, user: User) -> bool: ...

        def can_resume(self, issue: Issue, user: User) -> bool: ...

        def field_access(self, field: Field, user: User, issue: Issue | None = None) -> str | None: ...

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

    # -- Lookups -------------------------------------------------------------

    def get_issue(self, issue_id: int) -> Issue:
        row = self.conn.execute(f"{_ISSUE_SELECT} WHERE i.id = ?", (issue_id,)).fetchone()
        if row is None:
            raise KeyError(issue_id)
        return Issue.from_row(row)

    def _issue_exists(self, issue_id: int) -> bool:
        return self.conn.execute("SELECT 1 FROM issues WHERE id = ?", (issue_id,)).fetchone() is not None

    def _viewable_issue(self, issue_id: int, user: User) -> Issue:
        issue = self.get_issue(issue_id)
        if not self.can_view(issue, user):
            msg = f"You are not allowed to view issue {issue.full_id}."
            raise AccessDeniedError(msg)
        return issue

    def list_issues(
        self,
        *,
        user: User,
        project_id: int | None = None,
        template_id: int | None = None,
        state_id: int | None = None,
        author_id: int | None = None,
        responsible_id: int | None = None,
        search: str = "",
        closed: bool | None = None,
        critical: bool | None = None,
        suspended: bool | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> PaginatedResult:
        """Filter the issues *user* can view, newest first."""
        if limit < 1 or offset < 0:
            msg = "limit must be positive and offset non-negative"
            raise ValueError(msg)
        sql = f"{_ISSUE_SELECT} WHERE 1 = 1"
        params: list[object] = []
        for column, value in (
            ("t.project_id", project_id),
            ("s.template_id", template_id),
            ("i.state_id", state_id),
            ("i.author_id", author_id),
            ("i.responsible_id", responsible_id),
        ):
            if value is not None:
                sql += f" AND {column} = ?"
                params.append(value)
        if search:
            sql += " AND i.subject LIKE ? ESCAPE '\\'"
            params.append(_like_pattern(search))
        if closed is not None:
            sql += " AND i.closed_at IS NOT NULL" if closed else " AND i.closed_at IS NULL"
        sql += " ORDER BY i.created_at DESC, i.id DESC"

        issues = [Issue.from_row(r) for r in self.conn.execute(sql, params).fetchall()]
        issues = [i for i in issues if self.can_view(i, user)]
        if critical is not None:
            issues = [i for i in issues if i.is_critical == critical]
        if suspended is not None:
            issues = [i for i in issues if i.is_suspended == suspended]
        page = issues[offset : offset + limit]
        return PaginatedResult(
            results=[dict(i.to_dict()) for i in page],
            total=len(issues),
            limit=limit,
            offset=offset,
            has_more=offset + limit < len(issues),
        )

    # -- State machine -------------------------------------------------------

    def has_open_dependencies(self, issue_id: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM dependencies d JOIN issues i ON i.id = d.dependency_id"
            " WHERE d.issue_id = ? AND i.closed_at IS NULL LIMIT 1",
            (issue_id,),
        ).fetchone()
        return row is not None

    def get_transitions_by_user(self, issue_id: int, user: User) -> list[State]:
        """States *user* can move the issue to, sorted by name.

        Final states are withheld while the issue depends on open issues.
        """
        issue = self.get_issue(issue_id)
        if user.disabled:
            return []
        roles = issue_roles(issue, user)
        placeholders = ", ".join("?" for _ in roles)
        rows = self.conn.execute(
            "SELECT s.* FROM state_role_transitions srt JOIN states s ON s.id = srt.to_state_id"
            f" WHERE srt.from_state_id = ? AND srt.role IN ({placeholders})",
            (issue.state_id, *roles),
        ).fetchall()
        rows += self.conn.execute(
            "SELECT s.* FROM state_group_transitions sgt"
            " JOIN membership m ON m.group_id = sgt.group_id"
            " JOIN states s ON s.id = sgt.to_state_id"
            " WHERE sgt.from_state_id = ? AND m.user_id = ?",
            (issue.state_id, user.id),
        ).fetchall()
        states = {r["id"]: State.from_row(r) for r in rows}
        result = list(states.values())
        if self.has_open_dependencies(issue_id):
            result = [s for s in result if not s.is_final]
        return sorted(result, key=lambda s: (s.name, s.id))

    def _value_contexts(self, fields: list[Field], timestamp: int) -> dict[int, ValueContext]:
        contexts: dict[int, ValueContext] = {}
        for f in fields:
            list_values: frozenset[int] = frozenset()
            if f.type == "list":
                list_values = frozenset(item.value for item in self.list_list_items(f.id))
            contexts[f.id] = ValueContext(timestamp=timestamp, list_values=list_values, issue_exists=self._issue_exists)
        return contexts

    def _store_values(self, transition_id: int, fields: list[Field], values: Mapping[int, Any]) -> None:
        self.conn.executemany(
            "INSERT INTO field_values (transition_id, field_id, value) VALUES (?, ?, ?)",
            [(transition_id, f.id, get_strategy(f).to_storage(values.get(f.id))) for f in fields],
        )

    def _record_transition(self, event_id: int, state_id: int) -> int:
        cursor = self.conn.execute("INSERT INTO transitions (event_id, state_id) VALUES (?, ?)", (event_id, state_id))
        return int(cursor.lastrowid or 0)

    def _eligible_responsible(self, state: State, responsible_id: int | None) -> User:
        """Resolve the responsible for a state that assigns one."""
        if responsible_id is None:
            msg = "Responsible is required."
            raise ValueError(msg)
        responsible = self.get_user(responsible_id)
        if responsible.id not in {u.id for u in self.get_responsibles(state.id)}:
            msg = f"{responsible.fullname} cannot be responsible for state '{state.name}'."
            raise AccessDeniedError(msg)
        return responsible

    # -- Creation ------------------------------------------------------------

    def create_issue(
        self,
        template_id: int,
        subject: str,
        *,
        values: Mapping[Any, Any] | None = None,
        responsible_id: int | None = None,
        actor: User,
        origin_id: int | None = None,
    ) -> Issue:
        """Open a new issue in the template's initial state."""
        template = self.get_template(template_id)
        if not self.can_create_issue(template_id, actor):
            msg = f"You are not allowed to create issues using template '{template.name}'."
            raise AccessDeniedError(msg)
        subject = clean_text(subject, "subject", MAX_SUBJECT)
        initial_id = self.get_initial_state_id(template_id)
        if initial_id is None:
            msg = f"Template '{template.name}' has no initial state."
            raise ValueError(msg)
        state = self.get_state(initial_id)
        now = _now_ts()
        fields = self.list_fields(state.id)
        validated = validate_field_values(fields, values, self._value_contexts(fields, now))
        responsible = self._eligible_responsible(state, responsible_id) if state.responsible == "assign" else None

        try:
            cursor = self.conn.execute(
                "INSERT INTO issues (state_id, subject, author_id, origin_id, created_at, changed_at)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (state.id, subject, actor.id, origin_id, now, now),
            )
            issue_id = int(cursor.lastrowid or 0)
            event_id = self._record_event(issue_id, "issue.created", actor.id, state.name, created_at=now)
            transition_id = self._record_transition(event_id, state.id)
            if responsible is not None:
                self.conn.execute("UPDATE issues SET responsible_id = ? WHERE id = ?", (responsible.id, issue_id))
                self._record_event(issue_id, "issue.assigned", actor.id, responsible.fullname, created_at=now)
            self._store_values(transition_id, fields, validated)
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        issue = self.get_issue(issue_id)
        logger.info("Issue created: %s", issue.full_id, extra={"actor": actor.email, "issue": issue.full_id})
        return issue

    def clone_issue(
        self,
        origin_id: int,
        *,
        subject: str | None = None,
        values: Mapping[Any, Any] | None = None,
        responsible_id: int | None = None,
        actor: User,
    ) -> Issue:
        """Create a new issue from the origin's template, linked back to the origin."""
        origin = self._viewable_issue(origin_id, actor)
        return self.create_issue(
            origin.template_id,
            origin.subject if subject is None else subject,
            values=values,
            responsible_id=responsible_id,
            actor=actor,
            origin_id=origin.id,
        )

    # -- Field values --------------------------------------------------------

    def _latest_value_rows(self, issue: Issue) -> list[Any]:
        """Values from the most recent transition into each state the issue visited."""
        return self.conn.execute(
            "SELECT fv.transition_id, fv.field_id, fv.value, tr.state_id, e.created_at AS event_time, f.*"
            " FROM field_values fv"
            " JOIN transitions tr ON tr.id = fv.transition_id"
            " JOIN events e ON e.id = tr.event_id"
            " JOIN fields f ON f.id = fv.field_id"
            " WHERE e.issue_id = ? AND f.removed_at IS NULL AND tr.id = ("
            "   SELECT tr2.id FROM transitions tr2 JOIN events e2 ON e2.id = tr2.event_id"
            "   WHERE e2.issue_id = e.issue_id AND tr2.state_id = tr.state_id"
            "   ORDER BY e2.created_at DESC, tr2.id DESC LIMIT 1)"
            " ORDER BY e.created_at, tr.id, f.position",
            (issue.id,),
        ).fetchall()

    def get_values(self, issue_id: int, *, user: User) -> list[FieldValueRecord]:
        """The latest value of every field *user* can read, in workflow order."""
        issue = self._viewable_issue(issue_id, user)
        result: list[FieldValueRecord] = []
        for row in self._latest_value_rows(issue):
            f = Field.from_row(row)
            if self.field_access(f, user, issue) is None:
                continue
            strategy = get_strategy(f)
            value = strategy.from_storage(row["value"])
            result.append(
                FieldValueRecord(
                    field_id=f.id,
                    field=f.name,
                    type=f.type,
                    state_id=row["state_id"],
                    transition_id=row["transition_id"],
                    value=value,
                    rendered=strategy.render(value),
                )
            )
        return result

    # -- Updates -------------------------------------------------------------

    def update_issue(
        self,
        issue_id: int,
        *,
        subject: str | None = None,
        values: Mapping[Any, Any] | None = None,
        actor: User,
    ) -> Issue:
        """Edit the subject and/or the latest writable field values.

        One ``issue.edited`` event is recorded with a change row per modified
        value. Nothing is written when nothing actually differs.
        """
        issue = self.get_issue(issue_id)
        if not self.can_update(issue, actor):
            msg = f"You are not allowed to edit issue {issue.full_id}."
            raise AccessDeniedError(msg)
        if subject is None and not values:
            return issue

        new_subject = clean_text(subject, "subject", MAX_SUBJECT) if subject is not None else issue.subject
        requested = normalize_value_keys(values)
        writable = []
        for row in self._latest_value_rows(issue):
            f = Field.from_row(row)
            if f.id in requested and self.field_access(f, actor, issue) == "RW":
                writable.append((f, row))
        fields = [f for f, _ in writable]
        contexts: dict[int, ValueContext] = {}
        for f, row in writable:
            contexts.update(self._value_contexts([f], row["event_time"]))
        validated = validate_field_values(fields, requested, contexts)

        now = _now_ts()
        changed = False
        try:
            event_id = self._record_event(issue_id, "issue.edited", actor.id, created_at=now)
            if new_subject != issue.subject:
                self.conn.execute("UPDATE issues SET subject = ? WHERE id = ?", (new_subject, issue_id))
                self.conn.execute(
                    "INSERT INTO changes (event_id, field_id, old_value, new_value) VALUES (?, NULL, ?, ?)",
                    (event_id, issue.subject, new_subject),
                )
                changed = True
            for f, row in writable:
                new_value = get_strategy(f).to_storage(validated[f.id])
                if new_value == row["value"]:
                    continue
                self.conn.execute(
                    "UPDATE field_values SET value = ? WHERE transition_id = ? AND field_id = ?",
                    (new_value, row["transition_id"], f.id),
                )
                self.conn.execute(
                    "INSERT INTO changes (event_id, field_id, old_value, new_value) VALUES (?, ?, ?, ?)",
                    (event_id, f.id, row["value"], new_value),
                )
                changed = True
            if not changed:
                self.conn.rollback()
                return issue
            self.conn.execute("UPDATE issues SET changed_at = ? WHERE id = ?", (now, issue_id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("Issue edited: %s", issue.full_id, extra={"actor": actor.email, "issue": issue.full_id})
        return self.get_issue(issue_id)

    def change_state(
        self,
        issue_id: int,
        state_id: int,
        *,
        values: Mapping[Any, Any] | None = None,
        responsible_id: int | None = None,
        actor: User,
    ) -> Issue:
        """Move the issue to *state_id* along one of the actor's transitions."""
        issue = self.get_issue(issue_id)
        state = self.get_state(state_id)
        if not self.can_change_state(issue, actor):
            msg = f"You are not allowed to change the state of issue {issue.full_id}."
            raise AccessDeniedError(msg)
        if state.id not in {s.id for s in self.get_transitions_by_user(issue_id, actor)}:
            msg = f"You are not allowed to move issue {issue.full_id} to state '{state.name}'."
            raise AccessDeniedError(msg)

        now = _now_ts()
        fields = self.list_fields(state.id)
        validated = validate_field_values(fields, values, self._value_contexts(fields, now))
        responsible = self._eligible_responsible(state, responsible_id) if state.responsible == "assign" else None

        if not issue.is_closed and state.is_final:
            event_type = "issue.closed"
        elif issue.is_closed and not state.is_final:
            event_type = "issue.reopened"
        else:
            event_type = "state.changed"

        try:
            event_id = self._record_event(issue_id, event_type, actor.id, state.name, created_at=now)
            transition_id = self._record_transition(event_id, state.id)
            self.conn.execute(
                "UPDATE issues SET state_id = ?, changed_at = ?, closed_at = ? WHERE id = ?",
                (state.id, now, now if state.is_final else None, issue_id),
            )
            if responsible is not None:
                self.conn.execute("UPDATE issues SET responsible_id = ? WHERE id = ?", (responsible.id, issue_id))
                self._record_event(issue_id, "issue.assigned", actor.id, responsible.fullname, created_at=now)
            elif state.responsible == "remove":
                self.conn.execute("UPDATE issues SET responsible_id = NULL WHERE id = ?", (issue_id,))
            self._store_values(transition_id, fields, validated)
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info(
            "Issue %s moved to '%s' (%s)",
            issue.full_id,
            state.name,
            event_type,
            extra={"actor": actor.email, "issue": issue.full_id},
        )
        return self.get_issue(issue_id)

    def reassign_issue(self, issue_id: int, responsible_id: int, *, actor: User) -> Issue:
        issue = self.get_issue(issue_id)
        if not self.can_reassign(issue, actor):
            msg = f"You are not allowed to reassign issue {issue.full_id}."
            raise AccessDeniedError(msg)
        responsible = self._eligible_responsible(self.get_state(issue.state_id), responsible_id)
        if responsible.id == issue.responsible_id:
            msg = f"{responsible.fullname} is already responsible for issue {issue.full_id}."
            raise ConflictError(msg)
        now = _now_ts()
        try:
            self._record_event(issue_id, "issue.reassigned", actor.id, responsible.fullname, created_at=now)
            self.conn.execute(
                "UPDATE issues SET responsible_id = ?, changed_at = ? WHERE id = ?",
                (responsible.id, now, issue_id),
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info(
            "Issue %s reassigned to %s", issue.full_id, responsible.email,
            extra={"actor": actor.email, "issue": issue.full_id},
        )
        return self.get_issue(issue_id)

    def suspend_issue(self, issue_id: int, resume_date: str, *, actor: User) -> Issue:
        """Suspend the issue until *resume_date* (YYYY-MM-DD, UTC), which must be in the future."""
        issue = self.get_issue(issue_id)
        if not self.can_suspend(issue, actor):
            msg = f"You are not allowed to suspend issue {issue.full_id}."
            raise AccessDeniedError(msg)
        day = parse_iso_date(resume_date, "resume date")
        resumes_at = int(datetime.combine(day, time.min, tzinfo=UTC).timestamp())
        now = _now_ts()
        if resumes_at <= now:
            msg = "The resume date must be in the future."
            raise ValueError(msg)
        try:
            self._record_event(issue_id, "issue.suspended", actor.id, day.isoformat(), created_at=now)
            self.conn.execute(
                "UPDATE issues SET resumes_at = ?, changed_at = ? WHERE id = ?",
                (resumes_at, now, issue_id),
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info(
            "Issue %s suspended until %s", issue.full_id, day.isoformat(),
            extra={"actor": actor.email, "issue": issue.full_id},
        )
        return self.get_issue(issue_id)

    def resume_issue(self, issue_id: int, *, actor: User) -> Issue:
        issue = self.get_issue(issue_id)
        if not self.can_resume(issue, actor):
            msg = f"You are not allowed to resume issue {issue.full_id}."
            raise AccessDeniedError(msg)
        now = _now_ts()
        try:
            self._record_event(issue_id, "issue.resumed", actor.id, created_at=now)
            self.conn.execute("UPDATE issues SET resumes_at = NULL, changed_at = ? WHERE id = ?", (now, issue_id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("Issue %s resumed", issue.full_id, extra={"actor": actor.email, "issue": issue.full_id})
        return self.get_issue(issue_id)

    def delete_issue(self, issue_id: int, *, actor: User) -> None:
        """Delete the issue with its whole history and attached files."""
        issue = self.get_issue(issue_id)
        if not self.can_delete(issue, actor):
            msg = f"You are not allowed to delete issue {issue.full_id}."
            raise AccessDeniedError(msg)
        uids = [
            r["uid"]
            for r in self.conn.execute(
                "SELECT f.uid FROM files f JOIN events e ON e.id = f.event_id WHERE e.issue_id = ?",
                (issue_id,),
            ).fetchall()
        ]
        try:
            self.conn.execute("DELETE FROM issues WHERE id = ?", (issue_id,))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        for uid in uids:
            (self.files_dir / uid).unlink(missing_ok=True)
        logger.info("Issue deleted: %s", issue.full_id, extra={"actor": actor.email, "issue": issue.full_id})

    # -- Watchers and read marks ---------------------------------------------

    def _viewable_ids(self, issue_ids: Iterable[int], user: User) -> list[int]:
        result = []
        for issue_id in dict.fromkeys(issue_ids):
            try:
                issue = self.get_issue(issue_id)
            except KeyError:
                continue
            if self.can_view(issue, user):
                result.append(issue_id)
        return result

    def watch_issues(self, issue_ids: Iterable[int], *, user: User) -> list[int]:
        """Start watching the given issues; ones the user cannot view are skipped."""
        ids = self._viewable_ids(issue_ids, user)
        self.conn.executemany(
            "INSERT OR IGNORE INTO watchers (issue_id, user_id) VALUES (?, ?)",
            [(issue_id, user.id) for issue_id in ids],
        )
        self.conn.commit()
        return ids

    def unwatch_issues(self, issue_ids: Iterable[int], *, user: User) -> list[int]:
        ids = list(dict.fromkeys(issue_ids))
        self.conn.executemany(
            "DELETE FROM watchers WHERE issue_id = ? AND user_id = ?",
            [(issue_id, user.id) for issue_id in ids],
        )
        self.conn.commit()
        return ids

    def get_watchers(self, issue_id: int, *, user: User) -> list[User]:
        self._viewable_issue(issue_id, user)
        rows = self.conn.execute(
            "SELECT u.* FROM users u JOIN watchers w ON w.user_id = u.id WHERE w.issue_id = ? ORDER BY u.fullname",
            (issue_id,),
        ).fetchall()
        return [User.from_row(r) for r in rows]

    def mark_as_read(self, issue_ids: Iterable[int], *, user: User) -> list[int]:
        ids = self._viewable_ids(issue_ids, user)
        now = _now_ts()
        self.conn.executemany(
            "INSERT INTO last_reads (issue_id, user_id, read_at) VALUES (?, ?, ?)"
            " ON CONFLICT (issue_id, user_id) DO UPDATE SET read_at = excluded.read_at",
            [(issue_id, user.id, now) for issue_id in ids],
        )
        self.conn.commit()
        return ids

    def mark_as_unread(self, issue_ids: Iterable[int], *, user: User) -> list[int]:
        ids = self._viewable_ids(issue_ids, user)
        self.conn.executemany(
            "DELETE FROM last_reads WHERE issue_id = ? AND user_id = ?",
            [(issue_id, user.id) for issue_id in ids],
        )
        self.conn.commit()
        return ids

    def get_last_read(self, issue_id: int, *, user: User) -> int | None:
        row = self.conn.execute(
            "SELECT read_at FROM last_reads WHERE issue_id = ? AND user_id = ?", (issue_id, user.id)
        ).fetchone()
        return None if row is None else int(row["read_at"])
