"""AccountsMixin: users, groups, and group membership."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING

from etraxis.db_base import AccessDeniedError, ConflictError, DBMixinProtocol, _like_pattern, _now_ts, require_admin
from etraxis.models import Group, User
from etraxis.validation import clean_email, clean_text

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

MAX_FULLNAME = 50
MAX_USER_DESCRIPTION = 100
MAX_GROUP_NAME = 25
MAX_GROUP_DESCRIPTION = 100


class AccountsMixin(DBMixinProtocol):
    """User directory and groups.

    Groups are either global (``project_id`` is None) or local to a project.
    """

    # -- Users ---------------------------------------------------------------

    def count_users(self) -> int:
        result: int = self.conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
        return result

    def create_user(
        self,
        email: str,
        fullname: str,
        *,
        description: str = "",
        admin: bool = False,
        disabled: bool = False,
        actor: User | None,
    ) -> User:
        """Create a user. Without an *actor* this only works on an empty directory."""
        if actor is not None or self.count_users() > 0:
            require_admin(actor, "create new user")
        email = clean_email(email)
        fullname = clean_text(fullname, "fullname", MAX_FULLNAME)
        description = clean_text(description, "description", MAX_USER_DESCRIPTION, required=False)
        try:
            cursor = self.conn.execute(
                "INSERT INTO users (email, fullname, description, admin, disabled, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (email, fullname, description, int(admin), int(disabled), _now_ts()),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Account with entered email already exists: {email}"
            raise ConflictError(msg) from None
        self.conn.commit()
        logger.info("User created: %s", email, extra={"actor": actor.email if actor else ""})
        return self.get_user(int(cursor.lastrowid or 0))

    def get_user(self, user_id: int) -> User:
        row = self.conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            raise KeyError(user_id)
        return User.from_row(row)

    def get_user_by_email(self, email: str) -> User:
        row = self.conn.execute("SELECT * FROM users WHERE email = ?", (email.strip().lower(),)).fetchone()
        if row is None:
            raise KeyError(email)
        return User.from_row(row)

    def list_users(self, *, search: str = "", include_disabled: bool = True) -> list[User]:
        sql = "SELECT * FROM users WHERE 1 = 1"
        params: list[object] = []
        if search:
            sql += (
                " AND (email LIKE ? ESCAPE '\\' OR fullname LIKE ? ESCAPE '\\'"
                " OR description LIKE ? ESCAPE '\\')"
            )
            like = _like_pattern(search)
            params += [like, like, like]
        if not include_disabled:
            sql += " AND disabled = 0"
        sql += " ORDER BY fullname, email"
        return [User.from_row(r) for r in self.conn.execute(sql, params).fetchall()]

    def update_user(
        self,
        user_id: int,
        *,
        email: str | None = None,
        fullname: str | None = None,
        description: str | None = None,
        admin: bool | None = None,
        actor: User,
    ) -> User:
        require_admin(actor, "update this user")
        user = self.get_user(user_id)
        new_email = clean_email(email) if email is not None else user.email
        new_fullname = clean_text(fullname, "fullname", MAX_FULLNAME) if fullname is not None else user.fullname
        new_description = (
            clean_text(description, "description", MAX_USER_DESCRIPTION, required=False)
            if description is not None
            else user.description
        )
        new_admin = user.admin if admin is None else admin
        if user.id == actor.id and not new_admin:
            msg = "You cannot revoke your own administrator rights."
            raise AccessDeniedError(msg)
        try:
            self.conn.execute(
                "UPDATE users SET email = ?, fullname = ?, description = ?, admin = ? WHERE id = ?",
                (new_email, new_fullname, new_description, int(new_admin), user_id),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Account with entered email already exists: {new_email}"
            raise ConflictError(msg) from None
        self.conn.commit()
        return self.get_user(user_id)

    def _set_users_disabled(self, user_ids: Iterable[int], disabled: bool, *, actor: User) -> list[User]:
        action = "disable" if disabled else "enable"
        require_admin(actor, f"{action} users")
        ids = list(dict.fromkeys(user_ids))
        users = [self.get_user(uid) for uid in ids]
        if disabled and any(u.id == actor.id for u in users):
            msg = "You cannot disable yourself."
            raise AccessDeniedError(msg)
        try:
            for u in users:
                self.conn.execute("UPDATE users SET disabled = ? WHERE id = ?", (int(disabled), u.id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("Users %sd: %s", action, ids, extra={"actor": actor.email})
        return [self.get_user(uid) for uid in ids]

    def disable_users(self, user_ids: Iterable[int], *, actor: User) -> list[User]:
        return self._set_users_disabled(user_ids, True, actor=actor)

    def enable_users(self, user_ids: Iterable[int], *, actor: User) -> list[User]:
        return self._set_users_disabled(user_ids, False, actor=actor)

    def delete_user(self, user_id: int, *, actor: User) -> None:
        """Delete a user who never appeared in any issue history."""
        require_admin(actor, "delete this user")
        user = self.get_user(user_id)
        if user.id == actor.id:
            msg = "You cannot delete yourself."
            raise AccessDeniedError(msg)
        in_history = self.conn.execute(
            "SELECT (SELECT COUNT(*) FROM events WHERE user_id = ?)"
            " + (SELECT COUNT(*) FROM issues WHERE author_id = ? OR responsible_id = ?)",
            (user_id, user_id, user_id),
        ).fetchone()[0]
        if in_history:
            msg = f"User {user.email} is referenced by issue history and cannot be deleted."
            raise ConflictError(msg)
        self.conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        self.conn.commit()
        logger.info("User deleted: %s", user.email, extra={"actor": actor.email})

    # -- Groups --------------------------------------------------------------

    def _check_group_name_unique(self, project_id: int | None, name: str, exclude_id: int | None = None) -> None:
        row = self.conn.execute(
            "SELECT id FROM groups WHERE name = ? AND project_id IS ? AND id IS NOT ?",
            (name, project_id, exclude_id),
        ).fetchone()
        if row is not None:
            msg = f"Group with specified name already exists: {name}"
            raise ConflictError(msg)

    def create_group(
        self,
        name: str,
        *,
        project_id: int | None = None,
        description: str = "",
        actor: User,
    ) -> Group:
        require_admin(actor, "create new group")
        if project_id is not None:
            self.get_project(project_id)
        name = clean_text(name, "name", MAX_GROUP_NAME)
        description = clean_text(description, "description", MAX_GROUP_DESCRIPTION, required=False)
        self._check_group_name_unique(project_id, name)
        cursor = self.conn.execute(
            "INSERT INTO groups (project_id, name, description) VALUES (?, ?, ?)",
            (project_id, name, description),
        )
        self.conn.commit()
        return self.get_group(int(cursor.lastrowid or 0))

    def get_group(self, group_id: int) -> Group:
        row = self.conn.execute("SELECT * FROM groups WHERE id = ?", (group_id,)).fetchone()
        if row is None:
            raise KeyError(group_id)
        return Group.from_row(row)

    def list_groups(self, *, project_id: int | None = None, include_global: bool = True) -> list[Group]:
        """Groups of *project_id* (plus global ones), or every group when no project is given."""
        if project_id is None:
            rows = self.conn.execute("SELECT * FROM groups ORDER BY name, project_id").fetchall()
        elif include_global:
            rows = self.conn.execute(
                "SELECT * FROM groups WHERE project_id = ? OR project_id IS NULL ORDER BY name",
                (project_id,),
            ).fetchall()
        else:
            rows = self.conn.execute("SELECT * FROM groups WHERE project_id = ? ORDER BY name", (project_id,)).fetchall()
        return [Group.from_row(r) for r in rows]

    def update_group(
        self,
        group_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        actor: User,
    ) -> Group:
        require_admin(actor, "update this group")
        group = self.get_group(group_id)
        new_name = clean_text(name, "name", MAX_GROUP_NAME) if name is not None else group.name
        new_description = (
            clean_text(description, "description", MAX_GROUP_DESCRIPTION, required=False)
            if description is not None
            else group.description
        )
        self._check_group_name_unique(group.project_id, new_name, exclude_id=group_id)
        self.conn.execute(
            "UPDATE groups SET name = ?, description = ? WHERE id = ?",
            (new_name, new_description, group_id),
        )
        self.conn.commit()
        return self.get_group(group_id)

    def delete_group(self, group_id: int, *, actor: User) -> None:
        require_admin(actor, "delete this group")
        self.get_group(group_id)
        self.conn.execute("DELETE FROM groups WHERE id = ?", (group_id,))
        self.conn.commit()

    def add_members(self, group_id: int, user_ids: Iterable[int], *, actor: User) -> None:
        require_admin(actor, "manage group membership")
        self.get_group(group_id)
        ids = list(dict.fromkeys(user_ids))
        for uid in ids:
            self.get_user(uid)
        self.conn.executemany(
            "INSERT OR IGNORE INTO membership (group_id, user_id) VALUES (?, ?)",
            [(group_id, uid) for uid in ids],
        )
        self.conn.commit()

    def remove_members(self, group_id: int, user_ids: Iterable[int], *, actor: User) -> None:
        require_admin(actor, "manage group membership")
        self.get_group(group_id)
        self.conn.executemany(
            "DELETE FROM membership WHERE group_id = ? AND user_id = ?",
            [(group_id, uid) for uid in dict.fromkeys(user_ids)],
        )
        self.conn.commit()

    def get_members(self, group_id: int) -> list[User]:
        self.get_group(group_id)
        rows = self.conn.execute(
            "SELECT u.* FROM users u JOIN membership m ON m.user_id = u.id WHERE m.group_id = ? ORDER BY u.fullname",
            (group_id,),
        ).fetchall()
        return [User.from_row(r) for r in rows]

    def get_user_groups(self, user_id: int) -> list[Group]:
        rows = self.conn.execute(
            "SELECT g.* FROM groups g JOIN membership m ON m.group_id = g.id WHERE m.user_id = ? ORDER BY g.name",
            (user_id,),
        ).fetchall()
        return [Group.from_row(r) for r in rows]
