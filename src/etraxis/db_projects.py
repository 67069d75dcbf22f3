"""ProjectsMixin: projects, templates, template permissions, and template cloning."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from etraxis.db_base import AccessDeniedError, ConflictError, DBMixinProtocol, _like_pattern, _now_ts, require_admin
from etraxis.models import Project, Template, User
from etraxis.types.core import SYSTEM_ROLES, TEMPLATE_PERMISSIONS
from etraxis.validation import clean_text

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

MAX_PROJECT_NAME = 25
MAX_PROJECT_DESCRIPTION = 100
MAX_TEMPLATE_NAME = 50
MAX_TEMPLATE_PREFIX = 5
MAX_TEMPLATE_DESCRIPTION = 100


def _check_permission_names(permissions: Iterable[str]) -> list[str]:
    result = list(dict.fromkeys(permissions))
    for permission in result:
        if permission not in TEMPLATE_PERMISSIONS:
            msg = f"Unknown template permission '{permission}'. Valid permissions: {', '.join(TEMPLATE_PERMISSIONS)}"
            raise ValueError(msg)
    return result


def _check_role_name(role: str) -> None:
    if role not in SYSTEM_ROLES:
        msg = f"Unknown role '{role}'. Valid roles: {', '.join(sorted(SYSTEM_ROLES))}"
        raise ValueError(msg)


def _check_age(value: int | None, name: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        msg = f"{name} must be a positive number of days"
        raise ValueError(msg)
    return value


class ProjectsMixin(DBMixinProtocol):
    """Projects and the templates that define their workflows."""

    # -- Projects ------------------------------------------------------------

    def create_project(self, name: str, *, description: str = "", suspended: bool = False, actor: User) -> Project:
        require_admin(actor, "create new project")
        name = clean_text(name, "name", MAX_PROJECT_NAME)
        description = clean_text(description, "description", MAX_PROJECT_DESCRIPTION, required=False)
        try:
            cursor = self.conn.execute(
                "INSERT INTO projects (name, description, suspended, created_at) VALUES (?, ?, ?, ?)",
                (name, description, int(suspended), _now_ts()),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Project with specified name already exists: {name}"
            raise ConflictError(msg) from None
        self.conn.commit()
        logger.info("Project created: %s", name, extra={"actor": actor.email})
        return self.get_project(int(cursor.lastrowid or 0))

    def get_project(self, project_id: int) -> Project:
        row = self.conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            raise KeyError(project_id)
        return Project.from_row(row)

    def list_projects(self, *, search: str = "", suspended: bool | None = None) -> list[Project]:
        sql = "SELECT * FROM projects WHERE 1 = 1"
        params: list[object] = []
        if search:
            sql += " AND (name LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')"
            params += [_like_pattern(search), _like_pattern(search)]
        if suspended is not None:
            sql += " AND suspended = ?"
            params.append(int(suspended))
        sql += " ORDER BY name"
        return [Project.from_row(r) for r in self.conn.execute(sql, params).fetchall()]

    def update_project(
        self,
        project_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        actor: User,
    ) -> Project:
        require_admin(actor, "update this project")
        project = self.get_project(project_id)
        new_name = clean_text(name, "name", MAX_PROJECT_NAME) if name is not None else project.name
        new_description = (
            clean_text(description, "description", MAX_PROJECT_DESCRIPTION, required=False)
            if description is not None
            else project.description
        )
        try:
            self.conn.execute(
                "UPDATE projects SET name = ?, description = ? WHERE id = ?",
                (new_name, new_description, project_id),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Project with specified name already exists: {new_name}"
            raise ConflictError(msg) from None
        self.conn.commit()
        return self.get_project(project_id)

    def suspend_project(self, project_id: int, *, actor: User) -> Project:
        require_admin(actor, "suspend this project")
        project = self.get_project(project_id)
        if project.suspended:
            msg = "The project is already suspended."
            raise AccessDeniedError(msg)
        self.conn.execute("UPDATE projects SET suspended = 1 WHERE id = ?", (project_id,))
        self.conn.commit()
        logger.info("Project suspended: %s", project.name, extra={"actor": actor.email})
        return self.get_project(project_id)

    def resume_project(self, project_id: int, *, actor: User) -> Project:
        require_admin(actor, "resume this project")
        project = self.get_project(project_id)
        if not project.suspended:
            msg = "The project is not suspended."
            raise AccessDeniedError(msg)
        self.conn.execute("UPDATE projects SET suspended = 0 WHERE id = ?", (project_id,))
        self.conn.commit()
        logger.info("Project resumed: %s", project.name, extra={"actor": actor.email})
        return self.get_project(project_id)

    def delete_project(self, project_id: int, *, actor: User) -> None:
        require_admin(actor, "delete this project")
        project = self.get_project(project_id)
        issues = self.conn.execute(
            "SELECT COUNT(*) FROM issues i JOIN states s ON s.id = i.state_id"
            " JOIN templates t ON t.id = s.template_id WHERE t.project_id = ?",
            (project_id,),
        ).fetchone()[0]
        if issues:
            msg = f"Project '{project.name}' has issues and cannot be deleted."
            raise ConflictError(msg)
        self.conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
        self.conn.commit()
        logger.info("Project deleted: %s", project.name, extra={"actor": actor.email})

    # -- Templates -----------------------------------------------------------

    def create_template(
        self,
        project_id: int,
        name: str,
        prefix: str,
        *,
        description: str = "",
        critical_age: int | None = None,
        frozen_time: int | None = None,
        actor: User,
    ) -> Template:
        """Create a template. New templates start locked, ready to be designed."""
        require_admin(actor, "create new template")
        self.get_project(project_id)
        name = clean_text(name, "name", MAX_TEMPLATE_NAME)
        prefix = clean_text(prefix, "prefix", MAX_TEMPLATE_PREFIX)
        description = clean_text(description, "description", MAX_TEMPLATE_DESCRIPTION, required=False)
        critical_age = _check_age(critical_age, "critical_age")
        frozen_time = _check_age(frozen_time, "frozen_time")
        try:
            cursor = self.conn.execute(
                "INSERT INTO templates (project_id, name, prefix, description, locked, critical_age, frozen_time)"
                " VALUES (?, ?, ?, ?, 1, ?, ?)",
                (project_id, name, prefix, description, critical_age, frozen_time),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Template with specified name or prefix already exists: {name} ({prefix})"
            raise ConflictError(msg) from None
        self.conn.commit()
        logger.info("Template created: %s", name, extra={"actor": actor.email})
        return self.get_template(int(cursor.lastrowid or 0))

    def get_template(self, template_id: int) -> Template:
        row = self.conn.execute("SELECT * FROM templates WHERE id = ?", (template_id,)).fetchone()
        if row is None:
            raise KeyError(template_id)
        return Template.from_row(row)

    def list_templates(self, *, project_id: int | None = None, locked: bool | None = None) -> list[Template]:
        sql = "SELECT * FROM templates WHERE 1 = 1"
        params: list[object] = []
        if project_id is not None:
            sql += " AND project_id = ?"
            params.append(project_id)
        if locked is not None:
            sql += " AND locked = ?"
            params.append(int(locked))
        sql += " ORDER BY name"
        return [Template.from_row(r) for r in self.conn.execute(sql, params).fetchall()]

    def update_template(
        self,
        template_id: int,
        *,
        name: str | None = None,
        prefix: str | None = None,
        description: str | None = None,
        critical_age: int | None = None,
        frozen_time: int | None = None,
        clear_critical_age: bool = False,
        clear_frozen_time: bool = False,
        actor: User,
    ) -> Template:
        require_admin(actor, "update this template")
        template = self.get_template(template_id)
        values: dict[str, Any] = {
            "name": clean_text(name, "name", MAX_TEMPLATE_NAME) if name is not None else template.name,
            "prefix": clean_text(prefix, "prefix", MAX_TEMPLATE_PREFIX) if prefix is not None else template.prefix,
            "description": (
                clean_text(description, "description", MAX_TEMPLATE_DESCRIPTION, required=False)
                if description is not None
                else template.description
            ),
            "critical_age": None if clear_critical_age else _check_age(critical_age, "critical_age") or template.critical_age,
            "frozen_time": None if clear_frozen_time else _check_age(frozen_time, "frozen_time") or template.frozen_time,
        }
        try:
            self.conn.execute(
                "UPDATE templates SET name = :name, prefix = :prefix, description = :description,"
                " critical_age = :critical_age, frozen_time = :frozen_time WHERE id = :id",
                {**values, "id": template_id},
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Template with specified name or prefix already exists: {values['name']} ({values['prefix']})"
            raise ConflictError(msg) from None
        self.conn.commit()
        return self.get_template(template_id)

    def delete_template(self, template_id: int, *, actor: User) -> None:
        require_admin(actor, "delete this template")
        template = self.get_template(template_id)
        issues = self.conn.execute(
            "SELECT COUNT(*) FROM issues i JOIN states s ON s.id = i.state_id WHERE s.template_id = ?",
            (template_id,),
        ).fetchone()[0]
        if issues:
            msg = f"Template '{template.name}' has issues and cannot be deleted."
            raise ConflictError(msg)
        self.conn.execute("DELETE FROM templates WHERE id = ?", (template_id,))
        self.conn.commit()
        logger.info("Template deleted: %s", template.name, extra={"actor": actor.email})

    def lock_template(self, template_id: int, *, actor: User) -> Template:
        """Put a template under maintenance: structure becomes editable, issues freeze."""
        template = self.get_template(template_id)
        require_admin(actor, "lock this template")
        if template.locked:
            msg = "The template is already locked."
            raise AccessDeniedError(msg)
        self.conn.execute("UPDATE templates SET locked = 1 WHERE id = ?", (template_id,))
        self.conn.commit()
        logger.info("Template locked: %s", template.name, extra={"actor": actor.email})
        return self.get_template(template_id)

    def unlock_template(self, template_id: int, *, actor: User) -> Template:
        template = self.get_template(template_id)
        require_admin(actor, "unlock this template")
        if not template.locked:
            msg = "The template is not locked."
            raise AccessDeniedError(msg)
        self.conn.execute("UPDATE templates SET locked = 0 WHERE id = ?", (template_id,))
        self.conn.commit()
        logger.info("Template unlocked: %s", template.name, extra={"actor": actor.email})
        return self.get_template(template_id)

    def get_initial_state_id(self, template_id: int) -> int | None:
        row = self.conn.execute(
            "SELECT id FROM states WHERE template_id = ? AND type = 'initial'",
            (template_id,),
        ).fetchone()
        return None if row is None else int(row[0])

    # -- Template permissions ------------------------------------------------

    def get_template_permissions(self, template_id: int) -> dict[str, Any]:
        """Return ``{"roles": [{role, permission}], "groups": [{group_id, permission}]}``."""
        self.get_template(template_id)
        roles = self.conn.execute(
            "SELECT role, permission FROM template_role_permissions WHERE template_id = ? ORDER BY role, permission",
            (template_id,),
        ).fetchall()
        groups = self.conn.execute(
            "SELECT group_id, permission FROM template_group_permissions WHERE template_id = ? ORDER BY group_id, permission",
            (template_id,),
        ).fetchall()
        return {
            "roles": [{"role": r["role"], "permission": r["permission"]} for r in roles],
            "groups": [{"group_id": g["group_id"], "permission": g["permission"]} for g in groups],
        }

    def set_template_role_permission(
        self,
        template_id: int,
        role: str,
        permissions: Iterable[str],
        *,
        actor: User,
    ) -> None:
        """Make *permissions* exactly the set granted to the system *role*."""
        require_admin(actor, "set template permissions")
        self.get_template(template_id)
        _check_role_name(role)
        wanted = _check_permission_names(permissions)
        try:
            self.conn.execute(
                "DELETE FROM template_role_permissions WHERE template_id = ? AND role = ?",
                (template_id, role),
            )
            self.conn.executemany(
                "INSERT INTO template_role_permissions (template_id, role, permission) VALUES (?, ?, ?)",
                [(template_id, role, permission) for permission in wanted],
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    def set_template_group_permission(
        self,
        template_id: int,
        group_id: int,
        permissions: Iterable[str],
        *,
        actor: User,
    ) -> None:
        """Make *permissions* exactly the set granted to the group."""
        require_admin(actor, "set template permissions")
        template = self.get_template(template_id)
        group = self.get_group(group_id)
        if group.project_id not in (None, template.project_id):
            msg = f"Group '{group.name}' belongs to another project."
            raise ValueError(msg)
        wanted = _check_permission_names(permissions)
        try:
            self.conn.execute(
                "DELETE FROM template_group_permissions WHERE template_id = ? AND group_id = ?",
                (template_id, group_id),
            )
            self.conn.executemany(
                "INSERT INTO template_group_permissions (template_id, group_id, permission) VALUES (?, ?, ?)",
                [(template_id, group_id, permission) for permission in wanted],
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    # -- Cloning -------------------------------------------------------------

    def clone_template(
        self,
        template_id: int,
        *,
        project_id: int,
        name: str,
        prefix: str,
        description: str = "",
        critical_age: int | None = None,
        frozen_time: int | None = None,
        actor: User,
    ) -> Template:
        """Copy a template with its states, fields, list items, transitions and permissions.

        Entries referencing a project-local group are dropped when the copy
        lands in a different project.
        """
        source = self.get_template(template_id)
        clone = self.create_template(
            project_id,
            name,
            prefix,
            description=description,
            critical_age=critical_age,
            frozen_time=frozen_time,
            actor=actor,
        )
        same_project = source.project_id == clone.project_id

        def keep_group(group_id: int) -> bool:
            if same_project:
                return True
            row = self.conn.execute("SELECT project_id FROM groups WHERE id = ?", (group_id,)).fetchone()
            return row is not None and row["project_id"] is None

        c = self.conn
        try:
            c.execute(
                "INSERT INTO template_role_permissions (template_id, role, permission)"
                " SELECT ?, role, permission FROM template_role_permissions WHERE template_id = ?",
                (clone.id, source.id),
            )
            for row in c.execute(
                "SELECT group_id, permission FROM template_group_permissions WHERE template_id = ?", (source.id,)
            ).fetchall():
                if keep_group(row["group_id"]):
                    c.execute(
                        "INSERT INTO template_group_permissions (template_id, group_id, permission) VALUES (?, ?, ?)",
                        (clone.id, row["group_id"], row["permission"]),
                    )

            state_map: dict[int, int] = {}
            for st in c.execute("SELECT * FROM states WHERE template_id = ? ORDER BY id", (source.id,)).fetchall():
                cur = c.execute(
                    "INSERT INTO states (template_id, name, type, responsible) VALUES (?, ?, ?, ?)",
                    (clone.id, st["name"], st["type"], st["responsible"]),
                )
                new_state_id = int(cur.lastrowid or 0)
                state_map[st["id"]] = new_state_id
                for rg in c.execute("SELECT group_id FROM state_responsible_groups WHERE state_id = ?", (st["id"],)).fetchall():
                    if keep_group(rg["group_id"]):
                        c.execute(
                            "INSERT INTO state_responsible_groups (state_id, group_id) VALUES (?, ?)",
                            (new_state_id, rg["group_id"]),
                        )
                self._clone_state_fields(st["id"], new_state_id, keep_group)

            for old_from, new_from in state_map.items():
                for tr in c.execute(
                    "SELECT to_state_id, role FROM state_role_transitions WHERE from_state_id = ?", (old_from,)
                ).fetchall():
                    c.execute(
                        "INSERT INTO state_role_transitions (from_state_id, to_state_id, role) VALUES (?, ?, ?)",
                        (new_from, state_map[tr["to_state_id"]], tr["role"]),
                    )
                for tr in c.execute(
                    "SELECT to_state_id, group_id FROM state_group_transitions WHERE from_state_id = ?", (old_from,)
                ).fetchall():
                    if keep_group(tr["group_id"]):
                        c.execute(
                            "INSERT INTO state_group_transitions (from_state_id, to_state_id, group_id) VALUES (?, ?, ?)",
                            (new_from, state_map[tr["to_state_id"]], tr["group_id"]),
                        )
        except Exception:
            c.rollback()
            c.execute("DELETE FROM templates WHERE id = ?", (clone.id,))
            c.commit()
            raise
        c.commit()
        logger.info("Template cloned: %s -> %s", source.name, clone.name, extra={"actor": actor.email})
        return clone

    def _clone_state_fields(self, old_state_id: int, new_state_id: int, keep_group: Any) -> None:
        c = self.conn
        fields = c.execute(
            "SELECT * FROM fields WHERE state_id = ? AND removed_at IS NULL ORDER BY position",
            (old_state_id,),
        ).fetchall()
        for position, f in enumerate(fields, start=1):
            cur = c.execute(
                "INSERT INTO fields (state_id, name, type, description, position, required, parameters)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (new_state_id, f["name"], f["type"], f["description"], position, f["required"], f["parameters"]),
            )
            new_field_id = int(cur.lastrowid or 0)
            c.execute(
                "INSERT INTO field_role_permissions (field_id, role, permission)"
                " SELECT ?, role, permission FROM field_role_permissions WHERE field_id = ?",
                (new_field_id, f["id"]),
            )
            for gp in c.execute(
                "SELECT group_id, permission FROM field_group_permissions WHERE field_id = ?", (f["id"],)
            ).fetchall():
                if keep_group(gp["group_id"]):
                    c.execute(
                        "INSERT INTO field_group_permissions (field_id, group_id, permission) VALUES (?, ?, ?)",
                        (new_field_id, gp["group_id"], gp["permission"]),
                    )
            c.execute(
                "INSERT INTO list_items (field_id, value, text) SELECT ?, value, text FROM list_items WHERE field_id = ?",
                (new_field_id, f["id"]),
            )
