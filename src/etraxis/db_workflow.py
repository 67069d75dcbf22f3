"""WorkflowMixin: states, transitions between them, and responsible groups."""

from __future__ import annotations

import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from etraxis.db_base import AccessDeniedError, ConflictError, DBMixinProtocol, require_admin
from etraxis.models import State, Template, User
from etraxis.types.core import STATE_RESPONSIBLES, STATE_TYPES, SYSTEM_ROLES
from etraxis.validation import clean_text

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

MAX_STATE_NAME = 50


def _require_locked(template: Template, action: str) -> None:
    if not template.locked:
        msg = f"Template '{template.name}' must be locked to {action}."
        raise AccessDeniedError(msg)


class WorkflowMixin(DBMixinProtocol):
    """States of a template and the graph of transitions between them."""

    # -- States --------------------------------------------------------------

    def create_state(
        self,
        template_id: int,
        name: str,
        *,
        type: str = "intermediate",
        responsible: str = "keep",
        actor: User,
    ) -> State:
        template = self.get_template(template_id)
        require_admin(actor, "create new state")
        _require_locked(template, "create new state")
        name = clean_text(name, "name", MAX_STATE_NAME)
        if type not in STATE_TYPES:
            msg = f"Invalid state type '{type}'. Must be one of: {', '.join(sorted(STATE_TYPES))}"
            raise ValueError(msg)
        if responsible not in STATE_RESPONSIBLES:
            msg = f"Invalid responsible '{responsible}'. Must be one of: {', '.join(sorted(STATE_RESPONSIBLES))}"
            raise ValueError(msg)
        if type == "final":
            responsible = "remove"
        try:
            if type == "initial":
                self.conn.execute(
                    "UPDATE states SET type = 'intermediate' WHERE template_id = ? AND type = 'initial'",
                    (template_id,),
                )
            cursor = self.conn.execute(
                "INSERT INTO states (template_id, name, type, responsible) VALUES (?, ?, ?, ?)",
                (template_id, name, type, responsible),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"State with specified name already exists: {name}"
            raise ConflictError(msg) from None
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("State created: %s (%s)", name, type, extra={"actor": actor.email})
        return self.get_state(int(cursor.lastrowid or 0))

    def get_state(self, state_id: int) -> State:
        row = self.conn.execute("SELECT * FROM states WHERE id = ?", (state_id,)).fetchone()
        if row is None:
            raise KeyError(state_id)
        return State.from_row(row)

    def list_states(self, template_id: int) -> list[State]:
        """States of a template: the initial one first, finals last, then by name."""
        rows = self.conn.execute(
            "SELECT * FROM states WHERE template_id = ?"
            " ORDER BY CASE type WHEN 'initial' THEN 0 WHEN 'intermediate' THEN 1 ELSE 2 END, name",
            (template_id,),
        ).fetchall()
        return [State.from_row(r) for r in rows]

    def update_state(
        self,
        state_id: int,
        *,
        name: str | None = None,
        responsible: str | None = None,
        actor: User,
    ) -> State:
        state = self.get_state(state_id)
        template = self.get_template(state.template_id)
        require_admin(actor, "update this state")
        _require_locked(template, "update this state")
        new_name = clean_text(name, "name", MAX_STATE_NAME) if name is not None else state.name
        new_responsible = responsible if responsible is not None else state.responsible
        if new_responsible not in STATE_RESPONSIBLES:
            msg = f"Invalid responsible '{new_responsible}'. Must be one of: {', '.join(sorted(STATE_RESPONSIBLES))}"
            raise ValueError(msg)
        if state.is_final:
            new_responsible = "remove"
        try:
            self.conn.execute(
                "UPDATE states SET name = ?, responsible = ? WHERE id = ?",
                (new_name, new_responsible, state_id),
            )
            if new_responsible != "assign":
                self.conn.execute("DELETE FROM state_responsible_groups WHERE state_id = ?", (state_id,))
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"State with specified name already exists: {new_name}"
            raise ConflictError(msg) from None
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        return self.get_state(state_id)

    def set_initial_state(self, state_id: int, *, actor: User) -> State:
        state = self.get_state(state_id)
        template = self.get_template(state.template_id)
        require_admin(actor, "set initial state")
        _require_locked(template, "set initial state")
        if state.type == "initial":
            return state
        if state.is_final:
            msg = "A final state cannot be made initial."
            raise ValueError(msg)
        try:
            self.conn.execute(
                "UPDATE states SET type = 'intermediate' WHERE template_id = ? AND type = 'initial'",
                (state.template_id,),
            )
            self.conn.execute("UPDATE states SET type = 'initial' WHERE id = ?", (state_id,))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("Initial state set: %s", state.name, extra={"actor": actor.email})
        return self.get_state(state_id)

    def delete_state(self, state_id: int, *, actor: User) -> None:
        state = self.get_state(state_id)
        template = self.get_template(state.template_id)
        require_admin(actor, "delete this state")
        _require_locked(template, "delete this state")
        used = self.conn.execute(
            "SELECT COUNT(*) FROM transitions WHERE state_id = ?", (state_id,)
        ).fetchone()[0]
        if used:
            msg = f"State '{state.name}' has been used by issues and cannot be deleted."
            raise ConflictError(msg)
        self.conn.execute("DELETE FROM states WHERE id = ?", (state_id,))
        self.conn.commit()
        logger.info("State deleted: %s", state.name, extra={"actor": actor.email})

    # -- Transitions ---------------------------------------------------------

    def _check_transition_pair(self, from_state_id: int, to_state_id: int, actor: User) -> tuple[State, State]:
        from_state = self.get_state(from_state_id)
        to_state = self.get_state(to_state_id)
        require_admin(actor, "set state transitions")
        if from_state.is_final:
            msg = f"Final state '{from_state.name}' cannot have transitions."
            raise AccessDeniedError(msg)
        if from_state.template_id != to_state.template_id:
            msg = "Both states must belong to the same template."
            raise ValueError(msg)
        return from_state, to_state

    def _check_local_groups(self, template_id: int, group_ids: Iterable[int]) -> list[int]:
        template = self.get_template(template_id)
        wanted = list(dict.fromkeys(group_ids))
        for gid in wanted:
            group = self.get_group(gid)
            if group.project_id not in (None, template.project_id):
                msg = f"Group '{group.name}' belongs to another project."
                raise ValueError(msg)
        return wanted

    def set_role_transitions(
        self,
        from_state_id: int,
        to_state_id: int,
        roles: Iterable[str],
        *,
        actor: User,
    ) -> None:
        """Make *roles* exactly the set of system roles allowed to move between the states."""
        self._check_transition_pair(from_state_id, to_state_id, actor)
        wanted = list(dict.fromkeys(roles))
        for role in wanted:
            if role not in SYSTEM_ROLES:
                msg = f"Unknown role '{role}'. Valid roles: {', '.join(sorted(SYSTEM_ROLES))}"
                raise ValueError(msg)
        try:
            self.conn.execute(
                "DELETE FROM state_role_transitions WHERE from_state_id = ? AND to_state_id = ?",
                (from_state_id, to_state_id),
            )
            self.conn.executemany(
                "INSERT INTO state_role_transitions (from_state_id, to_state_id, role) VALUES (?, ?, ?)",
                [(from_state_id, to_state_id, role) for role in wanted],
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    def set_group_transitions(
        self,
        from_state_id: int,
        to_state_id: int,
        group_ids: Iterable[int],
        *,
        actor: User,
    ) -> None:
        """Make *group_ids* exactly the set of groups allowed to move between the states."""
        from_state, _ = self._check_transition_pair(from_state_id, to_state_id, actor)
        wanted = self._check_local_groups(from_state.template_id, group_ids)
        try:
            self.conn.execute(
                "DELETE FROM state_group_transitions WHERE from_state_id = ? AND to_state_id = ?",
                (from_state_id, to_state_id),
            )
            self.conn.executemany(
                "INSERT INTO state_group_transitions (from_state_id, to_state_id, group_id) VALUES (?, ?, ?)",
                [(from_state_id, to_state_id, gid) for gid in wanted],
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    def get_transitions(self, state_id: int) -> dict[str, list[dict[str, Any]]]:
        self.get_state(state_id)
        roles = self.conn.execute(
            "SELECT to_state_id, role FROM state_role_transitions WHERE from_state_id = ? ORDER BY to_state_id, role",
            (state_id,),
        ).fetchall()
        groups = self.conn.execute(
            "SELECT to_state_id, group_id FROM state_group_transitions WHERE from_state_id = ?"
            " ORDER BY to_state_id, group_id",
            (state_id,),
        ).fetchall()
        return {
            "roles": [{"state_id": r["to_state_id"], "role": r["role"]} for r in roles],
            "groups": [{"state_id": g["to_state_id"], "group_id": g["group_id"]} for g in groups],
        }

    # -- Responsibles --------------------------------------------------------

    def set_responsible_groups(self, state_id: int, group_ids: Iterable[int], *, actor: User) -> None:
        state = self.get_state(state_id)
        require_admin(actor, "set responsible groups")
        if state.responsible != "assign":
            msg = f"State '{state.name}' does not assign a responsible."
            raise AccessDeniedError(msg)
        wanted = self._check_local_groups(state.template_id, group_ids)
        try:
            self.conn.execute("DELETE FROM state_responsible_groups WHERE state_id = ?", (state_id,))
            self.conn.executemany(
                "INSERT INTO state_responsible_groups (state_id, group_id) VALUES (?, ?)",
                [(state_id, gid) for gid in wanted],
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()

    def get_responsible_groups(self, state_id: int) -> list[int]:
        self.get_state(state_id)
        rows = self.conn.execute(
            "SELECT group_id FROM state_responsible_groups WHERE state_id = ? ORDER BY group_id",
            (state_id,),
        ).fetchall()
        return [r["group_id"] for r in rows]

    def get_responsibles(self, state_id: int) -> list[User]:
        """Enabled members of the state's responsible groups, by full name."""
        rows = self.conn.execute(
            "SELECT DISTINCT u.* FROM users u"
            " JOIN membership m ON m.user_id = u.id"
            " JOIN state_responsible_groups srg ON srg.group_id = m.group_id"
            " WHERE srg.state_id = ? AND u.disabled = 0"
            " ORDER BY u.fullname, u.id",
            (state_id,),
        ).fetchall()
        return [User.from_row(r) for r in rows]
