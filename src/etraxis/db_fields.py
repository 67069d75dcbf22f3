"""FieldsMixin: state fields, field permissions, and list items."""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from etraxis.db_base import AccessDeniedError, ConflictError, DBMixinProtocol, _now_ts, require_admin
from etraxis.field_strategies import prepare_parameters
from etraxis.models import Field, ListItem, State, User
from etraxis.types.core import FIELD_ACCESS, SYSTEM_ROLES
from etraxis.validation import clean_text

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

MAX_FIELD_NAME = 50
MAX_FIELD_DESCRIPTION = 1000
MAX_LIST_ITEM_TEXT = 50


class FieldsMixin(DBMixinProtocol):
    """Fields attached to states, plus the items of list fields."""

    def _editable_state(self, state_id: int, actor: User, action: str) -> State:
        state = self.get_state(state_id)
        template = self.get_template(state.template_id)
        require_admin(actor, action)
        if not template.locked:
            msg = f"Template '{template.name}' must be locked to {action}."
            raise AccessDeniedError(msg)
        return state

    def _check_field_name_unique(self, state_id: int, name: str, exclude_id: int | None = None) -> None:
        row = self.conn.execute(
            "SELECT 1 FROM fields WHERE state_id = ? AND name = ? AND removed_at IS NULL AND id IS NOT ?",
            (state_id, name, exclude_id),
        ).fetchone()
        if row is not None:
            msg = f"Field with specified name already exists: {name}"
            raise ConflictError(msg)

    def _check_list_default(self, field: Field, params: Mapping[str, Any]) -> None:
        default = params.get("default")
        if field.type != "list" or default is None:
            return
        if default not in {item.value for item in self.list_list_items(field.id)}:
            msg = f"Default value {default} is not one of the list items."
            raise ValueError(msg)

    # -- Fields --------------------------------------------------------------

    def create_field(
        self,
        state_id: int,
        name: str,
        type: str,
        *,
        description: str = "",
        required: bool = False,
        parameters: Mapping[str, Any] | None = None,
        actor: User,
    ) -> Field:
        """Append a new field to the end of the state's field list."""
        self._editable_state(state_id, actor, "create new field")
        name = clean_text(name, "name", MAX_FIELD_NAME)
        description = clean_text(description, "description", MAX_FIELD_DESCRIPTION, required=False, multiline=True)
        params = prepare_parameters(type, parameters)
        if type == "list" and params.get("default") is not None:
            msg = "A list field has no items yet; set its default after adding them."
            raise ValueError(msg)
        self._check_field_name_unique(state_id, name)
        position = self._count_fields(state_id) + 1
        try:
            cursor = self.conn.execute(
                "INSERT INTO fields (state_id, name, type, description, position, required, parameters)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                (state_id, name, type, description, position, int(required), json.dumps(params)),
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("Field created: %s (%s)", name, type, extra={"actor": actor.email})
        return self.get_field(int(cursor.lastrowid or 0))

    def get_field(self, field_id: int) -> Field:
        row = self.conn.execute("SELECT * FROM fields WHERE id = ?", (field_id,)).fetchone()
        if row is None:
            raise KeyError(field_id)
        return Field.from_row(row)

    def list_fields(self, state_id: int, *, include_removed: bool = False) -> list[Field]:
        sql = "SELECT * FROM fields WHERE state_id = ?"
        if not include_removed:
            sql += " AND removed_at IS NULL"
        sql += " ORDER BY removed_at IS NOT NULL, position, id"
        return [Field.from_row(r) for r in self.conn.execute(sql, (state_id,)).fetchall()]

    def _count_fields(self, state_id: int) -> int:
        return int(
            self.conn.execute(
                "SELECT COUNT(*) FROM fields WHERE state_id = ? AND removed_at IS NULL", (state_id,)
            ).fetchone()[0]
        )

    def update_field(
        self,
        field_id: int,
        *,
        name: str | None = None,
        description: str | None = None,
        required: bool | None = None,
        parameters: Mapping[str, Any] | None = None,
        actor: User,
    ) -> Field:
        field = self.get_field(field_id)
        if field.is_removed:
            raise KeyError(field_id)
        self._editable_state(field.state_id, actor, "update this field")
        new_name = clean_text(name, "name", MAX_FIELD_NAME) if name is not None else field.name
        new_description = (
            clean_text(description, "description", MAX_FIELD_DESCRIPTION, required=False, multiline=True)
            if description is not None
            else field.description
        )
        new_required = field.required if required is None else bool(required)
        params = prepare_parameters(field.type, parameters if parameters is not None else field.parameters)
        self._check_list_default(field, params)
        self._check_field_name_unique(field.state_id, new_name, exclude_id=field_id)
        self.conn.execute(
            "UPDATE fields SET name = ?, description = ?, required = ?, parameters = ? WHERE id = ?",
            (new_name, new_description, int(new_required), json.dumps(params), field_id),
        )
        self.conn.commit()
        return self.get_field(field_id)

    def set_field_position(self, field_id: int, position: int, *, actor: User) -> Field:
        """Move a field to *position* (1-based), shifting its neighbours."""
        field = self.get_field(field_id)
        if field.is_removed:
            raise KeyError(field_id)
        self._editable_state(field.state_id, actor, "update this field")
        if position < 1:
            msg = "Position must be a positive number."
            raise ValueError(msg)
        new_position = min(position, self._count_fields(field.state_id))
        old_position = field.position
        if new_position == old_position:
            return field
        try:
            if new_position < old_position:
                self.conn.execute(
                    "UPDATE fields SET position = position + 1 WHERE state_id = ? AND removed_at IS NULL"
                    " AND position >= ? AND position < ?",
                    (field.state_id, new_position, old_position),
                )
            else:
                self.conn.execute(
                    "UPDATE fields SET position = position - 1 WHERE state_id = ? AND removed_at IS NULL"
                    " AND position > ? AND position <= ?",
                    (field.state_id, old_position, new_position),
                )
            self.conn.execute("UPDATE fields SET position = ? WHERE id = ?", (new_position, field_id))
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        return self.get_field(field_id)

    def delete_field(self, field_id: int, *, actor: User) -> bool:
        """Remove a field. Returns True when it was hard-deleted.

        A field that already holds issue values is only marked as removed so
        the history stays intact.
        """
        field = self.get_field(field_id)
        if field.is_removed:
            raise KeyError(field_id)
        self._editable_state(field.state_id, actor, "delete this field")
        used = self.conn.execute("SELECT 1 FROM field_values WHERE field_id = ? LIMIT 1", (field_id,)).fetchone()
        try:
            if used is None:
                self.conn.execute("DELETE FROM fields WHERE id = ?", (field_id,))
            else:
                self.conn.execute("UPDATE fields SET removed_at = ? WHERE id = ?", (_now_ts(), field_id))
            self.conn.execute(
                "UPDATE fields SET position = position - 1 WHERE state_id = ? AND removed_at IS NULL AND position > ?",
                (field.state_id, field.position),
            )
        except Exception:
            self.conn.rollback()
            raise
        self.conn.commit()
        logger.info("Field deleted: %s", field.name, extra={"actor": actor.email, "args_data": {"hard": used is None}})
        return used is None

    # -- Field permissions ---------------------------------------------------

    def get_field_permissions(self, field_id: int) -> dict[str, Any]:
        """Return ``{"roles": {role: access}, "groups": {group_id: access}}``."""
        self.get_field(field_id)
        roles = self.conn.execute(
            "SELECT role, permission FROM field_role_permissions WHERE field_id = ?", (field_id,)
        ).fetchall()
        groups = self.conn.execute(
            "SELECT group_id, permission FROM field_group_permissions WHERE field_id = ?", (field_id,)
        ).fetchall()
        return {
            "roles": {r["role"]: r["permission"] for r in roles},
            "groups": {g["group_id"]: g["permission"] for g in groups},
        }

    def set_field_role_permission(self, field_id: int, role: str, access: str | None, *, actor: User) -> None:
        """Grant *role* R or RW access to the field, or revoke it with None."""
        self.get_field(field_id)
        require_admin(actor, "set field permissions")
        if role not in SYSTEM_ROLES:
            msg = f"Unknown role '{role}'. Valid roles: {', '.join(sorted(SYSTEM_ROLES))}"
            raise ValueError(msg)
        if access is not None and access not in FIELD_ACCESS:
            msg = f"Invalid access '{access}'. Must be one of: {', '.join(sorted(FIELD_ACCESS))}"
            raise ValueError(msg)
        self.conn.execute("DELETE FROM field_role_permissions WHERE field_id = ? AND role = ?", (field_id, role))
        if access is not None:
            self.conn.execute(
                "INSERT INTO field_role_permissions (field_id, role, permission) VALUES (?, ?, ?)",
                (field_id, role, access),
            )
        self.conn.commit()

    def set_field_group_permission(self, field_id: int, group_id: int, access: str | None, *, actor: User) -> None:
        """Grant a group R or RW access to the field, or revoke it with None."""
        field = self.get_field(field_id)
        require_admin(actor, "set field permissions")
        template = self.get_template(self.get_state(field.state_id).template_id)
        group = self.get_group(group_id)
        if group.project_id not in (None, template.project_id):
            msg = f"Group '{group.name}' belongs to another project."
            raise ValueError(msg)
        if access is not None and access not in FIELD_ACCESS:
            msg = f"Invalid access '{access}'. Must be one of: {', '.join(sorted(FIELD_ACCESS))}"
            raise ValueError(msg)
        self.conn.execute(
            "DELETE FROM field_group_permissions WHERE field_id = ? AND group_id = ?", (field_id, group_id)
        )
        if access is not None:
            self.conn.execute(
                "INSERT INTO field_group_permissions (field_id, group_id, permission) VALUES (?, ?, ?)",
                (field_id, group_id, access),
            )
        self.conn.commit()

    # -- List items ----------------------------------------------------------

    def _editable_list_field(self, field_id: int, actor: User, action: str) -> Field:
        field = self.get_field(field_id)
        if field.type != "list":
            msg = f"Field '{field.name}' is not a list."
            raise ValueError(msg)
        self._editable_state(field.state_id, actor, action)
        return field

    def create_list_item(self, field_id: int, value: int, text: str, *, actor: User) -> ListItem:
        self._editable_list_field(field_id, actor, "create new list item")
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            msg = "List item value must be a positive integer."
            raise ValueError(msg)
        text = clean_text(text, "text", MAX_LIST_ITEM_TEXT)
        try:
            cursor = self.conn.execute(
                "INSERT INTO list_items (field_id, value, text) VALUES (?, ?, ?)",
                (field_id, value, text),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Item with specified value or text already exists: {value} ({text})"
            raise ConflictError(msg) from None
        self.conn.commit()
        return self.get_list_item(int(cursor.lastrowid or 0))

    def get_list_item(self, item_id: int) -> ListItem:
        row = self.conn.execute("SELECT * FROM list_items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            raise KeyError(item_id)
        return ListItem.from_row(row)

    def list_list_items(self, field_id: int) -> list[ListItem]:
        rows = self.conn.execute("SELECT * FROM list_items WHERE field_id = ? ORDER BY value", (field_id,)).fetchall()
        return [ListItem.from_row(r) for r in rows]

    def _list_item_in_use(self, item: ListItem) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM field_values WHERE field_id = ? AND value = ? LIMIT 1",
            (item.field_id, item.value),
        ).fetchone()
        return row is not None

    def update_list_item(
        self,
        item_id: int,
        *,
        value: int | None = None,
        text: str | None = None,
        actor: User,
    ) -> ListItem:
        item = self.get_list_item(item_id)
        self._editable_list_field(item.field_id, actor, "update this list item")
        new_value = item.value if value is None else value
        if isinstance(new_value, bool) or not isinstance(new_value, int) or new_value < 1:
            msg = "List item value must be a positive integer."
            raise ValueError(msg)
        if new_value != item.value and self._list_item_in_use(item):
            msg = f"Item '{item.text}' is in use; its value cannot be changed."
            raise ConflictError(msg)
        new_text = clean_text(text, "text", MAX_LIST_ITEM_TEXT) if text is not None else item.text
        try:
            self.conn.execute(
                "UPDATE list_items SET value = ?, text = ? WHERE id = ?",
                (new_value, new_text, item_id),
            )
        except sqlite3.IntegrityError:
            self.conn.rollback()
            msg = f"Item with specified value or text already exists: {new_value} ({new_text})"
            raise ConflictError(msg) from None
        self.conn.commit()
        return self.get_list_item(item_id)

    def delete_list_item(self, item_id: int, *, actor: User) -> None:
        item = self.get_list_item(item_id)
        field = self._editable_list_field(item.field_id, actor, "delete this list item")
        if self._list_item_in_use(item):
            msg = f"Item '{item.text}' is in use and cannot be deleted."
            raise ConflictError(msg)
        if field.parameters.get("default") == item.value:
            params = {**field.parameters, "default": None}
            self.conn.execute("UPDATE fields SET parameters = ? WHERE id = ?", (json.dumps(params), field.id))
        self.conn.execute("DELETE FROM list_items WHERE id = ?", (item_id,))
        self.conn.commit()
