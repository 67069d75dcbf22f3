"""Tests for state fields, field permissions and list items."""

from __future__ import annotations

import pytest

from etraxis.db_base import AccessDeniedError, ConflictError
from tests._db_factory import Workflow


@pytest.fixture
def locked(workflow: Workflow) -> Workflow:
    workflow.template = workflow.db.lock_template(workflow.template.id, actor=workflow.admin)
    return workflow


class TestCreateField:
    def test_appended_at_the_end(self, locked: Workflow) -> None:
        db = locked.db
        field = db.create_field(locked.new.id, "Version", "string", parameters={"length": 20}, actor=locked.admin)
        assert field.position == 3
        assert field.parameters["length"] == 20
        assert [f.name for f in db.list_fields(locked.new.id)] == ["Priority", "Description", "Version"]

    def test_template_must_be_locked(self, workflow: Workflow) -> None:
        with pytest.raises(AccessDeniedError, match="must be locked"):
            workflow.db.create_field(workflow.new.id, "Version", "string", actor=workflow.admin)

    def test_name_unique_within_state(self, locked: Workflow) -> None:
        with pytest.raises(ConflictError):
            locked.db.create_field(locked.new.id, "Priority", "number", actor=locked.admin)
        other = locked.db.create_field(locked.closed.id, "Priority", "number", actor=locked.admin)
        assert other.state_id == locked.closed.id

    def test_bad_parameters(self, locked: Workflow) -> None:
        with pytest.raises(ValueError, match="Unknown field type"):
            locked.db.create_field(locked.new.id, "Colour", "color", actor=locked.admin)
        with pytest.raises(ValueError, match="Maximum value should be greater"):
            locked.db.create_field(
                locked.new.id, "Count", "number", parameters={"minimum": 5, "maximum": 1}, actor=locked.admin
            )

    def test_list_default_needs_items(self, locked: Workflow) -> None:
        with pytest.raises(ValueError, match="no items yet"):
            locked.db.create_field(locked.new.id, "Severity", "list", parameters={"default": 1}, actor=locked.admin)


class TestUpdateField:
    def test_update(self, locked: Workflow) -> None:
        updated = locked.db.update_field(
            locked.resolution.id, name="Outcome", required=True, parameters={"length": 50}, actor=locked.admin
        )
        assert (updated.name, updated.required, updated.parameters["length"]) == ("Outcome", True, 50)

    def test_list_default_must_be_an_item(self, locked: Workflow) -> None:
        db = locked.db
        assert db.update_field(locked.priority.id, parameters={"default": 3}, actor=locked.admin).parameters["default"] == 3
        with pytest.raises(ValueError, match="not one of the list items"):
            db.update_field(locked.priority.id, parameters={"default": 9}, actor=locked.admin)

    def test_set_position(self, locked: Workflow) -> None:
        db = locked.db
        version = db.create_field(locked.new.id, "Version", "string", actor=locked.admin)
        db.set_field_position(version.id, 1, actor=locked.admin)
        assert [f.name for f in db.list_fields(locked.new.id)] == ["Version", "Priority", "Description"]
        db.set_field_position(version.id, 99, actor=locked.admin)
        assert [f.name for f in db.list_fields(locked.new.id)] == ["Priority", "Description", "Version"]
        with pytest.raises(ValueError, match="positive"):
            db.set_field_position(version.id, 0, actor=locked.admin)


class TestDeleteField:
    def test_unused_field_is_hard_deleted(self, locked: Workflow) -> None:
        db = locked.db
        assert db.delete_field(locked.resolution.id, actor=locked.admin) is True
        with pytest.raises(KeyError):
            db.get_field(locked.resolution.id)

    def test_used_field_is_only_marked_removed(self, workflow: Workflow) -> None:
        db = workflow.db
        workflow.open_issue()
        db.lock_template(workflow.template.id, actor=workflow.admin)
        assert db.delete_field(workflow.priority.id, actor=workflow.admin) is False
        assert db.get_field(workflow.priority.id).is_removed
        assert [f.name for f in db.list_fields(workflow.new.id)] == ["Description"]
        assert db.get_field(workflow.description.id).position == 1
        assert len(db.list_fields(workflow.new.id, include_removed=True)) == 2
        with pytest.raises(KeyError):
            db.delete_field(workflow.priority.id, actor=workflow.admin)

    def test_removed_name_can_be_reused(self, workflow: Workflow) -> None:
        db = workflow.db
        workflow.open_issue()
        db.lock_template(workflow.template.id, actor=workflow.admin)
        db.delete_field(workflow.priority.id, actor=workflow.admin)
        again = db.create_field(workflow.new.id, "Priority", "number", actor=workflow.admin)
        assert again.position == 2


class TestFieldPermissions:
    def test_grants(self, workflow: Workflow) -> None:
        perms = workflow.db.get_field_permissions(workflow.priority.id)
        assert perms == {"roles": {"anyone": "R", "author": "RW"}, "groups": {workflow.developers.id: "RW"}}

    def test_revoke(self, workflow: Workflow) -> None:
        db = workflow.db
        db.set_field_role_permission(workflow.priority.id, "author", None, actor=workflow.admin)
        db.set_field_group_permission(workflow.priority.id, workflow.developers.id, None, actor=workflow.admin)
        assert db.get_field_permissions(workflow.priority.id) == {"roles": {"anyone": "R"}, "groups": {}}

    def test_invalid_access(self, workflow: Workflow) -> None:
        with pytest.raises(ValueError, match="Invalid access"):
            workflow.db.set_field_role_permission(workflow.priority.id, "anyone", "W", actor=workflow.admin)

    def test_non_admin(self, workflow: Workflow) -> None:
        with pytest.raises(AccessDeniedError):
            workflow.db.set_field_role_permission(workflow.priority.id, "anyone", "RW", actor=workflow.author)


class TestListItems:
    def test_items_sorted_by_value(self, locked: Workflow) -> None:
        db = locked.db
        db.create_list_item(locked.priority.id, 4, "Trivial", actor=locked.admin)
        assert [i.text for i in db.list_list_items(locked.priority.id)] == ["High", "Normal", "Low", "Trivial"]

    def test_duplicates_and_bad_values(self, locked: Workflow) -> None:
        db = locked.db
        with pytest.raises(ConflictError):
            db.create_list_item(locked.priority.id, 1, "Urgent", actor=locked.admin)
        with pytest.raises(ConflictError):
            db.create_list_item(locked.priority.id, 7, "High", actor=locked.admin)
        with pytest.raises(ValueError, match="positive integer"):
            db.create_list_item(locked.priority.id, 0, "Zero", actor=locked.admin)

    def test_only_for_list_fields(self, locked: Workflow) -> None:
        with pytest.raises(ValueError, match="is not a list"):
            locked.db.create_list_item(locked.description.id, 1, "One", actor=locked.admin)

    def test_item_in_use(self, workflow: Workflow) -> None:
        db = workflow.db
        workflow.open_issue(priority=2)
        db.lock_template(workflow.template.id, actor=workflow.admin)
        normal = next(i for i in db.list_list_items(workflow.priority.id) if i.value == 2)
        with pytest.raises(ConflictError, match="in use"):
            db.update_list_item(normal.id, value=5, actor=workflow.admin)
        with pytest.raises(ConflictError, match="in use"):
            db.delete_list_item(normal.id, actor=workflow.admin)
        assert db.update_list_item(normal.id, text="Medium", actor=workflow.admin).text == "Medium"

    def test_deleting_default_item_clears_default(self, locked: Workflow) -> None:
        db = locked.db
        db.update_field(locked.priority.id, parameters={"default": 3}, actor=locked.admin)
        low = next(i for i in db.list_list_items(locked.priority.id) if i.value == 3)
        db.delete_list_item(low.id, actor=locked.admin)
        assert db.get_field(locked.priority.id).parameters["default"] is None
        assert [i.value for i in db.list_list_items(locked.priority.id)] == [1, 2]
