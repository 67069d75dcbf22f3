"""Tests for states, transitions and responsible groups."""

from __future__ import annotations

import pytest

from etraxis.core import EtraxisDB
from etraxis.db_base import AccessDeniedError, ConflictError
from etraxis.models import Template, User
from tests._db_factory import Workflow


@pytest.fixture
def template(db: EtraxisDB, admin: User) -> Template:
    project = db.create_project("Support", actor=admin)
    return db.create_template(project.id, "Bug report", "BUG", actor=admin)


class TestStates:
    def test_create(self, db: EtraxisDB, admin: User, template: Template) -> None:
        state = db.create_state(template.id, "Opened", type="initial", actor=admin)
        assert (state.name, state.type, state.responsible) == ("Opened", "initial", "keep")
        assert db.get_initial_state_id(template.id) == state.id

    def test_second_initial_demotes_first(self, db: EtraxisDB, admin: User, template: Template) -> None:
        first = db.create_state(template.id, "Opened", type="initial", actor=admin)
        second = db.create_state(template.id, "Triage", type="initial", actor=admin)
        assert db.get_state(first.id).type == "intermediate"
        assert db.get_initial_state_id(template.id) == second.id

    def test_final_state_removes_responsible(self, db: EtraxisDB, admin: User, template: Template) -> None:
        state = db.create_state(template.id, "Done", type="final", responsible="assign", actor=admin)
        assert state.responsible == "remove"
        assert state.is_final

    def test_invalid_type_and_responsible(self, db: EtraxisDB, admin: User, template: Template) -> None:
        with pytest.raises(ValueError, match="Invalid state type"):
            db.create_state(template.id, "Odd", type="halfway", actor=admin)
        with pytest.raises(ValueError, match="Invalid responsible"):
            db.create_state(template.id, "Odd", responsible="someone", actor=admin)

    def test_duplicate_name(self, db: EtraxisDB, admin: User, template: Template) -> None:
        db.create_state(template.id, "Opened", actor=admin)
        with pytest.raises(ConflictError):
            db.create_state(template.id, "Opened", actor=admin)

    def test_template_must_be_locked(self, db: EtraxisDB, admin: User, template: Template) -> None:
        db.unlock_template(template.id, actor=admin)
        with pytest.raises(AccessDeniedError, match="must be locked"):
            db.create_state(template.id, "Opened", actor=admin)

    def test_list_order(self, db: EtraxisDB, admin: User, template: Template) -> None:
        db.create_state(template.id, "Closed", type="final", actor=admin)
        db.create_state(template.id, "Review", actor=admin)
        db.create_state(template.id, "Assigned", actor=admin)
        db.create_state(template.id, "New", type="initial", actor=admin)
        assert [s.name for s in db.list_states(template.id)] == ["New", "Assigned", "Review", "Closed"]

    def test_update_clears_groups_when_not_assigning(self, workflow: Workflow) -> None:
        db = workflow.db
        db.lock_template(workflow.template.id, actor=workflow.admin)
        updated = db.update_state(workflow.assigned.id, name="In progress", responsible="keep", actor=workflow.admin)
        assert updated.name == "In progress"
        assert db.get_responsible_groups(workflow.assigned.id) == []

    def test_set_initial(self, db: EtraxisDB, admin: User, template: Template) -> None:
        first = db.create_state(template.id, "Opened", type="initial", actor=admin)
        other = db.create_state(template.id, "Triage", actor=admin)
        final = db.create_state(template.id, "Done", type="final", actor=admin)
        db.set_initial_state(other.id, actor=admin)
        assert db.get_state(first.id).type == "intermediate"
        assert db.get_initial_state_id(template.id) == other.id
        with pytest.raises(ValueError, match="final state cannot be made initial"):
            db.set_initial_state(final.id, actor=admin)

    def test_delete_unused(self, db: EtraxisDB, admin: User, template: Template) -> None:
        state = db.create_state(template.id, "Opened", actor=admin)
        db.delete_state(state.id, actor=admin)
        with pytest.raises(KeyError):
            db.get_state(state.id)

    def test_delete_used_state_refused(self, workflow: Workflow) -> None:
        workflow.open_issue()
        workflow.db.lock_template(workflow.template.id, actor=workflow.admin)
        with pytest.raises(ConflictError, match="used by issues"):
            workflow.db.delete_state(workflow.new.id, actor=workflow.admin)


class TestTransitions:
    def test_set_and_replace(self, db: EtraxisDB, admin: User, template: Template) -> None:
        a = db.create_state(template.id, "A", type="initial", actor=admin)
        b = db.create_state(template.id, "B", actor=admin)
        db.set_role_transitions(a.id, b.id, ["author", "responsible", "author"], actor=admin)
        assert db.get_transitions(a.id)["roles"] == [
            {"state_id": b.id, "role": "author"},
            {"state_id": b.id, "role": "responsible"},
        ]
        db.set_role_transitions(a.id, b.id, [], actor=admin)
        assert db.get_transitions(a.id)["roles"] == []

    def test_unlocked_template_is_fine(self, workflow: Workflow) -> None:
        db = workflow.db
        db.set_role_transitions(workflow.new.id, workflow.closed.id, ["author"], actor=workflow.admin)
        roles = db.get_transitions(workflow.new.id)["roles"]
        assert {"state_id": workflow.closed.id, "role": "author"} in roles

    def test_unlocked_template_takes_groups_and_grants(self, workflow: Workflow) -> None:
        db = workflow.db
        assert not db.get_template(workflow.template.id).locked
        db.set_responsible_groups(workflow.assigned.id, [], actor=workflow.admin)
        assert db.get_responsible_groups(workflow.assigned.id) == []
        db.set_template_role_permission(workflow.template.id, "author", ["issue.view"], actor=workflow.admin)
        with pytest.raises(AccessDeniedError, match="must be locked"):
            db.create_state(workflow.template.id, "Review", actor=workflow.admin)

    def test_final_state_has_no_transitions(self, workflow: Workflow) -> None:
        with pytest.raises(AccessDeniedError, match="cannot have transitions"):
            workflow.db.set_role_transitions(workflow.closed.id, workflow.new.id, ["author"], actor=workflow.admin)

    def test_states_of_different_templates(self, db: EtraxisDB, admin: User, template: Template) -> None:
        other = db.create_template(template.project_id, "Feature", "FEAT", actor=admin)
        a = db.create_state(template.id, "A", actor=admin)
        b = db.create_state(other.id, "B", actor=admin)
        with pytest.raises(ValueError, match="same template"):
            db.set_role_transitions(a.id, b.id, ["author"], actor=admin)

    def test_unknown_role(self, db: EtraxisDB, admin: User, template: Template) -> None:
        a = db.create_state(template.id, "A", actor=admin)
        b = db.create_state(template.id, "B", actor=admin)
        with pytest.raises(ValueError, match="Unknown role"):
            db.set_role_transitions(a.id, b.id, ["boss"], actor=admin)

    def test_group_transitions(self, workflow: Workflow) -> None:
        groups = workflow.db.get_transitions(workflow.new.id)["groups"]
        assert {"state_id": workflow.assigned.id, "group_id": workflow.developers.id} in groups
        assert {"state_id": workflow.closed.id, "group_id": workflow.developers.id} in groups

    def test_non_admin(self, workflow: Workflow) -> None:
        with pytest.raises(AccessDeniedError):
            workflow.db.set_role_transitions(
                workflow.new.id, workflow.closed.id, ["author"], actor=workflow.developer
            )


class TestResponsibles:
    def test_groups_and_members(self, workflow: Workflow) -> None:
        db = workflow.db
        assert db.get_responsible_groups(workflow.assigned.id) == [workflow.developers.id]
        assert [u.id for u in db.get_responsibles(workflow.assigned.id)] == [workflow.developer.id]

    def test_disabled_members_are_skipped(self, workflow: Workflow) -> None:
        db = workflow.db
        db.disable_users([workflow.developer.id], actor=workflow.admin)
        assert db.get_responsibles(workflow.assigned.id) == []

    def test_state_must_assign(self, workflow: Workflow) -> None:
        with pytest.raises(AccessDeniedError, match="does not assign"):
            workflow.db.set_responsible_groups(workflow.new.id, [workflow.developers.id], actor=workflow.admin)

    def test_foreign_group(self, workflow: Workflow) -> None:
        db = workflow.db
        other = db.create_project("Sales", actor=workflow.admin)
        foreign = db.create_group("Sales team", project_id=other.id, actor=workflow.admin)
        with pytest.raises(ValueError, match="another project"):
            db.set_responsible_groups(workflow.assigned.id, [foreign.id], actor=workflow.admin)
