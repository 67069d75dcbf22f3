"""Tests for projects, templates, template permissions and template cloning."""

from __future__ import annotations

import pytest

from etraxis.core import EtraxisDB
from etraxis.db_base import AccessDeniedError, ConflictError
from etraxis.models import User
from tests._db_factory import Workflow


class TestProjects:
    def test_create_and_get(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", description="Customer issues", actor=admin)
        fetched = db.get_project(project.id)
        assert fetched.name == "Support"
        assert fetched.description == "Customer issues"
        assert fetched.suspended is False
        assert fetched.created_at > 0

    def test_duplicate_name(self, db: EtraxisDB, admin: User) -> None:
        db.create_project("Support", actor=admin)
        with pytest.raises(ConflictError):
            db.create_project("Support", actor=admin)

    def test_name_length(self, db: EtraxisDB, admin: User) -> None:
        with pytest.raises(ValueError, match="at most 25"):
            db.create_project("x" * 26, actor=admin)

    def test_non_admin(self, db: EtraxisDB, admin: User) -> None:
        bob = db.create_user("bob@example.com", "Bob", actor=admin)
        with pytest.raises(AccessDeniedError):
            db.create_project("Support", actor=bob)

    def test_list_filters(self, db: EtraxisDB, admin: User) -> None:
        db.create_project("Support", actor=admin)
        db.create_project("Archive", suspended=True, actor=admin)
        assert [p.name for p in db.list_projects()] == ["Archive", "Support"]
        assert [p.name for p in db.list_projects(suspended=False)] == ["Support"]
        assert [p.name for p in db.list_projects(search="arch")] == ["Archive"]

    def test_update(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        updated = db.update_project(project.id, name="Helpdesk", actor=admin)
        assert updated.name == "Helpdesk"

    def test_suspend_and_resume(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        assert db.suspend_project(project.id, actor=admin).suspended is True
        with pytest.raises(AccessDeniedError, match="already suspended"):
            db.suspend_project(project.id, actor=admin)
        assert db.resume_project(project.id, actor=admin).suspended is False
        with pytest.raises(AccessDeniedError, match="not suspended"):
            db.resume_project(project.id, actor=admin)

    def test_non_admin_learns_nothing_about_state(self, db: EtraxisDB, admin: User) -> None:
        bob = db.create_user("bob@example.com", "Bob", actor=admin)
        project = db.create_project("Support", suspended=True, actor=admin)
        with pytest.raises(AccessDeniedError, match="not allowed to suspend"):
            db.suspend_project(project.id, actor=bob)
        with pytest.raises(AccessDeniedError, match="not allowed to resume"):
            db.resume_project(project.id, actor=bob)

    def test_search_wildcards_are_literal(self, db: EtraxisDB, admin: User) -> None:
        db.create_project("Support", actor=admin)
        db.create_project("100% uptime", actor=admin)
        assert [p.name for p in db.list_projects(search="%")] == ["100% uptime"]
        assert db.list_projects(search="S_pport") == []

    def test_delete_empty_project(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        db.create_template(project.id, "Bug", "BUG", actor=admin)
        db.delete_project(project.id, actor=admin)
        assert db.list_templates() == []

    def test_project_with_issues_is_kept(self, workflow: Workflow) -> None:
        workflow.open_issue()
        with pytest.raises(ConflictError, match="has issues"):
            workflow.db.delete_project(workflow.project.id, actor=workflow.admin)


class TestTemplates:
    def test_new_template_is_locked(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        template = db.create_template(project.id, "Bug report", "BUG", critical_age=5, actor=admin)
        assert template.locked is True
        assert template.critical_age == 5
        assert template.frozen_time is None

    def test_prefix_and_name_unique_in_project(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        other = db.create_project("Sales", actor=admin)
        db.create_template(project.id, "Bug report", "BUG", actor=admin)
        db.create_template(other.id, "Bug report", "BUG", actor=admin)
        with pytest.raises(ConflictError):
            db.create_template(project.id, "Defect", "BUG", actor=admin)

    def test_ages_must_be_positive(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        with pytest.raises(ValueError, match="critical_age"):
            db.create_template(project.id, "Bug", "BUG", critical_age=0, actor=admin)

    def test_update_and_clear_ages(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        template = db.create_template(project.id, "Bug", "BUG", critical_age=5, frozen_time=30, actor=admin)
        updated = db.update_template(template.id, name="Defect", frozen_time=10, actor=admin)
        assert (updated.name, updated.critical_age, updated.frozen_time) == ("Defect", 5, 10)
        cleared = db.update_template(template.id, clear_critical_age=True, actor=admin)
        assert cleared.critical_age is None
        assert cleared.frozen_time == 10

    def test_lock_unlock(self, db: EtraxisDB, admin: User) -> None:
        project = db.create_project("Support", actor=admin)
        template = db.create_template(project.id, "Bug", "BUG", actor=admin)
        with pytest.raises(AccessDeniedError, match="already locked"):
            db.lock_template(template.id, actor=admin)
        assert db.unlock_template(template.id, actor=admin).locked is False
        assert db.lock_template(template.id, actor=admin).locked is True

    def test_list_by_project_and_lock(self, workflow: Workflow) -> None:
        db = workflow.db
        db.create_template(workflow.project.id, "Feature", "FEAT", actor=workflow.admin)
        assert [t.name for t in db.list_templates(project_id=workflow.project.id)] == ["Bug report", "Feature"]
        assert [t.name for t in db.list_templates(locked=True)] == ["Feature"]

    def test_delete_with_issues_refused(self, workflow: Workflow) -> None:
        workflow.open_issue()
        with pytest.raises(ConflictError):
            workflow.db.delete_template(workflow.template.id, actor=workflow.admin)

    def test_initial_state_id(self, workflow: Workflow) -> None:
        assert workflow.db.get_initial_state_id(workflow.template.id) == workflow.new.id


class TestTemplatePermissions:
    def test_set_replaces_role_grants(self, workflow: Workflow) -> None:
        db, tid = workflow.db, workflow.template.id
        db.set_template_role_permission(tid, "anyone", ["issue.view", "issue.create", "issue.view"], actor=workflow.admin)
        anyone = [e["permission"] for e in db.get_template_permissions(tid)["roles"] if e["role"] == "anyone"]
        assert anyone == ["issue.create", "issue.view"]

    def test_revoke_all(self, workflow: Workflow) -> None:
        db, tid = workflow.db, workflow.template.id
        db.set_template_group_permission(tid, workflow.developers.id, [], actor=workflow.admin)
        assert db.get_template_permissions(tid)["groups"] == []

    def test_unknown_permission_or_role(self, workflow: Workflow) -> None:
        db, tid = workflow.db, workflow.template.id
        with pytest.raises(ValueError, match="Unknown template permission"):
            db.set_template_role_permission(tid, "anyone", ["issue.fly"], actor=workflow.admin)
        with pytest.raises(ValueError, match="Unknown role"):
            db.set_template_role_permission(tid, "manager", ["issue.view"], actor=workflow.admin)

    def test_group_from_another_project(self, workflow: Workflow) -> None:
        db = workflow.db
        other = db.create_project("Sales", actor=workflow.admin)
        foreign = db.create_group("Sales team", project_id=other.id, actor=workflow.admin)
        with pytest.raises(ValueError, match="another project"):
            db.set_template_group_permission(workflow.template.id, foreign.id, ["issue.view"], actor=workflow.admin)


class TestCloneTemplate:
    def test_copies_the_whole_workflow(self, workflow: Workflow) -> None:
        db = workflow.db
        clone = db.clone_template(
            workflow.template.id, project_id=workflow.project.id, name="Bug copy", prefix="BUG2", actor=workflow.admin
        )
        assert clone.locked is True
        states = {s.name: s for s in db.list_states(clone.id)}
        assert set(states) == {"New", "Assigned", "Closed"}
        assert states["New"].type == "initial"
        assert states["Assigned"].responsible == "assign"

        fields = db.list_fields(states["New"].id)
        assert [f.name for f in fields] == ["Priority", "Description"]
        assert [i.text for i in db.list_list_items(fields[0].id)] == ["High", "Normal", "Low"]
        assert db.get_field_permissions(fields[0].id)["roles"] == {"anyone": "R", "author": "RW"}

        transitions = db.get_transitions(states["New"].id)
        assert transitions["roles"] == [{"state_id": states["Assigned"].id, "role": "author"}]
        assert db.get_responsible_groups(states["Assigned"].id) == [workflow.developers.id]

        original = db.get_template_permissions(workflow.template.id)
        copied = db.get_template_permissions(clone.id)
        assert copied == original

    def test_local_groups_dropped_across_projects(self, workflow: Workflow) -> None:
        db = workflow.db
        other = db.create_project("Sales", actor=workflow.admin)
        clone = db.clone_template(workflow.template.id, project_id=other.id, name="Bug", prefix="BUG", actor=workflow.admin)
        assert db.get_template_permissions(clone.id)["groups"] == []
        assigned = next(s for s in db.list_states(clone.id) if s.name == "Assigned")
        assert db.get_responsible_groups(assigned.id) == []
        new = next(s for s in db.list_states(clone.id) if s.name == "New")
        assert db.get_transitions(new.id)["groups"] == []

    def test_clone_conflict_leaves_nothing_behind(self, workflow: Workflow) -> None:
        db = workflow.db
        before = len(db.list_templates())
        with pytest.raises(ConflictError):
            db.clone_template(
                workflow.template.id, project_id=workflow.project.id, name="Bug report", prefix="X", actor=workflow.admin
            )
        assert len(db.list_templates()) == before
