"""Tests for the issue lifecycle: creation, the state machine, edits and watchers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from etraxis.db_base import AccessDeniedError, ConflictError, FieldValidationError
from tests._db_factory import Workflow


def _future_day(days: int = 3) -> str:
    return (datetime.now(UTC) + timedelta(days=days)).date().isoformat()


def _event_types(workflow: Workflow, issue_id: int) -> list[str]:
    return [e["type"] for e in workflow.db.get_events(issue_id, user=workflow.developer)]


class TestCreateIssue:
    def test_creates_in_initial_state(self, workflow: Workflow) -> None:
        issue = workflow.open_issue("Crash on start")
        assert issue.state_id == workflow.new.id
        assert issue.state_name == "New"
        assert issue.author_id == workflow.author.id
        assert issue.responsible_id is None
        assert issue.full_id == f"BUG-{issue.id:03d}"
        assert not issue.is_closed

    def test_records_creation_event(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        events = workflow.db.get_events(issue.id, user=workflow.author)
        assert [(e["type"], e["parameter"]) for e in events] == [("issue.created", "New")]

    def test_values_are_validated(self, workflow: Workflow) -> None:
        with pytest.raises(FieldValidationError) as excinfo:
            workflow.db.create_issue(workflow.template.id, "No priority", values={}, actor=workflow.author)
        assert str(workflow.priority.id) in excinfo.value.errors

    def test_unknown_list_item(self, workflow: Workflow) -> None:
        with pytest.raises(FieldValidationError):
            workflow.open_issue(priority=9)

    def test_locked_template(self, workflow: Workflow) -> None:
        workflow.db.lock_template(workflow.template.id, actor=workflow.admin)
        with pytest.raises(AccessDeniedError, match="not allowed to create"):
            workflow.open_issue()

    def test_suspended_project(self, workflow: Workflow) -> None:
        workflow.db.suspend_project(workflow.project.id, actor=workflow.admin)
        with pytest.raises(AccessDeniedError):
            workflow.open_issue()

    def test_without_create_grant(self, workflow: Workflow) -> None:
        workflow.db.set_template_role_permission(workflow.template.id, "anyone", [], actor=workflow.admin)
        with pytest.raises(AccessDeniedError):
            workflow.open_issue()
        with pytest.raises(AccessDeniedError):
            workflow.open_issue(actor=workflow.developer)

    def test_subject_is_required(self, workflow: Workflow) -> None:
        with pytest.raises(ValueError, match="subject cannot be empty"):
            workflow.open_issue("   ")

    def test_values_readable_after_creation(self, workflow: Workflow) -> None:
        issue = workflow.db.create_issue(
            workflow.template.id,
            "Crash",
            values={str(workflow.priority.id): "1", workflow.description.id: "Stack trace attached"},
            actor=workflow.author,
        )
        values = {v["field"]: v["value"] for v in workflow.db.get_values(issue.id, user=workflow.author)}
        assert values == {"Priority": 1, "Description": "Stack trace attached"}


class TestChangeState:
    def test_assign(self, workflow: Workflow) -> None:
        issue = workflow.assign(workflow.open_issue())
        assert issue.state_id == workflow.assigned.id
        assert issue.responsible_id == workflow.developer.id
        assert _event_types(workflow, issue.id) == ["issue.created", "state.changed", "issue.assigned"]

    def test_assign_requires_responsible(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(ValueError, match="Responsible is required"):
            workflow.db.change_state(issue.id, workflow.assigned.id, actor=workflow.author)

    def test_responsible_must_be_eligible(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError, match="cannot be responsible"):
            workflow.db.change_state(
                issue.id, workflow.assigned.id, responsible_id=workflow.outsider.id, actor=workflow.author
            )

    def test_close(self, workflow: Workflow) -> None:
        issue = workflow.close(workflow.open_issue())
        assert issue.is_closed
        assert issue.responsible_id is None
        assert _event_types(workflow, issue.id)[-1] == "issue.closed"
        values = {v["field"]: v["value"] for v in workflow.db.get_values(issue.id, user=workflow.developer)}
        assert values["Resolution"] == "Fixed"

    def test_string_values_are_rendered(self, workflow: Workflow) -> None:
        db = workflow.db
        db.lock_template(workflow.template.id, actor=workflow.admin)
        db.update_field(
            workflow.resolution.id,
            parameters={"length": 100, "pcre_search": r"#(\d+)", "pcre_replace": r"BUG-\1"},
            actor=workflow.admin,
        )
        db.unlock_template(workflow.template.id, actor=workflow.admin)
        issue = workflow.close(workflow.open_issue(), resolution="Duplicate of #7")
        values = {v["field"]: v for v in db.get_values(issue.id, user=workflow.developer)}
        assert values["Resolution"]["value"] == "Duplicate of #7"
        assert values["Resolution"]["rendered"] == "Duplicate of BUG-7"
        assert values["Priority"]["rendered"] == values["Priority"]["value"] == 2

    def test_only_available_transitions(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        names = [s.name for s in workflow.db.get_transitions_by_user(issue.id, workflow.author)]
        assert names == ["Assigned"]
        with pytest.raises(AccessDeniedError, match="not allowed to move"):
            workflow.db.change_state(issue.id, workflow.closed.id, values={}, actor=workflow.author)

    def test_developer_transitions_from_group(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        names = [s.name for s in workflow.db.get_transitions_by_user(issue.id, workflow.developer)]
        assert names == ["Assigned", "Closed"]

    def test_outsider_has_no_transitions(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        assert workflow.db.get_transitions_by_user(issue.id, workflow.outsider) == []
        with pytest.raises(AccessDeniedError):
            workflow.db.change_state(
                issue.id, workflow.assigned.id, responsible_id=workflow.developer.id, actor=workflow.outsider
            )

    def test_reopen_of_migrated_closed_issue(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.close(workflow.open_issue())
        # A final state with outgoing transitions only exists in imported data.
        db.conn.execute(
            "INSERT INTO state_role_transitions (from_state_id, to_state_id, role) VALUES (?, ?, 'author')",
            (workflow.closed.id, workflow.new.id),
        )
        db.conn.commit()
        reopened = db.change_state(issue.id, workflow.new.id, values={workflow.priority.id: 1}, actor=workflow.author)
        assert not reopened.is_closed
        assert _event_types(workflow, issue.id)[-1] == "issue.reopened"


class TestUpdateIssue:
    def test_subject_and_value_changes(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue("Crash", priority=2)
        updated = db.update_issue(issue.id, subject="Crash on login", values={workflow.priority.id: 1}, actor=workflow.author)
        assert updated.subject == "Crash on login"
        changes = db.get_changes(issue.id, user=workflow.author)
        assert [(c["field"], c["old_value"], c["new_value"]) for c in changes] == [
            ("subject", "Crash", "Crash on login"),
            ("Priority", 2, 1),
        ]
        assert _event_types(workflow, issue.id) == ["issue.created", "issue.edited"]

    def test_nothing_changed_records_nothing(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue("Crash", priority=2)
        db.update_issue(issue.id, subject="Crash", values={workflow.priority.id: 2}, actor=workflow.author)
        assert _event_types(workflow, issue.id) == ["issue.created"]
        assert db.get_changes(issue.id, user=workflow.author) == []

    def test_read_only_field_is_rejected(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.close(workflow.open_issue())
        with pytest.raises(FieldValidationError):
            db.update_issue(issue.id, values={workflow.resolution.id: "Won't fix"}, actor=workflow.author)
        edited = db.update_issue(issue.id, values={workflow.resolution.id: "Won't fix"}, actor=workflow.developer)
        assert edited.id == issue.id
        values = {v["field"]: v["value"] for v in db.get_values(issue.id, user=workflow.developer)}
        assert values["Resolution"] == "Won't fix"

    def test_invalid_value(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(FieldValidationError):
            workflow.db.update_issue(issue.id, values={workflow.priority.id: 42}, actor=workflow.author)

    def test_outsider_cannot_edit(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError, match="not allowed to edit"):
            workflow.db.update_issue(issue.id, subject="Mine now", actor=workflow.outsider)


class TestReassign:
    def test_reassign(self, workflow: Workflow) -> None:
        db = workflow.db
        second = db.create_user("dev2@example.com", "Deb Developer", actor=workflow.admin)
        db.add_members(workflow.developers.id, [second.id], actor=workflow.admin)
        issue = workflow.assign(workflow.open_issue())
        updated = db.reassign_issue(issue.id, second.id, actor=workflow.developer)
        assert updated.responsible_id == second.id
        assert _event_types(workflow, issue.id)[-1] == "issue.reassigned"

    def test_same_responsible_is_a_conflict(self, workflow: Workflow) -> None:
        issue = workflow.assign(workflow.open_issue())
        with pytest.raises(ConflictError, match="already responsible"):
            workflow.db.reassign_issue(issue.id, workflow.developer.id, actor=workflow.developer)

    def test_unassigned_issue_cannot_be_reassigned(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError):
            workflow.db.reassign_issue(issue.id, workflow.developer.id, actor=workflow.developer)


class TestSuspendResume:
    def test_suspend_and_resume(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue()
        suspended = db.suspend_issue(issue.id, _future_day(), actor=workflow.developer)
        assert suspended.is_suspended
        with pytest.raises(AccessDeniedError):
            db.update_issue(issue.id, subject="Edited while suspended", actor=workflow.developer)
        resumed = db.resume_issue(issue.id, actor=workflow.developer)
        assert not resumed.is_suspended
        assert _event_types(workflow, issue.id)[-2:] == ["issue.suspended", "issue.resumed"]

    def test_date_must_be_in_the_future(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(ValueError, match="in the future"):
            workflow.db.suspend_issue(issue.id, "2000-01-01", actor=workflow.developer)
        with pytest.raises(ValueError, match="YYYY-MM-DD"):
            workflow.db.suspend_issue(issue.id, "tomorrow", actor=workflow.developer)

    def test_author_cannot_suspend(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError):
            workflow.db.suspend_issue(issue.id, _future_day(), actor=workflow.author)

    def test_resume_needs_suspension(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError):
            workflow.db.resume_issue(issue.id, actor=workflow.developer)


class TestDeleteAndClone:
    def test_delete(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        workflow.db.delete_issue(issue.id, actor=workflow.developer)
        with pytest.raises(KeyError):
            workflow.db.get_issue(issue.id)

    def test_author_cannot_delete(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError):
            workflow.db.delete_issue(issue.id, actor=workflow.author)

    def test_clone_links_origin(self, workflow: Workflow) -> None:
        origin = workflow.open_issue("Crash on start")
        clone = workflow.db.clone_issue(origin.id, values={workflow.priority.id: 3}, actor=workflow.author)
        assert clone.origin_id == origin.id
        assert clone.subject == "Crash on start"
        assert clone.id != origin.id

    def test_clone_requires_view(self, workflow: Workflow) -> None:
        origin = workflow.open_issue()
        with pytest.raises(AccessDeniedError, match="not allowed to view"):
            workflow.db.clone_issue(origin.id, values={workflow.priority.id: 3}, actor=workflow.outsider)


class TestListIssues:
    def test_newest_first_and_visibility(self, workflow: Workflow) -> None:
        first = workflow.open_issue("First")
        second = workflow.open_issue("Second")
        mine = workflow.open_issue("Outsider's", actor=workflow.outsider)
        page = workflow.db.list_issues(user=workflow.developer)
        assert [r["id"] for r in page["results"]] == [mine.id, second.id, first.id]
        outsider_page = workflow.db.list_issues(user=workflow.outsider)
        assert [r["id"] for r in outsider_page["results"]] == [mine.id]
        assert outsider_page["total"] == 1

    def test_pagination(self, workflow: Workflow) -> None:
        for n in range(5):
            workflow.open_issue(f"Issue {n}")
        page = workflow.db.list_issues(user=workflow.developer, limit=2, offset=2)
        assert [r["subject"] for r in page["results"]] == ["Issue 2", "Issue 1"]
        assert page["total"] == 5
        assert page["has_more"] is True
        last = workflow.db.list_issues(user=workflow.developer, limit=2, offset=4)
        assert last["has_more"] is False

    def test_filters(self, workflow: Workflow) -> None:
        db = workflow.db
        open_one = workflow.open_issue("Login fails")
        closed_one = workflow.close(workflow.open_issue("Logout fails"))
        by_state = db.list_issues(user=workflow.developer, closed=True)
        assert [r["id"] for r in by_state["results"]] == [closed_one.id]
        by_search = db.list_issues(user=workflow.developer, search="login")
        assert [r["id"] for r in by_search["results"]] == [open_one.id]
        assert db.list_issues(user=workflow.developer, search="L_gin")["results"] == []
        assigned = db.list_issues(user=workflow.developer, state_id=workflow.new.id)
        assert [r["id"] for r in assigned["results"]] == [open_one.id]

    def test_critical_filter(self, workflow: Workflow) -> None:
        db = workflow.db
        db.update_template(workflow.template.id, critical_age=2, actor=workflow.admin)
        old = workflow.open_issue("Old")
        workflow.open_issue("Fresh")
        long_ago = int((datetime.now(UTC) - timedelta(days=10)).timestamp())
        db.conn.execute("UPDATE issues SET created_at = ? WHERE id = ?", (long_ago, old.id))
        db.conn.commit()
        critical = db.list_issues(user=workflow.developer, critical=True)
        assert [r["id"] for r in critical["results"]] == [old.id]

    def test_bad_paging(self, workflow: Workflow) -> None:
        with pytest.raises(ValueError):
            workflow.db.list_issues(user=workflow.developer, limit=0)


class TestWatchersAndReads:
    def test_watch_skips_invisible(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue()
        assert db.watch_issues([issue.id, 999], user=workflow.outsider) == []
        assert db.watch_issues([issue.id, issue.id], user=workflow.developer) == [issue.id]
        assert [u.id for u in db.get_watchers(issue.id, user=workflow.author)] == [workflow.developer.id]
        assert db.unwatch_issues([issue.id, 999], user=workflow.developer) == [issue.id, 999]
        assert db.get_watchers(issue.id, user=workflow.author) == []

    def test_read_marks(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue()
        assert db.get_last_read(issue.id, user=workflow.author) is None
        assert db.mark_as_read([issue.id], user=workflow.author) == [issue.id]
        assert db.get_last_read(issue.id, user=workflow.author) is not None
        db.mark_as_unread([issue.id], user=workflow.author)
        assert db.get_last_read(issue.id, user=workflow.author) is None
        assert db.mark_as_read([issue.id], user=workflow.outsider) == []
