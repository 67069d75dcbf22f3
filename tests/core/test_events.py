"""Tests for the issue history and comments."""

from __future__ import annotations

import pytest

from etraxis.db_base import AccessDeniedError
from tests._db_factory import Workflow


class TestEvents:
    def test_history_is_oldest_first(self, workflow: Workflow) -> None:
        issue = workflow.close(workflow.open_issue())
        events = workflow.db.get_events(issue.id, user=workflow.developer)
        assert [(e["type"], e["parameter"]) for e in events] == [
            ("issue.created", "New"),
            ("state.changed", "Assigned"),
            ("issue.assigned", "Dan Developer"),
            ("issue.closed", "Closed"),
        ]
        assert events[0]["user"] == "Alice Author"
        assert events[-1]["user_id"] == workflow.developer.id

    def test_hidden_from_outsiders(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError):
            workflow.db.get_events(issue.id, user=workflow.outsider)

    def test_long_parameter_is_truncated(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue()
        db._record_event(issue.id, "issue.edited", workflow.author.id, "x" * 300)
        db.conn.commit()
        assert len(db.get_events(issue.id, user=workflow.author)[-1]["parameter"] or "") == 100


class TestChanges:
    def test_unreadable_fields_are_hidden(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue("Crash", priority=2)
        db.update_issue(issue.id, subject="Crash!", values={workflow.priority.id: 3}, actor=workflow.author)
        db.set_field_role_permission(workflow.priority.id, "anyone", None, actor=workflow.admin)
        db.set_field_role_permission(workflow.priority.id, "author", None, actor=workflow.admin)
        fields = [c["field"] for c in db.get_changes(issue.id, user=workflow.author)]
        assert fields == ["subject"]
        fields = [c["field"] for c in db.get_changes(issue.id, user=workflow.developer)]
        assert fields == ["subject", "Priority"]


class TestComments:
    def test_public_comment(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue()
        comment = db.add_comment(issue.id, "Can reproduce.\nOn every start.", actor=workflow.author)
        assert comment["private"] is False
        assert comment["user"] == "Alice Author"
        comments = db.get_comments(issue.id, user=workflow.developer)
        assert [c["body"] for c in comments] == ["Can reproduce.\nOn every start."]
        assert db.get_events(issue.id, user=workflow.author)[-1]["type"] == "comment.public"

    def test_private_comment_is_hidden(self, workflow: Workflow) -> None:
        db = workflow.db
        issue = workflow.open_issue()
        db.add_comment(issue.id, "Public note", actor=workflow.author)
        db.add_comment(issue.id, "Internal note", private=True, actor=workflow.developer)
        assert [c["body"] for c in db.get_comments(issue.id, user=workflow.author)] == ["Public note"]
        assert [c["body"] for c in db.get_comments(issue.id, user=workflow.developer)] == [
            "Public note",
            "Internal note",
        ]
        author_events = [e["type"] for e in db.get_events(issue.id, user=workflow.author)]
        assert "comment.private" not in author_events
        dev_events = [e["type"] for e in db.get_events(issue.id, user=workflow.developer)]
        assert "comment.private" in dev_events

    def test_private_needs_grant(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError, match="not allowed to comment"):
            workflow.db.add_comment(issue.id, "Secret", private=True, actor=workflow.author)

    def test_outsider_cannot_comment(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(AccessDeniedError):
            workflow.db.add_comment(issue.id, "Me too", actor=workflow.outsider)

    def test_empty_body(self, workflow: Workflow) -> None:
        issue = workflow.open_issue()
        with pytest.raises(ValueError, match="body cannot be empty"):
            workflow.db.add_comment(issue.id, "  ", actor=workflow.author)
