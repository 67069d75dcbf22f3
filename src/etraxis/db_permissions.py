"""PermissionsMixin: who may do what to an issue, and which fields they see.

Template permissions are granted to system roles (anyone, author,
responsible) or to groups. Structural state of the template and project
(locked, suspended) and of the issue (suspended, closed, frozen) gate the
grants.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from etraxis.db_base import DBMixinProtocol

if TYPE_CHECKING:
    from etraxis.models import Field, Issue, State, User


def issue_roles(issue: Issue, user: User) -> list[str]:
    """System roles *user* holds on *issue*."""
    roles = ["anyone"]
    if issue.author_id == user.id:
        roles.append("author")
    if issue.responsible_id is not None and issue.responsible_id == user.id:
        roles.append("responsible")
    return roles


class PermissionsMixin(DBMixinProtocol):
    """Issue-level permission checks."""

    if TYPE_CHECKING:
        # From ProjectsMixin
        def get_initial_state_id(self, template_id: int) -> int | None: ...

        # From IssuesMixin
        def get_transitions_by_user(self, issue_id: int, user: User) -> list[State]: ...

    # -- Raw grants ----------------------------------------------------------

    def _role_granted(self, template_id: int, roles: list[str], permission: str) -> bool:
        placeholders = ", ".join("?" for _ in roles)
        row = self.conn.execute(
            f"SELECT 1 FROM template_role_permissions WHERE template_id = ? AND permission = ?"
            f" AND role IN ({placeholders}) LIMIT 1",
            (template_id, permission, *roles),
        ).fetchone()
        return row is not None

    def _group_granted(self, template_id: int, user: User, permission: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM template_group_permissions tgp"
            " JOIN membership m ON m.group_id = tgp.group_id"
            " WHERE tgp.template_id = ? AND tgp.permission = ? AND m.user_id = ? LIMIT 1",
            (template_id, permission, user.id),
        ).fetchone()
        return row is not None

    def _granted(self, issue: Issue, user: User, permission: str) -> bool:
        if user.disabled:
            return False
        if self._role_granted(issue.template_id, issue_roles(issue, user), permission):
            return True
        return self._group_granted(issue.template_id, user, permission)

    def has_template_permission(self, issue: Issue, user: User, permission: str) -> bool:
        """Whether *user* holds *permission* on *issue* through a role or a group.

        Nothing is granted while the template is under maintenance or the
        project is suspended.
        """
        if issue.template_locked or issue.project_suspended:
            return False
        return self._granted(issue, user, permission)

    # -- Issue voter ---------------------------------------------------------

    def can_view(self, issue: Issue, user: User) -> bool:
        if user.disabled:
            return False
        if user.id in (issue.author_id, issue.responsible_id):
            return True
        if self._role_granted(issue.template_id, ["anyone"], "issue.view"):
            return True
        return self._group_granted(issue.template_id, user, "issue.view")

    def can_create_issue(self, template_id: int, user: User) -> bool:
        template = self.get_template(template_id)
        if user.disabled or template.locked:
            return False
        if self.get_project(template.project_id).suspended:
            return False
        if self.get_initial_state_id(template_id) is None:
            return False
        if self._role_granted(template_id, ["anyone"], "issue.create"):
            return True
        return self._group_granted(template_id, user, "issue.create")

    def can_update(self, issue: Issue, user: User) -> bool:
        if issue.is_suspended or issue.is_frozen:
            return False
        return self.has_template_permission(issue, user, "issue.edit")

    def can_delete(self, issue: Issue, user: User) -> bool:
        if issue.is_suspended:
            return False
        return self.has_template_permission(issue, user, "issue.delete")

    def can_change_state(self, issue: Issue, user: User) -> bool:
        if issue.is_suspended or issue.is_frozen:
            return False
        if issue.template_locked or issue.project_suspended or user.disabled:
            return False
        return len(self.get_transitions_by_user(issue.id, user)) > 0

    def can_reassign(self, issue: Issue, user: User) -> bool:
        if issue.is_suspended or issue.is_closed or issue.responsible_id is None:
            return False
        return self.has_template_permission(issue, user, "issue.reassign")

    def can_suspend(self, issue: Issue, user: User) -> bool:
        if issue.is_suspended or issue.is_closed:
            return False
        return self.has_template_permission(issue, user, "issue.suspend")

    def can_resume(self, issue: Issue, user: User) -> bool:
        if not issue.is_suspended or issue.is_closed:
            return False
        return self.has_template_permission(issue, user, "issue.resume")

    def can_add_comment(self, issue: Issue, user: User) -> bool:
        if issue.is_suspended or issue.is_frozen:
            return False
        return self.has_template_permission(issue, user, "comment.add")

    def can_add_private_comment(self, issue: Issue, user: User) -> bool:
        return self.can_add_comment(issue, user) and self.has_template_permission(issue, user, "comment.private")

    def can_read_private_comment(self, issue: Issue, user: User) -> bool:
        return self._granted(issue, user, "comment.private")

    def can_attach_file(self, issue: Issue, user: User) -> bool:
        if self.files_maxsize <= 0 or issue.is_suspended or issue.is_frozen:
            return False
        return self.has_template_permission(issue, user, "file.attach")

    def can_delete_file(self, issue: Issue, user: User) -> bool:
        if self.files_maxsize <= 0 or issue.is_suspended or issue.is_frozen:
            return False
        return self.has_template_permission(issue, user, "file.delete")

    def can_manage_dependencies(self, issue: Issue, user: User) -> bool:
        if issue.is_suspended or issue.is_closed:
            return False
        return self.has_template_permission(issue, user, "dependency.manage")

    def can_manage_related_issues(self, issue: Issue, user: User) -> bool:
        return self.has_template_permission(issue, user, "relatedissue.manage")

    def issue_permissions(self, issue: Issue, user: User) -> dict[str, bool]:
        """Every issue-level check at once, keyed by action name."""
        return {
            "view": self.can_view(issue, user),
            "update": self.can_update(issue, user),
            "delete": self.can_delete(issue, user),
            "change_state": self.can_change_state(issue, user),
            "reassign": self.can_reassign(issue, user),
            "suspend": self.can_suspend(issue, user),
            "resume": self.can_resume(issue, user),
            "add_comment": self.can_add_comment(issue, user),
            "add_private_comment": self.can_add_private_comment(issue, user),
            "read_private_comment": self.can_read_private_comment(issue, user),
            "attach_file": self.can_attach_file(issue, user),
            "delete_file": self.can_delete_file(issue, user),
            "manage_dependencies": self.can_manage_dependencies(issue, user),
            "manage_related_issues": self.can_manage_related_issues(issue, user),
        }

    # -- Field access --------------------------------------------------------

    def field_access(self, field: Field, user: User, issue: Issue | None = None) -> str | None:
        """Return "RW", "R" or None for *user* on *field*.

        Without an issue (a new one being created) the user is its author.
        """
        if user.disabled:
            return None
        if issue is None:
            roles = ["anyone", "author"]
        else:
            roles = issue_roles(issue, user)
        placeholders = ", ".join("?" for _ in roles)
        grants = {
            r["permission"]
            for r in self.conn.execute(
                f"SELECT permission FROM field_role_permissions WHERE field_id = ? AND role IN ({placeholders})",
                (field.id, *roles),
            ).fetchall()
        }
        grants |= {
            r["permission"]
            for r in self.conn.execute(
                "SELECT fgp.permission FROM field_group_permissions fgp"
                " JOIN membership m ON m.group_id = fgp.group_id"
                " WHERE fgp.field_id = ? AND m.user_id = ?",
                (field.id, user.id),
            ).fetchall()
        }
        if "RW" in grants:
            return "RW"
        if "R" in grants:
            return "R"
        return None

    def can_read_field(self, field: Field, user: User, issue: Issue | None = None) -> bool:
        return self.field_access(field, user, issue) is not None

    def can_write_field(self, field: Field, user: User, issue: Issue | None = None) -> bool:
        return self.field_access(field, user, issue) == "RW"
