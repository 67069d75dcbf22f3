"""CLI commands for administration: init, serve, users, groups and projects."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from etraxis.cli_common import echo_json, error_message, fail, get_actor, get_db
from etraxis.core import (
    DB_FILENAME,
    ETRAXIS_DIR_NAME,
    EtraxisDB,
    default_config,
    read_config,
    write_config,
)
from etraxis.db_base import require_admin
from etraxis.logging import setup_logging
from etraxis.models import Group, Project, User

_DOMAIN_ERRORS = (KeyError, ValueError, PermissionError)


def _user_line(user: User) -> str:
    flags = [flag for flag, on in (("admin", user.admin), ("disabled", user.disabled)) if on]
    suffix = f" [{', '.join(flags)}]" if flags else ""
    return f"{user.id:>5}  {user.email:<30} {user.fullname}{suffix}"


def _group_line(group: Group) -> str:
    scope = "global" if group.project_id is None else f"project {group.project_id}"
    return f"{group.id:>5}  {group.name:<30} ({scope})"


def _project_line(project: Project) -> str:
    suffix = " [suspended]" if project.suspended else ""
    return f"{project.id:>5}  {project.name}{suffix}"


@click.command()
@click.option("--admin-email", required=True, help="Email of the first administrator")
@click.option("--admin-name", required=True, help="Full name of the first administrator")
@click.option("--files-maxsize", default=None, type=int, help="Attachment size limit in MB (0 disables uploads)")
def init(admin_email: str, admin_name: str, files_maxsize: int | None) -> None:
    """Initialize .etraxis/ in the current directory."""
    cwd = Path.cwd()
    etraxis_dir = cwd / ETRAXIS_DIR_NAME

    if etraxis_dir.exists():
        click.echo(f"{ETRAXIS_DIR_NAME}/ already exists in {cwd}")
        # Still ensure DB is initialized
        config = read_config(etraxis_dir)
        with EtraxisDB(etraxis_dir / DB_FILENAME, files_dir=etraxis_dir / config["files_dir"]) as db:
            db.initialize()
        return

    etraxis_dir.mkdir()
    config = default_config()
    if files_maxsize is not None:
        config["files_maxsize"] = files_maxsize
    write_config(etraxis_dir, config)
    setup_logging(etraxis_dir)

    with EtraxisDB(etraxis_dir / DB_FILENAME, files_dir=etraxis_dir / config["files_dir"]) as db:
        db.initialize()
        try:
            admin_user = db.create_user(admin_email, admin_name, admin=True, actor=None)
        except ValueError as e:
            fail(str(e))

    click.echo(f"Initialized {ETRAXIS_DIR_NAME}/ in {cwd}")
    click.echo(f"  Database: {etraxis_dir / DB_FILENAME}")
    click.echo(f"  Files: {etraxis_dir / config['files_dir']}/ (limit {config['files_maxsize']} MB)")
    click.echo(f"  Administrator: {admin_user.email}")
    click.echo(f"\nNext: export ETRAXIS_USER={admin_user.email}")


@click.command()
@click.option("--port", default=8480, type=int, help="Server port (default 8480)")
@click.option("--host", default="127.0.0.1", help="Bind address (default 127.0.0.1)")
def serve(port: int, host: str) -> None:
    """Run the JSON API server (requires etraxis[api])."""
    try:
        from etraxis.api import main as api_main
    except ImportError:
        click.echo('The API server requires extra dependencies. Install with: pip install "etraxis[api]"', err=True)
        sys.exit(1)
    api_main(port=port, host=host)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@click.group()
def user() -> None:
    """Manage user accounts."""


@user.command("create")
@click.argument("email")
@click.argument("fullname")
@click.option("--description", "-d", default="", help="Description")
@click.option("--admin", "is_admin", is_flag=True, help="Grant administrator rights")
@click.option("--disabled", is_flag=True, help="Create the account disabled")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def user_create(
    ctx: click.Context,
    email: str,
    fullname: str,
    description: str,
    is_admin: bool,
    disabled: bool,
    as_json: bool,
) -> None:
    """Create a user account."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            created = db.create_user(
                email, fullname, description=description, admin=is_admin, disabled=disabled, actor=actor
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created user {created.id}: {created.email}")


@user.command("list")
@click.option("--search", default="", help="Substring of email, name or description")
@click.option("--enabled-only", is_flag=True, help="Hide disabled accounts")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def user_list(ctx: click.Context, search: str, enabled_only: bool, as_json: bool) -> None:
    """List user accounts."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            require_admin(actor, "list users")
        except PermissionError as e:
            fail(str(e), as_json=as_json)
        users = db.list_users(search=search, include_disabled=not enabled_only)
        if as_json:
            echo_json([u.to_dict() for u in users])
            return
        for u in users:
            click.echo(_user_line(u))


@user.command("show")
@click.argument("user_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def user_show(ctx: click.Context, user_id: int, as_json: bool) -> None:
    """Show an account and its groups."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        try:
            found = db.get_user(user_id)
        except KeyError:
            fail(f"Not found: {user_id}", as_json=as_json)
        groups = db.get_user_groups(user_id)
        if as_json:
            echo_json({**found.to_dict(), "groups": [g.to_dict() for g in groups]})
            return
        click.echo(f"ID:       {found.id}")
        click.echo(f"Email:    {found.email}")
        click.echo(f"Name:     {found.fullname}")
        if found.description:
            click.echo(f"About:    {found.description}")
        click.echo(f"Admin:    {'yes' if found.admin else 'no'}")
        click.echo(f"Disabled: {'yes' if found.disabled else 'no'}")
        if groups:
            click.echo(f"Groups:   {', '.join(g.name for g in groups)}")


@user.command("update")
@click.argument("user_id", type=int)
@click.option("--email", default=None, help="New email")
@click.option("--fullname", default=None, help="New full name")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--admin/--no-admin", "is_admin", default=None, help="Grant or revoke administrator rights")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def user_update(
    ctx: click.Context,
    user_id: int,
    email: str | None,
    fullname: str | None,
    description: str | None,
    is_admin: bool | None,
    as_json: bool,
) -> None:
    """Update an account."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            updated = db.update_user(
                user_id, email=email, fullname=fullname, description=description, admin=is_admin, actor=actor
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(updated.to_dict())
        else:
            click.echo(f"Updated user {updated.id}: {updated.email}")


@user.command("disable")
@click.argument("user_ids", nargs=-1, required=True, type=int)
@click.pass_context
def user_disable(ctx: click.Context, user_ids: tuple[int, ...]) -> None:
    """Disable accounts."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            users = db.disable_users(user_ids, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        for u in users:
            click.echo(f"Disabled {u.email}")


@user.command("enable")
@click.argument("user_ids", nargs=-1, required=True, type=int)
@click.pass_context
def user_enable(ctx: click.Context, user_ids: tuple[int, ...]) -> None:
    """Enable accounts."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            users = db.enable_users(user_ids, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        for u in users:
            click.echo(f"Enabled {u.email}")


@user.command("delete")
@click.argument("user_id", type=int)
@click.pass_context
def user_delete(ctx: click.Context, user_id: int) -> None:
    """Delete an account that never took part in any issue."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_user(user_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted user {user_id}")


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


@click.group()
def group() -> None:
    """Manage groups and their members."""


@group.command("create")
@click.argument("name")
@click.option("--project", "project_id", default=None, type=int, help="Owning project (omit for a global group)")
@click.option("--description", "-d", default="", help="Description")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def group_create(ctx: click.Context, name: str, project_id: int | None, description: str, as_json: bool) -> None:
    """Create a group."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            created = db.create_group(name, project_id=project_id, description=description, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created group {created.id}: {created.name}")


@group.command("list")
@click.option("--project", "project_id", default=None, type=int, help="Groups visible in this project")
@click.option("--local-only", is_flag=True, help="With --project, hide global groups")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def group_list(ctx: click.Context, project_id: int | None, local_only: bool, as_json: bool) -> None:
    """List groups."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        groups = db.list_groups(project_id=project_id, include_global=not local_only)
        if as_json:
            echo_json([g.to_dict() for g in groups])
            return
        for g in groups:
            click.echo(_group_line(g))


@group.command("update")
@click.argument("group_id", type=int)
@click.option("--name", default=None, help="New name")
@click.option("--description", "-d", default=None, help="New description")
@click.pass_context
def group_update(ctx: click.Context, group_id: int, name: str | None, description: str | None) -> None:
    """Rename a group or change its description."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            updated = db.update_group(group_id, name=name, description=description, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Updated group {updated.id}: {updated.name}")


@group.command("delete")
@click.argument("group_id", type=int)
@click.pass_context
def group_delete(ctx: click.Context, group_id: int) -> None:
    """Delete a group."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_group(group_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted group {group_id}")


@group.command("members")
@click.argument("group_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def group_members(ctx: click.Context, group_id: int, as_json: bool) -> None:
    """List members of a group."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        try:
            db.get_group(group_id)
        except KeyError:
            fail(f"Not found: {group_id}", as_json=as_json)
        members = db.get_members(group_id)
        if as_json:
            echo_json([u.to_dict() for u in members])
            return
        for u in members:
            click.echo(_user_line(u))


@group.command("add-member")
@click.argument("group_id", type=int)
@click.argument("user_ids", nargs=-1, required=True, type=int)
@click.pass_context
def group_add_member(ctx: click.Context, group_id: int, user_ids: tuple[int, ...]) -> None:
    """Add users to a group."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.add_members(group_id, user_ids, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Group {group_id}: added {len(user_ids)} member(s)")


@group.command("remove-member")
@click.argument("group_id", type=int)
@click.argument("user_ids", nargs=-1, required=True, type=int)
@click.pass_context
def group_remove_member(ctx: click.Context, group_id: int, user_ids: tuple[int, ...]) -> None:
    """Remove users from a group."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.remove_members(group_id, user_ids, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Group {group_id}: removed {len(user_ids)} member(s)")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@click.group()
def project() -> None:
    """Manage projects."""


@project.command("create")
@click.argument("name")
@click.option("--description", "-d", default="", help="Description")
@click.option("--suspended", is_flag=True, help="Create the project suspended")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def project_create(ctx: click.Context, name: str, description: str, suspended: bool, as_json: bool) -> None:
    """Create a project."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            created = db.create_project(name, description=description, suspended=suspended, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created project {created.id}: {created.name}")


@project.command("list")
@click.option("--search", default="", help="Substring of name or description")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def project_list(ctx: click.Context, search: str, as_json: bool) -> None:
    """List projects."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        projects = db.list_projects(search=search)
        if as_json:
            echo_json([p.to_dict() for p in projects])
            return
        for p in projects:
            click.echo(_project_line(p))


@project.command("update")
@click.argument("project_id", type=int)
@click.option("--name", default=None, help="New name")
@click.option("--description", "-d", default=None, help="New description")
@click.pass_context
def project_update(ctx: click.Context, project_id: int, name: str | None, description: str | None) -> None:
    """Rename a project or change its description."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            updated = db.update_project(project_id, name=name, description=description, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Updated project {updated.id}: {updated.name}")


@project.command("suspend")
@click.argument("project_id", type=int)
@click.pass_context
def project_suspend(ctx: click.Context, project_id: int) -> None:
    """Suspend a project; its issues become read-only."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            suspended = db.suspend_project(project_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Suspended project {suspended.id}: {suspended.name}")


@project.command("resume")
@click.argument("project_id", type=int)
@click.pass_context
def project_resume(ctx: click.Context, project_id: int) -> None:
    """Resume a suspended project."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            resumed = db.resume_project(project_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Resumed project {resumed.id}: {resumed.name}")


@project.command("delete")
@click.argument("project_id", type=int)
@click.pass_context
def project_delete(ctx: click.Context, project_id: int) -> None:
    """Delete a project without issues."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_project(project_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted project {project_id}")


def register(cli: click.Group) -> None:
    """Register admin commands with the CLI group."""
    cli.add_command(init)
    cli.add_command(serve)
    cli.add_command(user)
    cli.add_command(group)
    cli.add_command(project)
