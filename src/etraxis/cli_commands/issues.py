"""CLI commands for issues: lifecycle, comments, attachments, watching and links."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import click

from etraxis.cli_common import echo_json, error_message, fail, get_actor, get_db, parse_values
from etraxis.models import Issue

_DOMAIN_ERRORS = (KeyError, ValueError, PermissionError)


def _fmt_ts(ts: int | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _issue_line(issue: Issue) -> str:
    marks = [
        mark
        for mark, on in (("closed", issue.is_closed), ("critical", issue.is_critical), ("suspended", issue.is_suspended))
        if on
    ]
    suffix = f" [{', '.join(marks)}]" if marks else ""
    return f"{issue.full_id:<12} {issue.state_name:<20} {issue.subject}{suffix}"


@click.command()
@click.argument("template_id", type=int)
@click.argument("subject")
@click.option("--value", "-v", "values", multiple=True, help="Field value as FIELD_ID=VALUE (repeatable)")
@click.option("--responsible", "responsible_id", default=None, type=int, help="Responsible user id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def create(
    ctx: click.Context,
    template_id: int,
    subject: str,
    values: tuple[str, ...],
    responsible_id: int | None,
    as_json: bool,
) -> None:
    """Create a new issue."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        field_values = parse_values(db, values, as_json=as_json)
        try:
            issue = db.create_issue(
                template_id, subject, values=field_values, responsible_id=responsible_id, actor=actor
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(issue.to_dict())
        else:
            click.echo(f"Created {issue.full_id}: {issue.subject}")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--subject", default=None, help="Subject of the copy (default: the original's)")
@click.option("--value", "-v", "values", multiple=True, help="Field value as FIELD_ID=VALUE (repeatable)")
@click.option("--responsible", "responsible_id", default=None, type=int, help="Responsible user id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def clone(
    ctx: click.Context,
    issue_id: int,
    subject: str | None,
    values: tuple[str, ...],
    responsible_id: int | None,
    as_json: bool,
) -> None:
    """Create a new issue from an existing one."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        field_values = parse_values(db, values, as_json=as_json)
        try:
            issue = db.clone_issue(
                issue_id, subject=subject, values=field_values, responsible_id=responsible_id, actor=actor
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(issue.to_dict())
        else:
            click.echo(f"Created {issue.full_id}: {issue.subject}")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show(ctx: click.Context, issue_id: int, as_json: bool) -> None:
    """Show issue details and field values."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            issue = db.get_issue(issue_id)
            values = db.get_values(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        db.mark_as_read([issue_id], user=actor)

        if as_json:
            echo_json({**issue.to_dict(), "values": values})
            return

        click.echo(f"ID:       {issue.full_id}")
        click.echo(f"Subject:  {issue.subject}")
        click.echo(f"State:    {issue.state_name}")
        click.echo(f"Author:   {db.get_user(issue.author_id).email}")
        if issue.responsible_id is not None:
            click.echo(f"Assigned: {db.get_user(issue.responsible_id).email}")
        click.echo(f"Created:  {_fmt_ts(issue.created_at)}")
        click.echo(f"Age:      {issue.age} day(s)")
        if issue.closed_at:
            click.echo(f"Closed:   {_fmt_ts(issue.closed_at)}")
        if issue.is_suspended:
            click.echo(f"Suspended until {_fmt_ts(issue.resumes_at)}")
        if issue.is_critical:
            click.echo("Critical: YES")
        if values:
            click.echo("\n--- Fields ---")
            for v in values:
                click.echo(f"  {v['field']}: {'' if v['rendered'] is None else v['rendered']}")


@click.command("list")
@click.option("--project", "project_id", default=None, type=int, help="Filter by project")
@click.option("--template", "template_id", default=None, type=int, help="Filter by template")
@click.option("--state", "state_id", default=None, type=int, help="Filter by state")
@click.option("--author", "author_id", default=None, type=int, help="Filter by author")
@click.option("--responsible", "responsible_id", default=None, type=int, help="Filter by responsible")
@click.option("--search", default="", help="Substring of the subject")
@click.option("--open/--closed", "is_open", default=None, help="Only open or only closed issues")
@click.option("--critical", is_flag=True, default=None, help="Only critical issues")
@click.option("--suspended", is_flag=True, default=None, help="Only suspended issues")
@click.option("--limit", default=50, type=int, help="Page size (default 50)")
@click.option("--offset", default=0, type=int, help="Skip this many issues")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_issues(
    ctx: click.Context,
    project_id: int | None,
    template_id: int | None,
    state_id: int | None,
    author_id: int | None,
    responsible_id: int | None,
    search: str,
    is_open: bool | None,
    critical: bool | None,
    suspended: bool | None,
    limit: int,
    offset: int,
    as_json: bool,
) -> None:
    """List issues you can view, newest first."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            page = db.list_issues(
                user=actor,
                project_id=project_id,
                template_id=template_id,
                state_id=state_id,
                author_id=author_id,
                responsible_id=responsible_id,
                search=search,
                closed=None if is_open is None else not is_open,
                critical=critical or None,
                suspended=suspended or None,
                limit=limit,
                offset=offset,
            )
        except ValueError as e:
            fail(str(e), as_json=as_json)
        if as_json:
            echo_json(page)
            return
        for row in page["results"]:
            marks = [m for m in ("closed", "critical", "suspended") if row[f"is_{m}"]]
            suffix = f" [{', '.join(marks)}]" if marks else ""
            click.echo(f"{row['full_id']:<12} {row['state']:<20} {row['subject']}{suffix}")
        if page["has_more"]:
            click.echo(f"... {page['total'] - offset - len(page['results'])} more (use --offset)")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--subject", default=None, help="New subject")
@click.option("--value", "-v", "values", multiple=True, help="Field value as FIELD_ID=VALUE (repeatable)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def update(ctx: click.Context, issue_id: int, subject: str | None, values: tuple[str, ...], as_json: bool) -> None:
    """Edit the subject or field values of an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        field_values = parse_values(db, values, as_json=as_json)
        try:
            issue = db.update_issue(issue_id, subject=subject, values=field_values, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(issue.to_dict())
        else:
            click.echo(f"Updated {issue.full_id}")


@click.command()
@click.argument("issue_id", type=int)
@click.pass_context
def delete(ctx: click.Context, issue_id: int) -> None:
    """Delete an issue with its whole history."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_issue(issue_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted issue {issue_id}")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def transitions(ctx: click.Context, issue_id: int, as_json: bool) -> None:
    """List the states you can move an issue to."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            issue = db.get_issue(issue_id)
        except KeyError:
            fail(f"Not found: {issue_id}", as_json=as_json)
        states = db.get_transitions_by_user(issue.id, actor)
        if as_json:
            echo_json([s.to_dict() for s in states])
            return
        if not states:
            click.echo(f"No transitions available for {issue.full_id}")
        for s in states:
            click.echo(f"{s.id:>5}  {s.name} ({s.type})")


@click.command()
@click.argument("issue_id", type=int)
@click.argument("state_id", type=int)
@click.option("--value", "-v", "values", multiple=True, help="Field value as FIELD_ID=VALUE (repeatable)")
@click.option("--responsible", "responsible_id", default=None, type=int, help="Responsible user id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def move(
    ctx: click.Context,
    issue_id: int,
    state_id: int,
    values: tuple[str, ...],
    responsible_id: int | None,
    as_json: bool,
) -> None:
    """Move an issue to another state."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        field_values = parse_values(db, values, as_json=as_json)
        try:
            issue = db.change_state(
                issue_id, state_id, values=field_values, responsible_id=responsible_id, actor=actor
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(issue.to_dict())
        else:
            click.echo(f"{issue.full_id} is now {issue.state_name}")


@click.command()
@click.argument("issue_id", type=int)
@click.argument("responsible_id", type=int)
@click.pass_context
def assign(ctx: click.Context, issue_id: int, responsible_id: int) -> None:
    """Reassign an issue to another responsible."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            issue = db.reassign_issue(issue_id, responsible_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"{issue.full_id} assigned to {db.get_user(responsible_id).email}")


@click.command()
@click.argument("issue_id", type=int)
@click.argument("until")
@click.pass_context
def suspend(ctx: click.Context, issue_id: int, until: str) -> None:
    """Suspend an issue until a date (YYYY-MM-DD)."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            issue = db.suspend_issue(issue_id, until, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"{issue.full_id} suspended until {until}")


@click.command()
@click.argument("issue_id", type=int)
@click.pass_context
def resume(ctx: click.Context, issue_id: int) -> None:
    """Resume a suspended issue."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            issue = db.resume_issue(issue_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"{issue.full_id} resumed")


# ---------------------------------------------------------------------------
# History and comments
# ---------------------------------------------------------------------------


@click.command()
@click.argument("issue_id", type=int)
@click.argument("text")
@click.option("--private", is_flag=True, help="Visible only to users allowed to read private comments")
@click.pass_context
def comment(ctx: click.Context, issue_id: int, text: str, private: bool) -> None:
    """Add a comment to an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            added = db.add_comment(issue_id, text, private=private, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Added {'private ' if added['private'] else ''}comment {added['id']} to issue {issue_id}")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def comments(ctx: click.Context, issue_id: int, as_json: bool) -> None:
    """List the comments of an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            found = db.get_comments(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(found)
            return
        for c in found:
            private = " (private)" if c["private"] else ""
            click.echo(f"[{_fmt_ts(c['created_at'])}] {c['user']}{private}:\n  {c['body']}")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--changes", "show_changes", is_flag=True, help="Show field changes instead of events")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def history(ctx: click.Context, issue_id: int, show_changes: bool, as_json: bool) -> None:
    """Show the event history of an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            records = db.get_changes(issue_id, user=actor) if show_changes else db.get_events(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(records)
            return
        for r in records:
            if show_changes:
                click.echo(f"[{_fmt_ts(r['created_at'])}] {r['field']}: {r['old_value']} -> {r['new_value']}")
            else:
                param = f" {r['parameter']}" if r["parameter"] is not None else ""
                click.echo(f"[{_fmt_ts(r['created_at'])}] {r['user']}: {r['type']}{param}")


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


@click.command()
@click.argument("issue_id", type=int)
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--name", default=None, help="Stored file name (default: the file's own)")
@click.pass_context
def attach(ctx: click.Context, issue_id: int, path: Path, name: str | None) -> None:
    """Attach a file to an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            record = db.attach_file(issue_id, name or path.name, path.read_bytes(), actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Attached file {record['id']}: {record['name']} ({record['size']} bytes)")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def files(ctx: click.Context, issue_id: int, as_json: bool) -> None:
    """List the attachments of an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            found = db.get_files(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(found)
            return
        for f in found:
            click.echo(f"{f['id']:>5}  {f['name']:<40} {f['size']:>10}  {f['mime']}")


@click.command()
@click.argument("file_id", type=int)
@click.argument("dest", type=click.Path(path_type=Path), required=False)
@click.pass_context
def download(ctx: click.Context, file_id: int, dest: Path | None) -> None:
    """Save an attachment to DEST (default: its name in the current directory)."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            record, path = db.get_file_path(file_id, user=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        target = dest or Path.cwd() / record["name"]
        target.write_bytes(path.read_bytes())
        click.echo(f"Saved {record['name']} to {target}")


@click.command()
@click.argument("file_id", type=int)
@click.pass_context
def detach(ctx: click.Context, file_id: int) -> None:
    """Delete an attachment."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_file(file_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted file {file_id}")


# ---------------------------------------------------------------------------
# Watching and read marks
# ---------------------------------------------------------------------------


@click.command()
@click.argument("issue_ids", nargs=-1, required=True, type=int)
@click.pass_context
def watch(ctx: click.Context, issue_ids: tuple[int, ...]) -> None:
    """Start watching issues."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        watched = db.watch_issues(issue_ids, user=actor)
        click.echo(f"Watching {len(watched)} issue(s)")


@click.command()
@click.argument("issue_ids", nargs=-1, required=True, type=int)
@click.pass_context
def unwatch(ctx: click.Context, issue_ids: tuple[int, ...]) -> None:
    """Stop watching issues."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        unwatched = db.unwatch_issues(issue_ids, user=actor)
        click.echo(f"Stopped watching {len(unwatched)} issue(s)")


@click.command()
@click.argument("issue_id", type=int)
@click.pass_context
def watchers(ctx: click.Context, issue_id: int) -> None:
    """List users watching an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            users = db.get_watchers(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        for u in users:
            click.echo(f"{u.email:<30} {u.fullname}")


@click.command("mark-read")
@click.argument("issue_ids", nargs=-1, required=True, type=int)
@click.option("--unread", is_flag=True, help="Mark as unread instead")
@click.pass_context
def mark_read(ctx: click.Context, issue_ids: tuple[int, ...], unread: bool) -> None:
    """Mark issues as read (or unread)."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        if unread:
            done = db.mark_as_unread(issue_ids, user=actor)
        else:
            done = db.mark_as_read(issue_ids, user=actor)
        click.echo(f"Marked {len(done)} issue(s) as {'unread' if unread else 'read'}")


# ---------------------------------------------------------------------------
# Dependencies and related issues
# ---------------------------------------------------------------------------


@click.command("add-dep")
@click.argument("issue_id", type=int)
@click.argument("depends_on", type=int)
@click.pass_context
def add_dep(ctx: click.Context, issue_id: int, depends_on: int) -> None:
    """Make ISSUE_ID depend on DEPENDS_ON."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.add_dependency(issue_id, depends_on, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Added dependency: {issue_id} -> {depends_on}")


@click.command("remove-dep")
@click.argument("issue_id", type=int)
@click.argument("depends_on", type=int)
@click.pass_context
def remove_dep(ctx: click.Context, issue_id: int, depends_on: int) -> None:
    """Remove a dependency."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.remove_dependency(issue_id, depends_on, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Removed dependency: {issue_id} -> {depends_on}")


@click.command()
@click.argument("issue_id", type=int)
@click.option("--related", "show_related", is_flag=True, help="Show related issues instead of dependencies")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def links(ctx: click.Context, issue_id: int, show_related: bool, as_json: bool) -> None:
    """List the dependencies (or related issues) of an issue."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            if show_related:
                linked = db.get_related_issues(issue_id, user=actor)
            else:
                linked = db.get_dependencies(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json([i.to_dict() for i in linked])
            return
        for i in linked:
            click.echo(_issue_line(i))


@click.command("add-related")
@click.argument("issue_id", type=int)
@click.argument("related_id", type=int)
@click.pass_context
def add_related(ctx: click.Context, issue_id: int, related_id: int) -> None:
    """Link a related issue."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.add_related_issue(issue_id, related_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Added related issue: {issue_id} ~ {related_id}")


@click.command("remove-related")
@click.argument("issue_id", type=int)
@click.argument("related_id", type=int)
@click.pass_context
def remove_related(ctx: click.Context, issue_id: int, related_id: int) -> None:
    """Unlink a related issue."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.remove_related_issue(issue_id, related_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Removed related issue: {issue_id} ~ {related_id}")


def register(cli: click.Group) -> None:
    """Register issue commands with the CLI group."""
    cli.add_command(create)
    cli.add_command(clone)
    cli.add_command(show)
    cli.add_command(list_issues, "list")
    cli.add_command(update)
    cli.add_command(delete)
    cli.add_command(transitions)
    cli.add_command(move)
    cli.add_command(assign)
    cli.add_command(suspend)
    cli.add_command(resume)
    cli.add_command(comment)
    cli.add_command(comments)
    cli.add_command(history)
    cli.add_command(attach)
    cli.add_command(files)
    cli.add_command(download)
    cli.add_command(detach)
    cli.add_command(watch)
    cli.add_command(unwatch)
    cli.add_command(watchers)
    cli.add_command(mark_read)
    cli.add_command(add_dep)
    cli.add_command(remove_dep)
    cli.add_command(links)
    cli.add_command(add_related)
    cli.add_command(remove_related)
