"""CLI commands for workflow design: templates, states, transitions, fields and list items."""

from __future__ import annotations

import json as json_mod
from typing import Any

import click

from etraxis.cli_common import echo_json, error_message, fail, get_actor, get_db
from etraxis.types.core import STATE_RESPONSIBLES, STATE_TYPES

_DOMAIN_ERRORS = (KeyError, ValueError, PermissionError)


def _parse_parameters(raw: str | None) -> dict[str, Any] | None:
    if raw is None:
        return None
    try:
        params = json_mod.loads(raw)
    except json_mod.JSONDecodeError as e:
        fail(f"--parameters is not valid JSON: {e}")
    if not isinstance(params, dict):
        fail("--parameters must be a JSON object")
    return params


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@click.group()
def template() -> None:
    """Manage issue templates."""


@template.command("create")
@click.argument("project_id", type=int)
@click.argument("name")
@click.argument("prefix")
@click.option("--description", "-d", default="", help="Description")
@click.option("--critical-age", default=None, type=int, help="Days after which an open issue is critical")
@click.option("--frozen-time", default=None, type=int, help="Days after closing when an issue freezes")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def template_create(
    ctx: click.Context,
    project_id: int,
    name: str,
    prefix: str,
    description: str,
    critical_age: int | None,
    frozen_time: int | None,
    as_json: bool,
) -> None:
    """Create a template (it starts locked for design)."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            created = db.create_template(
                project_id,
                name,
                prefix,
                description=description,
                critical_age=critical_age,
                frozen_time=frozen_time,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created template {created.id}: {created.name} ({created.prefix})")


@template.command("list")
@click.option("--project", "project_id", default=None, type=int, help="Only templates of this project")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def template_list(ctx: click.Context, project_id: int | None, as_json: bool) -> None:
    """List templates."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        templates = db.list_templates(project_id=project_id)
        if as_json:
            echo_json([t.to_dict() for t in templates])
            return
        for t in templates:
            lock = " [locked]" if t.locked else ""
            click.echo(f"{t.id:>5}  {t.prefix:<6} {t.name}{lock}")


@template.command("show")
@click.argument("template_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def template_show(ctx: click.Context, template_id: int, as_json: bool) -> None:
    """Show a template with its states and permissions."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        try:
            found = db.get_template(template_id)
        except KeyError:
            fail(f"Not found: {template_id}", as_json=as_json)
        states = db.list_states(template_id)
        permissions = db.get_template_permissions(template_id)
        if as_json:
            echo_json({**found.to_dict(), "states": [s.to_dict() for s in states], "permissions": permissions})
            return
        click.echo(f"Template: {found.name} ({found.prefix}){' [locked]' if found.locked else ''}")
        if found.description:
            click.echo(f"  {found.description}")
        if found.critical_age:
            click.echo(f"Critical after: {found.critical_age} day(s)")
        if found.frozen_time:
            click.echo(f"Frozen after:   {found.frozen_time} day(s)")
        click.echo("\nStates:")
        for s in states:
            click.echo(f"  {s.id:>5}  {s.name:<30} {s.type} (responsible: {s.responsible})")
        click.echo("\nPermissions:")
        for entry in permissions["roles"]:
            click.echo(f"  role {entry['role']}: {entry['permission']}")
        for entry in permissions["groups"]:
            click.echo(f"  group {entry['group_id']}: {entry['permission']}")


@template.command("update")
@click.argument("template_id", type=int)
@click.option("--name", default=None, help="New name")
@click.option("--prefix", default=None, help="New prefix")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--critical-age", default=None, type=int, help="Days after which an open issue is critical (0 clears)")
@click.option("--frozen-time", default=None, type=int, help="Days after closing when an issue freezes (0 clears)")
@click.pass_context
def template_update(
    ctx: click.Context,
    template_id: int,
    name: str | None,
    prefix: str | None,
    description: str | None,
    critical_age: int | None,
    frozen_time: int | None,
) -> None:
    """Update a template."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            updated = db.update_template(
                template_id,
                name=name,
                prefix=prefix,
                description=description,
                critical_age=critical_age or None,
                frozen_time=frozen_time or None,
                clear_critical_age=critical_age == 0,
                clear_frozen_time=frozen_time == 0,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Updated template {updated.id}: {updated.name}")


@template.command("delete")
@click.argument("template_id", type=int)
@click.pass_context
def template_delete(ctx: click.Context, template_id: int) -> None:
    """Delete a template without issues."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_template(template_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted template {template_id}")


@template.command("lock")
@click.argument("template_id", type=int)
@click.pass_context
def template_lock(ctx: click.Context, template_id: int) -> None:
    """Lock a template for maintenance; no issues can be created or changed."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.lock_template(template_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Locked template {template_id}")


@template.command("unlock")
@click.argument("template_id", type=int)
@click.pass_context
def template_unlock(ctx: click.Context, template_id: int) -> None:
    """Unlock a template and open it for issues."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.unlock_template(template_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Unlocked template {template_id}")


@template.command("clone")
@click.argument("template_id", type=int)
@click.argument("project_id", type=int)
@click.argument("name")
@click.argument("prefix")
@click.option("--description", "-d", default="", help="Description")
@click.pass_context
def template_clone(ctx: click.Context, template_id: int, project_id: int, name: str, prefix: str, description: str) -> None:
    """Copy a template with its whole workflow into a project."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            source = db.get_template(template_id)
            clone = db.clone_template(
                template_id,
                project_id=project_id,
                name=name,
                prefix=prefix,
                description=description,
                critical_age=source.critical_age,
                frozen_time=source.frozen_time,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Cloned template {template_id} as {clone.id}: {clone.name} ({clone.prefix})")


@template.command("grant")
@click.argument("template_id", type=int)
@click.argument("permissions", nargs=-1)
@click.option("--role", default=None, help="System role (anyone, author, responsible)")
@click.option("--group", "group_id", default=None, type=int, help="Group id")
@click.pass_context
def template_grant(
    ctx: click.Context,
    template_id: int,
    permissions: tuple[str, ...],
    role: str | None,
    group_id: int | None,
) -> None:
    """Set exactly which permissions a role or group has (none listed revokes all)."""
    if (role is None) == (group_id is None):
        fail("Specify exactly one of --role or --group")
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            if role is not None:
                db.set_template_role_permission(template_id, role, permissions, actor=actor)
            else:
                db.set_template_group_permission(template_id, group_id, permissions, actor=actor)  # type: ignore[arg-type]
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        target = f"role {role}" if role is not None else f"group {group_id}"
        click.echo(f"Template {template_id}: {target} -> {', '.join(permissions) or '(none)'}")


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------


@click.group()
def state() -> None:
    """Manage template states and transitions."""


@state.command("create")
@click.argument("template_id", type=int)
@click.argument("name")
@click.option("--type", "state_type", type=click.Choice(sorted(STATE_TYPES)), default="intermediate")
@click.option("--responsible", type=click.Choice(sorted(STATE_RESPONSIBLES)), default="keep")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def state_create(
    ctx: click.Context,
    template_id: int,
    name: str,
    state_type: str,
    responsible: str,
    as_json: bool,
) -> None:
    """Create a state in a locked template."""
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            created = db.create_state(template_id, name, type=state_type, responsible=responsible, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created state {created.id}: {created.name} ({created.type})")


@state.command("list")
@click.argument("template_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def state_list(ctx: click.Context, template_id: int, as_json: bool) -> None:
    """List the states of a template."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        states = db.list_states(template_id)
        if as_json:
            echo_json([s.to_dict() for s in states])
            return
        for s in states:
            click.echo(f"{s.id:>5}  {s.name:<30} {s.type} (responsible: {s.responsible})")


@state.command("update")
@click.argument("state_id", type=int)
@click.option("--name", default=None, help="New name")
@click.option("--responsible", type=click.Choice(sorted(STATE_RESPONSIBLES)), default=None)
@click.pass_context
def state_update(ctx: click.Context, state_id: int, name: str | None, responsible: str | None) -> None:
    """Rename a state or change how it treats the responsible."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            updated = db.update_state(state_id, name=name, responsible=responsible, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Updated state {updated.id}: {updated.name}")


@state.command("delete")
@click.argument("state_id", type=int)
@click.pass_context
def state_delete(ctx: click.Context, state_id: int) -> None:
    """Delete a state no issue has ever passed through."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_state(state_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted state {state_id}")


@state.command("initial")
@click.argument("state_id", type=int)
@click.pass_context
def state_initial(ctx: click.Context, state_id: int) -> None:
    """Make a state the template's initial one."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            updated = db.set_initial_state(state_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Initial state: {updated.name}")


@state.command("transitions")
@click.argument("state_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def state_transitions(ctx: click.Context, state_id: int, as_json: bool) -> None:
    """Show who may move issues out of a state, and where."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        try:
            transitions = db.get_transitions(state_id)
        except KeyError:
            fail(f"Not found: {state_id}", as_json=as_json)
        if as_json:
            echo_json(transitions)
            return
        for entry in transitions["roles"]:
            click.echo(f"  -> {entry['state_id']}  role {entry['role']}")
        for entry in transitions["groups"]:
            click.echo(f"  -> {entry['state_id']}  group {entry['group_id']}")


@state.command("allow")
@click.argument("from_state_id", type=int)
@click.argument("to_state_id", type=int)
@click.option("--role", "roles", multiple=True, help="System role (repeatable)")
@click.option("--group", "group_ids", multiple=True, type=int, help="Group id (repeatable)")
@click.pass_context
def state_allow(
    ctx: click.Context,
    from_state_id: int,
    to_state_id: int,
    roles: tuple[str, ...],
    group_ids: tuple[int, ...],
) -> None:
    """Set exactly which roles and groups may move issues between two states."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.set_role_transitions(from_state_id, to_state_id, roles, actor=actor)
            db.set_group_transitions(from_state_id, to_state_id, group_ids, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Transition {from_state_id} -> {to_state_id}: roles {list(roles)}, groups {list(group_ids)}")


@state.command("responsible-groups")
@click.argument("state_id", type=int)
@click.argument("group_ids", nargs=-1, type=int)
@click.pass_context
def state_responsible_groups(ctx: click.Context, state_id: int, group_ids: tuple[int, ...]) -> None:
    """Set the groups whose members may be assigned in a state."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.set_responsible_groups(state_id, group_ids, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"State {state_id}: responsible groups {list(group_ids)}")


@state.command("responsibles")
@click.argument("state_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def state_responsibles(ctx: click.Context, state_id: int, as_json: bool) -> None:
    """List users who can be made responsible in a state."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        users = db.get_responsibles(state_id)
        if as_json:
            echo_json([u.to_dict() for u in users])
            return
        for u in users:
            click.echo(f"{u.id:>5}  {u.email:<30} {u.fullname}")


# ---------------------------------------------------------------------------
# Fields
# ---------------------------------------------------------------------------


@click.group()
def field() -> None:
    """Manage state fields and list items."""


@field.command("create")
@click.argument("state_id", type=int)
@click.argument("name")
@click.argument("field_type")
@click.option("--description", "-d", default="", help="Description")
@click.option("--required", is_flag=True, help="A value must be entered")
@click.option("--parameters", default=None, help="Type parameters as a JSON object")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def field_create(
    ctx: click.Context,
    state_id: int,
    name: str,
    field_type: str,
    description: str,
    required: bool,
    parameters: str | None,
    as_json: bool,
) -> None:
    """Append a field to a state."""
    params = _parse_parameters(parameters)
    with get_db() as db:
        actor = get_actor(db, ctx, as_json=as_json)
        try:
            created = db.create_field(
                state_id,
                name,
                field_type,
                description=description,
                required=required,
                parameters=params,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e), as_json=as_json)
        if as_json:
            echo_json(created.to_dict())
        else:
            click.echo(f"Created field {created.id}: {created.name} ({created.type})")


@field.command("list")
@click.argument("state_id", type=int)
@click.option("--all", "include_removed", is_flag=True, help="Include removed fields")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def field_list(ctx: click.Context, state_id: int, include_removed: bool, as_json: bool) -> None:
    """List the fields of a state in form order."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        fields = db.list_fields(state_id, include_removed=include_removed)
        if as_json:
            echo_json([f.to_dict() for f in fields])
            return
        for f in fields:
            req = " (required)" if f.required else ""
            removed = " [removed]" if f.is_removed else ""
            click.echo(f"{f.id:>5}  {f.position:>2}. {f.name:<30} {f.type}{req}{removed}")


@field.command("update")
@click.argument("field_id", type=int)
@click.option("--name", default=None, help="New name")
@click.option("--description", "-d", default=None, help="New description")
@click.option("--required/--optional", default=None, help="Whether a value must be entered")
@click.option("--parameters", default=None, help="Type parameters as a JSON object")
@click.pass_context
def field_update(
    ctx: click.Context,
    field_id: int,
    name: str | None,
    description: str | None,
    required: bool | None,
    parameters: str | None,
) -> None:
    """Update a field."""
    params = _parse_parameters(parameters)
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            updated = db.update_field(
                field_id, name=name, description=description, required=required, parameters=params, actor=actor
            )
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Updated field {updated.id}: {updated.name}")


@field.command("move")
@click.argument("field_id", type=int)
@click.argument("position", type=int)
@click.pass_context
def field_move(ctx: click.Context, field_id: int, position: int) -> None:
    """Move a field to a new position in its state."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            moved = db.set_field_position(field_id, position, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Field {moved.id} is now at position {moved.position}")


@field.command("delete")
@click.argument("field_id", type=int)
@click.pass_context
def field_delete(ctx: click.Context, field_id: int) -> None:
    """Delete a field (fields with recorded values are only marked removed)."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            hard = db.delete_field(field_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"{'Deleted' if hard else 'Removed'} field {field_id}")


@field.command("access")
@click.argument("field_id", type=int)
@click.argument("access", type=click.Choice(["RW", "R", "none"]))
@click.option("--role", default=None, help="System role (anyone, author, responsible)")
@click.option("--group", "group_id", default=None, type=int, help="Group id")
@click.pass_context
def field_access(ctx: click.Context, field_id: int, access: str, role: str | None, group_id: int | None) -> None:
    """Set how a role or group can access a field."""
    if (role is None) == (group_id is None):
        fail("Specify exactly one of --role or --group")
    value = None if access == "none" else access
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            if role is not None:
                db.set_field_role_permission(field_id, role, value, actor=actor)
            else:
                db.set_field_group_permission(field_id, group_id, value, actor=actor)  # type: ignore[arg-type]
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        target = f"role {role}" if role is not None else f"group {group_id}"
        click.echo(f"Field {field_id}: {target} -> {access}")


@field.command("items")
@click.argument("field_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def field_items(ctx: click.Context, field_id: int, as_json: bool) -> None:
    """List the items of a list field."""
    with get_db() as db:
        get_actor(db, ctx, as_json=as_json)
        items = db.list_list_items(field_id)
        if as_json:
            echo_json([i.to_dict() for i in items])
            return
        for i in items:
            click.echo(f"{i.id:>5}  {i.value:>4}  {i.text}")


@field.command("add-item")
@click.argument("field_id", type=int)
@click.argument("value", type=int)
@click.argument("text")
@click.pass_context
def field_add_item(ctx: click.Context, field_id: int, value: int, text: str) -> None:
    """Add an item to a list field."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            item = db.create_list_item(field_id, value, text, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Created item {item.id}: {item.value} = {item.text}")


@field.command("update-item")
@click.argument("item_id", type=int)
@click.option("--value", default=None, type=int, help="New value")
@click.option("--text", default=None, help="New text")
@click.pass_context
def field_update_item(ctx: click.Context, item_id: int, value: int | None, text: str | None) -> None:
    """Change a list item."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            item = db.update_list_item(item_id, value=value, text=text, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Updated item {item.id}: {item.value} = {item.text}")


@field.command("delete-item")
@click.argument("item_id", type=int)
@click.pass_context
def field_delete_item(ctx: click.Context, item_id: int) -> None:
    """Delete a list item no issue uses."""
    with get_db() as db:
        actor = get_actor(db, ctx)
        try:
            db.delete_list_item(item_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            fail(error_message(e))
        click.echo(f"Deleted item {item_id}")


def register(cli: click.Group) -> None:
    """Register workflow commands with the CLI group."""
    cli.add_command(template)
    cli.add_command(state)
    cli.add_command(field)
