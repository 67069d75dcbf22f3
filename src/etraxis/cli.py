"""CLI for the etraxis issue tracker.

Convention-based: discovers .etraxis/ by walking up from cwd. Every command
that changes or reads tracker data acts as the user named by ``--actor``
(or the ``ETRAXIS_USER`` environment variable).

Usage:
    etraxis init --admin-email=root@example.com --admin-name="Root"
    etraxis serve                                   # JSON API on :8480
    etraxis project create "Support"                # Create a project
    etraxis template create 1 "Bug report" BUG      # Create a template
    etraxis state create 1 "New" --type=initial     # Design the workflow
    etraxis create 1 "Crash on start" -v 3=high     # Open an issue
    etraxis list --open                             # List issues
    etraxis show 12                                 # Issue details
    etraxis move 12 4                               # Change state
    etraxis comment 12 "Reproduced."                # Add a comment
"""

from __future__ import annotations

import click

from etraxis import __version__
from etraxis.cli_commands import admin, issues, workflow


@click.group()
@click.version_option(version=__version__, prog_name="etraxis")
@click.option("--actor", envvar="ETRAXIS_USER", default=None, help="Email of the acting user (env: ETRAXIS_USER)")
@click.pass_context
def cli(ctx: click.Context, actor: str | None) -> None:
    """eTraxis: issue tracking with template-driven workflows."""
    ctx.ensure_object(dict)
    ctx.obj["actor"] = actor


admin.register(cli)
workflow.register(cli)
issues.register(cli)


if __name__ == "__main__":
    cli()
