"""Shared CLI helpers.

Provides ``get_db()``, ``get_actor()`` and the error/output helpers so that
``cli.py`` and the ``cli_commands/*`` modules can share them without
circular imports.
"""

from __future__ import annotations

import json as json_mod
import sys
from typing import TYPE_CHECKING, Any, NoReturn

import click

from etraxis.core import (
    DB_FILENAME,
    DEFAULT_FILES_DIR,
    DEFAULT_FILES_MAXSIZE,
    ETRAXIS_DIR_NAME,
    EtraxisDB,
    find_etraxis_root,
    read_config,
)
from etraxis.field_strategies import to_boolean
from etraxis.logging import setup_logging
from etraxis.validation import sanitize_actor

if TYPE_CHECKING:
    from collections.abc import Iterable

    from etraxis.models import User


def get_db() -> EtraxisDB:
    """Discover .etraxis/ and return an initialized EtraxisDB."""
    try:
        etraxis_dir = find_etraxis_root()
    except FileNotFoundError:
        click.echo(f"No {ETRAXIS_DIR_NAME}/ found. Run 'etraxis init' first.", err=True)
        sys.exit(1)
    config = read_config(etraxis_dir)
    setup_logging(etraxis_dir)
    db = EtraxisDB(
        etraxis_dir / DB_FILENAME,
        files_dir=etraxis_dir / config.get("files_dir", DEFAULT_FILES_DIR),
        files_maxsize=int(config.get("files_maxsize", DEFAULT_FILES_MAXSIZE)),
    )
    try:
        db.initialize()
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    return db


def fail(message: str, *, as_json: bool = False) -> NoReturn:
    """Report an error the way every command does and exit with status 1."""
    if as_json:
        click.echo(json_mod.dumps({"error": message}))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def error_message(exc: Exception) -> str:
    if isinstance(exc, KeyError):
        return f"Not found: {exc.args[0] if exc.args else ''}"
    return str(exc)


def echo_json(data: Any) -> None:
    click.echo(json_mod.dumps(data, indent=2, default=str))


def get_actor(db: EtraxisDB, ctx: click.Context, *, as_json: bool = False) -> User:
    """Resolve ``--actor`` (or ``ETRAXIS_USER``) to an enabled account."""
    raw = ctx.obj.get("actor") if ctx.obj else None
    if not raw:
        fail("No acting user. Pass --actor EMAIL or set ETRAXIS_USER.", as_json=as_json)
    email, err = sanitize_actor(raw)
    if err:
        fail(err, as_json=as_json)
    try:
        user = db.get_user_by_email(email)
    except KeyError:
        fail(f"Unknown user: {email}", as_json=as_json)
    if user.disabled:
        fail(f"User is disabled: {email}", as_json=as_json)
    return user


def parse_values(db: EtraxisDB, pairs: Iterable[str], *, as_json: bool = False) -> dict[int, Any] | None:
    """Turn repeated ``FIELD_ID=VALUE`` options into a field value mapping.

    Values stay strings except for checkboxes; an empty value clears the field.
    """
    values: dict[int, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key.strip().isdigit():
            fail(f"Invalid value format: {pair} (expected FIELD_ID=VALUE)", as_json=as_json)
        field_id = int(key)
        try:
            field = db.get_field(field_id)
        except KeyError:
            fail(f"Unknown field: {field_id}", as_json=as_json)
        if raw == "":
            values[field_id] = None
        elif field.type == "checkbox":
            values[field_id] = to_boolean(raw)
        else:
            values[field_id] = raw
    return values or None
