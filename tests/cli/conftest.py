"""Fixtures for CLI interface tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from etraxis.cli import cli


@pytest.fixture
def cli_in_project(
    tmp_path: Path, cli_runner: CliRunner, monkeypatch: pytest.MonkeyPatch
) -> Generator[tuple[CliRunner, Path], None, None]:
    """Initialize .etraxis/ in tmp_path and act as its administrator."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("ETRAXIS_USER", "admin@example.com")
    result = cli_runner.invoke(cli, ["init", "--admin-email", "admin@example.com", "--admin-name", "Ada Admin"])
    assert result.exit_code == 0, result.output
    yield cli_runner, tmp_path


def run(runner: CliRunner, *args: str) -> str:
    """Invoke the CLI and return its output, failing the test on a non-zero exit."""
    result = runner.invoke(cli, list(args))
    assert result.exit_code == 0, result.output
    return result.output


def _extract_id(create_output: str) -> int:
    """Extract the numeric ID from 'Created <kind> 12: Name' output."""
    return int(create_output.split(":")[0].split()[-1])


@pytest.fixture
def tracker(cli_in_project: tuple[CliRunner, Path]) -> dict[str, int]:
    """Build a small "Bug report" workflow through the CLI and return its ids.

    New (initial) -> Assigned (developers) -> Closed (final). Priority is a
    required list in New, Resolution a string in Closed.
    """
    runner, _ = cli_in_project
    ids: dict[str, int] = {}
    ids["author"] = _extract_id(run(runner, "user", "create", "author@example.com", "Alice Author"))
    ids["developer"] = _extract_id(run(runner, "user", "create", "dev@example.com", "Dan Developer"))
    ids["project"] = _extract_id(run(runner, "project", "create", "Support"))
    ids["developers"] = _extract_id(run(runner, "group", "create", "Developers", "--project", str(ids["project"])))
    run(runner, "group", "add-member", str(ids["developers"]), str(ids["developer"]))

    ids["template"] = _extract_id(run(runner, "template", "create", str(ids["project"]), "Bug report", "BUG"))
    tid = str(ids["template"])
    ids["new"] = _extract_id(run(runner, "state", "create", tid, "New", "--type", "initial"))
    ids["assigned"] = _extract_id(run(runner, "state", "create", tid, "Assigned", "--responsible", "assign"))
    ids["closed"] = _extract_id(run(runner, "state", "create", tid, "Closed", "--type", "final"))

    ids["priority"] = _extract_id(run(runner, "field", "create", str(ids["new"]), "Priority", "list", "--required"))
    for value, text in (("1", "High"), ("2", "Normal"), ("3", "Low")):
        run(runner, "field", "add-item", str(ids["priority"]), value, text)
    ids["resolution"] = _extract_id(
        run(runner, "field", "create", str(ids["closed"]), "Resolution", "string", "--parameters", '{"length": 100}')
    )
    group = str(ids["developers"])
    for fid in (str(ids["priority"]), str(ids["resolution"])):
        run(runner, "field", "access", fid, "R", "--role", "anyone")
        run(runner, "field", "access", fid, "RW", "--group", group)
    run(runner, "field", "access", str(ids["priority"]), "RW", "--role", "author")

    run(runner, "state", "responsible-groups", str(ids["assigned"]), group)
    run(runner, "state", "allow", str(ids["new"]), str(ids["assigned"]), "--role", "author", "--group", group)
    run(runner, "state", "allow", str(ids["assigned"]), str(ids["closed"]), "--role", "responsible")

    run(runner, "template", "grant", tid, "issue.create", "--role", "anyone")
    run(runner, "template", "grant", tid, "issue.edit", "comment.add", "file.attach", "--role", "author")
    run(
        runner,
        "template",
        "grant",
        tid,
        "issue.view",
        "issue.edit",
        "issue.reassign",
        "issue.delete",
        "comment.add",
        "comment.private",
        "file.attach",
        "file.delete",
        "dependency.manage",
        "relatedissue.manage",
        "--group",
        group,
    )
    run(runner, "template", "unlock", tid)
    return ids
