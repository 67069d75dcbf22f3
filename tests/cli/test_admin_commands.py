"""CLI tests for init, users, groups and projects."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from etraxis.cli import cli
from tests.cli.conftest import _extract_id, run


class TestInit:
    def test_creates_directory(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        _, root = cli_in_project
        assert (root / ".etraxis" / "etraxis.db").exists()
        assert (root / ".etraxis" / "config.json").exists()

    def test_second_init_keeps_data(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["init", "--admin-email", "other@example.com", "--admin-name", "Other"])
        assert result.exit_code == 0
        assert "already exists" in result.output
        output = run(runner, "user", "list")
        assert "admin@example.com" in output
        assert "other@example.com" not in output

    def test_without_init(self, tmp_path: Path, cli_runner: CliRunner, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        result = cli_runner.invoke(cli, ["--actor", "admin@example.com", "project", "list"])
        assert result.exit_code == 1
        assert "etraxis init" in result.output


class TestActor:
    def test_missing_actor(self, cli_in_project: tuple[CliRunner, Path], monkeypatch: pytest.MonkeyPatch) -> None:
        runner, _ = cli_in_project
        monkeypatch.delenv("ETRAXIS_USER")
        result = runner.invoke(cli, ["project", "list"])
        assert result.exit_code == 1
        assert "No acting user" in result.output

    def test_unknown_actor(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["--actor", "ghost@example.com", "project", "list"])
        assert result.exit_code == 1
        assert "Unknown user: ghost@example.com" in result.output

    def test_disabled_actor(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        uid = _extract_id(run(runner, "user", "create", "eve@example.com", "Eve"))
        assert run(runner, "user", "disable", str(uid)).strip() == "Disabled eve@example.com"
        result = runner.invoke(cli, ["--actor", "eve@example.com", "project", "list"])
        assert result.exit_code == 1
        assert "disabled" in result.output

    def test_json_error(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["--actor", "ghost@example.com", "project", "create", "Sales", "--json"])
        assert result.exit_code == 1
        assert json.loads(result.output) == {"error": "Unknown user: ghost@example.com"}


class TestUsers:
    def test_create_and_show(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        output = run(runner, "user", "create", "Eve@Example.com", "Eve Evans", "-d", "Support engineer")
        assert output.strip() == "Created user 2: eve@example.com"
        output = run(runner, "user", "show", "2")
        assert "Name:     Eve Evans" in output
        assert "About:    Support engineer" in output
        assert "Admin:    no" in output

    def test_duplicate_email(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["user", "create", "admin@example.com", "Again"])
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_list_json(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        run(runner, "user", "create", "eve@example.com", "Eve", "--disabled")
        users = json.loads(run(runner, "user", "list", "--json"))
        assert {u["email"] for u in users} == {"admin@example.com", "eve@example.com"}
        users = json.loads(run(runner, "user", "list", "--enabled-only", "--json"))
        assert [u["email"] for u in users] == ["admin@example.com"]

    def test_non_admin_cannot_manage(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        run(runner, "user", "create", "eve@example.com", "Eve")
        result = runner.invoke(cli, ["--actor", "eve@example.com", "user", "list"])
        assert result.exit_code == 1
        result = runner.invoke(cli, ["--actor", "eve@example.com", "user", "create", "bob@example.com", "Bob"])
        assert result.exit_code == 1

    def test_update_and_delete(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        uid = _extract_id(run(runner, "user", "create", "eve@example.com", "Eve"))
        assert "Updated user" in run(runner, "user", "update", str(uid), "--admin")
        assert "[admin]" in run(runner, "user", "list", "--search", "eve")
        assert run(runner, "user", "delete", str(uid)).strip() == f"Deleted user {uid}"
        result = runner.invoke(cli, ["user", "show", str(uid)])
        assert result.exit_code == 1
        assert "Not found" in result.output


class TestGroups:
    def test_members(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        uid = _extract_id(run(runner, "user", "create", "eve@example.com", "Eve"))
        gid = _extract_id(run(runner, "group", "create", "Staff"))
        assert run(runner, "group", "add-member", str(gid), str(uid)).strip() == f"Group {gid}: added 1 member(s)"
        assert "eve@example.com" in run(runner, "group", "members", str(gid))
        assert "Groups:   Staff" in run(runner, "user", "show", str(uid))
        run(runner, "group", "remove-member", str(gid), str(uid))
        assert run(runner, "group", "members", str(gid)) == ""

    def test_project_groups(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        pid = _extract_id(run(runner, "project", "create", "Support"))
        run(runner, "group", "create", "Staff")
        run(runner, "group", "create", "Developers", "--project", str(pid))
        output = run(runner, "group", "list", "--project", str(pid))
        assert "(global)" in output
        assert f"(project {pid})" in output
        output = run(runner, "group", "list", "--project", str(pid), "--local-only")
        assert "Staff" not in output


class TestProjects:
    def test_lifecycle(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        output = run(runner, "project", "create", "Support", "-d", "Customer issues")
        assert output.strip() == "Created project 1: Support"
        assert run(runner, "project", "suspend", "1").strip() == "Suspended project 1: Support"
        assert "[suspended]" in run(runner, "project", "list")
        result = runner.invoke(cli, ["project", "suspend", "1"])
        assert result.exit_code == 1
        run(runner, "project", "resume", "1")
        run(runner, "project", "update", "1", "--name", "Helpdesk")
        projects = json.loads(run(runner, "project", "list", "--json"))
        assert [p["name"] for p in projects] == ["Helpdesk"]
        assert run(runner, "project", "delete", "1").strip() == "Deleted project 1"

    def test_duplicate_name(self, cli_in_project: tuple[CliRunner, Path]) -> None:
        runner, _ = cli_in_project
        run(runner, "project", "create", "Support")
        result = runner.invoke(cli, ["project", "create", "Support"])
        assert result.exit_code == 1
        assert "Error: Project with specified name already exists" in result.output
