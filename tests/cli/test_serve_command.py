"""Tests for the serve command."""

from __future__ import annotations

import json
import logging
import logging.handlers
from pathlib import Path
from typing import Any

import pytest
import uvicorn
from click.testing import CliRunner
from httpx import ASGITransport, AsyncClient

import etraxis.api as api_module
from etraxis.api import ACTOR_HEADER
from etraxis.cli import cli


@pytest.fixture
def started(monkeypatch: pytest.MonkeyPatch) -> dict[str, Any]:
    """Capture the app and options handed to uvicorn instead of serving."""
    captured: dict[str, Any] = {}

    def fake_run(app: Any, **kwargs: Any) -> None:
        captured["app"] = app
        captured.update(kwargs)

    monkeypatch.setattr(uvicorn, "run", fake_run)
    monkeypatch.setattr(api_module, "_db", None)
    return captured


def _detach_file_handlers() -> None:
    logger = logging.getLogger("etraxis")
    for handler in logger.handlers[:]:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            logger.removeHandler(handler)
            handler.close()


class TestServe:
    def test_options_reach_uvicorn(self, cli_in_project: tuple[CliRunner, Path], started: dict[str, Any]) -> None:
        runner, _ = cli_in_project
        result = runner.invoke(cli, ["serve", "--port", "9100", "--host", "0.0.0.0"])
        assert result.exit_code == 0, result.output
        assert (started["port"], started["host"]) == (9100, "0.0.0.0")
        assert api_module._db is not None
        api_module._db.close()

    async def test_mutations_reach_the_log(
        self, cli_in_project: tuple[CliRunner, Path], started: dict[str, Any]
    ) -> None:
        runner, root = cli_in_project
        _detach_file_handlers()
        result = runner.invoke(cli, ["serve"])
        assert result.exit_code == 0, result.output
        assert api_module._db is not None
        try:
            transport = ASGITransport(app=started["app"])
            async with AsyncClient(
                transport=transport, base_url="http://test", headers={ACTOR_HEADER: "admin@example.com"}
            ) as c:
                resp = await c.post("/api/projects", json={"name": "Sales"})
                assert resp.status_code == 201
                resp = await c.post("/api/projects", json={"name": "Sales"})
                assert resp.status_code == 409
        finally:
            api_module._db.close()
        for handler in logging.getLogger("etraxis").handlers:
            handler.flush()
        records = [json.loads(line) for line in (root / ".etraxis" / "etraxis.log").read_text().splitlines()]
        messages = [r["msg"] for r in records]
        assert "Project created: Sales" in messages
        assert any(r["level"] == "WARNING" and "409" in r["msg"] for r in records)
