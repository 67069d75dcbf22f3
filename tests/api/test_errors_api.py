"""Tests for the shared error envelope."""

from __future__ import annotations

from httpx import ASGITransport, AsyncClient

from etraxis.api import create_app


class TestErrorEnvelope:
    async def test_path_param_type(self, client: AsyncClient) -> None:
        resp = await client.get("/api/issues/abc")
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["details"]["errors"][0]["loc"] == ["path", "issue_id"]

    async def test_method_not_allowed(self, client: AsyncClient) -> None:
        resp = await client.put("/api/health")
        assert resp.status_code == 405
        assert resp.json()["error"]["code"] == "METHOD_NOT_ALLOWED"

    async def test_unknown_route(self, client: AsyncClient) -> None:
        resp = await client.get("/api/nowhere")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_body_must_be_object(self, client: AsyncClient) -> None:
        resp = await client.post("/api/projects", json=["Sales"])
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Request body must be a JSON object"


async def test_database_not_initialized() -> None:
    transport = ASGITransport(app=create_app())
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        resp = await c.get("/api/me", headers={"X-Etraxis-User": "admin@example.com"})
    assert resp.status_code == 500
    assert resp.json()["error"]["code"] == "INTERNAL_ERROR"
