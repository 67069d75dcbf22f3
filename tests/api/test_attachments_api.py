"""Tests for file upload, download and removal."""

from __future__ import annotations

from httpx import AsyncClient

from tests._db_factory import Workflow
from tests.api.conftest import as_user


async def _upload(client: AsyncClient, wf: Workflow, issue_id: int, name: str = "note.txt") -> dict:
    resp = await client.post(
        f"/api/issues/{issue_id}/files",
        files={"file": (name, b"hello", "text/plain")},
        headers=as_user(wf.author),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestAttachments:
    async def test_upload_and_download(self, client: AsyncClient, api_workflow: Workflow) -> None:
        issue = api_workflow.open_issue()
        record = await _upload(client, api_workflow, issue.id)
        assert record["name"] == "note.txt"
        assert record["size"] == 5
        listed = (await client.get(f"/api/issues/{issue.id}/files", headers=as_user(api_workflow.developer))).json()
        assert [f["id"] for f in listed] == [record["id"]]
        resp = await client.get(f"/api/files/{record['id']}", headers=as_user(api_workflow.developer))
        assert resp.status_code == 200
        assert resp.content == b"hello"
        assert resp.headers["content-type"].startswith("text/plain")

    async def test_outsider_cannot_download(self, client: AsyncClient, api_workflow: Workflow) -> None:
        issue = api_workflow.open_issue()
        record = await _upload(client, api_workflow, issue.id)
        resp = await client.get(f"/api/files/{record['id']}", headers=as_user(api_workflow.outsider))
        assert resp.status_code == 403

    async def test_delete(self, client: AsyncClient, api_workflow: Workflow) -> None:
        issue = api_workflow.open_issue()
        record = await _upload(client, api_workflow, issue.id)
        resp = await client.delete(f"/api/files/{record['id']}", headers=as_user(api_workflow.author))
        assert resp.status_code == 403
        resp = await client.delete(f"/api/files/{record['id']}", headers=as_user(api_workflow.developer))
        assert resp.json() == {"deleted": record["id"]}
        resp = await client.get(f"/api/files/{record['id']}", headers=as_user(api_workflow.developer))
        assert resp.status_code == 404
        dev = as_user(api_workflow.developer)
        assert (await client.get(f"/api/issues/{issue.id}/files", headers=dev)).json() == []
        resp = await client.get(f"/api/issues/{issue.id}/files", params={"include_removed": "1"}, headers=dev)
        assert [f["removed"] for f in resp.json()] == [True]

    async def test_missing_upload_part(self, client: AsyncClient, api_workflow: Workflow) -> None:
        issue = api_workflow.open_issue()
        resp = await client.post(
            f"/api/issues/{issue.id}/files",
            files={"attachment": ("note.txt", b"hello", "text/plain")},
            headers=as_user(api_workflow.author),
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_upload_to_missing_issue(self, client: AsyncClient, api_workflow: Workflow) -> None:
        resp = await client.post(
            "/api/issues/999/files",
            files={"file": ("note.txt", b"hello", "text/plain")},
            headers=as_user(api_workflow.author),
        )
        assert resp.status_code == 404
