"""Attachment route handlers (multipart upload, download, removal)."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import UploadFile
from fastapi.responses import FileResponse, JSONResponse
from starlette.requests import Request

from etraxis.api_routes.common import _domain_error, _get_bool_param
from etraxis.core import EtraxisDB
from etraxis.models import User

if TYPE_CHECKING:
    from fastapi import APIRouter

_DOMAIN_ERRORS = (KeyError, ValueError, PermissionError)


def create_router() -> APIRouter:
    from fastapi import APIRouter, Depends, File

    from etraxis.api import _get_actor, _get_db

    router = APIRouter()

    @router.get("/issues/{issue_id}/files")
    async def api_files(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        include_removed = _get_bool_param(request.query_params, "include_removed")
        if isinstance(include_removed, JSONResponse):
            return include_removed
        try:
            files = db.get_files(issue_id, user=actor, include_removed=bool(include_removed))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(files)

    @router.post("/issues/{issue_id}/files", status_code=201)
    async def api_attach_file(
        issue_id: int,
        file: UploadFile = File(...),
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        data = await file.read()
        try:
            record = db.attach_file(
                issue_id,
                file.filename or "",
                data,
                mime=file.content_type or None,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(record, status_code=201)

    @router.get("/files/{file_id}", response_model=None)
    async def api_download_file(
        file_id: int,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> FileResponse | JSONResponse:
        try:
            record, path = db.get_file_path(file_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return FileResponse(path, media_type=record["mime"], filename=record["name"])

    @router.delete("/files/{file_id}")
    async def api_delete_file(file_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_file(file_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse({"deleted": file_id})

    return router
