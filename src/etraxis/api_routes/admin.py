"""User, group and project route handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse
from starlette.requests import Request

from etraxis.api_routes.common import (
    _body_int,
    _body_int_list,
    _domain_error,
    _error_response,
    _get_bool_param,
    _not_found,
    _optional_int_param,
    _parse_json_body,
)
from etraxis.core import EtraxisDB
from etraxis.db_base import AccessDeniedError, require_admin
from etraxis.models import User

if TYPE_CHECKING:
    from fastapi import APIRouter


def create_router() -> APIRouter:
    """Build the APIRouter for account and project administration.

    Handlers are async and run their SQLite calls on the event loop thread,
    one request at a time.
    """
    from fastapi import APIRouter, Depends

    from etraxis.api import _get_actor, _get_db

    router = APIRouter()

    # -- Users ---------------------------------------------------------------

    @router.get("/me")
    async def api_me(actor: User = Depends(_get_actor)) -> JSONResponse:
        return JSONResponse(actor.to_dict())

    @router.get("/users")
    async def api_users(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        try:
            require_admin(actor, "list users")
        except AccessDeniedError as e:
            return _domain_error(e)
        include_disabled = _get_bool_param(request.query_params, "include_disabled")
        if isinstance(include_disabled, JSONResponse):
            return include_disabled
        users = db.list_users(
            search=request.query_params.get("search", ""),
            include_disabled=include_disabled is not False,
        )
        return JSONResponse([u.to_dict() for u in users])

    @router.post("/users", status_code=201)
    async def api_create_user(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            user = db.create_user(
                body.get("email", ""),
                body.get("fullname", ""),
                description=body.get("description", ""),
                admin=bool(body.get("admin", False)),
                disabled=bool(body.get("disabled", False)),
                actor=actor,
            )
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(user.to_dict(), status_code=201)

    @router.get("/users/{user_id}")
    async def api_user(user_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        if user_id != actor.id and not actor.admin:
            return _error_response("You are not allowed to view this user.", "ACCESS_DENIED", 403)
        try:
            user = db.get_user(user_id)
        except KeyError:
            return _not_found("User", user_id)
        return JSONResponse(user.to_dict())

    @router.patch("/users/{user_id}")
    async def api_update_user(
        user_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            user = db.update_user(
                user_id,
                email=body.get("email"),
                fullname=body.get("fullname"),
                description=body.get("description"),
                admin=body.get("admin"),
                actor=actor,
            )
        except KeyError:
            return _not_found("User", user_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(user.to_dict())

    @router.delete("/users/{user_id}")
    async def api_delete_user(user_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_user(user_id, actor=actor)
        except KeyError:
            return _not_found("User", user_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse({"deleted": user_id})

    @router.post("/users/disable")
    async def api_disable_users(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "user_ids")
        if isinstance(ids, JSONResponse):
            return ids
        try:
            users = db.disable_users(ids, actor=actor)
        except (KeyError, ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse([u.to_dict() for u in users])

    @router.post("/users/enable")
    async def api_enable_users(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "user_ids")
        if isinstance(ids, JSONResponse):
            return ids
        try:
            users = db.enable_users(ids, actor=actor)
        except (KeyError, ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse([u.to_dict() for u in users])

    @router.get("/users/{user_id}/groups")
    async def api_user_groups(user_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        if user_id != actor.id and not actor.admin:
            return _error_response("You are not allowed to view this user.", "ACCESS_DENIED", 403)
        try:
            db.get_user(user_id)
        except KeyError:
            return _not_found("User", user_id)
        return JSONResponse([g.to_dict() for g in db.get_user_groups(user_id)])

    # -- Groups --------------------------------------------------------------

    @router.get("/groups")
    async def api_groups(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        project_id = _optional_int_param(request.query_params, "project_id")
        if isinstance(project_id, JSONResponse):
            return project_id
        include_global = _get_bool_param(request.query_params, "include_global")
        if isinstance(include_global, JSONResponse):
            return include_global
        groups = db.list_groups(project_id=project_id, include_global=include_global is not False)
        return JSONResponse([g.to_dict() for g in groups])

    @router.post("/groups", status_code=201)
    async def api_create_group(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        project_id = _body_int(body, "project_id", required=False)
        if isinstance(project_id, JSONResponse):
            return project_id
        try:
            group = db.create_group(
                body.get("name", ""),
                project_id=project_id,
                description=body.get("description", ""),
                actor=actor,
            )
        except (KeyError, ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(group.to_dict(), status_code=201)

    @router.get("/groups/{group_id}")
    async def api_group(group_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            group = db.get_group(group_id)
        except KeyError:
            return _not_found("Group", group_id)
        return JSONResponse(group.to_dict())

    @router.patch("/groups/{group_id}")
    async def api_update_group(
        group_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            group = db.update_group(group_id, name=body.get("name"), description=body.get("description"), actor=actor)
        except KeyError:
            return _not_found("Group", group_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(group.to_dict())

    @router.delete("/groups/{group_id}")
    async def api_delete_group(group_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_group(group_id, actor=actor)
        except KeyError:
            return _not_found("Group", group_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse({"deleted": group_id})

    @router.get("/groups/{group_id}/members")
    async def api_group_members(group_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.get_group(group_id)
        except KeyError:
            return _not_found("Group", group_id)
        return JSONResponse([u.to_dict() for u in db.get_members(group_id)])

    @router.post("/groups/{group_id}/members")
    async def api_add_members(
        group_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "user_ids")
        if isinstance(ids, JSONResponse):
            return ids
        try:
            db.add_members(group_id, ids, actor=actor)
        except (KeyError, ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse([u.to_dict() for u in db.get_members(group_id)])

    @router.post("/groups/{group_id}/members/remove")
    async def api_remove_members(
        group_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "user_ids")
        if isinstance(ids, JSONResponse):
            return ids
        try:
            db.remove_members(group_id, ids, actor=actor)
        except (KeyError, ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse([u.to_dict() for u in db.get_members(group_id)])

    # -- Projects ------------------------------------------------------------

    @router.get("/projects")
    async def api_projects(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        suspended = _get_bool_param(request.query_params, "suspended")
        if isinstance(suspended, JSONResponse):
            return suspended
        projects = db.list_projects(search=request.query_params.get("search", ""), suspended=suspended)
        return JSONResponse([p.to_dict() for p in projects])

    @router.post("/projects", status_code=201)
    async def api_create_project(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            project = db.create_project(
                body.get("name", ""),
                description=body.get("description", ""),
                suspended=bool(body.get("suspended", False)),
                actor=actor,
            )
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(project.to_dict(), status_code=201)

    @router.get("/projects/{project_id}")
    async def api_project(project_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            project = db.get_project(project_id)
        except KeyError:
            return _not_found("Project", project_id)
        return JSONResponse(project.to_dict())

    @router.patch("/projects/{project_id}")
    async def api_update_project(
        project_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            project = db.update_project(
                project_id, name=body.get("name"), description=body.get("description"), actor=actor
            )
        except KeyError:
            return _not_found("Project", project_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(project.to_dict())

    @router.delete("/projects/{project_id}")
    async def api_delete_project(project_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_project(project_id, actor=actor)
        except KeyError:
            return _not_found("Project", project_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse({"deleted": project_id})

    @router.post("/projects/{project_id}/suspend")
    async def api_suspend_project(project_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            project = db.suspend_project(project_id, actor=actor)
        except KeyError:
            return _not_found("Project", project_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(project.to_dict())

    @router.post("/projects/{project_id}/resume")
    async def api_resume_project(project_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            project = db.resume_project(project_id, actor=actor)
        except KeyError:
            return _not_found("Project", project_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(project.to_dict())

    return router
