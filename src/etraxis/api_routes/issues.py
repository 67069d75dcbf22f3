"""Issue route handlers: lifecycle, history, watching and links."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

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
    _parse_pagination,
)
from etraxis.core import EtraxisDB
from etraxis.models import User

if TYPE_CHECKING:
    from fastapi import APIRouter

_DOMAIN_ERRORS = (KeyError, ValueError, PermissionError)


def _body_values(body: dict[str, Any]) -> dict[str, Any] | None | JSONResponse:
    values = body.get("values")
    if values is None:
        return None
    if not isinstance(values, dict):
        return _error_response("values must be a JSON object keyed by field id", "VALIDATION_ERROR", 400)
    return values


def create_router() -> APIRouter:
    """Build the APIRouter for issue endpoints.

    Visibility is decided per issue by the database layer: an issue the
    actor cannot view answers 403, a missing one 404.
    """
    from fastapi import APIRouter, Depends

    from etraxis.api import _get_actor, _get_db

    router = APIRouter()

    # -- Listing and creation ------------------------------------------------

    @router.get("/issues")
    async def api_issues(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        params = request.query_params
        pagination = _parse_pagination(params)
        if isinstance(pagination, JSONResponse):
            return pagination
        limit, offset = pagination
        filters: dict[str, Any] = {}
        for name in ("project_id", "template_id", "state_id", "author_id", "responsible_id"):
            value = _optional_int_param(params, name)
            if isinstance(value, JSONResponse):
                return value
            filters[name] = value
        for name in ("closed", "critical", "suspended"):
            flag = _get_bool_param(params, name)
            if isinstance(flag, JSONResponse):
                return flag
            filters[name] = flag
        try:
            result = db.list_issues(
                user=actor,
                search=params.get("search", ""),
                limit=limit,
                offset=offset,
                **filters,
            )
        except ValueError as e:
            return _domain_error(e)
        return JSONResponse(result)

    @router.post("/issues", status_code=201)
    async def api_create_issue(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        template_id = _body_int(body, "template_id")
        if isinstance(template_id, JSONResponse):
            return template_id
        responsible_id = _body_int(body, "responsible_id", required=False)
        if isinstance(responsible_id, JSONResponse):
            return responsible_id
        values = _body_values(body)
        if isinstance(values, JSONResponse):
            return values
        try:
            issue = db.create_issue(
                template_id,  # type: ignore[arg-type]
                body.get("subject", ""),
                values=values,
                responsible_id=responsible_id,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(issue.to_dict(), status_code=201)

    @router.post("/issues/watch")
    async def api_watch_issues(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "issue_ids")
        if isinstance(ids, JSONResponse):
            return ids
        return JSONResponse({"watched": db.watch_issues(ids, user=actor)})

    @router.post("/issues/unwatch")
    async def api_unwatch_issues(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "issue_ids")
        if isinstance(ids, JSONResponse):
            return ids
        return JSONResponse({"unwatched": db.unwatch_issues(ids, user=actor)})

    @router.post("/issues/read")
    async def api_read_issues(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "issue_ids")
        if isinstance(ids, JSONResponse):
            return ids
        return JSONResponse({"read": db.mark_as_read(ids, user=actor)})

    @router.post("/issues/unread")
    async def api_unread_issues(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        ids = _body_int_list(body, "issue_ids")
        if isinstance(ids, JSONResponse):
            return ids
        return JSONResponse({"unread": db.mark_as_unread(ids, user=actor)})

    # -- Single issue --------------------------------------------------------

    @router.get("/issues/{issue_id}")
    async def api_issue(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            issue = db.get_issue(issue_id)
        except KeyError:
            return _not_found("Issue", issue_id)
        if not db.can_view(issue, actor):
            return _error_response(f"You are not allowed to view issue {issue.full_id}.", "ACCESS_DENIED", 403)
        data: dict[str, Any] = dict(issue.to_dict())
        data["read_at"] = db.get_last_read(issue_id, user=actor)
        return JSONResponse(data)

    @router.patch("/issues/{issue_id}")
    async def api_update_issue(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        values = _body_values(body)
        if isinstance(values, JSONResponse):
            return values
        try:
            issue = db.update_issue(issue_id, subject=body.get("subject"), values=values, actor=actor)
        except KeyError:
            return _not_found("Issue", issue_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(issue.to_dict())

    @router.delete("/issues/{issue_id}")
    async def api_delete_issue(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_issue(issue_id, actor=actor)
        except KeyError:
            return _not_found("Issue", issue_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse({"deleted": issue_id})

    @router.post("/issues/{issue_id}/clone", status_code=201)
    async def api_clone_issue(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        responsible_id = _body_int(body, "responsible_id", required=False)
        if isinstance(responsible_id, JSONResponse):
            return responsible_id
        values = _body_values(body)
        if isinstance(values, JSONResponse):
            return values
        try:
            issue = db.clone_issue(
                issue_id,
                subject=body.get("subject"),
                values=values,
                responsible_id=responsible_id,
                actor=actor,
            )
        except KeyError:
            return _not_found("Issue", issue_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(issue.to_dict(), status_code=201)

    @router.get("/issues/{issue_id}/permissions")
    async def api_issue_permissions(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            issue = db.get_issue(issue_id)
        except KeyError:
            return _not_found("Issue", issue_id)
        if not db.can_view(issue, actor):
            return _error_response(f"You are not allowed to view issue {issue.full_id}.", "ACCESS_DENIED", 403)
        return JSONResponse(db.issue_permissions(issue, actor))

    @router.get("/issues/{issue_id}/values")
    async def api_issue_values(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            values = db.get_values(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(values)

    # -- Workflow ------------------------------------------------------------

    @router.get("/issues/{issue_id}/transitions")
    async def api_issue_transitions(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            issue = db.get_issue(issue_id)
        except KeyError:
            return _not_found("Issue", issue_id)
        if not db.can_view(issue, actor):
            return _error_response(f"You are not allowed to view issue {issue.full_id}.", "ACCESS_DENIED", 403)
        return JSONResponse([s.to_dict() for s in db.get_transitions_by_user(issue_id, actor)])

    @router.post("/issues/{issue_id}/state")
    async def api_change_state(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        state_id = _body_int(body, "state_id")
        if isinstance(state_id, JSONResponse):
            return state_id
        responsible_id = _body_int(body, "responsible_id", required=False)
        if isinstance(responsible_id, JSONResponse):
            return responsible_id
        values = _body_values(body)
        if isinstance(values, JSONResponse):
            return values
        try:
            issue = db.change_state(
                issue_id,
                state_id,  # type: ignore[arg-type]
                values=values,
                responsible_id=responsible_id,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(issue.to_dict())

    @router.post("/issues/{issue_id}/reassign")
    async def api_reassign_issue(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        responsible_id = _body_int(body, "responsible_id")
        if isinstance(responsible_id, JSONResponse):
            return responsible_id
        try:
            issue = db.reassign_issue(issue_id, responsible_id, actor=actor)  # type: ignore[arg-type]
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(issue.to_dict())

    @router.post("/issues/{issue_id}/suspend")
    async def api_suspend_issue(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        date = body.get("date")
        if not isinstance(date, str):
            return _error_response("date is required (YYYY-MM-DD)", "VALIDATION_ERROR", 400)
        try:
            issue = db.suspend_issue(issue_id, date, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(issue.to_dict())

    @router.post("/issues/{issue_id}/resume")
    async def api_resume_issue(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            issue = db.resume_issue(issue_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(issue.to_dict())

    # -- History -------------------------------------------------------------

    @router.get("/issues/{issue_id}/events")
    async def api_issue_events(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            events = db.get_events(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(events)

    @router.get("/issues/{issue_id}/changes")
    async def api_issue_changes(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            changes = db.get_changes(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(changes)

    @router.get("/issues/{issue_id}/comments")
    async def api_issue_comments(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            comments = db.get_comments(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(comments)

    @router.post("/issues/{issue_id}/comments", status_code=201)
    async def api_add_comment(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        text = body.get("body", "")
        if not isinstance(text, str):
            return _error_response("body must be a string", "VALIDATION_ERROR", 400)
        try:
            comment = db.add_comment(issue_id, text, private=bool(body.get("private", False)), actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(comment, status_code=201)

    # -- Watchers ------------------------------------------------------------

    @router.get("/issues/{issue_id}/watchers")
    async def api_watchers(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            watchers = db.get_watchers(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse([u.to_dict() for u in watchers])

    # -- Dependencies and related issues -------------------------------------

    @router.get("/issues/{issue_id}/dependencies")
    async def api_dependencies(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            issues = db.get_dependencies(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse([i.to_dict() for i in issues])

    @router.post("/issues/{issue_id}/dependencies", status_code=201)
    async def api_add_dependency(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        dependency_id = _body_int(body, "issue_id")
        if isinstance(dependency_id, JSONResponse):
            return dependency_id
        try:
            db.add_dependency(issue_id, dependency_id, actor=actor)  # type: ignore[arg-type]
            issues = db.get_dependencies(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse([i.to_dict() for i in issues], status_code=201)

    @router.delete("/issues/{issue_id}/dependencies/{dependency_id}")
    async def api_remove_dependency(
        issue_id: int,
        dependency_id: int,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        try:
            db.remove_dependency(issue_id, dependency_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse({"removed": dependency_id})

    @router.get("/issues/{issue_id}/related")
    async def api_related(issue_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            issues = db.get_related_issues(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse([i.to_dict() for i in issues])

    @router.post("/issues/{issue_id}/related", status_code=201)
    async def api_add_related(
        issue_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        related_id = _body_int(body, "issue_id")
        if isinstance(related_id, JSONResponse):
            return related_id
        try:
            db.add_related_issue(issue_id, related_id, actor=actor)  # type: ignore[arg-type]
            issues = db.get_related_issues(issue_id, user=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse([i.to_dict() for i in issues], status_code=201)

    @router.delete("/issues/{issue_id}/related/{related_id}")
    async def api_remove_related(
        issue_id: int,
        related_id: int,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        try:
            db.remove_related_issue(issue_id, related_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse({"removed": related_id})

    return router
