"""Template, state, field and list item route handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

from etraxis.api_routes.common import (
    _body_int,
    _body_int_list,
    _body_str_list,
    _domain_error,
    _error_response,
    _get_bool_param,
    _not_found,
    _optional_int_param,
    _parse_json_body,
)
from etraxis.core import EtraxisDB
from etraxis.models import User

if TYPE_CHECKING:
    from fastapi import APIRouter

_DOMAIN_ERRORS = (KeyError, ValueError, PermissionError)


def _template_kwargs(body: dict[str, Any]) -> dict[str, Any] | JSONResponse:
    """Pick the optional template attributes out of a request body."""
    kwargs: dict[str, Any] = {}
    for key in ("critical_age", "frozen_time"):
        value = _body_int(body, key, required=False)
        if isinstance(value, JSONResponse):
            return value
        kwargs[key] = value
    if "description" in body:
        kwargs["description"] = body["description"]
    return kwargs


def create_router() -> APIRouter:
    """Build the APIRouter for workflow design endpoints.

    Reading templates, states and fields is open to every user, since
    issue forms are built from them. All writes are admin-only and the
    database layer enforces that.
    """
    from fastapi import APIRouter, Depends

    from etraxis.api import _get_actor, _get_db

    router = APIRouter()

    # -- Templates -----------------------------------------------------------

    @router.get("/templates")
    async def api_templates(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        project_id = _optional_int_param(request.query_params, "project_id")
        if isinstance(project_id, JSONResponse):
            return project_id
        locked = _get_bool_param(request.query_params, "locked")
        if isinstance(locked, JSONResponse):
            return locked
        templates = db.list_templates(project_id=project_id, locked=locked)
        return JSONResponse([t.to_dict() for t in templates])

    @router.post("/templates", status_code=201)
    async def api_create_template(
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        project_id = _body_int(body, "project_id")
        if isinstance(project_id, JSONResponse):
            return project_id
        kwargs = _template_kwargs(body)
        if isinstance(kwargs, JSONResponse):
            return kwargs
        try:
            template = db.create_template(
                project_id,  # type: ignore[arg-type]
                body.get("name", ""),
                body.get("prefix", ""),
                actor=actor,
                **kwargs,
            )
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(template.to_dict(), status_code=201)

    @router.get("/templates/{template_id}")
    async def api_template(template_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            template = db.get_template(template_id)
        except KeyError:
            return _not_found("Template", template_id)
        return JSONResponse(template.to_dict())

    @router.patch("/templates/{template_id}")
    async def api_update_template(
        template_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        """Update a template. An explicit ``null`` age clears it."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        kwargs = _template_kwargs(body)
        if isinstance(kwargs, JSONResponse):
            return kwargs
        try:
            template = db.update_template(
                template_id,
                name=body.get("name"),
                prefix=body.get("prefix"),
                clear_critical_age="critical_age" in body and body["critical_age"] is None,
                clear_frozen_time="frozen_time" in body and body["frozen_time"] is None,
                actor=actor,
                **kwargs,
            )
        except KeyError:
            return _not_found("Template", template_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(template.to_dict())

    @router.delete("/templates/{template_id}")
    async def api_delete_template(template_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_template(template_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse({"deleted": template_id})

    @router.post("/templates/{template_id}/lock")
    async def api_lock_template(template_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            template = db.lock_template(template_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(template.to_dict())

    @router.post("/templates/{template_id}/unlock")
    async def api_unlock_template(template_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            template = db.unlock_template(template_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(template.to_dict())

    @router.post("/templates/{template_id}/clone", status_code=201)
    async def api_clone_template(
        template_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        project_id = _body_int(body, "project_id")
        if isinstance(project_id, JSONResponse):
            return project_id
        kwargs = _template_kwargs(body)
        if isinstance(kwargs, JSONResponse):
            return kwargs
        try:
            clone = db.clone_template(
                template_id,
                project_id=project_id,  # type: ignore[arg-type]
                name=body.get("name", ""),
                prefix=body.get("prefix", ""),
                actor=actor,
                **kwargs,
            )
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(clone.to_dict(), status_code=201)

    @router.get("/templates/{template_id}/permissions")
    async def api_template_permissions(template_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            permissions = db.get_template_permissions(template_id)
        except KeyError:
            return _not_found("Template", template_id)
        return JSONResponse(permissions)

    @router.put("/templates/{template_id}/permissions/roles/{role}")
    async def api_set_template_role_permission(
        template_id: int,
        role: str,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        permissions = _body_str_list(body, "permissions")
        if isinstance(permissions, JSONResponse):
            return permissions
        try:
            db.set_template_role_permission(template_id, role, permissions, actor=actor)
            return JSONResponse(db.get_template_permissions(template_id))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)

    @router.put("/templates/{template_id}/permissions/groups/{group_id}")
    async def api_set_template_group_permission(
        template_id: int,
        group_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        permissions = _body_str_list(body, "permissions")
        if isinstance(permissions, JSONResponse):
            return permissions
        try:
            db.set_template_group_permission(template_id, group_id, permissions, actor=actor)
            return JSONResponse(db.get_template_permissions(template_id))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)

    # -- States --------------------------------------------------------------

    @router.get("/templates/{template_id}/states")
    async def api_states(template_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.get_template(template_id)
        except KeyError:
            return _not_found("Template", template_id)
        return JSONResponse([s.to_dict() for s in db.list_states(template_id)])

    @router.post("/templates/{template_id}/states", status_code=201)
    async def api_create_state(
        template_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            state = db.create_state(
                template_id,
                body.get("name", ""),
                type=body.get("type", "intermediate"),
                responsible=body.get("responsible", "keep"),
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(state.to_dict(), status_code=201)

    @router.get("/states/{state_id}")
    async def api_state(state_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            state = db.get_state(state_id)
        except KeyError:
            return _not_found("State", state_id)
        return JSONResponse(state.to_dict())

    @router.patch("/states/{state_id}")
    async def api_update_state(
        state_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            state = db.update_state(state_id, name=body.get("name"), responsible=body.get("responsible"), actor=actor)
        except KeyError:
            return _not_found("State", state_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(state.to_dict())

    @router.delete("/states/{state_id}")
    async def api_delete_state(state_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_state(state_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse({"deleted": state_id})

    @router.post("/states/{state_id}/initial")
    async def api_set_initial_state(state_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            state = db.set_initial_state(state_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(state.to_dict())

    @router.get("/states/{state_id}/transitions")
    async def api_transitions(state_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            transitions = db.get_transitions(state_id)
        except KeyError:
            return _not_found("State", state_id)
        return JSONResponse(transitions)

    @router.put("/states/{state_id}/transitions/roles")
    async def api_set_role_transitions(
        state_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        to_state_id = _body_int(body, "state_id")
        if isinstance(to_state_id, JSONResponse):
            return to_state_id
        roles = _body_str_list(body, "roles")
        if isinstance(roles, JSONResponse):
            return roles
        try:
            db.set_role_transitions(state_id, to_state_id, roles, actor=actor)  # type: ignore[arg-type]
            return JSONResponse(db.get_transitions(state_id))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)

    @router.put("/states/{state_id}/transitions/groups")
    async def api_set_group_transitions(
        state_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        to_state_id = _body_int(body, "state_id")
        if isinstance(to_state_id, JSONResponse):
            return to_state_id
        group_ids = _body_int_list(body, "group_ids")
        if isinstance(group_ids, JSONResponse):
            return group_ids
        try:
            db.set_group_transitions(state_id, to_state_id, group_ids, actor=actor)  # type: ignore[arg-type]
            return JSONResponse(db.get_transitions(state_id))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)

    @router.get("/states/{state_id}/responsible-groups")
    async def api_responsible_groups(state_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            group_ids = db.get_responsible_groups(state_id)
        except KeyError:
            return _not_found("State", state_id)
        return JSONResponse(group_ids)

    @router.put("/states/{state_id}/responsible-groups")
    async def api_set_responsible_groups(
        state_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        group_ids = _body_int_list(body, "group_ids")
        if isinstance(group_ids, JSONResponse):
            return group_ids
        try:
            db.set_responsible_groups(state_id, group_ids, actor=actor)
            return JSONResponse(db.get_responsible_groups(state_id))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)

    @router.get("/states/{state_id}/responsibles")
    async def api_responsibles(state_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.get_state(state_id)
        except KeyError:
            return _not_found("State", state_id)
        return JSONResponse([u.to_dict() for u in db.get_responsibles(state_id)])

    # -- Fields --------------------------------------------------------------

    @router.get("/states/{state_id}/fields")
    async def api_fields(
        state_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        include_removed = _get_bool_param(request.query_params, "include_removed")
        if isinstance(include_removed, JSONResponse):
            return include_removed
        try:
            db.get_state(state_id)
        except KeyError:
            return _not_found("State", state_id)
        fields = db.list_fields(state_id, include_removed=bool(include_removed))
        return JSONResponse([f.to_dict() for f in fields])

    @router.post("/states/{state_id}/fields", status_code=201)
    async def api_create_field(
        state_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        parameters = body.get("parameters")
        if parameters is not None and not isinstance(parameters, dict):
            return _error_response("parameters must be a JSON object", "VALIDATION_ERROR", 400)
        try:
            field = db.create_field(
                state_id,
                body.get("name", ""),
                body.get("type", ""),
                description=body.get("description", ""),
                required=bool(body.get("required", False)),
                parameters=parameters,
                actor=actor,
            )
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(field.to_dict(), status_code=201)

    @router.get("/fields/{field_id}")
    async def api_field(field_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            field = db.get_field(field_id)
        except KeyError:
            return _not_found("Field", field_id)
        return JSONResponse(field.to_dict())

    @router.patch("/fields/{field_id}")
    async def api_update_field(
        field_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        parameters = body.get("parameters")
        if parameters is not None and not isinstance(parameters, dict):
            return _error_response("parameters must be a JSON object", "VALIDATION_ERROR", 400)
        required = body.get("required")
        try:
            field = db.update_field(
                field_id,
                name=body.get("name"),
                description=body.get("description"),
                required=None if required is None else bool(required),
                parameters=parameters,
                actor=actor,
            )
        except KeyError:
            return _not_found("Field", field_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(field.to_dict())

    @router.delete("/fields/{field_id}")
    async def api_delete_field(field_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            hard = db.delete_field(field_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse({"deleted": field_id, "removed": not hard})

    @router.post("/fields/{field_id}/position")
    async def api_set_field_position(
        field_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        position = _body_int(body, "position")
        if isinstance(position, JSONResponse):
            return position
        try:
            field = db.set_field_position(field_id, position, actor=actor)  # type: ignore[arg-type]
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(field.to_dict())

    @router.get("/fields/{field_id}/permissions")
    async def api_field_permissions(field_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            permissions = db.get_field_permissions(field_id)
        except KeyError:
            return _not_found("Field", field_id)
        return JSONResponse(permissions)

    @router.put("/fields/{field_id}/permissions/roles/{role}")
    async def api_set_field_role_permission(
        field_id: int,
        role: str,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            db.set_field_role_permission(field_id, role, body.get("access"), actor=actor)
            return JSONResponse(db.get_field_permissions(field_id))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)

    @router.put("/fields/{field_id}/permissions/groups/{group_id}")
    async def api_set_field_group_permission(
        field_id: int,
        group_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        try:
            db.set_field_group_permission(field_id, group_id, body.get("access"), actor=actor)
            return JSONResponse(db.get_field_permissions(field_id))
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)

    # -- List items ----------------------------------------------------------

    @router.get("/fields/{field_id}/items")
    async def api_list_items(field_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.get_field(field_id)
        except KeyError:
            return _not_found("Field", field_id)
        return JSONResponse([i.to_dict() for i in db.list_list_items(field_id)])

    @router.post("/fields/{field_id}/items", status_code=201)
    async def api_create_list_item(
        field_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        value = _body_int(body, "value")
        if isinstance(value, JSONResponse):
            return value
        try:
            item = db.create_list_item(field_id, value, body.get("text", ""), actor=actor)  # type: ignore[arg-type]
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse(item.to_dict(), status_code=201)

    @router.get("/items/{item_id}")
    async def api_list_item(item_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            item = db.get_list_item(item_id)
        except KeyError:
            return _not_found("List item", item_id)
        return JSONResponse(item.to_dict())

    @router.patch("/items/{item_id}")
    async def api_update_list_item(
        item_id: int,
        request: Request,
        db: EtraxisDB = Depends(_get_db),
        actor: User = Depends(_get_actor),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        value = _body_int(body, "value", required=False)
        if isinstance(value, JSONResponse):
            return value
        try:
            item = db.update_list_item(item_id, value=value, text=body.get("text"), actor=actor)
        except KeyError:
            return _not_found("List item", item_id)
        except (ValueError, PermissionError) as e:
            return _domain_error(e)
        return JSONResponse(item.to_dict())

    @router.delete("/items/{item_id}")
    async def api_delete_list_item(item_id: int, db: EtraxisDB = Depends(_get_db), actor: User = Depends(_get_actor)) -> JSONResponse:
        try:
            db.delete_list_item(item_id, actor=actor)
        except _DOMAIN_ERRORS as e:
            return _domain_error(e)
        return JSONResponse({"deleted": item_id})

    return router
