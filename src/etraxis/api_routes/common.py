"""Shared helpers for API route modules."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from fastapi.responses import JSONResponse

from etraxis.db_base import ConflictError, FieldValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from starlette.requests import Request

logger = logging.getLogger(__name__)

_BOOL_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_BOOL_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _error_response(
    message: str,
    code: str,
    status_code: int,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    """Return a structured error response and log the error."""
    logger.warning("API error [%s] %s: %s", status_code, code, message)
    return JSONResponse(
        {"error": {"message": message, "code": code, "details": details or {}}},
        status_code=status_code,
    )


def _not_found(kind: str, key: Any) -> JSONResponse:
    return _error_response(f"{kind} not found: {key}", f"{kind.upper().replace(' ', '_')}_NOT_FOUND", 404)


def _domain_error(exc: Exception) -> JSONResponse:
    """Map a domain exception onto the error envelope.

    Subclasses are checked before their bases: FieldValidationError and
    ConflictError are both ValueErrors.
    """
    if isinstance(exc, FieldValidationError):
        return _error_response(str(exc), "FIELD_VALIDATION_ERROR", 400, dict(exc.errors))
    if isinstance(exc, ConflictError):
        return _error_response(str(exc), "CONFLICT", 409)
    if isinstance(exc, PermissionError):
        return _error_response(str(exc) or "Access denied", "ACCESS_DENIED", 403)
    if isinstance(exc, KeyError):
        return _error_response(f"Not found: {exc.args[0] if exc.args else ''}", "NOT_FOUND", 404)
    return _error_response(str(exc), "VALIDATION_ERROR", 400)


async def _parse_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse and validate a JSON object body, returning 400 on failure."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return body


def _safe_int(value: str, name: str, *, min_value: int | None = None) -> int | JSONResponse:
    """Parse a query-param string to int, returning a 400 error response on failure.

    When *min_value* is set, values below that floor are rejected with 400.
    """
    try:
        result = int(value)
    except (ValueError, TypeError):
        return _error_response(
            f'Invalid value for {name}: "{value}". Must be an integer.',
            "VALIDATION_ERROR",
            400,
        )
    if min_value is not None and result < min_value:
        return _error_response(
            f"Invalid value for {name}: {result}. Must be >= {min_value}.",
            "VALIDATION_ERROR",
            400,
        )
    return result


def _optional_int_param(params: Mapping[str, str], name: str) -> int | None | JSONResponse:
    raw = params.get(name)
    if raw is None or raw == "":
        return None
    return _safe_int(raw, name, min_value=1)


def _parse_pagination(
    params: Mapping[str, str],
    default_limit: int = 50,
) -> tuple[int, int] | JSONResponse:
    """Extract ``limit`` and ``offset`` from query params with validation.

    Returns ``(limit, offset)`` on success or a 400 ``JSONResponse`` on error.
    """
    limit = _safe_int(params.get("limit", str(default_limit)), "limit", min_value=1)
    if not isinstance(limit, int):
        return limit
    offset = _safe_int(params.get("offset", "0"), "offset", min_value=0)
    if not isinstance(offset, int):
        return offset
    return limit, offset


def _parse_bool_value(raw: str, name: str) -> bool | JSONResponse:
    value = raw.strip().lower()
    if value in _BOOL_TRUE_VALUES:
        return True
    if value in _BOOL_FALSE_VALUES:
        return False
    return _error_response(
        f'Invalid value for {name}: "{raw}". Must be one of true/false, 1/0, yes/no, on/off.',
        "VALIDATION_ERROR",
        400,
        {"param": name, "value": raw},
    )


def _get_bool_param(params: Mapping[str, str], name: str) -> bool | None | JSONResponse:
    """Extract an optional boolean query param; absent means None."""
    raw = params.get(name)
    if raw is None:
        return None
    return _parse_bool_value(raw, name)


def _body_int(body: Mapping[str, Any], name: str, *, required: bool = True) -> int | None | JSONResponse:
    """Read an integer id from a JSON body."""
    value = body.get(name)
    if value is None:
        if required:
            return _error_response(f"{name} is required", "VALIDATION_ERROR", 400)
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        return _error_response(f"{name} must be an integer", "VALIDATION_ERROR", 400)
    return value


def _body_int_list(body: Mapping[str, Any], name: str) -> list[int] | JSONResponse:
    value = body.get(name)
    if not isinstance(value, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in value):
        return _error_response(f"{name} must be a JSON array of integers", "VALIDATION_ERROR", 400)
    return value


def _body_str_list(body: Mapping[str, Any], name: str) -> list[str] | JSONResponse:
    value = body.get(name)
    if not isinstance(value, list) or not all(isinstance(i, str) for i in value):
        return _error_response(f"{name} must be a JSON array of strings", "VALIDATION_ERROR", 400)
    return value
