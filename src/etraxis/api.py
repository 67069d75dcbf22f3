"""JSON HTTP API for etraxis.

A module-level ``_db`` is set at startup (or by test fixtures) and injected
via ``Depends(_get_db)``. The acting user is the one whose email arrives in
the ``X-Etraxis-User`` header; authentication itself happens upstream.

Usage:
    etraxis serve                 # http://127.0.0.1:8480/api/...
    etraxis serve --port 9000
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi.responses import JSONResponse
from starlette.requests import Request

from etraxis.core import EtraxisDB, find_etraxis_root
from etraxis.logging import setup_logging
from etraxis.models import User
from etraxis.validation import sanitize_actor

DEFAULT_PORT = 8480
ACTOR_HEADER = "X-Etraxis-User"

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level state, set by main() or test fixtures
# ---------------------------------------------------------------------------

_db: EtraxisDB | None = None


def _get_db() -> EtraxisDB:
    """Return the active database connection."""
    from fastapi import HTTPException

    if _db is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return _db


def _get_actor(request: Request) -> User:
    """Resolve the acting user from the ``X-Etraxis-User`` header.

    Missing, malformed, unknown and disabled identities are all rejected
    with 401.
    """
    from fastapi import HTTPException

    db = _get_db()
    raw = request.headers.get(ACTOR_HEADER)
    if raw is None:
        raise HTTPException(status_code=401, detail=f"Missing {ACTOR_HEADER} header")
    email, err = sanitize_actor(raw)
    if err:
        raise HTTPException(status_code=401, detail=err)
    try:
        user = db.get_user_by_email(email)
    except KeyError:
        raise HTTPException(status_code=401, detail=f"Unknown user: {email}") from None
    if user.disabled:
        raise HTTPException(status_code=401, detail=f"User is disabled: {email}")
    return user


_STATUS_CODES = {400: "VALIDATION_ERROR", 401: "UNAUTHORIZED", 403: "ACCESS_DENIED", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


def create_app() -> Any:
    """Create the FastAPI application with every /api endpoint."""
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError
    from starlette.exceptions import HTTPException as StarletteHTTPException

    from etraxis.api_routes import admin, attachments, issues, workflow
    from etraxis.api_routes.common import _error_response

    app = FastAPI(title="eTraxis", docs_url=None, redoc_url=None)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _STATUS_CODES.get(exc.status_code, "INTERNAL_ERROR" if exc.status_code >= 500 else "HTTP_ERROR")
        return _error_response(str(exc.detail), code, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [{"loc": [str(part) for part in e.get("loc", ())], "msg": str(e.get("msg", ""))} for e in exc.errors()]
        return _error_response("Invalid request", "VALIDATION_ERROR", 400, {"errors": errors})

    app.include_router(admin.create_router(), prefix="/api")
    app.include_router(workflow.create_router(), prefix="/api")
    app.include_router(issues.create_router(), prefix="/api")
    app.include_router(attachments.create_router(), prefix="/api")

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok"})

    return app


def main(port: int = DEFAULT_PORT, *, host: str = "127.0.0.1") -> None:
    """Start the API server for the local .etraxis/ installation."""
    import uvicorn

    global _db

    etraxis_dir = find_etraxis_root()
    setup_logging(etraxis_dir)
    _db = EtraxisDB.from_project(etraxis_dir.parent, check_same_thread=False)
    app = create_app()
    print(f"eTraxis API: http://{host}:{port}/api")
    uvicorn.run(app, host=host, port=port, log_level="warning")
