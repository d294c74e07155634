"""HTTP API for jobtrack — FastAPI app over LifecycleService.

Usage:
    jobtrack serve                  # Opens on localhost:8377
    jobtrack serve --port 9000      # Custom port

Blocked lifecycle results map to error responses whose ``code`` is the
stable block code: 423 for frozen projects, 403 for lead conflicts, 409 for
guard and state-precondition blocks.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from jobtrack.core import JobTrackDB, default_config, find_jobtrack_root, read_config
from jobtrack.lifecycle import LifecycleService
from jobtrack.models import MockupApproval, PaymentVerification, Role
from jobtrack.outcomes import BlockCode, Blocked, LifecycleResult, StoreConflictError, UnknownStatusError
from jobtrack.types.core import ProjectConfig
from jobtrack.validation import sanitize_actor

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8377

_db: JobTrackDB | None = None
_config: ProjectConfig | None = None

_BLOCK_STATUS: dict[BlockCode, int] = {
    BlockCode.PROJECT_ON_HOLD: 423,
    BlockCode.PROJECT_CANCELLED: 423,
    BlockCode.LEAD_CONFLICT: 403,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


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


async def _parse_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse and validate a JSON object body, returning 400 on failure."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return _error_response("Invalid JSON body", "VALIDATION_ERROR", 400)
    if not isinstance(body, dict):
        return _error_response("Request body must be a JSON object", "VALIDATION_ERROR", 400)
    return body


def _validate_actor(value: Any) -> tuple[str, JSONResponse | None]:
    """Validate the requester id from a JSON body."""
    cleaned, err = sanitize_actor(value)
    if err:
        return ("", _error_response(err, "VALIDATION_ERROR", 400))
    return (cleaned, None)


def _validate_role(value: Any) -> Role | JSONResponse:
    try:
        return Role(value)
    except ValueError:
        allowed = ", ".join(r.value for r in Role)
        return _error_response(f"Invalid role: {value!r}. Must be one of: {allowed}", "VALIDATION_ERROR", 400)


def _int_param(request: Request, name: str) -> int | None | JSONResponse:
    """Read an optional non-negative integer query parameter, returning 400 on bad input."""
    raw = request.query_params.get(name)
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return _error_response(f'Invalid value for {name}: "{raw}". Must be an integer.', "VALIDATION_ERROR", 400)
    if value < 0:
        return _error_response(f"Invalid value for {name}: {value}. Must be >= 0.", "VALIDATION_ERROR", 400)
    return value


def _blocked_response(result: LifecycleResult) -> JSONResponse:
    code = result.code
    assert code is not None
    return _error_response(
        result.message,
        code.value,
        _BLOCK_STATUS.get(code, 409),
        {"missing": list(result.missing), "overridable": result.overridable},
    )


def _lifecycle_call(project_id: str, call: Callable[[], LifecycleResult]) -> JSONResponse:
    """Run a LifecycleService operation and map every outcome to a response."""
    try:
        result = call()
    except KeyError:
        return _error_response(f"Project not found: {project_id}", "PROJECT_NOT_FOUND", 404)
    except UnknownStatusError as e:
        return _error_response(str(e), e.code, 400, {"valid": e.valid})
    except StoreConflictError as e:
        return _error_response(str(e), e.code, 503)
    except ValueError as e:
        return _error_response(str(e), "VALIDATION_ERROR", 400)
    if not result.ok:
        return _blocked_response(result)
    return JSONResponse(result.to_dict())


def _get_db() -> JobTrackDB:
    """Return the active database connection."""
    if _db is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return _db


def _get_service() -> LifecycleService:
    db = _get_db()
    return LifecycleService.from_config(db, _config if _config is not None else default_config(), clock=db.clock)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


def _create_router() -> APIRouter:
    """Build the APIRouter for project and bottleneck endpoints.

    NOTE: All handlers are async despite doing synchronous SQLite I/O. This
    serializes DB access on the event loop thread, avoiding concurrent
    multi-thread access to the shared DB connection.
    """
    router = APIRouter()

    # -- Projects ------------------------------------------------------------

    @router.get("/projects")
    async def api_projects(request: Request, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        params = request.query_params
        active = params.get("active", "").lower() in {"1", "true", "yes", "on"}
        try:
            projects = db.list_projects(
                category=params.get("category"),
                status=params.get("status"),
                lead_id=params.get("lead"),
                active_only=active,
                limit=10000,
            )
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400)
        return JSONResponse([p.to_dict() for p in projects])

    @router.post("/projects")
    async def api_create_project(request: Request, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor", "api"))
        if err:
            return err
        try:
            project = db.create_project(
                body.get("name", ""),
                category=body.get("category", "Standard"),
                lead_id=body.get("lead_id", ""),
                priority=body.get("priority"),
                status=body.get("status"),
                actor=actor,
            )
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400)
        return JSONResponse(project.to_dict(), status_code=201)

    @router.get("/projects/{project_id}")
    async def api_project(project_id: str, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        try:
            project = db.get_project(project_id)
        except KeyError:
            return _error_response(f"Project not found: {project_id}", "PROJECT_NOT_FOUND", 404)
        return JSONResponse(project.to_dict())

    @router.get("/projects/{project_id}/events")
    async def api_project_events(project_id: str, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        try:
            events = db.get_project_events(project_id)
        except KeyError:
            return _error_response(f"Project not found: {project_id}", "PROJECT_NOT_FOUND", 404)
        return JSONResponse(events)

    @router.get("/projects/{project_id}/transitions")
    async def api_transitions(
        project_id: str,
        request: Request,
        service: LifecycleService = Depends(_get_service),
    ) -> JSONResponse:
        role = _validate_role(request.query_params.get("role", Role.STAFF.value))
        if not isinstance(role, Role):
            return role
        try:
            options = service.available_transitions(project_id, role)
        except KeyError:
            return _error_response(f"Project not found: {project_id}", "PROJECT_NOT_FOUND", 404)
        return JSONResponse(
            [
                {
                    "to": o.to,
                    "index": o.index,
                    "ready": o.ready,
                    "blocked": o.decision.to_dict() if isinstance(o.decision, Blocked) else None,
                }
                for o in options
            ]
        )

    # -- Lifecycle operations ------------------------------------------------

    @router.post("/projects/{project_id}/transition")
    async def api_transition(
        project_id: str,
        request: Request,
        service: LifecycleService = Depends(_get_service),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        role = _validate_role(body.get("role", Role.STAFF.value))
        if not isinstance(role, Role):
            return role
        status = body.get("status")
        if not isinstance(status, str) or not status:
            return _error_response("status is required", "VALIDATION_ERROR", 400)
        override = body.get("override", False)
        if not isinstance(override, bool):
            return _error_response("override must be a boolean", "VALIDATION_ERROR", 400)
        return _lifecycle_call(
            project_id,
            lambda: service.attempt_transition(
                project_id, status, requester_id=actor, requester_role=role, allow_override=override
            ),
        )

    @router.post("/projects/{project_id}/hold")
    async def api_hold(
        project_id: str,
        request: Request,
        service: LifecycleService = Depends(_get_service),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        on = body.get("on", True)
        if not isinstance(on, bool):
            return _error_response("on must be a boolean", "VALIDATION_ERROR", 400)
        reason = body.get("reason", "")
        return _lifecycle_call(
            project_id,
            lambda: service.set_hold(project_id, on, reason=reason, requester_id=actor),
        )

    @router.post("/projects/{project_id}/cancel")
    async def api_cancel(
        project_id: str,
        request: Request,
        service: LifecycleService = Depends(_get_service),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        reason = body.get("reason", "")
        return _lifecycle_call(project_id, lambda: service.cancel(project_id, reason=reason, requester_id=actor))

    @router.post("/projects/{project_id}/reactivate")
    async def api_reactivate(
        project_id: str,
        request: Request,
        service: LifecycleService = Depends(_get_service),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        return _lifecycle_call(project_id, lambda: service.reactivate(project_id, requester_id=actor))

    @router.post("/projects/{project_id}/category")
    async def api_change_category(
        project_id: str,
        request: Request,
        service: LifecycleService = Depends(_get_service),
    ) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor"))
        if err:
            return err
        category = body.get("category")
        if not isinstance(category, str) or not category:
            return _error_response("category is required", "VALIDATION_ERROR", 400)
        status = body.get("status")
        if status is not None and not isinstance(status, str):
            return _error_response("status must be a string", "VALIDATION_ERROR", 400)
        role = _validate_role(body.get("role", Role.STAFF.value))
        if not isinstance(role, Role):
            return role
        override = body.get("override", False)
        if not isinstance(override, bool):
            return _error_response("override must be a boolean", "VALIDATION_ERROR", 400)
        return _lifecycle_call(
            project_id,
            lambda: service.change_category(
                project_id,
                category,
                requester_id=actor,
                target_status=status,
                requester_role=role,
                allow_override=override,
            ),
        )

    # -- Prerequisites -------------------------------------------------------

    @router.post("/projects/{project_id}/invoice")
    async def api_invoice(project_id: str, request: Request, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor", "api"))
        if err:
            return err
        sent = body.get("sent", True)
        if not isinstance(sent, bool):
            return _error_response("sent must be a boolean", "VALIDATION_ERROR", 400)
        try:
            project = db.set_invoice_sent(project_id, sent, actor=actor)
        except KeyError:
            return _error_response(f"Project not found: {project_id}", "PROJECT_NOT_FOUND", 404)
        return JSONResponse(project.to_dict())

    @router.post("/projects/{project_id}/payments")
    async def api_payment(project_id: str, request: Request, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor", "api"))
        if err:
            return err
        try:
            kind = PaymentVerification(body.get("kind"))
        except ValueError:
            allowed = ", ".join(v.value for v in PaymentVerification)
            return _error_response(f"kind must be one of: {allowed}", "VALIDATION_ERROR", 400)
        try:
            if body.get("remove", False) is True:
                project = db.remove_payment_verification(project_id, kind, actor=actor)
            else:
                project = db.add_payment_verification(project_id, kind, actor=actor)
        except KeyError:
            return _error_response(f"Project not found: {project_id}", "PROJECT_NOT_FOUND", 404)
        return JSONResponse(project.to_dict())

    @router.post("/projects/{project_id}/mockup")
    async def api_mockup(project_id: str, request: Request, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor", "api"))
        if err:
            return err
        action = body.get("action")
        try:
            if action == "upload":
                project = db.record_mockup_upload(project_id, actor=actor)
            elif action in {MockupApproval.APPROVED.value, MockupApproval.REJECTED.value}:
                project = db.set_mockup_approval(project_id, action, reason=body.get("reason", ""), actor=actor)
            else:
                return _error_response("action must be one of: upload, approved, rejected", "VALIDATION_ERROR", 400)
        except KeyError:
            return _error_response(f"Project not found: {project_id}", "PROJECT_NOT_FOUND", 404)
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400)
        return JSONResponse(project.to_dict())

    # -- Bottlenecks ---------------------------------------------------------

    @router.get("/bottlenecks")
    async def api_bottlenecks(request: Request, service: LifecycleService = Depends(_get_service)) -> JSONResponse:
        days = _int_param(request, "days")
        if isinstance(days, JSONResponse):
            return days
        return JSONResponse(service.check_bottleneck_alert(days).to_dict())

    @router.post("/bottlenecks/dismiss")
    async def api_dismiss(request: Request, service: LifecycleService = Depends(_get_service)) -> JSONResponse:
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        actor, err = _validate_actor(body.get("actor", "api"))
        if err:
            return err
        signature = body.get("signature")
        if not isinstance(signature, str):
            return _error_response("signature is required", "VALIDATION_ERROR", 400)
        try:
            service.dismiss_bottleneck_alert(signature, requester_id=actor)
        except ValueError as e:
            return _error_response(str(e), "VALIDATION_ERROR", 400)
        return JSONResponse({"dismissed": signature, "dismissed_by": actor})

    @router.get("/bottlenecks/dismissals")
    async def api_dismissals(request: Request, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        limit = _int_param(request, "limit")
        if isinstance(limit, JSONResponse):
            return limit
        return JSONResponse(db.list_dismissals(limit=100 if limit is None else limit))

    # -- Activity ------------------------------------------------------------

    @router.get("/events")
    async def api_events(request: Request, db: JobTrackDB = Depends(_get_db)) -> JSONResponse:
        """Recent events across all projects, or those after ``?since=`` (epoch ms) oldest first."""
        limit = _int_param(request, "limit")
        if isinstance(limit, JSONResponse):
            return limit
        since = _int_param(request, "since")
        if isinstance(since, JSONResponse):
            return since
        count = 50 if limit is None else limit
        if since is not None:
            return JSONResponse(db.get_events_since(since, limit=count))
        return JSONResponse(db.get_recent_events(limit=count))

    return router


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Create the FastAPI application with all API endpoints."""
    app = FastAPI(title="jobtrack", docs_url=None, redoc_url=None)
    app.include_router(_create_router(), prefix="/api")

    @app.get("/api/health")
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "prefix": _db.prefix if _db is not None else None})

    return app


def main(port: int = DEFAULT_PORT, *, host: str = "127.0.0.1") -> None:
    """Start the API server for the project discovered from cwd."""
    import uvicorn

    from jobtrack.logging import setup_logging

    global _db, _config

    jobtrack_dir = find_jobtrack_root()
    setup_logging(jobtrack_dir)
    _config = read_config(jobtrack_dir)
    _db = JobTrackDB.from_project(jobtrack_dir.parent, check_same_thread=False)

    app = create_app()
    print(f"jobtrack API: http://{host}:{port}/api")
    uvicorn.run(app, host=host, port=port, log_level="warning")
