"""FastAPI surface over the request handler."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .audit import configure_logging
from .config import get_settings
from .exceptions import (
    CadastreEngineError,
    DuplicateRoleError,
    DuplicateRuleError,
    MalformedBoundaryError,
    PermissionDeniedError,
    RoleInUseError,
    RuleEvaluationError,
    SystemRoleProtectedError,
    UnknownPermissionError,
    UnknownRoleError,
    UnknownRuleError,
    UnknownUserError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from .handler import RequestHandler, build_handler
from .models import ActorContext, Permission, Role, RuleState, ValidationReport, ValidationRequest

logger = logging.getLogger(__name__)

RETRY_PROMPT = "Validation could not be completed. Please try again."

_STATUS_CODES: tuple[tuple[tuple[type[CadastreEngineError], ...], int], ...] = (
    ((PermissionDeniedError,), 403),
    ((UnknownUserError, UnknownRuleError, UnknownRoleError), 404),
    ((RoleInUseError, SystemRoleProtectedError, DuplicateRoleError, DuplicateRuleError), 409),
    ((MalformedBoundaryError, UnknownPermissionError), 422),
    ((UpstreamTimeoutError,), 504),
    ((UpstreamUnavailableError,), 503),
)

# Pipeline-level failures are reported with a generic prompt, never raw text.
_GENERIC = (UpstreamTimeoutError, UpstreamUnavailableError, RuleEvaluationError)


@lru_cache()
def get_handler() -> RequestHandler:
    return build_handler(get_settings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    handler = app.dependency_overrides.get(get_handler, get_handler)()
    await handler.check_roles()
    logger.info("Starting %s", settings.APP_NAME)
    yield


app = FastAPI(title="Cadastre Validation Engine", version="0.1.0", lifespan=lifespan)


@app.exception_handler(CadastreEngineError)
async def engine_error_handler(request: Request, exc: CadastreEngineError) -> JSONResponse:
    status_code = 500
    for types, code in _STATUS_CODES:
        if isinstance(exc, types):
            status_code = code
            break

    if isinstance(exc, _GENERIC):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": RETRY_PROMPT, "retryable": True})
    return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})


class RuleToggle(BaseModel):
    enabled: bool


class RoleCreate(BaseModel):
    name: str = Field(min_length=1, pattern=r"\S")
    description: str = ""
    permissions: list[str] = []


class RolePermissions(BaseModel):
    permissions: list[str]


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.post("/validate", response_model=ValidationReport)
async def validate(
    request: ValidationRequest,
    actor_id: str = Header(alias="X-Actor-Id"),
    handler: RequestHandler = Depends(get_handler),
):
    """Run the spatial validation pipeline for a candidate boundary."""
    return await handler.validate(request, actor_id)


@app.get("/permissions/{user_id}", response_model=ActorContext)
async def resolve_permissions(user_id: str, handler: RequestHandler = Depends(get_handler)):
    """Effective permissions of a user."""
    return await handler.resolve_permissions(user_id)


@app.get("/permissions-catalog", response_model=list[Permission])
async def permission_catalog(handler: RequestHandler = Depends(get_handler)):
    return handler.permission_catalog()


@app.get("/rules", response_model=list[RuleState])
async def list_rules(
    actor_id: str = Header(alias="X-Actor-Id"),
    handler: RequestHandler = Depends(get_handler),
):
    return await handler.list_rules(actor_id)


@app.put("/rules/{rule_id}/enabled", response_model=RuleState)
async def set_rule_enabled(
    rule_id: str,
    body: RuleToggle,
    actor_id: str = Header(alias="X-Actor-Id"),
    handler: RequestHandler = Depends(get_handler),
):
    """Enable or disable a rule for subsequent validation runs."""
    return await handler.set_rule_enabled(rule_id, body.enabled, actor_id)


@app.post("/roles", response_model=Role, status_code=201)
async def create_role(
    body: RoleCreate,
    actor_id: str = Header(alias="X-Actor-Id"),
    handler: RequestHandler = Depends(get_handler),
):
    return await handler.create_role(actor_id, body.name, body.description, body.permissions)


@app.put("/roles/{role_id}/permissions", response_model=Role)
async def update_role_permissions(
    role_id: str,
    body: RolePermissions,
    actor_id: str = Header(alias="X-Actor-Id"),
    handler: RequestHandler = Depends(get_handler),
):
    return await handler.update_role_permissions(actor_id, role_id, body.permissions)


@app.delete("/roles/{role_id}", status_code=204)
async def delete_role(
    role_id: str,
    actor_id: str = Header(alias="X-Actor-Id"),
    handler: RequestHandler = Depends(get_handler),
):
    await handler.delete_role(actor_id, role_id)
    return Response(status_code=204)
