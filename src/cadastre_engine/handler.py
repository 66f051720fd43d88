"""Request handler: the entry points consumed by the API layer.

Each call resolves the actor first, then delegates to the pipeline, the
registry or the permission engine. Audit events are emitted through the audit
logger; persisting them is the caller's concern.

All entry points are coroutines. Cancelling the awaiting task (for example
when the submitting client disconnects) cancels any in-flight gateway or
geometry call.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .audit import log_audit_event
from .authorization import PermissionResolver
from .config import Settings, get_settings
from .exceptions import PermissionDeniedError
from .gateway import PersistenceGateway
from .geometry import PlanarGeometryProvider
from .models import (
    ActorContext,
    OutcomeStatus,
    Permission,
    Role,
    RuleState,
    ValidationReport,
    ValidationRequest,
)
from .permissions import CADASTRE_VALIDATE, SYSTEM_SETTINGS
from .pipeline import ValidationPipeline
from .registry import RuleRegistry, build_registry
from .seed import seeded_gateway

logger = logging.getLogger(__name__)


class RequestHandler:
    def __init__(self, registry: RuleRegistry, pipeline: ValidationPipeline, resolver: PermissionResolver):
        self.registry = registry
        self.pipeline = pipeline
        self.resolver = resolver

    async def check_roles(self) -> None:
        """Startup check: every stored role uses only catalog permissions."""
        self.resolver.validate_roles(await self.resolver.gateway.list_roles())

    async def validate(self, request: ValidationRequest, actor_id: str) -> ValidationReport:
        context = await self.resolver.resolve(actor_id)
        try:
            report = await self.pipeline.validate(request, context)
        except PermissionDeniedError as e:
            log_audit_event(
                "validation.denied",
                actor_id=actor_id,
                details={"parcel_id": request.parcel_id, "permission": e.permission},
            )
            raise

        log_audit_event(
            "validation.completed",
            actor_id=actor_id,
            details={
                "parcel_id": request.parcel_id,
                "decision": report.decision,
                "passed": report.passed,
                "warnings": report.warnings,
                "failed": report.failed,
                "failed_rules": [o.rule_id for o in report.outcomes if o.status is OutcomeStatus.FAIL],
                "skipped_rules": report.skipped_rule_ids,
                "override": report.override.model_dump() if report.override else None,
            },
        )
        return report

    async def resolve_permissions(self, actor_id: str) -> ActorContext:
        return await self.resolver.resolve(actor_id)

    async def list_rules(self, actor_id: str) -> list[RuleState]:
        context = await self.resolver.resolve(actor_id)
        if not self.resolver.has_any(context, [CADASTRE_VALIDATE, SYSTEM_SETTINGS]):
            raise PermissionDeniedError(actor_id, SYSTEM_SETTINGS)
        return self.registry.rules()

    async def set_rule_enabled(self, rule_id: str, enabled: bool, actor_id: str) -> RuleState:
        context = await self.resolver.resolve(actor_id)
        self.resolver.require(context, SYSTEM_SETTINGS)
        self.registry.set_enabled(rule_id, enabled)
        log_audit_event("rule.toggled", actor_id=actor_id, details={"rule_id": rule_id, "enabled": enabled})
        return next(r for r in self.registry.rules() if r.rule_id == rule_id)

    def permission_catalog(self) -> list[Permission]:
        return self.resolver.catalog.all()

    async def create_role(
        self, actor_id: str, name: str, description: str = "", permissions: Iterable[str] = ()
    ) -> Role:
        context = await self.resolver.resolve(actor_id)
        role = await self.resolver.create_role(context, name, description, permissions)
        log_audit_event("role.created", actor_id=actor_id, details={"role_id": role.id, "permissions": role.permissions})
        return role

    async def update_role_permissions(self, actor_id: str, role_id: str, permissions: Iterable[str]) -> Role:
        context = await self.resolver.resolve(actor_id)
        role = await self.resolver.update_role_permissions(context, role_id, permissions)
        log_audit_event("role.updated", actor_id=actor_id, details={"role_id": role_id, "permissions": role.permissions})
        return role

    async def delete_role(self, actor_id: str, role_id: str) -> None:
        context = await self.resolver.resolve(actor_id)
        await self.resolver.delete_role(context, role_id)
        log_audit_event("role.deleted", actor_id=actor_id, details={"role_id": role_id})


def build_handler(settings: Settings | None = None, gateway: PersistenceGateway | None = None) -> RequestHandler:
    """Wire registry, geometry, pipeline and resolver from settings."""
    settings = settings or get_settings()
    gateway = gateway if gateway is not None else seeded_gateway()

    registry = build_registry(settings.RULES)
    pipeline = ValidationPipeline(
        registry,
        PlanarGeometryProvider(gateway),
        timeout=settings.UPSTREAM_TIMEOUT_SECONDS,
        search_radius_m=settings.NEARBY_SEARCH_RADIUS_M,
        parallel=settings.PARALLEL_RULES,
    )
    resolver = PermissionResolver(gateway, timeout=settings.UPSTREAM_TIMEOUT_SECONDS)
    logger.info("Request handler ready with %d rules (%d enabled)", len(registry), len(registry.enabled_rules()))
    return RequestHandler(registry, pipeline, resolver)
