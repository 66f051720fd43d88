"""Permission resolution and role administration.

Permissions are flat strings matched exactly: no wildcards, no hierarchy, no
implicit grants. An actor's effective set is the union of its roles' sets.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from .exceptions import (
    DuplicateRoleError,
    PermissionDeniedError,
    RoleInUseError,
    SystemRoleProtectedError,
    UnknownPermissionError,
    UnknownRoleError,
    UnknownUserError,
)
from .gateway import PersistenceGateway
from .models import ActorContext, Role
from .permissions import DEFAULT_CATALOG, ROLES_MANAGE, PermissionCatalog
from .upstream import call_upstream

logger = logging.getLogger(__name__)

_ROLE_ID = re.compile(r"^role-(\d+)$")


def has(context: ActorContext, permission: str, catalog: PermissionCatalog = DEFAULT_CATALOG) -> bool:
    if permission not in catalog:
        raise UnknownPermissionError([permission])
    return permission in context.permissions


def has_any(
    context: ActorContext, permissions: Iterable[str], catalog: PermissionCatalog = DEFAULT_CATALOG
) -> bool:
    permissions = list(permissions)
    catalog.validate(permissions)
    return any(p in context.permissions for p in permissions)


def require(context: ActorContext, permission: str, catalog: PermissionCatalog = DEFAULT_CATALOG) -> None:
    if not has(context, permission, catalog):
        logger.info("Denied %s to %s", permission, context.user_id)
        raise PermissionDeniedError(context.user_id, permission)


class PermissionResolver:
    """Resolves actors to ``ActorContext`` and administers roles.

    Holds a read-through cache of role id to permission set, dropped per role
    whenever the gateway announces a role change. Each invalidation bumps a
    generation counter; a fetch only populates the cache if no invalidation
    for its role happened while it was in flight.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        catalog: PermissionCatalog = DEFAULT_CATALOG,
        timeout: float = 5.0,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.timeout = timeout
        self._cache: dict[str, frozenset[str]] = {}
        self._generations: dict[str, int] = {}
        self._epoch = 0
        gateway.subscribe(self.invalidate)

    def invalidate(self, role_id: str | None = None) -> None:
        if role_id is None:
            self._epoch += 1
            self._cache.clear()
        else:
            self._generations[role_id] = self._generations.get(role_id, 0) + 1
            self._cache.pop(role_id, None)

    def _generation(self, role_id: str) -> tuple[int, int]:
        return self._epoch, self._generations.get(role_id, 0)

    async def _call(self, name: str, awaitable):
        return await call_upstream(f"persistence.{name}", awaitable, self.timeout)

    async def _role_permissions(self, role_id: str) -> frozenset[str]:
        permissions = self._cache.get(role_id)
        if permissions is None:
            generation = self._generation(role_id)
            permissions = frozenset(await self._call("find_role_permissions", self.gateway.find_role_permissions(role_id)))
            if self._generation(role_id) == generation:
                self._cache[role_id] = permissions
        return permissions

    async def resolve(self, user_id: str) -> ActorContext:
        roles = await self._call("find_user_roles", self.gateway.find_user_roles(user_id))
        if roles is None:
            raise UnknownUserError(user_id)

        permissions: set[str] = set()
        for role in roles:
            permissions |= await self._role_permissions(role.id)
        return ActorContext(
            user_id=user_id,
            role_ids=tuple(sorted({r.id for r in roles})),
            permissions=frozenset(permissions),
        )

    # -- capability checks -----------------------------------------------------

    def has(self, context: ActorContext, permission: str) -> bool:
        return has(context, permission, self.catalog)

    def has_any(self, context: ActorContext, permissions: Iterable[str]) -> bool:
        return has_any(context, permissions, self.catalog)

    def require(self, context: ActorContext, permission: str) -> None:
        require(context, permission, self.catalog)

    def validate_roles(self, roles: Iterable[Role]) -> None:
        """Check that every role references only catalog permissions."""
        for role in roles:
            try:
                self.catalog.validate(role.permissions)
            except UnknownPermissionError:
                logger.error("Role %s references permissions outside the catalog", role.id)
                raise

    # -- role administration ---------------------------------------------------

    async def _existing_role(self, role_id: str) -> Role:
        role = await self._call("find_role", self.gateway.find_role(role_id))
        if role is None:
            raise UnknownRoleError(role_id)
        return role

    async def create_role(
        self,
        context: ActorContext,
        name: str,
        description: str = "",
        permissions: Iterable[str] = (),
    ) -> Role:
        self.require(context, ROLES_MANAGE)
        permissions = self.catalog.validate(permissions)
        name = name.strip()
        if not name:
            raise ValueError("Role name is required")

        roles = await self._call("list_roles", self.gateway.list_roles())
        if any(r.name.strip().lower() == name.lower() for r in roles):
            raise DuplicateRoleError(name)

        numbers = [int(m.group(1)) for r in roles if (m := _ROLE_ID.match(r.id))]
        role = Role(
            id=f"role-{max(numbers, default=0) + 1:03d}",
            name=name,
            description=description,
            permissions=permissions,
        )
        await self._call("save_role", self.gateway.save_role(role))
        logger.info("Role %s (%s) created by %s", role.id, role.name, context.user_id)
        return role

    async def update_role_permissions(
        self, context: ActorContext, role_id: str, permissions: Iterable[str]
    ) -> Role:
        self.require(context, ROLES_MANAGE)
        permissions = self.catalog.validate(permissions)
        role = await self._existing_role(role_id)
        if role.is_system:
            raise SystemRoleProtectedError(role_id)

        updated = role.model_copy(update={"permissions": permissions})
        await self._call("save_role", self.gateway.save_role(updated))
        logger.info("Role %s permissions updated by %s", role_id, context.user_id)
        return updated

    async def delete_role(self, context: ActorContext, role_id: str) -> None:
        self.require(context, ROLES_MANAGE)
        role = await self._existing_role(role_id)
        if role.is_system:
            raise SystemRoleProtectedError(role_id)

        in_use = await self._call("count_role_users", self.gateway.count_role_users(role_id))
        if in_use:
            raise RoleInUseError(role_id, in_use)

        await self._call("delete_role", self.gateway.delete_role(role_id))
        logger.info("Role %s deleted by %s", role_id, context.user_id)
