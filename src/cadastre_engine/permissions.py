"""Static permission catalog.

Permissions are flat ``resource.action`` strings. The catalog is loaded once
and never mutated; every role and every permission check is validated against
it so a mistyped key raises instead of quietly granting or denying access.
"""

from __future__ import annotations

from collections.abc import Iterable

from .exceptions import UnknownPermissionError
from .models import Permission

CADASTRE_VIEW = "cadastre.view"
CADASTRE_CREATE = "cadastre.create"
CADASTRE_EDIT = "cadastre.edit"
CADASTRE_DELETE = "cadastre.delete"
CADASTRE_VALIDATE = "cadastre.validate"
CADASTRE_OVERRIDE_WARNING = "cadastre.override_warning"
ROLES_MANAGE = "roles.manage"
SYSTEM_SETTINGS = "system.settings"

PERMISSIONS: tuple[Permission, ...] = (
    # Cadastre
    Permission(key=CADASTRE_VIEW, name="View Cadastre", description="View cadastral parcels and data", category="Cadastre"),
    Permission(key=CADASTRE_CREATE, name="Create Parcels", description="Register new cadastral parcels", category="Cadastre"),
    Permission(key=CADASTRE_EDIT, name="Edit Parcels", description="Modify existing parcel data", category="Cadastre"),
    Permission(key=CADASTRE_DELETE, name="Delete Parcels", description="Remove parcels from system", category="Cadastre"),
    Permission(key=CADASTRE_VALIDATE, name="Spatial Validation", description="Run spatial validation checks", category="Cadastre"),
    Permission(
        key=CADASTRE_OVERRIDE_WARNING,
        name="Override Validation Warnings",
        description="Admit a submission with validation warnings given a written justification",
        category="Cadastre",
    ),
    # Concessions
    Permission(key="concessions.view", name="View Concessions", description="View concession data", category="Concessions"),
    Permission(key="concessions.create", name="Create Concessions", description="Create new concession applications", category="Concessions"),
    Permission(key="concessions.edit", name="Edit Concessions", description="Modify concession data", category="Concessions"),
    Permission(key="concessions.approve", name="Approve Concessions", description="Approve or reject applications", category="Concessions"),
    Permission(key="concessions.renew", name="Renew Concessions", description="Process concession renewals", category="Concessions"),
    # GIS
    Permission(key="gis.view", name="View Maps", description="Access GIS mapping interface", category="GIS"),
    Permission(key="gis.edit", name="Edit Maps", description="Modify map layers and data", category="GIS"),
    Permission(key="gis.export", name="Export Maps", description="Export map data and images", category="GIS"),
    Permission(key="gis.analysis", name="Spatial Analysis", description="Perform spatial analysis operations", category="GIS"),
    # Administration
    Permission(key="users.view", name="View Users", description="View user accounts", category="Administration"),
    Permission(key="users.create", name="Create Users", description="Create new user accounts", category="Administration"),
    Permission(key="users.edit", name="Edit Users", description="Modify user accounts", category="Administration"),
    Permission(key="users.delete", name="Delete Users", description="Remove user accounts", category="Administration"),
    Permission(key=ROLES_MANAGE, name="Manage Roles", description="Create and modify user roles", category="Administration"),
    # Reports
    Permission(key="reports.view", name="View Reports", description="Access system reports", category="Reports"),
    Permission(key="reports.create", name="Create Reports", description="Generate custom reports", category="Reports"),
    Permission(key="reports.export", name="Export Reports", description="Export report data", category="Reports"),
    # System
    Permission(key=SYSTEM_SETTINGS, name="System Settings", description="Modify system configuration", category="System"),
    Permission(key="system.audit", name="Audit Logs", description="View system audit trails", category="System"),
    Permission(key="system.backup", name="System Backup", description="Perform system backups", category="System"),
    Permission(key="logs.view", name="System Logs", description="View system log entries", category="System"),
)


class PermissionCatalog:
    """Read-only lookup over a fixed set of permissions."""

    def __init__(self, permissions: Iterable[Permission] = PERMISSIONS):
        self._by_key: dict[str, Permission] = {}
        for permission in permissions:
            if permission.key in self._by_key:
                raise ValueError(f"Duplicate permission key: {permission.key}")
            self._by_key[permission.key] = permission

    def __contains__(self, key: object) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return len(self._by_key)

    def get(self, key: str) -> Permission:
        try:
            return self._by_key[key]
        except KeyError:
            raise UnknownPermissionError([key]) from None

    def keys(self) -> frozenset[str]:
        return frozenset(self._by_key)

    def all(self) -> list[Permission]:
        return list(self._by_key.values())

    def by_category(self) -> dict[str, list[Permission]]:
        """Permissions grouped by category, in catalog order."""
        grouped: dict[str, list[Permission]] = {}
        for permission in self._by_key.values():
            grouped.setdefault(permission.category, []).append(permission)
        return grouped

    def validate(self, keys: Iterable[str]) -> frozenset[str]:
        """Return ``keys`` as a frozenset, raising if any is not in the catalog."""
        keys = frozenset(keys)
        unknown = keys - self._by_key.keys()
        if unknown:
            raise UnknownPermissionError(unknown)
        return keys


DEFAULT_CATALOG = PermissionCatalog()
