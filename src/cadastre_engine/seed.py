"""Seed roles, users and spatial records for the in-memory gateway."""

from __future__ import annotations

from .gateway import InMemoryGateway
from .models import Boundary, EntityKind, Role, SpatialRecord, User
from .permissions import DEFAULT_CATALOG

SYSTEM_ADMINISTRATOR = "role-001"

SEED_ROLES: tuple[Role, ...] = (
    Role(
        id=SYSTEM_ADMINISTRATOR,
        name="System Administrator",
        description="Full system access with all permissions",
        permissions=DEFAULT_CATALOG.keys(),
        is_system=True,
    ),
    Role(
        id="role-002",
        name="Division Manager",
        description="Manage division operations and approve applications",
        permissions=frozenset({
            "cadastre.view", "cadastre.create", "cadastre.edit", "cadastre.validate",
            "cadastre.override_warning",
            "concessions.view", "concessions.create", "concessions.edit",
            "concessions.approve", "concessions.renew",
            "gis.view", "gis.edit", "gis.analysis",
            "reports.view", "reports.create", "reports.export",
            "users.view", "system.audit",
        }),
    ),
    Role(
        id="role-003",
        name="Senior Surveyor",
        description="Advanced cadastral operations and spatial validation",
        permissions=frozenset({
            "cadastre.view", "cadastre.create", "cadastre.edit", "cadastre.validate",
            "gis.view", "gis.edit", "gis.analysis", "gis.export",
            "reports.view", "reports.create", "system.audit",
        }),
    ),
    Role(
        id="role-004",
        name="Surveyor",
        description="Basic cadastral operations and data entry",
        permissions=frozenset({
            "cadastre.view", "cadastre.create", "cadastre.edit", "gis.view", "gis.edit", "reports.view",
        }),
    ),
    Role(
        id="role-005",
        name="Data Entry Clerk",
        description="Basic data entry and viewing permissions",
        permissions=frozenset({"cadastre.view", "cadastre.create", "concessions.view", "gis.view", "reports.view"}),
    ),
)

SEED_USERS: tuple[User, ...] = (
    User(id="USR-001", name="John Surveyor", email="admin@nbc.gov.lr", department="IT Department",
         role_ids=(SYSTEM_ADMINISTRATOR,)),
    User(id="USR-002", name="Mary Manager", email="manager@nbc.gov.lr", department="Cadastre Division",
         role_ids=("role-002",)),
    User(id="USR-003", name="James Surveyor", email="surveyor@nbc.gov.lr", department="Cadastre Division",
         role_ids=("role-003",)),
    User(id="USR-004", name="Grace Clerk", email="clerk@nbc.gov.lr", department="Records Office",
         role_ids=("role-005",)),
)

SEED_RECORDS: tuple[SpatialRecord, ...] = (
    SpatialRecord(
        id="PAR-2024-001",
        name="John Doe Farms Ltd.",
        kind=EntityKind.PARCEL,
        status="registered",
        boundary=Boundary.from_pairs([(6.8400, -9.4000), (6.8501, -9.4000), (6.8501, -9.3899), (6.8400, -9.3899)]),
    ),
    SpatialRecord(
        id="CON-2024-001",
        name="Bong Mining Concession",
        kind=EntityKind.CONCESSION,
        status="active",
        boundary=Boundary.from_pairs([(6.9000, -9.5000), (6.9450, -9.5000), (6.9450, -9.4450), (6.9000, -9.4450)]),
    ),
    SpatialRecord(
        id="PA-SAPO",
        name="Sapo National Park",
        kind=EntityKind.PROTECTED_AREA,
        boundary=Boundary.from_pairs([(5.2000, -8.8000), (5.6000, -8.8000), (5.6000, -8.3000), (5.2000, -8.3000)]),
    ),
    SpatialRecord(
        id="WB-STPAUL",
        name="St. Paul River",
        kind=EntityKind.WATER_BODY,
        boundary=Boundary.from_pairs([(6.4000, -10.7000), (6.4010, -10.7000), (6.5000, -10.5000), (6.4990, -10.5000)]),
    ),
)


def seeded_gateway() -> InMemoryGateway:
    """Fresh in-memory gateway populated with the seed data."""
    return InMemoryGateway(users=SEED_USERS, roles=SEED_ROLES, records=SEED_RECORDS)
