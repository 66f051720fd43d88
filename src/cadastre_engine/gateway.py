"""Persistence Gateway contract and an in-memory store.

The engine only reads from storage, except for administrative role mutations.
Role changes are announced to subscribers so cached permission sets can be
dropped.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from typing import Protocol

from .exceptions import UnknownRoleError
from .models import Boundary, Role, SpatialRecord, User

logger = logging.getLogger(__name__)

METERS_PER_DEGREE_LAT = 111_320

RoleChangeListener = Callable[[str], None]


class PersistenceGateway(Protocol):
    async def find_user(self, user_id: str) -> User | None: ...

    async def find_user_roles(self, user_id: str) -> list[Role] | None:
        """Roles assigned to the user, or ``None`` if the user does not exist."""

    async def find_role(self, role_id: str) -> Role | None: ...

    async def find_role_permissions(self, role_id: str) -> frozenset[str]: ...

    async def list_roles(self) -> list[Role]: ...

    async def save_role(self, role: Role) -> None: ...

    async def delete_role(self, role_id: str) -> None: ...

    async def count_role_users(self, role_id: str) -> int: ...

    async def find_spatial_records_near(self, boundary: Boundary, radius_m: float) -> list[SpatialRecord]: ...

    def subscribe(self, listener: RoleChangeListener) -> None: ...


def _padded_bbox(boundary: Boundary, radius_m: float) -> tuple[float, float, float, float]:
    lats = [c.lat for c in boundary.coordinates]
    lons = [c.lon for c in boundary.coordinates]
    mid_lat = (min(lats) + max(lats)) / 2
    pad_lat = radius_m / METERS_PER_DEGREE_LAT
    pad_lon = radius_m / (METERS_PER_DEGREE_LAT * max(math.cos(math.radians(mid_lat)), 0.01))
    return min(lons) - pad_lon, min(lats) - pad_lat, max(lons) + pad_lon, max(lats) + pad_lat


def _bbox(boundary: Boundary) -> tuple[float, float, float, float]:
    lats = [c.lat for c in boundary.coordinates]
    lons = [c.lon for c in boundary.coordinates]
    return min(lons), min(lats), max(lons), max(lats)


class InMemoryGateway:
    """Dictionary-backed gateway used for development, seeding and tests."""

    def __init__(
        self,
        users: Iterable[User] = (),
        roles: Iterable[Role] = (),
        records: Iterable[SpatialRecord] = (),
    ):
        self.users: dict[str, User] = {u.id: u for u in users}
        self.roles: dict[str, Role] = {r.id: r for r in roles}
        self.records: dict[str, SpatialRecord] = {r.id: r for r in records}
        self._listeners: list[RoleChangeListener] = []

    def subscribe(self, listener: RoleChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, role_id: str) -> None:
        for listener in self._listeners:
            listener(role_id)

    # -- users -----------------------------------------------------------------

    async def find_user(self, user_id: str) -> User | None:
        return self.users.get(user_id)

    async def save_user(self, user: User) -> None:
        self.users[user.id] = user

    async def find_user_roles(self, user_id: str) -> list[Role] | None:
        user = self.users.get(user_id)
        if user is None:
            return None
        roles = []
        for role_id in user.role_ids:
            role = self.roles.get(role_id)
            if role is None:
                logger.warning("User %s references missing role %s", user_id, role_id)
                continue
            roles.append(role)
        return roles

    # -- roles -----------------------------------------------------------------

    async def find_role(self, role_id: str) -> Role | None:
        return self.roles.get(role_id)

    async def find_role_permissions(self, role_id: str) -> frozenset[str]:
        role = self.roles.get(role_id)
        if role is None:
            raise UnknownRoleError(role_id)
        return role.permissions

    async def list_roles(self) -> list[Role]:
        return list(self.roles.values())

    async def save_role(self, role: Role) -> None:
        self.roles[role.id] = role
        self._notify(role.id)

    async def delete_role(self, role_id: str) -> None:
        if self.roles.pop(role_id, None) is None:
            raise UnknownRoleError(role_id)
        self._notify(role_id)

    async def count_role_users(self, role_id: str) -> int:
        return sum(1 for u in self.users.values() if role_id in u.role_ids)

    # -- spatial records -------------------------------------------------------

    async def add_record(self, record: SpatialRecord) -> None:
        self.records[record.id] = record

    async def find_spatial_records_near(self, boundary: Boundary, radius_m: float) -> list[SpatialRecord]:
        """Records whose bounding box falls within ``radius_m`` of the boundary's box."""
        min_x, min_y, max_x, max_y = _padded_bbox(boundary, radius_m)
        found = []
        for record in self.records.values():
            r_min_x, r_min_y, r_max_x, r_max_y = _bbox(record.boundary)
            if r_max_x < min_x or r_min_x > max_x or r_max_y < min_y or r_min_y > max_y:
                continue
            found.append(record)
        return found
