"""Pydantic data models for the validation pipeline and permission engine."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, computed_field, field_serializer, field_validator

WGS84 = "EPSG:4326"

# Degrees. First and last vertices closer than this are the same point.
CLOSURE_TOLERANCE = 1e-6


class Category(str, Enum):
    """Rule categories, declared in execution precedence."""

    GEOMETRY = "geometry"
    OVERLAP = "overlap"
    BUFFER = "buffer"
    PROXIMITY = "proximity"
    LEGAL = "legal"

    @property
    def precedence(self) -> int:
        return list(Category).index(self)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    def violation_status(self) -> OutcomeStatus:
        """Status a rule of this severity reports when its check is violated."""
        if self is Severity.ERROR:
            return OutcomeStatus.FAIL
        if self is Severity.WARNING:
            return OutcomeStatus.WARNING
        return OutcomeStatus.PASS


class OutcomeStatus(str, Enum):
    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"


class Decision(str, Enum):
    ADMITTED = "admitted"
    ADMITTED_WITH_WARNINGS = "admitted_with_warnings"
    REJECTED = "rejected"


class EntityKind(str, Enum):
    PARCEL = "parcel"
    CONCESSION = "concession"
    PROTECTED_AREA = "protected_area"
    WATER_BODY = "water_body"
    ROAD = "road"


class Coordinate(BaseModel):
    """A latitude/longitude pair in a named geographic reference system."""

    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float
    crs: str = WGS84


class Boundary(BaseModel):
    """Ordered ring of coordinates; implicitly closed when first != last."""

    model_config = ConfigDict(frozen=True)

    coordinates: tuple[Coordinate, ...]

    @classmethod
    def from_pairs(cls, pairs, crs: str = WGS84) -> Boundary:
        """Build a boundary from ``(lat, lon)`` pairs."""
        return cls(coordinates=tuple(Coordinate(lat=lat, lon=lon, crs=crs) for lat, lon in pairs))

    @property
    def crs(self) -> str:
        return self.coordinates[0].crs if self.coordinates else WGS84

    def distinct_count(self) -> int:
        return len({(c.lat, c.lon) for c in self.coordinates})

    def is_closed(self, tolerance: float = CLOSURE_TOLERANCE) -> bool:
        if len(self.coordinates) < 2:
            return False
        first, last = self.coordinates[0], self.coordinates[-1]
        return abs(first.lat - last.lat) <= tolerance and abs(first.lon - last.lon) <= tolerance

    def open_ring(self, tolerance: float = CLOSURE_TOLERANCE) -> tuple[Coordinate, ...]:
        """Vertices without the closing duplicate, if there is one."""
        if self.is_closed(tolerance):
            return self.coordinates[:-1]
        return self.coordinates

    def lonlat(self, tolerance: float = CLOSURE_TOLERANCE) -> list[tuple[float, float]]:
        """Open ring as ``(x=lon, y=lat)`` tuples."""
        return [(c.lon, c.lat) for c in self.open_ring(tolerance)]


class SpatialRecord(BaseModel):
    """Read-only snapshot of a persisted parcel, concession or feature."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    kind: EntityKind
    boundary: Boundary
    status: str = "active"


class RuleOutcome(BaseModel):
    """Result of evaluating one rule against one request."""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    rule_name: str
    category: Category
    severity: Severity
    status: OutcomeStatus
    message: str
    details: str | None = None
    affected_area_ha: float | None = None
    recommendations: tuple[str, ...] = ()


class ValidationRequest(BaseModel):
    """A candidate boundary submitted for validation."""

    model_config = ConfigDict(frozen=True)

    boundary: Boundary
    parcel_id: str | None = None
    land_use: str | None = None
    zone: str | None = None
    declared_area_ha: float | None = None
    override_justification: str | None = None

    @field_validator("override_justification")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class OverrideRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    actor_id: str
    justification: str
    overridden_rule_ids: tuple[str, ...]


class ValidationReport(BaseModel):
    """Ordered outcomes of one pipeline run plus the gating decision."""

    model_config = ConfigDict(frozen=True)

    request_parcel_id: str | None = None
    outcomes: tuple[RuleOutcome, ...]
    skipped_rule_ids: tuple[str, ...] = ()
    short_circuited: bool = False
    decision: Decision
    override: OverrideRecord | None = None

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status is status)

    @computed_field
    @property
    def passed(self) -> int:
        return self._count(OutcomeStatus.PASS)

    @computed_field
    @property
    def warnings(self) -> int:
        return self._count(OutcomeStatus.WARNING)

    @computed_field
    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAIL)

    @computed_field
    @property
    def total_affected_area_ha(self) -> float:
        return round(sum(o.affected_area_ha or 0.0 for o in self.outcomes), 6)


class Permission(BaseModel):
    """Catalog entry for one ``resource.action`` permission."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    description: str
    category: str


class Role(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str = ""
    permissions: frozenset[str] = frozenset()
    is_system: bool = False

    @field_serializer("permissions")
    def _sorted_permissions(self, value: frozenset[str]) -> list[str]:
        return sorted(value)


class User(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str = ""
    department: str = ""
    role_ids: tuple[str, ...] = ()


class ActorContext(BaseModel):
    """Resolved permissions of one actor for one request."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role_ids: tuple[str, ...] = ()
    permissions: frozenset[str] = frozenset()

    @field_serializer("permissions")
    def _sorted_permissions(self, value: frozenset[str]) -> list[str]:
        return sorted(value)


class RuleConfig(BaseModel):
    """Static per-rule configuration: ``{ruleId: {enabled, severity?, threshold?}}``."""

    enabled: bool = True
    severity: Severity | None = None
    threshold: float | None = None
    options: dict[str, Any] = {}


class RuleState(BaseModel):
    """A registered rule as listed to administrators."""

    model_config = ConfigDict(frozen=True)

    rule_id: str
    name: str
    description: str
    category: Category
    severity: Severity
    threshold: float | None = None
    enabled: bool
