"""Validation rule interface and the built-in spatial rules.

A rule is an independent async function of the candidate boundary, the nearby
records and the request context. Rules never observe each other's outcomes and
never compute areas or distances themselves; every measurement goes through
``context.geometry``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, ClassVar

from .geometry import GeometryProvider
from .models import (
    ActorContext,
    Boundary,
    Category,
    EntityKind,
    OutcomeStatus,
    RuleOutcome,
    Severity,
    SpatialRecord,
    ValidationRequest,
)


@dataclass(frozen=True)
class EvaluationContext:
    """Request-scoped inputs shared by every rule in one run."""

    request: ValidationRequest
    actor: ActorContext
    geometry: GeometryProvider


class ValidationRule(ABC):
    rule_id: ClassVar[str]
    name: ClassVar[str]
    description: ClassVar[str] = ""
    category: ClassVar[Category]
    default_severity: ClassVar[Severity]
    default_threshold: ClassVar[float | None] = None
    enabled_by_default: ClassVar[bool] = True

    def __init__(
        self,
        severity: Severity | None = None,
        threshold: float | None = None,
        options: dict[str, Any] | None = None,
    ):
        self.severity = severity or self.default_severity
        self.threshold = self.default_threshold if threshold is None else threshold
        self.options = dict(options or {})

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.rule_id} {self.severity.value}>"

    @abstractmethod
    async def evaluate(
        self,
        candidate: Boundary,
        siblings: Sequence[SpatialRecord],
        context: EvaluationContext,
    ) -> RuleOutcome: ...

    def passed(self, message: str, details: str | None = None) -> RuleOutcome:
        return self._outcome(OutcomeStatus.PASS, message, details)

    def violated(
        self,
        message: str,
        details: str | None = None,
        affected_area_ha: float | None = None,
        recommendations: Sequence[str] = (),
    ) -> RuleOutcome:
        """Outcome for a failed check; its status follows the rule's severity."""
        return self._outcome(
            self.severity.violation_status(), message, details, affected_area_ha, tuple(recommendations)
        )

    def _outcome(self, status, message, details=None, affected_area_ha=None, recommendations=()) -> RuleOutcome:
        return RuleOutcome(
            rule_id=self.rule_id,
            rule_name=self.name,
            category=self.category,
            severity=self.severity,
            status=status,
            message=message,
            details=details,
            affected_area_ha=affected_area_ha,
            recommendations=recommendations,
        )


def _of_kind(
    siblings: Sequence[SpatialRecord], kind: EntityKind, exclude_id: str | None = None
) -> list[SpatialRecord]:
    return [s for s in siblings if s.kind is kind and s.id != exclude_id]


def _label(record: SpatialRecord) -> str:
    return f"{record.name} ({record.id})" if record.name else record.id


# ── Geometry ──────────────────────────────────────────────────────────────────


class BoundaryClosureRule(ValidationRule):
    """Ring must close within tolerance (degrees), or be auto-closed, and enclose an area."""

    rule_id = "geom_closure"
    name = "Boundary Closure"
    description = "Verify polygon boundaries are properly closed"
    category = Category.GEOMETRY
    default_severity = Severity.ERROR
    default_threshold = 1e-6

    async def evaluate(self, candidate, siblings, context):
        first, last = candidate.coordinates[0], candidate.coordinates[-1]
        if candidate.is_closed(self.threshold):
            if (first.lat, first.lon) == (last.lat, last.lon):
                message, details = "Boundary properly closed", None
            else:
                message = "Boundary properly closed"
                details = f"Closing vertex snapped to the first vertex (tolerance {self.threshold:g}°)"
        elif self.options.get("auto_close", True):
            message = "Boundary auto-closed"
            details = "Closing segment added from the last vertex to the first"
        else:
            gap = max(abs(first.lat - last.lat), abs(first.lon - last.lon))
            return self.violated(
                "Boundary is not closed",
                details=f"Last vertex is {gap:.6f}° from the first (tolerance {self.threshold:g}°)",
                recommendations=[
                    "Repeat the first vertex at the end of the boundary",
                    "Re-survey the closing traverse",
                ],
            )

        if await context.geometry.area(candidate) <= 0:
            return self.violated(
                "Boundary does not enclose an area",
                details="All vertices lie on a single line",
                recommendations=["Check the vertex list for transcription errors"],
            )
        return self.passed(message, details)


class SelfIntersectionRule(ValidationRule):
    rule_id = "geom_self_intersect"
    name = "Self-Intersection Check"
    description = "Detect self-intersecting boundaries"
    category = Category.GEOMETRY
    default_severity = Severity.ERROR

    async def evaluate(self, candidate, siblings, context):
        if await context.geometry.is_simple(candidate):
            return self.passed("No self-intersections detected")
        return self.violated(
            "Self-intersecting boundary detected",
            details="Two or more non-adjacent boundary segments cross",
            recommendations=[
                "Reorder the vertices so boundary edges do not cross",
                "Split the boundary into separate parcels",
            ],
        )


# ── Overlap ───────────────────────────────────────────────────────────────────


class _OverlapRule(ValidationRule):
    """Violated when intersection area with any sibling of ``sibling_kind`` exceeds the threshold (ha)."""

    sibling_kind: ClassVar[EntityKind]
    noun: ClassVar[str]
    recommendations: ClassVar[tuple[str, ...]] = ()
    default_threshold = 0.0

    async def evaluate(self, candidate, siblings, context):
        overlaps: list[tuple[SpatialRecord, float]] = []
        for sibling in _of_kind(siblings, self.sibling_kind, context.request.parcel_id):
            area = await context.geometry.intersection_area(candidate, sibling.boundary)
            if area > self.threshold:
                overlaps.append((sibling, area))

        if not overlaps:
            return self.passed(f"No {self.noun} overlaps")

        total = sum(area for _, area in overlaps)
        return self.violated(
            f"Overlap detected with {len(overlaps)} {self.noun}(s)",
            details="; ".join(f"{area:.4f} ha overlap with {s.id}" for s, area in overlaps),
            affected_area_ha=total,
            recommendations=self.recommendations,
        )


class AdjacentParcelOverlapRule(_OverlapRule):
    rule_id = "overlap_adjacent"
    name = "Adjacent Parcel Overlap"
    description = "Check for overlaps with neighboring parcels"
    category = Category.OVERLAP
    default_severity = Severity.ERROR
    sibling_kind = EntityKind.PARCEL
    noun = "adjacent parcel"
    recommendations = ("Adjust boundary to eliminate overlap", "Contact adjacent parcel owner")


class ConcessionOverlapRule(_OverlapRule):
    rule_id = "overlap_concession"
    name = "Concession Overlap"
    description = "Verify no overlap with existing concessions"
    category = Category.OVERLAP
    default_severity = Severity.WARNING
    sibling_kind = EntityKind.CONCESSION
    noun = "concession"
    recommendations = ("Adjust boundary to exclude the concession area", "Consult the concession holder")


# ── Buffer / proximity ────────────────────────────────────────────────────────


class _DistanceRule(ValidationRule):
    """Violated when the nearest sibling of ``sibling_kind`` is closer than the threshold (m)."""

    sibling_kind: ClassVar[EntityKind]
    noun: ClassVar[str]
    violation_message: ClassVar[str]

    def recommendations(self) -> list[str]:
        return []

    async def evaluate(self, candidate, siblings, context):
        nearest: tuple[float, SpatialRecord] | None = None
        for sibling in _of_kind(siblings, self.sibling_kind, context.request.parcel_id):
            d = await context.geometry.distance(candidate, sibling.boundary)
            if nearest is None or d < nearest[0]:
                nearest = (d, sibling)

        if nearest is None:
            return self.passed(f"No {self.noun} within search radius")

        d, sibling = nearest
        if d < self.threshold:
            return self.violated(
                self.violation_message,
                details=f"Located {d:.1f}m from {_label(sibling)} (minimum {self.threshold:g}m required)",
                recommendations=self.recommendations(),
            )
        return self.passed(
            f"Required distance from {self.noun} maintained",
            details=f"Nearest: {_label(sibling)} at {d:.1f}m",
        )


class WaterBodyBufferRule(_DistanceRule):
    rule_id = "buffer_water"
    name = "Water Body Buffer"
    description = "Maintain required distance from water bodies"
    category = Category.BUFFER
    default_severity = Severity.WARNING
    default_threshold = 30.0
    sibling_kind = EntityKind.WATER_BODY
    noun = "water bodies"
    violation_message = "Insufficient buffer from water body"

    def recommendations(self):
        return [f"Adjust boundary to maintain {self.threshold:g}m setback", "Apply for buffer variance"]


class RoadBufferRule(_DistanceRule):
    rule_id = "buffer_road"
    name = "Road Buffer Zone"
    description = "Check setback requirements from roads"
    category = Category.BUFFER
    default_severity = Severity.INFO
    default_threshold = 15.0
    enabled_by_default = False
    sibling_kind = EntityKind.ROAD
    noun = "roads"
    violation_message = "Road setback not maintained"

    def recommendations(self):
        return [f"Keep structures at least {self.threshold:g}m from the road reserve"]


class ProtectedAreaProximityRule(_DistanceRule):
    rule_id = "proximity_protected"
    name = "Protected Area Proximity"
    description = "Verify distance from protected areas"
    category = Category.PROXIMITY
    default_severity = Severity.ERROR
    default_threshold = 100.0
    sibling_kind = EntityKind.PROTECTED_AREA
    noun = "protected areas"
    violation_message = "Too close to protected area"

    def recommendations(self):
        return ["Relocate parcel boundary", "Submit environmental impact assessment"]


# ── Legal ─────────────────────────────────────────────────────────────────────


class ZoningComplianceRule(ValidationRule):
    """Declared land use must be allowed in the request's zone.

    ``options["zones"]`` maps zone name to its allowed uses. Zones without an
    entry are unrestricted. Matching is case-insensitive.
    """

    rule_id = "legal_zoning"
    name = "Zoning Compliance"
    description = "Check compliance with local zoning laws"
    category = Category.LEGAL
    default_severity = Severity.WARNING

    def _allowed_uses(self, zone: str) -> list[str] | None:
        for name, uses in self.options.get("zones", {}).items():
            if name.strip().lower() == zone.strip().lower():
                return [u.strip().lower() for u in uses]
        return None

    async def evaluate(self, candidate, siblings, context):
        zone, land_use = context.request.zone, context.request.land_use
        if not zone:
            return self.passed("No administrative zone declared")

        allowed = self._allowed_uses(zone)
        if allowed is None:
            return self.passed(f"No zoning restrictions recorded for {zone}")

        if not land_use:
            return self.violated(
                f"Land use must be declared in zone {zone}",
                details=f"Allowed uses: {', '.join(allowed)}",
                recommendations=["Declare the intended land use"],
            )
        if land_use.strip().lower() not in allowed:
            return self.violated(
                f"Land use '{land_use}' is not permitted in zone {zone}",
                details=f"Allowed uses: {', '.join(allowed)}",
                recommendations=["Amend the declared land use", "Apply for a zoning variance"],
            )
        return self.passed(f"Compliant with {land_use.strip().lower()} zoning")


class DeclaredAreaRule(ValidationRule):
    """Declared area must agree with the calculated area within ``threshold`` percent."""

    rule_id = "legal_declared_area"
    name = "Declared Area Consistency"
    description = "Compare the declared area with the area calculated from the boundary"
    category = Category.LEGAL
    default_severity = Severity.INFO
    default_threshold = 10.0
    enabled_by_default = False

    async def evaluate(self, candidate, siblings, context):
        calculated = await context.geometry.area(candidate)
        declared = context.request.declared_area_ha
        if declared is None:
            return self.passed(f"Calculated area: {calculated:.4f} ha")
        if declared <= 0:
            return self.violated(
                "Declared area must be positive",
                details=f"Declared {declared:g} ha, calculated {calculated:.4f} ha",
            )

        deviation = abs(calculated - declared) / declared * 100
        if deviation > self.threshold:
            return self.violated(
                f"Declared area differs from calculated area by {deviation:.1f}%",
                details=f"Declared {declared:g} ha, calculated {calculated:.4f} ha",
                recommendations=["Correct the declared area", "Verify the survey coordinates"],
            )
        return self.passed(f"Calculated area: {calculated:.4f} ha", details=f"Declared {declared:g} ha")


BUILTIN_RULES: tuple[type[ValidationRule], ...] = (
    BoundaryClosureRule,
    SelfIntersectionRule,
    AdjacentParcelOverlapRule,
    ConcessionOverlapRule,
    WaterBodyBufferRule,
    RoadBufferRule,
    ProtectedAreaProximityRule,
    ZoningComplianceRule,
    DeclaredAreaRule,
)
