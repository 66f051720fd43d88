import asyncio

import pytest

from cadastre_engine.exceptions import (
    MalformedBoundaryError,
    PermissionDeniedError,
    RuleEvaluationError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from cadastre_engine.geometry import PlanarGeometryProvider
from cadastre_engine.models import Boundary, Category, Coordinate, Decision, EntityKind, OutcomeStatus
from cadastre_engine.pipeline import ValidationPipeline, check_boundary
from cadastre_engine.registry import RuleRegistry, build_registry

from conftest import Counting, StubRule, east_of_square, record


def stub_registry(*rules):
    registry = RuleRegistry()
    for rule in rules:
        registry.register(rule)
    return registry


class SlowGeometry(PlanarGeometryProvider):
    async def nearby(self, boundary, radius_m):
        await asyncio.sleep(1)
        return []


class BrokenGeometry(PlanarGeometryProvider):
    async def nearby(self, boundary, radius_m):
        raise RuntimeError("connection reset")


class RaisingRule(StubRule):
    async def evaluate(self, candidate, siblings, context):
        raise KeyError("zones")


class DisablingRule(StubRule):
    """Disables another rule in the registry while it runs."""

    def __init__(self, rule_id, category, registry, target):
        super().__init__(rule_id, category)
        self.registry = registry
        self.target = target

    async def evaluate(self, candidate, siblings, context):
        self.registry.set_enabled(self.target, False)
        return await super().evaluate(candidate, siblings, context)


@pytest.mark.asyncio
class TestScenarios:
    async def test_clean_square_is_admitted(self, geometry, surveyor, request_for):
        report = await ValidationPipeline(build_registry(), geometry).validate(request_for(), surveyor)

        assert [o.status for o in report.outcomes] == [OutcomeStatus.PASS] * 7
        assert report.decision is Decision.ADMITTED
        assert report.passed == 7
        assert not report.short_circuited
        assert report.total_affected_area_ha == 0

    async def test_protected_area_within_threshold_is_rejected(self, gateway, surveyor, request_for):
        await gateway.add_record(record("PA-1", EntityKind.PROTECTED_AREA, east_of_square(50), "East Reserve"))
        pipeline = ValidationPipeline(build_registry(), PlanarGeometryProvider(gateway))

        report = await pipeline.validate(request_for(), surveyor)

        outcomes = {o.rule_id: o for o in report.outcomes}
        assert len(outcomes) == 7
        assert outcomes["geom_closure"].status is OutcomeStatus.PASS
        assert outcomes["geom_self_intersect"].status is OutcomeStatus.PASS
        assert outcomes["proximity_protected"].status is OutcomeStatus.FAIL
        assert report.decision is Decision.REJECTED
        assert report.failed == 1

    async def test_two_point_boundary_is_malformed(self, geometry, surveyor, request_for):
        counted = Counting(geometry)
        closure = StubRule("geom_a", Category.GEOMETRY)
        pipeline = ValidationPipeline(stub_registry(closure), counted)
        line = Boundary.from_pairs([(6.8319, -9.3658), (6.8320, -9.3650), (6.8319, -9.3658)])

        with pytest.raises(MalformedBoundaryError):
            await pipeline.validate(request_for(boundary=line), surveyor)
        assert closure.calls == 0
        assert counted.total == 0

    async def test_actor_without_validate_makes_no_upstream_calls(self, gateway, clerk, request_for):
        counted_gateway = Counting(gateway)
        counted_geometry = Counting(PlanarGeometryProvider(counted_gateway))
        pipeline = ValidationPipeline(build_registry(), counted_geometry)

        with pytest.raises(PermissionDeniedError) as exc_info:
            await pipeline.validate(request_for(), clerk)

        assert exc_info.value.permission == "cadastre.validate"
        assert counted_geometry.total == 0
        assert counted_gateway.total == 0


@pytest.mark.asyncio
class TestShortCircuit:
    async def test_geometry_fail_stops_the_run(self, geometry, surveyor, request_for):
        first = StubRule("geom_a", Category.GEOMETRY, OutcomeStatus.FAIL)
        second = StubRule("geom_b", Category.GEOMETRY)
        overlap = StubRule("overlap_a", Category.OVERLAP)
        pipeline = ValidationPipeline(stub_registry(first, second, overlap), geometry)

        report = await pipeline.validate(request_for(), surveyor)

        assert (first.calls, second.calls, overlap.calls) == (1, 0, 0)
        assert [o.rule_id for o in report.outcomes] == ["geom_a"]
        assert report.skipped_rule_ids == ("geom_b", "overlap_a")
        assert report.short_circuited
        assert report.decision is Decision.REJECTED

    async def test_other_categories_run_to_completion(self, geometry, surveyor, request_for):
        overlap = StubRule("overlap_a", Category.OVERLAP, OutcomeStatus.FAIL)
        buffer = StubRule("buffer_a", Category.BUFFER, OutcomeStatus.WARNING)
        legal = StubRule("legal_a", Category.LEGAL, OutcomeStatus.FAIL)
        pipeline = ValidationPipeline(stub_registry(legal, buffer, overlap), geometry)

        report = await pipeline.validate(request_for(), surveyor)

        assert [o.rule_id for o in report.outcomes] == ["overlap_a", "buffer_a", "legal_a"]
        assert (report.passed, report.warnings, report.failed) == (0, 1, 2)
        assert not report.short_circuited

    async def test_parallel_mode_finishes_geometry_group(self, geometry, surveyor, request_for):
        first = StubRule("geom_a", Category.GEOMETRY, OutcomeStatus.FAIL)
        second = StubRule("geom_b", Category.GEOMETRY)
        overlap = StubRule("overlap_a", Category.OVERLAP)
        pipeline = ValidationPipeline(stub_registry(first, second, overlap), geometry, parallel=True)

        report = await pipeline.validate(request_for(), surveyor)

        assert (first.calls, second.calls, overlap.calls) == (1, 1, 0)
        assert [o.rule_id for o in report.outcomes] == ["geom_a", "geom_b"]
        assert report.skipped_rule_ids == ("overlap_a",)

    async def test_parallel_mode_matches_sequential_result(self, gateway, surveyor, request_for):
        await gateway.add_record(record("WB-1", EntityKind.WATER_BODY, east_of_square(20)))
        geometry = PlanarGeometryProvider(gateway)

        sequential = await ValidationPipeline(build_registry(), geometry).validate(request_for(), surveyor)
        parallel = await ValidationPipeline(build_registry(), geometry, parallel=True).validate(request_for(), surveyor)

        assert parallel == sequential


@pytest.mark.asyncio
class TestDecision:
    @pytest.fixture
    def warning_pipeline(self, geometry):
        return ValidationPipeline(stub_registry(StubRule("buffer_a", Category.BUFFER, OutcomeStatus.WARNING)), geometry)

    async def test_warnings_without_override(self, warning_pipeline, manager, request_for):
        report = await warning_pipeline.validate(request_for(), manager)
        assert report.decision is Decision.ADMITTED_WITH_WARNINGS
        assert report.override is None

    async def test_authorized_override_admits(self, warning_pipeline, manager, request_for):
        report = await warning_pipeline.validate(request_for(override_justification="Setback waived by county"), manager)

        assert report.decision is Decision.ADMITTED
        assert report.override.actor_id == "USR-002"
        assert report.override.justification == "Setback waived by county"
        assert report.override.overridden_rule_ids == ("buffer_a",)

    async def test_blank_justification_is_not_an_override(self, warning_pipeline, manager, request_for):
        report = await warning_pipeline.validate(request_for(override_justification="  "), manager)
        assert report.decision is Decision.ADMITTED_WITH_WARNINGS

    async def test_override_requires_permission(self, warning_pipeline, surveyor, request_for):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await warning_pipeline.validate(request_for(override_justification="Trust me"), surveyor)
        assert exc_info.value.permission == "cadastre.override_warning"

    async def test_fail_is_never_overridden(self, geometry, manager, request_for):
        pipeline = ValidationPipeline(
            stub_registry(
                StubRule("buffer_a", Category.BUFFER, OutcomeStatus.WARNING),
                StubRule("legal_a", Category.LEGAL, OutcomeStatus.FAIL),
            ),
            geometry,
        )
        report = await pipeline.validate(request_for(override_justification="Urgent"), manager)

        assert report.decision is Decision.REJECTED
        assert report.override is None


@pytest.mark.asyncio
class TestRunIsolation:
    async def test_repeated_runs_are_identical(self, gateway, surveyor, request_for):
        await gateway.add_record(record("PA-1", EntityKind.PROTECTED_AREA, east_of_square(50)))
        await gateway.add_record(record("CON-1", EntityKind.CONCESSION, east_of_square(-20)))
        pipeline = ValidationPipeline(build_registry(), PlanarGeometryProvider(gateway))

        first = await pipeline.validate(request_for(parcel_id="PAR-NEW"), surveyor)
        second = await pipeline.validate(request_for(parcel_id="PAR-NEW"), surveyor)

        assert first.model_dump_json() == second.model_dump_json()

    async def test_toggle_during_run_applies_to_next_run(self, geometry, surveyor, request_for):
        registry = RuleRegistry()
        later = StubRule("legal_a", Category.LEGAL)
        registry.register(DisablingRule("geom_a", Category.GEOMETRY, registry, "legal_a"))
        registry.register(later)
        pipeline = ValidationPipeline(registry, geometry)

        first = await pipeline.validate(request_for(), surveyor)
        second = await pipeline.validate(request_for(), surveyor)

        assert [o.rule_id for o in first.outcomes] == ["geom_a", "legal_a"]
        assert [o.rule_id for o in second.outcomes] == ["geom_a"]
        assert later.calls == 1


@pytest.mark.asyncio
class TestFailures:
    async def test_geometry_timeout(self, gateway, surveyor, request_for):
        pipeline = ValidationPipeline(build_registry(), SlowGeometry(gateway), timeout=0.05)

        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await pipeline.validate(request_for(), surveyor)
        assert exc_info.value.call == "geometry.nearby"

    async def test_geometry_unavailable(self, gateway, surveyor, request_for):
        pipeline = ValidationPipeline(build_registry(), BrokenGeometry(gateway))

        with pytest.raises(UpstreamUnavailableError) as exc_info:
            await pipeline.validate(request_for(), surveyor)
        assert exc_info.value.call == "geometry.nearby"
        assert isinstance(exc_info.value.error, RuntimeError)

    async def test_raising_rule_aborts_run(self, geometry, surveyor, request_for):
        after = StubRule("legal_b", Category.LEGAL)
        pipeline = ValidationPipeline(stub_registry(RaisingRule("legal_a", Category.LEGAL), after), geometry)

        with pytest.raises(RuleEvaluationError) as exc_info:
            await pipeline.validate(request_for(), surveyor)
        assert exc_info.value.rule_id == "legal_a"
        assert isinstance(exc_info.value.error, KeyError)
        assert after.calls == 0

    async def test_outcome_for_another_rule_is_rejected(self, geometry, surveyor, request_for):
        class Impostor(StubRule):
            async def evaluate(self, candidate, siblings, context):
                return StubRule("someone_else", Category.LEGAL)._outcome(OutcomeStatus.PASS, "")

        pipeline = ValidationPipeline(stub_registry(Impostor("legal_a", Category.LEGAL)), geometry)
        with pytest.raises(RuleEvaluationError):
            await pipeline.validate(request_for(), surveyor)

    async def test_cancellation_reaches_upstream_call(self, gateway, surveyor, request_for):
        started = asyncio.Event()
        cancelled = asyncio.Event()

        class HangingGeometry(PlanarGeometryProvider):
            async def nearby(self, boundary, radius_m):
                started.set()
                try:
                    await asyncio.sleep(30)
                except asyncio.CancelledError:
                    cancelled.set()
                    raise
                return []

        pipeline = ValidationPipeline(build_registry(), HangingGeometry(gateway), timeout=60)
        task = asyncio.ensure_future(pipeline.validate(request_for(), surveyor))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert cancelled.is_set()


class TestCheckBoundary:
    def test_accepts_square(self, square):
        check_boundary(square)

    @pytest.mark.parametrize(
        "coordinates",
        [
            [Coordinate(lat=1, lon=1), Coordinate(lat=1, lon=1), Coordinate(lat=2, lon=2)],
            [Coordinate(lat=1, lon=1), Coordinate(lat=2, lon=2), Coordinate(lat=3, lon=1, crs="EPSG:32629")],
            [Coordinate(lat=1, lon=1), Coordinate(lat=2, lon=2), Coordinate(lat=float("nan"), lon=1)],
            [Coordinate(lat=1, lon=1), Coordinate(lat=2, lon=2), Coordinate(lat=91, lon=1)],
            [Coordinate(lat=1, lon=1), Coordinate(lat=2, lon=2), Coordinate(lat=1, lon=-181)],
        ],
        ids=["duplicates", "mixed-crs", "nan", "latitude", "longitude"],
    )
    def test_rejects(self, coordinates):
        with pytest.raises(MalformedBoundaryError):
            check_boundary(Boundary(coordinates=tuple(coordinates)))

    def test_rejects_closing_vertex_leaving_two_points(self):
        boundary = Boundary.from_pairs([(6.8319, -9.3658), (6.8320, -9.3658), (6.8319000005, -9.3658)])
        assert boundary.distinct_count() == 3
        with pytest.raises(MalformedBoundaryError, match="closing vertex"):
            check_boundary(boundary)

    def test_accepts_triangle_with_closing_vertex(self):
        check_boundary(Boundary.from_pairs([(6.8319, -9.3658), (6.8320, -9.3658), (6.8320, -9.3650), (6.8319, -9.3658)]))


@pytest.mark.asyncio
class TestNearlyClosedDegenerateBoundary:
    async def test_reported_as_malformed_not_unavailable(self, geometry, surveyor, request_for):
        counted = Counting(geometry)
        pipeline = ValidationPipeline(build_registry(), counted)
        boundary = Boundary.from_pairs([(6.8319, -9.3658), (6.8320, -9.3658), (6.8319000005, -9.3658)])

        with pytest.raises(MalformedBoundaryError):
            await pipeline.validate(request_for(boundary=boundary), surveyor)
        assert counted.total == 0
