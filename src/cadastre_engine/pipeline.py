"""Validation pipeline: runs the enabled rules and gates the result."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from itertools import groupby

from .authorization import require
from .exceptions import MalformedBoundaryError, RuleEvaluationError, UpstreamError
from .geometry import GeometryProvider
from .models import (
    ActorContext,
    Boundary,
    Category,
    Decision,
    OutcomeStatus,
    OverrideRecord,
    RuleOutcome,
    SpatialRecord,
    ValidationReport,
    ValidationRequest,
)
from .permissions import CADASTRE_OVERRIDE_WARNING, CADASTRE_VALIDATE, DEFAULT_CATALOG, PermissionCatalog
from .registry import RuleRegistry
from .rules import EvaluationContext, ValidationRule
from .upstream import call_upstream

logger = logging.getLogger(__name__)


def check_boundary(boundary: Boundary) -> None:
    """Reject boundaries no rule can reason about."""
    coords = boundary.coordinates
    if len(coords) < 3 or boundary.distinct_count() < 3:
        raise MalformedBoundaryError(
            f"boundary needs at least 3 distinct coordinates, got {boundary.distinct_count()}"
        )
    ring = {(c.lat, c.lon) for c in boundary.open_ring()}
    if len(ring) < 3:
        raise MalformedBoundaryError(
            f"boundary needs at least 3 distinct vertices besides the closing vertex, got {len(ring)}"
        )
    if len({c.crs for c in coords}) > 1:
        raise MalformedBoundaryError("boundary mixes coordinate reference systems")
    for i, c in enumerate(coords):
        if not (math.isfinite(c.lat) and math.isfinite(c.lon)):
            raise MalformedBoundaryError(f"coordinate {i} is not a finite number")
        if not -90 <= c.lat <= 90:
            raise MalformedBoundaryError(f"coordinate {i} latitude {c.lat} out of range")
        if not -180 <= c.lon <= 180:
            raise MalformedBoundaryError(f"coordinate {i} longitude {c.lon} out of range")


class GuardedGeometry:
    """Geometry Provider wrapper applying the upstream deadline to every call."""

    def __init__(self, provider: GeometryProvider, timeout: float):
        self._provider = provider
        self._timeout = timeout

    async def area(self, boundary):
        return await call_upstream("geometry.area", self._provider.area(boundary), self._timeout)

    async def distance(self, boundary, other):
        return await call_upstream("geometry.distance", self._provider.distance(boundary, other), self._timeout)

    async def intersects(self, boundary, other):
        return await call_upstream("geometry.intersects", self._provider.intersects(boundary, other), self._timeout)

    async def intersection_area(self, boundary, other):
        return await call_upstream(
            "geometry.intersection_area", self._provider.intersection_area(boundary, other), self._timeout
        )

    async def is_simple(self, boundary):
        return await call_upstream("geometry.is_simple", self._provider.is_simple(boundary), self._timeout)

    async def nearby(self, boundary, radius_m):
        return await call_upstream("geometry.nearby", self._provider.nearby(boundary, radius_m), self._timeout)


class ValidationPipeline:
    """Evaluates a request against a snapshot of the registry's enabled rules.

    The run is a pure function of the request, the actor and the collaborators'
    read-only answers. Nothing is persisted and nothing is retried; callers may
    safely retry a failed call as a whole.
    """

    def __init__(
        self,
        registry: RuleRegistry,
        geometry: GeometryProvider,
        *,
        timeout: float = 5.0,
        search_radius_m: float = 1000.0,
        parallel: bool = False,
        catalog: PermissionCatalog = DEFAULT_CATALOG,
    ):
        self.registry = registry
        self.geometry = geometry
        self.timeout = timeout
        self.search_radius_m = search_radius_m
        self.parallel = parallel
        self.catalog = catalog

    async def validate(self, request: ValidationRequest, context: ActorContext) -> ValidationReport:
        require(context, CADASTRE_VALIDATE, self.catalog)
        if request.override_justification is not None:
            require(context, CADASTRE_OVERRIDE_WARNING, self.catalog)
        check_boundary(request.boundary)

        rules = self.registry.enabled_rules()
        geometry = GuardedGeometry(self.geometry, self.timeout)
        siblings = await geometry.nearby(request.boundary, self.search_radius_m)
        evaluation = EvaluationContext(request=request, actor=context, geometry=geometry)

        run = self._run_parallel if self.parallel else self._run_sequential
        outcomes, skipped = await run(rules, request.boundary, siblings, evaluation)
        decision, override = self._decide(outcomes, request, context)

        report = ValidationReport(
            request_parcel_id=request.parcel_id,
            outcomes=tuple(outcomes),
            skipped_rule_ids=tuple(r.rule_id for r in skipped),
            short_circuited=bool(skipped),
            decision=decision,
            override=override,
        )
        logger.info(
            "Validated %s for %s: %s (%d pass, %d warning, %d fail, %d skipped)",
            request.parcel_id or "new parcel",
            context.user_id,
            decision.value,
            report.passed,
            report.warnings,
            report.failed,
            len(skipped),
        )
        return report

    async def _evaluate(
        self,
        rule: ValidationRule,
        candidate: Boundary,
        siblings: Sequence[SpatialRecord],
        evaluation: EvaluationContext,
    ) -> RuleOutcome:
        try:
            outcome = await rule.evaluate(candidate, siblings, evaluation)
        except UpstreamError:
            raise
        except Exception as e:
            logger.error("Rule %s raised %s", rule.rule_id, e)
            raise RuleEvaluationError(rule.rule_id, e) from e

        if not isinstance(outcome, RuleOutcome):
            raise RuleEvaluationError(rule.rule_id, TypeError(f"expected RuleOutcome, got {type(outcome).__name__}"))
        if outcome.rule_id != rule.rule_id:
            raise RuleEvaluationError(rule.rule_id, ValueError(f"outcome reported for {outcome.rule_id!r}"))
        return outcome

    async def _run_sequential(self, rules, candidate, siblings, evaluation):
        outcomes: list[RuleOutcome] = []
        for i, rule in enumerate(rules):
            outcome = await self._evaluate(rule, candidate, siblings, evaluation)
            outcomes.append(outcome)
            if rule.category is Category.GEOMETRY and outcome.status is OutcomeStatus.FAIL:
                return outcomes, rules[i + 1:]
        return outcomes, ()

    async def _run_parallel(self, rules, candidate, siblings, evaluation):
        """Evaluate one category at a time, rules within a category concurrently."""
        outcomes: list[RuleOutcome] = []
        done = 0
        for category, group in groupby(rules, key=lambda r: r.category):
            group = list(group)
            tasks = [asyncio.ensure_future(self._evaluate(r, candidate, siblings, evaluation)) for r in group]
            try:
                results = await asyncio.gather(*tasks)
            except BaseException:
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            outcomes.extend(results)
            done += len(group)
            if category is Category.GEOMETRY and any(o.status is OutcomeStatus.FAIL for o in results):
                return outcomes, rules[done:]
        return outcomes, ()

    @staticmethod
    def _decide(
        outcomes: Sequence[RuleOutcome], request: ValidationRequest, context: ActorContext
    ) -> tuple[Decision, OverrideRecord | None]:
        if any(o.status is OutcomeStatus.FAIL for o in outcomes):
            return Decision.REJECTED, None

        warned = tuple(o.rule_id for o in outcomes if o.status is OutcomeStatus.WARNING)
        if not warned:
            return Decision.ADMITTED, None
        if request.override_justification:
            override = OverrideRecord(
                actor_id=context.user_id,
                justification=request.override_justification,
                overridden_rule_ids=warned,
            )
            return Decision.ADMITTED, override
        return Decision.ADMITTED_WITH_WARNINGS, None
