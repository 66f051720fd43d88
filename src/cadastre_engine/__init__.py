"""Spatial validation pipeline and permission resolution for cadastre submissions."""

from .authorization import PermissionResolver, has, has_any, require
from .boundary_io import parse_coordinates, read_kml_boundary, read_shapefile_boundary
from .gateway import InMemoryGateway, PersistenceGateway
from .geometry import GeometryProvider, PlanarGeometryProvider
from .handler import RequestHandler, build_handler
from .models import (
    ActorContext,
    Boundary,
    Category,
    Coordinate,
    Decision,
    EntityKind,
    OutcomeStatus,
    Role,
    RuleConfig,
    RuleOutcome,
    Severity,
    SpatialRecord,
    User,
    ValidationReport,
    ValidationRequest,
)
from .pipeline import ValidationPipeline
from .registry import RuleRegistry, build_registry
from .rules import EvaluationContext, ValidationRule

__all__ = [
    "ActorContext",
    "Boundary",
    "Category",
    "Coordinate",
    "Decision",
    "EntityKind",
    "EvaluationContext",
    "GeometryProvider",
    "InMemoryGateway",
    "OutcomeStatus",
    "PermissionResolver",
    "PersistenceGateway",
    "PlanarGeometryProvider",
    "RequestHandler",
    "Role",
    "RuleConfig",
    "RuleOutcome",
    "RuleRegistry",
    "Severity",
    "SpatialRecord",
    "User",
    "ValidationPipeline",
    "ValidationReport",
    "ValidationRequest",
    "ValidationRule",
    "build_handler",
    "build_registry",
    "has",
    "has_any",
    "parse_coordinates",
    "read_kml_boundary",
    "read_shapefile_boundary",
    "require",
]
