import inspect
from collections import Counter

import pytest

from cadastre_engine.gateway import InMemoryGateway
from cadastre_engine.geometry import PlanarGeometryProvider
from cadastre_engine.models import (
    ActorContext,
    Boundary,
    Category,
    EntityKind,
    OutcomeStatus,
    Severity,
    SpatialRecord,
    ValidationRequest,
)
from cadastre_engine.rules import ValidationRule
from cadastre_engine.seed import SEED_ROLES, SEED_USERS

# Closed square of roughly 88 m x 11 m in Bong County, listed without the closing vertex.
SQUARE = [(6.8319, -9.3658), (6.8320, -9.3658), (6.8320, -9.3650), (6.8319, -9.3650)]

# Degrees of longitude per meter at the square's latitude.
LON_PER_M = 1 / 110_538


def box(south: float, west: float, north: float, east: float) -> Boundary:
    return Boundary.from_pairs([(south, west), (north, west), (north, east), (south, east)])


def east_of_square(meters: float, width_deg: float = 0.0005) -> Boundary:
    """A box starting ``meters`` east of the square's east edge."""
    west = -9.3650 + meters * LON_PER_M
    return box(6.8319, west, 6.8320, west + width_deg)


def record(record_id: str, kind: EntityKind, boundary: Boundary, name: str = "") -> SpatialRecord:
    return SpatialRecord(id=record_id, name=name, kind=kind, boundary=boundary)


class Counting:
    """Wraps an async collaborator and counts calls to its coroutine methods."""

    def __init__(self, inner):
        self.inner = inner
        self.calls = Counter()

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if not inspect.iscoroutinefunction(attr):
            return attr

        async def wrapper(*args, **kwargs):
            self.calls[name] += 1
            return await attr(*args, **kwargs)

        return wrapper

    @property
    def total(self) -> int:
        return sum(self.calls.values())


class StubRule(ValidationRule):
    """Rule returning a fixed status and recording how often it ran."""

    def __init__(self, rule_id: str, category: Category, status: OutcomeStatus = OutcomeStatus.PASS):
        self.rule_id = rule_id
        self.name = rule_id.replace("_", " ").title()
        self.category = category
        self.default_severity = Severity.ERROR
        super().__init__()
        self.status = status
        self.calls = 0

    async def evaluate(self, candidate, siblings, context):
        self.calls += 1
        return self._outcome(self.status, f"{self.rule_id} {self.status.value}")


@pytest.fixture
def square():
    return Boundary.from_pairs(SQUARE)


@pytest.fixture
def request_for(square):
    def make(**kwargs):
        return ValidationRequest(boundary=kwargs.pop("boundary", square), **kwargs)

    return make


@pytest.fixture
def gateway():
    """Seed users and roles, no spatial records."""
    return InMemoryGateway(users=SEED_USERS, roles=SEED_ROLES)


@pytest.fixture
def geometry(gateway):
    return PlanarGeometryProvider(gateway)


@pytest.fixture
def surveyor():
    return ActorContext(
        user_id="USR-003",
        role_ids=("role-003",),
        permissions=frozenset({"cadastre.view", "cadastre.validate"}),
    )


@pytest.fixture
def manager():
    return ActorContext(
        user_id="USR-002",
        role_ids=("role-002",),
        permissions=frozenset({"cadastre.view", "cadastre.validate", "cadastre.override_warning"}),
    )


@pytest.fixture
def clerk():
    return ActorContext(user_id="USR-004", role_ids=("role-005",), permissions=frozenset({"cadastre.view"}))


@pytest.fixture
def admin():
    return ActorContext(
        user_id="USR-001",
        role_ids=("role-001",),
        permissions=frozenset({"roles.manage", "system.settings", "cadastre.validate"}),
    )
