"""Error taxonomy for the validation pipeline and permission engine."""

from __future__ import annotations

from collections.abc import Iterable


class CadastreEngineError(Exception):
    """Base class for every error raised by the engine."""


class PermissionDeniedError(CadastreEngineError):
    def __init__(self, actor_id: str, permission: str):
        self.actor_id = actor_id
        self.permission = permission
        super().__init__(f"actor {actor_id!r} lacks permission {permission!r}")


class UnknownUserError(CadastreEngineError):
    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"no user with id {user_id!r}")


class UnknownRuleError(CadastreEngineError):
    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"no validation rule with id {rule_id!r}")


class DuplicateRuleError(CadastreEngineError):
    def __init__(self, rule_id: str):
        self.rule_id = rule_id
        super().__init__(f"validation rule {rule_id!r} is already registered")


class UnknownRoleError(CadastreEngineError):
    def __init__(self, role_id: str):
        self.role_id = role_id
        super().__init__(f"no role with id {role_id!r}")


class DuplicateRoleError(CadastreEngineError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"a role named {name!r} already exists")


class UnknownPermissionError(CadastreEngineError):
    def __init__(self, keys: Iterable[str]):
        self.keys = tuple(sorted(keys))
        super().__init__(f"unknown permission(s): {', '.join(self.keys)}")


class RoleInUseError(CadastreEngineError):
    def __init__(self, role_id: str, user_count: int):
        self.role_id = role_id
        self.user_count = user_count
        super().__init__(f"role {role_id!r} is assigned to {user_count} user(s)")


class SystemRoleProtectedError(CadastreEngineError):
    def __init__(self, role_id: str):
        self.role_id = role_id
        super().__init__(f"role {role_id!r} is a system role and cannot be modified")


class MalformedBoundaryError(CadastreEngineError):
    """The submitted boundary cannot be evaluated at all."""


class UpstreamError(CadastreEngineError):
    """A Geometry Provider or Persistence Gateway call did not complete."""

    def __init__(self, call: str, message: str):
        self.call = call
        super().__init__(f"{call}: {message}")


class UpstreamTimeoutError(UpstreamError):
    def __init__(self, call: str, timeout: float):
        self.timeout = timeout
        super().__init__(call, f"no response within {timeout:g}s")


class UpstreamUnavailableError(UpstreamError):
    def __init__(self, call: str, error: BaseException):
        self.error = error
        super().__init__(call, f"{type(error).__name__}: {error}")


class RuleEvaluationError(CadastreEngineError):
    """A rule raised instead of returning an outcome; the whole run is aborted."""

    def __init__(self, rule_id: str, error: BaseException):
        self.rule_id = rule_id
        self.error = error
        super().__init__(f"rule {rule_id!r} failed: {type(error).__name__}: {error}")
