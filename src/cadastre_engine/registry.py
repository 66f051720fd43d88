"""Rule registry with deterministic ordering and copy-on-read snapshots."""

from __future__ import annotations

import copy
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace

from .exceptions import DuplicateRuleError, UnknownRuleError
from .models import Category, RuleConfig, RuleState
from .rules import BUILTIN_RULES, ValidationRule

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Entry:
    rule: ValidationRule
    enabled: bool
    seq: int

    @property
    def sort_key(self) -> tuple[int, int]:
        return self.rule.category.precedence, self.seq


class RuleRegistry:
    """Catalog of validation rules.

    Entries live in an immutable tuple kept sorted by category precedence, then
    registration order. Writers swap the tuple under a lock; readers take the
    tuple as it is, so a run that already holds a snapshot never sees later
    enable/disable changes.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: tuple[_Entry, ...] = ()
        self._next_seq = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, rule_id: object) -> bool:
        return any(e.rule.rule_id == rule_id for e in self._entries)

    def register(self, rule: ValidationRule, enabled: bool | None = None) -> None:
        with self._lock:
            if any(e.rule.rule_id == rule.rule_id for e in self._entries):
                raise DuplicateRuleError(rule.rule_id)
            entry = _Entry(rule, rule.enabled_by_default if enabled is None else enabled, self._next_seq)
            self._next_seq += 1
            self._entries = tuple(sorted(self._entries + (entry,), key=lambda e: e.sort_key))
        logger.debug("Registered rule %s (%s)", rule.rule_id, rule.category.value)

    def set_enabled(self, rule_id: str, enabled: bool) -> None:
        with self._lock:
            self._entries = self._replace(rule_id, lambda e: replace(e, enabled=enabled))
        logger.info("Rule %s %s", rule_id, "enabled" if enabled else "disabled")

    def configure(self, config: Mapping[str, RuleConfig | dict]) -> None:
        """Apply ``{rule_id: {enabled, severity, threshold, options}}`` overrides.

        Either every override is applied or, on an unknown rule id, none is.
        """
        configs = {
            rule_id: raw if isinstance(raw, RuleConfig) else RuleConfig.model_validate(raw)
            for rule_id, raw in config.items()
        }
        with self._lock:
            known = {e.rule.rule_id for e in self._entries}
            for rule_id in configs:
                if rule_id not in known:
                    raise UnknownRuleError(rule_id)
            self._entries = tuple(
                _configured(e, configs[e.rule.rule_id]) if e.rule.rule_id in configs else e
                for e in self._entries
            )

    def _replace(self, rule_id: str, change) -> tuple[_Entry, ...]:
        for i, entry in enumerate(self._entries):
            if entry.rule.rule_id == rule_id:
                return self._entries[:i] + (change(entry),) + self._entries[i + 1:]
        raise UnknownRuleError(rule_id)

    def _entry(self, rule_id: str) -> _Entry:
        for entry in self._entries:
            if entry.rule.rule_id == rule_id:
                return entry
        raise UnknownRuleError(rule_id)

    def get(self, rule_id: str) -> ValidationRule:
        return self._entry(rule_id).rule

    def is_enabled(self, rule_id: str) -> bool:
        return self._entry(rule_id).enabled

    def enabled_rules(self, category: Category | None = None) -> tuple[ValidationRule, ...]:
        """Enabled rules by category precedence, then registration order."""
        entries = self._entries
        return tuple(
            e.rule for e in entries if e.enabled and (category is None or e.rule.category is category)
        )

    def rules(self) -> list[RuleState]:
        return [
            RuleState(
                rule_id=e.rule.rule_id,
                name=e.rule.name,
                description=e.rule.description,
                category=e.rule.category,
                severity=e.rule.severity,
                threshold=e.rule.threshold,
                enabled=e.enabled,
            )
            for e in self._entries
        ]


def _configured(entry: _Entry, cfg: RuleConfig) -> _Entry:
    rule = entry.rule
    rebuilt = copy.copy(rule)
    rebuilt.severity = cfg.severity or rule.severity
    rebuilt.threshold = rule.threshold if cfg.threshold is None else cfg.threshold
    rebuilt.options = {**rule.options, **cfg.options}
    enabled = cfg.enabled if "enabled" in cfg.model_fields_set else entry.enabled
    return replace(entry, rule=rebuilt, enabled=enabled)


def build_registry(config: Mapping[str, RuleConfig | dict] | None = None) -> RuleRegistry:
    """Registry holding the built-in rules, with ``config`` applied."""
    registry = RuleRegistry()
    for rule_class in BUILTIN_RULES:
        registry.register(rule_class())
    if config:
        registry.configure(config)
    return registry
