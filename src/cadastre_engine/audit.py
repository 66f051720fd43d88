"""Structured audit logging helpers."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

audit_logger = logging.getLogger("cadastre_engine.audit")


def _to_serializable(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _to_serializable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_serializable(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_to_serializable(v) for v in value)
    return str(value)


def log_audit_event(
    event_type: str,
    *,
    actor_id: str | None = None,
    details: Mapping[str, Any] | None = None,
) -> None:
    payload: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "event": event_type,
    }
    if actor_id is not None:
        payload["actor_id"] = actor_id
    if details:
        payload["details"] = _to_serializable(details)

    audit_logger.info(json.dumps(payload, ensure_ascii=True))


def configure_logging(level: str = "INFO") -> None:
    """Root logging setup used by the server launcher."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
