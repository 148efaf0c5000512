"""
Event model and per-kind attribute schemas.

Every tracked occurrence becomes one immutable ``Event``. Known event kinds
declare the attributes they carry and the scalar type of each; the
normalizer coerces incoming attribute bags against that schema and never
raises, substituting ``None`` for values it cannot use.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

Scalar = Union[str, int, float, bool, None]

UNKNOWN_KIND = "unknown"


class EventKind(str, Enum):
    """Event kinds the collector understands."""
    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SCREEN_VIEW = "screen_view"
    MESH_INTERACTION = "mesh_interaction"
    FEATURE_USAGE = "feature_usage"
    PERFORMANCE_METRIC = "performance_metric"
    MESH_PERFORMANCE = "mesh_performance"
    ERROR = "error"
    USER_ENGAGEMENT = "user_engagement"
    USER_RETENTION = "user_retention"
    CONVERSION = "conversion"


# kind -> {attribute: scalar type}
EVENT_SCHEMAS: Dict[str, Dict[str, type]] = {
    EventKind.SESSION_START.value: {
        "platform": str,
        "app_version": str,
        "device_type": str,
        "network_type": str,
        "mesh_theme": str,
    },
    EventKind.SESSION_END.value: {
        "duration_seconds": float,
        "features_used": int,
        "total_interactions": int,
        "errors_encountered": int,
        "mesh_interactions": int,
        "mesh_pattern_count": int,
        "end_reason": str,
    },
    EventKind.SCREEN_VIEW.value: {
        "screen": str,
        "load_time": float,
        "mesh_pattern": str,
        "mesh_intensity": float,
        "accessibility": str,
    },
    EventKind.MESH_INTERACTION.value: {
        "interaction_type": str,
        "mesh_pattern": str,
        "mesh_variant": str,
        "intensity": float,
        "duration": float,
        "successful": bool,
        "accessibility_mode": str,
    },
    EventKind.FEATURE_USAGE.value: {
        "feature": str,
        "context": str,
        "success": bool,
        "duration": float,
        "mesh_enhanced": bool,
        "accessibility": str,
    },
    EventKind.PERFORMANCE_METRIC.value: {
        "metric": str,
        "value": float,
        "platform": str,
        "device_type": str,
        "mesh_intensity": float,
        "component": str,
    },
    EventKind.MESH_PERFORMANCE.value: {
        "mesh_type": str,
        "fps": float,
        "render_time": float,
        "memory_usage": float,
        "complexity": float,
        "animation_count": int,
    },
    EventKind.ERROR.value: {
        "error_type": str,
        "error_message": str,
        "stack_trace": str,
        "component": str,
        "action": str,
        "severity": str,
    },
    EventKind.USER_ENGAGEMENT.value: {
        "engagement_type": str,
        "duration": float,
        "depth": float,
        "mesh_interactions": int,
        "feature_count": int,
    },
    EventKind.USER_RETENTION.value: {
        "retention_type": str,
        "days_since_install": int,
        "days_since_last_use": int,
        "total_sessions": int,
        "mesh_theme_changes": int,
    },
    EventKind.CONVERSION.value: {
        "conversion_type": str,
        "value": float,
        "currency": str,
        "subscription_tier": str,
        "mesh_customization": bool,
    },
}


@dataclass(frozen=True)
class Event:
    """One immutable, timestamped record of a tracked occurrence."""
    kind: str
    timestamp: float
    session_ref: Optional[str] = None
    attributes: Mapping[str, Scalar] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "kind": self.kind,
            "timestamp": self.timestamp,
            "datetime": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "session_ref": self.session_ref,
            "attributes": dict(self.attributes),
        }


def normalize_kind(kind: Any) -> str:
    if isinstance(kind, EventKind):
        return kind.value
    if isinstance(kind, str) and kind.strip():
        return kind.strip()
    return UNKNOWN_KIND


def _to_scalar(value: Any) -> Scalar:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, Enum):
        return _to_scalar(value.value)
    if isinstance(value, (list, tuple, set, frozenset)):
        items = sorted(value, key=str) if isinstance(value, (set, frozenset)) else value
        return ",".join(str(item) for item in items if item is not None)
    return str(value)


def _coerce(value: Scalar, expected: type) -> Scalar:
    """Coerce a scalar to the schema type; ``None`` when it does not fit."""
    if value is None:
        return None
    try:
        if expected is bool:
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in ("true", "1", "yes", "on"):
                    return True
                if lowered in ("false", "0", "no", "off", ""):
                    return False
                return None
            return bool(value)
        if expected is int:
            if isinstance(value, bool):
                return int(value)
            number = float(value)
            return int(number) if math.isfinite(number) else None
        if expected is float:
            if isinstance(value, bool):
                return float(value)
            number = float(value)
            return number if math.isfinite(number) else None
        if expected is str:
            return str(value)
    except (TypeError, ValueError):
        return None
    return value


def _flatten(attributes: Mapping[Any, Any], prefix: str = "") -> Dict[str, Scalar]:
    flat: Dict[str, Scalar] = {}
    for key, value in attributes.items():
        name = f"{prefix}{key}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, prefix=f"{name}."))
        else:
            flat[name] = _to_scalar(value)
    return flat


def normalize_attributes(kind: str, attributes: Any) -> Dict[str, Scalar]:
    """
    Flatten and coerce an attribute bag against the schema for ``kind``.

    Unknown attributes are kept as scalars so hosts can extend events.
    """
    if not isinstance(attributes, Mapping):
        attributes = {}

    flat = _flatten(attributes)
    schema = EVENT_SCHEMAS.get(kind)
    if not schema:
        return flat

    for name, expected in schema.items():
        if name in flat:
            flat[name] = _coerce(flat[name], expected)
    return flat
