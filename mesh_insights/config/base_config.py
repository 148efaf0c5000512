"""
Base configuration system for the insights collector.

Features:
- Dataclass-based configuration with type hints
- YAML file loading with environment variable interpolation
- Environment variable overrides
- Validation with fallback to defaults
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import (
    Any,
    Dict,
    Optional,
    Type,
    TypeVar,
    Union,
    get_type_hints,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseConfig")

ENV_PREFIX = "MESH_INSIGHTS_"

_ENV_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?:(:-)([^}]*))?(?:(:\?)([^}]*))?\}")


def _interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in config values.

    Supports formats:
    - ${VAR_NAME} - Required, raises if not set
    - ${VAR_NAME:-default} - Optional with default
    - ${VAR_NAME:?error message} - Required with custom error
    """
    if isinstance(value, str):

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1)
            has_default = match.group(2) is not None
            default_value = match.group(3) or ""
            has_error = match.group(4) is not None
            error_msg = match.group(5) or f"Required environment variable {var_name} is not set"

            env_value = os.environ.get(var_name)

            if env_value is not None:
                return env_value
            elif has_default:
                return default_value
            elif has_error:
                raise ValueError(error_msg)
            else:
                if match.group(0) == value:
                    raise ValueError(f"Environment variable {var_name} is not set")
                return match.group(0)

        return _ENV_PATTERN.sub(replace_var, value)

    elif isinstance(value, dict):
        return {k: _interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_interpolate_env_vars(item) for item in value]

    return value


def _coerce_type(value: Any, target_type: Any) -> Any:
    """Coerce a value to the target type. Raises ValueError when impossible."""
    if value is None:
        return None

    origin = getattr(target_type, "__origin__", None)

    # Optional[X]
    if origin is Union:
        non_none_types = [t for t in target_type.__args__ if t is not type(None)]
        if len(non_none_types) == 1:
            return _coerce_type(value, non_none_types[0])
        return value

    if target_type is Path:
        return Path(value).expanduser() if value else None

    # bool("false") is True, so strings are parsed explicitly
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is int:
        return int(float(value))
    if target_type is float:
        return float(value)
    if target_type is str:
        return str(value)

    return value


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(float(raw))
    except ValueError:
        logger.warning(f"[Config] Ignoring non-numeric {name}={raw!r}, using {default}")
        return default


@dataclass
class BaseConfig:
    """
    Base configuration class with YAML loading and env var interpolation.
    """

    @classmethod
    def _field_types(cls) -> Dict[str, Any]:
        return get_type_hints(cls)

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """
        Create config from dictionary with env var interpolation.

        Unknown keys are ignored; values that cannot be coerced are dropped so
        the field keeps its default.
        """
        interpolated = _interpolate_env_vars(data or {})
        field_types = cls._field_types()
        known = {f.name for f in fields(cls)}

        filtered: Dict[str, Any] = {}
        for key, value in interpolated.items():
            if key not in known:
                continue
            try:
                filtered[key] = _coerce_type(value, field_types[key])
            except (TypeError, ValueError):
                logger.warning(f"[Config] Invalid value for {key}: {value!r}, using default")

        return cls(**filtered)

    @classmethod
    def from_yaml(cls: Type[T], path: Union[str, Path]) -> T:
        """Load config from YAML file with env var interpolation."""
        import yaml

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_env(cls: Type[T], prefix: str = ENV_PREFIX) -> T:
        """Create config entirely from environment variables."""
        data = {}

        for field_info in fields(cls):
            env_key = f"{prefix}{field_info.name}".upper()
            env_value = os.environ.get(env_key)

            if env_value is not None:
                data[field_info.name] = env_value

        return cls.from_dict(data) if data else cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        result = {}
        for key, value in asdict(self).items():
            if isinstance(value, Path):
                result[key] = str(value)
            else:
                result[key] = value
        return result

    def merge(self: T, other: Dict[str, Any]) -> T:
        """Create new config with overrides merged in."""
        current = self.to_dict()
        current.update(_interpolate_env_vars(other))
        return self.__class__.from_dict(current)


@dataclass
class PrivacyConfig(BaseConfig):
    """
    Privacy switches.

    Personal data collection is never supported; the remaining flags turn
    whole tracking categories into no-ops.
    """

    enable_behavior_analytics: bool = True
    enable_performance_metrics: bool = True
    enable_error_tracking: bool = True
    enable_feature_usage: bool = True
    anonymization_salt: str = field(
        default_factory=lambda: os.getenv(f"{ENV_PREFIX}ANONYMIZATION_SALT", "")
    )


@dataclass
class CollectorConfig(BaseConfig):
    """Configuration for the insights collector."""

    enabled: bool = field(
        default_factory=lambda: _env_flag("ANALYTICS_ENABLED", True)
    )
    environment: str = field(
        default_factory=lambda: os.getenv(f"{ENV_PREFIX}ENVIRONMENT", "development")
    )
    app_version: str = ""

    # Batching
    batch_size: int = field(
        default_factory=lambda: _env_int("ANALYTICS_BATCH_SIZE", 100)
    )
    max_queue_size: int = 10_000

    # Periodic tasks
    flush_interval_ms: int = field(
        default_factory=lambda: _env_int("ANALYTICS_FLUSH_INTERVAL", 30_000)
    )
    aggregate_interval_ms: int = 60_000
    cleanup_interval_ms: int = 86_400_000
    shutdown_timeout_ms: int = 5_000

    # Retention and bounds
    retention_days: int = 90
    sample_cap: int = 1000
    mesh_performance_cap: int = 100
    rate_window_seconds: float = 60.0

    privacy: PrivacyConfig = field(default_factory=PrivacyConfig)

    _DEFAULTS = {
        "batch_size": 100,
        "max_queue_size": 10_000,
        "flush_interval_ms": 30_000,
        "aggregate_interval_ms": 60_000,
        "cleanup_interval_ms": 86_400_000,
        "shutdown_timeout_ms": 5_000,
        "retention_days": 90,
        "sample_cap": 1000,
        "mesh_performance_cap": 100,
        "rate_window_seconds": 60.0,
    }

    def __post_init__(self) -> None:
        for name, default in self._DEFAULTS.items():
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                logger.warning(f"[Config] {name}={value!r} is not a positive number, using {default}")
                setattr(self, name, default)
        if isinstance(self.privacy, dict):
            self.privacy = PrivacyConfig.from_dict(self.privacy)
        if self.max_queue_size < self.batch_size:
            self.max_queue_size = self.batch_size

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectorConfig":
        data = dict(data or {})
        privacy = data.pop("privacy", None)
        config = super().from_dict(data)
        if isinstance(privacy, dict):
            config.privacy = PrivacyConfig.from_dict(privacy)
        elif isinstance(privacy, PrivacyConfig):
            config.privacy = privacy
        return config

    @property
    def flush_interval(self) -> float:
        """Flush interval in seconds."""
        return self.flush_interval_ms / 1000.0

    @property
    def aggregate_interval(self) -> float:
        return self.aggregate_interval_ms / 1000.0

    @property
    def cleanup_interval(self) -> float:
        return self.cleanup_interval_ms / 1000.0

    @property
    def shutdown_timeout(self) -> float:
        return self.shutdown_timeout_ms / 1000.0

    @property
    def retention_seconds(self) -> float:
        return self.retention_days * 24 * 60 * 60

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"


def load_config(path: Optional[Union[str, Path]] = None) -> CollectorConfig:
    """
    Build a collector configuration.

    Args:
        path: Optional YAML file. Without one, defaults plus
            ``MESH_INSIGHTS_*`` environment overrides are used.

    Returns:
        CollectorConfig instance.
    """
    if path is None:
        config = CollectorConfig.from_env()
    else:
        config = CollectorConfig.from_yaml(path)

    logger.info(
        f"[Config] Collector configured: enabled={config.enabled}, "
        f"environment={config.environment}, batch_size={config.batch_size}"
    )
    return config
