"""
Configuration module for the insights collector.

Provides dataclass-based configuration with:
- YAML file loading
- Environment variable interpolation and overrides
- Validation with fallback to defaults
"""

from mesh_insights.config.base_config import (
    BaseConfig,
    CollectorConfig,
    PrivacyConfig,
    load_config,
)

__all__ = [
    "BaseConfig",
    "CollectorConfig",
    "PrivacyConfig",
    "load_config",
]
