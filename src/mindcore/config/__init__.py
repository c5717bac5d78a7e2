# src/mindcore/config/__init__.py
"""
Configuration module for the MindCore library.

Configuration files:
    - default_config.toml: Packaged defaults
    - Project config: [tool.mindcore] in pyproject.toml, or .mindcore.toml
    - Custom config: MindCore.create(config_file_path=...) or MINDCORE_CONFIG_FILE

Environment variables:
    - Prefix: MINDCORE_
    - Nested keys use double underscores: MINDCORE_BACKEND__TIMEOUTS__HEALTH
"""

from .loader import load_config, load_packaged_defaults
from .models import (
    BackendConfig,
    BackendTimeouts,
    BankConfig,
    ContextConfig,
    MindCoreConfig,
    OfflineConfig,
    RetainFilterConfig,
    RetryConfig,
)

__all__ = [
    "BackendConfig",
    "BackendTimeouts",
    "BankConfig",
    "ContextConfig",
    "MindCoreConfig",
    "OfflineConfig",
    "RetainFilterConfig",
    "RetryConfig",
    "load_config",
    "load_packaged_defaults",
]
