# src/mindcore/config/loader.py
"""
Layered configuration loading for MindCore.

Configuration is loaded and merged in order (later wins):
    1. Packaged ``default_config.toml``
    2. ``[tool.mindcore]`` in the project's ``pyproject.toml``
    3. ``<project>/.mindcore.toml``
    4. An explicit config file (argument or ``MINDCORE_CONFIG_FILE``)
    5. Environment variables (``MINDCORE_<SECTION>__<KEY>``)
    6. Runtime overrides

The merged dictionary is validated once into a frozen
:class:`~mindcore.config.models.MindCoreConfig`.
"""

import logging
import os
import tomllib
from importlib import resources
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import Field
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..exceptions import ConfigError
from .models import MindCoreConfig

logger = logging.getLogger(__name__)

DEFAULT_ENV_PREFIX = "MINDCORE_"
PROJECT_CONFIG_FILENAME = ".mindcore.toml"
CONFIG_FILE_ENV_VAR = "MINDCORE_CONFIG_FILE"


class _EnvLayer(BaseSettings):
    """
    Environment variable layer.

    Each section is read as a free-form dictionary so that only the keys
    actually present in the environment take part in the merge; typing and
    validation happen afterwards on the merged result.
    """

    model_config = SettingsConfigDict(
        env_prefix=DEFAULT_ENV_PREFIX,
        env_nested_delimiter="__",
        extra="ignore",
    )

    backend: Dict[str, Any] = Field(default_factory=dict)
    retry: Dict[str, Any] = Field(default_factory=dict)
    retain_filter: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    offline: Dict[str, Any] = Field(default_factory=dict)
    bank: Dict[str, Any] = Field(default_factory=dict)
    logging: Dict[str, Any] = Field(default_factory=dict)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e


def load_packaged_defaults() -> Dict[str, Any]:
    """Read the ``default_config.toml`` shipped with the package."""
    text = resources.files("mindcore.config").joinpath("default_config.toml").read_text(encoding="utf-8")
    return tomllib.loads(text)


def _pyproject_section(project_path: Path) -> Dict[str, Any]:
    pyproject = project_path / "pyproject.toml"
    if not pyproject.is_file():
        return {}
    try:
        data = _read_toml(pyproject)
    except ConfigError as e:
        logger.warning(f"Ignoring unreadable pyproject.toml: {e}")
        return {}
    section = data.get("tool", {}).get("mindcore", {})
    return section if isinstance(section, dict) else {}


def _env_layer(env_prefix: str) -> Dict[str, Any]:
    try:
        if env_prefix == DEFAULT_ENV_PREFIX:
            layer = _EnvLayer()
        else:
            layer = _EnvLayer(_env_prefix=env_prefix)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid {env_prefix}* environment variables: {e}") from e
    return layer.model_dump(exclude_unset=True)


def load_config(
    project_path: Union[str, Path, None] = None,
    config_file_path: Union[str, Path, None] = None,
    overrides: Optional[Dict[str, Any]] = None,
    env_prefix: str = DEFAULT_ENV_PREFIX,
) -> MindCoreConfig:
    """
    Resolve every configuration layer into one immutable config.

    Args:
        project_path: Project directory; defaults to the current directory.
        config_file_path: Optional explicit TOML file (highest file priority).
        overrides: Nested dictionary applied last.
        env_prefix: Environment variable prefix.

    Returns:
        The validated :class:`MindCoreConfig`.

    Raises:
        ConfigError: If a file cannot be read or the merged values are invalid.
    """
    project = Path(project_path or os.getcwd()).expanduser().resolve()

    merged = load_packaged_defaults()
    merged = _deep_merge(merged, _pyproject_section(project))

    project_file = project / PROJECT_CONFIG_FILENAME
    if project_file.is_file():
        merged = _deep_merge(merged, _read_toml(project_file))
        logger.debug(f"Loaded project config from {project_file}")

    explicit = config_file_path or os.environ.get(CONFIG_FILE_ENV_VAR)
    if explicit:
        explicit_path = Path(explicit).expanduser()
        if not explicit_path.is_file():
            raise ConfigError(f"Config file not found: {explicit_path}")
        merged = _deep_merge(merged, _read_toml(explicit_path))
        logger.debug(f"Loaded config file {explicit_path}")

    merged = _deep_merge(merged, _env_layer(env_prefix))

    if overrides:
        merged = _deep_merge(merged, overrides)

    try:
        return MindCoreConfig.model_validate(merged)
    except PydanticValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
