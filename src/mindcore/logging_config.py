# src/mindcore/logging_config.py
"""
Unified logging setup for MindCore.

MindCore runs inside editor hooks, where stdout is reserved for injected
context and the host must never see unexpected noise. Logging is therefore
quiet by default:

    **Display filter**: the stderr handler always exists, but unless
    ``console_enabled`` is true it only passes records logged with
    ``extra={"display": True}`` (see :func:`log_display`) at or above
    ``display_min_level``.

    **File logging**: optional. ``file_mode="single"`` writes one rotating
    file per application; ``file_mode="per_run"`` writes a timestamped
    file per invocation.

Per-component levels keep chatty third-party loggers (httpx, httpcore,
aiosqlite) at WARNING.

Usage:
    from mindcore.logging_config import configure_logging, log_display

    configure_logging(app_name="mindcore-hook", config=cfg.logging)

    logger = logging.getLogger("mindcore.cli")
    log_display(logger, logging.WARNING, "Memory backend unreachable; queued %d items", n)
"""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, Union

DEFAULT_LOGGING_CONFIG: dict[str, Any] = {
    "console_enabled": False,
    "console_level": "WARNING",
    "console_format": "%(levelname)s - %(name)s - %(message)s",
    "file_enabled": False,
    "file_level": "DEBUG",
    "file_directory": "~/.local/share/mindcore/logs",
    "file_mode": "single",
    "file_name_pattern": "{app}_{timestamp:%Y%m%d_%H%M%S}.log",
    "file_single_name": "{app}.log",
    "file_format": "%(asctime)s [%(levelname)-8s] %(name)-32s - %(message)s",
    "rotation_max_bytes": 5 * 1024 * 1024,
    "rotation_backup_count": 3,
    "display_min_level": "INFO",
    "components": {
        "mindcore": "INFO",
        "httpx": "WARNING",
        "httpcore": "WARNING",
        "aiosqlite": "WARNING",
        "asyncio": "WARNING",
    },
}


def _to_level(value: Union[str, int, None], fallback: int) -> int:
    """Resolve a level name or number, falling back on unknown names."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        level = logging.getLevelName(value.upper())
        if isinstance(level, int):
            return level
    return fallback


class DisplayFilter(logging.Filter):
    """Gate for the console handler.

    With the console globally enabled every record passes and the handler
    level decides. Otherwise only records flagged ``display=True`` pass,
    and only at or above ``display_min_level``.
    """

    def __init__(self, console_globally_enabled: bool = False, display_min_level: int = logging.INFO) -> None:
        super().__init__()
        self.console_globally_enabled = console_globally_enabled
        self.display_min_level = display_min_level

    def filter(self, record: logging.LogRecord) -> bool:
        if self.console_globally_enabled:
            return True
        if getattr(record, "display", False):
            return record.levelno >= self.display_min_level
        return False


class UnifiedLoggingManager:
    """Process-wide owner of the root logger's MindCore handlers."""

    _instance: Optional["UnifiedLoggingManager"] = None
    _configured: bool = False
    _log_file_path: Optional[Path] = None
    _console_handler: Optional[logging.Handler] = None
    _file_handler: Optional[logging.Handler] = None
    _display_filter: Optional[DisplayFilter] = None

    @classmethod
    def get_instance(cls) -> "UnifiedLoggingManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def is_configured(cls) -> bool:
        return cls._configured

    @classmethod
    def get_log_file_path(cls) -> Optional[Path]:
        return cls._log_file_path

    @classmethod
    def reset(cls) -> None:
        """Detach MindCore handlers and forget the current configuration."""
        root = logging.getLogger()
        for handler in (cls._console_handler, cls._file_handler):
            if handler is not None:
                root.removeHandler(handler)
                handler.close()
        cls._instance = None
        cls._configured = False
        cls._log_file_path = None
        cls._console_handler = None
        cls._file_handler = None
        cls._display_filter = None

    def configure(
        self,
        app_name: str = "mindcore",
        config: Optional[dict[str, Any]] = None,
        verbose: bool = False,
        force_reconfigure: bool = False,
    ) -> Optional[Path]:
        """
        Install console and file handlers on the root logger.

        Args:
            app_name: Used in log file names.
            config: Logging section; missing keys fall back to
                :data:`DEFAULT_LOGGING_CONFIG`.
            verbose: Force the console on at DEBUG (CLI ``-v``).
            force_reconfigure: Replace an existing configuration.

        Returns:
            The log file path, or None when file logging is off or failed.
        """
        cls = type(self)
        if cls._configured and not force_reconfigure:
            return cls._log_file_path
        if cls._configured:
            cls.reset()
            cls._instance = self

        log_config = {**DEFAULT_LOGGING_CONFIG, **(config or {})}
        root = logging.getLogger()
        root.setLevel(logging.DEBUG)

        console_on = bool(log_config.get("console_enabled")) or verbose
        cls._display_filter = DisplayFilter(
            console_globally_enabled=console_on,
            display_min_level=_to_level(log_config.get("display_min_level"), logging.INFO),
        )
        console = logging.StreamHandler(sys.stderr)
        if verbose:
            console.setLevel(logging.DEBUG)
        elif console_on:
            console.setLevel(_to_level(log_config.get("console_level"), logging.WARNING))
        else:
            console.setLevel(logging.DEBUG)
        console.setFormatter(logging.Formatter(log_config["console_format"]))
        console.addFilter(cls._display_filter)
        root.addHandler(console)
        cls._console_handler = console

        if log_config.get("file_enabled"):
            cls._file_handler, cls._log_file_path = self._build_file_handler(log_config, app_name)
            if cls._file_handler is not None:
                root.addHandler(cls._file_handler)

        components = {**DEFAULT_LOGGING_CONFIG["components"], **(log_config.get("components") or {})}
        if verbose:
            components["mindcore"] = "DEBUG"
        for name, level in components.items():
            logging.getLogger(name).setLevel(_to_level(level, logging.INFO))

        cls._configured = True
        if cls._log_file_path:
            logging.getLogger(__name__).debug(f"Logging configured. Log file: {cls._log_file_path}")
        return cls._log_file_path

    @staticmethod
    def _build_file_handler(config: dict[str, Any], app_name: str) -> tuple[Optional[logging.Handler], Optional[Path]]:
        log_dir = Path(os.path.expanduser(config["file_directory"]))
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            sys.stderr.write(f"mindcore: cannot create log directory {log_dir}: {e}\n")
            return None, None

        try:
            if config.get("file_mode") == "per_run":
                name = config["file_name_pattern"].format(app=app_name, timestamp=datetime.now())
                path = log_dir / name
                handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
            else:
                path = log_dir / config["file_single_name"].format(app=app_name)
                handler = RotatingFileHandler(
                    path,
                    maxBytes=int(config["rotation_max_bytes"]),
                    backupCount=int(config["rotation_backup_count"]),
                    encoding="utf-8",
                )
        except (KeyError, ValueError) as e:
            sys.stderr.write(f"mindcore: invalid log file name pattern: {e}\n")
            return None, None
        except OSError as e:
            sys.stderr.write(f"mindcore: cannot open log file in {log_dir}: {e}\n")
            return None, None

        handler.setLevel(_to_level(config.get("file_level"), logging.DEBUG))
        handler.setFormatter(logging.Formatter(config["file_format"]))
        return handler, path

    def set_component_level(self, component: str, level: Union[str, int]) -> None:
        logging.getLogger(component).setLevel(_to_level(level, logging.INFO))


def configure_logging(
    app_name: str = "mindcore",
    config: Optional[dict[str, Any]] = None,
    verbose: bool = False,
    force_reconfigure: bool = False,
) -> Optional[Path]:
    """Configure MindCore logging once per process. See :meth:`UnifiedLoggingManager.configure`."""
    return UnifiedLoggingManager.get_instance().configure(
        app_name=app_name,
        config=config,
        verbose=verbose,
        force_reconfigure=force_reconfigure,
    )


def log_display(logger: logging.Logger, level: int, msg: str, *args: Any, **kwargs: Any) -> None:
    """Log a record that reaches the console even in quiet mode.

    The caller's ``extra`` dict is merged, not replaced.
    """
    extra = dict(kwargs.pop("extra", None) or {})
    extra["display"] = True
    logger.log(level, msg, *args, extra=extra, **kwargs)


def get_log_file_path() -> Optional[Path]:
    return UnifiedLoggingManager.get_log_file_path()


def set_component_level(component: str, level: Union[str, int]) -> None:
    UnifiedLoggingManager.get_instance().set_component_level(component, level)
