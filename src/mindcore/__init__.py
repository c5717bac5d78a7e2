# src/mindcore/__init__.py
"""
MindCore - resilient memory integration for AI coding assistant sessions.

Filters session transcripts, decides what is worth keeping, and delivers
it to a long-term memory backend. While the backend is unreachable,
writes go to a durable local queue and are synced once it comes back.
"""

from importlib.metadata import PackageNotFoundError, version

from .api import MindCore
from .config import MindCoreConfig, load_config
from .degradation import ConnectionState, DegradationController
from .events import EventDispatcher, EventType, MindEvent, MindEventListener
from .exceptions import (
    BackendError,
    BackendTimeoutError,
    BankNotFoundError,
    ConfigError,
    ErrorKind,
    InvalidDispositionError,
    MindCoreError,
    NotFoundError,
    OfflineStorageError,
    RateLimitedError,
    RequiresConnectionError,
    ServerError,
    SessionStateError,
    StorageError,
    UnavailableError,
    UnknownBackendError,
    ValidationError,
)
from .models import (
    Disposition,
    FactType,
    FeedbackSignal,
    FilterResult,
    Memory,
    MemoryItem,
    OfflineRecord,
    QueueStats,
    ReflectResult,
    RetainResult,
    SessionContext,
    SessionEndResult,
    SignalResult,
    SignalType,
    SyncReport,
)

try:
    __version__ = version("mindcore")
except PackageNotFoundError:
    __version__ = "0.0.0"


__all__ = [
    # Facade
    "MindCore",
    "MindCoreConfig",
    "load_config",
    # State and events
    "ConnectionState",
    "DegradationController",
    "EventDispatcher",
    "EventType",
    "MindEvent",
    "MindEventListener",
    # Errors
    "BackendError",
    "BackendTimeoutError",
    "BankNotFoundError",
    "ConfigError",
    "ErrorKind",
    "InvalidDispositionError",
    "MindCoreError",
    "NotFoundError",
    "OfflineStorageError",
    "RateLimitedError",
    "RequiresConnectionError",
    "ServerError",
    "SessionStateError",
    "StorageError",
    "UnavailableError",
    "UnknownBackendError",
    "ValidationError",
    # Models
    "Disposition",
    "FactType",
    "FeedbackSignal",
    "FilterResult",
    "Memory",
    "MemoryItem",
    "OfflineRecord",
    "QueueStats",
    "ReflectResult",
    "RetainResult",
    "SessionContext",
    "SessionEndResult",
    "SignalResult",
    "SignalType",
    "SyncReport",
    "__version__",
]
