# src/mindcore/storage/__init__.py
"""Local persistence: the durable offline queue."""

from .offline_queue import (
    OfflineFeedbackQueue,
    OfflineMemoryStore,
    OfflineStorage,
    resolve_queue_path,
)

__all__ = ["OfflineFeedbackQueue", "OfflineMemoryStore", "OfflineStorage", "resolve_queue_path"]
