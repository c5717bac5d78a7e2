# src/mindcore/resilience/__init__.py
"""Retry and backoff policy shared by every backend call."""

from .retry import RetryOptions, compute_delay, is_retryable, retryable, with_retry

__all__ = ["RetryOptions", "compute_delay", "is_retryable", "retryable", "with_retry"]
