# tests/conftest.py
"""
Shared fixtures: an in-memory fake of the memory backend served through
``httpx.MockTransport``, and clients wired to it.
"""

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from mindcore.client import BackendClient
from mindcore.config.models import BackendConfig
from mindcore.logging_config import UnifiedLoggingManager
from mindcore.resilience.retry import RetryOptions


async def no_sleep(seconds: float) -> None:
    return None


class FakeBackend:
    """
    Minimal stateful backend.

    Attributes:
        down: Every request fails with a connection error.
        healthy: Value reported by ``GET /health``.
        health_body: Raw JSON returned by ``GET /health`` instead, when set.
        fail_retain_after: Accept this many retains, then fail with ``retain_failure``.
        retain_failure: ``"down"`` (connection error) or an HTTP status code.
    """

    def __init__(self) -> None:
        self.down = False
        self.healthy = True
        self.health_body: Any = None
        self.banks: Dict[str, Dict[str, Any]] = {}
        self.retained: List[Dict[str, Any]] = []
        self.signal_batches: List[List[Dict[str, Any]]] = []
        self.recent: List[Dict[str, Any]] = []
        self.recall_results: List[Dict[str, Any]] = []
        self.reflect_result: Dict[str, Any] = {"text": "I believe so.", "opinions": [], "based_on": {}}
        self.fail_retain_after: Optional[int] = None
        self.retain_failure: Any = "down"
        self.fail_signals = False
        self.requests: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/api/v1")
        self.requests.append(f"{request.method} {path}")
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)

        body = json.loads(request.content) if request.content else {}
        parts = path.strip("/").split("/")

        if path == "/health" and self.health_body is not None:
            return httpx.Response(200, json=self.health_body)
        if path == "/health":
            return httpx.Response(200, json={"healthy": self.healthy, "version": "test", "bank_count": len(self.banks)})
        if path == "/banks" and request.method == "POST":
            self.banks[body["bank_id"]] = body
            return httpx.Response(200, json={"bank_id": body["bank_id"]})
        if parts[0] != "banks":
            return httpx.Response(404, json={"message": "no route"})

        bank_id = parts[1]
        if bank_id not in self.banks:
            return httpx.Response(404, json={"message": "bank not found"})
        action = parts[2] if len(parts) > 2 else None

        if action is None:
            return httpx.Response(200, json={"bank_id": bank_id, **self.banks[bank_id]})
        if action == "retain":
            if self.fail_retain_after is not None and len(self.retained) >= self.fail_retain_after:
                if self.retain_failure == "down":
                    raise httpx.ConnectError("connection refused", request=request)
                return httpx.Response(self.retain_failure, json={"message": "rejected"})
            self.retained.append(body)
            return httpx.Response(200, json={"memory_ids": [f"mem-{len(self.retained)}"]})
        if action == "recall":
            return httpx.Response(200, json={"memories": self.recall_results})
        if action == "reflect":
            return httpx.Response(200, json=self.reflect_result)
        if action == "memories" and parts[3:] == ["recent"]:
            return httpx.Response(200, json={"memories": self.recent})
        if action == "signal":
            if self.fail_signals:
                raise httpx.ConnectError("connection refused", request=request)
            self.signal_batches.append(body["signals"])
            return httpx.Response(200, json={"success": True, "signals_processed": len(body["signals"])})
        return httpx.Response(404, json={"message": "no route"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def client(backend) -> BackendClient:
    """Client with a single attempt per call, talking to the fake backend."""
    return BackendClient(
        BackendConfig(),
        retry=RetryOptions(max_attempts=1, jitter=False, sleep=no_sleep),
        transport=httpx.MockTransport(backend.handler),
    )


@pytest.fixture
def reset_logging_manager():
    """Reset the logging manager singleton between tests."""
    UnifiedLoggingManager.reset()
    yield
    UnifiedLoggingManager.reset()
