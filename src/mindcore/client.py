# src/mindcore/client.py
"""
HTTP client for the memory backend.

:class:`BackendClient` wraps an ``httpx.AsyncClient``. It applies a
per-operation timeout to every request and runs every call except the
health probe under the shared backoff policy
(:func:`mindcore.resilience.retry.with_retry`). Transport and HTTP failures
are mapped onto the :mod:`mindcore.exceptions` taxonomy, so callers never
see raw ``httpx`` exceptions.

Usage:
    async with BackendClient(config.backend, RetryOptions.from_config(config.retry)) as client:
        status = await client.health()
        ids = await client.retain("my-project", "Fixed the flaky login test", context="Session transcript")
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import httpx

from .config.models import BackendConfig
from .exceptions import (
    BackendError,
    BackendTimeoutError,
    BankNotFoundError,
    InvalidDispositionError,
    NotFoundError,
    RateLimitedError,
    ServerError,
    UnavailableError,
    UnknownBackendError,
    ValidationError,
)
from .models import Bank, Disposition, FactType, FeedbackSignal, HealthStatus, Memory, ReflectResult
from .resilience.retry import RetryOptions, with_retry

logger = logging.getLogger(__name__)

DISPOSITION_TRAITS = ("skepticism", "literalism", "empathy")


# =============================================================================
# Error mapping
# =============================================================================


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """Convert a ``Retry-After`` header (seconds or HTTP date) to milliseconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0, int(float(value) * 1000))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int((when - now).total_seconds() * 1000))


def _extract_message(body: Any, status_code: int) -> str:
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {status_code}"


def error_from_response(response: httpx.Response, path: str, method: str = "GET") -> BackendError:
    """Map a non-2xx response onto the error taxonomy."""
    try:
        body = response.json()
    except ValueError:
        body = None
    status = response.status_code
    message = _extract_message(body, status)

    if status == 404:
        if path.startswith("/banks/"):
            if method == "DELETE" and "/memories/" in path:
                return NotFoundError(message, status_code=status)
            bank_id = path.split("/")[2]
            return BankNotFoundError(bank_id, message=f"Memory bank not found: '{bank_id}' ({message})", status_code=status)
        return ValidationError(message, status_code=status)
    if status == 422 and "disposition" in message.lower():
        return InvalidDispositionError(message, status_code=status)
    if status in (400, 401, 403, 422):
        return ValidationError(message, status_code=status)
    if status == 429:
        return RateLimitedError(
            message,
            status_code=status,
            retry_after_ms=parse_retry_after(response.headers.get("Retry-After")),
        )
    if 500 <= status < 600:
        return ServerError(message, status_code=status)
    return UnknownBackendError(message, status_code=status)


def error_from_transport(exc: Exception) -> BackendError:
    """Map an ``httpx`` transport failure onto the error taxonomy."""
    if isinstance(exc, httpx.TimeoutException):
        return BackendTimeoutError(f"Request timed out: {exc}", cause=exc)
    if isinstance(exc, httpx.TransportError):
        return UnavailableError(f"Memory backend unreachable: {exc}", cause=exc)
    return UnknownBackendError(f"Unexpected request failure: {exc}", cause=exc)


def validate_disposition(disposition: Any) -> Dict[str, int]:
    """Ensure every trait is an integer from 1 to 5 before it leaves the process."""
    if isinstance(disposition, Disposition):
        disposition = disposition.model_dump()
    result: Dict[str, int] = {}
    for trait in DISPOSITION_TRAITS:
        value = disposition.get(trait) if isinstance(disposition, dict) else None
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 5:
            raise InvalidDispositionError(f"Invalid {trait}: must be an integer between 1 and 5, got: {value!r}")
        result[trait] = value
    return result


# =============================================================================
# Client
# =============================================================================


class BackendClient:
    """
    Async client for the memory backend REST API.

    Args:
        config: Backend connection settings.
        retry: Backoff policy applied to every call except :meth:`health`.
        transport: Optional ``httpx`` transport (``httpx.MockTransport`` in tests).
        http_client: Optional pre-built ``httpx.AsyncClient``; not closed by :meth:`close`.
    """

    def __init__(
        self,
        config: Optional[BackendConfig] = None,
        retry: Optional[RetryOptions] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.config = config or BackendConfig()
        self.retry = retry or RetryOptions()
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=self.config.base_url,
            headers=headers,
            timeout=self.config.timeouts.default,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self.config.base_url

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ---------------------------------------------------------------- plumbing

    async def _send(
        self,
        method: str,
        path: str,
        operation: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        timeout = self.config.timeouts.for_operation(operation)
        try:
            response = await self._client.request(
                method, path, json=json, params=params, timeout=httpx.Timeout(timeout)
            )
        except httpx.HTTPError as e:
            raise error_from_transport(e) from e

        if not response.is_success:
            raise error_from_response(response, path, method)
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise UnknownBackendError(f"Invalid JSON from {method} {path}", status_code=response.status_code, cause=e) from e

    async def _request(
        self,
        method: str,
        path: str,
        operation: str = "default",
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        def on_retry(error: BaseException, attempt: int, delay_ms: int) -> None:
            logger.info(f"{operation}: attempt {attempt} failed ({error}); retrying in {delay_ms}ms")

        options = self.retry if self.retry.on_retry else self.retry.with_overrides(on_retry=on_retry)
        return await with_retry(lambda: self._send(method, path, operation, json=json, params=params), options)

    @staticmethod
    def _bank_path(bank_id: str, *parts: str) -> str:
        segments = ["/banks", quote(bank_id, safe="")]
        segments.extend(quote(p, safe="") for p in parts)
        return "/".join(segments)

    # ------------------------------------------------------------------ health

    async def health(self) -> HealthStatus:
        """Probe the backend. Never raises; failures come back as ``healthy=False``."""
        try:
            data = await self._send("GET", "/health", "health") or {}
        except BackendError as e:
            logger.debug(f"Health probe failed: {e}")
            return HealthStatus(healthy=False, banks=0, error=str(e))
        if not isinstance(data, dict):
            return HealthStatus(healthy=False, error=f"Unexpected health response: {type(data).__name__}")
        try:
            return HealthStatus(
                healthy=bool(data.get("healthy", False)),
                version=data.get("version"),
                banks=int(data.get("bank_count") or 0),
            )
        except (TypeError, ValueError) as e:
            logger.debug(f"Malformed health response {data!r}: {e}")
            return HealthStatus(healthy=False, error=f"Malformed health response: {e}")

    # ------------------------------------------------------------------- banks

    async def create_bank(
        self,
        bank_id: str,
        disposition: Any = None,
        background: Optional[str] = None,
    ) -> None:
        traits = validate_disposition(disposition if disposition is not None else Disposition())
        await self._request(
            "POST",
            "/banks",
            json={"bank_id": bank_id, "disposition": traits, "background": background},
        )

    async def get_bank(self, bank_id: str) -> Bank:
        data = await self._request("GET", self._bank_path(bank_id))
        return Bank.model_validate(data)

    # -------------------------------------------------------------- operations

    async def retain(self, bank_id: str, content: str, context: Optional[str] = None) -> List[str]:
        data = await self._request(
            "POST",
            self._bank_path(bank_id, "retain"),
            operation="retain",
            json={"content": content, "context": context},
        )
        return list((data or {}).get("memory_ids", []))

    async def recall(
        self,
        bank_id: str,
        query: str,
        budget: str = "mid",
        fact_type: Optional[FactType] = None,
        max_tokens: Optional[int] = None,
        include_entities: bool = False,
    ) -> List[Memory]:
        data = await self._request(
            "POST",
            self._bank_path(bank_id, "recall"),
            operation="recall",
            json={
                "query": query,
                "budget": budget,
                "fact_type": FactType(fact_type).value if fact_type else "all",
                "max_tokens": max_tokens,
                "include_entities": include_entities,
            },
        )
        return [Memory.model_validate(m) for m in (data or {}).get("memories", [])]

    async def reflect(self, bank_id: str, query: str, context: Optional[str] = None) -> ReflectResult:
        data = await self._request(
            "POST",
            self._bank_path(bank_id, "reflect"),
            operation="reflect",
            json={"query": query, "context": context},
        )
        return ReflectResult.model_validate(data or {"text": ""})

    async def recent(self, bank_id: str, days: int = 7) -> List[Memory]:
        data = await self._request(
            "GET",
            self._bank_path(bank_id, "memories", "recent"),
            params={"days": str(days)},
        )
        return [Memory.model_validate(m) for m in (data or {}).get("memories", [])]

    async def forget(self, bank_id: str, memory_id: str) -> None:
        await self._request("DELETE", self._bank_path(bank_id, "memories", memory_id))

    async def signal(self, bank_id: str, signals: Sequence[FeedbackSignal]) -> int:
        """
        Deliver a batch of feedback signals in one request.

        The batch is accepted or rejected as a whole.

        Returns:
            Number of signals the backend reports as processed.
        """
        payload = [
            {
                "fact_id": s.fact_id,
                "signal_type": s.signal_type.value,
                "session_id": s.session_id,
                "weight": s.weight,
                "query": s.query,
                "context": s.context,
            }
            for s in signals
        ]
        data = await self._request(
            "POST",
            self._bank_path(bank_id, "signal"),
            operation="signal",
            json={"signals": payload},
        )
        return int((data or {}).get("signals_processed", len(payload)))
