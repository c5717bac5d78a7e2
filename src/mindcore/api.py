# src/mindcore/api.py
"""
Core API facade for the MindCore library.

:class:`MindCore` ties the pieces together: it resolves configuration and
the memory bank, owns the :class:`~mindcore.degradation.DegradationController`,
and routes every memory operation either to the backend client or to the
durable offline queue depending on the connection state at call time.
"""

import json
import logging
import re
import tomllib
import uuid
from pathlib import Path
from typing import Any, Iterable, List, Optional, Sequence, Union

import httpx

from .client import BackendClient
from .config.loader import load_config
from .config.models import MindCoreConfig
from .degradation import ConnectionState, DegradationController
from .events import EventDispatcher, EventType, Listener
from .exceptions import (BackendError, BankNotFoundError, OfflineStorageError,
                         RequiresConnectionError, SessionStateError,
                         UnavailableError)
from .ingestion.skip import filter_transcript
from .models import (Bank, FactType, FeedbackSignal, Memory, ReflectResult,
                     RetainResult, SessionContext, SessionEndResult,
                     SignalResult, SyncReport)
from .resilience.retry import RetryOptions
from .storage.offline_queue import (OfflineFeedbackQueue, OfflineMemoryStore,
                                    OfflineStorage)

logger = logging.getLogger(__name__)

FIRST_PERSON_PREFIX = (
    "I am an AI coding assistant. I speak in first person (I believe, I noticed, I learned). "
    "When forming opinions, I say 'I believe...' not 'User believes...'. "
)

TRUNCATION_MARKER = "[Earlier transcript truncated]\n"
SESSION_TRANSCRIPT_CONTEXT = "Session transcript"
RECENT_TEXT_LIMIT = 200


# =============================================================================
# Helpers
# =============================================================================


def sanitize_bank_id(name: str) -> str:
    """Lowercase and replace every character outside ``[a-z0-9-]`` with ``-``."""
    return re.sub(r"[^a-z0-9-]", "-", name.strip().lower())


def derive_bank_id(project_path: Union[str, Path]) -> str:
    """
    Bank id for a project: ``[project].name`` from pyproject.toml, else
    ``name`` from package.json, else the directory name.
    """
    project = Path(project_path)

    pyproject = project / "pyproject.toml"
    if pyproject.is_file():
        try:
            with pyproject.open("rb") as f:
                name = tomllib.load(f).get("project", {}).get("name")
            if isinstance(name, str) and name.strip():
                return sanitize_bank_id(name)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.debug(f"Ignoring unreadable {pyproject}: {e}")

    package_json = project / "package.json"
    if package_json.is_file():
        try:
            name = json.loads(package_json.read_text(encoding="utf-8")).get("name")
            if isinstance(name, str) and name.strip():
                return sanitize_bank_id(name)
        except (OSError, ValueError, AttributeError) as e:
            logger.debug(f"Ignoring unreadable {package_json}: {e}")

    return sanitize_bank_id(project.resolve().name)


def truncate_transcript(text: str, max_length: int) -> str:
    """Keep the most recent part of ``text`` so the result fits in ``max_length`` chars."""
    if max_length <= 0 or len(text) <= max_length:
        return text
    keep = max_length - len(TRUNCATION_MARKER)
    if keep <= 0:
        return text[-max_length:]
    return TRUNCATION_MARKER + text[-keep:]


def format_recent_memories(memories: Sequence[Memory]) -> str:
    if not memories:
        return ""
    lines = ["## Recent Activity"]
    for memory in memories:
        date = memory.created_at.date().isoformat() if memory.created_at else "unknown date"
        text = memory.text
        if len(text) > RECENT_TEXT_LIMIT:
            text = f"{text[:RECENT_TEXT_LIMIT]}..."
        lines.append(f"- {date}: {text}")
    return "\n".join(lines)


# =============================================================================
# Facade
# =============================================================================


class MindCore:
    """
    Session-aware, degradation-tolerant access to the memory backend.

    Initialized asynchronously with :meth:`MindCore.create`::

        async with await MindCore.create(project_path=".") as mind:
            context = await mind.on_session_start()
            ...
            await mind.on_session_end(transcript)
    """

    config: MindCoreConfig
    project_path: Path
    bank_id: str

    def __init__(
        self,
        config: MindCoreConfig,
        project_path: Path,
        bank_id: str,
        client: BackendClient,
        events: Optional[EventDispatcher] = None,
    ):
        """Private constructor. Use `MindCore.create()` for initialization."""
        self.config = config
        self.project_path = project_path
        self.bank_id = bank_id
        self._client = client
        self._events = events or EventDispatcher()
        self._degradation = DegradationController(
            self._events,
            feedback_batch_size=config.offline.feedback_batch_size,
            compact_after_sync=config.offline.compact_after_sync,
        )
        self._storage: Optional[OfflineStorage] = None
        self._session: Optional[SessionContext] = None

    @classmethod
    async def create(
        cls,
        project_path: Union[str, Path, None] = None,
        config_file_path: Union[str, Path, None] = None,
        config_overrides: Optional[dict[str, Any]] = None,
        env_prefix: str = "MINDCORE_",
        config: Optional[MindCoreConfig] = None,
        client: Optional[BackendClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        listeners: Iterable[Listener] = (),
    ) -> "MindCore":
        """
        Asynchronously create and initialize a MindCore instance.

        Args:
            project_path: Project directory; defaults to the current directory.
            config_file_path: Optional explicit TOML config file.
            config_overrides: Nested dictionary applied on top of every other layer.
            env_prefix: Environment variable prefix for configuration.
            config: Pre-resolved configuration; skips :func:`load_config`.
            client: Pre-built backend client.
            transport: ``httpx`` transport for the default client (tests).
            listeners: Subscribed before startup so they see ``DEGRADED_CHANGE`` and ``READY``.

        Raises:
            ConfigError: If the configuration is invalid.
            BackendError: If the backend rejects the bank check for a reason
                other than being unavailable.
        """
        project = Path(project_path or ".").expanduser().resolve()
        if config is None:
            config = load_config(project, config_file_path, config_overrides, env_prefix)
        bank_id = sanitize_bank_id(config.bank.id) if config.bank.id else derive_bank_id(project)
        if client is None:
            client = BackendClient(
                config.backend,
                retry=RetryOptions.from_config(config.retry),
                transport=transport,
            )

        instance = cls(config, project, bank_id, client)
        for listener in listeners:
            instance.subscribe(listener)
        try:
            await instance._initialize()
        except BaseException:
            await instance.close()
            raise
        return instance

    async def _initialize(self) -> None:
        logger.info(f"Initializing MindCore for bank '{self.bank_id}' ({self.project_path})")
        try:
            self._storage = await OfflineStorage.open_for_project(self.project_path, self.config.offline.path)
        except OfflineStorageError as e:
            logger.warning(f"Offline queue disabled: {e}")
            self._events.emit_error(e, "open offline queue")
            self._storage = None

        health = await self._client.health()
        if not health.healthy:
            self._degradation.enter_degraded(f"health check failed: {health.error or 'backend reports unhealthy'}")
        else:
            try:
                await self._ensure_bank()
            except UnavailableError as e:
                self._degradation.handle_error(e, "startup: ensure bank")

        self._events.emit(EventType.READY, {"bank_id": self.bank_id, "degraded": self.is_degraded})
        logger.debug(f"MindCore ready (state={self.state.value})")

    async def _ensure_bank(self) -> None:
        try:
            await self._client.get_bank(self.bank_id)
        except BankNotFoundError:
            background = self.config.bank.background
            background = FIRST_PERSON_PREFIX + background if background else FIRST_PERSON_PREFIX.strip()
            logger.info(f"Creating memory bank '{self.bank_id}'")
            await self._client.create_bank(
                self.bank_id,
                disposition=self.config.bank.disposition,
                background=background,
            )

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> ConnectionState:
        return self._degradation.state

    @property
    def is_degraded(self) -> bool:
        return self._degradation.is_degraded

    @property
    def session(self) -> Optional[SessionContext]:
        return self._session

    @property
    def client(self) -> BackendClient:
        return self._client

    def get_offline_store(self) -> Optional[OfflineMemoryStore]:
        return self._storage.memories if self._storage else None

    def get_offline_feedback_queue(self) -> Optional[OfflineFeedbackQueue]:
        return self._storage.feedback if self._storage else None

    def subscribe(self, listener: Listener, event_types: Optional[Iterable[EventType]] = None):
        """Register an event listener. Returns a callable that unsubscribes it."""
        return self._events.subscribe(listener, event_types)

    async def close(self) -> None:
        if self._storage is not None:
            await self._storage.close()
            self._storage = None
        await self._client.close()

    async def __aenter__(self) -> "MindCore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -------------------------------------------------------- session lifecycle

    async def on_session_start(self, session_id: Optional[str] = None) -> str:
        """
        Begin a session and build the context block to inject.

        Returns:
            A ``## Recent Activity`` block, or an empty string when there is
            nothing to show.

        Raises:
            SessionStateError: If a session is already active.
        """
        if self._session is not None and self._session.active:
            raise SessionStateError(f"Session '{self._session.session_id}' is already active.")
        self._session = SessionContext(session_id=session_id or uuid.uuid4().hex)
        self._events.emit(EventType.SESSION_STARTED, {"session_id": self._session.session_id})

        limit = self.config.context.recent_memory_limit
        if limit <= 0:
            return ""

        memories: List[Memory] = []
        if not self.is_degraded:
            try:
                recent = await self._client.recent(self.bank_id, days=self.config.context.recent_days)
                memories = recent[:limit]
            except UnavailableError as e:
                self._degradation.handle_error(e, "session start: recent memories")
            except BackendError as e:
                logger.warning(f"Could not load recent memories: {e}")
                self._events.emit_error(e, "session start: recent memories")

        if self.is_degraded and self._storage is not None:
            try:
                records = await self._storage.memories.get_recent(limit)
                memories = [OfflineMemoryStore.to_memory(r) for r in records]
            except OfflineStorageError as e:
                self._events.emit_error(e, "session start: offline recent memories")

        if memories:
            self._events.emit(EventType.MEMORY_RECALLED, {"count": len(memories), "offline": self.is_degraded})
        return format_recent_memories(memories)

    async def on_session_end(self, transcript: Optional[str] = None, session_id: Optional[str] = None) -> SessionEndResult:
        """
        Filter, judge and store a finished session's transcript.

        The active session is cleared on return, whether or not storing succeeded.
        """
        session = self._session
        sid = session_id or (session.session_id if session else None)
        try:
            result = filter_transcript(transcript or "", self.config.retain_filter)
            if result.skip:
                self._events.emit(EventType.SESSION_SKIPPED, {"session_id": sid, "reason": result.reason})
                return SessionEndResult(session_id=sid, filter=result)

            text = truncate_transcript(result.text, self.config.retain_filter.max_transcript_length)
            stored = await self._retain_routed(text, SESSION_TRANSCRIPT_CONTEXT, FactType.EXPERIENCE, "session end")
            self._events.emit(
                EventType.SESSION_ENDED,
                {"session_id": sid, "chars": len(text), "offline": stored.offline},
            )
            return SessionEndResult(
                session_id=sid,
                filter=result,
                retained=bool(stored.memory_ids),
                offline=stored.offline,
                memory_ids=stored.memory_ids,
            )
        finally:
            if session is not None:
                session.active = False
            self._session = None

    # ---------------------------------------------------------------- routing

    async def _retain_routed(self, content: str, context: Optional[str], fact_type: FactType, operation: str) -> RetainResult:
        if not self.is_degraded:
            try:
                ids = await self._client.retain(self.bank_id, content, context)
            except UnavailableError as e:
                self._degradation.handle_error(e, operation)
            else:
                self._events.emit(EventType.MEMORY_RETAINED, {"memory_ids": ids, "chars": len(content)})
                return RetainResult(memory_ids=ids)
        return await self._retain_offline(content, context, fact_type, operation)

    async def _retain_offline(self, content: str, context: Optional[str], fact_type: FactType, operation: str) -> RetainResult:
        if self._storage is None:
            self._events.emit_error(OfflineStorageError("Offline queue is not available."), operation)
            return RetainResult(offline=True)
        try:
            record_id = await self._storage.memories.retain(content, fact_type, context)
        except OfflineStorageError as e:
            self._events.emit_error(e, f"{operation} (offline)")
            return RetainResult(offline=True)
        self._events.emit(EventType.MEMORY_RETAINED, {"memory_ids": [record_id], "chars": len(content)})
        self._events.emit(EventType.OFFLINE_STORED, {"id": record_id, "fact_type": fact_type.value})
        return RetainResult(memory_ids=[record_id], offline=True)

    async def retain(
        self,
        content: str,
        context: Optional[str] = None,
        fact_type: Union[FactType, str] = FactType.EXPERIENCE,
    ) -> RetainResult:
        """Store content online, or in the offline queue while degraded."""
        return await self._retain_routed(content, context, FactType(fact_type), "retain")

    async def recall(
        self,
        query: str,
        budget: str = "mid",
        fact_type: Union[FactType, str, None] = None,
        max_tokens: Optional[int] = None,
        include_entities: bool = False,
    ) -> List[Memory]:
        """Search memories; falls back to substring search over the offline queue."""
        wanted = FactType(fact_type) if fact_type else None
        if not self.is_degraded:
            try:
                memories = await self._client.recall(
                    self.bank_id,
                    query,
                    budget=budget,
                    fact_type=wanted,
                    max_tokens=max_tokens,
                    include_entities=include_entities,
                )
            except UnavailableError as e:
                self._degradation.handle_error(e, "recall")
            else:
                self._events.emit(EventType.MEMORY_RECALLED, {"count": len(memories), "query": query})
                return memories

        if self._storage is None:
            return []
        limit = max(1, max_tokens // 100) if max_tokens else 10
        try:
            records = await self._storage.memories.recall(query, wanted, limit=limit)
        except OfflineStorageError as e:
            self._events.emit_error(e, "recall (offline)")
            return []
        memories = [OfflineMemoryStore.to_memory(r) for r in records]
        if memories:
            self._events.emit(EventType.MEMORY_RECALLED, {"count": len(memories), "query": query, "offline": True})
        return memories

    async def reflect(self, query: str, context: Optional[str] = None) -> ReflectResult:
        """
        Ask the backend to reason over the bank.

        Raises:
            RequiresConnectionError: While degraded.
            UnavailableError: If the backend drops during the call (the
                instance is degraded afterwards).
        """
        if self.is_degraded:
            raise RequiresConnectionError("reflect")
        try:
            result = await self._client.reflect(self.bank_id, query, context)
        except UnavailableError as e:
            self._degradation.handle_error(e, "reflect")
            raise
        for opinion in result.opinions:
            self._events.emit(EventType.OPINION_FORMED, opinion.model_dump())
        return result

    async def forget(self, memory_id: str) -> None:
        if self.is_degraded:
            raise RequiresConnectionError("forget")
        try:
            await self._client.forget(self.bank_id, memory_id)
        except UnavailableError as e:
            self._degradation.handle_error(e, "forget")
            raise

    async def get_bank(self) -> Bank:
        if self.is_degraded:
            raise RequiresConnectionError("get_bank")
        try:
            return await self._client.get_bank(self.bank_id)
        except UnavailableError as e:
            self._degradation.handle_error(e, "get_bank")
            raise

    async def signal(self, items: Sequence[FeedbackSignal]) -> SignalResult:
        """
        Report feedback on recalled memories.

        Signals are sent in batches; whatever could not be sent because the
        backend is unavailable is queued offline.
        """
        pending = list(items)
        if not pending:
            return SignalResult()

        accepted = 0
        if not self.is_degraded:
            size = self.config.offline.feedback_batch_size
            while pending:
                batch = pending[:size]
                try:
                    accepted += await self._client.signal(self.bank_id, batch)
                except UnavailableError as e:
                    self._degradation.handle_error(e, "signal")
                    break
                pending = pending[size:]
            if not pending:
                return SignalResult(accepted=accepted)

        if self._storage is None:
            self._events.emit_error(OfflineStorageError("Offline queue is not available."), "signal")
            return SignalResult(accepted=accepted, offline=True)
        try:
            queued = await self._storage.feedback.enqueue_batch(pending)
        except OfflineStorageError as e:
            self._events.emit_error(e, "signal (offline)")
            return SignalResult(accepted=accepted, offline=True)
        self._events.emit(EventType.FEEDBACK_QUEUED, {"count": len(queued)})
        return SignalResult(accepted=accepted, offline=True, queued_ids=queued)

    # --------------------------------------------------------------- recovery

    async def attempt_recovery(self, deadline: Optional[float] = None) -> bool:
        """
        Re-probe the backend when degraded, then drain both offline queues.

        Safe to call at any time; when already online only the drains run.
        ``deadline`` is a ``time.monotonic()`` value after which the drains
        stop between records and leave the rest queued.

        Returns:
            False if the probe or the bank check failed, or if a drain lost
            the connection again; True otherwise.
        """
        return await self._degradation.attempt_recovery(
            self._client,
            self._ensure_bank,
            self.bank_id,
            memories=self.get_offline_store(),
            feedback=self.get_offline_feedback_queue(),
            deadline=deadline,
        )

    async def sync_offline_memories(self) -> SyncReport:
        return await self._degradation.sync_offline_memories(self._client, self.get_offline_store(), self.bank_id)

    async def sync_offline_feedback(self) -> SyncReport:
        return await self._degradation.sync_offline_feedback(self._client, self.get_offline_feedback_queue(), self.bank_id)
