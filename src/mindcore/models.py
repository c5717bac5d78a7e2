# src/mindcore/models.py
"""
Core data models for the MindCore library.

This module defines the Pydantic models exchanged between the ingestion
pipeline, the offline queue, the transport client and callers: memory
items and feedback signals awaiting delivery, the records that wrap them
in the offline queue, and the result types returned by the memory backend.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FactType(str, Enum):
    """Kinds of facts the memory backend distinguishes."""
    WORLD = "world"
    EXPERIENCE = "experience"
    OPINION = "opinion"
    OBSERVATION = "observation"

    @classmethod
    def _missing_(cls, value: object):  # type: ignore[misc]
        """Case-insensitive lookup."""
        if isinstance(value, str):
            lower_value = value.lower()
            for member in cls:
                if member.value == lower_value:
                    return member
        return None


class SignalType(str, Enum):
    """Feedback on whether a recalled memory was useful."""
    USED = "used"
    IGNORED = "ignored"
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"


class _UtcModel(BaseModel):
    """Base model that normalizes every datetime field to aware UTC."""

    @field_validator("*", mode="after")
    @classmethod
    def _ensure_utc(cls, v: Any) -> Any:
        if isinstance(v, datetime):
            if v.tzinfo is None:
                return v.replace(tzinfo=timezone.utc)
            return v.astimezone(timezone.utc)
        return v


# =============================================================================
# Queued payloads
# =============================================================================


class MemoryItem(_UtcModel):
    """
    A unit of content destined for long-term memory.

    Immutable once created; it is either held by the backend or by the
    offline queue, never edited in place.
    """
    model_config = ConfigDict(frozen=True)

    text: str = Field(description="Content to remember.")
    context: Optional[str] = Field(default=None, description="Short description of where the content came from.")
    fact_type: FactType = Field(default=FactType.EXPERIENCE, description="Fact classification.")
    created_at: datetime = Field(default_factory=utcnow, description="Creation time (UTC).")
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="Optional confidence score.")


class FeedbackSignal(_UtcModel):
    """Usefulness signal for a previously recalled memory."""
    model_config = ConfigDict(frozen=True)

    fact_id: str = Field(description="Backend id of the recalled memory.")
    signal_type: SignalType = Field(description="Kind of feedback.")
    session_id: str = Field(description="Session in which the memory was recalled.")
    weight: float = Field(default=1.0, ge=0.0, description="Relative strength of the signal.")
    query: Optional[str] = Field(default=None, description="Query that produced the recall, if known.")
    context: Optional[str] = Field(default=None, description="Free-form context for the signal.")
    created_at: datetime = Field(default_factory=utcnow)


class OfflineRecord(_UtcModel):
    """
    A queued payload plus its delivery bookkeeping.

    ``synced_at`` is ``None`` until the backend has confirmed the write.
    A record with ``synced_at`` set is never sent again.
    """
    id: str
    payload: Union[MemoryItem, FeedbackSignal]
    queued_at: datetime = Field(default_factory=utcnow)
    synced_at: Optional[datetime] = None

    @property
    def synced(self) -> bool:
        return self.synced_at is not None


class QueueStats(_UtcModel):
    """Counters for one offline queue."""
    total: int = 0
    pending: int = 0
    synced: int = 0
    last_sync_attempt: Optional[datetime] = None
    last_sync_success: Optional[datetime] = None


# =============================================================================
# Sessions and ingestion
# =============================================================================


class SessionContext(_UtcModel):
    """The single active session of an orchestrator instance."""
    session_id: str
    started_at: datetime = Field(default_factory=utcnow)
    active: bool = True


class SkipDecision(BaseModel):
    """Outcome of the skip heuristic."""
    skip: bool
    reason: Optional[str] = None


class FilterResult(BaseModel):
    """Filtered transcript plus the skip decision; never persisted."""
    text: str
    skip: bool = False
    reason: Optional[str] = None
    original_length: int = 0

    @property
    def filtered_length(self) -> int:
        return len(self.text)


class SessionEndResult(BaseModel):
    """What happened to a transcript at session end."""
    session_id: Optional[str] = None
    filter: FilterResult
    retained: bool = False
    offline: bool = False
    memory_ids: List[str] = Field(default_factory=list)


# =============================================================================
# Backend results
# =============================================================================


class Disposition(BaseModel):
    """Personality traits of a memory bank, each an integer from 1 to 5."""
    skepticism: int = Field(default=3, ge=1, le=5)
    literalism: int = Field(default=3, ge=1, le=5)
    empathy: int = Field(default=3, ge=1, le=5)


class Bank(_UtcModel):
    bank_id: str
    disposition: Disposition = Field(default_factory=Disposition)
    background: Optional[str] = None
    created_at: Optional[datetime] = None
    memory_count: int = 0


class Memory(_UtcModel):
    """A memory returned by recall, either from the backend or the offline store."""
    id: str
    text: str
    fact_type: FactType = FactType.EXPERIENCE
    created_at: Optional[datetime] = None
    context: Optional[str] = None
    confidence: Optional[float] = None
    what: Optional[str] = None
    when: Optional[str] = None
    where: Optional[str] = None
    who: Optional[Any] = None
    why: Optional[str] = None
    entities: Optional[List[Any]] = None


class Opinion(BaseModel):
    opinion: str
    confidence: float = 0.0


class BasedOn(BaseModel):
    world: int = 0
    experience: int = 0
    opinion: int = 0


class ReflectResult(BaseModel):
    text: str
    opinions: List[Opinion] = Field(default_factory=list)
    based_on: BasedOn = Field(default_factory=BasedOn)


class HealthStatus(BaseModel):
    healthy: bool
    version: Optional[str] = None
    banks: int = 0
    error: Optional[str] = None


class RetainResult(BaseModel):
    memory_ids: List[str] = Field(default_factory=list)
    offline: bool = False


class SignalResult(BaseModel):
    accepted: int = 0
    offline: bool = False
    queued_ids: List[str] = Field(default_factory=list)


class SyncReport(BaseModel):
    """Outcome of one drain pass over an offline queue."""
    attempted: int = 0
    synced: int = 0
    remaining: int = 0
    cleared: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()
