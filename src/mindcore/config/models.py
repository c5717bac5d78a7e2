# src/mindcore/config/models.py
"""
Pydantic models for MindCore configuration.

The loader merges every configuration layer into a plain dictionary and
validates it once against :class:`MindCoreConfig`. The resulting object is
frozen; components receive the section they need and never re-read the
environment or config files afterwards.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..logging_config import DEFAULT_LOGGING_CONFIG
from ..models import Disposition


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


# ==============================================================================
# Backend
# ==============================================================================


class BackendTimeouts(_Section):
    """Per-operation request timeouts, in seconds."""

    default: float = Field(10.0, gt=0, description="Timeout for operations without a specific entry")
    health: float = Field(3.0, gt=0, description="Health probe timeout")
    recall: float = Field(15.0, gt=0, description="Recall timeout")
    reflect: float = Field(30.0, gt=0, description="Reflect timeout")
    retain: float = Field(10.0, gt=0, description="Retain timeout")
    signal: float = Field(10.0, gt=0, description="Feedback signal timeout")

    def for_operation(self, operation: str) -> float:
        return getattr(self, operation, None) or self.default


class BackendConfig(_Section):
    """Connection settings for the memory backend."""

    host: str = Field("localhost", description="Backend host name")
    port: int = Field(8888, ge=1, le=65535, description="Backend port")
    api_key: Optional[str] = Field(None, description="Bearer token sent with every request")
    base_path: str = Field("/api/v1", description="API prefix appended to the base URL")
    scheme: str = Field("http", description="URL scheme")
    timeouts: BackendTimeouts = Field(default_factory=BackendTimeouts)

    @property
    def base_url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}{self.base_path.rstrip('/')}"


# ==============================================================================
# Retry
# ==============================================================================


class RetryConfig(_Section):
    """Exponential backoff settings shared by every backend call."""

    max_attempts: int = Field(3, ge=1, description="Total attempts, including the first one")
    initial_delay_ms: int = Field(100, ge=0, description="Delay before the first retry")
    max_delay_ms: int = Field(5000, ge=0, description="Upper bound for any single delay")
    backoff_multiplier: float = Field(2.0, ge=1.0, description="Growth factor between retries")
    jitter: bool = Field(True, description="Add up to 50% random extra delay")


# ==============================================================================
# Ingestion
# ==============================================================================


class RetainFilterConfig(_Section):
    """Transcript filtering and skip settings."""

    max_transcript_length: int = Field(25000, ge=0, description="Hard cap on retained transcript size (0 = no cap)")
    filter_tool_results: bool = Field(True, description="Replace tool result blocks with placeholders")
    filter_file_contents: bool = Field(True, description="Replace file content blocks with placeholders")
    max_code_block_lines: int = Field(30, ge=0, description="Summarize fenced code blocks longer than this (0 = keep)")
    max_line_length: int = Field(1000, ge=0, description="Truncate longer lines (0 = keep)")
    min_session_length: int = Field(200, ge=0, description="Skip transcripts shorter than this after filtering")
    skip_tool_only_sessions: bool = Field(True, description="Skip transcripts dominated by filter placeholders")
    custom_skip_patterns: List[str] = Field(default_factory=list, description="Regexes; a match skips the session")

    @field_validator("custom_skip_patterns", mode="before")
    @classmethod
    def _split_string(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [p.strip() for p in v.split(",") if p.strip()]
        return v


class ContextConfig(_Section):
    """Session-start context injection."""

    recent_memory_limit: int = Field(3, ge=0, description="Recent memories injected at session start (0 = none)")
    recent_days: int = Field(7, ge=1, description="Look-back window for recent memories on the backend")


# ==============================================================================
# Offline queue and bank
# ==============================================================================


class OfflineConfig(_Section):
    """Durable offline queue settings."""

    path: str = Field(".mindcore/offline.db", description="Queue database, relative to the project directory")
    compact_after_sync: bool = Field(True, description="Delete synced records after a successful drain")
    feedback_batch_size: int = Field(50, ge=1, description="Signals per backend request during a feedback drain")


class BankConfig(_Section):
    """Memory bank identity and personality."""

    id: Optional[str] = Field(None, description="Explicit bank id; derived from the project when unset")
    background: Optional[str] = Field(None, description="Background description stored with the bank")
    disposition: Disposition = Field(default_factory=Disposition)

    @field_validator("id")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


# ==============================================================================
# Root
# ==============================================================================


class MindCoreConfig(_Section):
    """Fully resolved, immutable configuration."""

    backend: BackendConfig = Field(default_factory=BackendConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    retain_filter: RetainFilterConfig = Field(default_factory=RetainFilterConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    offline: OfflineConfig = Field(default_factory=OfflineConfig)
    bank: BankConfig = Field(default_factory=BankConfig)
    logging: Dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_LOGGING_CONFIG))

    @model_validator(mode="after")
    def check_retry_bounds(self) -> "MindCoreConfig":
        """Reject configurations whose retry bounds contradict each other."""
        if self.retry.max_delay_ms < self.retry.initial_delay_ms:
            raise ValueError("retry.max_delay_ms must be >= retry.initial_delay_ms")
        return self

