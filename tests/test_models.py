# tests/test_models.py
"""
Tests for the mindcore.models module.

These tests verify:
- Datetimes are normalized to aware UTC
- Queued payloads are immutable
- Enum lookups and field bounds
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from mindcore.models import (
    Disposition,
    FactType,
    FeedbackSignal,
    FilterResult,
    MemoryItem,
    OfflineRecord,
    SignalType,
)


class TestUtcNormalization:
    """All datetime fields end up timezone-aware in UTC."""

    def test_naive_datetime_assumed_utc(self):
        item = MemoryItem(text="x", created_at=datetime(2026, 1, 2, 3, 4, 5))
        assert item.created_at.tzinfo == timezone.utc
        assert item.created_at.hour == 3

    def test_offset_datetime_converted(self):
        plus_two = timezone(timedelta(hours=2))
        item = MemoryItem(text="x", created_at=datetime(2026, 1, 2, 12, 0, tzinfo=plus_two))
        assert item.created_at == datetime(2026, 1, 2, 10, 0, tzinfo=timezone.utc)
        assert item.created_at.utcoffset() == timedelta(0)


class TestPayloads:
    """MemoryItem and FeedbackSignal."""

    def test_memory_item_is_frozen(self):
        item = MemoryItem(text="x")
        with pytest.raises(ValidationError):
            item.text = "y"

    def test_fact_type_case_insensitive(self):
        assert FactType("WORLD") is FactType.WORLD
        assert MemoryItem(text="x", fact_type="Opinion").fact_type is FactType.OPINION

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            MemoryItem(text="x", confidence=1.5)

    def test_signal_defaults(self):
        signal = FeedbackSignal(fact_id="f", signal_type="used", session_id="s")
        assert signal.signal_type is SignalType.USED
        assert signal.weight == 1.0

    def test_record_synced_flag(self):
        record = OfflineRecord(id="offline-1", payload=MemoryItem(text="x"))
        assert record.synced is False
        record.synced_at = datetime.now(timezone.utc)
        assert record.synced is True


class TestMisc:
    """Smaller models."""

    def test_disposition_range(self):
        assert Disposition().model_dump() == {"skepticism": 3, "literalism": 3, "empathy": 3}
        with pytest.raises(ValidationError):
            Disposition(empathy=0)

    def test_filtered_length(self):
        assert FilterResult(text="abcd", original_length=10).filtered_length == 4
