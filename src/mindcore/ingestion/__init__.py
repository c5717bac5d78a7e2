# src/mindcore/ingestion/__init__.py
"""Transcript reading, filtering and the skip heuristic."""

from .filters import FilterPattern, PLACEHOLDERS, apply_filters
from .skip import filter_transcript, should_skip_session
from .transcript import TranscriptInput, load_transcript, parse_transcript, read_transcript

__all__ = [
    "FilterPattern",
    "PLACEHOLDERS",
    "TranscriptInput",
    "apply_filters",
    "filter_transcript",
    "load_transcript",
    "parse_transcript",
    "read_transcript",
    "should_skip_session",
]
