# src/mindcore/ingestion/skip.py
"""
Skip heuristic for filtered transcripts.

A transcript is not worth retaining when any one of these holds:

- it is shorter than ``min_session_length`` characters;
- filter placeholders dominate it (``skip_tool_only_sessions``): each
  placeholder is costed at a flat 50 characters, and the session is
  skipped when that estimate exceeds 80% of the text length;
- it matches one of ``custom_skip_patterns``.
"""

import logging
import re
from typing import Optional

from ..config.models import RetainFilterConfig
from ..models import FilterResult, SkipDecision
from .filters import PLACEHOLDERS, apply_filters

logger = logging.getLogger(__name__)

PLACEHOLDER_COST_CHARS = 50
TOOL_ONLY_RATIO = 0.8


def count_placeholders(text: str) -> int:
    return sum(text.count(p) for p in PLACEHOLDERS)


def should_skip_session(text: str, config: Optional[RetainFilterConfig] = None) -> SkipDecision:
    """Decide whether a filtered transcript should be dropped."""
    config = config or RetainFilterConfig()
    length = len(text)

    if length < config.min_session_length:
        return SkipDecision(skip=True, reason=f"Session too short ({length} < {config.min_session_length} chars)")

    if config.skip_tool_only_sessions and length > 0:
        estimated = count_placeholders(text) * PLACEHOLDER_COST_CHARS
        if estimated / length > TOOL_ONLY_RATIO:
            return SkipDecision(skip=True, reason="Session is mostly tool outputs")

    for pattern in config.custom_skip_patterns:
        try:
            matched = re.search(pattern, text) is not None
        except re.error as e:
            logger.warning(f"Ignoring invalid custom skip pattern {pattern!r}: {e}")
            continue
        if matched:
            return SkipDecision(skip=True, reason=f"Matched custom skip pattern: {pattern}")

    return SkipDecision(skip=False)


def filter_transcript(raw: str, config: Optional[RetainFilterConfig] = None) -> FilterResult:
    """Filter a raw transcript and attach the skip decision."""
    config = config or RetainFilterConfig()
    text = apply_filters(raw, config)
    decision = should_skip_session(text, config)
    if decision.skip:
        logger.info(f"Skipping session: {decision.reason}")
    else:
        logger.debug(f"Filtered transcript {len(raw)} -> {len(text)} chars")
    return FilterResult(text=text, skip=decision.skip, reason=decision.reason, original_length=len(raw))
