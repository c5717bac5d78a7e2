# src/mindcore/ingestion/transcript.py
"""
Reading session transcripts handed over by the host editor.

The host stores transcripts as JSONL: one JSON object per line, where
user and assistant turns carry ``{"type": ..., "message": {"role": ...,
"content": ...}}``. Content is either a string or a list of blocks, of
which only ``text`` blocks are kept. Hooks may also receive a single JSON
object naming the transcript file (``{"session_id": ..., "transcript_path": ...}``).
Anything that does not start with ``{`` is treated as plain text.
"""

import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Optional, TextIO, Union

logger = logging.getLogger(__name__)

# Messages containing any of these carry no conversational content.
SKIP_MARKERS = (
    "<system-reminder>",
    "session_id",
    "transcript_path",
    "<command-name>/exit</command-name>",
    "<command-name>/clear</command-name>",
    "<command-name>/help</command-name>",
    "<command-name>/compact</command-name>",
    "<command-name>/config</command-name>",
    "<local-command-stdout>",
)


@dataclass
class TranscriptInput:
    """Conversation text plus the host session id, when one was found."""

    text: str
    session_id: Optional[str] = None

    @property
    def empty(self) -> bool:
        return not self.text.strip()


def _json_lines(raw: str) -> Iterator[Any]:
    for line in raw.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            yield json.loads(line)
        except json.JSONDecodeError:
            continue


def _message_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [
            block.get("text")
            for block in content
            if isinstance(block, dict) and block.get("type") == "text" and block.get("text")
        ]
        return "\n".join(parts)
    return ""


def parse_transcript(raw: str) -> str:
    """Convert JSONL transcript content into ``User: ...`` / ``Assistant: ...`` paragraphs."""
    messages = []
    for entry in _json_lines(raw):
        if not isinstance(entry, dict):
            continue
        message = entry.get("message")
        if entry.get("type") not in ("user", "assistant") or not isinstance(message, dict):
            continue
        text = _message_text(message.get("content")).strip()
        if not text or any(marker in text for marker in SKIP_MARKERS):
            continue
        prefix = "User" if message.get("role") == "user" else "Assistant"
        messages.append(f"{prefix}: {text}")
    return "\n\n".join(messages)


def extract_session_id(raw: str) -> Optional[str]:
    for entry in _json_lines(raw):
        if isinstance(entry, dict):
            session_id = entry.get("session_id") or entry.get("sessionId")
            if isinstance(session_id, str) and session_id:
                return session_id
    return None


def _hook_payload(raw: str) -> Optional[dict]:
    """Return the hook payload if ``raw`` is a single JSON object with a ``transcript_path``."""
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict) and isinstance(data.get("transcript_path"), str):
        return data
    return None


def load_transcript(raw: str, follow_hook_payload: bool = True) -> TranscriptInput:
    """Interpret raw hook input (JSONL, hook payload or plain text)."""
    if not raw.strip():
        return TranscriptInput(text="")

    if not raw.lstrip().startswith("{"):
        return TranscriptInput(text=raw)

    payload = _hook_payload(raw.strip()) if follow_hook_payload else None
    if payload is not None:
        inner = _read_file(payload["transcript_path"], follow_hook_payload=False)
        return TranscriptInput(text=inner.text, session_id=payload.get("session_id") or inner.session_id)

    return TranscriptInput(text=parse_transcript(raw), session_id=extract_session_id(raw))


def read_transcript(
    path: Union[str, Path, None] = None,
    stdin: Optional[TextIO] = None,
) -> TranscriptInput:
    """
    Read a transcript from ``path`` or, when no path is given, from ``stdin``
    (``sys.stdin`` by default).

    An unreadable file or an interactive stdin yields an empty transcript
    rather than an error.
    """
    if path:
        return _read_file(path)
    raw = ""
    stream = stdin if stdin is not None else sys.stdin
    if stream is not None and not stream.isatty():
        raw = stream.read()
    return load_transcript(raw)


def _read_file(path: Union[str, Path], follow_hook_payload: bool = True) -> TranscriptInput:
    try:
        raw = Path(path).expanduser().read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not read transcript file {path}: {e}")
        return TranscriptInput(text="")
    return load_transcript(raw, follow_hook_payload=follow_hook_payload)
