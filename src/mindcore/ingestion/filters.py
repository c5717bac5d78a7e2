# src/mindcore/ingestion/filters.py
"""
Transcript content filters.

Reduces a raw session transcript to text that is worth sending to the
memory backend. The pipeline is pure and deterministic; stages always run
in this order:

1. Tool-result and file-content blocks become one-line placeholders.
2. Noise (system reminders, base64 payloads, large JSON, diffs, stack
   traces, large XML/HTML) is removed or replaced.
3. Long fenced code blocks are summarized.
4. Long lines are truncated.
5. Runs of four or more newlines collapse to three.

Each replacement table is a sequence of :class:`FilterPattern` entries.
"""

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Union

from ..config.models import RetainFilterConfig

Replacement = Union[str, Callable[["re.Match[str]"], str]]


@dataclass(frozen=True)
class FilterPattern:
    """A compiled pattern and what to replace each match with."""

    pattern: "re.Pattern[str]"
    replacement: Replacement
    name: str = ""

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


def _block(tag: str, placeholder: str, attrs: bool = False) -> FilterPattern:
    opening = f"<{tag}[^>]*>" if attrs else f"<{tag}>"
    return FilterPattern(re.compile(rf"{opening}[\s\S]*?</{tag}>"), placeholder, name=tag)


TOOL_RESULT_PLACEHOLDER = "[Tool result filtered]"
FILE_READ_PLACEHOLDER = "[File read filtered]"
GLOB_RESULT_PLACEHOLDER = "[Glob result filtered]"
GREP_RESULT_PLACEHOLDER = "[Grep result filtered]"
COMMAND_OUTPUT_PLACEHOLDER = "[Command output filtered]"
FILE_CONTENTS_PLACEHOLDER = "[File contents filtered]"
FILE_CONTENT_PLACEHOLDER = "[File content filtered]"
CODE_BLOCK_PLACEHOLDER_PREFIX = "[Code block:"
TRUNCATION_SUFFIX = "... [truncated]"

TOOL_RESULT_PATTERNS: Sequence[FilterPattern] = (
    _block("tool-result", TOOL_RESULT_PLACEHOLDER),
    _block("read-file-result", FILE_READ_PLACEHOLDER),
    _block("glob-result", GLOB_RESULT_PLACEHOLDER),
    _block("grep-result", GREP_RESULT_PLACEHOLDER),
    _block("bash-stdout", COMMAND_OUTPUT_PLACEHOLDER),
)

# "file-contents" must run before "file-content", whose pattern would
# otherwise match the opening of a "<file-contents ...>" tag.
FILE_CONTENT_PATTERNS: Sequence[FilterPattern] = (
    _block("file-contents", FILE_CONTENTS_PLACEHOLDER, attrs=True),
    _block("file-content", FILE_CONTENT_PLACEHOLDER, attrs=True),
)

NOISE_PATTERNS: Sequence[FilterPattern] = (
    FilterPattern(re.compile(r"<system-reminder>[\s\S]*?</system-reminder>"), "", name="system-reminder"),
    FilterPattern(
        re.compile(r"data:[a-z]+/[a-z+.-]+;base64,[A-Za-z0-9+/=]{100,}"),
        "[Base64 data filtered]",
        name="base64",
    ),
    FilterPattern(re.compile(r"\{(?:[^{}]|\{[^{}]*\}){500,}\}"), "[Large JSON filtered]", name="json"),
    FilterPattern(
        re.compile(
            r"^(?:diff --git [^\n]*\n)?(?:index [^\n]*\n)?"
            r"--- [ab]/[^\n]*\n\+\+\+ [ab]/[^\n]*(?:\n[ +\-@\\][^\n]*)*",
            re.MULTILINE,
        ),
        "[Diff filtered]",
        name="diff",
    ),
    # Keeps the final line (exception type and message), not the first.
    FilterPattern(
        re.compile(r"Traceback \(most recent call last\):\n(?:[ \t]+[^\n]*\n)+([^\n]*)"),
        r"\1 [stack trace filtered]",
        name="python-traceback-keep-last-line",
    ),
    FilterPattern(
        re.compile(r"((?:Error|Exception|TypeError|ReferenceError|SyntaxError)[^\n]*)\n(?:\s+at [^\n]+\n?)+"),
        r"\1 [stack trace filtered]",
        name="stack-trace",
    ),
    FilterPattern(
        re.compile(r"<[a-z][a-z0-9-]*(?:\s[^>]*)?>[\s\S]{500,}?</[a-z][a-z0-9-]*>", re.IGNORECASE),
        "[Large XML/HTML filtered]",
        name="xml",
    ),
)

# Every placeholder the skip heuristic counts as "filtered content".
PLACEHOLDERS: Sequence[str] = (
    TOOL_RESULT_PLACEHOLDER,
    FILE_READ_PLACEHOLDER,
    FILE_CONTENTS_PLACEHOLDER,
    FILE_CONTENT_PLACEHOLDER,
    GLOB_RESULT_PLACEHOLDER,
    GREP_RESULT_PLACEHOLDER,
    COMMAND_OUTPUT_PLACEHOLDER,
    CODE_BLOCK_PLACEHOLDER_PREFIX,
)

_CODE_BLOCK_RE = re.compile(r"```(\w*)\n([\s\S]*?)```")
_EXCESS_NEWLINES_RE = re.compile(r"\n{4,}")


def _apply_all(text: str, patterns: Sequence[FilterPattern]) -> str:
    for fp in patterns:
        text = fp.apply(text)
    return text


def summarize_long_code_blocks(content: str, max_lines: int) -> str:
    """Replace fenced code blocks longer than ``max_lines`` with a one-line summary."""

    def _summarize(match: "re.Match[str]") -> str:
        lines = len(match.group(2).split("\n"))
        if lines > max_lines:
            return f"{CODE_BLOCK_PLACEHOLDER_PREFIX} {lines} lines of {match.group(1) or 'code'}]"
        return match.group(0)

    return _CODE_BLOCK_RE.sub(_summarize, content)


def truncate_long_lines(content: str, max_length: int) -> str:
    return "\n".join(
        line[:max_length] + TRUNCATION_SUFFIX if len(line) > max_length else line
        for line in content.split("\n")
    )


def collapse_whitespace(content: str) -> str:
    return _EXCESS_NEWLINES_RE.sub("\n\n\n", content)


def apply_filters(content: str, config: Optional[RetainFilterConfig] = None) -> str:
    """
    Run the full filter pipeline over a transcript.

    Args:
        content: Raw transcript text.
        config: Filter settings; defaults apply when omitted.

    Returns:
        The filtered transcript.
    """
    config = config or RetainFilterConfig()
    filtered = content

    if config.filter_tool_results:
        filtered = _apply_all(filtered, TOOL_RESULT_PATTERNS)
    if config.filter_file_contents:
        filtered = _apply_all(filtered, FILE_CONTENT_PATTERNS)

    filtered = _apply_all(filtered, NOISE_PATTERNS)

    if config.max_code_block_lines > 0:
        filtered = summarize_long_code_blocks(filtered, config.max_code_block_lines)
    if config.max_line_length > 0:
        filtered = truncate_long_lines(filtered, config.max_line_length)

    return collapse_whitespace(filtered)

