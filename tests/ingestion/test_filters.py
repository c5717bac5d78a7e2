# tests/ingestion/test_filters.py
"""
Tests for the transcript filter pipeline.

These tests verify:
- Tool result and file content blocks collapse to placeholders
- Noise patterns (system reminders, base64, JSON, diffs, stack traces)
- Code block summarization and line truncation
- Config switches turn individual stages off
"""

import pytest

from mindcore.config.models import RetainFilterConfig
from mindcore.ingestion.filters import (
    COMMAND_OUTPUT_PLACEHOLDER,
    FILE_CONTENTS_PLACEHOLDER,
    FILE_CONTENT_PLACEHOLDER,
    NOISE_PATTERNS,
    TOOL_RESULT_PLACEHOLDER,
    apply_filters,
    collapse_whitespace,
    summarize_long_code_blocks,
    truncate_long_lines,
)

# =============================================================================
# BLOCK PLACEHOLDERS
# =============================================================================


class TestToolResults:
    """Tool output blocks are replaced wholesale."""

    def test_large_tool_result_collapses_to_placeholder(self):
        raw = "<tool-result>" + "x" * 10000 + "</tool-result>"
        assert apply_filters(raw) == TOOL_RESULT_PLACEHOLDER

    def test_ten_thousand_line_tool_result_is_one_line(self):
        body = "\n".join(f"line {i}" for i in range(10000))
        filtered = apply_filters(f"User: run it\n<tool-result>{body}</tool-result>\nAssistant: done")
        assert filtered.count(TOOL_RESULT_PLACEHOLDER) == 1
        assert "line 9999" not in filtered
        assert len(filtered.splitlines()) == 3

    def test_each_tool_block_kind(self):
        raw = (
            "<read-file-result>a</read-file-result>\n"
            "<glob-result>b</glob-result>\n"
            "<grep-result>c</grep-result>\n"
            "<bash-stdout>d</bash-stdout>"
        )
        filtered = apply_filters(raw)
        assert "[File read filtered]" in filtered
        assert "[Glob result filtered]" in filtered
        assert "[Grep result filtered]" in filtered
        assert COMMAND_OUTPUT_PLACEHOLDER in filtered

    def test_multiple_blocks_are_filtered_separately(self):
        raw = "<tool-result>one</tool-result> keep me <tool-result>two</tool-result>"
        assert apply_filters(raw) == f"{TOOL_RESULT_PLACEHOLDER} keep me {TOOL_RESULT_PLACEHOLDER}"

    def test_disabled_tool_filter_keeps_content(self):
        config = RetainFilterConfig(filter_tool_results=False)
        raw = "<tool-result>payload</tool-result>"
        assert "payload" in apply_filters(raw, config)


class TestFileContents:
    """File content tags, with and without attributes."""

    def test_file_contents_with_attributes(self):
        raw = '<file-contents path="src/app.py">print("hi")</file-contents>'
        assert apply_filters(raw) == FILE_CONTENTS_PLACEHOLDER

    def test_file_content_singular(self):
        raw = "<file-content>secret</file-content>"
        assert apply_filters(raw) == FILE_CONTENT_PLACEHOLDER

    def test_disabled_file_filter_keeps_content(self):
        config = RetainFilterConfig(filter_file_contents=False)
        raw = "<file-content>kept</file-content>"
        assert "kept" in apply_filters(raw, config)


# =============================================================================
# NOISE
# =============================================================================


class TestNoisePatterns:
    """Content that is never worth storing."""

    def test_system_reminder_removed(self):
        raw = "User: hi<system-reminder>internal note</system-reminder>"
        assert apply_filters(raw) == "User: hi"

    def test_base64_data_uri(self):
        raw = "image: data:image/png;base64," + "A" * 200
        assert apply_filters(raw) == "image: [Base64 data filtered]"

    def test_large_json(self):
        raw = "payload " + "{" + '"k": 1, ' * 100 + "}"
        assert apply_filters(raw) == "payload [Large JSON filtered]"

    def test_small_json_kept(self):
        raw = 'config {"debug": true}'
        assert apply_filters(raw) == raw

    def test_diff_is_replaced_but_following_text_kept(self):
        raw = (
            "User: apply this\n"
            "diff --git a/app.py b/app.py\n"
            "index 123..456 100644\n"
            "--- a/app.py\n"
            "+++ b/app.py\n"
            "@@ -1,2 +1,2 @@\n"
            "-old line\n"
            "+new line\n"
            " context\n"
            "Assistant: applied the change"
        )
        filtered = apply_filters(raw)
        assert "[Diff filtered]" in filtered
        assert "old line" not in filtered
        assert "Assistant: applied the change" in filtered

    def test_python_traceback_keeps_final_line(self):
        raw = (
            "Traceback (most recent call last):\n"
            '  File "app.py", line 3, in <module>\n'
            "    main()\n"
            "ValueError: bad input"
        )
        assert apply_filters(raw) == "ValueError: bad input [stack trace filtered]"

    def test_traceback_pattern_drops_header_and_frames(self):
        pattern = next(p for p in NOISE_PATTERNS if p.name == "python-traceback-keep-last-line")
        raw = (
            "before\n"
            "Traceback (most recent call last):\n"
            "  File \"a.py\", line 1, in f\n"
            "\tg()\n"
            "KeyError: 'id'\n"
            "after"
        )
        assert pattern.apply(raw) == "before\nKeyError: 'id' [stack trace filtered]\nafter"

    def test_javascript_stack_trace(self):
        raw = "TypeError: x is undefined\n    at foo (a.js:1:1)\n    at bar (b.js:2:2)\n"
        filtered = apply_filters(raw)
        assert filtered.startswith("TypeError: x is undefined [stack trace filtered]")
        assert "a.js" not in filtered

    def test_large_html_block(self):
        raw = "<div>" + "text " * 200 + "</div>"
        assert apply_filters(raw) == "[Large XML/HTML filtered]"


# =============================================================================
# TEXT SHAPING
# =============================================================================


class TestTextShaping:
    """Code blocks, long lines and whitespace."""

    def test_long_code_block_summarized(self):
        code = "\n".join(f"x = {i}" for i in range(40))
        result = summarize_long_code_blocks(f"```python\n{code}\n```", max_lines=30)
        assert result == "[Code block: 41 lines of python]"

    def test_short_code_block_kept(self):
        block = "```\na = 1\n```"
        assert summarize_long_code_blocks(block, max_lines=30) == block

    def test_unlabelled_code_block(self):
        code = "\n".join("y" for _ in range(5))
        assert summarize_long_code_blocks(f"```\n{code}```", max_lines=2) == "[Code block: 5 lines of code]"

    def test_truncate_long_lines(self):
        result = truncate_long_lines("a" * 20 + "\nshort", max_length=10)
        assert result == "a" * 10 + "... [truncated]\nshort"

    def test_collapse_whitespace(self):
        assert collapse_whitespace("a\n\n\n\n\n\nb") == "a\n\n\nb"

    @pytest.mark.parametrize("max_length", [0, 5000])
    def test_line_truncation_off_or_above_length(self, max_length):
        config = RetainFilterConfig(max_line_length=max_length)
        raw = "b" * 1500
        assert apply_filters(raw, config) == raw

    def test_zero_disables_code_summaries(self):
        config = RetainFilterConfig(max_code_block_lines=0)
        code = "\n".join("z" for _ in range(100))
        raw = f"```\n{code}\n```"
        assert "[Code block:" not in apply_filters(raw, config)

    def test_plain_conversation_unchanged(self):
        raw = "User: How do I add a route?\n\nAssistant: Use the router module."
        assert apply_filters(raw) == raw
