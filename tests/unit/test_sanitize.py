"""Unit tests for agentmux.core.output.sanitize."""

from __future__ import annotations

import pytest

from agentmux.core.output.sanitize import looks_problematic, sanitize, sanitize_if_needed, strip_ansi


class TestLooksProblematic:
    @pytest.mark.parametrize(
        "chunk",
        [
            "\x1b[24;80R",
            "prefix\x1b[1;1Rsuffix",
            "\x1b[?1;2c",
            "\x1b[>0;276;0c",
            "\x1b[0c",
            ">0;276;0c",
        ],
    )
    def test_detects_terminal_responses(self, chunk: str) -> None:
        assert looks_problematic(chunk)

    @pytest.mark.parametrize(
        "chunk",
        [
            "plain text",
            "\x1b[32mgreen\x1b[0m",
            "\x1b[2J\x1b[H",
            "\x1b[?25l hide cursor",
            "abc 123",
        ],
    )
    def test_ignores_ordinary_output(self, chunk: str) -> None:
        assert not looks_problematic(chunk)


class TestSanitize:
    def test_removes_cursor_position_report_keeps_colours(self) -> None:
        chunk = "\x1b[32mok\x1b[0m\x1b[24;80R done"
        assert sanitize(chunk) == "\x1b[32mok\x1b[0m done"

    def test_removes_device_attribute_responses(self) -> None:
        assert sanitize("a\x1b[?1;2cb\x1b[>0;276;0cc") == "abc"

    def test_removes_orphaned_remnants(self) -> None:
        assert sanitize("before>0;276;0cafter") == "beforeafter"

    def test_removes_bare_trailing_escape(self) -> None:
        assert sanitize("text\x1b") == "text"

    def test_keeps_cursor_movement(self) -> None:
        chunk = "\x1b[2A\x1b[10C\x1b[K"
        assert sanitize(chunk) == chunk

    def test_if_needed_returns_same_object_for_clean_chunk(self) -> None:
        chunk = "\x1b[1mbold\x1b[0m"
        assert sanitize_if_needed(chunk) is chunk

    def test_if_needed_sanitizes_problematic_chunk(self) -> None:
        assert sanitize_if_needed("x\x1b[5;5Ry") == "xy"


class TestStripAnsi:
    def test_strips_sgr_and_carriage_return(self) -> None:
        assert strip_ansi("\x1b[1;32mHello\x1b[0m\r\n") == "Hello\n"

    def test_strips_osc_title(self) -> None:
        assert strip_ansi("\x1b]0;my title\x07text") == "text"

    def test_tabs_become_spaces(self) -> None:
        assert strip_ansi("a\tb") == "a b"

    def test_strips_orphaned_sgr_at_line_start(self) -> None:
        assert strip_ansi("32mHello") == "Hello"

    def test_keeps_box_glyphs(self) -> None:
        assert strip_ansi("\x1b[2m╭───╮\x1b[0m") == "╭───╮"
