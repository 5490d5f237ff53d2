# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Tests for the transcript replay tool."""

import io
import sys
import tempfile
from pathlib import Path
from unittest import mock

import pytest

from voiceprompter.replay import (
    TrackingEvent,
    classify,
    load_script,
    load_transcript,
    main,
    replay_transcript,
)

SCRIPT: str = (
    "Welcome everyone to the show. Today we talk about teleprompters. "
    "They help speakers stay on track!"
)


class TestLoadTranscript:
    """Tests for loading transcript files."""

    def test_load_transcript_filters_metadata(self) -> None:
        """Metadata lines starting with === and blank lines are dropped."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False) as f:
            f.write("=== Transcript started at 2025-12-21T00:00:00 ===\n")
            f.write("\n")
            f.write("hello world\n")
            f.write("   this is a test  \n")
            f.write("\n")
            f.write("=== Transcript ended at 2025-12-21T00:05:00 ===\n")
            path: Path = Path(f.name)

        assert load_transcript(path) == ["hello world", "this is a test"]

    def test_load_script_returns_content(self) -> None:
        with tempfile.NamedTemporaryFile(mode='w', suffix='.txt', delete=False) as f:
            f.write("First line.\nSecond line.\n")
            path: Path = Path(f.name)

        assert load_script(path) == "First line.\nSecond line.\n"


class TestClassify:
    """Tests for naming cursor moves."""

    def test_event_types(self) -> None:
        assert classify(0, 3) == "advance"
        assert classify(0, 5) == "advance"
        assert classify(0, 6) == "FORWARD_JUMP"
        assert classify(4, 4) == "no_change"
        assert classify(4, 2) == "regress"


class TestReplayTranscript:
    """Tests for replaying final results."""

    def test_positions_follow_transcript(self) -> None:
        output = io.StringIO()
        events: list[TrackingEvent] = replay_transcript(
            ["welcome everyone to the show", "today we talk", "completely unrelated"],
            SCRIPT, output)

        assert [(e.position_before, e.position_after) for e in events] == [
            (0, 5), (5, 8), (8, 8)]
        assert [e.event_type for e in events] == ["advance", "advance", "no_change"]
        assert events[0].script_word == "today"
        assert all(e.is_final for e in events)

    def test_output_sections(self) -> None:
        output = io.StringIO()
        replay_transcript(["welcome everyone"], SCRIPT, output)

        text = output.getvalue()
        assert "TRANSCRIPT REPLAY LOG (final results)" in text
        assert "SCRIPT WORDS" in text
        assert "TRACKING LOG" in text
        assert "SUMMARY" in text
        assert "Script words: 16" in text
        assert "Final position: 2 / 16" in text

    def test_jumps_are_flagged(self) -> None:
        output = io.StringIO()
        events = replay_transcript(
            ["welcome everyone to the show", "today we talk about teleprompters they help"],
            SCRIPT, output)

        assert events[1].event_type == "FORWARD_JUMP"
        text = output.getvalue()
        assert "Forward jumps: 1" in text
        assert "Flagged events:" in text
        assert "Line 2 (FORWARD_JUMP): 5 -> 12" in text

    def test_quiet_output_skips_plain_advances(self) -> None:
        quiet = io.StringIO()
        replay_transcript(["welcome everyone"], SCRIPT, quiet)
        verbose = io.StringIO()
        replay_transcript(["welcome everyone"], SCRIPT, verbose, verbose=True)

        assert "(advance, final, 0 -> 2)" not in quiet.getvalue()
        assert "(advance, final, 0 -> 2)" in verbose.getvalue()

    def test_end_of_script_marker(self) -> None:
        output = io.StringIO()
        events = replay_transcript(["they help speakers stay on track"], "They help speakers stay on track!", output)
        assert events[0].position_after == 6
        assert events[0].script_word == "<END>"


class TestWordByWord:
    """Tests for interim-then-final replay."""

    def test_interims_precede_final(self) -> None:
        output = io.StringIO()
        events = replay_transcript(
            ["welcome everyone to"], SCRIPT, output, word_by_word=True)

        assert [e.transcript_text for e in events] == [
            "welcome", "welcome everyone", "welcome everyone to"]
        assert [e.is_final for e in events] == [False, False, True]
        assert [e.position_after for e in events] == [1, 2, 3]
        assert "word-by-word" in output.getvalue()


class TestMain:
    """Tests for the command-line entry point."""

    def test_writes_report_file(self, capsys) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            script_path = Path(tmpdir) / "script.txt"
            transcript_path = Path(tmpdir) / "transcript.txt"
            report_path = Path(tmpdir) / "report.log"
            script_path.write_text(SCRIPT, encoding="utf-8")
            transcript_path.write_text("welcome everyone to the show\n", encoding="utf-8")

            argv = ["voiceprompter-replay", str(script_path), str(transcript_path),
                    "-o", str(report_path)]
            with mock.patch.object(sys, "argv", argv):
                main()

            assert "Final position: 5 / 16" in report_path.read_text(encoding="utf-8")
        assert "Replay log written to" in capsys.readouterr().out

    def test_missing_file_exits(self, capsys) -> None:
        argv = ["voiceprompter-replay", "/nonexistent/script.txt", "/nonexistent/t.txt"]
        with mock.patch.object(sys, "argv", argv), pytest.raises(SystemExit) as exc:
            main()
        assert exc.value.code == 1
        assert "Script file not found" in capsys.readouterr().err
