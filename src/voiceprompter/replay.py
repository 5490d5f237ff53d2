# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Debug tool for replaying a transcript through the tracker.

Takes a script file and a transcript file (one recognized utterance per
line), feeds the transcript to the tracker as the recognizer would, and
writes a report of how the cursor moved. Useful for reproducing a tracking
problem without a microphone.
"""

import argparse
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Literal, TextIO

from .tracker import ScriptTracker

EventType = Literal["FORWARD_JUMP", "advance", "no_change", "regress"]

# Moves longer than this are called out in the report
JUMP_REPORT_THRESHOLD: int = 5

END_MARKER: str = "<END>"


@dataclass
class TrackingEvent:
    """A single tracking event during transcript replay."""
    transcript_line: int
    transcript_text: str
    is_final: bool
    position_before: int
    position_after: int
    script_word: str
    event_type: EventType


def load_transcript(path: Path) -> list[str]:
    """Load transcript lines, skipping blanks and '===' metadata lines."""
    lines: list[str] = []
    with open(path, encoding='utf-8') as f:
        for line in f:
            stripped_line: str = line.strip()
            if stripped_line.startswith('===') or not stripped_line:
                continue
            lines.append(stripped_line)
    return lines


def load_script(path: Path) -> str:
    """Load script file content."""
    with open(path, encoding='utf-8') as f:
        return f.read()


def classify(position_before: int, position_after: int) -> EventType:
    """Name a cursor move."""
    if position_after > position_before + JUMP_REPORT_THRESHOLD:
        return "FORWARD_JUMP"
    if position_after > position_before:
        return "advance"
    if position_after == position_before:
        return "no_change"
    return "regress"


def _word_at(tracker: ScriptTracker, index: int) -> str:
    if index < tracker.total_words:
        return tracker.words[index]
    return END_MARKER


def _write_header(output: TextIO, tracker: ScriptTracker, lines: int, mode: str) -> None:
    output.write("=" * 80 + "\n")
    output.write(f"TRANSCRIPT REPLAY LOG ({mode})\n")
    output.write(f"Generated: {datetime.now().isoformat()}\n")
    output.write(f"Script words: {tracker.total_words}\n")
    output.write(f"Sentences: {len(tracker.index.sentence_starts)}\n")
    output.write(f"Transcript lines: {lines}\n")
    output.write("=" * 80 + "\n\n")

    output.write("SCRIPT WORDS:\n")
    output.write("-" * 40 + "\n")
    starts = set(tracker.index.sentence_starts)
    for i, word in enumerate(tracker.words):
        marker = "»" if i in starts else " "
        output.write(f" {marker}[{i:4d}] {word}\n")
    output.write("\n" + "=" * 80 + "\n\n")

    output.write("TRACKING LOG:\n")
    output.write("-" * 40 + "\n")


def _write_summary(output: TextIO, tracker: ScriptTracker, events: list[TrackingEvent]) -> None:
    output.write("\n" + "=" * 80 + "\n")
    output.write("SUMMARY:\n")
    output.write("-" * 40 + "\n")

    counts: dict[str, int] = {}
    for e in events:
        counts[e.event_type] = counts.get(e.event_type, 0) + 1

    output.write(f"Updates processed: {len(events)}\n")
    output.write(f"Final position: {tracker.current} / {tracker.total_words}\n")
    output.write(f"Advances: {counts.get('advance', 0)}\n")
    output.write(f"No change: {counts.get('no_change', 0)}\n")
    output.write(f"Regressions: {counts.get('regress', 0)}\n")
    output.write(f"Forward jumps: {counts.get('FORWARD_JUMP', 0)}\n")

    flagged = [e for e in events if e.event_type in ("FORWARD_JUMP", "regress")]
    if flagged:
        output.write("\nFlagged events:\n")
        for e in flagged:
            output.write(
                f"  Line {e.transcript_line} ({e.event_type}): "
                f"{e.position_before} -> {e.position_after} \"{e.script_word}\"\n"
            )


def _record(
    tracker: ScriptTracker,
    output: TextIO,
    line_num: int,
    text: str,
    is_final: bool,
    verbose: bool
) -> TrackingEvent:
    position_before: int = tracker.current
    tracker.update(text, is_final=is_final)
    position_after: int = tracker.current

    event = TrackingEvent(
        transcript_line=line_num,
        transcript_text=text,
        is_final=is_final,
        position_before=position_before,
        position_after=position_after,
        script_word=_word_at(tracker, position_after),
        event_type=classify(position_before, position_after)
    )

    if verbose or event.event_type in ("FORWARD_JUMP", "regress"):
        kind = "final" if is_final else "interim"
        output.write(
            f"  [{position_after:4d}] \"{event.script_word}\" "
            f"({event.event_type}, {kind}, {position_before} -> {position_after})\n")
    return event


def replay_transcript(
    transcript_lines: list[str],
    script_text: str,
    output: TextIO,
    verbose: bool = False,
    word_by_word: bool = False
) -> list[TrackingEvent]:
    """Replay transcript lines through a fresh tracker and log events.

    Each line is one utterance and is delivered as a final result. In
    word-by-word mode the growing prefix of each line is first delivered as
    interim results, the way a streaming recognizer would.

    Args:
        transcript_lines: Lines of transcript text
        script_text: The script content
        output: File handle to write log output
        verbose: If True, log every update. If False, only jumps and regressions.
        word_by_word: Simulate interim results before each final

    Returns:
        List of all tracking events
    """
    tracker: ScriptTracker = ScriptTracker(script_text)
    events: list[TrackingEvent] = []

    _write_header(output, tracker, len(transcript_lines),
                  "word-by-word" if word_by_word else "final results")

    for line_num, line in enumerate(transcript_lines, start=1):
        line_display: str = f"--- Line {line_num}: \"{line[:60]}"
        line_display += '...' if len(line) > 60 else ''
        line_display += "\" ---"
        output.write(f"\n{line_display}\n")

        if word_by_word:
            words = line.split()
            for i in range(1, len(words)):
                events.append(_record(
                    tracker, output, line_num, " ".join(words[:i]), False, verbose))

        events.append(_record(tracker, output, line_num, line, True, verbose))

    _write_summary(output, tracker, events)
    return events


def main() -> None:
    """CLI entry point for the replay tool."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Replay a transcript through the tracker to debug alignment"
    )

    parser.add_argument(
        "script",
        type=Path,
        help="Path to script file"
    )

    parser.add_argument(
        "transcript",
        type=Path,
        help="Path to transcript file"
    )

    parser.add_argument(
        "-o", "--output",
        type=Path,
        default=None,
        help="Output log file path (default: stdout)"
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log every update, not just jumps and regressions"
    )

    parser.add_argument(
        "-w", "--word-by-word",
        action="store_true",
        help="Deliver growing interim results before each final result"
    )

    args: argparse.Namespace = parser.parse_args()

    for label, path in (("Script", args.script), ("Transcript", args.transcript)):
        if not path.exists():
            print(f"Error: {label} file not found: {path}", file=sys.stderr)
            sys.exit(1)

    try:
        transcript_lines: list[str] = load_transcript(args.transcript)
        script_text: str = load_script(args.script)
    except OSError as e:
        print(f"Error loading files: {e}", file=sys.stderr)
        sys.exit(1)

    if not transcript_lines:
        print("Error: No transcript lines found", file=sys.stderr)
        sys.exit(1)

    if args.output:
        with open(args.output, 'w', encoding='utf-8') as f:
            replay_transcript(transcript_lines, script_text, f,
                              args.verbose, args.word_by_word)
        print(f"Replay log written to: {args.output}")
    else:
        replay_transcript(transcript_lines, script_text, sys.stdout,
                          args.verbose, args.word_by_word)


if __name__ == "__main__":
    main()
