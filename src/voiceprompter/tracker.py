# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script tracking module that owns the cursor into the script.

Keeps two positions:
- committed: confirmed by a final recognition result or an explicit command,
  and the base for the next alignment
- current: what is on screen; may run ahead of committed while an interim
  result is being spoken

Interim results only ever push the display forward and are thrown away when
the final result arrives, so a misheard partial can't corrupt the base that
the next final result is aligned from.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from . import debug_log
from .matcher import FINAL_OPTIONS, INTERIM_OPTIONS, AlignmentOptions, align
from .script_parser import ScriptIndex, parse_script, split_spoken_words

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScriptPosition:
    """A cursor change, as seen by listeners."""
    current: int  # Word index on display (N means "past the end")
    committed: int  # Base for the next alignment
    delta: int = 0  # current minus the previous current
    is_speculative: bool = False  # True when current is ahead of committed


PositionListener = Callable[[ScriptPosition], None]


class ScriptTracker:
    """
    Tracks position in a script based on spoken words and explicit commands.

    All indices are word indices into the ScriptIndex; 0 is the first word
    and N (the word count) means the whole script has been read.
    """

    index: ScriptIndex
    final_options: AlignmentOptions
    interim_options: AlignmentOptions

    current: int
    committed: int
    last_interim_transcription: str

    def __init__(
        self,
        script_text: str = "",
        final_options: AlignmentOptions = FINAL_OPTIONS,
        interim_options: AlignmentOptions = INTERIM_OPTIONS
    ) -> None:
        """
        Initialize the script tracker.

        Args:
            script_text: The full script text
            final_options: Alignment options for finalized results
            interim_options: Alignment options for interim (partial) results
        """
        self.final_options = final_options
        self.interim_options = interim_options
        self._listeners: list[PositionListener] = []

        self.index = parse_script(script_text)
        self.current = 0
        self.committed = 0
        self.last_interim_transcription = ""

    @property
    def words(self) -> tuple[str, ...]:
        """Normalized script words."""
        return self.index.normalized

    @property
    def total_words(self) -> int:
        """Number of indexed words (N)."""
        return len(self.index)

    @property
    def progress(self) -> float:
        """Get overall progress through the script (0.0 to 1.0)."""
        if not self.total_words:
            return 0.0
        return self.current / self.total_words

    @property
    def current_position(self) -> ScriptPosition:
        """Get the current position without updating."""
        return ScriptPosition(
            current=self.current,
            committed=self.committed,
            is_speculative=self.current != self.committed
        )

    def add_listener(self, listener: PositionListener) -> None:
        """Register a callback for every position change."""
        self._listeners.append(listener)

    def remove_listener(self, listener: PositionListener) -> None:
        """Unregister a position callback (no-op if not registered)."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, position: ScriptPosition) -> None:
        for listener in list(self._listeners):
            try:
                listener(position)
            except Exception:
                logger.exception("Position listener failed")

    def _clamp(self, value: int) -> int:
        return max(0, min(value, self.total_words))

    def load_script(self, script_text: str) -> None:
        """Replace the script; the index is rebuilt and the cursor reset."""
        self.index = parse_script(script_text)
        logger.info("Script loaded: %d words, %d sentences",
                    self.total_words, len(self.index.sentence_starts))
        self.reset()

    def set_position(self, next_pos: int, commit: bool = True) -> ScriptPosition:
        """
        Move the cursor.

        Args:
            next_pos: Requested word index, clamped to [0, N]
            commit: Also move the committed base (False for interim previews)

        Returns:
            The resulting position
        """
        clamped = self._clamp(next_pos)
        previous = self.current
        self.current = clamped
        if commit:
            self.committed = clamped
        position = ScriptPosition(
            current=self.current,
            committed=self.committed,
            delta=clamped - previous,
            is_speculative=self.current != self.committed
        )
        self._notify(position)
        return position

    def reset(self) -> None:
        """Reset tracking to the beginning of the script."""
        self.last_interim_transcription = ""
        self.set_position(0, commit=True)

    def commit_current(self) -> None:
        """Make the displayed position the alignment base (e.g. when stopping)."""
        if self.committed != self.current:
            self.committed = self.current
            self.last_interim_transcription = ""

    def step_word(self, delta: int) -> ScriptPosition:
        """Move forward or backward by whole words (explicit command)."""
        return self.set_position(self.current + delta)

    def next_sentence(self) -> ScriptPosition:
        """Jump to the start of the next sentence."""
        return self.set_position(self.index.next_sentence(self.current))

    def prev_sentence(self) -> ScriptPosition:
        """Jump to the start of the previous sentence."""
        return self.set_position(self.index.prev_sentence(self.current))

    def update(self, transcription: str, is_final: bool = True) -> ScriptPosition:
        """
        Update position based on a recognition result.

        Args:
            transcription: The transcribed text
            is_final: False for interim (in-progress) results

        Returns:
            The position after the update
        """
        if is_final:
            return self.advance_from_final(transcription)
        return self.advance_from_interim(transcription)

    def advance_from_final(self, transcription: str) -> ScriptPosition:
        """
        Align a finalized result from the committed base and commit it.

        A commit replaces any speculative lead from interim results, so the
        display may step backwards if the final result disagrees with the
        partials.
        """
        self.last_interim_transcription = ""
        spoken = split_spoken_words(transcription)
        if not spoken:
            return self.current_position

        previous = self.committed
        result = align(self.index, spoken, self.committed, self.final_options)
        if result == previous:
            logger.debug("Final: no advance for '%s'", transcription)
            return self.current_position

        logger.debug("Final: committed %d -> %d", previous, result)
        debug_log.log_position_update(
            previous, result, list(self.words[min(previous, result):max(previous, result)]),
            "final")
        return self.set_position(result, commit=True)

    def advance_from_interim(self, transcription: str) -> ScriptPosition:
        """
        Align an interim result from the committed base, for display only.

        The speculative position only ever moves forward and is never
        committed.
        """
        transcription = transcription.strip()
        if not transcription or transcription == self.last_interim_transcription:
            return self.current_position
        self.last_interim_transcription = transcription

        spoken = split_spoken_words(transcription)
        result = align(self.index, spoken, self.committed, self.interim_options)
        if result <= self.current:
            return self.current_position

        logger.debug("Interim: previewing %d -> %d", self.current, result)
        return self.set_position(result, commit=False)
