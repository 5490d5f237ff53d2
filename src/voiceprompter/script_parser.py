# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script parsing module that turns raw script text into the word index used
for tracking:
1. Normalized words - what the speaker is expected to say, in a form that
   can be compared directly against recognized speech
2. Original spans - where each indexed word sits in the raw text, so a
   display can highlight it
3. Sentence starts - word indices that begin a sentence, for sentence jumps

Whitespace and punctuation-only tokens are never indexed, so word indices are
contiguous.
"""

import bisect
import re
import unicodedata
from dataclasses import dataclass, field

# Curly apostrophes recognisers and word processors like to emit
APOSTROPHE_VARIANTS: dict[str, str] = {
    "‘": "'",
    "’": "'",
}

# A token ends a sentence if it ends in . ! or ? optionally followed by
# closing quotes or brackets, e.g. 'done.', 'really?"', 'stop!)'
SENTENCE_END_RE: re.Pattern[str] = re.compile(
    r"[.!?](?:[\"'”’»)\]}]+)?$")

_WHITESPACE_SPLIT_RE: re.Pattern[str] = re.compile(r"(\s+)")


@dataclass(frozen=True)
class ScriptWord:
    """A single indexed word of the script."""
    text: str  # Normalized form used for matching
    span: tuple[int, int]  # (start, end) offsets of the raw token

    def __repr__(self) -> str:
        return f"ScriptWord('{self.text}' @ {self.span[0]}:{self.span[1]})"


@dataclass(frozen=True)
class ScriptIndex:
    """Complete indexed representation of a script.

    Built once per script text and never mutated afterwards; loading a new
    script builds a new index.
    """
    raw_text: str
    words: tuple[ScriptWord, ...] = ()
    sentence_starts: tuple[int, ...] = (0,)
    # Normalized words only, for the matcher's hot loop
    normalized: tuple[str, ...] = field(default=(), repr=False)

    def __len__(self) -> int:
        return len(self.words)

    @property
    def total_words(self) -> int:
        """Return the number of indexed words in the script."""
        return len(self.words)

    def word_at(self, index: int) -> ScriptWord | None:
        """Get the word at a given index, or None when out of range."""
        if index < 0 or index >= len(self.words):
            return None
        return self.words[index]

    def original_text(self, index: int) -> str:
        """Return the raw token for a word index ('' when out of range)."""
        word = self.word_at(index)
        if word is None:
            return ""
        start, end = word.span
        return self.raw_text[start:end]

    def next_sentence(self, from_index: int) -> int:
        """Smallest sentence start strictly after from_index, else the word count."""
        i = bisect.bisect_right(self.sentence_starts, from_index)
        if i < len(self.sentence_starts):
            return self.sentence_starts[i]
        return len(self.words)

    def prev_sentence(self, from_index: int) -> int:
        """Largest sentence start strictly before from_index, else 0."""
        i = bisect.bisect_left(self.sentence_starts, from_index)
        if i == 0:
            return 0
        return self.sentence_starts[i - 1]


def normalize_word(word: str) -> str:
    """Normalize a word for matching.

    Decomposes (NFKD), lower-cases, straightens curly apostrophes and then
    drops everything that is not a letter, digit or apostrophe. Combining
    accents produced by the decomposition are dropped with the rest, so
    "Café" becomes "cafe".
    """
    text = unicodedata.normalize("NFKD", word).lower()
    for curly, plain in APOSTROPHE_VARIANTS.items():
        text = text.replace(curly, plain)
    return "".join(
        ch for ch in text
        if ch == "'" or unicodedata.category(ch)[0] in ("L", "N")
    )


def split_spoken_words(transcript: str) -> list[str]:
    """Split a recognized transcript into normalized words, dropping empties."""
    words: list[str] = []
    for piece in transcript.split():
        normalized = normalize_word(piece)
        if normalized:
            words.append(normalized)
    return words


def is_sentence_end(token: str) -> bool:
    """Check if a raw token ends a sentence."""
    return SENTENCE_END_RE.search(token) is not None


def parse_script(text: str) -> ScriptIndex:
    """Parse script text into a ScriptIndex.

    The text is split on whitespace with separators kept, so every token's
    character span in the original text is known. A sentence boundary is
    recorded at the index of the first word following a terminator; a
    terminator at the very end of the script records nothing.

    Args:
        text: The raw script text

    Returns:
        ScriptIndex with normalized words, spans and sentence starts
    """
    words: list[ScriptWord] = []
    sentence_starts: list[int] = [0]
    boundary_pending: bool = False

    offset: int = 0
    for part in _WHITESPACE_SPLIT_RE.split(text):
        start = offset
        offset += len(part)
        if not part or part.isspace():
            continue

        normalized = normalize_word(part)
        if normalized:
            if boundary_pending and sentence_starts[-1] != len(words):
                sentence_starts.append(len(words))
            boundary_pending = False
            words.append(ScriptWord(text=normalized, span=(start, offset)))

        # Punctuation-only tokens ("!" on its own) can still end a sentence
        if is_sentence_end(part) and words:
            boundary_pending = True

    return ScriptIndex(
        raw_text=text,
        words=tuple(words),
        sentence_starts=tuple(sentence_starts),
        normalized=tuple(w.text for w in words),
    )
