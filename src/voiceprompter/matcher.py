# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Alignment of recognized speech against the script.

Walks the spoken words one at a time and moves a cursor through the script:
exact or near-miss matches at the cursor advance it by one, and a bounded
lookahead lets the speaker skip a few script words. Short and very common
words ("weak" words) are kept on a tight leash because they appear
everywhere in a script and make poor anchors.

The matcher holds no state between calls; callers own the cursor.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from rapidfuzz.distance import Levenshtein

from .script_parser import ScriptIndex

# Closed-class English words that must never anchor a fuzzy or long-range match
COMMON_WORDS: frozenset[str] = frozenset([
    'a', 'an', 'the', 'and', 'or', 'but', 'to', 'of', 'in', 'on', 'for',
    'with', 'as', 'at', 'by', 'from', 'is', 'are', 'was', 'were', 'be',
    'been', 'being', 'it', 'this', 'that', 'these', 'those', 'i', 'you',
    'we', 'they', 'he', 'she', 'my', 'your', 'our', 'their', 'his', 'her',
])

# Weak words may only look this far ahead
WEAK_LOOKAHEAD: int = 2

# A lookahead hit at least this far from the cursor needs a second word to agree
CORROBORATION_DISTANCE: int = 4

# Minimum length for fuzzy matching inside the lookahead window
MIN_FUZZY_AHEAD_LENGTH: int = 4


@dataclass(frozen=True)
class AlignmentOptions:
    """Knobs for a single alignment pass."""
    lookahead: int = 12
    allow_lookahead: bool = True
    allow_fuzzy: bool = True
    allow_fuzzy_ahead: bool = True


# Finalized results: full search, the result gets committed
FINAL_OPTIONS: AlignmentOptions = AlignmentOptions(lookahead=14)

# Interim results: short search, no fuzzy lookahead, display only
INTERIM_OPTIONS: AlignmentOptions = AlignmentOptions(
    lookahead=6, allow_fuzzy_ahead=False)


def is_weak_word(word: str) -> bool:
    """Check if a normalized word is too short or too common to anchor on."""
    if not word or len(word) <= 3:
        return True
    return word in COMMON_WORDS


def max_edit_distance(word: str) -> int:
    """Edit distance tolerated for a word: 1 up to five characters, else 2."""
    return 1 if len(word) <= 5 else 2


def within_edit_distance(a: str, b: str, max_dist: int) -> bool:
    """Check whether two words are within max_dist Levenshtein edits."""
    if a == b:
        return True
    if not a or not b:
        return False
    if abs(len(a) - len(b)) > max_dist:
        return False
    return Levenshtein.distance(a, b, score_cutoff=max_dist) <= max_dist


def fuzzy_equal(spoken: str, script: str) -> bool:
    """Near-miss match: first characters agree and the edit distance is small.

    Weak spoken words never fuzzy-match.
    """
    if not spoken or not script or is_weak_word(spoken):
        return False
    if spoken[0] != script[0]:
        return False
    return within_edit_distance(spoken, script, max_edit_distance(spoken))


def _script_words(script: ScriptIndex | Sequence[str]) -> Sequence[str]:
    if isinstance(script, ScriptIndex):
        return script.normalized
    return script


def _find_ahead(
    words: Sequence[str],
    spoken: str,
    pos: int,
    max_ahead: int,
    fuzzy: bool
) -> int:
    """Search pos+1 .. pos+max_ahead for the nearest match, or -1."""
    end = min(len(words) - 1, pos + max_ahead)
    for j in range(pos + 1, end + 1):
        if words[j] == spoken:
            return j
    if not fuzzy:
        return -1
    max_dist = max_edit_distance(spoken)
    for j in range(pos + 1, end + 1):
        candidate = words[j]
        if candidate and candidate[0] == spoken[0] and within_edit_distance(
                spoken, candidate, max_dist):
            return j
    return -1


def _corroborated(words: Sequence[str], found: int, next_spoken: str) -> bool:
    """Check the next spoken word against the two script words after a jump."""
    for candidate in words[found + 1:found + 3]:
        if next_spoken == candidate or fuzzy_equal(next_spoken, candidate):
            return True
    return False


def align(
    script: ScriptIndex | Sequence[str],
    spoken_words: Sequence[str],
    start_pos: int,
    options: AlignmentOptions = AlignmentOptions()
) -> int:
    """
    Advance a script cursor over a sequence of normalized spoken words.

    Args:
        script: The script index (or its list of normalized words)
        spoken_words: Normalized spoken words, in order
        start_pos: Cursor to start from; clamped to [0, N]
        options: Lookahead and fuzzy matching switches

    Returns:
        The new cursor in [0, N], never less than the clamped start_pos
    """
    words = _script_words(script)
    total = len(words)
    pos = max(0, min(start_pos, total))
    if not spoken_words or not total:
        return pos

    for idx, spoken in enumerate(spoken_words):
        if not spoken:
            continue
        if pos >= total:
            break

        current = words[pos]
        weak = is_weak_word(spoken)

        if spoken == current:
            pos += 1
            continue

        if options.allow_fuzzy and fuzzy_equal(spoken, current):
            pos += 1
            continue

        if not options.allow_lookahead:
            continue

        max_ahead = min(WEAK_LOOKAHEAD, options.lookahead) if weak else options.lookahead
        found = _find_ahead(
            words, spoken, pos, max_ahead,
            fuzzy=(options.allow_fuzzy_ahead and not weak
                   and len(spoken) >= MIN_FUZZY_AHEAD_LENGTH))
        if found == -1:
            continue

        # Long jumps on a single coincidental word are how trackers run away
        if found - pos >= CORROBORATION_DISTANCE and idx + 1 < len(spoken_words):
            if not _corroborated(words, found, spoken_words[idx + 1]):
                continue

        pos = found + 1

    return pos
