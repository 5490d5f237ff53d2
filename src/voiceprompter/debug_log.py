"""
Debug logging for tracking alignment decisions.

Creates one log file:
- alignment.log: transcripts received and the position changes they caused

Logging is disabled by default. Call enable() to turn it on.
"""

from datetime import datetime
from pathlib import Path
from typing import List

# Log files location (in the current working directory)
LOG_DIR: Path = Path.cwd() / "logs"
ALIGNMENT_LOG: Path = LOG_DIR / "alignment.log"

# Global flag to control whether debug logging is enabled
_ENABLED: bool = False  # pylint: disable=invalid-name


def enable() -> None:
    """Enable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = True


def disable() -> None:
    """Disable debug logging."""
    global _ENABLED  # pylint: disable=global-statement
    _ENABLED = False


def is_enabled() -> bool:
    """Check if debug logging is enabled."""
    return _ENABLED


def _ensure_log_dir() -> None:
    """Create log directory if it doesn't exist."""
    LOG_DIR.mkdir(exist_ok=True)


def _timestamp() -> str:
    """Get current timestamp."""
    return datetime.now().strftime("%H:%M:%S.%f")[:-3]


def clear_logs() -> None:
    """Clear the log file for a fresh session."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    with open(ALIGNMENT_LOG, 'w', encoding='utf-8') as f:
        f.write(
            f"=== New session started at {datetime.now().isoformat()} ===\n\n")


def log_transcript(transcript: str, is_final: bool) -> None:
    """Log a recognition result as it arrives."""
    if not _ENABLED:
        return
    _ensure_log_dir()
    kind = "final" if is_final else "interim"
    with open(ALIGNMENT_LOG, 'a', encoding='utf-8') as f:
        f.write(f"[{_timestamp()}] {kind:8} \"{transcript[-60:]}\"\n")


def log_position_update(
    old_pos: int,
    new_pos: int,
    words_in_range: List[str],
    reason: str
) -> None:
    """
    Log a committed position change.

    Args:
        old_pos: Previous position
        new_pos: New position
        words_in_range: The words between old and new positions
        reason: Why the position changed
    """
    if not _ENABLED:
        return
    _ensure_log_dir()
    with open(ALIGNMENT_LOG, 'a', encoding='utf-8') as f:
        f.write(
            f"[{_timestamp()}] POSITION CHANGE: {old_pos} -> {new_pos} ({reason})\n")
        f.write(f"                 words: {words_in_range}\n")
