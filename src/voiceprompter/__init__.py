"""
Voice Prompter - teleprompter that follows the speaker's voice.

Tracks the reader's position in a script from streaming speech recognition
results and keeps displays and phone remotes in sync through a small
WebSocket relay.
"""

__version__ = "0.1.0"

from .main import PrompterApp
from .matcher import align
from .relay import SessionManager
from .script_parser import ScriptIndex, parse_script
from .server import RelayServer
from .sync import StateSnapshot, SyncFanout
from .tracker import ScriptTracker

__all__ = [
    "align",
    "parse_script",
    "ScriptIndex",
    "ScriptTracker",
    "StateSnapshot",
    "SyncFanout",
    "SessionManager",
    "RelayServer",
    "PrompterApp",
]
