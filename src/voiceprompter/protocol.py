# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Wire protocol shared by the relay, the host and remote controllers.

Every message is a JSON object whose "t" field selects the type:

    hello        peer -> relay     {"t": "hello", "role": "host"|"remote", "id"?: str}
    session      relay -> host     {"t": "session", "id": str}
    ok           relay -> remote   {"t": "ok"}
    err          relay -> peer     {"t": "err", "message": str}
    cmd          remote -> host    {"t": "cmd", "cmd": Command}
    state        host -> remotes   {"t": "state", "state": snapshot | null}
    remoteCount  relay -> remotes  {"t": "remoteCount", "n": int}

The same "state" and "cmd" shapes are used on the local event bus, plus
{"t": "ready"} from a pop-out display asking for the current state.
"""

import json
import secrets
from enum import Enum
from typing import Any

PROTOCOL_VERSION: int = 1

ROLE_HOST: str = "host"
ROLE_REMOTE: str = "remote"

ERR_INVALID_JSON: str = "Invalid JSON"
ERR_UNKNOWN_SESSION: str = "Unknown or inactive session"
ERR_HOST_DISCONNECTED: str = "Host disconnected"


class Command(str, Enum):
    """Commands a remote (or pop-out) can send to the host."""
    START_STOP = "startStop"
    RESET = "reset"
    PREV_WORD = "prevWord"
    NEXT_WORD = "nextWord"
    PREV_SENTENCE = "prevSentence"
    NEXT_SENTENCE = "nextSentence"
    SLOWER = "slower"
    FASTER = "faster"

    @classmethod
    def parse(cls, value: object) -> 'Command | None':
        """Map a wire value to a Command, or None if it isn't one."""
        try:
            return cls(value)
        except ValueError:
            return None


class ProtocolError(ValueError):
    """Raised when an inbound payload is not a JSON object."""


def parse_message(raw: str | bytes) -> dict[str, Any]:
    """
    Decode one inbound websocket payload.

    Raises:
        ProtocolError: If the payload isn't valid JSON or isn't an object
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ProtocolError(ERR_INVALID_JSON) from e
    if not isinstance(data, dict):
        raise ProtocolError(ERR_INVALID_JSON)
    return data


def make_session_id() -> str:
    """Short, human-friendly session id: 8 uppercase hex digits."""
    return secrets.token_bytes(4).hex().upper()


def hello(role: str, session_id: str | None = None) -> dict[str, Any]:
    """Build a hello message; remotes pass the session they want to join."""
    message: dict[str, Any] = {"t": "hello", "role": role, "version": PROTOCOL_VERSION}
    if session_id is not None:
        message["id"] = session_id
    return message


def session(session_id: str) -> dict[str, Any]:
    return {"t": "session", "id": session_id}


def ok() -> dict[str, Any]:
    return {"t": "ok"}


def err(message: str) -> dict[str, Any]:
    return {"t": "err", "message": message}


def cmd(command: Command | str) -> dict[str, Any]:
    value = command.value if isinstance(command, Command) else command
    return {"t": "cmd", "cmd": value}


def state(snapshot: dict[str, Any] | None) -> dict[str, Any]:
    return {"t": "state", "state": snapshot}


def remote_count(n: int) -> dict[str, Any]:
    return {"t": "remoteCount", "n": n}


def ready() -> dict[str, Any]:
    return {"t": "ready"}
