# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Tests for relay message helpers."""

import re

import pytest

from voiceprompter import protocol


class TestParseMessage:
    """Tests for decoding inbound payloads."""

    def test_object_decoded(self) -> None:
        assert protocol.parse_message('{"t": "ok"}') == {"t": "ok"}
        assert protocol.parse_message(b'{"t": "ready"}') == {"t": "ready"}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", "42", b"\xff\xfe"])
    def test_rejected(self, raw) -> None:
        with pytest.raises(protocol.ProtocolError, match="Invalid JSON"):
            protocol.parse_message(raw)


class TestCommand:
    """Tests for the command set."""

    def test_parse(self) -> None:
        assert protocol.Command.parse("nextSentence") is protocol.Command.NEXT_SENTENCE
        assert protocol.Command.parse("selfDestruct") is None
        assert protocol.Command.parse(None) is None

    def test_all_commands(self) -> None:
        assert {c.value for c in protocol.Command} == {
            "startStop", "reset", "prevWord", "nextWord",
            "prevSentence", "nextSentence", "slower", "faster"}


class TestBuilders:
    """Tests for outbound message shapes."""

    def test_session_ids(self) -> None:
        ids = {protocol.make_session_id() for _ in range(20)}
        assert len(ids) > 1
        assert all(re.fullmatch(r"[0-9A-F]{8}", i) for i in ids)

    def test_hello(self) -> None:
        assert protocol.hello(protocol.ROLE_HOST) == {
            "t": "hello", "role": "host", "version": protocol.PROTOCOL_VERSION}
        assert protocol.hello(protocol.ROLE_REMOTE, "AB12CD34")["id"] == "AB12CD34"

    def test_cmd_accepts_enum_or_string(self) -> None:
        assert protocol.cmd(protocol.Command.FASTER) == {"t": "cmd", "cmd": "faster"}
        assert protocol.cmd("slower") == {"t": "cmd", "cmd": "slower"}

    def test_other_messages(self) -> None:
        assert protocol.state(None) == {"t": "state", "state": None}
        assert protocol.remote_count(3) == {"t": "remoteCount", "n": 3}
        assert protocol.err(protocol.ERR_HOST_DISCONNECTED) == {
            "t": "err", "message": "Host disconnected"}
        assert protocol.ready() == {"t": "ready"}
        assert protocol.session("X") == {"t": "session", "id": "X"}
