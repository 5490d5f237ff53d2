# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Session bookkeeping for the websocket relay.

A host announces itself and is given a short session id; remotes join by
quoting that id. The relay then forwards commands from remotes to their
host, and state from the host to every remote, caching the last state so a
late joiner is brought up to date immediately.

This module knows nothing about aiohttp: anything with an async send_json()
and a closed property can be a connection, which keeps it easy to test.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from . import protocol

logger = logging.getLogger(__name__)


class RelayConnection(Protocol):
    """What the relay needs from a websocket."""

    @property
    def closed(self) -> bool: ...

    async def send_json(self, data: Any) -> None: ...


@dataclass(eq=False)
class Session:
    """One host and the remotes following it."""
    id: str
    host: RelayConnection
    remotes: set[RelayConnection] = field(default_factory=set)
    last_state: dict[str, Any] | None = None


@dataclass
class _Peer:
    """Per-connection role; role is None until a hello is accepted."""
    role: str | None = None
    session_id: str | None = None


class SessionManager:
    """
    Routes relay messages between hosts and remotes.

    All methods run on the event loop; there is no locking.
    """

    def __init__(self) -> None:
        self.sessions: dict[str, Session] = {}
        self._peers: dict[RelayConnection, _Peer] = {}

    def get(self, session_id: str) -> Session | None:
        """Look up a session by id (case-insensitive)."""
        return self.sessions.get(session_id.upper())

    async def send(self, conn: RelayConnection, message: dict[str, Any]) -> None:
        """Send to one connection; closed or failing peers are skipped."""
        if conn.closed:
            return
        try:
            await conn.send_json(message)
        except (ConnectionError, RuntimeError) as e:
            logger.warning("Relay send failed: %s", e)

    async def broadcast(self, conns: set[RelayConnection], message: dict[str, Any]) -> None:
        """Send the same message to every connection in a set."""
        for conn in list(conns):
            await self.send(conn, message)

    async def handle_text(self, conn: RelayConnection, raw: str | bytes) -> None:
        """Entry point for one inbound websocket payload."""
        try:
            message = protocol.parse_message(raw)
        except protocol.ProtocolError as e:
            await self.send(conn, protocol.err(str(e)))
            return
        await self.handle_message(conn, message)

    async def handle_message(self, conn: RelayConnection, message: dict[str, Any]) -> None:
        """Dispatch a decoded message."""
        peer = self._peers.setdefault(conn, _Peer())
        msg_type = message.get("t")

        if msg_type == "hello":
            role = message.get("role")
            if role in (protocol.ROLE_HOST, protocol.ROLE_REMOTE) and peer.role is not None:
                # A repeat hello leaves the current session before joining anew
                await self._leave(conn, peer)
            if role == protocol.ROLE_HOST:
                await self._on_host_hello(conn, peer)
            elif role == protocol.ROLE_REMOTE:
                await self._on_remote_hello(conn, peer, message)
            return

        if peer.session_id is None:
            return
        sess = self.sessions.get(peer.session_id)
        if sess is None:
            return

        if msg_type == "cmd" and peer.role == protocol.ROLE_REMOTE:
            await self.send(sess.host, message)
        elif msg_type == "state" and peer.role == protocol.ROLE_HOST:
            sess.last_state = message.get("state")
            await self.broadcast(sess.remotes, message)

    async def _on_host_hello(self, conn: RelayConnection, peer: _Peer) -> None:
        session_id = protocol.make_session_id()
        while session_id in self.sessions:
            session_id = protocol.make_session_id()

        peer.role = protocol.ROLE_HOST
        peer.session_id = session_id
        self.sessions[session_id] = Session(id=session_id, host=conn)
        logger.info("Host registered session %s", session_id)
        await self.send(conn, protocol.session(session_id))

    async def _on_remote_hello(
        self,
        conn: RelayConnection,
        peer: _Peer,
        message: dict[str, Any]
    ) -> None:
        session_id = str(message.get("id") or "").upper()
        sess = self.sessions.get(session_id)
        if sess is None or sess.host.closed:
            await self.send(conn, protocol.err(protocol.ERR_UNKNOWN_SESSION))
            return

        peer.role = protocol.ROLE_REMOTE
        peer.session_id = session_id
        sess.remotes.add(conn)
        logger.info("Remote joined session %s (%d remotes)", session_id, len(sess.remotes))

        await self.send(conn, protocol.ok())
        if sess.last_state is not None:
            await self.send(conn, protocol.state(sess.last_state))
        await self.broadcast(sess.remotes, protocol.remote_count(len(sess.remotes)))

    async def disconnect(self, conn: RelayConnection) -> None:
        """Forget a connection and tell whoever is affected."""
        peer = self._peers.pop(conn, None)
        if peer is not None:
            await self._leave(conn, peer)

    async def _leave(self, conn: RelayConnection, peer: _Peer) -> None:
        """Take a connection out of its session; the peer becomes unidentified."""
        session_id, role = peer.session_id, peer.role
        peer.session_id = None
        peer.role = None
        if session_id is None:
            return
        sess = self.sessions.get(session_id)
        if sess is None:
            return

        if role == protocol.ROLE_HOST:
            # Unregister first so no remote can join a dying session
            del self.sessions[sess.id]
            logger.info("Host left, closing session %s", sess.id)
            await self.broadcast(sess.remotes, protocol.err(protocol.ERR_HOST_DISCONNECTED))
        elif role == protocol.ROLE_REMOTE:
            sess.remotes.discard(conn)
            await self.broadcast(sess.remotes, protocol.remote_count(len(sess.remotes)))
