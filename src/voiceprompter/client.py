# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Relay clients for the host application and for remote controllers.

Both keep a WebSocket open to the relay and reconnect after a fixed delay
whenever it drops. A host gets a fresh session id on every connection, so
remotes have to rejoin after a host reconnect.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable
from typing import Any

import aiohttp

from . import protocol
from .sync import StateSnapshot

logger = logging.getLogger(__name__)

STATUS_CONNECTING: str = "Connecting..."
STATUS_CONNECTED: str = "Connected"
STATUS_DISCONNECTED: str = "Disconnected"
STATUS_ERROR: str = "Error"

StatusCallback = Callable[[str], None]


class RelayLink:
    """
    Shared connect/reconnect loop for relay clients.

    Subclasses provide the hello message and a dispatch table of handlers.
    """

    role: str = ""

    def __init__(
        self,
        url: str,
        reconnect_delay_ms: int,
        on_status: StatusCallback | None = None
    ) -> None:
        self.url: str = url
        self.reconnect_delay_ms: int = reconnect_delay_ms
        self.on_status: StatusCallback | None = on_status

        self.status: str = STATUS_DISCONNECTED
        self.last_error: str | None = None
        self.connections: int = 0
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._http: aiohttp.ClientSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping: bool = False

    @property
    def connected(self) -> bool:
        """True while the WebSocket to the relay is open."""
        return self._ws is not None and not self._ws.closed

    def _set_status(self, status: str) -> None:
        if status == self.status:
            return
        self.status = status
        logger.info("%s link: %s", self.role, status)
        if self.on_status is not None:
            try:
                self.on_status(status)
            except Exception:
                logger.exception("Status callback failed")

    def start(self) -> asyncio.Task[None]:
        """Start connecting in the background; a no-op if already running."""
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Close the connection and stop reconnecting."""
        self._stopping = True
        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        if self._http is not None:
            await self._http.close()
            self._http = None
        self._set_status(STATUS_DISCONNECTED)

    async def send(self, message: dict[str, Any]) -> bool:
        """Send one message if connected; returns whether it went out."""
        if not self.connected:
            return False
        assert self._ws is not None
        try:
            await self._ws.send_json(message)
            return True
        except (ConnectionError, RuntimeError, aiohttp.ClientError) as e:
            logger.warning("%s link send failed: %s", self.role, e)
            return False

    async def _run(self) -> None:
        if self._http is None:
            self._http = aiohttp.ClientSession()
        while not self._stopping:
            self._set_status(STATUS_CONNECTING)
            try:
                await self._connect_once()
            except (aiohttp.ClientError, OSError) as e:
                logger.warning("%s link to %s failed: %s", self.role, self.url, e)
            finally:
                self._ws = None
                self._on_disconnected()
            if self._stopping:
                break
            self._set_status(STATUS_DISCONNECTED)
            await asyncio.sleep(self.reconnect_delay_ms / 1000)

    async def _connect_once(self) -> None:
        assert self._http is not None
        async with self._http.ws_connect(self.url) as ws:
            self._ws = ws
            self.connections += 1
            await ws.send_json(self._hello())
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning("%s link error: %s", self.role, ws.exception())
                    break

    async def _handle_text(self, raw: str) -> None:
        try:
            message = protocol.parse_message(raw)
        except protocol.ProtocolError:
            logger.warning("%s link ignored malformed message", self.role)
            return

        handlers = self._handlers()
        handler = handlers.get(str(message.get("t")))
        if handler is None:
            logger.debug("%s link ignored message type %s", self.role, message.get("t"))
            return
        try:
            handler(message)
        except Exception:
            logger.exception("%s link handler failed", self.role)

    def _on_error_message(self, message: dict[str, Any]) -> None:
        self.last_error = str(message.get("message") or STATUS_ERROR)
        self._set_status(STATUS_ERROR)

    def _hello(self) -> dict[str, Any]:
        raise NotImplementedError

    def _handlers(self) -> dict[str, Callable[[dict[str, Any]], None]]:
        raise NotImplementedError

    def _on_disconnected(self) -> None:
        """Hook for clearing per-connection state."""


class HostLink(RelayLink):
    """
    The host's connection to the relay.

    Registers a session, hands remote commands to on_command and pushes
    state snapshots out to the remotes.
    """

    role = protocol.ROLE_HOST

    def __init__(
        self,
        url: str,
        on_command: Callable[[str], None] | None = None,
        on_status: StatusCallback | None = None,
        reconnect_delay_ms: int = 1000
    ) -> None:
        super().__init__(url, reconnect_delay_ms, on_status)
        self.on_command: Callable[[str], None] | None = on_command
        self.session_id: str | None = None
        self.remote_count: int = 0

    def _hello(self) -> dict[str, Any]:
        return protocol.hello(protocol.ROLE_HOST)

    def _handlers(self) -> dict[str, Callable[[dict[str, Any]], None]]:
        return {
            "session": self._on_session,
            "cmd": self._on_cmd,
            "remoteCount": self._on_remote_count,
            "err": self._on_error_message,
        }

    def _on_session(self, message: dict[str, Any]) -> None:
        self.session_id = str(message.get("id") or "") or None
        self.remote_count = 0
        logger.info("Relay session: %s", self.session_id)
        self._set_status(STATUS_CONNECTED)

    def _on_cmd(self, message: dict[str, Any]) -> None:
        if self.on_command is not None:
            self.on_command(str(message.get("cmd")))

    def _on_remote_count(self, message: dict[str, Any]) -> None:
        self.remote_count = int(message.get("n") or 0)
        self._set_status(
            f"Remote x{self.remote_count}" if self.remote_count else STATUS_CONNECTED)

    def _on_disconnected(self) -> None:
        self.session_id = None
        self.remote_count = 0

    async def send_state(self, snapshot: StateSnapshot) -> bool:
        """Push a snapshot to the relay; skipped until a session exists."""
        if self.session_id is None:
            return False
        return await self.send(protocol.state(snapshot.to_dict()))


class RemoteLink(RelayLink):
    """
    A remote controller's connection to the relay.

    Joins an existing session, sends commands and keeps the latest state the
    host published.
    """

    role = protocol.ROLE_REMOTE

    def __init__(
        self,
        url: str,
        session_id: str,
        on_state: Callable[[dict[str, Any] | None], None] | None = None,
        on_status: StatusCallback | None = None,
        reconnect_delay_ms: int = 1200
    ) -> None:
        super().__init__(url, reconnect_delay_ms, on_status)
        self.session_id: str = session_id.upper()
        self.on_state: Callable[[dict[str, Any] | None], None] | None = on_state
        self.joined: bool = False
        self.last_state: dict[str, Any] | None = None
        self.remote_count: int = 0

    def _hello(self) -> dict[str, Any]:
        return protocol.hello(protocol.ROLE_REMOTE, self.session_id)

    def _handlers(self) -> dict[str, Callable[[dict[str, Any]], None]]:
        return {
            "ok": self._on_ok,
            "state": self._on_state,
            "remoteCount": self._on_remote_count,
            "err": self._on_error_message,
        }

    def _on_ok(self, _message: dict[str, Any]) -> None:
        self.joined = True
        self._set_status(STATUS_CONNECTED)

    def _on_state(self, message: dict[str, Any]) -> None:
        self.last_state = message.get("state")
        if self.on_state is not None:
            self.on_state(self.last_state)

    def _on_remote_count(self, message: dict[str, Any]) -> None:
        self.remote_count = int(message.get("n") or 0)

    def _on_error_message(self, message: dict[str, Any]) -> None:
        self.joined = False
        super()._on_error_message(message)

    def _on_disconnected(self) -> None:
        self.joined = False

    async def send_command(self, command: protocol.Command | str) -> bool:
        """Send a command to the host; dropped unless joined."""
        if not self.joined:
            return False
        return await self.send(protocol.cmd(command))
