# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Web server for the voiceprompter relay.
Accepts WebSocket connections from hosts and remotes and exposes the
machine's LAN addresses so a host can tell phones where to connect.
"""

import contextlib
import errno
import logging
import socket

from aiohttp import web

from .config import DEFAULT_CONFIG
from .relay import SessionManager

logger = logging.getLogger(__name__)

DEFAULT_PORTS: list[int] = list(DEFAULT_CONFIG["relay"]["fallback_ports"])

# Bind failures that mean "try the next port"
_RETRYABLE_ERRNOS: frozenset[int] = frozenset([errno.EADDRINUSE, errno.EACCES])


def get_lan_ipv4_addrs() -> list[str]:
    """Non-loopback IPv4 addresses of this machine, sorted and de-duplicated."""
    ips: set[str] = set()
    with contextlib.suppress(OSError):
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            ips.add(str(info[4][0]))

    # The address used for outbound traffic; connect() on UDP sends nothing
    with contextlib.suppress(OSError):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            ips.add(s.getsockname()[0])

    return sorted(ip for ip in ips if not ip.startswith("127.") and ip != "0.0.0.0")


class RelayServer:
    """
    Serves the relay WebSocket endpoint and the LAN discovery API.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int | None = None,
        fallback_ports: list[int] | None = None,
        manager: SessionManager | None = None
    ) -> None:
        """
        Initialize the relay server.

        Args:
            host: Interface to bind
            port: Port to bind; when None the fallback ports are tried in order
            fallback_ports: Candidate ports when no explicit port is given
            manager: Session manager to route messages through
        """
        self.host: str = host
        self.requested_port: int | None = port
        self.fallback_ports: list[int] = list(fallback_ports or DEFAULT_PORTS)
        self.port: int | None = None
        self.manager: SessionManager = manager if manager is not None else SessionManager()
        self.app: web.Application = web.Application()
        self.websockets: set[web.WebSocketResponse] = set()
        self.runner: web.AppRunner | None = None

        self._setup_routes()

    def _setup_routes(self) -> None:
        """Set up HTTP routes."""
        self.app.router.add_get('/ws', self._handle_websocket)
        self.app.router.add_get('/api/lan', self._handle_lan)

    async def _handle_lan(self, request: web.Request) -> web.Response:
        """Report LAN addresses for building remote URLs."""
        return web.json_response({"ips": get_lan_ipv4_addrs()})

    async def _handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        """Feed one relay connection through the session manager."""
        ws = web.WebSocketResponse()
        await ws.prepare(request)

        self.websockets.add(ws)
        logger.info("Relay connection opened. Total: %d", len(self.websockets))

        try:
            async for msg in ws:
                if msg.type in (web.WSMsgType.TEXT, web.WSMsgType.BINARY):
                    await self.manager.handle_text(ws, msg.data)
                elif msg.type == web.WSMsgType.ERROR:
                    logger.warning("WebSocket error: %s", ws.exception())
        finally:
            self.websockets.discard(ws)
            await self.manager.disconnect(ws)
            logger.info("Relay connection closed. Total: %d", len(self.websockets))

        return ws

    def _ports_to_try(self) -> list[int]:
        if self.requested_port is not None:
            return [self.requested_port]
        return self.fallback_ports

    async def start(self) -> int:
        """
        Start the server on the first port that binds.

        Returns:
            The port in use

        Raises:
            OSError: If none of the candidate ports could be bound
        """
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()

        last_error: OSError | None = None
        for port in self._ports_to_try():
            site = web.TCPSite(self.runner, self.host, port)
            try:
                await site.start()
            except OSError as e:
                await site.stop()
                last_error = e
                if e.errno in _RETRYABLE_ERRNOS:
                    logger.info("Port %d unavailable (%s), trying next", port, e.strerror)
                    continue
                await self.runner.cleanup()
                self.runner = None
                raise
            self.port = port
            break

        if self.port is None:
            await self.runner.cleanup()
            self.runner = None
            raise last_error or OSError(
                f"No available ports: {', '.join(str(p) for p in self._ports_to_try())}")

        print(f"voiceprompter relay listening on http://localhost:{self.port}")
        lan = get_lan_ipv4_addrs()
        if lan:
            print("LAN: " + "  ".join(f"http://{ip}:{self.port}" for ip in lan))
        return self.port

    async def stop(self) -> None:
        """Stop the server."""
        for ws in list(self.websockets):
            with contextlib.suppress(Exception):
                await ws.close()
        self.websockets.clear()

        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        self.port = None
