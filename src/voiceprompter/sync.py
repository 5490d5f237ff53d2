# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
State fan-out to local displays and remote controllers.

Position changes can arrive many times a second while someone is speaking.
Rather than pushing every one of them, each channel runs a restartable
debounce timer: a burst of changes collapses into a single snapshot of the
latest state once the channel has been quiet for its window. The local
channel (pop-out displays on the same machine) uses a shorter window than
the remote channel (phones on the network).

Snapshots are immutable values built fresh on every emission.
"""

import asyncio
import copy
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

LOCAL_DEBOUNCE_MS: int = 80
REMOTE_DEBOUNCE_MS: int = 120


@dataclass(frozen=True)
class StateSnapshot:
    """Everything a display or remote needs to mirror the host."""
    script: str
    position: int
    running: bool
    settings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def capture(
        cls,
        script: str,
        position: int,
        running: bool,
        settings: dict[str, Any]
    ) -> 'StateSnapshot':
        """Build a snapshot that shares nothing mutable with the caller."""
        return cls(
            script=script,
            position=position,
            running=running,
            settings=copy.deepcopy(settings)
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire form; a fresh copy every call."""
        return {
            "script": self.script,
            "position": self.position,
            "running": self.running,
            "settings": copy.deepcopy(self.settings),
        }


class Debouncer:
    """
    Restartable one-shot timer on the asyncio event loop.

    Every schedule() cancels the pending firing and arms a new one, so the
    callback runs once, delay_ms after the last call in a burst.
    """

    def __init__(
        self,
        delay_ms: int,
        callback: Callable[[], None],
        loop: asyncio.AbstractEventLoop | None = None
    ) -> None:
        self.delay_ms: int = delay_ms
        self.callback: Callable[[], None] = callback
        self._loop: asyncio.AbstractEventLoop | None = loop
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        """True while a firing is armed."""
        return self._handle is not None

    def schedule(self) -> None:
        """(Re)arm the timer."""
        self.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay_ms / 1000, self._fire)

    def cancel(self) -> None:
        """Drop the pending firing, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        try:
            self.callback()
        except Exception:
            logger.exception("Debounced callback failed")


Subscriber = Callable[[dict[str, Any]], None]


class EventBus:
    """
    In-process broadcast channel between the host and same-device views.

    Mirrors a browser BroadcastChannel: a message is delivered to every
    subscriber except the one that sent it, and each subscriber gets its own
    copy.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Add a subscriber; returns a function that removes it again."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, message: dict[str, Any], sender: Subscriber | None = None) -> None:
        """Deliver a message to every subscriber other than the sender."""
        for subscriber in list(self._subscribers):
            if sender is not None and subscriber == sender:
                continue
            try:
                subscriber(copy.deepcopy(message))
            except Exception:
                logger.exception("Event bus subscriber failed")


RemoteSink = Callable[[StateSnapshot], Awaitable[None] | None]


class SyncFanout:
    """
    Coalesces state changes into snapshots for local and remote consumers.

    Usage:
        fanout = SyncFanout(app.export_state, local_sink, remote_sink)

        # After every state change
        fanout.notify()

        # After a user command that must not wait for the debounce
        fanout.flush_now()
    """

    def __init__(
        self,
        state_provider: Callable[[], StateSnapshot],
        local_sink: Callable[[StateSnapshot], None],
        remote_sink: RemoteSink,
        local_delay_ms: int = LOCAL_DEBOUNCE_MS,
        remote_delay_ms: int = REMOTE_DEBOUNCE_MS
    ) -> None:
        """
        Initialize the fan-out.

        Args:
            state_provider: Returns a fresh snapshot of the current state
            local_sink: Receives snapshots for same-device consumers
            remote_sink: Receives snapshots for networked peers; may be async
            local_delay_ms: Debounce window for the local channel
            remote_delay_ms: Debounce window for the remote channel
        """
        self.state_provider = state_provider
        self.local_sink = local_sink
        self.remote_sink = remote_sink
        self.local_timer = Debouncer(local_delay_ms, self.emit_local)
        self.remote_timer = Debouncer(remote_delay_ms, self.emit_remote)
        self._tasks: set[asyncio.Task[None]] = set()

    def notify(self) -> None:
        """Record that state changed; both channels emit after their window."""
        self.local_timer.schedule()
        self.remote_timer.schedule()

    def flush_now(self) -> None:
        """Emit on both channels immediately and restart both windows."""
        self.emit_local()
        self.emit_remote()
        self.notify()

    def emit_local(self) -> None:
        """Send one snapshot of the current state to the local channel."""
        try:
            self.local_sink(self.state_provider())
        except Exception:
            logger.exception("Local state fan-out failed")

    def emit_remote(self) -> None:
        """Send one snapshot of the current state to the remote channel."""
        try:
            result = self.remote_sink(self.state_provider())
        except Exception:
            logger.exception("Remote state fan-out failed")
            return
        if asyncio.iscoroutine(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_remote_done)

    def _on_remote_done(self, task: 'asyncio.Task[None]') -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Remote state fan-out failed: %s", error)

    async def drain(self) -> None:
        """Wait for in-flight remote sends to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        """Stop both timers and any in-flight remote sends."""
        self.local_timer.cancel()
        self.remote_timer.cancel()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
