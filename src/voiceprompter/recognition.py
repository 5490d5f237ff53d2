# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Streaming speech hypotheses and the supervisor that keeps them flowing.

A hypothesis source yields interim and final transcription results. Real
recognizers go idle on their own after a stretch of silence, so the
supervisor restarts the source after a short backoff for as long as the
run is active. Permission errors are fatal and end the run; anything else
is reported and followed by a restart.
"""

import asyncio
import contextlib
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

logger = logging.getLogger(__name__)

DEFAULT_RESTART_BACKOFF_MS: int = 250

# Prefix marking an interim line in a text hypothesis stream
INTERIM_PREFIX: str = "~ "


@dataclass(frozen=True)
class TranscriptionResult:
    """Represents one recognition hypothesis."""

    text: str
    is_final: bool = True

    def __repr__(self) -> str:
        status: str = "final" if self.is_final else "interim"
        return f"TranscriptionResult({status}: '{self.text}')"


class RecognitionError(Exception):
    """A recognizer failure, identified by a short code."""

    FATAL_CODES: frozenset[str] = frozenset(["not-allowed", "service-not-allowed"])

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code: str = code

    @property
    def is_fatal(self) -> bool:
        """Permission failures can't be fixed by restarting."""
        return self.code in self.FATAL_CODES


class HypothesisSource(ABC):
    """Base interface for anything that produces transcription results."""

    @abstractmethod
    async def start(self) -> None:
        """Begin producing results."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop producing results and release resources."""

    @abstractmethod
    def results(self) -> AsyncIterator[TranscriptionResult]:
        """
        Iterate results as they arrive.

        Iteration ending means the source went idle. Failures are raised as
        RecognitionError.
        """

    @property
    def exhausted(self) -> bool:
        """True when the source can never produce more results."""
        return False


class TextStreamSource(HypothesisSource):
    """
    Reads hypotheses from a line-based text stream (stdin, a file).

    Every non-blank line is a final result, except lines starting with
    "~ " which are interim results.

    Lines are read on a daemon thread and handed to the event loop through a
    queue, so a reader blocked on an idle terminal never holds up shutdown.
    Lines that arrive while the source is stopped are kept for the next
    start().
    """

    def __init__(self, stream: TextIO) -> None:
        self.stream: TextIO = stream
        self._eof: bool = False
        self._active: bool = False
        self._lines: asyncio.Queue[str] | None = None
        self._reader: threading.Thread | None = None

    @property
    def exhausted(self) -> bool:
        return self._eof

    async def start(self) -> None:
        self._active = True

    async def stop(self) -> None:
        self._active = False

    @staticmethod
    def parse_line(line: str) -> TranscriptionResult | None:
        """Turn one line into a result, or None for a blank line."""
        line = line.rstrip("\r\n")
        if line.startswith(INTERIM_PREFIX):
            text = line[len(INTERIM_PREFIX):].strip()
            return TranscriptionResult(text, is_final=False) if text else None
        text = line.strip()
        return TranscriptionResult(text, is_final=True) if text else None

    def _start_reader(self, loop: asyncio.AbstractEventLoop) -> asyncio.Queue[str]:
        lines: asyncio.Queue[str] = asyncio.Queue()

        def read() -> None:
            while True:
                line = self.stream.readline()
                try:
                    loop.call_soon_threadsafe(lines.put_nowait, line)
                except RuntimeError:
                    # Event loop already closed
                    return
                if not line:
                    return

        self._lines = lines
        self._reader = threading.Thread(
            target=read,
            name="hypothesis-reader",
            daemon=True
        )
        self._reader.start()
        return lines

    async def results(self) -> AsyncIterator[TranscriptionResult]:
        if self._eof:
            return
        lines = self._lines
        if lines is None:
            lines = self._start_reader(asyncio.get_running_loop())
        while self._active:
            # An empty string marks end of stream
            line: str = await lines.get()
            if not line:
                self._eof = True
                return
            result = self.parse_line(line)
            if result is not None:
                yield result


class SupervisorState(Enum):
    """Lifecycle of a supervised recognizer."""
    IDLE = "idle"
    LISTENING = "listening"
    RESTARTING = "restarting"


ResultCallback = Callable[[TranscriptionResult], Awaitable[None] | None]
ErrorCallback = Callable[[RecognitionError], None]


class RecognitionSupervisor:
    """
    Runs a hypothesis source and restarts it whenever it goes idle.

    Usage:
        supervisor = RecognitionSupervisor(source, on_result=app.on_result)
        supervisor.start()
        ...
        await supervisor.stop()
    """

    def __init__(
        self,
        source: HypothesisSource,
        on_result: ResultCallback,
        on_error: ErrorCallback | None = None,
        restart_backoff_ms: int = DEFAULT_RESTART_BACKOFF_MS
    ) -> None:
        """
        Initialize the supervisor.

        Args:
            source: Where hypotheses come from
            on_result: Called for every result, in order
            on_error: Called for every recognizer error, fatal or not
            restart_backoff_ms: Pause before restarting an idle source
        """
        self.source: HypothesisSource = source
        self.on_result: ResultCallback = on_result
        self.on_error: ErrorCallback | None = on_error
        self.restart_backoff_ms: int = restart_backoff_ms

        self.state: SupervisorState = SupervisorState.IDLE
        self.restarts: int = 0
        self._task: asyncio.Task[None] | None = None
        self._stopping: bool = False

    @property
    def running(self) -> bool:
        """True while the supervision task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Start supervising; a no-op if already running."""
        if self._task is None or self._task.done():
            self._stopping = False
            self.restarts = 0
            self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Stop supervising, cancelling any pending restart."""
        self._stopping = True
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.state = SupervisorState.IDLE

    async def wait(self) -> None:
        """Wait until supervision ends on its own (fatal error, exhausted source)."""
        if self._task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    async def _run(self) -> None:
        try:
            while not self._stopping:
                self.state = SupervisorState.LISTENING
                fatal = await self._listen_once()
                if fatal or self._stopping or self.source.exhausted:
                    break
                self.state = SupervisorState.RESTARTING
                logger.debug("Recognizer idle, restarting in %d ms", self.restart_backoff_ms)
                await asyncio.sleep(self.restart_backoff_ms / 1000)
                self.restarts += 1
        finally:
            self.state = SupervisorState.IDLE
            await self._stop_source()

    async def _listen_once(self) -> bool:
        """Run the source until it goes idle; returns True on a fatal error."""
        try:
            await self.source.start()
            async for result in self.source.results():
                await self._dispatch(result)
        except RecognitionError as e:
            self._report(e)
            return e.is_fatal
        except Exception as e:
            logger.exception("Recognizer failed")
            self._report(RecognitionError("unknown", str(e)))
        finally:
            if not self._stopping:
                await self._stop_source()
        return False

    async def _stop_source(self) -> None:
        try:
            await self.source.stop()
        except Exception as e:
            logger.warning("Error stopping recognizer: %s", e)

    async def _dispatch(self, result: TranscriptionResult) -> None:
        try:
            outcome = self.on_result(result)
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception:
            logger.exception("Result callback failed for %r", result)

    def _report(self, error: RecognitionError) -> None:
        if error.is_fatal:
            logger.error("Recognizer error (fatal): %s", error.code)
        else:
            logger.warning("Recognizer error: %s", error.code)
        if self.on_error is None:
            return
        try:
            self.on_error(error)
        except Exception:
            logger.exception("Error callback failed")
