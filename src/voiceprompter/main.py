# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Main voiceprompter application.
Orchestrates speech hypotheses, script tracking, state fan-out and the
relay link, and provides the command-line entry point.
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Callable, Coroutine
from pathlib import Path
from typing import Any

from . import debug_log, protocol
from .client import HostLink
from .config import (
    DEFAULT_CONFIG,
    Config,
    DisplaySettings,
    SyncSettings,
    TrackingSettings,
    get_config_path,
    get_display_settings,
    get_relay_settings,
    get_sync_settings,
    get_tracking_settings,
    load_config,
    save_config,
)
from .matcher import FINAL_OPTIONS, INTERIM_OPTIONS, AlignmentOptions
from .recognition import (
    DEFAULT_RESTART_BACKOFF_MS,
    HypothesisSource,
    RecognitionError,
    RecognitionSupervisor,
    TextStreamSource,
    TranscriptionResult,
)
from .server import RelayServer
from .sync import EventBus, StateSnapshot, SyncFanout
from .tracker import ScriptPosition, ScriptTracker

logger = logging.getLogger(__name__)

SPEED_STEP: int = 5
MIN_SPEED: int = 0
MAX_SPEED: int = 160

# Seconds per countdown step before a run starts
COUNTDOWN_STEP_S: float = 0.9

MODE_VOICE: str = "voice"
MODE_AUTO: str = "auto"


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(value, high))


class PrompterApp:
    """
    The host side of the prompter: owns the script cursor and the run state
    and keeps every display and remote in step with them.
    """

    def __init__(
        self,
        script_text: str = "",
        display_settings: DisplaySettings | None = None,
        sync_settings: SyncSettings | None = None,
        tracking_settings: TrackingSettings | None = None,
        source: HypothesisSource | None = None,
        bus: EventBus | None = None,
        host_link: HostLink | None = None,
        restart_backoff_ms: int = DEFAULT_RESTART_BACKOFF_MS,
        countdown_step_s: float = COUNTDOWN_STEP_S,
        on_status: Callable[[str], None] | None = None
    ) -> None:
        # Private copy; snapshots copy again on every emission
        self.settings: dict[str, Any] = dict(get_display_settings(DEFAULT_CONFIG))
        if display_settings:
            self.settings.update(display_settings)

        sync = sync_settings or DEFAULT_CONFIG["sync"]
        tracking = tracking_settings or DEFAULT_CONFIG["tracking"]

        self.tracker: ScriptTracker = ScriptTracker(
            script_text,
            final_options=AlignmentOptions(
                lookahead=tracking.get("final_lookahead", FINAL_OPTIONS.lookahead)),
            interim_options=AlignmentOptions(
                lookahead=tracking.get("interim_lookahead", INTERIM_OPTIONS.lookahead),
                allow_fuzzy_ahead=False)
        )
        self.script_text: str = script_text
        self.running: bool = False
        self.status: str = "Ready."
        self.remote_status: str | None = None
        self.on_status: Callable[[str], None] | None = on_status
        self.on_input_end: Callable[[], None] | None = None

        self.source: HypothesisSource | None = source
        self.restart_backoff_ms: int = restart_backoff_ms
        self.countdown_step_s: float = countdown_step_s
        self.supervisor: RecognitionSupervisor | None = None
        self._run_id: int = 0

        self.bus: EventBus = bus if bus is not None else EventBus()
        self._unsubscribe = self.bus.subscribe(self._on_bus_message)

        self.host_link: HostLink | None = host_link
        if host_link is not None:
            host_link.on_command = self.dispatch_command
            host_link.on_status = self._on_remote_status

        self.fanout: SyncFanout = SyncFanout(
            self.export_state,
            self._publish_local,
            self._publish_remote,
            local_delay_ms=sync.get("local_debounce_ms", 80),
            remote_delay_ms=sync.get("remote_debounce_ms", 120)
        )
        self._tasks: set[asyncio.Task[Any]] = set()

        self.tracker.add_listener(self._on_position)

    # ---- State -------------------------------------------------------

    @property
    def position(self) -> int:
        """Word index currently on display."""
        return self.tracker.current

    @property
    def mode(self) -> str:
        return str(self.settings.get("mode", MODE_VOICE))

    def export_state(self) -> StateSnapshot:
        """Snapshot of everything displays and remotes mirror."""
        return StateSnapshot.capture(
            script=self.script_text,
            position=self.tracker.current,
            running=self.running,
            settings=self.settings
        )

    def load_script(self, script_text: str) -> None:
        """Replace the script and go back to the top."""
        self.script_text = script_text
        self.tracker.load_script(script_text)
        debug_log.clear_logs()

    def _set_status(self, text: str) -> None:
        self.status = text
        logger.info("Status: %s", text)
        if self.on_status is not None:
            self.on_status(text)

    def _on_remote_status(self, text: str) -> None:
        self.remote_status = text

    def _on_position(self, _position: ScriptPosition) -> None:
        self.fanout.notify()

    # ---- Fan-out sinks -----------------------------------------------

    def _publish_local(self, snapshot: StateSnapshot) -> None:
        self.bus.publish(protocol.state(snapshot.to_dict()), sender=self._on_bus_message)

    def _publish_remote(self, snapshot: StateSnapshot) -> Coroutine[Any, Any, bool] | None:
        if self.host_link is None:
            return None
        return self.host_link.send_state(snapshot)

    def _on_bus_message(self, message: dict[str, Any]) -> None:
        msg_type = message.get("t")
        if msg_type == "ready":
            # A pop-out just opened; it shouldn't wait for the next change
            self.fanout.emit_local()
        elif msg_type == "cmd":
            self.dispatch_command(str(message.get("cmd")))

    # ---- Commands ----------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background task failed: %s", task.exception())

    def dispatch_command(self, command: str) -> None:
        """Handle a command from a synchronous context (relay link, event bus)."""
        self._spawn(self.handle_command(command))

    async def handle_command(self, command: str | protocol.Command) -> None:
        """
        Apply one remote or pop-out command.

        Unknown commands are ignored.
        """
        cmd = protocol.Command.parse(command)
        if cmd is None:
            logger.debug("Ignoring unknown command: %s", command)
            return

        if cmd is protocol.Command.START_STOP:
            await self.toggle_start_stop()
        elif cmd is protocol.Command.RESET:
            self.reset()
        elif cmd is protocol.Command.PREV_WORD:
            self._jump(self.tracker.step_word, -1)
        elif cmd is protocol.Command.NEXT_WORD:
            self._jump(self.tracker.step_word, 1)
        elif cmd is protocol.Command.PREV_SENTENCE:
            self._jump(self.tracker.prev_sentence)
        elif cmd is protocol.Command.NEXT_SENTENCE:
            self._jump(self.tracker.next_sentence)
        elif cmd is protocol.Command.SLOWER:
            self.change_speed(-SPEED_STEP)
        elif cmd is protocol.Command.FASTER:
            self.change_speed(SPEED_STEP)

    def _jump(self, move: Callable[..., ScriptPosition], *args: int) -> None:
        move(*args)
        self.fanout.flush_now()

    def reset(self) -> None:
        """Back to the first word, committed, pushed out immediately."""
        self.tracker.reset()
        self.fanout.flush_now()
        self._set_status("Reset.")

    def change_speed(self, delta: int) -> int:
        """Adjust the auto-scroll speed within its limits."""
        speed = int(self.settings.get("scrollSpeed", 0))
        self.settings["scrollSpeed"] = _clamp(speed + delta, MIN_SPEED, MAX_SPEED)
        self.fanout.flush_now()
        self._set_status(f"Speed: {self.settings['scrollSpeed']}")
        return self.settings["scrollSpeed"]

    # ---- Running -----------------------------------------------------

    async def toggle_start_stop(self) -> None:
        if self.running:
            await self.stop()
        else:
            await self.start()

    async def _run_countdown(self, run_id: int) -> None:
        if not self.settings.get("countdown") or self.countdown_step_s <= 0:
            return
        for n in (3, 2, 1):
            if not self.running or run_id != self._run_id:
                return
            self._set_status(str(n))
            await asyncio.sleep(self.countdown_step_s)

    async def start(self) -> bool:
        """
        Start a run.

        Returns:
            True if the run started (or was already running)
        """
        if self.running:
            return True
        if not self.script_text.strip():
            self._set_status("Paste a script first.")
            return False

        self.running = True
        self._run_id += 1
        run_id = self._run_id
        await self._run_countdown(run_id)
        if not self.running or run_id != self._run_id:
            # Stopped (or restarted) during the countdown
            return False

        if self.mode == MODE_VOICE:
            if self.source is None:
                self.running = False
                self._set_status("Voice tracking is not available.")
                return False
            # Align from where the reader actually is, not a stale base
            self.tracker.commit_current()
            self.supervisor = RecognitionSupervisor(
                self.source,
                on_result=self.on_result,
                on_error=self._on_recognition_error,
                restart_backoff_ms=self.restart_backoff_ms
            )
            task = self.supervisor.start()
            task.add_done_callback(self._on_supervisor_done)
            self._set_status("Listening...")
        else:
            self._set_status("Auto-scroll running...")

        self.fanout.flush_now()
        return True

    async def stop(self) -> None:
        """Stop the run and commit the displayed position."""
        if not self.running:
            return
        self.running = False

        supervisor, self.supervisor = self.supervisor, None
        if supervisor is not None:
            await supervisor.stop()
        self.tracker.commit_current()
        self._set_status("Stopped.")
        self.fanout.flush_now()

    def on_result(self, result: TranscriptionResult) -> None:
        """Feed one recognition hypothesis to the tracker."""
        if not self.running:
            return
        debug_log.log_transcript(result.text, result.is_final)
        self.tracker.update(result.text, is_final=result.is_final)

    def _on_recognition_error(self, error: RecognitionError) -> None:
        if error.is_fatal:
            self._set_status("Microphone permission denied.")
            self._spawn(self.stop())
            return
        self._set_status(f"Voice error: {error.code}")

    def _on_supervisor_done(self, _task: asyncio.Task[None]) -> None:
        if self.source is None or not self.source.exhausted:
            return
        self._set_status("Input ended.")
        self._spawn(self.stop())
        if self.on_input_end is not None:
            self.on_input_end()

    # ---- Lifecycle ---------------------------------------------------

    async def open(self) -> None:
        """Connect to the relay (if configured)."""
        if self.host_link is not None:
            self.host_link.start()

    async def close(self) -> None:
        """Stop everything and disconnect."""
        await self.stop()
        supervisor, self.supervisor = self.supervisor, None
        if supervisor is not None:
            await supervisor.stop()
        # Let the final snapshot reach the relay before disconnecting
        await self.fanout.drain()
        self.fanout.cancel()
        if self.host_link is not None:
            await self.host_link.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._unsubscribe()


async def run_relay(server: RelayServer, shutdown_event: asyncio.Event) -> None:
    """Run the relay server until shutdown."""
    await server.start()
    try:
        await shutdown_event.wait()
    finally:
        await server.stop()


async def run_host(app: PrompterApp, shutdown_event: asyncio.Event) -> None:
    """Run the host until shutdown or the hypothesis stream ends."""
    app.on_input_end = shutdown_event.set
    await app.open()
    try:
        await app.start()
        await shutdown_event.wait()
    finally:
        await app.close()


def _run(coro_factory: Callable[[asyncio.Event], Coroutine[Any, Any, None]]) -> None:
    """Run a coroutine with SIGINT/SIGTERM wired to a shutdown event."""
    loop: asyncio.AbstractEventLoop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    shutdown_event: asyncio.Event = asyncio.Event()

    def shutdown(sig: int, frame: object) -> None:
        """Handle shutdown signals (SIGINT, SIGTERM) gracefully."""
        print("\nReceived shutdown signal...")
        loop.call_soon_threadsafe(shutdown_event.set)

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        loop.run_until_complete(coro_factory(shutdown_event))
    except KeyboardInterrupt:
        pass
    finally:
        # Cancel any remaining tasks
        pending: set[asyncio.Task[object]] = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(
                *pending, return_exceptions=True))
        loop.close()


def build_parser(config: Config) -> argparse.ArgumentParser:
    """Command-line options, with defaults taken from the config file."""
    relay_settings = get_relay_settings(config)
    display_settings = get_display_settings(config)

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Voice Prompter - teleprompter that follows your voice"
    )

    parser.add_argument(
        "--relay",
        action="store_true",
        help="Run the WebSocket relay server for remote controllers"
    )

    parser.add_argument(
        "--host",
        default=relay_settings.get("host", "0.0.0.0"),
        help="Relay bind address (default: from config or 0.0.0.0)"
    )

    parser.add_argument(
        "--port", "-p",
        type=int,
        default=relay_settings.get("port"),
        help="Relay port (default: from config, else the first free fallback port)"
    )

    parser.add_argument(
        "--script", "-s",
        type=Path,
        help="Script file to prompt from"
    )

    parser.add_argument(
        "--relay-url",
        default=config.get("relay_url", DEFAULT_CONFIG["relay_url"]),
        help="Relay WebSocket URL for the host (use 'none' to run without remotes)"
    )

    parser.add_argument(
        "--mode",
        choices=[MODE_VOICE, MODE_AUTO],
        default=display_settings.get("mode", MODE_VOICE),
        help="Tracking mode (default: from config or voice)"
    )

    parser.add_argument(
        "--save-config",
        action="store_true",
        help="Save current CLI options to config file and exit"
    )

    parser.add_argument(
        "--debug-log",
        action="store_true",
        help="Enable alignment debug logging to ./logs/"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Show informational log messages"
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    config: Config = load_config()
    args: argparse.Namespace = build_parser(config).parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S"
    )

    if args.save_config:
        config["relay"]["host"] = args.host
        config["relay"]["port"] = args.port
        config["relay_url"] = args.relay_url
        config["display"]["mode"] = args.mode
        if save_config(config):
            print(f"Configuration saved to {get_config_path()}")
        return

    if args.debug_log:
        debug_log.enable()
        print("Debug logging enabled (logs will be saved to ./logs/)")

    if args.relay:
        relay_settings = get_relay_settings(config)
        server = RelayServer(
            host=args.host,
            port=args.port,
            fallback_ports=relay_settings.get("fallback_ports")
        )
        _run(lambda shutdown_event: run_relay(server, shutdown_event))
        return

    if args.script is None:
        print("Error: --script is required unless running with --relay")
        sys.exit(2)

    try:
        script_text = args.script.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Error: Could not read script {args.script}: {e}")
        sys.exit(1)

    display_settings = get_display_settings(config)
    display_settings["mode"] = args.mode

    async def host(shutdown_event: asyncio.Event) -> None:
        host_link: HostLink | None = None
        if args.relay_url and args.relay_url.lower() != "none":
            host_link = HostLink(
                args.relay_url,
                reconnect_delay_ms=config["reconnect"]["host_delay_ms"]
            )
        app = PrompterApp(
            display_settings=display_settings,
            sync_settings=get_sync_settings(config),
            tracking_settings=get_tracking_settings(config),
            source=TextStreamSource(sys.stdin),
            host_link=host_link,
            restart_backoff_ms=config["recognition"]["restart_backoff_ms"],
            on_status=print
        )
        app.load_script(script_text)
        print(f"Script loaded: {app.tracker.total_words} words")
        await run_host(app, shutdown_event)
        print(f"Finished at word {app.position} of {app.tracker.total_words}")

    _run(host)


if __name__ == "__main__":
    main()
