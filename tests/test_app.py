# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""Tests for the host application: commands, runs and fan-out wiring."""

import asyncio
import io
from typing import Any
from unittest.mock import AsyncMock, Mock

import pytest

from voiceprompter.client import HostLink
from voiceprompter.main import PrompterApp
from voiceprompter.recognition import RecognitionError, TextStreamSource
from voiceprompter.sync import EventBus

SCRIPT: str = "Welcome everyone to the show. Today we talk about prompting. Thanks!"


def make_app(script: str = SCRIPT, mode: str = "voice", **kwargs: Any) -> PrompterApp:
    return PrompterApp(
        script_text=script,
        display_settings={"mode": mode},  # type: ignore[typeddict-item]
        countdown_step_s=0,
        restart_backoff_ms=10,
        **kwargs
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll the event loop until predicate() holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


class TestCommands:
    """Tests for remote and pop-out commands."""

    @pytest.mark.asyncio
    async def test_word_steps(self) -> None:
        app = make_app()
        await app.handle_command("nextWord")
        await app.handle_command("nextWord")
        assert app.position == 2
        assert app.tracker.committed == 2
        await app.handle_command("prevWord")
        assert app.position == 1
        await app.close()

    @pytest.mark.asyncio
    async def test_prev_word_at_start_stays(self) -> None:
        app = make_app()
        await app.handle_command("prevWord")
        assert app.position == 0
        await app.close()

    @pytest.mark.asyncio
    async def test_sentence_steps(self) -> None:
        app = make_app()
        await app.handle_command("nextSentence")
        assert app.position == 5
        await app.handle_command("nextSentence")
        assert app.position == 10
        await app.handle_command("prevSentence")
        assert app.position == 5
        await app.close()

    @pytest.mark.asyncio
    async def test_reset(self) -> None:
        app = make_app()
        app.tracker.set_position(7)
        await app.handle_command("reset")
        assert app.position == 0
        assert app.tracker.committed == 0
        assert app.status == "Reset."
        await app.close()

    @pytest.mark.asyncio
    async def test_speed_changes_are_clamped(self) -> None:
        app = make_app()
        assert app.settings["scrollSpeed"] == 30
        await app.handle_command("faster")
        assert app.settings["scrollSpeed"] == 35
        assert app.status == "Speed: 35"

        app.settings["scrollSpeed"] = 158
        await app.handle_command("faster")
        assert app.settings["scrollSpeed"] == 160

        app.settings["scrollSpeed"] = 3
        await app.handle_command("slower")
        assert app.settings["scrollSpeed"] == 0
        await app.close()

    @pytest.mark.asyncio
    async def test_unknown_command_ignored(self) -> None:
        app = make_app()
        app.tracker.set_position(3)
        await app.handle_command("selfDestruct")
        assert app.position == 3
        assert app.status == "Ready."
        await app.close()

    @pytest.mark.asyncio
    async def test_commands_push_state_immediately(self) -> None:
        app = make_app()
        popout = Mock()
        app.bus.subscribe(popout)
        await app.handle_command("nextWord")
        # Sent straight away, without waiting for the debounce window
        message = popout.call_args_list[0].args[0]
        assert message["t"] == "state"
        assert message["state"]["position"] == 1
        await app.close()


class TestRuns:
    """Tests for starting and stopping."""

    @pytest.mark.asyncio
    async def test_empty_script_refused(self) -> None:
        app = make_app(script="   ")
        assert not await app.start()
        assert not app.running
        assert app.status == "Paste a script first."
        await app.close()

    @pytest.mark.asyncio
    async def test_auto_mode_run(self) -> None:
        app = make_app(mode="auto")
        assert await app.start()
        assert app.running
        assert app.status == "Auto-scroll running..."
        assert app.export_state().running
        await app.stop()
        assert not app.running
        assert app.status == "Stopped."
        await app.close()

    @pytest.mark.asyncio
    async def test_start_stop_toggle(self) -> None:
        app = make_app(mode="auto")
        await app.handle_command("startStop")
        assert app.running
        await app.handle_command("startStop")
        assert not app.running
        await app.close()

    @pytest.mark.asyncio
    async def test_voice_mode_needs_a_source(self) -> None:
        app = make_app()
        assert not await app.start()
        assert not app.running
        await app.close()

    @pytest.mark.asyncio
    async def test_stop_commits_displayed_position(self) -> None:
        app = make_app(mode="auto")
        await app.start()
        app.tracker.set_position(4, commit=False)
        await app.stop()
        assert app.tracker.committed == 4
        await app.close()

    @pytest.mark.asyncio
    async def test_voice_run_follows_speech(self) -> None:
        source = TextStreamSource(io.StringIO("~ welcome every\nwelcome everyone to the show\n"))
        app = make_app(source=source)
        input_ended = Mock()
        app.on_input_end = input_ended

        assert await app.start()
        await wait_until(lambda: not app.running)

        assert app.position == 5
        assert app.tracker.committed == 5
        input_ended.assert_called_once()
        await app.close()

    @pytest.mark.asyncio
    async def test_results_ignored_when_stopped(self) -> None:
        app = make_app()
        app.on_result(Mock(text="welcome everyone", is_final=True))
        assert app.position == 0
        await app.close()

    @pytest.mark.asyncio
    async def test_permission_error_stops_run(self) -> None:
        app = make_app(mode="auto")
        await app.start()
        app._on_recognition_error(RecognitionError("not-allowed"))
        await wait_until(lambda: not app.running)
        assert app.status == "Stopped."
        await app.close()

    @pytest.mark.asyncio
    async def test_transient_error_reported(self) -> None:
        app = make_app(mode="auto")
        await app.start()
        app._on_recognition_error(RecognitionError("no-speech"))
        assert app.status == "Voice error: no-speech"
        assert app.running
        await app.close()


class TestFanoutWiring:
    """Tests for the local bus and relay link hookup."""

    @pytest.mark.asyncio
    async def test_popout_ready_gets_state(self) -> None:
        bus = EventBus()
        app = make_app(bus=bus)
        assert app.bus is bus
        assert len(bus) == 1
        app.tracker.set_position(3)
        received: list[dict[str, Any]] = []

        def popout(message: dict[str, Any]) -> None:
            received.append(message)

        bus.subscribe(popout)
        bus.publish({"t": "ready"}, sender=popout)

        assert received[0]["t"] == "state"
        assert received[0]["state"]["position"] == 3
        assert received[0]["state"]["script"] == SCRIPT
        await app.close()

    @pytest.mark.asyncio
    async def test_popout_command(self) -> None:
        bus = EventBus()
        app = make_app(bus=bus)
        bus.publish({"t": "cmd", "cmd": "nextWord"}, sender=Mock())
        await wait_until(lambda: app.position == 1)
        await app.close()

    @pytest.mark.asyncio
    async def test_remote_receives_snapshots_through_link(self) -> None:
        link = Mock(spec=HostLink)
        link.send_state = AsyncMock(return_value=True)
        link.start = Mock()
        link.stop = AsyncMock()
        app = make_app(host_link=link)
        assert link.on_command == app.dispatch_command

        await app.handle_command("nextSentence")
        await app.fanout.drain()

        link.send_state.assert_awaited()
        snapshot = link.send_state.await_args.args[0]
        assert snapshot.position == 5
        await app.close()
        link.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_position_changes_are_debounced(self) -> None:
        app = make_app()
        popout = Mock()
        app.bus.subscribe(popout)
        for i in range(1, 6):
            app.tracker.set_position(i)
        await asyncio.sleep(0.3)
        assert popout.call_count == 1
        assert popout.call_args.args[0]["state"]["position"] == 5
        await app.close()

    @pytest.mark.asyncio
    async def test_snapshot_does_not_alias_settings(self) -> None:
        app = make_app()
        snapshot = app.export_state()
        app.settings["scrollSpeed"] = 100
        assert snapshot.settings["scrollSpeed"] == 30
        await app.close()


class TestCountdown:
    """Tests for stopping while the start countdown runs."""

    @pytest.mark.asyncio
    async def test_stop_during_countdown_cancels_run(self) -> None:
        source = TextStreamSource(io.StringIO(""))
        app = PrompterApp(script_text=SCRIPT, source=source, countdown_step_s=0.05)

        starting = asyncio.create_task(app.start())
        await asyncio.sleep(0.02)
        assert app.status == "3"
        await app.stop()

        assert not await starting
        assert not app.running
        assert app.supervisor is None
        assert app.status == "Stopped."
        await app.close()

    @pytest.mark.asyncio
    async def test_restart_during_countdown_starts_once(self) -> None:
        app = PrompterApp(
            script_text=SCRIPT,
            display_settings={"mode": "auto"},  # type: ignore[typeddict-item]
            countdown_step_s=0.05
        )

        first = asyncio.create_task(app.start())
        await asyncio.sleep(0.02)
        await app.stop()
        second = asyncio.create_task(app.start())

        assert not await first
        assert await second
        assert app.running
        assert app.status == "Auto-scroll running..."
        await app.close()

    @pytest.mark.asyncio
    async def test_close_stops_supervisor(self) -> None:
        app = make_app(source=TextStreamSource(io.StringIO("")))
        supervisor = Mock()
        supervisor.stop = AsyncMock()
        app.supervisor = supervisor

        await app.close()

        supervisor.stop.assert_awaited_once()
        assert app.supervisor is None
