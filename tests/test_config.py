# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Tests for configuration management.
"""

import tempfile
from pathlib import Path

import yaml

from voiceprompter.config import (
    DEFAULT_CONFIG,
    get_display_settings,
    get_relay_settings,
    get_sync_settings,
    get_tracking_settings,
    load_config,
    save_config,
    update_config_display,
)


def test_defaults_when_file_missing():
    """A missing config file gives the defaults."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(Path(tmpdir) / ".voiceprompter.yaml")
        assert config == DEFAULT_CONFIG
        assert config["relay"]["fallback_ports"] == [32177, 32178, 32179, 32280, 33333]
        assert config["sync"] == {"local_debounce_ms": 80, "remote_debounce_ms": 120}


def test_file_values_merge_over_defaults():
    """Values in the file override defaults without dropping siblings."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".voiceprompter.yaml"
        with open(config_path, "w", encoding="utf-8") as f:
            yaml.dump({
                "relay": {"port": 40000},
                "display": {"scrollSpeed": 55, "mirror": True},
            }, f)

        config = load_config(config_path)
        assert config["relay"]["port"] == 40000
        assert config["relay"]["host"] == "0.0.0.0"
        assert config["display"]["scrollSpeed"] == 55
        assert config["display"]["mirror"] is True
        assert config["display"]["fontFamily"] == "Georgia"


def test_load_does_not_alias_defaults():
    """Mutating a loaded config leaves the defaults alone."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(Path(tmpdir) / "missing.yaml")
        config["relay"]["fallback_ports"].append(1)
        config["display"]["scrollSpeed"] = 99
        assert DEFAULT_CONFIG["relay"]["fallback_ports"] == [32177, 32178, 32179, 32280, 33333]
        assert DEFAULT_CONFIG["display"]["scrollSpeed"] == 30


def test_invalid_yaml_falls_back_to_defaults(capsys):
    """A broken file prints a warning and leaves the defaults in place."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".voiceprompter.yaml"
        config_path.write_text("relay: [unclosed\n", encoding="utf-8")

        config = load_config(config_path)
        assert config == DEFAULT_CONFIG
        assert "Warning: Could not load config" in capsys.readouterr().out


def test_non_mapping_yaml_ignored():
    """A file holding a bare list is ignored."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".voiceprompter.yaml"
        config_path.write_text("- just\n- a list\n", encoding="utf-8")
        assert load_config(config_path) == DEFAULT_CONFIG


def test_save_and_reload():
    """Saved settings come back on the next load."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / ".voiceprompter.yaml"
        config = load_config(config_path)
        config = update_config_display(config, {"scrollSpeed": 80})  # type: ignore[typeddict-item]

        assert save_config(config, config_path)
        reloaded = load_config(config_path)
        assert reloaded["display"]["scrollSpeed"] == 80
        assert reloaded["display"]["language"] == "en-US"


def test_save_to_unwritable_path_fails(capsys):
    """Saving into a directory that doesn't exist reports failure."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_path = Path(tmpdir) / "missing" / ".voiceprompter.yaml"
        assert not save_config(DEFAULT_CONFIG, config_path)
        assert "Error saving config" in capsys.readouterr().out


def test_update_display_returns_new_config():
    """update_config_display leaves its input untouched."""
    config = load_config(Path("/nonexistent/.voiceprompter.yaml"))
    updated = update_config_display(config, {"mode": "auto"})  # type: ignore[typeddict-item]
    assert updated["display"]["mode"] == "auto"
    assert config["display"]["mode"] == "voice"


def test_section_getters_return_copies():
    """Section getters hand out copies the caller can change freely."""
    config = load_config(Path("/nonexistent/.voiceprompter.yaml"))

    display = get_display_settings(config)
    display["fontSize"] = 10
    assert config["display"]["fontSize"] == 46

    relay = get_relay_settings(config)
    relay["fallback_ports"].clear()
    assert config["relay"]["fallback_ports"]

    assert get_sync_settings(config) == config["sync"]
    assert get_tracking_settings(config) == {"final_lookahead": 14, "interim_lookahead": 6}
