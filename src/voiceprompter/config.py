# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Configuration management for Voice Prompter.
Handles loading and saving settings from a YAML config file.
"""

from pathlib import Path
from typing import Any, TypedDict

import yaml

CONFIG_FILENAME: str = ".voiceprompter.yaml"


class DisplaySettings(TypedDict):
    """Presentation settings carried opaquely inside every state snapshot."""
    fontSize: int
    fontFamily: str
    language: str
    mode: str  # "voice" or "auto"
    scrollSpeed: int
    textWidth: int
    readingLine: str
    mirror: bool
    lightDisplay: bool
    bgColor: str
    textColor: str
    countdown: bool


class RelaySettings(TypedDict):
    """Type definition for relay server settings."""
    host: str
    port: int | None  # None means "first free fallback port"
    fallback_ports: list[int]


class SyncSettings(TypedDict):
    """Type definition for fan-out debounce windows."""
    local_debounce_ms: int
    remote_debounce_ms: int


class TrackingSettings(TypedDict):
    """Type definition for alignment settings."""
    final_lookahead: int
    interim_lookahead: int


class RecognitionSettings(TypedDict):
    """Type definition for recognizer supervision settings."""
    restart_backoff_ms: int


class ReconnectSettings(TypedDict):
    """Type definition for relay client reconnect delays."""
    host_delay_ms: int
    remote_delay_ms: int


class Config(TypedDict):
    """Type definition for the complete configuration."""
    relay: RelaySettings
    relay_url: str
    sync: SyncSettings
    tracking: TrackingSettings
    recognition: RecognitionSettings
    reconnect: ReconnectSettings
    display: DisplaySettings


# Default configuration values
DEFAULT_CONFIG: Config = {
    # Relay server settings
    "relay": {
        "host": "0.0.0.0",
        "port": None,
        "fallback_ports": [32177, 32178, 32179, 32280, 33333],
    },

    # Where a host connects to find the relay
    "relay_url": "ws://127.0.0.1:32177/ws",

    # Coalescing windows for state fan-out
    "sync": {
        "local_debounce_ms": 80,
        "remote_debounce_ms": 120,
    },

    # Alignment lookahead (in script words)
    "tracking": {
        "final_lookahead": 14,
        "interim_lookahead": 6,
    },

    # Recognizer auto-restart after the provider goes idle
    "recognition": {
        "restart_backoff_ms": 250,
    },

    # Relay client reconnect delays
    "reconnect": {
        "host_delay_ms": 1000,
        "remote_delay_ms": 1200,
    },

    # Presentation settings (passed through to displays unmodified)
    "display": {
        "fontSize": 46,
        "fontFamily": "Georgia",
        "language": "en-US",
        "mode": "voice",
        "scrollSpeed": 30,
        "textWidth": 80,
        "readingLine": "upper",
        "mirror": False,
        "lightDisplay": False,
        "bgColor": "#111110",
        "textColor": "#ede8df",
        "countdown": True,
    },
}


def get_config_path() -> Path:
    """Get the path to the config file in the current working directory."""
    return Path.cwd() / CONFIG_FILENAME


def _deep_merge(base, override):
    """
    Deep merge two dictionaries, with override taking precedence.
    Returns a new dictionary without modifying the originals.

    Args:
        base: Base dictionary to merge from.
        override: Dictionary with values that take precedence over base.

    Returns:
        New dictionary with merged values.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        elif isinstance(value, dict):
            result[key] = _deep_merge({}, value)
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file, merged with defaults.

    Args:
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        Configuration dictionary with all values (defaults + overrides from file).
    """
    if config_path is None:
        config_path = get_config_path()

    # Start with defaults
    config: dict[str, Any] = _deep_merge({}, DEFAULT_CONFIG)

    # Load from file if it exists
    if config_path.exists():
        try:
            with open(config_path, encoding='utf-8') as f:
                file_config: dict[str, Any] | None = yaml.safe_load(f)
                if isinstance(file_config, dict):
                    config = _deep_merge(config, file_config)
        except (OSError, yaml.YAMLError) as e:
            print(f"Warning: Could not load config from {config_path}: {e}")

    return config  # type: ignore[return-value]


def save_config(config: Config, config_path: Path | None = None) -> bool:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary to save.
        config_path: Optional path to config file. If None, uses default location.

    Returns:
        True if save was successful, False otherwise.
    """
    if config_path is None:
        config_path = get_config_path()

    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(dict(config), f, default_flow_style=False, sort_keys=False)
        return True
    except (OSError, yaml.YAMLError) as e:
        print(f"Error saving config to {config_path}: {e}")
        return False


def get_display_settings(config: Config) -> DisplaySettings:
    """Extract a private copy of the display settings."""
    return _deep_merge({}, config.get("display", DEFAULT_CONFIG["display"]))  # type: ignore[return-value]


def get_sync_settings(config: Config) -> SyncSettings:
    """Extract fan-out settings from config."""
    return config.get("sync", DEFAULT_CONFIG["sync"]).copy()  # type: ignore[return-value]


def get_tracking_settings(config: Config) -> TrackingSettings:
    """Extract tracking settings from config."""
    return config.get("tracking", DEFAULT_CONFIG["tracking"]).copy()  # type: ignore[return-value]


def get_relay_settings(config: Config) -> RelaySettings:
    """
    Extract relay server settings from config.

    Args:
        config: Configuration dictionary.

    Returns:
        Relay settings dictionary.
    """
    return _deep_merge({}, config.get("relay", DEFAULT_CONFIG["relay"]))  # type: ignore[return-value]


def update_config_display(config: Config, display_settings: DisplaySettings) -> Config:
    """
    Update the display section of the config with new settings.
    Returns a new config dict.

    Args:
        config: Current configuration.
        display_settings: New display settings to merge in.

    Returns:
        New configuration with updated display settings.
    """
    new_config: dict[str, Any] = _deep_merge({}, config)
    new_config["display"] = _deep_merge(
        new_config.get("display", {}),
        display_settings
    )
    return new_config  # type: ignore[return-value]
