"""Configuration loader for server settings."""
import json
import os
from typing import Dict, Any


# Fallbacks used when a key is missing from game_settings.json
DEFAULTS: Dict[str, Dict[str, Any]] = {
    "rooms": {
        "max_players": 8,
        "min_players": 2,
        "room_code_length": 6,
    },
    "turns": {
        "turn_time_limit_seconds": 10,
    },
    "connections": {
        "reconnect_grace_seconds": 30,
        "send_queue_size": 64,
        "send_timeout_seconds": 5,
    },
    "chat": {
        "max_message_length": 500,
    },
}


class ConfigLoader:
    """Loads and provides access to server configuration."""

    _instance = None
    _config_dir = "config"

    def __new__(cls):
        """Singleton pattern to ensure only one config loader."""
        if cls._instance is None:
            cls._instance = super(ConfigLoader, cls).__new__(cls)
            cls._instance._load_all_configs()
        return cls._instance

    def _load_all_configs(self):
        """Load all configuration files."""
        self.game_settings = self._load_json("game_settings.json")

    def _load_json(self, filename: str) -> Dict[str, Any]:
        """Load a JSON configuration file."""
        filepath = os.path.join(self._config_dir, filename)
        try:
            with open(filepath, 'r', encoding='utf-8') as f:
                return json.load(f)
        except FileNotFoundError:
            print(f"Warning: Config file {filename} not found. Using defaults.")
            return {}
        except json.JSONDecodeError as e:
            print(f"Warning: Error parsing {filename}: {e}. Using defaults.")
            return {}

    def get(self, *keys, default=None):
        """Get a nested configuration value, falling back to built-in defaults."""
        value = self.game_settings
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return _lookup(DEFAULTS, keys, default)
        return value

    @property
    def max_players(self) -> int:
        return int(self.get("rooms", "max_players"))

    @property
    def min_players(self) -> int:
        return int(self.get("rooms", "min_players"))

    @property
    def room_code_length(self) -> int:
        return int(self.get("rooms", "room_code_length"))

    @property
    def turn_time_limit_seconds(self) -> float:
        return float(self.get("turns", "turn_time_limit_seconds"))

    @property
    def reconnect_grace_seconds(self) -> float:
        return float(self.get("connections", "reconnect_grace_seconds"))

    @property
    def send_queue_size(self) -> int:
        return int(self.get("connections", "send_queue_size"))

    @property
    def send_timeout_seconds(self) -> float:
        return float(self.get("connections", "send_timeout_seconds"))

    @property
    def max_chat_length(self) -> int:
        return int(self.get("chat", "max_message_length"))


def _lookup(tree: Dict[str, Any], keys, default):
    value: Any = tree
    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default
    return value
