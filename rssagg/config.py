"""Reading and writing the per-user JSON configuration file."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

__all__ = ["Config", "read"]

CONFIG_FILE_NAME = ".gatorconfig.json"


def _default_path() -> Path:
    return Path.home() / CONFIG_FILE_NAME


def _resolve(path) -> Path:
    return Path(path) if path is not None else _default_path()


def _string_field(data: dict, key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"config field {key!r} must be a string")
    return value


@dataclass
class Config:
    """Database URL and the name of the current user."""

    db_url: str = ""
    current_user: str = ""

    def set_user(self, username: str, path=None) -> None:
        """Set the current user and write the configuration to disk."""
        self.current_user = username
        document = {"db_url": self.db_url, "current_user_name": self.current_user}
        _resolve(path).write_text(json.dumps(document, indent=2), encoding="utf-8")


def read(path=None) -> Config:
    """Load the configuration, by default from ``~/.gatorconfig.json``."""
    data = json.loads(_resolve(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("config must be a JSON object")
    return Config(
        db_url=_string_field(data, "db_url"),
        current_user=_string_field(data, "current_user_name"),
    )