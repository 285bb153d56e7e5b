"""Reading and writing the user's JSON configuration file."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_FILE_NAME = ".gatorconfig.json"
CONFIG_PATH_ENV = "GATOR_CONFIG_PATH"

_FIELDS = ("db_url", "current_user_name")


def config_file_path() -> Path:
    """Return the config file location, honouring GATOR_CONFIG_PATH."""
    custom = os.environ.get(CONFIG_PATH_ENV)
    if custom:
        return Path(custom)
    return Path.home() / CONFIG_FILE_NAME


@dataclass
class Config:
    """Database URL and the name of the logged-in user."""

    db_url: str = ""
    current_user_name: str = ""
    path: Path | None = field(default=None, repr=False, compare=False)

    def as_dict(self) -> dict[str, str]:
        return {"db_url": self.db_url, "current_user_name": self.current_user_name}

    def set_user(self, name: str) -> None:
        """Make ``name`` the current user and save the file."""
        self.current_user_name = name
        self.write()

    def write(self) -> None:
        """Save the configuration as indented JSON."""
        target = self.path if self.path is not None else config_file_path()
        target.write_text(json.dumps(self.as_dict(), indent=2), encoding="utf-8")


def read(path: str | os.PathLike[str] | None = None) -> Config:
    """Load the configuration from ``path`` or the default location."""
    target = Path(path) if path is not None else config_file_path()
    data = json.loads(target.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"config file {target} must hold a JSON object")
    values: dict[str, str] = {}
    for key in _FIELDS:
        value = data.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValueError(f"config field {key!r} must be a string")
        values[key] = value
    return Config(path=target, **values)