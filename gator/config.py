"""Reading and writing the per-user configuration file."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_FILE_NAME = ".gatorconfig.json"


def config_file_path() -> Path:
    """Return the location of the configuration file in the user's home directory."""
    return Path.home() / CONFIG_FILE_NAME


@dataclass
class Config:
    """Database URL and the name of the logged-in user."""

    db_url: str = ""
    user_name: str = ""
    path: Path | None = field(default=None, repr=False, compare=False)

    def set_user(self, user: str) -> None:
        """Make ``user`` the current user and persist the configuration."""
        self.user_name = user
        self.save()

    def save(self) -> None:
        """Write the configuration back to its file."""
        target = self.path if self.path is not None else config_file_path()
        payload = {"db_url": self.db_url, "user_name": self.user_name}
        Path(target).write_text(json.dumps(payload, indent=1) + "\n", encoding="utf-8")


def load_config(path: Path | str | None = None) -> Config:
    """Load the configuration file.

    Raises ``OSError`` if the file cannot be read and ``ValueError`` if it
    does not hold a JSON object.
    """
    target = Path(path) if path is not None else config_file_path()
    with target.open(encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Error decoding config file: expected an object in {target}")
    db_url = data.get("db_url", "")
    user_name = data.get("user_name", "")
    if not isinstance(db_url, str) or not isinstance(user_name, str):
        raise ValueError(f"Error decoding config file: string values expected in {target}")
    return Config(db_url=db_url, user_name=user_name, path=target)