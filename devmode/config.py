"""Runtime settings for devmode.

Settings are read from a YAML file. Lookup order is an explicit path, then
``$DEVMODE_CONFIG``, then ``~/.devmode/config.yaml``. A missing file yields
the defaults, so a fresh install needs no configuration at all.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_HOME = Path.home() / ".devmode"


@dataclass
class Settings:
    """Where devmode keeps its files and what server it is hardening for."""

    data_dir: Path = DEFAULT_HOME
    log_file: Optional[Path] = None
    uploads_dir: Optional[Path] = None
    server_software: str = ""
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir).expanduser()
        if self.log_file is None:
            self.log_file = self.data_dir / "devmode.log"
        else:
            self.log_file = Path(self.log_file).expanduser()
        if self.uploads_dir is None:
            self.uploads_dir = self.data_dir / "uploads"
        else:
            self.uploads_dir = Path(self.uploads_dir).expanduser()

    @property
    def state_file(self) -> Path:
        return self.data_dir / "state.json"

    @property
    def schedule_file(self) -> Path:
        return self.data_dir / "schedule.json"


_FIELDS = ("data_dir", "log_file", "uploads_dir", "server_software", "log_level")


def _resolve_path(path: Optional[str | Path]) -> Path:
    if path is not None:
        return Path(path).expanduser()
    env = os.environ.get("DEVMODE_CONFIG")
    if env:
        return Path(env).expanduser()
    return DEFAULT_HOME / "config.yaml"


def load_settings(path: Optional[str | Path] = None) -> Settings:
    """Load settings from YAML, falling back to defaults."""
    config_path = _resolve_path(path)
    data: dict = {}
    if config_path.exists():
        try:
            with open(config_path) as f:
                loaded = yaml.safe_load(f)
        except (yaml.YAMLError, OSError) as exc:
            logger.error("Could not read settings from %s: %s", config_path, exc)
            loaded = None
        if isinstance(loaded, dict):
            data = {k: v for k, v in loaded.items() if k in _FIELDS and v is not None}

    if "server_software" not in data and os.environ.get("SERVER_SOFTWARE"):
        data["server_software"] = os.environ["SERVER_SOFTWARE"]

    return Settings(**data)
