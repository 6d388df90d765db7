"""File-backed storage for the guard mode and its configuration.

Storage path: ``~/.devmode/state.json`` holding:
- ``state`` -- ``"active"`` or ``"protected"``
- ``options`` -- the configuration record
- ``auto_reverted`` -- one-shot notice flag raised by the revert scheduler

Writes go through a temporary file and ``os.replace`` so concurrent readers
never see a half-written document. Every read-modify-write holds an
exclusive ``flock`` on ``state.json.lock``, so writers touching different
fields never undo each other.
"""

from __future__ import annotations

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional

from devmode.errors import PersistenceError
from devmode.security.requester import SYSTEM, Requester
from devmode.state.models import Configuration, Mode

logger = logging.getLogger(__name__)

StateListener = Callable[[Mode, Mode, Requester], None]


class StateStore:
    """Single source of truth for the current mode."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else Path.home() / ".devmode" / "state.json"
        self._listeners: list[StateListener] = []

    @property
    def path(self) -> Path:
        return self._path

    @property
    def _lock_path(self) -> Path:
        return self._path.with_name(self._path.name + ".lock")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            text = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Cannot read {self._path}: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.error("Corrupt state file %s, using protected defaults", self._path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".state-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(json.dumps(data, indent=2))
                os.replace(tmp, self._path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            raise PersistenceError(f"Cannot write {self._path}: {exc}") from exc

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the exclusive writer lock for one read-modify-write."""
        lock_path = self._lock_path
        try:
            lock_path.parent.mkdir(parents=True, exist_ok=True)
            fh = open(lock_path, "a")
        except OSError as exc:
            raise PersistenceError(f"Cannot open lock {lock_path}: {exc}") from exc
        with fh:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)

    def _update(self, **fields: object) -> None:
        with self._locked():
            data = self._read()
            data.update(fields)
            self._write(data)

    # ------------------------------------------------------------------
    # Mode
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> None:
        """Register a reaction to mode changes. Called in registration order."""
        self._listeners.append(listener)

    def is_initialized(self) -> bool:
        return "state" in self._read()

    @staticmethod
    def _mode_of(data: dict) -> Mode:
        try:
            return Mode(data.get("state"))
        except ValueError:
            return Mode.protected

    @staticmethod
    def _config_of(data: dict) -> Configuration:
        options = data.get("options")
        if not isinstance(options, dict):
            return Configuration()
        return Configuration.from_input(options)

    def get_mode(self) -> Mode:
        return self._mode_of(self._read())

    def set_mode(self, target: Mode, requester: Requester = SYSTEM) -> bool:
        """Persist ``target`` and notify listeners if the mode changed.

        Setting the current mode again succeeds without side effects. Each
        listener is isolated: one failing never stops the rest.
        """
        target = Mode(target)
        with self._locked():
            data = self._read()
            old = self._mode_of(data)
            data["state"] = target.value
            self._write(data)
        if old is target:
            return True

        for listener in list(self._listeners):
            try:
                listener(target, old, requester)
            except Exception:
                logger.exception("State change listener %r failed", listener)
        return True

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def get_config(self) -> Configuration:
        return self._config_of(self._read())

    def update_config(self, data: dict) -> Configuration:
        """Validate ``data`` against the current configuration and save it."""
        with self._locked():
            stored = self._read()
            config = Configuration.from_input(data, base=self._config_of(stored))
            stored["options"] = config.to_dict()
            self._write(stored)
        return config

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def seed_defaults(self) -> None:
        """Write the protected default state and options if absent."""
        with self._locked():
            data = self._read()
            changed = False
            if "state" not in data:
                data["state"] = Mode.protected.value
                changed = True
            if not isinstance(data.get("options"), dict):
                data["options"] = Configuration().to_dict()
                changed = True
            if changed:
                self._write(data)

    def raise_notice(self) -> None:
        self._update(auto_reverted=True)

    def consume_notice(self) -> bool:
        """Return and clear the auto-revert notice flag."""
        with self._locked():
            data = self._read()
            if not data.get("auto_reverted"):
                return False
            data["auto_reverted"] = False
            self._write(data)
        return True

    def delete(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
            self._lock_path.unlink(missing_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot delete {self._path}: {exc}") from exc
