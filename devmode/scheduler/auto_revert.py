"""Durable one-shot revert back to Protected mode.

There is no timer thread. The pending revert is a record in
``~/.devmode/schedule.json`` and the host's task runner (cron, a worker, or
``devmode run-due``) calls :meth:`AutoRevertScheduler.run_due` now and then.
A due record is deleted before its callback runs, so it fires at most once.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional

from devmode.errors import PersistenceError

logger = logging.getLogger(__name__)

HOUR_IN_SECONDS = 3600
REVERT_HOOK = "devmode_auto_revert"


@dataclass(frozen=True)
class ScheduledRevert:
    """A pending revert, identified by the time it becomes due."""

    timestamp: float
    hook: str = REVERT_HOOK

    def is_due(self, now: float) -> bool:
        return self.timestamp <= now


class AutoRevertScheduler:
    """Holds at most one pending :class:`ScheduledRevert`."""

    def __init__(
        self,
        path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(path) if path else Path.home() / ".devmode" / "schedule.json"
        self._clock = clock
        self._callback: Optional[Callable[[], None]] = None

    def set_callback(self, callback: Callable[[], None]) -> None:
        """Set what runs when a revert becomes due."""
        self._callback = callback

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _load(self) -> Optional[ScheduledRevert]:
        if not self._path.exists():
            return None
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
            return ScheduledRevert(timestamp=float(data["timestamp"]), hook=data.get("hook", REVERT_HOOK))
        except (OSError, ValueError, KeyError, TypeError):
            logger.error("Unreadable revert schedule %s, discarding it", self._path)
            return None

    def _save(self, record: ScheduledRevert) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self._path.parent, prefix=".schedule-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(json.dumps(asdict(record)))
                os.replace(tmp, self._path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            raise PersistenceError(f"Cannot write {self._path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def schedule(self, hours: int) -> Optional[ScheduledRevert]:
        """Replace any pending revert with one ``hours`` from now.

        ``hours`` of zero or less only cancels.
        """
        self.cancel()
        if hours <= 0:
            return None
        record = ScheduledRevert(timestamp=self._clock() + hours * HOUR_IN_SECONDS)
        self._save(record)
        logger.info("Auto-revert scheduled for %s", record.timestamp)
        return record

    def cancel(self) -> bool:
        """Drop the pending revert. Returns True if one existed."""
        if not self._path.exists():
            return False
        try:
            self._path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise PersistenceError(f"Cannot delete {self._path}: {exc}") from exc
        return True

    def next_scheduled(self) -> Optional[ScheduledRevert]:
        return self._load()

    def hours_until_revert(self) -> Optional[float]:
        record = self._load()
        if record is None:
            return None
        return round(max(0.0, record.timestamp - self._clock()) / HOUR_IN_SECONDS, 1)

    def run_due(self) -> bool:
        """Fire the pending revert if it is due. Returns True if it fired."""
        record = self._load()
        if record is None or not record.is_due(self._clock()):
            return False
        self.cancel()
        if self._callback is not None:
            self._callback()
        return True
