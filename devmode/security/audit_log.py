"""Audit logging for devmode.

Every state change and every blocked action becomes one line in a plain
text log (``~/.devmode/devmode.log`` by default)::

    [2025-01-01 12:00:00] STATE_CHANGE: ACTIVE → PROTECTED | User: admin (ID: 1) | IP: 203.0.113.9
    [2025-01-01 12:05:00] BLOCKED_PLUGINS_API: Action blocked in Protected mode | User: admin (ID: 1) | IP: 203.0.113.9 | Details: action=query_plugins

The log is append-only and bounded: once it grows past 2 MB the next append
first truncates it to the newest 1000 lines. Appends hold an exclusive
``flock`` so concurrent processes never interleave partial lines.
"""

from __future__ import annotations

import fcntl
import json
import logging
import re
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

from devmode.security.requester import Requester
from devmode.state.models import Mode

logger = logging.getLogger(__name__)

MAX_LOG_BYTES = 2 * 1024 * 1024
ROTATE_KEEP_LINES = 1000
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

_LINE_CATEGORY = re.compile(r"^\[[^\]]*\] ([A-Z_]+):")


class AuditCategory(str, Enum):
    """What an audit line records."""

    STATE_CHANGE = "STATE_CHANGE"
    BLOCKED_DANGEROUS_FILE_UPLOAD = "BLOCKED_DANGEROUS_FILE_UPLOAD"
    BLOCKED_FILE_MODIFICATION = "BLOCKED_FILE_MODIFICATION"
    BLOCKED_PLUGINS_API = "BLOCKED_PLUGINS_API"
    BLOCKED_UPGRADER_DOWNLOAD = "BLOCKED_UPGRADER_DOWNLOAD"
    BLOCKED_UPGRADER_INSTALL = "BLOCKED_UPGRADER_INSTALL"
    BLOCKED_USER_CREATION = "BLOCKED_USER_CREATION"
    BLOCKED_USER_CAPABILITY = "BLOCKED_USER_CAPABILITY"
    BLOCKED_USER_REGISTRATION = "BLOCKED_USER_REGISTRATION"
    BLOCKED_REST_USER_CREATION = "BLOCKED_REST_USER_CREATION"
    BLOCKED_ADMIN_FILE_EDITING = "BLOCKED_ADMIN_FILE_EDITING"

    @property
    def family(self) -> AuditCategory:
        """The top-level category this variant is reported under."""
        return _FAMILIES.get(self, self)

    @property
    def is_blocked(self) -> bool:
        return self is not AuditCategory.STATE_CHANGE

    @property
    def description(self) -> str:
        return LEGEND[self.family]


_FAMILIES = {
    AuditCategory.BLOCKED_UPGRADER_DOWNLOAD: AuditCategory.BLOCKED_PLUGINS_API,
    AuditCategory.BLOCKED_UPGRADER_INSTALL: AuditCategory.BLOCKED_PLUGINS_API,
    AuditCategory.BLOCKED_USER_CAPABILITY: AuditCategory.BLOCKED_USER_CREATION,
    AuditCategory.BLOCKED_USER_REGISTRATION: AuditCategory.BLOCKED_USER_CREATION,
    AuditCategory.BLOCKED_REST_USER_CREATION: AuditCategory.BLOCKED_USER_CREATION,
}

LEGEND = {
    AuditCategory.STATE_CHANGE: "Dev.Mode state was changed between Active and Protected",
    AuditCategory.BLOCKED_DANGEROUS_FILE_UPLOAD: "Attempt to upload PHP or other dangerous files",
    AuditCategory.BLOCKED_FILE_MODIFICATION: "Attempt to modify files through the host",
    AuditCategory.BLOCKED_PLUGINS_API: "Attempt to access plugin installation/update API",
    AuditCategory.BLOCKED_USER_CREATION: "Attempt to create new user accounts",
    AuditCategory.BLOCKED_ADMIN_FILE_EDITING: "Attempt to access file editors in admin",
}


@dataclass(frozen=True)
class AuditEntry:
    """A single audit log entry."""

    timestamp: str
    category: AuditCategory
    actor_id: int = 0
    actor_name: str = ""
    client_ip: str = "unknown"
    details: Mapping[str, Any] = field(default_factory=dict)

    def format(self) -> str:
        """Render the entry as exactly one log line, without the newline."""
        user = f"User: {self.actor_name or 'guest'} (ID: {self.actor_id or 0})"
        if self.category is AuditCategory.STATE_CHANGE:
            old = str(self.details.get("from", "")).upper()
            new = str(self.details.get("to", "")).upper()
            line = (
                f"[{self.timestamp}] STATE_CHANGE: {old} → {new} "
                f"| {user} | IP: {self.client_ip}"
            )
        else:
            line = (
                f"[{self.timestamp}] {self.category.value}: "
                f"Action blocked in Protected mode | {user} | IP: {self.client_ip}"
            )
            if self.details:
                pairs = [f"{k}={_format_value(v)}" for k, v in self.details.items()]
                line += " | Details: " + ", ".join(pairs)
        return _single_line(line)


def _format_value(value: Any) -> str:
    if isinstance(value, (dict, list, tuple, bool)) or value is None:
        return json.dumps(value, default=str)
    return str(value)


def _single_line(text: str) -> str:
    # One entry per line.
    return text.replace("\r", " ").replace("\n", " ")


def line_category(line: str) -> Optional[AuditCategory]:
    """Recover the category from a formatted log line."""
    match = _LINE_CATEGORY.match(line)
    if not match:
        return None
    try:
        return AuditCategory(match.group(1))
    except ValueError:
        return None


class AuditLogger:
    """Rotating, lock-protected text audit log."""

    def __init__(
        self,
        log_file: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._log_file = Path(log_file) if log_file else Path.home() / ".devmode" / "devmode.log"
        self._base_dir = self._log_file.parent
        self._clock = clock

    @property
    def log_file(self) -> Path:
        return self._log_file

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _timestamp(self) -> str:
        return datetime.fromtimestamp(self._clock()).strftime(TIMESTAMP_FORMAT)

    def _safe_path(self) -> Optional[Path]:
        """Return the resolved log path, or None if it escapes the log dir."""
        base = self._base_dir.resolve()
        real = self._log_file.resolve()
        if base not in real.parents:
            logger.error("Audit log %s resolves outside %s", real, base)
            return None
        return real

    @staticmethod
    def _rotate_locked(fh) -> None:
        fh.seek(0, 2)
        if fh.tell() <= MAX_LOG_BYTES:
            return
        fh.seek(0)
        lines = [line for line in fh.read().splitlines() if line.strip()]
        kept = lines[-ROTATE_KEEP_LINES:]
        fh.seek(0)
        fh.truncate()
        fh.write("\n".join(kept) + "\n" if kept else "")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append(self, entry: AuditEntry) -> bool:
        """Append one entry. Returns False (and logs why) on any failure."""
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.exception("Cannot create audit log directory %s", self._base_dir)
            return False
        path = self._safe_path()
        if path is None:
            return False
        try:
            with open(path, "a+", encoding="utf-8", errors="replace") as fh:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
                try:
                    self._rotate_locked(fh)
                    fh.write(entry.format() + "\n")
                    fh.flush()
                finally:
                    fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
        except OSError:
            logger.exception("Failed to write audit entry to %s", path)
            return False
        return True

    def record_state_change(
        self, new_mode: Mode, old_mode: Mode, requester: Requester
    ) -> AuditEntry:
        """Log a transition and return the created entry."""
        entry = AuditEntry(
            timestamp=self._timestamp(),
            category=AuditCategory.STATE_CHANGE,
            actor_id=requester.user_id,
            actor_name=requester.display_name,
            client_ip=requester.client_ip,
            details={"from": Mode(old_mode).value, "to": Mode(new_mode).value},
        )
        self.append(entry)
        return entry

    def record_blocked(
        self,
        category: AuditCategory,
        requester: Requester,
        details: Optional[Mapping[str, Any]] = None,
    ) -> AuditEntry:
        """Log a denied operation and return the created entry."""
        entry = AuditEntry(
            timestamp=self._timestamp(),
            category=category,
            actor_id=requester.user_id,
            actor_name=requester.display_name,
            client_ip=requester.client_ip,
            details=dict(details or {}),
        )
        self.append(entry)
        return entry

    def recent(self, limit: int = 50) -> list[str]:
        """Return the newest ``limit`` lines, newest first."""
        if limit <= 0:
            return []
        if not self._log_file.exists():
            return []
        path = self._safe_path()
        if path is None:
            return []
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            logger.exception("Failed to read audit log %s", path)
            return []
        lines = [line for line in text.splitlines() if line.strip()]
        return list(reversed(lines[-limit:]))

    def clear(self) -> None:
        path = self._safe_path()
        if path is not None:
            path.unlink(missing_ok=True)
