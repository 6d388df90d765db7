"""Exception taxonomy shared by the guard components."""

from __future__ import annotations

from typing import Optional


class DevModeError(Exception):
    """Base class for every error raised by devmode."""


class PersistenceError(DevModeError):
    """State or configuration could not be read or written."""


class ValidationError(DevModeError):
    """Configuration input could not be interpreted at all."""


class FilesystemError(DevModeError):
    """A hardening file could not be read or written.

    Raised internally by the hardener and always converted into a logged
    ``False`` return before it reaches a caller.
    """


class DenialError(DevModeError):
    """A guarded operation was refused.

    This is the designed outcome of a Protected-mode decision, not a fault.
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        category: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.category = category

    def to_dict(self) -> dict:
        data = {"code": "devmode_protected", "message": self.message}
        if self.status is not None:
            data["data"] = {"status": self.status}
        return data
