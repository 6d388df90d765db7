"""Mode and configuration records for the guard."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Mapping, Optional

MAX_AUTO_REVERT_HOURS = 168

_TRUE_STRINGS = {"1", "true", "yes", "on"}


class Mode(str, Enum):
    """Operational state of the guard."""

    active = "active"
    protected = "protected"

    @property
    def label(self) -> str:
        return "Active" if self is Mode.active else "Protected"

    def toggled(self) -> Mode:
        return Mode.protected if self is Mode.active else Mode.active


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def _clamp_hours(value: Any) -> int:
    try:
        hours = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, min(MAX_AUTO_REVERT_HOURS, hours))


@dataclass(frozen=True)
class Configuration:
    """Guard options. Every flag defaults to the safe setting."""

    block_user_creation: bool = True
    disable_file_modifications: bool = True
    block_uploads_php: bool = True
    auto_revert_hours: int = 0

    @classmethod
    def from_input(
        cls, data: Optional[Mapping[str, Any]], base: Optional[Configuration] = None
    ) -> Configuration:
        """Build a configuration from untrusted input.

        Keys missing from ``data`` keep the value from ``base`` (the defaults
        when no base is given). Booleans are coerced and the revert delay is
        clamped to ``[0, 168]``; nothing here raises.
        """
        base = base or cls()
        data = data or {}
        return cls(
            block_user_creation=_coerce_bool(
                data.get("block_user_creation", base.block_user_creation)
            ),
            disable_file_modifications=_coerce_bool(
                data.get("disable_file_modifications", base.disable_file_modifications)
            ),
            block_uploads_php=_coerce_bool(
                data.get("block_uploads_php", base.block_uploads_php)
            ),
            auto_revert_hours=_clamp_hours(
                data.get("auto_revert_hours", base.auto_revert_hours)
            ),
        )

    def to_dict(self) -> dict:
        return asdict(self)


CONFIG_KEYS = tuple(Configuration.__dataclass_fields__)


@dataclass(frozen=True)
class HostCapabilities:
    """Flags the host reads once at startup and treats as read-only."""

    disallow_file_edit: bool = False
    disallow_file_mods: bool = False
    automatic_updater_disabled: bool = False

    @classmethod
    def for_mode(cls, mode: Mode, config: Configuration) -> HostCapabilities:
        if mode is not Mode.protected:
            return cls()
        return cls(
            disallow_file_edit=config.disable_file_modifications,
            disallow_file_mods=config.disable_file_modifications,
            automatic_updater_disabled=True,
        )
