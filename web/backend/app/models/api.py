"""Pydantic models for API request/response serialization.

These models mirror the devmode dataclasses and provide proper JSON
serialization for the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# State models
# ---------------------------------------------------------------------------


class CapabilitiesResponse(BaseModel):
    """Mirrors devmode.state.models.HostCapabilities."""

    disallow_file_edit: bool = False
    disallow_file_mods: bool = False
    automatic_updater_disabled: bool = False


class StateResponse(BaseModel):
    """Current mode and what the host should enforce for it."""

    mode: str
    label: str
    hours_until_revert: Optional[float] = None
    capabilities: CapabilitiesResponse = Field(default_factory=CapabilitiesResponse)


class ToggleResponse(BaseModel):
    """Mirrors devmode.core.ToggleResult."""

    new_state: str
    message: str


class NoticeResponse(BaseModel):
    """One-shot notice shown after an automatic revert."""

    auto_reverted: bool = False
    message: str = ""


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class SettingsResponse(BaseModel):
    """Mirrors devmode.state.models.Configuration."""

    block_user_creation: bool = True
    disable_file_modifications: bool = True
    block_uploads_php: bool = True
    auto_revert_hours: int = 0


class UpdateSettingsRequest(BaseModel):
    """Partial update. Values are coerced and clamped server-side."""

    block_user_creation: Optional[bool | int | str] = None
    disable_file_modifications: Optional[bool | int | str] = None
    block_uploads_php: Optional[bool | int | str] = None
    auto_revert_hours: Optional[int | str] = None


# ---------------------------------------------------------------------------
# Audit & hardening models
# ---------------------------------------------------------------------------


class LogEntryResponse(BaseModel):
    """A formatted audit line plus its parsed category."""

    line: str
    category: Optional[str] = None
    kind: str = "other"  # state-change | blocked-action | other


class HardeningStatusResponse(BaseModel):
    """Mirrors devmode.security.hardener.HardeningStatus."""

    uploads_path: str
    htaccess_exists: bool = False
    htaccess_protected: bool = False
    webconfig_exists: bool = False
    webconfig_protected: bool = False
    writable: bool = False
    is_protected: bool = False
