"""Dev.Mode state, settings, audit and hardening API router.

Prefix: ``/api/devmode``
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from devmode.core import DevModeGuard
from devmode.errors import PersistenceError
from devmode.security.audit_log import line_category
from devmode.security.requester import Requester
from web.backend.app.middleware.auth import require_manager
from web.backend.app.models.api import (
    CapabilitiesResponse,
    HardeningStatusResponse,
    LogEntryResponse,
    NoticeResponse,
    SettingsResponse,
    StateResponse,
    ToggleResponse,
    UpdateSettingsRequest,
)

router = APIRouter(prefix="/api/devmode", tags=["devmode"])

# ---------------------------------------------------------------------------
# Shared guard instance (singleton for the running process)
# ---------------------------------------------------------------------------
_guard: Optional[DevModeGuard] = None


def get_guard() -> DevModeGuard:
    """Return the singleton DevModeGuard instance."""
    global _guard
    if _guard is None:
        _guard = DevModeGuard()
        _guard.bootstrap()
    return _guard


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _log_entry_to_response(line: str) -> LogEntryResponse:
    category = line_category(line)
    if category is None:
        kind = "other"
    elif category.is_blocked:
        kind = "blocked-action"
    else:
        kind = "state-change"
    return LogEntryResponse(
        line=line, category=category.value if category else None, kind=kind
    )


# =========================================================================
# State endpoints
# =========================================================================


@router.get("/state", response_model=StateResponse)
async def get_state(guard: DevModeGuard = Depends(get_guard)):
    """Return the current mode and the host capabilities it implies."""
    mode = guard.mode
    return StateResponse(
        mode=mode.value,
        label=mode.label,
        hours_until_revert=guard.hours_until_revert(),
        capabilities=CapabilitiesResponse(**asdict(guard.capabilities())),
    )


@router.post("/toggle", response_model=ToggleResponse)
async def toggle_state(
    guard: DevModeGuard = Depends(get_guard),
    requester: Requester = Depends(require_manager),
):
    """Switch between Active and Protected."""
    try:
        result = guard.toggle(requester)
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to change Dev.Mode state.")
    return ToggleResponse(new_state=result.new_mode.value, message=result.message)


@router.get("/notice", response_model=NoticeResponse)
async def get_notice(
    guard: DevModeGuard = Depends(get_guard),
    requester: Requester = Depends(require_manager),
):
    """Return, and clear, the auto-revert notice."""
    if guard.consume_notice():
        return NoticeResponse(
            auto_reverted=True,
            message="Dev.Mode has been automatically reverted to Protected state.",
        )
    return NoticeResponse()


# =========================================================================
# Settings endpoints
# =========================================================================


@router.get("/settings", response_model=SettingsResponse)
async def get_settings(guard: DevModeGuard = Depends(get_guard)):
    """Return the current options."""
    return SettingsResponse(**guard.config.to_dict())


@router.put("/settings", response_model=SettingsResponse)
async def update_settings(
    body: UpdateSettingsRequest,
    guard: DevModeGuard = Depends(get_guard),
    requester: Requester = Depends(require_manager),
):
    """Update options. Out-of-range values are clamped, not rejected."""
    try:
        config = guard.update_config(body.model_dump(exclude_none=True))
    except PersistenceError:
        raise HTTPException(status_code=500, detail="Failed to save Dev.Mode settings.")
    return SettingsResponse(**config.to_dict())


# =========================================================================
# Audit & hardening endpoints
# =========================================================================


@router.get("/log", response_model=list[LogEntryResponse])
async def list_log_entries(
    limit: int = Query(20, ge=1, le=1000),
    guard: DevModeGuard = Depends(get_guard),
    requester: Requester = Depends(require_manager),
):
    """Return the newest audit lines, newest first."""
    return [_log_entry_to_response(line) for line in guard.audit.recent(limit)]


@router.get("/hardening", response_model=HardeningStatusResponse)
async def get_hardening_status(
    guard: DevModeGuard = Depends(get_guard),
    requester: Requester = Depends(require_manager),
):
    """Report the uploads directory rule files."""
    result = guard.hardener.status()
    return HardeningStatusResponse(**asdict(result), is_protected=result.is_protected)
