"""Requester middleware -- FastAPI dependencies for identifying the caller.

The host platform authenticates users before requests reach this API and
forwards the result in trusted headers:

1. ``X-DevMode-User-Id`` / ``X-DevMode-User`` -- who the user is
2. ``X-DevMode-Can-Manage: 1`` -- the host granted the manage capability
3. ``X-DevMode-Admin: 1`` -- the request comes from the admin area

The client address is resolved from proxy headers the same way audit
entries record it.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from devmode.security.requester import Requester, resolve_client_ip


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


async def get_requester(
    request: Request,
    x_devmode_user_id: Optional[str] = Header(None, alias="X-DevMode-User-Id"),
    x_devmode_user: Optional[str] = Header(None, alias="X-DevMode-User"),
    x_devmode_admin: Optional[str] = Header(None, alias="X-DevMode-Admin"),
) -> Requester:
    """FastAPI dependency that builds the :class:`Requester` for a request."""
    try:
        user_id = int(x_devmode_user_id or 0)
    except ValueError:
        user_id = 0
    remote = request.client.host if request.client else None
    return Requester(
        user_id=user_id,
        user_name=x_devmode_user or "",
        client_ip=resolve_client_ip(dict(request.headers), remote),
        user_agent=request.headers.get("user-agent", ""),
        request_uri=str(request.url.path),
        referer=request.headers.get("referer", ""),
        is_admin=_flag(x_devmode_admin),
    )


async def require_manager(
    requester: Requester = Depends(get_requester),
    x_devmode_can_manage: Optional[str] = Header(None, alias="X-DevMode-Can-Manage"),
) -> Requester:
    """Same as ``get_requester`` but raises ``403`` unless the host granted
    the manage capability."""
    if not _flag(x_devmode_can_manage):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to perform this action.",
        )
    return requester
