"""Identity and source address of whoever triggered a guarded operation.

The host has already authenticated the requester; devmode only records who
it was and where the request came from.
"""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Mapping, Optional

# Checked in order. Proxy headers are only trusted when they carry a public
# address.
IP_HEADERS = (
    "CF-Connecting-IP",
    "X-Forwarded-For",
    "X-Forwarded",
    "Forwarded-For",
    "Forwarded",
)


@dataclass(frozen=True)
class Requester:
    """Who is asking. ``user_id`` 0 means an anonymous visitor."""

    user_id: int = 0
    user_name: str = ""
    client_ip: str = "unknown"
    user_agent: str = ""
    request_uri: str = ""
    referer: str = ""
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        return self.user_name or "guest"


SYSTEM = Requester(user_id=0, user_name="system", client_ip="127.0.0.1")


def _is_public(ip: str) -> bool:
    try:
        return ipaddress.ip_address(ip).is_global
    except ValueError:
        return False


def resolve_client_ip(
    headers: Mapping[str, str], remote_addr: Optional[str] = None
) -> str:
    """Pick the most plausible client address from request headers.

    The first proxy header holding a public address wins; comma-separated
    chains contribute their first hop. Otherwise the socket address is
    returned verbatim, or ``"unknown"`` when there is none.
    """
    lowered = {k.lower(): v for k, v in headers.items()}
    candidates = [lowered.get(h.lower(), "") for h in IP_HEADERS]
    candidates.append(remote_addr or "")

    for raw in candidates:
        value = (raw or "").strip()
        if not value:
            continue
        if "," in value:
            value = value.split(",")[0].strip()
        if _is_public(value):
            return value

    return (remote_addr or "").strip() or "unknown"
