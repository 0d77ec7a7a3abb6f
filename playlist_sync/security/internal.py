from __future__ import annotations
import hmac
import ipaddress
from typing import Iterable, Optional

from fastapi import Header, HTTPException, Request

from playlist_sync.core.config import settings

_HOST_ALIASES = {"localhost": "127.0.0.1"}

def _caller_ip(request: Request) -> str:
    # behind a proxy the first X-Forwarded-For hop is the platform backend
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""

def ip_allowed(caller: str, allowed: Iterable[str]) -> bool:
    """Empty allowlist disables the check. Entries are exact hosts or CIDR ranges."""
    entries = [_HOST_ALIASES.get(e.strip().lower(), e.strip()) for e in allowed if e.strip()]
    if not entries:
        return True
    try:
        addr = ipaddress.ip_address(caller)
    except ValueError:
        return caller in entries
    for entry in entries:
        try:
            if addr in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            if caller == entry:
                return True
    return False

async def require_internal(
    request: Request,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
):
    """Linking and sync endpoints are only called by the platform's admin backend."""
    expected = settings.API_INTERNAL_KEY
    if not (expected and x_api_key and hmac.compare_digest(x_api_key, expected)):
        raise HTTPException(status_code=401, detail="missing or invalid X-API-Key")
    if not ip_allowed(_caller_ip(request), settings.INTERNAL_ALLOWED_IPS):
        raise HTTPException(status_code=403, detail="ip_not_allowed")
