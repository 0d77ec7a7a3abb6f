from __future__ import annotations
import time
from typing import Dict, Optional, Tuple
from fastapi import Header, HTTPException
from playlist_sync.core.config import settings

# Fixed-window counters held in-process.
# Keys: ("key", api_key) or ("sync", api_key) -> (window_start_epoch, count)
_counters: Dict[Tuple[str, ...], Tuple[int, int]] = {}

def _bump(key: Tuple[str, ...], max_requests: int, window_seconds: int) -> None:
    now = int(time.time())
    window = now - (now % window_seconds)
    start, count = _counters.get(key, (window, 0))
    if start != window:
        start, count = window, 0
    count += 1
    _counters[key] = (start, count)
    if count > max_requests:
        retry_after = start + window_seconds - now
        raise HTTPException(
            status_code=429,
            detail="rate_limit_exceeded",
            headers={"Retry-After": str(max(0, retry_after))},
        )

def reset_counters() -> None:
    _counters.clear()

async def limit_by_api_key(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")):
    if not x_api_key:
        raise HTTPException(status_code=401, detail="missing or invalid X-API-Key")
    _bump(("key", x_api_key), settings.RATE_LIMIT_MAX_PER_KEY, settings.RATE_LIMIT_WINDOW_SECONDS)

async def limit_sync_triggers(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")):
    """Sync runs burn YouTube quota; they get the tighter per-user budget."""
    if not x_api_key:
        raise HTTPException(status_code=401, detail="missing or invalid X-API-Key")
    _bump(("sync", x_api_key), settings.RATE_LIMIT_MAX_PER_USER, settings.RATE_LIMIT_WINDOW_SECONDS)
