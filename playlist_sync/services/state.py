from __future__ import annotations
import hmac, json, os, time, hashlib
from base64 import urlsafe_b64encode, urlsafe_b64decode
from typing import Any, Dict
from playlist_sync.core.config import settings

STATE_PURPOSE = "youtube_link"
MIN_TTL_SECONDS = 30

class StateError(RuntimeError):
    pass

def _b64e(b: bytes) -> str:
    return urlsafe_b64encode(b).rstrip(b"=").decode("ascii")

def _b64d(s: str) -> bytes:
    pad = '=' * (-len(s) % 4)
    return urlsafe_b64decode((s + pad).encode("ascii"))

def _sign(message: bytes) -> str:
    if not settings.API_INTERNAL_KEY:
        raise StateError("API_INTERNAL_KEY is empty; cannot sign OAuth state")
    key = settings.API_INTERNAL_KEY.encode("utf-8")
    return _b64e(hmac.new(key, message, hashlib.sha256).digest())

def create_state(initiator: str = "admin", ttl_seconds: int = 600) -> str:
    """
    Signed, short-lived `state` for the YouTube consent round trip.
    `initiator` identifies who started the link (an admin id); the linked
    account itself is only known after the callback.
    """
    if not initiator:
        raise StateError("initiator required")

    ttl = max(int(ttl_seconds), MIN_TTL_SECONDS)
    now = int(time.time())
    payload: Dict[str, Any] = {
        "i": initiator,
        "p": STATE_PURPOSE,
        "iat": now,
        "exp": now + ttl,
        "n": _b64e(os.urandom(8)),
    }

    body = _b64e(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{body}.{_sign(body.encode('utf-8'))}"

def verify_state(token: str, leeway_seconds: int = 5) -> Dict[str, Any]:
    try:
        body, sig = token.split(".")
    except ValueError as e:
        raise StateError("Malformed state") from e

    if not hmac.compare_digest(sig, _sign(body.encode("utf-8"))):
        raise StateError("Invalid state signature")

    try:
        payload = json.loads(_b64d(body).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise StateError("Invalid state payload") from e

    if payload.get("p") != STATE_PURPOSE:
        raise StateError("Unexpected state purpose")

    try:
        exp = int(payload["exp"])
        iat = int(payload["iat"])
    except (KeyError, TypeError, ValueError) as e:
        raise StateError("Invalid exp/iat in state") from e

    now = int(time.time())
    if iat - now > leeway_seconds:
        raise StateError("State issued in the future")
    if now - exp > leeway_seconds:
        raise StateError("State expired")
    if not payload.get("i"):
        raise StateError("Missing initiator in state")

    return payload
