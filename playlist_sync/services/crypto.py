from __future__ import annotations
from base64 import urlsafe_b64decode
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from playlist_sync.core.config import settings

class CryptoError(RuntimeError):
    pass

FERNET_KEY_BYTES = 32

@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """Fernet built from ENCRYPTION_KEY; checked once at startup so bad keys fail early."""
    key = settings.ENCRYPTION_KEY.strip()
    if not key:
        raise CryptoError("ENCRYPTION_KEY is not set; linked YouTube tokens cannot be stored")
    try:
        size = len(urlsafe_b64decode(key.encode()))
    except ValueError as e:
        raise CryptoError("ENCRYPTION_KEY is not urlsafe base64") from e
    if size != FERNET_KEY_BYTES:
        raise CryptoError(f"ENCRYPTION_KEY decodes to {size} bytes, expected {FERNET_KEY_BYTES}")
    return Fernet(key.encode())

def encrypt_str(plaintext: str) -> str:
    return get_fernet().encrypt(plaintext.encode()).decode()

def decrypt_str(ciphertext: Optional[str]) -> Optional[str]:
    # rows written under a rotated key read back as None; the account then has to be re-linked
    if not ciphertext:
        return None
    try:
        return get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return None
