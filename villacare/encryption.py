"""
Field-level encryption for property access notes
Access notes (key safe codes, alarm codes, gate instructions) are stored as Fernet tokens
"""

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from .config import ACCESS_NOTES_KEY

logger = logging.getLogger(__name__)

fernet = Fernet(ACCESS_NOTES_KEY) if ACCESS_NOTES_KEY else None


def get_fernet(key: Optional[str] = None) -> Fernet:
    """Return the configured cipher, or one built from an explicit key"""
    if key:
        return Fernet(key)
    if fernet is None:
        raise RuntimeError("ACCESS_NOTES_KEY is not configured")
    return fernet


def encrypt_access_notes(plaintext: str, key: Optional[str] = None) -> str:
    """Encrypt access notes for storage"""
    if not plaintext:
        return ""
    return get_fernet(key).encrypt(plaintext.encode()).decode()


def decrypt_access_notes(encrypted: str, key: Optional[str] = None) -> str:
    """Decrypt stored access notes"""
    if not encrypted:
        return ""
    try:
        return get_fernet(key).decrypt(encrypted.encode()).decode()
    except InvalidToken:
        logger.error("❌ Failed to decrypt access notes: invalid token or wrong key")
        raise
