from typing import Optional

from cryptography.fernet import Fernet

from slotbook.config.settings import get_settings


# Generate a key once and store it in your settings/env:
#   CALENDAR_ENCRYPTION_KEY = Fernet.generate_key()


def get_cipher(key: Optional[str] = None) -> Fernet:
    """Get Fernet cipher instance"""
    key = key or get_settings().CALENDAR_ENCRYPTION_KEY
    if not key:
        raise ValueError("CALENDAR_ENCRYPTION_KEY is not configured")
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_token(token: str, key: Optional[str] = None) -> Optional[bytes]:
    """Encrypt a token string"""
    if not token:
        return None
    cipher = get_cipher(key)
    return cipher.encrypt(token.encode())


def decrypt_token(encrypted_token: bytes, key: Optional[str] = None) -> Optional[str]:
    """Decrypt a token"""
    if not encrypted_token:
        return None
    cipher = get_cipher(key)
    return cipher.decrypt(encrypted_token).decode()
