"""
Router API credentials at rest.

Passwords are sealed with Fernet under a key derived from SECRET_KEY.
Keys listed in PREVIOUS_SECRET_KEYS still open older values, so SECRET_KEY
can be rotated and the stored passwords resealed afterwards.
"""
import base64
import hashlib
from typing import Iterable, List, Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from ispnet.config import settings


def derive_key(secret: str) -> Fernet:
    raw = hashlib.sha256(secret.encode()).digest()
    return Fernet(base64.urlsafe_b64encode(raw))


def build_cipher(secret_key: str, previous: Iterable[str] = ()) -> MultiFernet:
    """Current key first; MultiFernet encrypts with it and tries the rest on decrypt."""
    secrets = [secret_key] + [k for k in previous if k and k != secret_key]
    return MultiFernet([derive_key(s) for s in secrets])


def _previous_keys() -> List[str]:
    return [k.strip() for k in settings.PREVIOUS_SECRET_KEYS.split(",") if k.strip()]


cipher = build_cipher(settings.SECRET_KEY, _previous_keys())


def seal_secret(plaintext: Optional[str], using: Optional[MultiFernet] = None) -> Optional[str]:
    if not plaintext:
        return plaintext
    return (using or cipher).encrypt(plaintext.encode()).decode()


def open_secret(token: Optional[str], using: Optional[MultiFernet] = None) -> Optional[str]:
    """Plaintext of a sealed value. Values that were never sealed come back unchanged."""
    if not token:
        return token
    try:
        return (using or cipher).decrypt(token.encode()).decode()
    except InvalidToken:
        return token


def reseal_secret(token: Optional[str], using: Optional[MultiFernet] = None) -> Optional[str]:
    """Re-encrypt under the current key; a plaintext value is sealed."""
    if not token:
        return token
    c = using or cipher
    try:
        return c.rotate(token.encode()).decode()
    except InvalidToken:
        return seal_secret(token, c)
