"""
storage/crypto.py

Fernet-based encryption of patient case detail at rest.

Key lifecycle
-------------
A store may be given an explicit key (``Store(data_key=...)``).  Otherwise
the key is read from the environment variable APP_DATA_KEY, which must be a
URL-safe base64-encoded 32-byte key as produced by ``Fernet.generate_key()``.

If APP_DATA_KEY is not set, a fresh key is generated once per process and
kept in memory only.  A warning is emitted because cases written with it
cannot be read back after a restart.

Public API
----------
env_data_key() -> str | None
get_fernet(key=None) -> Fernet
encrypt_json(data, fernet=None) -> str
decrypt_json(token, fernet=None) -> dict
"""

import json
import logging
import os
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

_ENV_KEY_NAME = "APP_DATA_KEY"


def env_data_key() -> str | None:
    """Return the key configured in APP_DATA_KEY, or None when it is unset."""
    return os.environ.get(_ENV_KEY_NAME) or None


@lru_cache(maxsize=1)
def _process_fernet() -> Fernet:
    raw_key = env_data_key()

    if raw_key:
        logger.debug("Fernet key loaded from environment variable '%s'.", _ENV_KEY_NAME)
        return Fernet(raw_key.encode())

    logger.warning(
        "%s is not set. A temporary in-memory key has been generated; "
        "stored case detail will NOT be readable after a process restart.",
        _ENV_KEY_NAME,
    )
    return Fernet(Fernet.generate_key())


def get_fernet(key: str | bytes | None = None) -> Fernet:
    """
    Return a Fernet for *key*, or the process-wide one when *key* is None.

    Raises:
        ValueError: If *key* is not a valid Fernet key.
    """
    if key is None:
        return _process_fernet()
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_json(data: dict, fernet: Fernet | None = None) -> str:
    """Serialise *data* to JSON and return it as a Fernet token string."""
    plaintext = json.dumps(data, ensure_ascii=False, default=str).encode("utf-8")
    return (fernet or get_fernet()).encrypt(plaintext).decode("utf-8")


def decrypt_json(token: str, fernet: Fernet | None = None) -> dict:
    """
    Decrypt a token produced by :func:`encrypt_json`.

    Raises:
        cryptography.fernet.InvalidToken: If the token was written with a
            different key or has been tampered with.
    """
    try:
        plaintext = (fernet or get_fernet()).decrypt(token.encode("utf-8"))
    except InvalidToken:
        logger.error("Case detail decryption failed: wrong key or corrupted token.")
        raise

    return json.loads(plaintext.decode("utf-8"))
