"""Password hashing and generation for admin accounts.

Hashes are produced by :mod:`werkzeug.security` (salted, one-way) and
only ever compared through :func:`verify_password`.
"""

from __future__ import annotations

import functools
import secrets
import string

from werkzeug.security import check_password_hash, generate_password_hash

_UPPER = string.ascii_uppercase
_LOWER = string.ascii_lowercase
_DIGITS = string.digits
_SPECIAL = "!@#$%^&*-_+="
_ALPHABET = _UPPER + _LOWER + _DIGITS + _SPECIAL

MIN_PASSWORD_LENGTH = 8


def generate_password(length: int = 20) -> str:
    """Generate a random password with at least one of each character class."""
    while True:
        pw = "".join(secrets.choice(_ALPHABET) for _ in range(length))
        if (
            any(c in _UPPER for c in pw)
            and any(c in _LOWER for c in pw)
            and any(c in _DIGITS for c in pw)
            and any(c in _SPECIAL for c in pw)
        ):
            return pw


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


@functools.lru_cache(maxsize=1)
def _dummy_hash() -> str:
    return generate_password_hash(secrets.token_urlsafe(16))


def burn_verification(password: str) -> None:
    """Run a full hash check against a throwaway hash.

    Called when no account matched so that an unknown identifier costs
    the same as a wrong password.
    """
    check_password_hash(_dummy_hash(), password)
