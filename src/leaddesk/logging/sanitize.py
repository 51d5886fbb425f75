"""Sensitive data sanitization for log output.

Provides :func:`sanitize_for_logs` which redacts credentials (passwords,
password hashes, bearer tokens, SMTP secrets) from data structures
before they are written to log files or audit tables.
"""

from __future__ import annotations

import re
from typing import Any

REDACTED = "[REDACTED]"

# Dict keys whose values are never logged
_SECRET_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "passwordhash",
        "new_password",
        "current_password",
        "token",
        "token_secret",
        "authorization",
        "secret",
    }
)

# Bearer credentials embedded in free text
_BEARER_RE = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)

# werkzeug hash strings (``scrypt:...$salt$hash`` / ``pbkdf2:...``)
_HASH_RE = re.compile(r"\b(scrypt|pbkdf2)(:[^\s$]+)?\$[^\s$]+\$[0-9a-f]+\b")


def _is_secret_key(key: object) -> bool:
    return isinstance(key, str) and key.lower().replace("-", "_") in _SECRET_KEYS


def sanitize_text(text: str) -> str:
    """Redact bearer tokens and password hashes inside *text*."""
    text = _BEARER_RE.sub(lambda m: m.group(1) + REDACTED, text)
    return _HASH_RE.sub(REDACTED, text)


def sanitize_for_logs(data: Any) -> Any:
    """Recursively sanitize sensitive material in *data*.

    Handles dicts (secret keys are replaced wholesale), lists, tuples
    and plain strings.  Non-sensitive data passes through unchanged.
    """
    if isinstance(data, dict):
        return {
            k: (REDACTED if _is_secret_key(k) else sanitize_for_logs(v))
            for k, v in data.items()
        }

    if isinstance(data, (list, tuple)):
        return type(data)(sanitize_for_logs(item) for item in data)

    if isinstance(data, str):
        return sanitize_text(data)

    return data
