"""Session tokens and auth decorators for the admin API.

Tokens are itsdangerous-signed payloads ``{admin_id, username, role}``.
Revocation (logout) is tracked by signature in :class:`TokenBlacklist`;
repeated bad passwords are throttled by :class:`LoginRateLimiter`.
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections import deque
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import UUID

from flask import g, request
from itsdangerous import (
    BadSignature,
    SignatureExpired,
    URLSafeTimedSerializer,
)

from leaddesk.app.errors import AuthError, RateLimitedError
from leaddesk.logging import security_events

if TYPE_CHECKING:
    from collections.abc import Callable

    from pypgkit import Database

    from leaddesk.admin.models import AdminUser
    from leaddesk.core.types import Action, Resource

log = logging.getLogger(__name__)

_TOKEN_SALT = "leaddesk-admin-session"


def _signature(token: str) -> str:
    """Last dot-separated segment of an itsdangerous token."""
    return token.rpartition(".")[2]


class TokenBlacklist:
    """Revoked token signatures, kept until the token would have expired.

    With a database attached the list lives in ``admin.token_blacklist``
    so every worker sees it.  Without one, or when a query fails, a
    per-process dict is used.
    """

    def __init__(self, db: Database | None = None) -> None:
        self._db = db
        self._revoked: dict[str, float] = {}  # signature -> monotonic deadline
        self._lock = threading.Lock()

    def set_db(self, db: Database) -> None:
        self._db = db

    def revoke_token(self, token: str, max_age_seconds: int) -> None:
        sig = _signature(token)
        if self._db is not None and self._store(sig, max_age_seconds):
            return
        with self._lock:
            self._revoked[sig] = time.monotonic() + max_age_seconds

    def is_revoked(self, token: str) -> bool:
        sig = _signature(token)
        if self._db is not None and self._lookup(sig):
            return True
        with self._lock:
            deadline = self._revoked.get(sig)
        return deadline is not None and deadline > time.monotonic()

    def cleanup(self) -> int:
        """Forget expired signatures; returns how many were dropped."""
        dropped = 0
        if self._db is not None:
            try:
                dropped = self._db.execute(
                    "DELETE FROM admin.token_blacklist WHERE expires_at < now()",
                )
            except Exception:  # noqa: BLE001
                log.exception("Failed to prune admin.token_blacklist")
        now = time.monotonic()
        with self._lock:
            stale = [sig for sig, deadline in self._revoked.items() if deadline <= now]
            for sig in stale:
                del self._revoked[sig]
        return dropped + len(stale)

    def _store(self, sig: str, max_age_seconds: int) -> bool:
        try:
            self._db.execute(
                "INSERT INTO admin.token_blacklist (token_signature, expires_at) "
                "VALUES (%s, %s) ON CONFLICT (token_signature) DO NOTHING",
                (sig, datetime.now(UTC) + timedelta(seconds=max_age_seconds)),
            )
        except Exception:  # noqa: BLE001
            log.exception("Failed to persist revoked token; keeping it in memory")
            return False
        return True

    def _lookup(self, sig: str) -> bool:
        try:
            hit = self._db.fetch_value(
                "SELECT 1 FROM admin.token_blacklist "
                "WHERE token_signature = %s AND expires_at > now()",
                (sig,),
            )
        except Exception:  # noqa: BLE001
            log.exception("Failed to query admin.token_blacklist; checking memory")
            return False
        return hit is not None


_token_blacklist = TokenBlacklist()


def get_token_blacklist() -> TokenBlacklist:
    return _token_blacklist


class LoginRateLimiter:
    """Per-key lockout after repeated failed logins.

    Keys are ``"<client ip>:<identifier>"``.  ``max_attempts`` failures
    within ``window_seconds`` lock the key for ``lockout_seconds``; a
    successful login clears it.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: int = 300,
        lockout_seconds: int = 900,
        *,
        enabled: bool = True,
    ) -> None:
        self._enabled = enabled
        self._max_attempts = max_attempts
        self._window = window_seconds
        self._lockout = lockout_seconds
        self._failures: dict[str, deque[float]] = {}
        self._locked_until: dict[str, float] = {}
        self._lock = threading.Lock()

    def check(self, key: str) -> None:
        """Raise :class:`RateLimitedError` while *key* is locked out."""
        if not self._enabled:
            return
        with self._lock:
            remaining = self._locked_until.get(key, 0.0) - time.monotonic()
        if remaining > 0:
            wait = max(1, int(remaining))
            raise RateLimitedError(
                f"Too many failed login attempts. Try again in {wait} seconds.",
                retry_after=wait,
            )

    def record_failure(self, key: str) -> None:
        if not self._enabled:
            return
        now = time.monotonic()
        with self._lock:
            failures = self._failures.setdefault(key, deque())
            failures.append(now)
            while failures and failures[0] <= now - self._window:
                failures.popleft()
            tripped = len(failures) >= self._max_attempts
            if tripped:
                self._locked_until[key] = now + self._lockout
        if tripped:
            security_events.admin_login_lockout(key)

    def record_success(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
            self._locked_until.pop(key, None)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


def create_token(user: AdminUser, secret: str) -> str:
    """Issue a signed bearer token carrying the admin id and role.

    Expiry is enforced at verification time via ``max_age``.
    """
    serializer = URLSafeTimedSerializer(secret, salt=_TOKEN_SALT)
    return serializer.dumps(
        {
            "admin_id": str(user.id),
            "username": user.username,
            "role": user.role.value,
        }
    )


def decode_token(token: str, secret: str, max_age: int) -> dict[str, Any] | None:
    """Return the token payload, or ``None`` if invalid or expired."""
    serializer = URLSafeTimedSerializer(secret, salt=_TOKEN_SALT)
    try:
        payload = serializer.loads(token, max_age=max_age)
    except (BadSignature, SignatureExpired):
        return None
    if not isinstance(payload, dict) or "admin_id" not in payload:
        return None
    return payload


def bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[7:].strip()
    return token or None


# ---------------------------------------------------------------------------
# Decorators
# ---------------------------------------------------------------------------


def require_admin_auth(
    fn: Callable[..., Any],
) -> Callable[..., Any]:
    """Enforce bearer token auth on admin endpoints.

    The account is reloaded on every request: a deactivated or deleted
    admin is rejected even while their token is unexpired, and the
    stored role (not the token's claim) is what later gates use.
    The account is stored on ``g.admin_user``.
    """

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        from leaddesk.app.context import get_container  # noqa: PLC0415

        container = get_container()
        settings = container.settings.admin_api

        token = bearer_token()
        if token is None:
            raise AuthError("Missing or invalid Authorization header")

        if _token_blacklist.is_revoked(token):
            raise AuthError("Invalid or expired token")

        payload = decode_token(token, settings.token_secret, settings.token_expiry_seconds)
        if payload is None:
            raise AuthError("Invalid or expired token")

        try:
            admin_id = UUID(payload["admin_id"])
        except (TypeError, ValueError):
            raise AuthError("Invalid or expired token") from None

        user = container.admin_users.find_by_id(admin_id)
        if user is None or not user.active:
            raise AuthError("Account inactive or not found")

        g.admin_user = user
        return fn(*args, **kwargs)

    return wrapper


def require_permission(
    resource: Resource,
    action: Action,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Gate a route with the static role whitelist.

    Must be applied **after** ``@require_admin_auth``.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            from leaddesk.app.context import get_container  # noqa: PLC0415

            user = g.admin_user
            get_container().policy.enforce(user.id, user.role, resource, action)
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def require_grant(
    resource: Resource,
    action: Action,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Gate a route with the runtime-editable permission grid.

    Must be applied **after** ``@require_admin_auth``.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            from leaddesk.app.context import get_container  # noqa: PLC0415

            user = g.admin_user
            get_container().policy.enforce_grid(user.id, user.role, resource, action)
            return fn(*args, **kwargs)

        return wrapper

    return decorator
