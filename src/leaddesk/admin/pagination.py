"""Pagination helpers for the Admin API.

Log listings use keyset pagination: the cursor is an opaque
base64-encoded entry ``id`` and the repository resumes strictly after
that entry in ``(created_at, id)`` order.  Lead listings use plain
offset pagination with an ``X-Total-Count`` header.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urlencode
from uuid import UUID

from leaddesk.app.errors import ValidationError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from leaddesk.config.settings import AdminApiSettings


def encode_cursor(value: UUID) -> str:
    """Encode a UUID into an opaque cursor string."""
    return base64.urlsafe_b64encode(str(value).encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> UUID:
    """Decode an opaque cursor string back to a UUID.

    Raises ``ValueError`` if the cursor is malformed.
    """
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded).decode()
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise ValueError(str(exc)) from exc
    return UUID(raw)


@dataclass(frozen=True)
class PageRequest:
    limit: int
    cursor: UUID | None = None
    offset: int = 0


def parse_page_request(
    args: Mapping[str, str],
    settings: AdminApiSettings,
) -> PageRequest:
    """Read ``limit``, ``cursor`` and ``offset`` query parameters.

    ``limit`` is clamped to ``settings.max_page_size``.
    """
    try:
        limit = int(args.get("limit", settings.default_page_size))
        offset = int(args.get("offset", 0))
    except ValueError:
        raise ValidationError("'limit' and 'offset' must be integers") from None
    if limit < 1 or offset < 0:
        raise ValidationError("'limit' must be positive and 'offset' non-negative")
    limit = min(limit, settings.max_page_size)

    cursor = None
    raw_cursor = args.get("cursor")
    if raw_cursor:
        try:
            cursor = decode_cursor(raw_cursor)
        except ValueError:
            raise ValidationError("Invalid cursor parameter") from None

    return PageRequest(limit=limit, cursor=cursor, offset=offset)


def build_link_header(
    base_url: str,
    next_cursor: str | None,
    limit: int,
    extra_args: Mapping[str, str] | None = None,
) -> str | None:
    """Build an RFC 8288 ``Link`` header for the next page.

    Filter parameters in *extra_args* are carried over so the next page
    applies the same filters.  Returns ``None`` when there is no next page.
    """
    if next_cursor is None:
        return None
    params = {
        k: v for k, v in (extra_args or {}).items() if k not in ("cursor", "limit", "offset")
    }
    params["cursor"] = next_cursor
    params["limit"] = str(limit)
    return f'<{base_url}?{urlencode(params)}>;rel="next"'
