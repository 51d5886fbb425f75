"""RFC 7807 Problem Details and the leaddesk error taxonomy.

Provides :class:`ApiProblem`, an exception that renders itself as an
``application/problem+json`` response, one subclass per error category,
and a Flask error-handler registration function.

Usage::

    raise ValidationError("Missing required fields (name, email, contact, countryCode).")
    raise ForbiddenError("Lead is not assigned to you", restricted=True)
"""

from __future__ import annotations

import logging
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Error-type URNs
# ---------------------------------------------------------------------------
_P = "urn:leaddesk:error:"

MALFORMED = _P + "malformed"
CONFLICT = _P + "conflict"
NOT_FOUND = _P + "notFound"
UNAUTHORIZED = _P + "unauthorized"
FORBIDDEN = _P + "forbidden"
RATE_LIMITED = _P + "rateLimited"
UNAVAILABLE = _P + "unavailable"
SERVER_INTERNAL = _P + "serverInternal"

# Content type for RFC 7807 responses
PROBLEM_CONTENT_TYPE = "application/problem+json"


# ---------------------------------------------------------------------------
# Problem exception
# ---------------------------------------------------------------------------


class ApiProblem(Exception):
    """An RFC 7807 *problem details* object that doubles as an exception.

    Raise anywhere in request handling to produce a standards-compliant
    error response.  The registered Flask error handler catches it and
    calls :meth:`to_response`.

    Parameters
    ----------
    error_type:
        A URN string (one of the constants above) or ``"about:blank"``
        for generic HTTP errors.
    detail:
        Human-readable explanation of the problem.
    status:
        HTTP status code (default 400).
    title:
        Short summary; omitted when *error_type* is self-explanatory.
    extensions:
        Extra members merged into the problem body
        (e.g. ``{"restricted": True}``).
    headers:
        Extra HTTP headers to include on the response
        (e.g. ``Retry-After``).

    """

    def __init__(
        self,
        error_type: str,
        detail: str,
        status: int = 400,
        *,
        title: str | None = None,
        extensions: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.error_type = error_type
        self.detail = detail
        self.status = status
        self.title = title
        self.extensions = extensions or {}
        self.extra_headers = headers or {}
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the RFC 7807 JSON structure."""
        body: dict[str, Any] = {
            "type": self.error_type,
            "detail": self.detail,
            "status": self.status,
        }
        if self.title is not None:
            body["title"] = self.title
        for key, value in self.extensions.items():
            body.setdefault(key, value)
        return body

    def to_response(self):
        """Build a Flask :class:`~flask.Response`."""
        resp = jsonify(self.to_dict())
        resp.status_code = self.status
        resp.headers["Content-Type"] = PROBLEM_CONTENT_TYPE
        resp.headers["Cache-Control"] = "no-store"
        for key, value in self.extra_headers.items():
            resp.headers[key] = value
        return resp


# ---------------------------------------------------------------------------
# Taxonomy
# ---------------------------------------------------------------------------


class ValidationError(ApiProblem):
    """Missing or malformed input."""

    def __init__(self, detail: str, **kwargs: Any) -> None:
        super().__init__(MALFORMED, detail, 400, **kwargs)


class ConflictError(ApiProblem):
    """Uniqueness violated (duplicate email, contact or username)."""

    def __init__(self, detail: str, **kwargs: Any) -> None:
        super().__init__(CONFLICT, detail, 409, **kwargs)


class NotFoundError(ApiProblem):
    def __init__(self, detail: str, **kwargs: Any) -> None:
        super().__init__(NOT_FOUND, detail, 404, **kwargs)


class AuthError(ApiProblem):
    """Bad credentials or a missing, invalid or expired token.

    Always rendered as 401 with a ``WWW-Authenticate: Bearer`` header.
    """

    def __init__(self, detail: str = "Authentication required") -> None:
        super().__init__(
            UNAUTHORIZED,
            detail,
            401,
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(ApiProblem):
    """Role or ownership gate failed.

    ``restricted=True`` marks denials caused by restricted lead editing so
    the dashboard can explain them instead of showing a generic error.
    """

    def __init__(
        self,
        detail: str,
        *,
        reason: str | None = None,
        restricted: bool = False,
    ) -> None:
        extensions: dict[str, Any] = {}
        if reason is not None:
            extensions["reason"] = reason
        if restricted:
            extensions["restricted"] = True
        super().__init__(FORBIDDEN, detail, 403, extensions=extensions)
        self.reason = reason
        self.restricted = restricted


class RateLimitedError(ApiProblem):
    def __init__(self, detail: str, retry_after: int) -> None:
        super().__init__(
            RATE_LIMITED,
            detail,
            429,
            headers={"Retry-After": str(retry_after)},
        )


class ServiceUnavailableError(ApiProblem):
    def __init__(self, detail: str) -> None:
        super().__init__(UNAVAILABLE, detail, 503)


class InternalError(ApiProblem):
    """Store failure or unexpected exception; detail is always generic."""

    def __init__(self, detail: str = "An unexpected internal error occurred") -> None:
        super().__init__(SERVER_INTERNAL, detail, 500)


# ---------------------------------------------------------------------------
# Flask error handler registration
# ---------------------------------------------------------------------------


def register_error_handlers(app: Flask) -> None:
    """Attach handlers that produce RFC 7807 responses for all errors."""

    @app.errorhandler(ApiProblem)
    def _handle_api_problem(exc: ApiProblem):
        return exc.to_response()

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc: HTTPException):
        problem = ApiProblem(
            "about:blank",
            exc.description or "An error occurred",
            exc.code or 500,
            title=exc.name,
        )
        return problem.to_response()

    @app.errorhandler(Exception)
    def _handle_unhandled(exc: Exception):
        # HTTPException subclasses are already caught above; this
        # handler covers everything else (genuine 500s).  The raw
        # exception message never reaches the client.
        log.exception("Unhandled exception during request")
        return InternalError().to_response()
