"""Request plumbing shared by every leaddesk endpoint.

:class:`TrustedProxyMiddleware` sits in front of the WSGI app and honours
forwarded headers from allowlisted proxies only.  :func:`register_request_hooks`
adds the per-request bookkeeping: ``X-Request-ID``, security headers, the
HTTP request counter and one access-log line per response.
"""

from __future__ import annotations

import ipaddress
import logging
import time
from typing import TYPE_CHECKING
from uuid import uuid4

from flask import Flask, g, request

from leaddesk.metrics.collector import HTTP_REQUESTS

if TYPE_CHECKING:
    from collections.abc import Iterable

log = logging.getLogger(__name__)
access_log = logging.getLogger("leaddesk.access")

_CSP = "default-src 'none'; frame-ancestors 'none'"


def _environ_key(header: str) -> str:
    return "HTTP_" + header.upper().replace("-", "_")


class TrustedProxyMiddleware:
    """Take client address, scheme and mount prefix from a trusted proxy.

    Requests whose ``REMOTE_ADDR`` is outside *trusted_proxies* are passed
    through untouched.  An empty allowlist trusts every peer; the config
    layer warns about that combination.
    """

    def __init__(
        self,
        app,
        *,
        trusted_proxies: Iterable[str] = (),
        for_header: str = "X-Forwarded-For",
        proto_header: str = "X-Forwarded-Proto",
    ) -> None:
        self.app = app
        self._networks = []
        for entry in trusted_proxies:
            try:
                self._networks.append(ipaddress.ip_network(entry, strict=False))
            except ValueError:
                log.warning("Ignoring unparseable trusted proxy: %s", entry)
        self._for_key = _environ_key(for_header)
        self._proto_key = _environ_key(proto_header)

    def is_trusted(self, addr: str) -> bool:
        if not self._networks:
            return True
        try:
            ip = ipaddress.ip_address(addr)
        except ValueError:
            return False
        return any(ip in net for net in self._networks)

    def client_ip(self, chain: str) -> str:
        """Nearest hop in *chain* that is not one of our proxies."""
        hops = [hop.strip() for hop in chain.split(",")]
        untrusted = [hop for hop in hops if not self.is_trusted(hop)]
        return untrusted[-1] if untrusted else hops[0]

    def __call__(self, environ, start_response):
        if self.is_trusted(environ.get("REMOTE_ADDR", "")):
            chain = environ.get(self._for_key)
            if chain:
                environ["REMOTE_ADDR"] = self.client_ip(chain)
            scheme = environ.get(self._proto_key)
            if scheme:
                environ["wsgi.url_scheme"] = scheme.strip().lower()
            prefix = environ.get("HTTP_X_FORWARDED_PREFIX")
            if prefix:
                environ["SCRIPT_NAME"] = prefix.rstrip("/")
        return self.app(environ, start_response)


def _log_level(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


def register_request_hooks(app: Flask) -> None:
    """Attach the request-id, header, counter and access-log hooks to *app*."""

    @app.before_request
    def _start_request() -> None:
        g.request_id = request.headers.get("X-Request-ID") or uuid4().hex
        g.start_time = time.monotonic()

    @app.after_request
    def _finish_request(response):
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Content-Security-Policy"] = _CSP

        settings = app.config.get("LEADDESK_SETTINGS")
        if settings is not None:
            max_age = settings.security.hsts_max_age_seconds
            if max_age > 0 and settings.server.external_url.startswith("https://"):
                headers["Strict-Transport-Security"] = f"max-age={max_age}; includeSubDomains"

        request_id = getattr(g, "request_id", None)
        if request_id:
            headers["X-Request-ID"] = request_id

        status = response.status_code
        metrics = getattr(app.extensions.get("container"), "metrics", None)
        if metrics is not None:
            metrics.increment(
                HTTP_REQUESTS,
                labels={"method": request.method, "status": str(status)},
            )

        started = getattr(g, "start_time", None)
        elapsed = 0.0 if started is None else (time.monotonic() - started) * 1000
        access_log.log(
            _log_level(status),
            "%s %s %s %.1fms",
            request.method,
            request.path,
            status,
            elapsed,
            extra={
                "status": status,
                "duration_ms": round(elapsed, 1),
                "content_length": response.content_length,
            },
        )
        return response
