"""Prometheus-compatible metrics endpoint.

``GET {metrics.path}`` returns counters in text exposition format.
"""

from __future__ import annotations

from flask import Blueprint, make_response

from leaddesk.app.context import get_container

metrics_bp = Blueprint("metrics", __name__)


@metrics_bp.route("", methods=["GET"])
def metrics_endpoint():
    body = get_container().metrics.export()
    response = make_response(body, 200)
    response.headers["Content-Type"] = "text/plain; version=0.0.4; charset=utf-8"
    return response
