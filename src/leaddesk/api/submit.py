"""Public lead registration endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flask import Blueprint, jsonify, request

from leaddesk.app.context import get_container

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

submit_bp = Blueprint("public_submit", __name__)

SUCCESS_MESSAGE = "Registration successful! We will contact you soon."


@submit_bp.route("/submit", methods=["POST"])
def submit_lead() -> ResponseReturnValue:
    """Store a registration; no authentication required."""
    get_container().lead_service.submit(
        request.get_json(silent=True),
        ip_address=request.remote_addr,
    )
    return jsonify({"message": SUCCESS_MESSAGE}), 200
