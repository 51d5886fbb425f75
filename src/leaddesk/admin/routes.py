"""Admin API Flask blueprint: auth, accounts, grants, settings and logs."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from flask import Blueprint, g, jsonify, request

from leaddesk.admin.auth import bearer_token, require_admin_auth, require_permission
from leaddesk.admin.pagination import build_link_header, parse_page_request
from leaddesk.admin.serializers import (
    serialize_activity_log,
    serialize_admin_user,
    serialize_audit_log,
    serialize_grant,
    serialize_login_history,
    serialize_setting,
)
from leaddesk.app.context import get_container
from leaddesk.app.errors import AuthError, RateLimitedError, ValidationError
from leaddesk.core.types import Action, Resource

if TYPE_CHECKING:
    from collections.abc import Callable

    from flask.typing import ResponseReturnValue

    from leaddesk.admin.service import AdminUserService

log = logging.getLogger(__name__)

admin_bp = Blueprint("admin_api", __name__)


def _get_admin_service() -> AdminUserService:
    return get_container().admin_service


def _json_body() -> dict[str, Any]:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def parse_uuid(raw: str, what: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError:
        raise ValidationError(f"Invalid {what} ID format.") from None


def _parse_timestamp(name: str, raw: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"'{name}' must be an ISO 8601 timestamp") from None


def _parse_bool(name: str, raw: str) -> bool:
    lowered = raw.lower()
    if lowered in ("true", "1"):
        return True
    if lowered in ("false", "0"):
        return False
    raise ValidationError(f"'{name}' must be true or false")


# Query parameter -> (filter column, parser)
_LOG_FILTERS: dict[str, tuple[str, Callable[[str, str], Any]]] = {
    "since": ("since", _parse_timestamp),
    "until": ("until", _parse_timestamp),
    "admin_id": ("admin_id", lambda _n, v: parse_uuid(v, "admin")),
    "action": ("action", lambda _n, v: v),
    "target_type": ("target_type", lambda _n, v: v),
    "target_id": ("target_id", lambda _n, v: parse_uuid(v, "target")),
    "page": ("page", lambda _n, v: v),
    "success": ("success", _parse_bool),
}


def _log_filters(*allowed: str) -> dict[str, Any]:
    filters: dict[str, Any] = {}
    for param in ("since", "until", "admin_id", *allowed):
        raw = request.args.get(param)
        if raw:
            column, parse = _LOG_FILTERS[param]
            filters[column] = parse(param, raw)
    return filters


def _paged_log_response(
    fetch: Callable[..., tuple[list, str | None]],
    serialize: Callable[[Any], dict],
    *filter_params: str,
) -> ResponseReturnValue:
    page = parse_page_request(request.args, get_container().settings.admin_api)
    entries, next_cursor = fetch(_log_filters(*filter_params), page)
    response = jsonify([serialize(e) for e in entries])
    link = build_link_header(request.base_url, next_cursor, page.limit, request.args)
    if link:
        response.headers["Link"] = link
    return response


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


@admin_bp.route("/auth/login", methods=["POST"])
def login() -> ResponseReturnValue:
    """Authenticate by username or email and return a bearer token."""
    data = _json_body()
    identifier = data.get("username") or data.get("email") or ""
    password = data.get("password") or ""
    if not isinstance(identifier, str) or not isinstance(password, str):
        raise ValidationError("'username' and 'password' must be strings")
    identifier = identifier.strip()
    if not identifier or not password:
        raise ValidationError("Both 'username' and 'password' are required")

    container = get_container()
    limiter = container.login_limiter
    rate_key = f"{request.remote_addr}:{identifier.lower()}"
    user_agent = request.headers.get("User-Agent")
    try:
        limiter.check(rate_key)
    except RateLimitedError:
        # Locked-out attempts still belong in the login history
        container.recorder.record_login(
            None,
            success=False,
            identifier=identifier,
            ip_address=request.remote_addr,
            user_agent=user_agent,
        )
        raise

    try:
        user, token = _get_admin_service().authenticate(
            identifier,
            password,
            ip_address=request.remote_addr,
            user_agent=user_agent,
        )
    except AuthError:
        limiter.record_failure(rate_key)
        raise
    limiter.record_success(rate_key)

    return jsonify(
        {
            "token": token,
            "tokenType": "Bearer",
            "expiresIn": container.settings.admin_api.token_expiry_seconds,
            "admin": serialize_admin_user(user),
        },
    )


@admin_bp.route("/auth/logout", methods=["POST"])
@require_admin_auth
def logout() -> ResponseReturnValue:
    """Revoke the presented bearer token."""
    _get_admin_service().logout(g.admin_user, bearer_token(), request.remote_addr)
    return jsonify({"status": "logged_out"})


@admin_bp.route("/me", methods=["GET"])
@require_admin_auth
def me() -> ResponseReturnValue:
    return jsonify(serialize_admin_user(g.admin_user))


@admin_bp.route("/me/permissions", methods=["GET"])
@require_admin_auth
def my_permissions() -> ResponseReturnValue:
    """Capabilities for the dashboard to show or hide controls."""
    container = get_container()
    user = g.admin_user
    return jsonify(
        {
            "role": user.role.value,
            "permissions": container.policy.capabilities(user.role),
            "restrictLeadEditing": container.setting_store.restrict_lead_editing(),
        },
    )


# ---------------------------------------------------------------------------
# Admin accounts
# ---------------------------------------------------------------------------


@admin_bp.route("/admins", methods=["GET"])
@require_admin_auth
@require_permission(Resource.ADMINS, Action.READ)
def list_admins() -> ResponseReturnValue:
    return jsonify([serialize_admin_user(u) for u in _get_admin_service().list_users()])


@admin_bp.route("/admins", methods=["POST"])
@require_admin_auth
@require_permission(Resource.ADMINS, Action.CREATE)
def create_admin() -> ResponseReturnValue:
    """Create an admin; a generated password is returned exactly once."""
    user, generated = _get_admin_service().create_user(
        g.admin_user,
        _json_body(),
        request.remote_addr,
    )
    body = serialize_admin_user(user)
    if generated is not None:
        body["password"] = generated
    return jsonify(body), 201


@admin_bp.route("/admins/<admin_id>", methods=["GET"])
@require_admin_auth
@require_permission(Resource.ADMINS, Action.READ)
def get_admin(admin_id: str) -> ResponseReturnValue:
    user = _get_admin_service().get_user(parse_uuid(admin_id, "admin"))
    return jsonify(serialize_admin_user(user))


@admin_bp.route("/admins/<admin_id>", methods=["PATCH", "PUT"])
@require_admin_auth
@require_permission(Resource.ADMINS, Action.UPDATE)
def update_admin(admin_id: str) -> ResponseReturnValue:
    user = _get_admin_service().update_user(
        g.admin_user,
        parse_uuid(admin_id, "admin"),
        _json_body(),
        request.remote_addr,
    )
    return jsonify(serialize_admin_user(user))


@admin_bp.route("/admins/<admin_id>", methods=["DELETE"])
@require_admin_auth
@require_permission(Resource.ADMINS, Action.DELETE)
def delete_admin(admin_id: str) -> ResponseReturnValue:
    _get_admin_service().delete_user(
        g.admin_user,
        parse_uuid(admin_id, "admin"),
        request.remote_addr,
    )
    return "", 204


# ---------------------------------------------------------------------------
# Permission grants
# ---------------------------------------------------------------------------


@admin_bp.route("/permissions", methods=["GET"])
@require_admin_auth
@require_permission(Resource.PERMISSIONS, Action.READ)
def list_permissions() -> ResponseReturnValue:
    return jsonify([serialize_grant(p) for p in _get_admin_service().list_grants()])


@admin_bp.route("/permissions/<role>", methods=["GET"])
@require_admin_auth
@require_permission(Resource.PERMISSIONS, Action.READ)
def get_permission(role: str) -> ResponseReturnValue:
    return jsonify(serialize_grant(_get_admin_service().get_grant(role)))


@admin_bp.route("/permissions/<role>", methods=["PUT"])
@require_admin_auth
@require_permission(Resource.PERMISSIONS, Action.UPDATE)
def update_permission(role: str) -> ResponseReturnValue:
    """Replace a role's grid; omitted flags become ``false``."""
    data = _json_body()
    if "permissions" not in data:
        raise ValidationError("'permissions' is required")
    grant = _get_admin_service().update_grant(
        g.admin_user,
        role,
        data["permissions"],
        request.remote_addr,
    )
    return jsonify(serialize_grant(grant))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@admin_bp.route("/settings", methods=["GET"])
@require_admin_auth
@require_permission(Resource.SETTINGS, Action.READ)
def list_settings() -> ResponseReturnValue:
    return jsonify([serialize_setting(s) for s in _get_admin_service().list_settings()])


@admin_bp.route("/settings/<key>", methods=["GET"])
@require_admin_auth
@require_permission(Resource.SETTINGS, Action.READ)
def get_setting(key: str) -> ResponseReturnValue:
    return jsonify(serialize_setting(_get_admin_service().get_setting(key)))


@admin_bp.route("/settings/<key>", methods=["PUT"])
@require_admin_auth
@require_permission(Resource.SETTINGS, Action.UPDATE)
def update_setting(key: str) -> ResponseReturnValue:
    data = _json_body()
    if "value" not in data:
        raise ValidationError("'value' is required")
    setting = _get_admin_service().update_setting(
        g.admin_user,
        key,
        data["value"],
        request.remote_addr,
    )
    return jsonify(serialize_setting(setting))


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------


@admin_bp.route("/audit-logs", methods=["GET"])
@require_admin_auth
@require_permission(Resource.AUDIT_LOGS, Action.VIEW)
def audit_logs() -> ResponseReturnValue:
    """Audit trail, newest first, cursor-paginated via the ``Link`` header."""
    return _paged_log_response(
        _get_admin_service().audit_log_page,
        serialize_audit_log,
        "action",
        "target_type",
        "target_id",
    )


@admin_bp.route("/activity-logs", methods=["GET"])
@require_admin_auth
@require_permission(Resource.ACTIVITY_LOGS, Action.VIEW)
def activity_logs() -> ResponseReturnValue:
    return _paged_log_response(
        _get_admin_service().activity_log_page,
        serialize_activity_log,
        "action",
        "page",
    )


@admin_bp.route("/activity-logs", methods=["POST"])
@require_admin_auth
@require_permission(Resource.ACTIVITY_LOGS, Action.CREATE)
def record_activity() -> ResponseReturnValue:
    _get_admin_service().record_activity(g.admin_user, _json_body())
    return jsonify({"status": "accepted"}), 202


@admin_bp.route("/login-history", methods=["GET"])
@require_admin_auth
@require_permission(Resource.LOGIN_HISTORY, Action.VIEW)
def login_history() -> ResponseReturnValue:
    return _paged_log_response(
        _get_admin_service().login_history_page,
        serialize_login_history,
        "success",
    )
