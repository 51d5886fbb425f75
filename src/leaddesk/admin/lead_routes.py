"""Lead management and analytics endpoints of the Admin API.

Role gates run in the decorators; the ownership gate for existing leads
runs inside :class:`~leaddesk.services.lead.LeadService` once the lead
has been loaded.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING

from flask import Blueprint, Response, g, jsonify, request

from leaddesk.admin.auth import require_admin_auth, require_grant, require_permission
from leaddesk.admin.pagination import parse_page_request
from leaddesk.admin.routes import parse_uuid
from leaddesk.admin.serializers import serialize_lead
from leaddesk.app.context import get_container
from leaddesk.app.errors import ValidationError
from leaddesk.core.types import Action, LeadStatus, Resource
from leaddesk.repositories.lead import LeadFilters
from leaddesk.services.analytics import parse_window
from leaddesk.services.lead import parse_lead_id

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

    from leaddesk.services.lead import LeadService

leads_bp = Blueprint("admin_leads", __name__)


def _lead_service() -> LeadService:
    return get_container().lead_service


def _body() -> object:
    return request.get_json(silent=True)


def _parse_date(name: str, *, end_of_day: bool = False) -> datetime | None:
    """ISO 8601 query parameter *name*; a bare ``to`` date covers that whole day."""
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        raise ValidationError(f"'{name}' must be an ISO 8601 date or timestamp") from None
    if end_of_day and _is_bare_date(raw):
        return datetime.combine(parsed.date(), time.max)
    return parsed


def _is_bare_date(raw: str) -> bool:
    try:
        date.fromisoformat(raw)
    except ValueError:
        return False
    return True


def _lead_filters() -> LeadFilters:
    """Build filters from ``status``, ``assignedTo``, ``course``,
    ``location``, ``search``, ``from`` and ``to`` query parameters.

    ``assignedTo=unassigned`` selects leads with no assignee.
    """
    args = request.args
    status = None
    if args.get("status"):
        try:
            status = LeadStatus(args["status"])
        except ValueError:
            raise ValidationError(f"Unknown status '{args['status']}'") from None

    assigned_to = None
    unassigned = False
    raw_assignee = args.get("assignedTo")
    if raw_assignee == "unassigned":
        unassigned = True
    elif raw_assignee:
        assigned_to = parse_uuid(raw_assignee, "admin")

    return LeadFilters(
        status=status,
        assigned_to=assigned_to,
        unassigned=unassigned,
        course=args.get("course") or None,
        location=args.get("location") or None,
        search=(args.get("search") or "").strip() or None,
        created_from=_parse_date("from"),
        created_to=_parse_date("to", end_of_day=True),
    )


# ---------------------------------------------------------------------------
# Leads
# ---------------------------------------------------------------------------


@leads_bp.route("/leads", methods=["GET"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.READ)
def list_leads() -> ResponseReturnValue:
    """Filtered, newest-first listing with ``X-Total-Count``."""
    page = parse_page_request(request.args, get_container().settings.admin_api)
    leads, total = _lead_service().list_leads(
        g.admin_user,
        _lead_filters(),
        page.limit,
        page.offset,
    )
    response = jsonify([serialize_lead(lead) for lead in leads])
    response.headers["X-Total-Count"] = str(total)
    return response


@leads_bp.route("/leads", methods=["POST"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.CREATE)
def create_lead() -> ResponseReturnValue:
    lead = _lead_service().create_lead(g.admin_user, _body(), request.remote_addr)
    return jsonify(serialize_lead(lead)), 201


@leads_bp.route("/leads/export", methods=["GET"])
@require_admin_auth
@require_grant(Resource.LEADS, Action.READ)
def export_leads() -> ResponseReturnValue:
    """CSV export of every lead matching the listing filters."""
    csv_text = _lead_service().export_csv(_lead_filters())
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")  # noqa: DTZ005
    return Response(
        csv_text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="leads-{stamp}.csv"'},
    )


@leads_bp.route("/leads/bulk-update", methods=["POST"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.UPDATE)
def bulk_update_leads() -> ResponseReturnValue:
    data = _body()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    result = _lead_service().bulk_update(
        g.admin_user,
        data.get("ids"),
        data.get("updates"),
        request.remote_addr,
    )
    return jsonify(result)


@leads_bp.route("/leads/bulk-delete", methods=["POST"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.DELETE)
def bulk_delete_leads() -> ResponseReturnValue:
    data = _body()
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    deleted = _lead_service().bulk_delete(g.admin_user, data.get("ids"), request.remote_addr)
    return jsonify({"deletedCount": deleted})


@leads_bp.route("/leads/<lead_id>", methods=["GET"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.READ)
def get_lead(lead_id: str) -> ResponseReturnValue:
    lead = _lead_service().get_lead(g.admin_user, parse_lead_id(lead_id))
    return jsonify(serialize_lead(lead))


@leads_bp.route("/leads/<lead_id>", methods=["PUT"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.UPDATE)
def replace_lead(lead_id: str) -> ResponseReturnValue:
    lead = _lead_service().replace_lead(
        g.admin_user,
        parse_lead_id(lead_id),
        _body(),
        request.remote_addr,
    )
    return jsonify(serialize_lead(lead))


@leads_bp.route("/leads/<lead_id>", methods=["PATCH"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.UPDATE)
def patch_lead(lead_id: str) -> ResponseReturnValue:
    lead = _lead_service().patch_lead(
        g.admin_user,
        parse_lead_id(lead_id),
        _body(),
        request.remote_addr,
    )
    return jsonify(serialize_lead(lead))


@leads_bp.route("/leads/<lead_id>", methods=["DELETE"])
@require_admin_auth
@require_permission(Resource.LEADS, Action.DELETE)
def delete_lead(lead_id: str) -> ResponseReturnValue:
    _lead_service().delete_lead(g.admin_user, parse_lead_id(lead_id), request.remote_addr)
    return jsonify({"message": "Lead deleted successfully."})


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------


@leads_bp.route("/analytics/summary", methods=["GET"])
@require_admin_auth
@require_grant(Resource.ANALYTICS, Action.VIEW)
def analytics_summary() -> ResponseReturnValue:
    days = parse_window(request.args.get("days"))
    return jsonify(get_container().analytics.summary(days))
