"""Lead service -- public submission and admin lead management.

Every admin mutation runs the policy's role gate and, for leads that
already exist, the ownership gate before touching the store, and is
followed by exactly one audit entry.  Validation and duplicate checks
run before any write.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from psycopg.errors import UniqueViolation

from leaddesk.admin.recorder import field_delta, jsonable, lead_snapshot
from leaddesk.app.errors import ConflictError, NotFoundError, ValidationError
from leaddesk.core.types import Action, AuditTarget, LeadStatus, Resource
from leaddesk.metrics.collector import LEADS_SUBMITTED
from leaddesk.models.lead import LEAD_COLUMNS, Lead

if TYPE_CHECKING:
    from leaddesk.admin.models import AdminUser
    from leaddesk.admin.policy import PolicyEvaluator
    from leaddesk.admin.recorder import Recorder
    from leaddesk.admin.repository import AdminUserRepository
    from leaddesk.metrics.collector import MetricsCollector
    from leaddesk.notifications.mailer import LeadNotifier
    from leaddesk.repositories.lead import LeadFilters, LeadRepository

log = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

REQUIRED_FIELDS = ("name", "email", "contact", "countryCode")
_OPTIONAL_TEXT = ("courseName", "location", "message")
# Accepted in request bodies and ignored
_READ_ONLY = frozenset({"id", "createdAt", "updatedAt", "assignedToUsername"})
# Unique columns cannot be set to one value across many leads
_NOT_BULK = frozenset({"email", "contact"})
# Fields the public form may set
_PUBLIC_FIELDS = frozenset(
    {"name", "email", "contact", "countryCode", "courseName", "coursename", "location", "message"},
)

EMAIL_TAKEN = "This email address is already registered."
CONTACT_TAKEN = "This contact number is already registered."

EXPORT_COLUMNS = (
    "id",
    "name",
    "email",
    "countryCode",
    "contact",
    "courseName",
    "location",
    "message",
    "status",
    "notes",
    "contactedScore",
    "assignedTo",
    "assignedToUsername",
    "createdAt",
    "updatedAt",
)
_EXPORT_BATCH = 500


def parse_lead_id(raw: str) -> UUID:
    try:
        return UUID(str(raw))
    except ValueError:
        raise ValidationError("Invalid lead ID format.") from None


def parse_lead_ids(raw: Any) -> list[UUID]:  # noqa: ANN401
    """Validate a non-empty list of lead ids, dropping duplicates."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("'ids' must be a non-empty array of lead IDs")
    ids: list[UUID] = []
    for value in raw:
        lead_id = parse_lead_id(value)
        if lead_id not in ids:
            ids.append(lead_id)
    return ids


def _text(name: str, value: Any, *, required: bool) -> str | None:  # noqa: ANN401
    if value is None:
        if required:
            raise ValidationError(f"'{name}' is required")
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{name}' must be a string")
    value = value.strip()
    if not value:
        if required:
            raise ValidationError(f"'{name}' must not be empty")
        return None
    return value


def _parse_value(name: str, value: Any) -> Any:  # noqa: ANN401, PLR0911
    if name in REQUIRED_FIELDS:
        text = _text(name, value, required=True)
        if name == "email":
            text = text.lower()
            if not _EMAIL_RE.match(text):
                raise ValidationError("Invalid email format.")
        return text
    if name in _OPTIONAL_TEXT:
        return _text(name, value, required=False)
    if name == "notes":
        return _text(name, value, required=False) or ""
    if name == "status":
        try:
            return LeadStatus(value)
        except ValueError:
            allowed = ", ".join(s.value for s in LeadStatus)
            raise ValidationError(f"'status' must be one of: {allowed}") from None
    if name == "contactedScore":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError("'contactedScore' must be a non-negative integer")
        return value
    if name == "assignedTo":
        if value is None or value == "":
            return None
        try:
            return UUID(str(value))
        except ValueError:
            raise ValidationError("'assignedTo' must be an admin ID or null") from None
    raise ValidationError(f"Unknown field '{name}'")


def parse_lead_fields(data: Any, *, partial: bool) -> dict[str, Any]:  # noqa: ANN401
    """Validate a lead body into ``{api_field: value}``.

    With ``partial=False`` the four contact fields are required and every
    omitted optional field takes its default.  ``coursename`` is accepted
    as an alias for ``courseName``.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    body = {k: v for k, v in data.items() if k not in _READ_ONLY}
    if "coursename" in body:
        alias = body.pop("coursename")
        body.setdefault("courseName", alias)

    unknown = sorted(set(body) - set(LEAD_COLUMNS))
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")

    if not partial:
        missing = [f for f in REQUIRED_FIELDS if body.get(f) in (None, "")]
        if missing:
            raise ValidationError(
                "Missing required fields (name, email, contact, countryCode).",
                extensions={"missing": missing},
            )

    fields = {name: _parse_value(name, value) for name, value in body.items()}
    if not partial:
        fields.setdefault("courseName", None)
        fields.setdefault("location", None)
        fields.setdefault("message", None)
        fields.setdefault("notes", "")
        fields.setdefault("status", LeadStatus.NEW)
        fields.setdefault("contactedScore", 0)
        fields.setdefault("assignedTo", None)
    return fields


def _lead_values(lead: Lead, names: Any) -> dict[str, Any]:  # noqa: ANN401
    return {name: getattr(lead, LEAD_COLUMNS[name]) for name in names}


class LeadService:
    def __init__(  # noqa: PLR0913
        self,
        lead_repo: LeadRepository,
        admin_repo: AdminUserRepository,
        policy: PolicyEvaluator,
        recorder: Recorder,
        notifier: LeadNotifier | None = None,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._leads = lead_repo
        self._admins = admin_repo
        self._policy = policy
        self._recorder = recorder
        self._notifier = notifier
        self._metrics = metrics

    # ------------------------------------------------------------------
    # Public submission
    # ------------------------------------------------------------------

    def submit(self, data: Any, ip_address: str | None = None) -> Lead:  # noqa: ANN401
        """Store a lead from the public registration form.

        Only the contact fields, course, location and message are taken
        from the body; status is always ``New`` and the lead starts
        unassigned.
        """
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object")
        fields = parse_lead_fields(
            {k: v for k, v in data.items() if k in _PUBLIC_FIELDS},
            partial=False,
        )
        self._check_conflict(fields["email"], fields["contact"])

        lead = self._insert(fields)
        if self._metrics is not None:
            self._metrics.increment(LEADS_SUBMITTED)
        log.info("Lead %s submitted", lead.id)
        self._recorder.record_audit(
            None,
            "create",
            AuditTarget.LEAD.value,
            {"lead": lead_snapshot(lead), "source": "public"},
            target_id=lead.id,
            ip_address=ip_address,
        )

        if self._notifier is not None:
            self._notifier.lead_submitted(lead)
        return lead

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_leads(
        self,
        actor: AdminUser,
        filters: LeadFilters,
        limit: int,
        offset: int = 0,
    ) -> tuple[list[Lead], int]:
        """Return ``(page, total)`` for the filtered listing."""
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.READ)
        return self._leads.search(filters, limit, offset), self._leads.count(filters)

    def get_lead(self, actor: AdminUser, lead_id: UUID) -> Lead:
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.READ)
        return self._load(lead_id)

    def export_csv(self, filters: LeadFilters) -> str:
        """Render every lead matching *filters* as CSV.

        The caller gates this on the ``leads.read`` grant.
        """
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(EXPORT_COLUMNS)
        offset = 0
        while True:
            batch = self._leads.search(filters, _EXPORT_BATCH, offset)
            for lead in batch:
                writer.writerow(_csv_row(lead))
            if len(batch) < _EXPORT_BATCH:
                break
            offset += _EXPORT_BATCH
        return buf.getvalue()

    # ------------------------------------------------------------------
    # Single-lead mutations
    # ------------------------------------------------------------------

    def create_lead(
        self,
        actor: AdminUser,
        data: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> Lead:
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.CREATE)
        fields = parse_lead_fields(data, partial=False)
        self._check_assignee(fields.get("assignedTo"))
        self._check_conflict(fields["email"], fields["contact"])

        lead = self._insert(fields)
        self._recorder.record_audit(
            actor.id,
            "create",
            AuditTarget.LEAD.value,
            {"lead": lead_snapshot(lead)},
            target_id=lead.id,
            ip_address=ip_address,
        )
        return lead

    def replace_lead(
        self,
        actor: AdminUser,
        lead_id: UUID,
        data: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> Lead:
        """PUT: every mutable field is set, omitted optionals are reset."""
        return self._update(actor, lead_id, data, partial=False, ip_address=ip_address)

    def patch_lead(
        self,
        actor: AdminUser,
        lead_id: UUID,
        data: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> Lead:
        """PATCH: only the fields present in *data* change."""
        return self._update(actor, lead_id, data, partial=True, ip_address=ip_address)

    def delete_lead(
        self,
        actor: AdminUser,
        lead_id: UUID,
        ip_address: str | None = None,
    ) -> None:
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.DELETE)
        lead = self._load(lead_id)
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.DELETE, lead=lead)

        if not self._leads.delete_many([lead.id]):
            raise NotFoundError("Lead not found.")
        self._recorder.record_audit(
            actor.id,
            "delete",
            AuditTarget.LEAD.value,
            {"lead": lead_snapshot(lead)},
            target_id=lead.id,
            ip_address=ip_address,
        )

    # ------------------------------------------------------------------
    # Bulk mutations
    # ------------------------------------------------------------------

    def bulk_update(
        self,
        actor: AdminUser,
        raw_ids: Any,  # noqa: ANN401
        updates: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> dict[str, int]:
        """Apply one field set to many leads.

        IDs that no longer exist are skipped.  The ownership gate is
        all-or-nothing over the leads that do exist.
        """
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.UPDATE)
        ids = parse_lead_ids(raw_ids)
        fields = parse_lead_fields(updates, partial=True)
        if not fields:
            raise ValidationError("'updates' must contain at least one field")
        shared = sorted(set(fields) & _NOT_BULK)
        if shared:
            raise ValidationError(f"Cannot bulk-update unique field(s): {', '.join(shared)}")
        self._check_assignee(fields.get("assignedTo"))

        existing = self._leads.find_many(ids)
        self._policy.enforce_leads(actor.id, actor.role, Action.UPDATE, existing)

        updated = self._leads.update_many(
            [lead.id for lead in existing],
            {LEAD_COLUMNS[name]: value for name, value in fields.items()},
        )
        after_by_id = {lead.id: lead for lead in updated}
        affected = [lead for lead in existing if lead.id in after_by_id]
        self._recorder.record_lead_bulk(
            actor.id,
            "bulk_update",
            affected,
            extra={
                "requested": len(ids),
                "updateFields": {name: jsonable(value) for name, value in fields.items()},
            },
            changes={
                lead.id: field_delta(
                    _lead_values(lead, fields),
                    _lead_values(after_by_id[lead.id], fields),
                )
                for lead in affected
            },
            ip_address=ip_address,
        )
        return {"matchedCount": len(existing), "modifiedCount": len(updated)}

    def bulk_delete(
        self,
        actor: AdminUser,
        raw_ids: Any,  # noqa: ANN401
        ip_address: str | None = None,
    ) -> int:
        """Delete many leads; returns how many were actually deleted."""
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.DELETE)
        ids = parse_lead_ids(raw_ids)

        existing = self._leads.find_many(ids)
        self._policy.enforce_leads(actor.id, actor.role, Action.DELETE, existing)

        deleted = self._leads.delete_many([lead.id for lead in existing])
        self._recorder.record_lead_bulk(
            actor.id,
            "bulk_delete",
            deleted,
            extra={"requested": len(ids)},
            ip_address=ip_address,
        )
        return len(deleted)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, lead_id: UUID) -> Lead:
        lead = self._leads.find_with_assignee(lead_id)
        if lead is None:
            raise NotFoundError("Lead not found.")
        return lead

    def _update(  # noqa: PLR0913
        self,
        actor: AdminUser,
        lead_id: UUID,
        data: Any,  # noqa: ANN401
        *,
        partial: bool,
        ip_address: str | None,
    ) -> Lead:
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.UPDATE)
        before = self._load(lead_id)
        self._policy.enforce(actor.id, actor.role, Resource.LEADS, Action.UPDATE, lead=before)

        fields = parse_lead_fields(data, partial=partial)
        if "assignedTo" in fields and fields["assignedTo"] != before.assigned_to:
            self._check_assignee(fields["assignedTo"])
        email = fields.get("email", before.email)
        contact = fields.get("contact", before.contact)
        if email != before.email or contact != before.contact:
            self._check_conflict(email, contact, exclude_id=before.id)

        after = before
        if fields:
            try:
                after = self._leads.update_fields(
                    before.id,
                    {LEAD_COLUMNS[name]: value for name, value in fields.items()},
                )
            except UniqueViolation:
                raise ConflictError(
                    "This email address or contact number is already registered.",
                ) from None
            if after is None:
                raise NotFoundError("Lead not found.")

        self._recorder.record_audit(
            actor.id,
            "update",
            AuditTarget.LEAD.value,
            {
                "lead": lead_snapshot(before),
                "updateFields": field_delta(
                    _lead_values(before, fields),
                    _lead_values(after, fields),
                ),
            },
            target_id=before.id,
            ip_address=ip_address,
        )
        return after

    def _insert(self, fields: dict[str, Any]) -> Lead:
        lead = Lead(
            id=uuid4(),
            name=fields["name"],
            email=fields["email"],
            contact=fields["contact"],
            country_code=fields["countryCode"],
            course_name=fields.get("courseName"),
            location=fields.get("location"),
            message=fields.get("message"),
            status=fields.get("status", LeadStatus.NEW),
            notes=fields.get("notes", ""),
            contacted_score=fields.get("contactedScore", 0),
            assigned_to=fields.get("assignedTo"),
        )
        try:
            return self._leads.insert(lead)
        except UniqueViolation:
            # Lost a race with a concurrent submission
            self._check_conflict(lead.email, lead.contact)
            raise ConflictError(
                "This email address or contact number is already registered.",
            ) from None

    def _check_conflict(
        self,
        email: str,
        contact: str,
        exclude_id: UUID | None = None,
    ) -> None:
        existing = self._leads.find_conflict(email, contact, exclude_id)
        if existing is None:
            return
        if existing.email.lower() == email.lower():
            raise ConflictError(EMAIL_TAKEN, extensions={"field": "email"})
        raise ConflictError(CONTACT_TAKEN, extensions={"field": "contact"})

    def _check_assignee(self, admin_id: UUID | None) -> None:
        if admin_id is not None and self._admins.find_by_id(admin_id) is None:
            raise ValidationError("'assignedTo' does not refer to an existing admin")


def _csv_row(lead: Lead) -> list[str]:
    return [
        str(lead.id),
        lead.name,
        lead.email,
        lead.country_code,
        lead.contact,
        lead.course_name or "",
        lead.location or "",
        lead.message or "",
        lead.status.value,
        lead.notes,
        str(lead.contacted_score),
        str(lead.assigned_to) if lead.assigned_to else "",
        lead.assigned_to_username or "",
        lead.created_at.isoformat(),
        lead.updated_at.isoformat(),
    ]
