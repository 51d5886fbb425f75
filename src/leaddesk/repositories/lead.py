"""Lead repository."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from psycopg.rows import dict_row
from pypgkit import BaseRepository, Database

from leaddesk.core.types import LeadStatus
from leaddesk.models.lead import LEAD_COLUMNS, Lead

if TYPE_CHECKING:
    from uuid import UUID

_UPDATABLE = frozenset(LEAD_COLUMNS.values())

# Every read joins the assignee's username
_SELECT = (
    "SELECT l.*, u.username AS assigned_to_username "
    "FROM leads l LEFT JOIN admin.users u ON u.id = l.assigned_to"
)


@dataclass(frozen=True)
class LeadFilters:
    """Optional narrowing for lead listings and exports."""

    status: LeadStatus | None = None
    assigned_to: UUID | None = None
    unassigned: bool = False
    course: str | None = None
    location: str | None = None
    search: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _where(filters: LeadFilters) -> tuple[str, list[Any]]:
    conditions: list[str] = []
    params: list[Any] = []

    if filters.status is not None:
        conditions.append("l.status = %s")
        params.append(filters.status.value)
    if filters.unassigned:
        conditions.append("l.assigned_to IS NULL")
    elif filters.assigned_to is not None:
        conditions.append("l.assigned_to = %s")
        params.append(filters.assigned_to)
    if filters.course:
        conditions.append("l.course_name ILIKE %s ESCAPE '\\'")
        params.append(_like(filters.course))
    if filters.location:
        conditions.append("l.location ILIKE %s ESCAPE '\\'")
        params.append(_like(filters.location))
    if filters.search:
        pattern = _like(filters.search)
        conditions.append(
            "(l.name ILIKE %s ESCAPE '\\' OR l.email ILIKE %s ESCAPE '\\' "
            "OR l.contact ILIKE %s ESCAPE '\\' OR l.course_name ILIKE %s ESCAPE '\\')",
        )
        params.extend([pattern] * 4)
    if filters.created_from is not None:
        conditions.append("l.created_at >= %s")
        params.append(filters.created_from)
    if filters.created_to is not None:
        conditions.append("l.created_at <= %s")
        params.append(filters.created_to)

    return (" AND ".join(conditions) if conditions else "TRUE"), params


def _column_value(value: Any) -> Any:  # noqa: ANN401
    return value.value if isinstance(value, Enum) else value


class LeadRepository(BaseRepository[Lead]):
    table_name = "leads"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> Lead:
        return Lead(
            id=row["id"],
            name=row["name"],
            email=row["email"],
            contact=row["contact"],
            country_code=row["country_code"],
            course_name=row.get("course_name"),
            location=row.get("location"),
            message=row.get("message"),
            status=LeadStatus(row["status"]),
            notes=row.get("notes") or "",
            contacted_score=row.get("contacted_score") or 0,
            assigned_to=row.get("assigned_to"),
            assigned_to_username=row.get("assigned_to_username"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _entity_to_row(self, entity: Lead) -> dict:
        row: dict = {
            "id": entity.id,
            "name": entity.name,
            "email": entity.email,
            "contact": entity.contact,
            "country_code": entity.country_code,
            "course_name": entity.course_name,
            "location": entity.location,
            "message": entity.message,
            "status": entity.status.value,
            "notes": entity.notes,
            "contacted_score": entity.contacted_score,
        }
        if entity.assigned_to is not None:
            row["assigned_to"] = entity.assigned_to
        return row

    # -- reads ---------------------------------------------------------------

    def find_with_assignee(self, lead_id: UUID) -> Lead | None:
        db = Database.get_instance()
        row = db.fetch_one(f"{_SELECT} WHERE l.id = %s", (lead_id,), as_dict=True)
        return self._row_to_entity(row) if row else None

    def find_many(self, lead_ids: list[UUID]) -> list[Lead]:
        """Return the leads among *lead_ids* that exist."""
        if not lead_ids:
            return []
        db = Database.get_instance()
        rows = db.fetch_all(
            f"{_SELECT} WHERE l.id = ANY(%s) ORDER BY l.created_at DESC",
            (list(lead_ids),),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def find_conflict(
        self,
        email: str,
        contact: str,
        exclude_id: UUID | None = None,
    ) -> Lead | None:
        """Return a lead already holding *email* (case-insensitive) or *contact*."""
        db = Database.get_instance()
        query = "SELECT * FROM leads WHERE (lower(email) = lower(%s) OR contact = %s)"
        params: list[Any] = [email, contact]
        if exclude_id is not None:
            query += " AND id <> %s"
            params.append(exclude_id)
        row = db.fetch_one(query + " LIMIT 1", tuple(params), as_dict=True)
        return self._row_to_entity(row) if row else None

    def search(self, filters: LeadFilters, limit: int, offset: int = 0) -> list[Lead]:
        """Newest-first page of leads matching *filters*."""
        where, params = _where(filters)
        db = Database.get_instance()
        rows = db.fetch_all(
            f"{_SELECT} WHERE {where} "  # noqa: S608
            "ORDER BY l.created_at DESC, l.id DESC LIMIT %s OFFSET %s",
            (*params, limit, offset),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def count(self, filters: LeadFilters) -> int:
        where, params = _where(filters)
        db = Database.get_instance()
        return db.fetch_value(
            f"SELECT count(*) FROM leads l WHERE {where}",  # noqa: S608
            tuple(params),
        )

    # -- writes --------------------------------------------------------------

    def insert(self, lead: Lead) -> Lead:
        """Insert *lead* and return the stored row with its assignee."""
        row = self._entity_to_row(lead)
        columns = ", ".join(row)
        placeholders = ", ".join(["%s"] * len(row))
        db = Database.get_instance()
        stored = db.fetch_one(
            f"WITH ins AS (INSERT INTO leads ({columns}) VALUES ({placeholders}) "  # noqa: S608
            "RETURNING *) "
            "SELECT ins.*, u.username AS assigned_to_username "
            "FROM ins LEFT JOIN admin.users u ON u.id = ins.assigned_to",
            tuple(row.values()),
            as_dict=True,
        )
        return self._row_to_entity(stored)

    def update_fields(self, lead_id: UUID, fields: dict[str, Any]) -> Lead | None:
        """Set the given columns; ``None`` if the lead no longer exists."""
        updated = self.update_many([lead_id], fields)
        return updated[0] if updated else None

    def update_many(self, lead_ids: list[UUID], fields: dict[str, Any]) -> list[Lead]:
        """Apply one field set to every existing lead in *lead_ids*.

        Returns the rows actually updated, post-update.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            msg = f"Cannot update lead columns: {sorted(unknown)}"
            raise ValueError(msg)
        if not lead_ids:
            return []

        columns = sorted(fields)
        assignments = ", ".join(f"{c} = %s" for c in columns)
        values = [_column_value(fields[c]) for c in columns]
        db = Database.get_instance()
        rows = db.fetch_all(
            f"WITH upd AS (UPDATE leads SET {assignments}, updated_at = now() "  # noqa: S608
            "WHERE id = ANY(%s) RETURNING *) "
            "SELECT upd.*, u.username AS assigned_to_username "
            "FROM upd LEFT JOIN admin.users u ON u.id = upd.assigned_to",
            (*values, list(lead_ids)),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    def delete_many(self, lead_ids: list[UUID]) -> list[Lead]:
        """Delete every existing lead in *lead_ids*; returns the deleted rows."""
        if not lead_ids:
            return []
        db = Database.get_instance()
        rows = db.fetch_all(
            "WITH del AS (DELETE FROM leads WHERE id = ANY(%s) RETURNING *) "
            "SELECT del.*, u.username AS assigned_to_username "
            "FROM del LEFT JOIN admin.users u ON u.id = del.assigned_to",
            (list(lead_ids),),
            as_dict=True,
        )
        return [self._row_to_entity(r) for r in rows]

    # -- analytics -----------------------------------------------------------

    def summary(self, days: int) -> dict[str, Any]:
        """Aggregate counts for the analytics dashboard."""
        db = Database.get_instance()
        with db.transaction() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT count(*) AS total, "
                "count(*) FILTER (WHERE assigned_to IS NOT NULL) AS assigned "
                "FROM leads",
            )
            totals = cur.fetchone()

            cur.execute("SELECT status, count(*) AS n FROM leads GROUP BY status")
            by_status = {r["status"]: r["n"] for r in cur.fetchall()}

            cur.execute(
                "SELECT coalesce(course_name, '') AS course, count(*) AS n "
                "FROM leads GROUP BY 1 ORDER BY n DESC, course",
            )
            by_course = [{"course": r["course"] or None, "count": r["n"]} for r in cur.fetchall()]

            cur.execute(
                "SELECT date_trunc('day', created_at)::date AS day, count(*) AS n "
                "FROM leads "
                "WHERE created_at >= now() - make_interval(days => %s) "
                "GROUP BY 1 ORDER BY 1",
                (days,),
            )
            daily = [{"date": r["day"].isoformat(), "count": r["n"]} for r in cur.fetchall()]

        total = totals["total"] if totals else 0
        assigned = totals["assigned"] if totals else 0
        return {
            "total": total,
            "assigned": assigned,
            "unassigned": total - assigned,
            "byStatus": {s.value: by_status.get(s.value, 0) for s in LeadStatus},
            "byCourse": by_course,
            "daily": daily,
        }
