"""Lead entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID

    from leaddesk.core.types import LeadStatus

# Sentinel for timestamps not yet assigned by the database.
_EPOCH = datetime(1970, 1, 1)


@dataclass(frozen=True)
class Lead:
    id: UUID
    name: str
    email: str
    contact: str
    country_code: str
    status: LeadStatus
    course_name: str | None = None
    location: str | None = None
    message: str | None = None
    notes: str = ""
    contacted_score: int = 0
    assigned_to: UUID | None = None
    # Populated from admin.users when loaded with the assignee joined
    assigned_to_username: str | None = None
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH


# API field name -> column / attribute name, for every mutable field
LEAD_COLUMNS: dict[str, str] = {
    "name": "name",
    "email": "email",
    "contact": "contact",
    "countryCode": "country_code",
    "courseName": "course_name",
    "location": "location",
    "message": "message",
    "status": "status",
    "notes": "notes",
    "contactedScore": "contacted_score",
    "assignedTo": "assigned_to",
}
