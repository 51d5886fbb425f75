"""Dashboard analytics over the lead table."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from leaddesk.app.errors import ValidationError

if TYPE_CHECKING:
    from leaddesk.repositories.lead import LeadRepository

DEFAULT_WINDOW_DAYS = 30
MAX_WINDOW_DAYS = 366


def parse_window(raw: str | None) -> int:
    """Parse the ``days`` query parameter for the daily submissions series."""
    if raw is None or raw == "":
        return DEFAULT_WINDOW_DAYS
    try:
        days = int(raw)
    except ValueError:
        raise ValidationError("'days' must be an integer") from None
    if not 1 <= days <= MAX_WINDOW_DAYS:
        raise ValidationError(f"'days' must be between 1 and {MAX_WINDOW_DAYS}")
    return days


class AnalyticsService:
    def __init__(self, lead_repo: LeadRepository) -> None:
        self._leads = lead_repo

    def summary(self, days: int = DEFAULT_WINDOW_DAYS) -> dict[str, Any]:
        """Totals, status and course breakdowns, and daily submissions.

        The caller gates this on the ``analytics.view`` grant.
        """
        result = self._leads.summary(days)
        result["windowDays"] = days
        return result
