"""Repository classes for the leaddesk persistence layer.

Each repository extends :class:`pypgkit.BaseRepository` with custom
query methods for the leaddesk domain.
"""

from leaddesk.repositories.lead import LeadFilters, LeadRepository

__all__ = ["LeadFilters", "LeadRepository"]
