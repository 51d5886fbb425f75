"""Entity models for the leaddesk persistence layer.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from leaddesk.models.lead import LEAD_COLUMNS, Lead

__all__ = ["LEAD_COLUMNS", "Lead"]
