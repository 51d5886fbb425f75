"""leaddesk: lead-intake and CRM backend for training-course registrations."""

__version__ = "1.0.0"
