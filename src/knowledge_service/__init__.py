"""Knowledge service: owner-scoped reminders and memories with hybrid search."""

__version__ = "0.1.0"
