"""HTTP interface for the knowledge service."""
