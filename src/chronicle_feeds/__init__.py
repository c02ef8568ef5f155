"""Feed ingestion and article state reconciliation."""

__version__ = "0.1.0"
