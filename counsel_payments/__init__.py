"""Payment reconciliation service for the legal-consultation marketplace."""

__version__ = "1.0.0"
