"""Re-entrant reconciliation engine for RDS resources."""

__version__ = "0.1.0"
