"""envpromote - environment promotion and drift reconciliation."""

__version__ = "0.1.0"
