"""Microsoft 365 and Windows administration tools."""

__version__ = "0.3.0"
