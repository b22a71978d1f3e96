"""Reset an application's local identity and session footprint."""

__version__ = "0.1.0"
