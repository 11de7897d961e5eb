"""Multi-tenant content feed store."""

__version__ = "0.1.0"
