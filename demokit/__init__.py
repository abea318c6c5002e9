"""Chat-server bot services for flight departure tracking and mission operations."""

__version__ = "0.1.0"