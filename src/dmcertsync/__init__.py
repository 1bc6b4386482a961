"""Detect and repair drift in MDM enrollment certificate bindings."""

__version__ = "0.3.0"
