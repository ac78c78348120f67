"""Clinic Queue - daily patient queue management service."""

__version__ = "0.1.0"
