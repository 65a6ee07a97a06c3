"""Asynchronous submission engine for consultation audio."""

__version__ = "0.1.0"
