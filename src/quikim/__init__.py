"""Quikim: keep local project artifacts in sync with the Quikim backend and steer agents."""

__version__ = "0.1.0"
