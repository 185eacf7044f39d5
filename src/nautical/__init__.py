"""Streaming repository access to the internal table."""

__version__ = "0.1.0"
