"""Pulse: daily marketing metrics from email, sales and ads sources."""

__version__ = "0.1.0"
