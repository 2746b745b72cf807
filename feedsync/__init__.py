"""Google Calendar feed synchronization into a local relational store."""

__version__ = "0.1.0"
