"""Replay CRM CSV exports as conversion events (webhook / LinkedIn CAPI)."""

__version__ = "0.3.0"
