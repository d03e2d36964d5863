"""Collect Mach-O entitlements from Apple firmware images and serve them from a SQLite-backed HTTP API."""

__version__ = "0.1.0"