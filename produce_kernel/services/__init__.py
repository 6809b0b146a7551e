"""Flush-only kernel services. Callers own transaction boundaries."""
