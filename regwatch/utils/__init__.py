"""Shared utilities (logging, retry, async bridge)."""
