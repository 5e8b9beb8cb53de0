"""Shared utilities (file I/O, logging setup, policy persistence)."""
