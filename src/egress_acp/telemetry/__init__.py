"""Telemetry: system logs and decision audit logs."""
