"""Pydantic models for log events."""

from egress_acp.telemetry.models.decision import DecisionEvent

__all__ = ["DecisionEvent"]
