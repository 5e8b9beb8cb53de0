"""Decision audit event model."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class DecisionEvent(BaseModel):
    """One request decision log entry (audit/decisions.jsonl).

    Records how a single proxied request was decided (by rule, by the user,
    or by a parse failure) and how it ended (forwarded or rejected), with
    timing and the policy revision in force.
    """

    # --- core ---
    time: Optional[str] = Field(
        None,
        description="ISO 8601 timestamp, added by formatter during serialization",
    )
    event: Literal["request_decision"] = "request_decision"

    # --- request ---
    method: str
    target: str  # Raw target as received (absolute URI or CONNECT authority)
    host: Optional[str] = None  # host[:port]; None if the target did not parse

    # --- decision ---
    decision: Literal["allowed", "denied", "undecided"]
    source: Literal["rule", "user", "parse_error"]
    matched_pattern: Optional[str] = None
    user_outcome: Optional[str] = None  # allow_once, deny_always, dismissed, ...
    rule_added: Optional[str] = None  # Pattern appended to a list by "always"

    # --- result ---
    terminal: Literal["forwarded", "rejected"]
    status: int
    signal: Optional[str] = None
    reason: Optional[str] = None

    # --- policy ---
    policy_revision: int

    # --- performance ---
    policy_eval_ms: float
    prompt_wait_ms: Optional[float] = None  # Only when the user was asked
    total_ms: float

    # --- correlation ---
    request_id: str
    client_address: Optional[str] = None

    model_config = ConfigDict(extra="forbid")
