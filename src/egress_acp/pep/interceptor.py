"""Interceptor - per-request policy enforcement.

Ties the pieces together for one inbound request:

    Start → Classified{Allowed|Denied|Undecided}
          → [Escalated → Resolved]
          → Terminal{Forwarded|Rejected}

1. Derive the target (CONNECT → "https://<authority>", else the absolute URI)
2. Classify against the store's current snapshot
3. Denied → reject 403
4. Allowed → forward
5. Undecided → ask the broker; "always" answers append a rule first
6. Forward with the snapshot's upstream proxy (or default routing)

Every terminal outcome is written to the decision audit log.
"""

from __future__ import annotations

__all__ = [
    "InterceptResult",
    "Interceptor",
    "RejectSignal",
    "Terminal",
]

import logging
import time
from dataclasses import dataclass
from enum import Enum

from egress_acp.constants import (
    BLOCKED_BY_POLICY_MESSAGE,
    BLOCKED_DENY_ALWAYS_MESSAGE,
    BLOCKED_DENY_ONCE_MESSAGE,
    BLOCKED_INVALID_TARGET_MESSAGE,
    DECISION_FAILED_MESSAGE,
    UNKNOWN_OUTCOME_MESSAGE,
    UPSTREAM_FAILED_MESSAGE,
)
from egress_acp.context.request import InboundRequest
from egress_acp.context.target import RequestTarget
from egress_acp.exceptions import ForwardError, UpstreamProxyError
from egress_acp.forwarder import ForwardedResponse, TrafficForwarder, Tunnel
from egress_acp.pdp.decision import Decision
from egress_acp.pdp.engine import Classification, classify
from egress_acp.pdp.matcher import escape_pattern, is_valid_pattern
from egress_acp.pdp.outcome import (
    AllowAlways,
    AllowOnce,
    DecisionOutcome,
    DenyAlways,
    DenyOnce,
    NoChoiceDismissed,
    ProviderError,
    outcome_name,
)
from egress_acp.pdp.policy import PolicySnapshot
from egress_acp.pep.broker import DecisionBroker
from egress_acp.pep.store import PolicyStore
from egress_acp.telemetry.audit.decision_logger import log_decision
from egress_acp.telemetry.models.decision import DecisionEvent
from egress_acp.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()


class Terminal(str, Enum):
    FORWARDED = "forwarded"
    REJECTED = "rejected"


class RejectSignal(str, Enum):
    """Why a request was rejected, for the listener and logs."""

    POLICY_BLOCK = "policy_block"
    USER_BLOCK = "user_block"
    INTERNAL_ERROR = "internal_error"
    UPSTREAM_ERROR = "upstream_error"


@dataclass
class InterceptResult:
    """Terminal result for one request.

    Attributes:
        terminal: FORWARDED or REJECTED.
        status: HTTP status for the client (200 for an opened tunnel).
        reason: Human-readable rejection message; None when forwarded.
        signal: Rejection category; None when forwarded.
        response: ForwardedResponse or Tunnel when forwarded.
    """

    terminal: Terminal
    status: int
    reason: str | None = None
    signal: RejectSignal | None = None
    response: ForwardedResponse | Tunnel | None = None

    @property
    def forwarded(self) -> bool:
        return self.terminal is Terminal.FORWARDED

    @classmethod
    def reject(cls, status: int, reason: str, signal: RejectSignal) -> InterceptResult:
        return cls(Terminal.REJECTED, status, reason, signal)


@dataclass
class _Trace:
    """Facts gathered along the way, for the audit event."""

    started: float
    classification: Classification | None = None
    snapshot: PolicySnapshot | None = None
    eval_ms: float = 0.0
    prompt_ms: float | None = None
    outcome: DecisionOutcome | None = None
    rule_added: str | None = None


class Interceptor:
    """Decides and forwards/rejects proxied requests.

    Args:
        store: Live policy.
        broker: Asks the user about undecided targets.
        forwarder: Sends allowed traffic.
        decision_logger: Audit logger (see create_decision_logger). None
            disables audit logging.
    """

    def __init__(
        self,
        store: PolicyStore,
        broker: DecisionBroker,
        forwarder: TrafficForwarder,
        decision_logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._broker = broker
        self._forwarder = forwarder
        self._decision_logger = decision_logger

    def handle(self, request: InboundRequest) -> InterceptResult:
        """Run one request to a terminal state."""
        trace = _Trace(started=time.perf_counter())
        result = self._decide_and_act(request, trace)
        self._audit(request, trace, result)
        return result

    def _decide_and_act(self, request: InboundRequest, trace: _Trace) -> InterceptResult:
        snapshot = self._store.snapshot()
        trace.snapshot = snapshot

        eval_start = time.perf_counter()
        classification = classify(request.raw_target, snapshot)
        trace.eval_ms = (time.perf_counter() - eval_start) * 1000
        trace.classification = classification

        if classification.decision is Decision.DENIED:
            if classification.target is None:
                _system_logger.warning(
                    {
                        "event": "invalid_request_target",
                        "message": classification.error,
                        "target": request.target,
                        "request_id": request.request_id,
                    }
                )
                return InterceptResult.reject(403, BLOCKED_INVALID_TARGET_MESSAGE, RejectSignal.POLICY_BLOCK)
            return InterceptResult.reject(403, BLOCKED_BY_POLICY_MESSAGE, RejectSignal.POLICY_BLOCK)

        # Parse succeeded for ALLOWED and UNDECIDED
        target = classification.target
        assert target is not None

        if classification.decision is Decision.ALLOWED:
            return self._forward(request)

        prompt_start = time.perf_counter()
        outcome = self._broker.request_decision(
            request.raw_target,
            escape_pattern(target.host),
            request_id=request.request_id,
        )
        trace.prompt_ms = (time.perf_counter() - prompt_start) * 1000
        trace.outcome = outcome
        return self._resolve(request, target, outcome, trace)

    def _resolve(
        self,
        request: InboundRequest,
        target: RequestTarget,
        outcome: DecisionOutcome,
        trace: _Trace,
    ) -> InterceptResult:
        if isinstance(outcome, AllowOnce):
            return self._forward(request)
        if isinstance(outcome, DenyOnce):
            return InterceptResult.reject(403, BLOCKED_DENY_ONCE_MESSAGE, RejectSignal.USER_BLOCK)
        if isinstance(outcome, AllowAlways):
            rule = self._rule_for(request, target, outcome.rule)
            if self._store.append_allow(rule):
                trace.rule_added = rule
            return self._forward(request)
        if isinstance(outcome, DenyAlways):
            rule = self._rule_for(request, target, outcome.rule)
            if self._store.append_deny(rule):
                trace.rule_added = rule
            return InterceptResult.reject(403, BLOCKED_DENY_ALWAYS_MESSAGE, RejectSignal.USER_BLOCK)
        if isinstance(outcome, (ProviderError, NoChoiceDismissed)):
            return InterceptResult.reject(500, DECISION_FAILED_MESSAGE, RejectSignal.INTERNAL_ERROR)

        _system_logger.error(
            {
                "event": "unknown_decision_outcome",
                "message": f"Unknown decision outcome {outcome!r}",
                "target": request.target,
                "request_id": request.request_id,
            }
        )
        return InterceptResult.reject(500, UNKNOWN_OUTCOME_MESSAGE, RejectSignal.INTERNAL_ERROR)

    def _rule_for(self, request: InboundRequest, target: RequestTarget, rule: str) -> str:
        """Pattern to store for an "always" answer.

        An empty or malformed rule is replaced by the escaped host, which
        always matches the target it came from.
        """
        if is_valid_pattern(rule):
            return rule
        fallback = escape_pattern(target.host)
        if rule:
            _system_logger.warning(
                {
                    "event": "invalid_rule_replaced",
                    "message": f"Invalid rule {rule!r}; storing {fallback!r} instead",
                    "target": request.target,
                    "request_id": request.request_id,
                }
            )
        return fallback

    def _apply_routing(self, snapshot: PolicySnapshot) -> None:
        if snapshot.upstream_proxy is None:
            self._forwarder.clear_upstream()
            return
        try:
            self._forwarder.set_upstream(snapshot.upstream_proxy)
        except UpstreamProxyError as e:
            _system_logger.warning(
                {
                    "event": "upstream_proxy_invalid",
                    "message": f"{e}; using default routing",
                    "upstream_proxy": snapshot.upstream_proxy,
                }
            )
            self._forwarder.clear_upstream()

    def _forward(self, request: InboundRequest) -> InterceptResult:
        # Latest snapshot: an "always" answer may have just published one
        self._apply_routing(self._store.snapshot())
        try:
            response = self._forwarder.forward(request)
        except ForwardError as e:
            _system_logger.warning(
                {
                    "event": "forward_failed",
                    "message": str(e),
                    "target": request.target,
                    "request_id": request.request_id,
                }
            )
            return InterceptResult.reject(e.status_code, UPSTREAM_FAILED_MESSAGE, RejectSignal.UPSTREAM_ERROR)

        if isinstance(response, Tunnel):
            return InterceptResult(Terminal.FORWARDED, 200, response=response)
        return InterceptResult(Terminal.FORWARDED, response.status_code, response=response)

    def _audit(self, request: InboundRequest, trace: _Trace, result: InterceptResult) -> None:
        if self._decision_logger is None:
            return

        classification = trace.classification
        assert classification is not None and trace.snapshot is not None

        if classification.target is None:
            source = "parse_error"
        elif trace.outcome is not None:
            source = "user"
        else:
            source = "rule"

        event = DecisionEvent(
            method=request.method,
            target=request.target,
            host=classification.target.host if classification.target else None,
            decision=classification.decision.value,
            source=source,
            matched_pattern=classification.matched_pattern,
            user_outcome=outcome_name(trace.outcome) if trace.outcome is not None else None,
            rule_added=trace.rule_added,
            terminal=result.terminal.value,
            status=result.status,
            signal=result.signal.value if result.signal else None,
            reason=result.reason,
            policy_revision=trace.snapshot.revision,
            policy_eval_ms=round(trace.eval_ms, 2),
            prompt_wait_ms=round(trace.prompt_ms, 2) if trace.prompt_ms is not None else None,
            total_ms=round((time.perf_counter() - trace.started) * 1000, 2),
            request_id=request.request_id,
            client_address=request.client_address,
        )
        log_decision(self._decision_logger, event)
