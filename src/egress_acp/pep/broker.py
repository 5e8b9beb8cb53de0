"""Decision broker - serialise human prompts for undecided requests.

Many request threads may need a human decision at once, but the user can only
answer one prompt at a time. The broker queues DecisionRequests and a single
worker thread presents them to the DecisionProvider in arrival order. Each
calling thread blocks on its own ResponseSlot until an outcome arrives.

Outcome delivery is exactly-once. Two sources may try to deliver for the same
request: the provider's answer, and the worker's prompt-teardown path, which
offers DenyOnce when a prompt ends without a recorded answer. Whichever comes
first wins; the slot drops the other.

Fail-closed defaults:
- Prompt dismissed without a choice → DenyOnce
- Provider raises → ProviderError
- Provider returns something unrecognised → ProviderError
- Broker stopped before the prompt was shown → NoChoiceDismissed
"""

from __future__ import annotations

__all__ = [
    "DecisionBroker",
    "DecisionProvider",
    "DecisionRequest",
    "ResponseSlot",
]

import queue
import threading
import time
import uuid
from dataclasses import dataclass, field
from types import TracebackType
from typing import Protocol

from egress_acp.pdp.outcome import (
    KNOWN_OUTCOMES,
    DecisionOutcome,
    DenyOnce,
    NoChoiceDismissed,
    ProviderError,
    outcome_name,
)
from egress_acp.telemetry.system.system_logger import get_system_logger

_system_logger = get_system_logger()


class DecisionProvider(Protocol):
    """Shows one prompt to the user and returns their choice."""

    def show_prompt(self, target: str, suggested_rule: str) -> DecisionOutcome:
        """Block until the user answers.

        Args:
            target: The URL being requested.
            suggested_rule: Pattern to pre-fill for "always" choices.

        Returns:
            The user's choice. NoChoiceDismissed if the prompt was closed.
        """
        ...


class ResponseSlot:
    """Single-use completion slot. The first delivered outcome wins."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._outcome: DecisionOutcome | None = None

    def deliver(self, outcome: DecisionOutcome) -> bool:
        """Offer an outcome.

        Returns:
            True if this call filled the slot, False if it was already filled.
        """
        with self._lock:
            if self._done.is_set():
                return False
            self._outcome = outcome
            self._done.set()
            return True

    @property
    def delivered(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> DecisionOutcome | None:
        """Block until filled. Returns None only if `timeout` expires."""
        if not self._done.wait(timeout):
            return None
        return self._outcome


@dataclass
class DecisionRequest:
    """One queued prompt.

    Attributes:
        target: URL shown to the user.
        default_rule: Suggested pattern for "always" choices.
        request_id: Correlation ID.
        created_at: time.monotonic() at creation.
        slot: Where the outcome is delivered.
    """

    target: str
    default_rule: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.monotonic)
    slot: ResponseSlot = field(default_factory=ResponseSlot, repr=False)


class DecisionBroker:
    """Single-worker FIFO queue in front of a DecisionProvider.

    The worker thread starts on the first request (or on start()). Use as a
    context manager to stop it on exit.

    Args:
        provider: Shows prompts to the user.
    """

    def __init__(self, provider: DecisionProvider) -> None:
        self._provider = provider
        self._queue: queue.Queue[DecisionRequest | None] = queue.Queue()
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._stopped = False

    def __enter__(self) -> DecisionBroker:
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and self._worker.is_alive() and not self._stopped

    @property
    def pending_count(self) -> int:
        """Requests queued and not yet shown (approximate)."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker thread. No-op if running or stopped."""
        with self._lock:
            self._start_locked()

    def _start_locked(self) -> None:
        if self._stopped or self._worker is not None:
            return
        self._worker = threading.Thread(
            target=self._run,
            name="egress-acp-decision-broker",
            daemon=True,
        )
        self._worker.start()

    def request_decision(
        self,
        target: str,
        default_rule: str,
        request_id: str | None = None,
    ) -> DecisionOutcome:
        """Queue a prompt and block until it is answered.

        Args:
            target: URL to show the user.
            default_rule: Suggested pattern for "always" choices.
            request_id: Correlation ID (generated if None).

        Returns:
            The outcome. NoChoiceDismissed if the broker is stopped.
        """
        request = DecisionRequest(target=target, default_rule=default_rule)
        if request_id is not None:
            request.request_id = request_id

        with self._lock:
            if self._stopped:
                return NoChoiceDismissed()
            self._start_locked()
            self._queue.put(request)

        _system_logger.debug(
            {
                "event": "decision_requested",
                "target": target,
                "request_id": request.request_id,
            }
        )

        outcome = request.slot.wait()
        # wait() without a timeout only returns once the slot is filled
        assert outcome is not None
        return outcome

    def stop(self, timeout: float | None = 1.0) -> None:
        """Stop the worker. Queued requests receive NoChoiceDismissed.

        A prompt already on screen is not interrupted; its caller gets the
        provider's answer when it comes.

        Args:
            timeout: How long to wait for the worker to exit.
        """
        with self._lock:
            if self._stopped:
                return
            self._stopped = True
            worker = self._worker

        dismissed = self._drain()
        self._queue.put(None)

        if dismissed:
            _system_logger.info(
                {
                    "event": "decision_broker_drained",
                    "message": f"Dismissed {dismissed} queued decision request(s) on shutdown",
                    "count": dismissed,
                }
            )

        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)

    def _drain(self) -> int:
        count = 0
        while True:
            try:
                request = self._queue.get_nowait()
            except queue.Empty:
                return count
            if request is not None and request.slot.deliver(NoChoiceDismissed()):
                count += 1

    def _run(self) -> None:
        while True:
            request = self._queue.get()
            if request is None:
                return
            if self._stopped:
                request.slot.deliver(NoChoiceDismissed())
                continue
            try:
                request.slot.deliver(self._ask(request))
            finally:
                # Prompt teardown; a no-op when an answer was already delivered
                request.slot.deliver(DenyOnce())

    def _ask(self, request: DecisionRequest) -> DecisionOutcome:
        start = time.perf_counter()
        try:
            answer = self._provider.show_prompt(request.target, request.default_rule)
        except Exception as e:
            _system_logger.error(
                {
                    "event": "decision_provider_error",
                    "message": f"Decision provider failed: {e}",
                    "error_type": type(e).__name__,
                    "target": request.target,
                    "request_id": request.request_id,
                }
            )
            return ProviderError(f"{type(e).__name__}: {e}")

        if isinstance(answer, NoChoiceDismissed):
            answer = DenyOnce()
        elif not isinstance(answer, KNOWN_OUTCOMES):
            _system_logger.error(
                {
                    "event": "decision_provider_unknown_outcome",
                    "message": f"Decision provider returned unknown outcome {answer!r}",
                    "target": request.target,
                    "request_id": request.request_id,
                }
            )
            return ProviderError(f"unknown outcome {answer!r}")

        _system_logger.debug(
            {
                "event": "decision_answered",
                "target": request.target,
                "outcome": outcome_name(answer),
                "wait_ms": round((time.perf_counter() - start) * 1000, 2),
                "request_id": request.request_id,
            }
        )
        return answer
