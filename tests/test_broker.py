"""Tests for the decision broker.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

import threading
import time
from typing import Callable
from unittest.mock import MagicMock, patch

import pytest

from egress_acp.pdp.outcome import (
    AllowAlways,
    AllowOnce,
    DecisionOutcome,
    DenyOnce,
    NoChoiceDismissed,
    ProviderError,
)
from egress_acp.pep.broker import DecisionBroker, ResponseSlot


# --- Fixtures ---


def wait_until(condition: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not condition():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


class GatedProvider:
    """Records prompts in order and blocks each one until the gate opens."""

    def __init__(self, answer: DecisionOutcome | None = None) -> None:
        self.answer = answer or AllowOnce()
        self.gate = threading.Event()
        self.seen: list[str] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def show_prompt(self, target: str, suggested_rule: str) -> DecisionOutcome:
        with self._lock:
            self.seen.append(target)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.gate.wait(5.0)
        with self._lock:
            self.active -= 1
        return self.answer


@pytest.fixture
def provider() -> MagicMock:
    return MagicMock()


@pytest.fixture
def broker(provider: MagicMock):
    broker = DecisionBroker(provider)
    yield broker
    broker.stop()


# --- Response Slot ---


class TestResponseSlot:
    """Tests for exactly-once outcome delivery."""

    def test_first_delivery_wins(self):
        # Arrange
        slot = ResponseSlot()

        # Act
        first = slot.deliver(AllowOnce())
        second = slot.deliver(DenyOnce())

        # Assert
        assert first is True
        assert second is False
        assert slot.wait(0) == AllowOnce()

    def test_wait_times_out_when_empty(self):
        # Arrange
        slot = ResponseSlot()

        # Act
        result = slot.wait(0.01)

        # Assert
        assert result is None
        assert slot.delivered is False

    def test_concurrent_deliveries_fill_once(self):
        # Arrange
        slot = ResponseSlot()
        results: list[bool] = []
        lock = threading.Lock()

        def offer(i: int) -> None:
            accepted = slot.deliver(AllowAlways(rule=f"r{i}"))
            with lock:
                results.append(accepted)

        threads = [threading.Thread(target=offer, args=(i,)) for i in range(20)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert results.count(True) == 1
        assert slot.delivered is True


# --- Provider Answers ---


class TestRequestDecision:
    """Tests for how provider answers become outcomes."""

    def test_returns_provider_answer(self, broker: DecisionBroker, provider: MagicMock):
        # Arrange
        provider.show_prompt.return_value = AllowAlways(rule="*.example.com")

        # Act
        outcome = broker.request_decision("http://a.example.com", "a.example.com")

        # Assert
        assert outcome == AllowAlways(rule="*.example.com")
        provider.show_prompt.assert_called_once_with("http://a.example.com", "a.example.com")

    def test_dismissed_prompt_becomes_deny_once(self, broker: DecisionBroker, provider: MagicMock):
        # Arrange
        provider.show_prompt.return_value = NoChoiceDismissed()

        # Act
        outcome = broker.request_decision("http://x.com", "x.com")

        # Assert
        assert outcome == DenyOnce()

    def test_provider_exception_becomes_provider_error(self, broker: DecisionBroker, provider: MagicMock):
        # Arrange
        provider.show_prompt.side_effect = RuntimeError("display unavailable")

        # Act
        with patch("egress_acp.pep.broker._system_logger") as mock_logger:
            outcome = broker.request_decision("http://x.com", "x.com")

        # Assert
        assert isinstance(outcome, ProviderError)
        assert "display unavailable" in outcome.error
        assert mock_logger.error.call_args[0][0]["event"] == "decision_provider_error"

    def test_unknown_answer_becomes_provider_error(self, broker: DecisionBroker, provider: MagicMock):
        # Arrange
        provider.show_prompt.return_value = "allow"

        # Act
        with patch("egress_acp.pep.broker._system_logger"):
            outcome = broker.request_decision("http://x.com", "x.com")

        # Assert
        assert isinstance(outcome, ProviderError)

    def test_worker_survives_provider_errors(self, broker: DecisionBroker, provider: MagicMock):
        # Arrange
        provider.show_prompt.side_effect = [RuntimeError("boom"), DenyOnce()]

        # Act
        with patch("egress_acp.pep.broker._system_logger"):
            first = broker.request_decision("http://a.com", "a.com")
            second = broker.request_decision("http://b.com", "b.com")

        # Assert
        assert isinstance(first, ProviderError)
        assert second == DenyOnce()

    def test_worker_starts_lazily(self, broker: DecisionBroker, provider: MagicMock):
        # Arrange
        provider.show_prompt.return_value = AllowOnce()
        assert broker.is_running is False

        # Act
        broker.request_decision("http://a.com", "a.com")

        # Assert
        assert broker.is_running is True


# --- Concurrency ---


class TestConcurrency:
    """Tests for serialised, FIFO prompting under concurrent callers."""

    def test_concurrent_requests_prompt_one_at_a_time_in_arrival_order(self):
        # Arrange
        provider = GatedProvider()
        broker = DecisionBroker(provider)
        targets = [f"http://host{i}.example.com" for i in range(10)]
        outcomes: dict[str, DecisionOutcome] = {}
        lock = threading.Lock()

        def ask(target: str) -> None:
            outcome = broker.request_decision(target, target)
            with lock:
                outcomes[target] = outcome

        threads = [threading.Thread(target=ask, args=(t,)) for t in targets]

        # Act
        threads[0].start()
        wait_until(lambda: len(provider.seen) == 1)
        for i, thread in enumerate(threads[1:], start=1):
            thread.start()
            wait_until(lambda i=i: broker.pending_count == i)
        provider.gate.set()
        for thread in threads:
            thread.join(5.0)
        broker.stop()

        # Assert
        assert provider.seen == targets
        assert provider.max_active == 1
        assert set(outcomes) == set(targets)
        assert all(outcome == AllowOnce() for outcome in outcomes.values())


# --- Shutdown ---


class TestStop:
    """Tests for stopping the broker."""

    def test_requests_after_stop_are_dismissed(self, provider: MagicMock):
        # Arrange
        broker = DecisionBroker(provider)
        broker.stop()

        # Act
        outcome = broker.request_decision("http://a.com", "a.com")

        # Assert
        assert outcome == NoChoiceDismissed()
        provider.show_prompt.assert_not_called()

    def test_stop_dismisses_queued_requests(self):
        # Arrange
        provider = GatedProvider(answer=AllowOnce())
        broker = DecisionBroker(provider)
        results: dict[str, DecisionOutcome] = {}

        def ask(target: str) -> None:
            results[target] = broker.request_decision(target, target)

        showing = threading.Thread(target=ask, args=("http://first.com",))
        queued = threading.Thread(target=ask, args=("http://second.com",))
        showing.start()
        wait_until(lambda: len(provider.seen) == 1)
        queued.start()
        wait_until(lambda: broker.pending_count == 1)

        # Act
        broker.stop(timeout=0.05)
        queued.join(5.0)
        provider.gate.set()
        showing.join(5.0)

        # Assert
        assert results["http://second.com"] == NoChoiceDismissed()
        assert results["http://first.com"] == AllowOnce()
        assert provider.seen == ["http://first.com"]

    def test_context_manager_starts_and_stops(self, provider: MagicMock):
        # Act
        with DecisionBroker(provider) as broker:
            running = broker.is_running

        # Assert
        assert running is True
        assert broker.is_running is False

    def test_stop_is_idempotent(self, provider: MagicMock):
        # Arrange
        broker = DecisionBroker(provider)
        broker.start()

        # Act
        broker.stop()
        broker.stop()

        # Assert
        assert broker.is_running is False
