"""Tests for the live policy store.

Tests use the AAA pattern (Arrange-Act-Assert) for clarity.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest

from egress_acp.exceptions import InvalidPatternError, PolicyPersistenceError, UpstreamProxyError
from egress_acp.pdp.policy import PolicySnapshot
from egress_acp.pep.store import PolicyStore


# --- Fixtures ---


@pytest.fixture
def persistence() -> MagicMock:
    return MagicMock()


@pytest.fixture
def store(persistence: MagicMock) -> PolicyStore:
    return PolicyStore(
        PolicySnapshot(allow=("allowed.com",), deny=("blocked.com",)),
        persistence=persistence,
    )


# --- Snapshot ---


class TestSnapshot:
    """Tests for reading the current snapshot."""

    def test_empty_store_has_empty_snapshot(self):
        # Act
        snapshot = PolicyStore().snapshot()

        # Assert
        assert snapshot.allow == ()
        assert snapshot.deny == ()
        assert snapshot.upstream_proxy is None

    def test_snapshot_is_stable_across_updates(self, store: PolicyStore):
        # Arrange
        before = store.snapshot()

        # Act
        store.append_allow("new.com")

        # Assert
        assert before.allow == ("allowed.com",)
        assert store.snapshot().allow == ("allowed.com", "new.com")


# --- Append ---


class TestAppend:
    """Tests for append_allow / append_deny."""

    def test_append_allow_publishes_and_persists(self, store: PolicyStore, persistence: MagicMock):
        # Act
        changed = store.append_allow("*.example.com")

        # Assert
        assert changed is True
        assert store.snapshot().allow == ("allowed.com", "*.example.com")
        persistence.save.assert_called_once_with(store.snapshot())

    def test_append_deny_publishes_and_persists(self, store: PolicyStore, persistence: MagicMock):
        # Act
        changed = store.append_deny("tracker.io")

        # Assert
        assert changed is True
        assert store.snapshot().deny == ("blocked.com", "tracker.io")
        persistence.save.assert_called_once()

    def test_duplicate_append_is_noop(self, store: PolicyStore, persistence: MagicMock):
        # Arrange
        revision = store.snapshot().revision

        # Act
        first = store.append_allow("new.com")
        second = store.append_allow("new.com")

        # Assert
        assert first is True
        assert second is False
        assert store.snapshot().allow.count("new.com") == 1
        assert store.snapshot().revision == revision + 1
        assert persistence.save.call_count == 1

    def test_existing_pattern_is_not_persisted(self, store: PolicyStore, persistence: MagicMock):
        # Act
        changed = store.append_deny("blocked.com")

        # Assert
        assert changed is False
        persistence.save.assert_not_called()

    def test_persist_failure_keeps_in_memory_change(self, store: PolicyStore, persistence: MagicMock):
        # Arrange
        persistence.save.side_effect = PolicyPersistenceError("disk full")

        # Act
        with patch("egress_acp.pep.store._system_logger") as mock_logger:
            changed = store.append_allow("kept.com")

        # Assert
        assert changed is True
        assert "kept.com" in store.snapshot().allow
        logged = mock_logger.error.call_args[0][0]
        assert logged["event"] == "policy_persist_failed"
        assert "disk full" in logged["message"]

    @pytest.mark.parametrize("pattern", ["", "[bad", "ab\\"])
    def test_malformed_pattern_is_rejected(self, store: PolicyStore, persistence: MagicMock, pattern: str):
        # Arrange
        before = store.snapshot()

        # Act & Assert
        with pytest.raises(InvalidPatternError):
            store.append_allow(pattern)
        with pytest.raises(InvalidPatternError):
            store.append_deny(pattern)
        assert store.snapshot() is before
        persistence.save.assert_not_called()

    def test_memory_only_store_appends_without_persistence(self):
        # Arrange
        store = PolicyStore()

        # Act
        changed = store.append_allow("a.com")

        # Assert
        assert changed is True
        assert store.snapshot().allow == ("a.com",)

    def test_concurrent_appends_are_all_kept(self, persistence: MagicMock):
        # Arrange
        store = PolicyStore(persistence=persistence)
        patterns = [f"host{i}.example.com" for i in range(50)]
        threads = [threading.Thread(target=store.append_allow, args=(p,)) for p in patterns]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert sorted(store.snapshot().allow) == sorted(patterns)
        assert store.snapshot().revision == 50

    def test_concurrent_duplicate_appends_keep_one(self):
        # Arrange
        store = PolicyStore()
        results: list[bool] = []
        lock = threading.Lock()

        def append() -> None:
            changed = store.append_deny("same.com")
            with lock:
                results.append(changed)

        threads = [threading.Thread(target=append) for _ in range(20)]

        # Act
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        # Assert
        assert store.snapshot().deny == ("same.com",)
        assert results.count(True) == 1


# --- Replace ---


class TestReplace:
    """Tests for atomic replacement."""

    def test_replace_installs_new_lists(self, store: PolicyStore, persistence: MagicMock):
        # Act
        published = store.replace(["x.com", "x.com", "y.com"], ["z.com"])

        # Assert
        assert published.allow == ("x.com", "y.com")
        assert published.deny == ("z.com",)
        assert store.snapshot() is published
        persistence.save.assert_not_called()

    def test_replace_keeps_upstream_when_omitted(self):
        # Arrange
        store = PolicyStore(PolicySnapshot(upstream_proxy="http://proxy:8080"))

        # Act
        store.replace([], [])

        # Assert
        assert store.snapshot().upstream_proxy == "http://proxy:8080"

    def test_replace_can_clear_upstream(self):
        # Arrange
        store = PolicyStore(PolicySnapshot(upstream_proxy="http://proxy:8080"))

        # Act
        store.replace([], [], upstream_proxy=None)

        # Assert
        assert store.snapshot().upstream_proxy is None

    def test_replace_bumps_revision(self, store: PolicyStore):
        # Arrange
        revision = store.snapshot().revision

        # Act
        published = store.replace(["a.com"], [])

        # Assert
        assert published.revision == revision + 1

    def test_readers_never_see_mixed_lists(self):
        # Arrange
        store = PolicyStore(PolicySnapshot(allow=("old-a",), deny=("old-d",)))
        stop = threading.Event()
        torn: list[PolicySnapshot] = []

        def read() -> None:
            while not stop.is_set():
                snap = store.snapshot()
                if (snap.allow[0].startswith("old")) != (snap.deny[0].startswith("old")):
                    torn.append(snap)

        readers = [threading.Thread(target=read) for _ in range(4)]
        for r in readers:
            r.start()

        # Act
        for i in range(200):
            if i % 2:
                store.replace(["old-a"], ["old-d"])
            else:
                store.replace(["new-a"], ["new-d"])
        stop.set()
        for r in readers:
            r.join()

        # Assert
        assert torn == []


# --- Upstream ---


class TestSetUpstream:
    """Tests for set_upstream."""

    def test_set_upstream_validates_and_persists(self, store: PolicyStore, persistence: MagicMock):
        # Act
        published = store.set_upstream(" http://proxy.corp:8080 ")

        # Assert
        assert published.upstream_proxy == "http://proxy.corp:8080"
        persistence.save.assert_called_once_with(published)

    def test_clear_upstream(self, persistence: MagicMock):
        # Arrange
        store = PolicyStore(PolicySnapshot(upstream_proxy="http://proxy:8080"), persistence=persistence)

        # Act
        published = store.set_upstream(None)

        # Assert
        assert published.upstream_proxy is None

    def test_invalid_upstream_raises_and_keeps_snapshot(self, store: PolicyStore, persistence: MagicMock):
        # Arrange
        before = store.snapshot()

        # Act & Assert
        with pytest.raises(UpstreamProxyError):
            store.set_upstream("socks5://proxy:1080")
        assert store.snapshot() is before
        persistence.save.assert_not_called()
