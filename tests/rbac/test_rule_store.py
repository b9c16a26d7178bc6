"""
Tests for the cached transition rule store.

Covers TTL expiry with a fake clock, explicit invalidation, single-flight
refill under concurrent misses, and the fallback table when the backing
store fails or times out.
"""

import threading
import time

import pytest

from core.metrics import get_counter
from core.rbac.errors import InvalidInputError, RuleTableError, StoreUnavailableError
from core.rbac.interfaces import TransitionRuleSource
from core.rbac.transitions import (
    DEFAULT_TRANSITION_RULES,
    RuleSnapshot,
    TransitionRuleStore,
    build_rule_table,
)
from core.rbac.types import TransitionRule
from core.rbac.workflow import WorkflowGate


RULES = [
    TransitionRule("DRAFT", "PENDING_REVIEW", 50, "documents.update", sort_order=1, id="r1"),
    TransitionRule("DRAFT", "ARCHIVED", 100, "documents.delete", sort_order=2, id="r2"),
    TransitionRule("PENDING_REVIEW", "DRAFT", 70, "documents.update", sort_order=3, id="r3"),
]


class CountingSource(TransitionRuleSource):
    """Rule source that counts fetches."""

    def __init__(self, rules=RULES):
        self.rules = list(rules)
        self.calls = 0

    def fetch_transition_rules(self):
        self.calls += 1
        return list(self.rules)


class FailingSource(TransitionRuleSource):
    def __init__(self):
        self.calls = 0

    def fetch_transition_rules(self):
        self.calls += 1
        raise StoreUnavailableError("connection refused")


class BlockingSource(CountingSource):
    """Rule source whose fetch blocks until released."""

    def __init__(self, rules=RULES):
        super().__init__(rules)
        self.started = threading.Event()
        self.release = threading.Event()
        self._lock = threading.Lock()

    def fetch_transition_rules(self):
        with self._lock:
            self.calls += 1
            rules = list(self.rules)
        self.started.set()
        self.release.wait(timeout=5)
        return rules


def _store(source, clock, **kwargs):
    kwargs.setdefault("fetch_timeout_seconds", None)
    return TransitionRuleStore(source=source, clock=clock, **kwargs)


# ============================================================================
# Reads
# ============================================================================

class TestReads:
    """Test get and list_by_from."""

    def test_get(self, fake_clock):
        store = _store(CountingSource(), fake_clock)

        assert store.get("DRAFT", "PENDING_REVIEW").id == "r1"
        assert store.get("draft", "archived").id == "r2"
        assert store.get("DRAFT", "PUBLISHED") is None

    def test_list_by_from_ordered(self, fake_clock):
        store = _store(CountingSource(list(reversed(RULES))), fake_clock)

        assert [r.id for r in store.list_by_from("DRAFT")] == ["r1", "r2"]
        assert store.list_by_from("APPROVED") == []

    def test_malformed_status_raises(self, fake_clock):
        store = _store(CountingSource(), fake_clock)
        with pytest.raises(InvalidInputError):
            store.get("DRAFT;", "ARCHIVED")

    def test_empty_rule_set_is_served(self, fake_clock):
        store = _store(CountingSource([]), fake_clock)

        assert store.list_by_from("DRAFT") == []
        assert store.is_fallback is False

    def test_inactive_rules_are_returned(self, fake_clock):
        inactive = TransitionRule("DRAFT", "REJECTED", 0, is_active=False, id="r9")
        store = _store(CountingSource([inactive]), fake_clock)

        assert store.get("DRAFT", "REJECTED").is_active is False

    def test_nonpositive_ttl_rejected(self):
        with pytest.raises(InvalidInputError):
            TransitionRuleStore(source=None, ttl_seconds=0)


# ============================================================================
# TTL and Invalidation
# ============================================================================

class TestCaching:
    """Test TTL expiry and invalidation."""

    def test_reads_within_ttl_fetch_once(self, fake_clock):
        source = CountingSource()
        store = _store(source, fake_clock)

        for _ in range(5):
            store.get("DRAFT", "PENDING_REVIEW")
        fake_clock.advance(599)
        store.list_by_from("DRAFT")

        assert source.calls == 1
        assert store.stats()["hits"] == 5

    def test_default_ttl_is_ten_minutes(self, fake_clock):
        source = CountingSource()
        store = _store(source, fake_clock)

        store.all_rules()
        fake_clock.advance(600)
        store.all_rules()

        assert store.ttl_seconds == 600
        assert source.calls == 2

    def test_invalidate_forces_refetch(self, fake_clock):
        source = CountingSource()
        store = _store(source, fake_clock)
        store.all_rules()

        source.rules = RULES[:1]
        assert len(store.all_rules()) == 3

        store.invalidate()

        assert [r.id for r in store.all_rules()] == ["r1"]
        assert source.calls == 2

    def test_invalidate_is_idempotent(self, fake_clock):
        once_source = CountingSource()
        once = _store(once_source, fake_clock)
        twice_source = CountingSource()
        twice = _store(twice_source, fake_clock)
        once.all_rules()
        twice.all_rules()

        once.invalidate()
        twice.invalidate()
        twice.invalidate()

        assert once.all_rules() == twice.all_rules()
        assert once_source.calls == twice_source.calls == 2

    def test_invalidate_before_first_read(self, fake_clock):
        store = _store(CountingSource(), fake_clock)
        store.invalidate()
        assert len(store.all_rules()) == 3

    def test_cache_events_are_counted(self, fake_clock):
        store = _store(CountingSource(), fake_clock)
        store.all_rules()
        store.all_rules()
        store.invalidate()

        assert get_counter("rbac.rules.cache", {"event": "miss"}) == 1
        assert get_counter("rbac.rules.cache", {"event": "hit"}) == 1
        assert get_counter("rbac.rules.cache", {"event": "invalidate"}) == 1

    def test_stats(self, fake_clock):
        store = _store(CountingSource(), fake_clock)
        assert store.stats()["cached"] is False

        store.all_rules()
        stats = store.stats()

        assert stats["cached"] is True
        assert stats["rule_count"] == 3
        assert stats["fetches"] == 1
        assert stats["is_fallback"] is False


# ============================================================================
# Fallback
# ============================================================================

class TestFallback:
    """Test the embedded default table when the backing store fails."""

    def test_unreachable_store_serves_default_table(self, fake_clock):
        store = _store(FailingSource(), fake_clock)
        gate = WorkflowGate(store)

        rules = gate.allowed_transitions("DRAFT", 100, {"documents.update", "documents.delete"}, False)

        assert [r.to_status for r in rules] == ["PENDING_REVIEW", "ARCHIVED"]
        assert store.is_fallback is True
        assert store.all_rules() == list(DEFAULT_TRANSITION_RULES)
        assert get_counter("rbac.rules.cache", {"event": "fallback"}) == 1

    def test_fallback_is_retried_after_short_interval(self, fake_clock):
        source = FailingSource()
        store = _store(source, fake_clock, fallback_retry_seconds=30)

        store.all_rules()
        fake_clock.advance(29)
        store.all_rules()
        assert source.calls == 1

        fake_clock.advance(1)
        store.all_rules()
        assert source.calls == 2

    def test_recovers_when_store_returns(self, fake_clock):
        failing = FailingSource()
        store = _store(failing, fake_clock, fallback_retry_seconds=30)
        store.all_rules()

        store.source = CountingSource()
        fake_clock.advance(30)

        assert [r.id for r in store.list_by_from("DRAFT")] == ["r1", "r2"]
        assert store.is_fallback is False

    def test_slow_store_times_out_to_fallback(self):
        source = BlockingSource()
        store = TransitionRuleStore(source=source, fetch_timeout_seconds=0.05)
        try:
            started = time.monotonic()
            rules = store.list_by_from("DRAFT")
            elapsed = time.monotonic() - started
        finally:
            source.release.set()
            store.close()

        assert store.is_fallback is True
        assert [r.to_status for r in rules] == ["PENDING_REVIEW", "ARCHIVED"]
        assert elapsed < 2

    def test_no_source_serves_default_table(self):
        store = TransitionRuleStore(source=None)

        assert store.get("APPROVED", "PUBLISHED").min_level == 100
        assert store.is_fallback is True


class TestRuleTable:
    """Test validation of embedded rule tables."""

    def test_default_table_is_valid(self):
        assert len(DEFAULT_TRANSITION_RULES) == 16
        assert all(r.is_active for r in DEFAULT_TRANSITION_RULES)

    def test_duplicate_pair_rejected(self):
        row = ("DRAFT", "PENDING_REVIEW", 50, "documents.update", "Submit", "Editor")
        with pytest.raises(RuleTableError):
            build_rule_table([row, row])

    def test_malformed_row_rejected(self):
        with pytest.raises(RuleTableError):
            build_rule_table([("DRAFT", "PENDING_REVIEW", 500, None, "", None)])
        with pytest.raises(RuleTableError):
            build_rule_table([("DRAFT", "PENDING_REVIEW")])

    def test_empty_table_rejected(self):
        with pytest.raises(RuleTableError):
            build_rule_table([])

    def test_snapshot_keeps_lowest_sort_order_on_duplicates(self):
        snapshot = RuleSnapshot.build(
            [
                TransitionRule("DRAFT", "ARCHIVED", 100, sort_order=5, id="late"),
                TransitionRule("DRAFT", "ARCHIVED", 90, sort_order=1, id="early"),
            ],
            loaded_at=0.0,
            ttl_seconds=60,
        )

        assert snapshot.by_key[("DRAFT", "ARCHIVED")].id == "early"
        assert [r.id for r in snapshot.rules] == ["early"]


# ============================================================================
# Concurrency
# ============================================================================

class TestConcurrency:
    """Test single-flight refill and invalidation during a refill."""

    def test_concurrent_misses_fetch_once(self):
        source = BlockingSource()
        store = TransitionRuleStore(source=source, fetch_timeout_seconds=None)
        results = []

        def read():
            results.append(tuple(store.all_rules()))

        leader = threading.Thread(target=read)
        leader.start()
        assert source.started.wait(timeout=5)

        followers = [threading.Thread(target=read) for _ in range(7)]
        for thread in followers:
            thread.start()
        time.sleep(0.05)
        source.release.set()

        for thread in [leader] + followers:
            thread.join(timeout=5)

        assert source.calls == 1
        assert len(results) == 8
        assert len(set(results)) == 1

    def test_invalidate_during_refill_discards_stale_result(self):
        source = BlockingSource()
        store = TransitionRuleStore(source=source, fetch_timeout_seconds=None)

        leader = threading.Thread(target=store.all_rules)
        leader.start()
        assert source.started.wait(timeout=5)

        # A rule mutation lands while the old rule set is still being fetched
        source.rules = RULES[:1]
        store.invalidate()
        source.release.set()
        leader.join(timeout=5)

        assert [r.id for r in store.all_rules()] == ["r1"]
        assert source.calls == 2

    def test_concurrent_reads_are_all_counted(self):
        store = TransitionRuleStore(source=CountingSource(), fetch_timeout_seconds=None)

        def read():
            for _ in range(200):
                store.all_rules()

        threads = [threading.Thread(target=read) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        stats = store.stats()
        assert stats["hits"] + stats["misses"] == 1600
        assert get_counter("rbac.rules.cache", {"event": "hit"}) == stats["hits"]
        assert get_counter("rbac.rules.cache", {"event": "miss"}) == stats["misses"]
