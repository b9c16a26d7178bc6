"""
Transition rule store: read-through cache over the configured rule set.

Features:
- Whole-set caching with a fixed TTL (default 10 minutes)
- Explicit, synchronous invalidation for admin mutations
- Single-flight refill so concurrent misses hit the backing store once
- Bounded-timeout fetch with a hardcoded fallback rule table
- Lock held only around the snapshot swap, never around lookups
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from core.metrics import record_rule_cache_event, observe_histogram

from .errors import InvalidInputError, RuleTableError
from .interfaces import TransitionRuleSource
from .types import DocumentStatus, TransitionRule, normalize_status

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 0.25
DEFAULT_FALLBACK_RETRY_SECONDS = 30.0


# ============================================================================
# Fallback Rule Table
# ============================================================================

_S = DocumentStatus

_FALLBACK_ROWS = [
    # (from, to, min_level, required_permission, description, allowed_by)
    (_S.DRAFT, _S.PENDING_REVIEW, 50, "documents.update", "Submit document for review", "Editor, Manager, Administrator"),
    (_S.PENDING_REVIEW, _S.PENDING_APPROVAL, 70, "documents.update", "Review completed, forward for approval", "Manager, Administrator"),
    (_S.PENDING_REVIEW, _S.DRAFT, 70, "documents.update", "Send back for revision", "Manager, Administrator"),
    (_S.PENDING_APPROVAL, _S.APPROVED, 70, "documents.approve", "Approve document", "Manager, Administrator"),
    (_S.PENDING_APPROVAL, _S.REJECTED, 70, "documents.approve", "Reject document", "Manager, Administrator"),
    (_S.APPROVED, _S.PUBLISHED, 100, "documents.publish", "Publish approved document", "Administrator"),
    (_S.REJECTED, _S.DRAFT, 50, "documents.update", "Return to draft for revision after rejection", "Editor, Manager, Administrator"),
    (_S.DRAFT, _S.ARCHIVED, 100, "documents.delete", "Archive document", "Administrator"),
    (_S.PENDING_REVIEW, _S.ARCHIVED, 100, "documents.delete", "Archive document", "Administrator"),
    (_S.PENDING_APPROVAL, _S.ARCHIVED, 100, "documents.delete", "Archive document", "Administrator"),
    (_S.APPROVED, _S.ARCHIVED, 100, "documents.delete", "Archive document", "Administrator"),
    (_S.PUBLISHED, _S.ARCHIVED, 100, "documents.delete", "Archive document", "Administrator"),
    (_S.REJECTED, _S.ARCHIVED, 100, "documents.delete", "Archive document", "Administrator"),
    (_S.PUBLISHED, _S.EXPIRED, 100, "documents.update", "Mark document as expired", "System, Administrator"),
    (_S.PUBLISHED, _S.PENDING_REVIEW, 90, "documents.update", "Start document revision (new version)", "PPD, Administrator"),
    (_S.ARCHIVED, _S.DRAFT, 100, "documents.update", "Unarchive document to draft", "Administrator"),
]


def build_rule_table(rows: Iterable[tuple]) -> Tuple[TransitionRule, ...]:
    """
    Build and validate an embedded rule table.

    Raises:
        RuleTableError: If any row is malformed or a (from, to) pair repeats
    """
    rules = []
    seen = set()
    for order, row in enumerate(rows, start=1):
        try:
            from_status, to_status, min_level, permission, description, allowed_by = row
            rule = TransitionRule(
                id=f"fallback-{order}",
                from_status=from_status,
                to_status=to_status,
                min_level=min_level,
                required_permission=permission,
                is_active=True,
                sort_order=order,
                description=description,
                allowed_by_label=allowed_by,
            )
        except (InvalidInputError, ValueError, TypeError) as e:
            raise RuleTableError(f"Malformed fallback rule #{order}: {e}") from e

        if rule.key in seen:
            raise RuleTableError(f"Duplicate fallback rule {rule.from_status} -> {rule.to_status}")
        seen.add(rule.key)
        rules.append(rule)

    if not rules:
        raise RuleTableError("Fallback rule table is empty")

    return tuple(rules)


DEFAULT_TRANSITION_RULES: Tuple[TransitionRule, ...] = build_rule_table(_FALLBACK_ROWS)


# ============================================================================
# Snapshot
# ============================================================================

@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of the rule set at one point in time."""
    rules: Tuple[TransitionRule, ...]
    by_key: Dict[Tuple[str, str], TransitionRule]
    by_from: Dict[str, Tuple[TransitionRule, ...]]
    loaded_at: float
    expires_at: float
    is_fallback: bool = False

    @classmethod
    def build(
        cls,
        rules: Iterable[TransitionRule],
        loaded_at: float,
        ttl_seconds: float,
        is_fallback: bool = False,
    ) -> "RuleSnapshot":
        ordered = sorted(rules, key=lambda r: (r.sort_order, r.from_status, r.to_status))

        by_key: Dict[Tuple[str, str], TransitionRule] = {}
        for rule in ordered:
            if rule.key in by_key:
                logger.warning(
                    f"Duplicate transition rule {rule.from_status} -> {rule.to_status}; "
                    f"keeping sort_order={by_key[rule.key].sort_order}"
                )
                continue
            by_key[rule.key] = rule

        kept = tuple(r for r in ordered if by_key.get(r.key) is r)
        by_from: Dict[str, List[TransitionRule]] = {}
        for rule in kept:
            by_from.setdefault(rule.from_status, []).append(rule)

        return cls(
            rules=kept,
            by_key=by_key,
            by_from={k: tuple(v) for k, v in by_from.items()},
            loaded_at=loaded_at,
            expires_at=loaded_at + ttl_seconds,
            is_fallback=is_fallback,
        )


@dataclass
class _Flight:
    """One in-progress refill that concurrent readers wait on."""
    generation: int
    done: threading.Event = field(default_factory=threading.Event)
    snapshot: Optional[RuleSnapshot] = None


# ============================================================================
# Store
# ============================================================================

class TransitionRuleStore:
    """
    Cached access to workflow transition rules.

    Reads never block on each other: a fresh snapshot is returned without
    locking. On a miss, exactly one caller fetches from the backing source
    while the others wait for that result. If the source fails or exceeds
    its timeout, the embedded default table is served instead of an empty
    set, and retried after a short interval.
    """

    def __init__(
        self,
        source: Optional[TransitionRuleSource],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        fetch_timeout_seconds: Optional[float] = DEFAULT_FETCH_TIMEOUT_SECONDS,
        fallback_retry_seconds: float = DEFAULT_FALLBACK_RETRY_SECONDS,
        fallback_rules: Iterable[TransitionRule] = DEFAULT_TRANSITION_RULES,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the store.

        Args:
            source: Backing rule source (None serves the fallback table only)
            ttl_seconds: Lifetime of a successfully fetched rule set
            fetch_timeout_seconds: Bound on one source fetch (None = unbounded)
            fallback_retry_seconds: Lifetime of a fallback snapshot
            fallback_rules: Rules served when the source is unavailable
            clock: Monotonic clock, injectable for tests
        """
        if ttl_seconds <= 0:
            raise InvalidInputError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self.source = source
        self.ttl_seconds = ttl_seconds
        self.fetch_timeout_seconds = fetch_timeout_seconds
        self.fallback_retry_seconds = fallback_retry_seconds
        self.fallback_rules = tuple(fallback_rules)
        self._clock = clock

        self._snapshot: Optional[RuleSnapshot] = None
        self._flight: Optional[_Flight] = None
        self._generation = 0
        self._lock = threading.Lock()

        self._executor: Optional[ThreadPoolExecutor] = None
        if source is not None and fetch_timeout_seconds is not None:
            self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="rule-fetch")

        self._stats = {"hits": 0, "misses": 0, "fetches": 0, "fallbacks": 0, "invalidations": 0}
        self._stats_lock = threading.Lock()

    # ------------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------------

    def get(self, from_status, to_status) -> Optional[TransitionRule]:
        """Rule for (from, to), or None if none is configured."""
        key = (normalize_status(from_status), normalize_status(to_status))
        return self._current().by_key.get(key)

    def list_by_from(self, from_status) -> List[TransitionRule]:
        """Rules leaving a status, ordered by sort_order."""
        return list(self._current().by_from.get(normalize_status(from_status), ()))

    def all_rules(self) -> List[TransitionRule]:
        return list(self._current().rules)

    def invalidate(self) -> None:
        """
        Drop the cached rule set.

        Must be called synchronously by every rule mutation before it
        returns. Calling it repeatedly is harmless. A refill already in
        flight is detached so its result cannot overwrite the newer state.
        """
        with self._lock:
            self._snapshot = None
            self._flight = None
            self._generation += 1
        self._count("invalidations", "invalidate")
        logger.info("Transition rule cache invalidated")

    @property
    def is_fallback(self) -> bool:
        """True if the current snapshot is the embedded fallback table."""
        snapshot = self._snapshot
        return bool(snapshot and snapshot.is_fallback)

    def stats(self) -> Dict[str, object]:
        snapshot = self._snapshot
        with self._stats_lock:
            stats = dict(self._stats)
        stats.update({
            "cached": snapshot is not None,
            "is_fallback": bool(snapshot and snapshot.is_fallback),
            "rule_count": len(snapshot.rules) if snapshot else 0,
            "ttl_seconds": self.ttl_seconds,
        })
        return stats

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)

    # ------------------------------------------------------------------------
    # Cache internals
    # ------------------------------------------------------------------------

    def _count(self, stat: str, event: Optional[str] = None) -> None:
        with self._stats_lock:
            self._stats[stat] += 1
        if event:
            record_rule_cache_event(event)

    def _is_fresh(self, snapshot: Optional[RuleSnapshot]) -> bool:
        return snapshot is not None and self._clock() < snapshot.expires_at

    def _current(self) -> RuleSnapshot:
        snapshot = self._snapshot
        if self._is_fresh(snapshot):
            self._count("hits", "hit")
            return snapshot

        with self._lock:
            snapshot = self._snapshot
            if self._is_fresh(snapshot):
                self._count("hits", "hit")
                return snapshot

            self._count("misses", "miss")
            flight = self._flight
            leader = flight is None
            if leader:
                flight = _Flight(generation=self._generation)
                self._flight = flight

        if not leader:
            flight.done.wait()
            if flight.snapshot is not None:
                return flight.snapshot
            # Leader died without a result; serve the fallback uncached.
            return self._fallback_snapshot()

        try:
            snapshot = self._load()
            flight.snapshot = snapshot
            with self._lock:
                if flight.generation == self._generation:
                    self._snapshot = snapshot
                if self._flight is flight:
                    self._flight = None
        finally:
            flight.done.set()

        return snapshot

    def _load(self) -> RuleSnapshot:
        if self.source is None:
            return self._fallback_snapshot()

        self._count("fetches")
        started = time.monotonic()
        try:
            rules = self._fetch()
            snapshot = RuleSnapshot.build(rules, self._clock(), self.ttl_seconds)
        except FutureTimeoutError:
            logger.warning(
                f"Transition rule fetch exceeded {self.fetch_timeout_seconds}s, using fallback rules"
            )
            return self._fallback_snapshot()
        except Exception as e:
            logger.error(f"Transition rule store unavailable, using fallback rules: {e}", exc_info=True)
            return self._fallback_snapshot()
        finally:
            observe_histogram("rbac.rules.fetch_ms", (time.monotonic() - started) * 1000)

        logger.debug(f"Loaded {len(snapshot.rules)} transition rules from backing store")
        return snapshot

    def _fetch(self) -> List[TransitionRule]:
        if self._executor is None:
            return list(self.source.fetch_transition_rules())

        future = self._executor.submit(self.source.fetch_transition_rules)
        try:
            return list(future.result(timeout=self.fetch_timeout_seconds))
        except FutureTimeoutError:
            future.cancel()
            raise

    def _fallback_snapshot(self) -> RuleSnapshot:
        self._count("fallbacks", "fallback")
        return RuleSnapshot.build(
            self.fallback_rules,
            self._clock(),
            self.fallback_retry_seconds,
            is_fallback=True,
        )
