# core/metrics.py — in-process metrics and authorization audit logging

import time
import threading
import logging
from typing import Dict, Any, Optional, List, Tuple

# Latency buckets in milliseconds; the last bucket also absorbs overflow.
LATENCY_BUCKETS_MS = (0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0)

MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _key(name: str, labels: Optional[Dict[str, str]]) -> MetricKey:
    return name, tuple(sorted((labels or {}).items()))


class MetricsCollector:
    """
    Thread-safe store for decision counters and latency histograms.

    Metrics are identified by name plus an optional label set; label order
    does not matter.
    """

    def __init__(self, buckets: Tuple[float, ...] = LATENCY_BUCKETS_MS):
        self.buckets = buckets
        self._lock = threading.Lock()
        self._counters: Dict[MetricKey, int] = {}
        self._histograms: Dict[MetricKey, Dict[str, Any]] = {}
        self._started_at = time.time()

    def increment(self, name: str, value: int = 1, labels: Dict[str, str] = None):
        key = _key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + value

    def observe(self, name: str, value: float, labels: Dict[str, str] = None):
        key = _key(name, labels)
        with self._lock:
            histogram = self._histograms.get(key)
            if histogram is None:
                histogram = {"count": 0, "sum": 0.0, "counts": [0] * len(self.buckets)}
                self._histograms[key] = histogram

            histogram["count"] += 1
            histogram["sum"] += value
            index = next(
                (i for i, bound in enumerate(self.buckets) if value <= bound),
                len(self.buckets) - 1,
            )
            histogram["counts"][index] += 1

    def counter(self, name: str, labels: Dict[str, str] = None) -> int:
        with self._lock:
            return self._counters.get(_key(name, labels), 0)

    def histogram(self, name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
        with self._lock:
            histogram = self._histograms.get(_key(name, labels))
            if histogram is None:
                return {"count": 0, "sum": 0.0, "avg": 0.0, "buckets": dict.fromkeys(self.buckets, 0)}
            return {
                "count": histogram["count"],
                "sum": histogram["sum"],
                "avg": histogram["sum"] / histogram["count"],
                "buckets": dict(zip(self.buckets, histogram["counts"])),
            }

    def counters_by_name(self, prefix: str = "") -> Dict[str, List[Dict[str, Any]]]:
        """Group counter values by metric name, one entry per label set."""
        with self._lock:
            items = list(self._counters.items())

        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for (name, labels), value in sorted(items):
            if name.startswith(prefix):
                grouped.setdefault(name, []).append({"labels": dict(labels), "value": value})
        return grouped

    def uptime_seconds(self) -> float:
        return time.time() - self._started_at

    def reset(self):
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
            self._started_at = time.time()


# Global metrics collector instance
_metrics = MetricsCollector()

audit_logger = logging.getLogger("rbac.audit")


def increment_counter(name: str, value: int = 1, labels: Dict[str, str] = None):
    """Increment a counter metric."""
    _metrics.increment(name, value, labels)


def observe_histogram(name: str, value: float, labels: Dict[str, str] = None):
    """Observe a latency value in milliseconds."""
    _metrics.observe(name, value, labels)


def get_counter(name: str, labels: Dict[str, str] = None) -> int:
    return _metrics.counter(name, labels)


def get_histogram_stats(name: str, labels: Dict[str, str] = None) -> Dict[str, Any]:
    return _metrics.histogram(name, labels)


def reset_metrics():
    """Reset all metrics to zero."""
    _metrics.reset()


# ============================================================================
# Authorization Metrics and Auditing
# ============================================================================

def record_rbac_resolution(success: bool = True, auth_method: str = "unknown"):
    """
    Record a caller identity resolution attempt.

    Args:
        success: Whether resolution succeeded
        auth_method: Authentication method used
    """
    increment_counter("rbac.resolutions", labels={"success": str(success).lower()})
    increment_counter("rbac.resolutions.by_method", labels={"method": auth_method})


def record_rbac_check(allowed: bool, capability: str, route: str = ""):
    """
    Record a capability/permission guard check on an endpoint.

    Args:
        allowed: Whether access was granted
        capability: Capability or permission being checked
        route: Route being accessed
    """
    if allowed:
        increment_counter("rbac.allowed")
        increment_counter("rbac.allowed.by_capability", labels={"capability": capability})
    else:
        increment_counter("rbac.denied")
        increment_counter("rbac.denied.by_capability", labels={"capability": capability})
        if route:
            increment_counter("rbac.denied.by_route", labels={"route": route})


def record_access_decision(allowed: bool, reason: Optional[str] = None):
    """Record a document access decision and the condition that granted it."""
    increment_counter("rbac.document_access", labels={"allowed": str(allowed).lower()})
    if allowed and reason:
        increment_counter("rbac.document_access.by_reason", labels={"reason": reason})


def record_transition_decision(allowed: bool, reason: str):
    """Record a workflow transition decision."""
    increment_counter("rbac.transitions", labels={"allowed": str(allowed).lower()})
    increment_counter("rbac.transitions.by_reason", labels={"reason": reason})


def record_rule_cache_event(event: str):
    """
    Record a transition rule cache event.

    Args:
        event: One of "hit", "miss", "fallback", "invalidate"
    """
    increment_counter("rbac.rules.cache", labels={"event": event})


def audit_rbac_denial(
    capability: str,
    user_id: Optional[str],
    roles: List[str],
    route: str,
    method: str = "unknown",
    metadata: Optional[Dict[str, Any]] = None
):
    """
    Emit audit log entry for an authorization denial.

    Creates structured log entry for security monitoring.

    Args:
        capability: Capability or permission that was denied
        user_id: User ID who was denied (None for anonymous)
        roles: User's roles
        route: Route/endpoint being accessed
        method: HTTP method
        metadata: Additional context
    """
    audit_entry = {
        "event": "rbac_denial",
        "capability": capability,
        "user_id": user_id or "anonymous",
        "roles": roles,
        "route": route,
        "method": method,
        "timestamp": time.time(),
    }

    if metadata:
        audit_entry["metadata"] = metadata

    audit_logger.warning(
        f"RBAC_DENIAL capability={capability} user={user_id or 'anonymous'} "
        f"roles={','.join(roles)} route={method} {route}",
        extra={"audit": audit_entry}
    )

    increment_counter("rbac.audit.denials")
    increment_counter("rbac.audit.denials.by_capability", labels={"capability": capability})


def get_rbac_metrics() -> Dict[str, Any]:
    """
    Get all authorization metrics grouped by category.

    Returns:
        Dictionary keyed by the second segment of the metric name
        (e.g. "allowed", "transitions", "rules") plus the collector uptime
    """
    rbac_metrics: Dict[str, Any] = {}

    for metric_name, metric_data in _metrics.counters_by_name("rbac.").items():
        category = metric_name.split(".")[1]
        rbac_metrics.setdefault(category, {})[metric_name] = metric_data

    rbac_metrics.setdefault("rules", {})["rbac.rules.fetch_ms"] = get_histogram_stats("rbac.rules.fetch_ms")
    rbac_metrics["uptime_seconds"] = _metrics.uptime_seconds()
    return rbac_metrics
