"""
📈 Load Test Metrics
====================
Aggregation sink for request outcomes. No business logic lives here: the
executor decides what an outcome is, this module only counts it.

- Global total / success / fail counters
- Global duration series (all requests vs. success-only)
- Per-endpoint ok / fail counters
- Per-endpoint error samples (5 distinct messages, most recent kept)
- Per-endpoint success-latency rings (5000 durations, oldest dropped first)
- Nearest-rank percentiles
"""

import math
import statistics
import time
from collections import OrderedDict, defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence


ERROR_SAMPLE_LIMIT = 5
LATENCY_HISTORY_LIMIT = 5000
ERROR_MESSAGE_MAX_CHARS = 200


def percentile(values: Sequence[float], p: float) -> float:
    """
    Nearest-rank percentile.

    Sort ascending and take the element at ``max(0, ceil(p/100 * n) - 1)``.
    Reports depend on this exact definition, so no interpolation.
    """
    if not values:
        return 0
    ordered = sorted(values)
    idx = max(0, math.ceil(p / 100 * len(ordered)) - 1)
    return ordered[min(idx, len(ordered) - 1)]


def truncate_message(message: str, limit: int = ERROR_MESSAGE_MAX_CHARS) -> str:
    text = " ".join(str(message).split())
    return text if len(text) <= limit else text[: limit - 3] + "..."


@dataclass(frozen=True)
class RequestOutcome:
    """Terminal record of one logical call (after any retries)."""
    method: str
    endpoint: str
    success: bool
    status: int
    failure_kind: Optional[str]
    duration_ms: float
    attempts: int = 1
    payload: Any = None


@dataclass
class EndpointStats:
    ok: int = 0
    fail: int = 0

    @property
    def total(self) -> int:
        return self.ok + self.fail

    @property
    def success_rate(self) -> float:
        return (self.ok / self.total * 100) if self.total > 0 else 0


@dataclass
class StatsCollector:
    """Run-wide counters and bounded histories."""

    # Basic counts
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0

    # Duration series (ms)
    all_durations: List[float] = field(default_factory=list)
    success_durations: List[float] = field(default_factory=list)

    # Per-endpoint tracking
    endpoints: Dict[str, EndpointStats] = field(default_factory=lambda: defaultdict(EndpointStats))
    error_samples: Dict[str, "OrderedDict[str, None]"] = field(default_factory=lambda: defaultdict(OrderedDict))
    latency_history: Dict[str, Deque[float]] = field(
        default_factory=lambda: defaultdict(lambda: deque(maxlen=LATENCY_HISTORY_LIMIT))
    )

    # Failure breakdown (HTTP_503, TIMEOUT, ECONNRESET, ...)
    failure_kinds: Dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Timing
    start_time: float = 0
    end_time: float = 0

    def start(self):
        self.start_time = time.time()
        self.end_time = 0

    def stop(self):
        self.end_time = time.time()

    def reset(self):
        self.__init__()

    def record_outcome(self, outcome: RequestOutcome):
        """Count exactly one terminal outcome."""
        self.total_requests += 1
        self.all_durations.append(outcome.duration_ms)
        stats = self.endpoints[outcome.endpoint]

        if outcome.success:
            self.successful_requests += 1
            self.success_durations.append(outcome.duration_ms)
            self.latency_history[outcome.endpoint].append(outcome.duration_ms)
            stats.ok += 1
        else:
            self.failed_requests += 1
            stats.fail += 1
            self.failure_kinds[outcome.failure_kind or "UNKNOWN"] += 1

    def record_error_sample(self, endpoint: str, message: str):
        """Keep the most recent distinct messages, at most ERROR_SAMPLE_LIMIT."""
        samples = self.error_samples[endpoint]
        text = truncate_message(message)
        if text in samples:
            samples.move_to_end(text)
            return
        samples[text] = None
        while len(samples) > ERROR_SAMPLE_LIMIT:
            samples.popitem(last=False)

    def samples_for(self, endpoint: str) -> List[str]:
        return list(self.error_samples.get(endpoint, ()))

    def latencies_for(self, endpoint: str) -> List[float]:
        return list(self.latency_history.get(endpoint, ()))

    # =========================================================================
    # Derived metrics
    # =========================================================================

    @property
    def duration(self) -> float:
        if not self.start_time:
            return 0
        return self.end_time - self.start_time if self.end_time else time.time() - self.start_time

    @property
    def rps(self) -> float:
        return self.total_requests / self.duration if self.duration > 0 else 0

    @property
    def success_rate(self) -> float:
        return (self.successful_requests / self.total_requests * 100) if self.total_requests > 0 else 0

    @property
    def avg_latency(self) -> float:
        return statistics.mean(self.all_durations) if self.all_durations else 0

    def latency_percentile(self, p: float, success_only: bool = False) -> float:
        return percentile(self.success_durations if success_only else self.all_durations, p)

    def endpoint_summary(self) -> List[Dict[str, Any]]:
        """Per-endpoint rows, busiest first."""
        rows = []
        for endpoint, stats in sorted(self.endpoints.items(), key=lambda kv: kv[1].total, reverse=True):
            history = self.latency_history.get(endpoint, ())
            rows.append({
                "endpoint": endpoint,
                "ok": stats.ok,
                "fail": stats.fail,
                "success_rate_percent": round(stats.success_rate, 2),
                "p50_ms": round(percentile(history, 50), 2),
                "p95_ms": round(percentile(history, 95), 2),
                "p99_ms": round(percentile(history, 99), 2),
                "error_samples": self.samples_for(endpoint),
            })
        return rows

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON export."""
        return {
            "summary": {
                "total_requests": self.total_requests,
                "successful_requests": self.successful_requests,
                "failed_requests": self.failed_requests,
                "success_rate_percent": round(self.success_rate, 2),
                "duration_seconds": round(self.duration, 2),
                "requests_per_second": round(self.rps, 2),
            },
            "latency_ms": {
                "average": round(self.avg_latency, 2),
                "p50": round(self.latency_percentile(50), 2),
                "p95": round(self.latency_percentile(95), 2),
                "p99": round(self.latency_percentile(99), 2),
                "success_p50": round(self.latency_percentile(50, success_only=True), 2),
                "success_p95": round(self.latency_percentile(95, success_only=True), 2),
                "success_p99": round(self.latency_percentile(99, success_only=True), 2),
            },
            "failure_kinds": dict(self.failure_kinds),
            "endpoints": self.endpoint_summary(),
        }
