"""Metrics service for tracking API performance.

Singleton service counting recommendation requests, their latency, feedback
outcomes and strategy failures.
"""

import threading
from collections import Counter
from typing import Dict, Iterable


class MetricsService:
    """Singleton service for tracking API metrics.

    Thread-safe counters and latency tracking.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(MetricsService, cls).__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._lock = threading.Lock()
        self._reset_counters()
        self._initialized = True

    def _reset_counters(self) -> None:
        self._recommendation_count = 0
        self._total_latency_ms = 0.0
        self._min_latency_ms = float("inf")
        self._max_latency_ms = 0.0
        self._feedback_accepted = 0
        self._feedback_rejected = 0
        self._strategy_failures: Counter = Counter()

    def record_recommendation(self, latency_ms: float, failed_strategies: Iterable[str] = ()) -> None:
        """Record a served recommendation request.

        Args:
            latency_ms: Latency in milliseconds
            failed_strategies: Names of strategies that failed during the request
        """
        with self._lock:
            self._recommendation_count += 1
            self._total_latency_ms += latency_ms
            self._min_latency_ms = min(self._min_latency_ms, latency_ms)
            self._max_latency_ms = max(self._max_latency_ms, latency_ms)
            self._strategy_failures.update(failed_strategies)

    def record_feedback(self, accepted: bool) -> None:
        with self._lock:
            if accepted:
                self._feedback_accepted += 1
            else:
                self._feedback_rejected += 1

    def get_metrics(self) -> Dict:
        """Get current metrics.

        Returns:
            Dictionary with request count, latency statistics, feedback
            counts and per-strategy failure counts.
        """
        with self._lock:
            avg_latency = (
                self._total_latency_ms / self._recommendation_count
                if self._recommendation_count > 0
                else 0.0
            )

            return {
                "recommendation_count": self._recommendation_count,
                "average_latency_ms": round(avg_latency, 2),
                "min_latency_ms": round(self._min_latency_ms, 2) if self._min_latency_ms != float("inf") else 0.0,
                "max_latency_ms": round(self._max_latency_ms, 2),
                "feedback_accepted": self._feedback_accepted,
                "feedback_rejected": self._feedback_rejected,
                "strategy_failures": dict(self._strategy_failures),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._reset_counters()


# Global singleton instance
metrics_service = MetricsService()
