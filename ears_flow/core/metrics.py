# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.

"""
Metrics — In-memory counters for session observability.

Tracks routing outcomes and budget pressure (activations, evictions,
overflows, utilization). Nothing leaves the process; /api/metrics serves
snapshot().
"""

from __future__ import annotations

import time
from collections import Counter, deque
from typing import Any, Deque, Dict

HISTOGRAM_WINDOW = 500


def _summarize(values: Deque[float]) -> Dict[str, float]:
    ordered = sorted(values)
    p95 = ordered[min(len(ordered) - 1, int(len(ordered) * 0.95))]
    return {
        "count": len(ordered),
        "avg": round(sum(ordered) / len(ordered), 2),
        "min": ordered[0],
        "max": ordered[-1],
        "p95": p95,
    }


class SessionMetrics:
    """Counters, gauges and windowed histograms shared by all sessions."""

    def __init__(self) -> None:
        self._counters: Counter = Counter()
        self._gauges: Dict[str, float] = {}
        self._histograms: Dict[str, Deque[float]] = {}
        self._started = time.monotonic()

    def inc(self, name: str, amount: int = 1) -> None:
        self._counters[name] += amount

    def get_counter(self, name: str) -> int:
        return self._counters[name]

    def set_gauge(self, name: str, value: float) -> None:
        self._gauges[name] = value

    def get_gauge(self, name: str) -> float:
        return self._gauges.get(name, 0.0)

    def observe(self, name: str, value: float) -> None:
        """Keep the last HISTOGRAM_WINDOW observations of `name`."""
        if name not in self._histograms:
            self._histograms[name] = deque(maxlen=HISTOGRAM_WINDOW)
        self._histograms[name].append(value)

    # ── Domain helpers ──────────────────────────────────────────

    def record_decision(self, decision_type: str) -> None:
        self.inc("router_decisions_total")
        self.inc("router_decisions_" + decision_type.replace("-", "_"))

    def record_eviction(self, entries: int, tokens_freed: int) -> None:
        self.inc("context_evictions_total", entries)
        self.observe("eviction_tokens_freed", tokens_freed)

    def reset(self) -> None:
        self._counters.clear()
        self._gauges.clear()
        self._histograms.clear()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "uptime_seconds": round(time.monotonic() - self._started, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": {
                name: _summarize(values)
                for name, values in self._histograms.items() if values
            },
        }


session_metrics = SessionMetrics()
