# Copyright (c) 2026 EARS-Flow Contributors. All Rights Reserved.
"""Unit tests for SessionMetrics."""

from ears_flow.core.metrics import SessionMetrics


class TestSessionMetrics:
    def test_counter_increment(self):
        m = SessionMetrics()
        m.inc("skill_activations_total")
        m.inc("skill_activations_total")
        assert m.get_counter("skill_activations_total") == 2

    def test_counter_default_zero(self):
        m = SessionMetrics()
        assert m.get_counter("nonexistent") == 0

    def test_gauge(self):
        m = SessionMetrics()
        m.set_gauge("context_utilization_percent", 42.5)
        assert m.get_gauge("context_utilization_percent") == 42.5

    def test_observe(self):
        m = SessionMetrics()
        m.observe("eviction_tokens_freed", 100)
        m.observe("eviction_tokens_freed", 200)
        snap = m.snapshot()
        assert snap["histograms"]["eviction_tokens_freed"]["avg"] == 150.0
        assert snap["histograms"]["eviction_tokens_freed"]["max"] == 200

    def test_record_decision(self):
        m = SessionMetrics()
        m.record_decision("main-workflow")
        m.record_decision("none")
        assert m.get_counter("router_decisions_total") == 2
        assert m.get_counter("router_decisions_main_workflow") == 1

    def test_record_eviction(self):
        m = SessionMetrics()
        m.record_eviction(3, 900)
        assert m.get_counter("context_evictions_total") == 3
        assert "eviction_tokens_freed" in m.snapshot()["histograms"]

    def test_reset(self):
        m = SessionMetrics()
        m.inc("x")
        m.set_gauge("y", 1.0)
        m.reset()
        snap = m.snapshot()
        assert snap["counters"] == {}
        assert snap["gauges"] == {}
        assert snap["histograms"] == {}
        assert snap["uptime_seconds"] >= 0

    def test_histogram_window_and_p95(self):
        m = SessionMetrics()
        for i in range(1, 601):
            m.observe("latency", float(i))
        summary = m.snapshot()["histograms"]["latency"]
        assert summary["count"] == 500
        assert summary["min"] == 101.0
        assert summary["max"] == 600.0
        assert summary["p95"] == 576.0
