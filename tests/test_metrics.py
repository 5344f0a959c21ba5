"""Tests for the metrics collector."""

import pytest

from limiter.app.core.metrics import (
    MetricsCollector,
    get_metrics_collector,
    reset_metrics_collector,
)


@pytest.fixture
def collector():
    return MetricsCollector()


class TestMetricsCollector:
    """Tests for decision counters and export formats."""

    @pytest.mark.asyncio
    async def test_summary_counts(self, collector):
        await collector.record_decision("search", True)
        await collector.record_decision("search", False)
        await collector.record_decision("search", False, cached=True)
        await collector.record_decision("login", True, degraded=True)
        await collector.record_store_error("StoreTimeout")
        await collector.record_request("/v1/ratelimit/check", 0.002, 200)
        await collector.record_request("/v1/ratelimit/check", 0.004, 500)

        summary = await collector.get_summary()

        assert summary["total_decisions"] == 4
        assert summary["allowed"] == 2
        assert summary["denied"] == 2
        assert summary["deny_rate"] == 0.5
        assert summary["policies"]["search"] == {
            "allowed": 1, "denied": 2, "degraded": 0, "cached": 1,
        }
        assert summary["policies"]["login"]["degraded"] == 1
        assert summary["store_errors"] == {"StoreTimeout": 1}
        assert summary["requests"]["/v1/ratelimit/check"]["count"] == 2
        assert summary["requests"]["/v1/ratelimit/check"]["errors"] == 1
        assert summary["requests"]["/v1/ratelimit/check"]["avg_duration_ms"] == 3.0

    @pytest.mark.asyncio
    async def test_empty_summary(self, collector):
        summary = await collector.get_summary()
        assert summary["total_decisions"] == 0
        assert summary["deny_rate"] == 0

    @pytest.mark.asyncio
    async def test_prometheus_format(self, collector):
        await collector.record_decision("search", True)
        await collector.record_decision("search", False, degraded=True)
        await collector.record_store_error("ConnectionLost")

        text = await collector.get_prometheus_metrics()

        assert "# TYPE ratelimit_decisions_total counter" in text
        assert 'ratelimit_decisions_total{policy="search",outcome="allowed"} 1' in text
        assert 'ratelimit_decisions_total{policy="search",outcome="denied"} 1' in text
        assert 'ratelimit_degraded_decisions_total{policy="search"} 1' in text
        assert 'ratelimit_store_errors_total{type="ConnectionLost"} 1' in text
        assert text.endswith("\n")

    def test_global_collector(self):
        reset_metrics_collector()
        first = get_metrics_collector()
        assert get_metrics_collector() is first
        reset_metrics_collector()
        assert get_metrics_collector() is not first
        reset_metrics_collector()
