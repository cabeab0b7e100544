"""Tests for the metrics tracker and health classification."""

import asyncio
import logging
from datetime import datetime
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
import pytest
import respx

from toolgateway.app.services.metrics import (
    MetricsTracker,
    build_http_exporter,
    seconds_until_midnight,
)


def feed(tracker: MetricsTracker, total: int, failures: int, tool: str = "groq_text_completion") -> None:
    for i in range(total):
        tracker.increment_tool_usage(tool)
        if i < failures:
            tracker.record_error(tool, "upstream_error")
        else:
            tracker.record_success()


class FixedNow:
    def __init__(self, value: datetime):
        self.value = value

    def __call__(self) -> datetime:
        return self.value


class TestHealthStatus:
    """Health classification."""

    def test_critical_error_rate(self):
        tracker = MetricsTracker()
        feed(tracker, total=100, failures=15)

        health = tracker.get_health_status()

        assert health.status == "critical"
        assert health.details["error_rate"] == "15.00%"
        assert any("error rate" in r for r in health.details["reasons"])

    def test_warning_error_rate(self):
        tracker = MetricsTracker()
        feed(tracker, total=100, failures=6)

        assert tracker.get_health_status().status == "warning"

    def test_healthy_error_rate(self):
        tracker = MetricsTracker()
        feed(tracker, total=100, failures=2)

        health = tracker.get_health_status()
        assert health.status == "healthy"
        assert health.details["reasons"] == []

    def test_no_requests_is_healthy(self):
        health = MetricsTracker().get_health_status()

        assert health.status == "healthy"
        assert health.details["error_rate"] == "0.00%"
        assert health.details["total_requests"] == 0

    def test_slow_responses_warning(self):
        tracker = MetricsTracker()
        tracker.record_response_time("t", 3000)

        health = tracker.get_health_status()
        assert health.status == "warning"
        assert any("response time" in r for r in health.details["reasons"])

    def test_slow_responses_critical(self):
        tracker = MetricsTracker()
        tracker.record_response_time("t", 6000)

        assert tracker.get_health_status().status == "critical"

    def test_both_dimensions_contribute_reasons(self):
        tracker = MetricsTracker()
        feed(tracker, total=100, failures=6)
        tracker.record_response_time("t", 6000)

        health = tracker.get_health_status()
        assert health.status == "critical"
        assert len(health.details["reasons"]) == 2

    def test_custom_thresholds(self):
        tracker = MetricsTracker(critical_error_rate=0.5, warning_error_rate=0.2)
        feed(tracker, total=10, failures=3)

        assert tracker.get_health_status().status == "warning"


class TestRecording:
    """Counter updates."""

    def test_request_counters(self):
        tracker = MetricsTracker()
        feed(tracker, total=4, failures=1)

        m = tracker.get_metrics()
        assert m.total_requests == 4
        assert m.successful_requests == 3
        assert m.failed_requests == 1
        assert m.tool_usage == {"groq_text_completion": 4}
        assert m.errors_by_type == {"upstream_error": 1}

    def test_response_time_stats(self):
        tracker = MetricsTracker()
        for ms in (100, 300, 200):
            tracker.record_response_time("t", ms)

        stats = tracker.get_metrics().response_time_stats
        assert stats.min == 100
        assert stats.max == 300
        assert stats.count == 3
        assert stats.total == 600
        assert stats.avg == 200

    def test_token_usage_and_model_distribution(self):
        tracker = MetricsTracker()
        tracker.record_token_usage(10, 5, "llama-3.1-8b-instant")
        tracker.record_token_usage(20, 10, "llama-3.1-8b-instant")
        tracker.record_token_usage(1, 1, "llama-3.3-70b-versatile")

        m = tracker.get_metrics()
        assert (m.token_usage.input, m.token_usage.output, m.token_usage.total) == (31, 16, 47)
        assert m.model_distribution == {"llama-3.1-8b-instant": 2, "llama-3.3-70b-versatile": 1}

    def test_cache_hit_rate(self):
        tracker = MetricsTracker()
        tracker.record_cache_hit()
        tracker.record_cache_hit()
        tracker.record_cache_hit()
        tracker.record_cache_miss()

        cache = tracker.get_metrics().cache_stats
        assert (cache.hits, cache.misses) == (3, 1)
        assert cache.hit_rate == 0.75

    def test_rate_limit_hits(self):
        tracker = MetricsTracker()
        tracker.record_rate_limit_hit("llama-3.1-8b-instant")
        tracker.record_rate_limit_hit("llama-3.1-8b-instant")

        assert tracker.get_metrics().rate_limit_hits == {"llama-3.1-8b-instant": 2}

    def test_get_metrics_returns_copy(self):
        tracker = MetricsTracker()
        tracker.increment_tool_usage("t")

        snapshot = tracker.get_metrics()
        snapshot.tool_usage["t"] = 999
        snapshot.total_requests = 999

        assert tracker.get_metrics().tool_usage == {"t": 1}
        assert tracker.get_metrics().total_requests == 1

    def test_to_dict_handles_unset_minimum(self):
        data = MetricsTracker().get_metrics().to_dict()
        assert data["response_time_stats"]["min"] is None


class TestDailyBuckets:
    """Per-day rollup and midnight rollover."""

    def test_counters_bucketed_by_local_date(self):
        tracker = MetricsTracker(now=FixedNow(datetime(2026, 10, 18, 12, 0)))
        tracker.increment_tool_usage("t")
        tracker.record_error("t", "timeout")
        tracker.record_token_usage(3, 4, "m")

        day = tracker.get_metrics().daily_stats["2026-10-18"]
        assert day["tool_usage"] == {"t": 1}
        assert day["errors_by_type"] == {"timeout": 1}
        assert day["token_usage"] == {"input": 3, "output": 4}
        assert day["model_distribution"] == {"m": 1}

    def test_roll_over_day_logs_completed_bucket(self, caplog):
        now = FixedNow(datetime(2026, 10, 18, 23, 0))
        tracker = MetricsTracker(now=now)
        tracker.increment_tool_usage("t")

        now.value = datetime(2026, 10, 19, 0, 0, 1)
        with caplog.at_level(logging.INFO, logger="toolgateway"):
            bucket = tracker.roll_over_day()

        assert bucket == {"tool_usage": {"t": 1}}
        report = [r for r in caplog.records if r.getMessage() == "Daily report"]
        assert len(report) == 1
        assert report[0].date == "2026-10-18"

    def test_roll_over_prunes_old_buckets(self):
        now = FixedNow(datetime(2026, 8, 1, 12, 0))
        tracker = MetricsTracker(retention_days=30, now=now)
        tracker.increment_tool_usage("t")

        now.value = datetime(2026, 10, 18, 0, 0)
        tracker.increment_tool_usage("t")
        tracker.roll_over_day()

        assert list(tracker.get_metrics().daily_stats) == ["2026-10-18"]

    def test_seconds_until_midnight(self):
        assert seconds_until_midnight(datetime(2026, 10, 18, 23, 59, 0)) == 60
        assert seconds_until_midnight(datetime(2026, 10, 18, 0, 0, 0)) == 86400

    def test_seconds_until_midnight_across_dst_change(self):
        try:
            new_york = ZoneInfo("America/New_York")
        except ZoneInfoNotFoundError:
            pytest.skip("time zone database not available")

        # 2026-03-08 springs forward, 2026-11-01 falls back
        assert seconds_until_midnight(datetime(2026, 3, 8, 0, 0, tzinfo=new_york)) == 23 * 3600
        assert seconds_until_midnight(datetime(2026, 11, 1, 0, 0, tzinfo=new_york)) == 25 * 3600

    @pytest.mark.asyncio
    async def test_rollover_task_reports_once_per_date_change(self):
        now = FixedNow(datetime(2026, 10, 18, 23, 59, 59))
        tracker = MetricsTracker(now=now)

        with patch("toolgateway.app.services.metrics.seconds_until_midnight", return_value=0), \
                patch.object(tracker, "roll_over_day") as roll_over:
            task = asyncio.create_task(tracker._run_daily_rollover())
            for _ in range(5):
                await asyncio.sleep(0)
            assert roll_over.call_count == 0

            now.value = datetime(2026, 10, 19, 0, 0, 1)
            for _ in range(5):
                await asyncio.sleep(0)

            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        assert roll_over.call_count == 1


class TestLifecycle:
    """Background timers, destroy and restart."""

    def test_destroy_makes_recorders_noops(self):
        tracker = MetricsTracker()
        tracker.increment_tool_usage("t")

        tracker.destroy()
        feed(tracker, total=5, failures=2)
        tracker.record_cache_hit()
        tracker.record_response_time("t", 10)
        tracker.record_rate_limit_hit("k")
        tracker.record_token_usage(1, 1, "m")

        m = tracker.get_metrics()
        assert tracker.is_destroyed
        assert m.total_requests == 1
        assert m.cache_stats.hits == 0
        assert m.response_time_stats.count == 0

    def test_destroy_is_idempotent_and_logs_final_snapshot(self, caplog):
        tracker = MetricsTracker()

        with caplog.at_level(logging.INFO, logger="toolgateway"):
            tracker.destroy()
            tracker.destroy()

        reports = [r for r in caplog.records if r.getMessage() == "Metrics report"]
        assert len(reports) == 1

    def test_restart_resets_state(self):
        tracker = MetricsTracker()
        feed(tracker, total=3, failures=1)

        tracker.restart()

        assert not tracker.is_destroyed
        assert tracker.get_metrics().total_requests == 0
        tracker.increment_tool_usage("t")
        assert tracker.get_metrics().total_requests == 1

    def test_start_requires_running_loop(self):
        with pytest.raises(RuntimeError):
            MetricsTracker().start()

    @pytest.mark.asyncio
    async def test_start_and_destroy_timers(self):
        tracker = MetricsTracker()
        tracker.start()
        assert tracker.is_running

        tracker.destroy()
        await tracker.wait_closed()

        assert not tracker.is_running

    @pytest.mark.asyncio
    async def test_restart_resumes_timers(self):
        tracker = MetricsTracker()
        tracker.start()

        tracker.restart()
        assert tracker.is_running

        tracker.destroy()
        await tracker.wait_closed()

    @pytest.mark.asyncio
    async def test_periodic_snapshot_is_exported(self):
        exporter = AsyncMock()
        tracker = MetricsTracker(snapshot_interval=0.01, exporter=exporter)
        tracker.increment_tool_usage("t")
        tracker.start()

        await asyncio.sleep(0.05)
        tracker.destroy()
        await tracker.wait_closed()

        assert exporter.await_count >= 1
        snapshot = exporter.await_args.args[0]
        assert snapshot["total_requests"] == 1

    @pytest.mark.asyncio
    async def test_export_failure_does_not_stop_timer(self, caplog):
        exporter = AsyncMock(side_effect=httpx.ConnectError("down"))
        tracker = MetricsTracker(snapshot_interval=0.01, exporter=exporter)
        tracker.start()

        with caplog.at_level(logging.WARNING, logger="toolgateway"):
            await asyncio.sleep(0.05)

        assert exporter.await_count >= 1
        assert "Metrics export failed" in caplog.text
        tracker.destroy()
        await tracker.wait_closed()


class TestExport:
    """Prometheus text and HTTP export."""

    def test_prometheus_metrics(self):
        tracker = MetricsTracker()
        feed(tracker, total=2, failures=1)
        tracker.record_rate_limit_hit("batch_processing")

        text = tracker.get_prometheus_metrics()

        assert "# TYPE toolgateway_requests_total counter" in text
        assert "toolgateway_requests_total 2" in text
        assert 'toolgateway_tool_invocations_total{tool="groq_text_completion"} 2' in text
        assert 'toolgateway_rate_limit_hits_total{resource="batch_processing"} 1' in text
        assert text.endswith("\n")

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_exporter_posts_snapshot(self):
        route = respx.post("https://metrics.example.com/ingest").mock(return_value=httpx.Response(202))

        async with httpx.AsyncClient() as client:
            export = build_http_exporter(client, "https://metrics.example.com/ingest")
            await export({"total_requests": 3})

        assert route.called
        assert b'"total_requests":3' in route.calls.last.request.content.replace(b" ", b"")

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_exporter_raises_on_error_status(self):
        respx.post("https://metrics.example.com/ingest").mock(return_value=httpx.Response(500))

        async with httpx.AsyncClient() as client:
            export = build_http_exporter(client, "https://metrics.example.com/ingest")
            with pytest.raises(httpx.HTTPStatusError):
                await export({})
