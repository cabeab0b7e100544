"""Process-wide usage metrics and health classification.

``MetricsTracker`` keeps cumulative counters for request volume, latency,
token usage, cache efficiency, rate-limit hits and errors, bucketed per
server-local calendar day. Two background asyncio tasks run while the
tracker is started: a periodic snapshot logger (optionally exporting the
snapshot over HTTP) and a daily rollover at local midnight.
"""

import asyncio
import copy
import math
import time
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from toolgateway.app.core.logging import get_logger

logger = get_logger(__name__)

Exporter = Callable[[Dict[str, Any]], Awaitable[None]]


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0
    total: int = 0


@dataclass
class ResponseTimeStats:
    """Running response time statistics in milliseconds."""

    min: float = math.inf
    max: float = 0.0
    avg: float = 0.0
    total: float = 0.0
    count: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0


@dataclass
class MetricsSnapshot:
    """Cumulative counters since start (or the last restart)."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    token_usage: TokenUsage = field(default_factory=TokenUsage)
    model_distribution: Dict[str, int] = field(default_factory=dict)
    tool_usage: Dict[str, int] = field(default_factory=dict)
    errors_by_type: Dict[str, int] = field(default_factory=dict)
    response_time_stats: ResponseTimeStats = field(default_factory=ResponseTimeStats)
    rate_limit_hits: Dict[str, int] = field(default_factory=dict)
    cache_stats: CacheStats = field(default_factory=CacheStats)
    # date (YYYY-MM-DD) -> category -> key -> count
    daily_stats: Dict[str, Dict[str, Dict[str, int]]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly representation (an unset minimum becomes None)."""
        data = asdict(self)
        if math.isinf(data["response_time_stats"]["min"]):
            data["response_time_stats"]["min"] = None
        return data


@dataclass
class HealthStatus:
    status: str  # healthy | warning | critical
    details: Dict[str, Any]


class MetricsTracker:
    """Collects gateway metrics and classifies overall health.

    Recording methods are synchronous: each update completes without
    yielding to the event loop. After ``destroy()`` every recording method is
    a no-op until ``restart()``.

    Args:
        snapshot_interval: Seconds between periodic snapshot logs
        retention_days: Number of daily buckets kept
        exporter: Optional coroutine receiving each periodic snapshot
        critical_error_rate / warning_error_rate: Error rate thresholds
        critical_response_ms / warning_response_ms: Average latency thresholds
        now: Local wall-clock source (injectable for tests)
    """

    def __init__(
        self,
        snapshot_interval: float = 300.0,
        retention_days: int = 30,
        exporter: Optional[Exporter] = None,
        critical_error_rate: float = 0.10,
        warning_error_rate: float = 0.05,
        critical_response_ms: float = 5000.0,
        warning_response_ms: float = 2000.0,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.snapshot_interval = snapshot_interval
        self.retention_days = retention_days
        self.exporter = exporter
        self.critical_error_rate = critical_error_rate
        self.warning_error_rate = warning_error_rate
        self.critical_response_ms = critical_response_ms
        self.warning_response_ms = warning_response_ms
        self._now = now

        self._metrics = MetricsSnapshot()
        self._start_time = time.monotonic()
        self._snapshot_task: Optional[asyncio.Task] = None
        self._rollover_task: Optional[asyncio.Task] = None
        self._cancelled_tasks: List[asyncio.Task] = []
        self._timers_requested = False
        self._destroyed = False

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def is_running(self) -> bool:
        return self._snapshot_task is not None

    # -- recording ---------------------------------------------------------

    def increment_tool_usage(self, tool_name: str) -> None:
        if self._destroyed:
            return
        self._metrics.total_requests += 1
        _bump(self._metrics.tool_usage, tool_name)
        self._bump_daily("tool_usage", tool_name)

    def record_success(self) -> None:
        if self._destroyed:
            return
        self._metrics.successful_requests += 1
        self._bump_daily("successful_requests", "total")

    def record_error(self, tool_name: str, error_type: str = "unknown") -> None:
        """Count a failed invocation under ``error_type``."""
        if self._destroyed:
            return
        self._metrics.failed_requests += 1
        _bump(self._metrics.errors_by_type, error_type)
        self._bump_daily("failed_requests", "total")
        self._bump_daily("errors_by_type", error_type)

    def record_token_usage(self, input_tokens: int, output_tokens: int, model: str) -> None:
        if self._destroyed:
            return
        usage = self._metrics.token_usage
        usage.input += input_tokens
        usage.output += output_tokens
        usage.total += input_tokens + output_tokens
        _bump(self._metrics.model_distribution, model)
        self._bump_daily("token_usage", "input", input_tokens)
        self._bump_daily("token_usage", "output", output_tokens)
        self._bump_daily("model_distribution", model)

    def record_response_time(self, tool_name: str, duration_ms: float) -> None:
        if self._destroyed:
            return
        stats = self._metrics.response_time_stats
        stats.min = min(stats.min, duration_ms)
        stats.max = max(stats.max, duration_ms)
        stats.total += duration_ms
        stats.count += 1
        stats.avg = stats.total / stats.count

    def record_rate_limit_hit(self, resource_key: str) -> None:
        if self._destroyed:
            return
        _bump(self._metrics.rate_limit_hits, resource_key)
        self._bump_daily("rate_limit_hits", resource_key)

    def record_cache_hit(self) -> None:
        if self._destroyed:
            return
        self._metrics.cache_stats.hits += 1
        self._update_cache_hit_rate()

    def record_cache_miss(self) -> None:
        if self._destroyed:
            return
        self._metrics.cache_stats.misses += 1
        self._update_cache_hit_rate()

    def _update_cache_hit_rate(self) -> None:
        stats = self._metrics.cache_stats
        total = stats.hits + stats.misses
        stats.hit_rate = stats.hits / total if total > 0 else 0.0

    def _bump_daily(self, category: str, key: str, value: int = 1) -> None:
        today = self._now().strftime("%Y-%m-%d")
        day = self._metrics.daily_stats.setdefault(today, {})
        _bump(day.setdefault(category, {}), key, value)

    # -- reading -----------------------------------------------------------

    def get_metrics(self) -> MetricsSnapshot:
        """Return a deep copy of the current counters."""
        return copy.deepcopy(self._metrics)

    def uptime_seconds(self) -> float:
        return time.monotonic() - self._start_time

    def get_health_status(self) -> HealthStatus:
        """Classify health from the error rate and average response time.

        Each dimension is judged on its own; the overall status is the worst
        of the two and every dimension past a threshold adds a reason.
        """
        m = self._metrics
        error_rate = m.failed_requests / m.total_requests if m.total_requests > 0 else 0.0
        avg_response = m.response_time_stats.avg

        reasons: List[str] = []
        levels = []

        if error_rate > self.critical_error_rate:
            levels.append("critical")
            reasons.append(f"High error rate: {error_rate * 100:.2f}%")
        elif error_rate > self.warning_error_rate:
            levels.append("warning")
            reasons.append(f"Elevated error rate: {error_rate * 100:.2f}%")

        if avg_response > self.critical_response_ms:
            levels.append("critical")
            reasons.append(f"High response time: {avg_response:.2f}ms")
        elif avg_response > self.warning_response_ms:
            levels.append("warning")
            reasons.append(f"Elevated response time: {avg_response:.2f}ms")

        if "critical" in levels:
            status = "critical"
        elif "warning" in levels:
            status = "warning"
        else:
            status = "healthy"

        details = {
            "error_rate": f"{error_rate * 100:.2f}%",
            "avg_response_time": f"{avg_response:.2f}ms",
            "cache_hit_rate": f"{m.cache_stats.hit_rate * 100:.2f}%",
            "total_requests": m.total_requests,
            "reasons": reasons,
        }
        return HealthStatus(status=status, details=details)

    def get_prometheus_metrics(self) -> str:
        """Get metrics in Prometheus text format."""
        m = self._metrics
        lines = []

        def metric(name: str, kind: str, help_text: str, samples: List[tuple]) -> None:
            lines.append(f"# HELP {name} {help_text}")
            lines.append(f"# TYPE {name} {kind}")
            for labels, value in samples:
                lines.append(f"{name}{labels} {value}")

        metric("toolgateway_requests_total", "counter", "Total tool invocations",
               [("", m.total_requests)])
        metric("toolgateway_requests_failed_total", "counter", "Failed tool invocations",
               [("", m.failed_requests)])
        metric("toolgateway_requests_succeeded_total", "counter", "Successful tool invocations",
               [("", m.successful_requests)])
        metric("toolgateway_tool_invocations_total", "counter", "Invocations per tool",
               [(f'{{tool="{k}"}}', v) for k, v in m.tool_usage.items()])
        metric("toolgateway_errors_total", "counter", "Errors by type",
               [(f'{{type="{k}"}}', v) for k, v in m.errors_by_type.items()])
        metric("toolgateway_tokens_total", "counter", "Upstream token usage",
               [('{direction="input"}', m.token_usage.input),
                ('{direction="output"}', m.token_usage.output)])
        metric("toolgateway_model_requests_total", "counter", "Upstream calls per model",
               [(f'{{model="{k}"}}', v) for k, v in m.model_distribution.items()])
        metric("toolgateway_rate_limit_hits_total", "counter", "Rejected admissions per resource",
               [(f'{{resource="{k}"}}', v) for k, v in m.rate_limit_hits.items()])
        metric("toolgateway_cache_requests_total", "counter", "Cache lookups",
               [('{result="hit"}', m.cache_stats.hits), ('{result="miss"}', m.cache_stats.misses)])
        metric("toolgateway_response_time_ms_avg", "gauge", "Average tool response time",
               [("", round(m.response_time_stats.avg, 2))])
        metric("toolgateway_uptime_seconds", "gauge", "Gateway uptime in seconds",
               [("", round(self.uptime_seconds(), 2))])

        return "\n".join(lines) + "\n"

    # -- background timers -------------------------------------------------

    def start(self) -> None:
        """Start the snapshot and daily rollover tasks.

        Must be called from a running event loop.
        """
        if self._destroyed or self._snapshot_task is not None:
            return
        loop = asyncio.get_running_loop()
        self._timers_requested = True
        self._snapshot_task = loop.create_task(self._run_snapshots())
        self._rollover_task = loop.create_task(self._run_daily_rollover())
        logger.info(f"Started metrics timers (snapshot interval: {self.snapshot_interval}s)")

    async def _run_snapshots(self) -> None:
        while True:
            await asyncio.sleep(self.snapshot_interval)
            if self._destroyed:
                return
            snapshot = self.log_metrics()
            if self.exporter is not None:
                try:
                    await self.exporter(snapshot)
                except Exception as e:
                    logger.warning(f"Metrics export failed: {type(e).__name__}: {e}")

    async def _run_daily_rollover(self) -> None:
        while True:
            started = self._now()
            await asyncio.sleep(seconds_until_midnight(started))
            if self._destroyed:
                return
            # Woke before the date changed
            if self._now().date() == started.date():
                continue
            self.roll_over_day()

    def log_metrics(self) -> Dict[str, Any]:
        """Emit a full snapshot to the log and return it."""
        snapshot = self._metrics.to_dict()
        uptime_hours = self.uptime_seconds() / 3600
        logger.info(
            "Metrics report",
            extra={
                "type": "metrics_report",
                "uptime": f"{uptime_hours:.2f} hours",
                "metrics": snapshot,
            },
        )
        return snapshot

    def roll_over_day(self) -> Optional[Dict[str, Dict[str, int]]]:
        """Log the bucket of the day that just ended and prune old buckets.

        Returns:
            The completed day's bucket, if any was recorded
        """
        today = self._now().date()
        completed = (today - timedelta(days=1)).strftime("%Y-%m-%d")
        bucket = self._metrics.daily_stats.get(completed)
        if bucket:
            logger.info(
                "Daily report",
                extra={"type": "daily_report", "date": completed, "metrics": bucket},
            )
        self._prune_daily(today)
        return bucket

    def _prune_daily(self, today: date) -> None:
        cutoff = (today - timedelta(days=self.retention_days)).strftime("%Y-%m-%d")
        for day in [d for d in self._metrics.daily_stats if d < cutoff]:
            del self._metrics.daily_stats[day]

    def destroy(self) -> None:
        """Stop the timers, emit a final snapshot and freeze recording.

        Safe to call more than once.
        """
        if self._destroyed:
            return
        for task in (self._snapshot_task, self._rollover_task):
            if task is not None and not task.done():
                task.cancel()
                self._cancelled_tasks.append(task)
        self._snapshot_task = None
        self._rollover_task = None
        self.log_metrics()
        self._destroyed = True
        logger.info("Metrics tracker destroyed")

    async def wait_closed(self) -> None:
        """Wait for timers cancelled by ``destroy()`` to finish unwinding."""
        tasks, self._cancelled_tasks = self._cancelled_tasks, []
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def restart(self) -> None:
        """Reset all counters and start over (timers resume if they were running)."""
        if not self._destroyed:
            self.destroy()
        self._destroyed = False
        self._metrics = MetricsSnapshot()
        self._start_time = time.monotonic()
        if self._timers_requested:
            self.start()


def _bump(counter: Dict[str, int], key: str, value: int = 1) -> None:
    counter[key] = counter.get(key, 0) + value


def seconds_until_midnight(now: datetime) -> float:
    """Seconds from ``now`` until the next midnight in its time zone.

    Naive datetimes are local time. The difference is taken on timestamps so
    days with a daylight saving change come out 23 or 25 hours long.
    """
    midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time(), tzinfo=now.tzinfo)
    return max(midnight.timestamp() - now.timestamp(), 0.0)


def build_http_exporter(client: httpx.AsyncClient, endpoint: str) -> Exporter:
    """Create an exporter that POSTs each snapshot as JSON to ``endpoint``."""

    async def export(snapshot: Dict[str, Any]) -> None:
        resp = await client.post(endpoint, json={"type": "metrics_report", "metrics": snapshot})
        resp.raise_for_status()

    return export
