"""
Utility functions for the NeuroLedger prompt server.

Includes:
- Logging setup (stderr only; stdout carries the MCP stdio transport)
- Tool call timing metrics
"""

import logging
import sys
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str | int = logging.INFO) -> None:
    """Send package logs to stderr at `level`."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    logging.getLogger("neuroledger_prompt").setLevel(level)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


@dataclass
class CallMetrics:
    """Timing of one tool call."""
    name: str
    elapsed_ms: float
    success: bool = True
    error: str | None = None


class MetricsCollector:
    """Collects and aggregates tool call timings."""

    def __init__(self, max_entries_per_name: int = 1000):
        self._metrics: dict[str, list[CallMetrics]] = defaultdict(list)
        self._max_entries_per_name = max_entries_per_name

    def record(self, metrics: CallMetrics) -> None:
        entries = self._metrics[metrics.name]
        entries.append(metrics)
        if len(entries) > self._max_entries_per_name:
            self._metrics[metrics.name] = entries[-self._max_entries_per_name:]

    def record_since(self, name: str, start_time: float, success: bool = True, error: str | None = None) -> None:
        """Record a call that started at `start_time` (time.perf_counter())."""
        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.record(CallMetrics(name=name, elapsed_ms=elapsed_ms, success=success, error=error))

    def get_stats(self, name: str | None = None) -> dict[str, Any]:
        """Get aggregated statistics."""
        if name:
            return self._aggregate(name, self._metrics.get(name, []))
        return {key: self._aggregate(key, entries) for key, entries in self._metrics.items()}

    def _aggregate(self, name: str, entries: list[CallMetrics]) -> dict[str, Any]:
        if not entries:
            return {"name": name, "call_count": 0}

        times = sorted(e.elapsed_ms for e in entries)
        success_count = sum(1 for e in entries if e.success)

        return {
            "name": name,
            "call_count": len(entries),
            "success_rate": success_count / len(entries),
            "avg_ms": sum(times) / len(times),
            "min_ms": times[0],
            "max_ms": times[-1],
            "p50_ms": times[len(times) // 2],
        }

    def clear(self) -> None:
        self._metrics.clear()


_global_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector."""
    return _global_collector
