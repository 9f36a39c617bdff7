"""
In-process webhook processing metrics.

Per-process counters only; they reset on restart and are not aggregated
across replicas. Exposed to operators through the admin metrics endpoint.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class _TypeStats:
    processed: int = 0
    failed: int = 0
    total_duration_ms: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "failed": self.failed,
            "avg_duration_ms": (
                self.total_duration_ms / self.processed if self.processed else 0.0
            ),
        }


@dataclass
class MetricsCollector:
    processed: int = 0
    failed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    total_duration_ms: int = 0
    by_type: dict[str, _TypeStats] = field(default_factory=dict)

    def _stats_for(self, event_type: str) -> _TypeStats:
        stats = self.by_type.get(event_type)
        if stats is None:
            stats = self.by_type[event_type] = _TypeStats()
        return stats

    def record_success(self, event_type: str, duration_ms: int) -> None:
        self.processed += 1
        self.total_duration_ms += duration_ms
        stats = self._stats_for(event_type)
        stats.processed += 1
        stats.total_duration_ms += duration_ms

    def record_failure(self, event_type: str, retryable: bool) -> None:
        """Count a failed attempt; retryable failures also count as a retry"""
        self.failed += 1
        if retryable:
            self.retried += 1
        self._stats_for(event_type).failed += 1

    def record_dlq(self) -> None:
        self.dead_lettered += 1

    def snapshot(self) -> dict[str, Any]:
        """Counters plus derived averages; safe to serialise as JSON"""
        attempts = self.processed + self.failed
        return {
            "processed": self.processed,
            "failed": self.failed,
            "retried": self.retried,
            "dead_lettered": self.dead_lettered,
            "avg_duration_ms": (
                self.total_duration_ms / self.processed if self.processed else 0.0
            ),
            "success_rate": self.processed / attempts if attempts else 0.0,
            "by_type": {name: stats.as_dict() for name, stats in sorted(self.by_type.items())},
        }

    def reset(self) -> None:
        self.processed = 0
        self.failed = 0
        self.retried = 0
        self.dead_lettered = 0
        self.total_duration_ms = 0
        self.by_type.clear()
