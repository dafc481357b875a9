"""In-process metrics accumulator for agent steps, triage runs and actions.

Observations are kept per metric key (name plus sorted labels) in bounded
deques for percentiles, alongside running totals that are never truncated.
``summary()`` reports the latest value, lifetime observation count and
p50/p95 over the retained window for every key.
"""

import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import numpy as np
import structlog

logger = structlog.get_logger()


@dataclass
class MetricPoint:
    name: str
    value: float
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class MetricsRecorder:
    """Counters and histograms keyed by ``name{label="value",...}``."""

    def __init__(self, max_points_per_key: int = 10_000) -> None:
        self._max_points = max_points_per_key
        self._points: dict[str, deque[MetricPoint]] = {}
        self._totals: dict[str, float] = {}
        self._observations: dict[str, int] = {}

    @staticmethod
    def metric_key(name: str, labels: dict[str, str] | None = None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def record_counter(
        self, name: str, value: float = 1, labels: dict[str, str] | None = None
    ) -> None:
        self._record(MetricPoint(name=name, value=value, labels=labels or {}))

    def record_histogram(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        self._record(MetricPoint(name=name, value=value, labels=labels or {}))

    def record_latency(
        self,
        name: str,
        started_at: float,
        labels: dict[str, str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> float:
        """Record milliseconds elapsed since ``started_at``, read from ``clock``."""
        duration_ms = (clock() - started_at) * 1000
        self.record_histogram(f"{name}_duration_ms", duration_ms, labels)
        return duration_ms

    def _record(self, point: MetricPoint) -> None:
        key = self.metric_key(point.name, point.labels)
        bucket = self._points.get(key)
        if bucket is None:
            bucket = deque(maxlen=self._max_points)
            self._points[key] = bucket
        bucket.append(point)
        self._totals[key] = self._totals.get(key, 0) + point.value
        self._observations[key] = self._observations.get(key, 0) + 1
        logger.debug("metric_recorded", metric=point.name, value=point.value, labels=point.labels)

    def count(self, name: str, labels: dict[str, str] | None = None) -> float:
        """Sum of every value ever recorded under a key (total for counters)."""
        return self._totals.get(self.metric_key(name, labels), 0)

    def summary(self) -> dict[str, dict[str, Any]]:
        result: dict[str, dict[str, Any]] = {}
        for key, bucket in self._points.items():
            if not bucket:
                continue
            values = np.array([p.value for p in bucket], dtype=float)
            latest = bucket[-1]
            result[key] = {
                "value": latest.value,
                "timestamp": latest.timestamp.isoformat(),
                "count": self._observations[key],
                "p50": float(np.percentile(values, 50)),
                "p95": float(np.percentile(values, 95)),
            }
        return result

    def clear(self) -> None:
        self._points.clear()
        self._totals.clear()
        self._observations.clear()
