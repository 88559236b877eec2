"""
Metrics collection for the business directory services.

Provides in-process counters, gauges, histograms and timers with JSON
and Prometheus text export.
"""

import time
import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Any, Optional, Union
from dataclasses import dataclass, field
from collections import deque
from enum import Enum
import json
import statistics

from .logging_config import get_logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetricType(str, Enum):
    """Types of metrics."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


class MetricUnit(str, Enum):
    """Metric units."""
    COUNT = "count"
    BYTES = "bytes"
    SECONDS = "seconds"
    MILLISECONDS = "milliseconds"
    PERCENT = "percent"


@dataclass
class MetricValue:
    """A single metric value with metadata."""
    name: str
    value: Union[int, float]
    metric_type: MetricType
    unit: MetricUnit
    timestamp: datetime
    tags: Dict[str, str] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'value': self.value,
            'type': self.metric_type.value,
            'unit': self.unit.value,
            'timestamp': self.timestamp.isoformat(),
            'tags': self.tags,
            'labels': self.labels
        }


@dataclass
class MetricSeries:
    """A time series of metric values."""
    name: str
    metric_type: MetricType
    unit: MetricUnit
    values: deque = field(default_factory=lambda: deque(maxlen=1000))
    tags: Dict[str, str] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=_utcnow)

    def add_value(self, value: Union[int, float], timestamp: Optional[datetime] = None, **labels):
        """Add a value to the series."""
        if timestamp is None:
            timestamp = _utcnow()

        self.values.append(MetricValue(
            name=self.name,
            value=value,
            metric_type=self.metric_type,
            unit=self.unit,
            timestamp=timestamp,
            tags=self.tags,
            labels={k: str(v) for k, v in labels.items()}
        ))
        self.last_updated = timestamp

    def get_latest_value(self) -> Optional[MetricValue]:
        return self.values[-1] if self.values else None

    def calculate_statistics(self, window_minutes: int = 5) -> Dict[str, float]:
        """Calculate statistics for recent values."""
        cutoff_time = _utcnow() - timedelta(minutes=window_minutes)
        recent_values = [v.value for v in self.values if v.timestamp >= cutoff_time]

        if not recent_values:
            return {}

        return {
            'count': len(recent_values),
            'sum': sum(recent_values),
            'min': min(recent_values),
            'max': max(recent_values),
            'mean': statistics.mean(recent_values),
            'median': statistics.median(recent_values),
            'std_dev': statistics.stdev(recent_values) if len(recent_values) > 1 else 0
        }


class Counter:
    """Counter metric that only increases."""

    def __init__(self, collector: 'MetricsCollector', name: str, description: str = "",
                 tags: Dict[str, str] = None):
        self.collector = collector
        self.name = name
        self.description = description
        self.tags = tags or {}
        self._value = 0
        self._lock = threading.Lock()

    def increment(self, amount: Union[int, float] = 1, **labels):
        with self._lock:
            self._value += amount
            value = self._value

        self.collector.record_metric(
            self.name, value, MetricType.COUNTER, MetricUnit.COUNT,
            tags=self.tags, **labels
        )

    def get_value(self) -> Union[int, float]:
        with self._lock:
            return self._value


class Gauge:
    """Gauge metric that can increase or decrease."""

    def __init__(self, collector: 'MetricsCollector', name: str, description: str = "",
                 unit: MetricUnit = MetricUnit.COUNT, tags: Dict[str, str] = None):
        self.collector = collector
        self.name = name
        self.description = description
        self.unit = unit
        self.tags = tags or {}
        self._value = 0
        self._lock = threading.Lock()

    def set(self, value: Union[int, float], **labels):
        with self._lock:
            self._value = value

        self.collector.record_metric(
            self.name, value, MetricType.GAUGE, self.unit,
            tags=self.tags, **labels
        )

    def get_value(self) -> Union[int, float]:
        with self._lock:
            return self._value


class Histogram:
    """Histogram metric for tracking distributions."""

    def __init__(self, collector: 'MetricsCollector', name: str, description: str = "",
                 unit: MetricUnit = MetricUnit.COUNT, buckets: List[float] = None,
                 tags: Dict[str, str] = None):
        self.collector = collector
        self.name = name
        self.description = description
        self.unit = unit
        self.tags = tags or {}
        self.buckets = buckets or [0.1, 0.5, 1.0, 2.5, 5.0, 10.0, float('inf')]
        self._bucket_counts = {bucket: 0 for bucket in self.buckets}
        self._sum = 0
        self._count = 0
        self._lock = threading.Lock()

    def observe(self, value: Union[int, float], **labels):
        with self._lock:
            self._sum += value
            self._count += 1
            for bucket in self.buckets:
                if value <= bucket:
                    self._bucket_counts[bucket] += 1

        self.collector.record_metric(
            self.name, value, MetricType.HISTOGRAM, self.unit,
            tags=self.tags, **labels
        )

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'count': self._count,
                'sum': self._sum,
                'mean': self._sum / self._count if self._count > 0 else 0,
                'buckets': self._bucket_counts.copy()
            }


class Timer:
    """Timer metric for measuring durations."""

    def __init__(self, collector: 'MetricsCollector', name: str, description: str = "",
                 tags: Dict[str, str] = None):
        self.name = name
        self.histogram = Histogram(collector, f"{name}_seconds", description, MetricUnit.SECONDS, tags=tags)

    def time(self, **labels):
        """Context manager for timing operations."""
        return TimerContext(self, labels)

    def record(self, duration: float, **labels):
        self.histogram.observe(duration, **labels)


class TimerContext:
    """Context manager for timing operations."""

    def __init__(self, timer: Timer, labels: Dict[str, str]):
        self.timer = timer
        self.labels = labels
        self.start_time = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.duration = time.perf_counter() - self.start_time
            self.timer.record(self.duration, **self.labels)


class MetricsCollector:
    """Central metrics collection system."""

    def __init__(self):
        self.logger = get_logger(__name__, 'metrics_collector')
        self.metrics: Dict[str, MetricSeries] = {}
        self.counters: Dict[str, Counter] = {}
        self.gauges: Dict[str, Gauge] = {}
        self.timers: Dict[str, Timer] = {}

        self.stats = {
            'metrics_recorded': 0,
            'start_time': _utcnow(),
            'last_collection_time': None
        }

    @staticmethod
    def _key(name: str, tags: Optional[Dict[str, str]]) -> str:
        return f"{name}:{json.dumps(tags or {}, sort_keys=True)}"

    def record_metric(
        self,
        name: str,
        value: Union[int, float],
        metric_type: MetricType,
        unit: MetricUnit,
        timestamp: Optional[datetime] = None,
        tags: Dict[str, str] = None,
        **labels
    ):
        """Record a metric value."""
        if timestamp is None:
            timestamp = _utcnow()

        series_key = self._key(name, tags)
        if series_key not in self.metrics:
            self.metrics[series_key] = MetricSeries(
                name=name,
                metric_type=metric_type,
                unit=unit,
                tags=tags or {}
            )

        self.metrics[series_key].add_value(value, timestamp, **labels)

        self.stats['metrics_recorded'] += 1
        self.stats['last_collection_time'] = timestamp

    def get_counter(self, name: str, description: str = "", tags: Dict[str, str] = None) -> Counter:
        """Get or create a counter."""
        key = self._key(name, tags)
        if key not in self.counters:
            self.counters[key] = Counter(self, name, description, tags)
        return self.counters[key]

    def get_gauge(self, name: str, description: str = "", unit: MetricUnit = MetricUnit.COUNT,
                  tags: Dict[str, str] = None) -> Gauge:
        """Get or create a gauge."""
        key = self._key(name, tags)
        if key not in self.gauges:
            self.gauges[key] = Gauge(self, name, description, unit, tags)
        return self.gauges[key]

    def get_timer(self, name: str, description: str = "", tags: Dict[str, str] = None) -> Timer:
        """Get or create a timer."""
        key = self._key(name, tags)
        if key not in self.timers:
            self.timers[key] = Timer(self, name, description, tags)
        return self.timers[key]

    def get_metric_series(self, name: str, tags: Dict[str, str] = None) -> Optional[MetricSeries]:
        return self.metrics.get(self._key(name, tags))

    def get_metrics_summary(self, window_minutes: int = 5) -> Dict[str, Any]:
        """Get summary of all metrics."""
        summary = {
            'total_metrics': len(self.metrics),
            'collection_stats': self.stats.copy(),
            'metrics': {}
        }

        for series_key, series in self.metrics.items():
            latest_value = series.get_latest_value()
            summary['metrics'][series_key] = {
                'name': series.name,
                'type': series.metric_type.value,
                'unit': series.unit.value,
                'tags': series.tags,
                'latest_value': latest_value.value if latest_value else None,
                'latest_timestamp': latest_value.timestamp.isoformat() if latest_value else None,
                'statistics': series.calculate_statistics(window_minutes),
                'value_count': len(series.values)
            }

        return summary

    def export_metrics(self, format_type: str = 'json') -> str:
        """Export metrics in specified format."""
        if format_type == 'json':
            return json.dumps(self.get_metrics_summary(), default=str, indent=2)
        elif format_type == 'prometheus':
            return self._export_prometheus_format()
        else:
            raise ValueError(f"Unsupported format: {format_type}")

    def _export_prometheus_format(self) -> str:
        lines = []

        for series in self.metrics.values():
            latest_value = series.get_latest_value()
            if not latest_value:
                continue

            metric_name = series.name.replace('-', '_').replace('.', '_')
            lines.append(f"# HELP {metric_name} {series.name}")
            lines.append(f"# TYPE {metric_name} {series.metric_type.value}")

            labels = [f'{k}="{v}"' for k, v in series.tags.items()]
            labels.extend(f'{k}="{v}"' for k, v in latest_value.labels.items())
            label_str = '{' + ','.join(labels) + '}' if labels else ''

            lines.append(f"{metric_name}{label_str} {latest_value.value}")

        return '\n'.join(lines)

    def set_cache_hit_rate(self, cache_name: str, hit_rate: float):
        """Set cache hit rate (0..1) as a percentage gauge."""
        gauge = self.get_gauge('cache_hit_rate', 'Cache hit rate', MetricUnit.PERCENT, tags={'cache': cache_name})
        gauge.set(hit_rate * 100)


_metrics_collector: Optional[MetricsCollector] = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get the process-wide metrics collector, creating it on first use."""
    global _metrics_collector
    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector
