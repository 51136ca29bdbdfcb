"""
imgbackup Prometheus Metrics
============================

Per-run metrics for a backup job. A backup is a batch process, so the
usual way to ship these is the node-exporter textfile collector: the run
writes a ``.prom`` file at the end and node-exporter picks it up.

Usage:
    from imgbackup.monitoring.metrics import BackupMetrics

    metrics = BackupMetrics()
    metrics.record_block_read(4096)
    metrics.record_run(mode="full", duration=12.5, success=True)
    metrics.write_textfile("/var/lib/node_exporter/imgbackup.prom")
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    write_to_textfile,
)

logger = logging.getLogger(__name__)


class MetricType(str, Enum):
    """Types of Prometheus metrics."""

    COUNTER = "counter"
    HISTOGRAM = "histogram"
    GAUGE = "gauge"


@dataclass
class MetricConfig:
    """Configuration for a single metric."""

    name: str
    metric_type: MetricType
    description: str
    labels: List[str] = field(default_factory=list)
    buckets: Optional[List[float]] = None


DEFAULT_METRICS = [
    MetricConfig(
        name="blocks_read_total",
        metric_type=MetricType.COUNTER,
        description="Blocks read and hashed from the device",
    ),
    MetricConfig(
        name="bytes_read_total",
        metric_type=MetricType.COUNTER,
        description="Bytes read from the device",
    ),
    MetricConfig(
        name="blocks_changed_total",
        metric_type=MetricType.COUNTER,
        description="Blocks whose hash differed from the baseline",
    ),
    MetricConfig(
        name="bytes_written_total",
        metric_type=MetricType.COUNTER,
        description="Bytes written to backup outputs",
        labels=["kind"],
    ),
    MetricConfig(
        name="block_write_faults_total",
        metric_type=MetricType.COUNTER,
        description="Blocks that failed to write during a full backup",
    ),
    MetricConfig(
        name="run_duration_seconds",
        metric_type=MetricType.HISTOGRAM,
        description="Wall time of a backup run",
        labels=["mode"],
        buckets=[1, 10, 60, 300, 900, 1800, 3600, 7200, 14400, 43200],
    ),
    MetricConfig(
        name="last_run_timestamp_seconds",
        metric_type=MetricType.GAUGE,
        description="Unix time the last run finished",
        labels=["mode"],
    ),
    MetricConfig(
        name="last_run_success",
        metric_type=MetricType.GAUGE,
        description="1 if the last run succeeded, 0 otherwise",
        labels=["mode"],
    ),
]


class BackupMetrics:
    """Metrics collector for one backup run, in its own registry."""

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        namespace: str = "imgbackup",
        configs: Optional[List[MetricConfig]] = None,
    ):
        self.namespace = namespace
        self.registry = registry or CollectorRegistry()
        self._metrics: Dict[str, Any] = {}

        for cfg in configs or DEFAULT_METRICS:
            full_name = f"{namespace}_{cfg.name}"
            if cfg.metric_type == MetricType.COUNTER:
                metric = Counter(full_name, cfg.description, cfg.labels, registry=self.registry)
            elif cfg.metric_type == MetricType.HISTOGRAM:
                metric = Histogram(
                    full_name,
                    cfg.description,
                    cfg.labels,
                    buckets=cfg.buckets or Histogram.DEFAULT_BUCKETS,
                    registry=self.registry,
                )
            else:
                metric = Gauge(full_name, cfg.description, cfg.labels, registry=self.registry)
            self._metrics[cfg.name] = metric

    def record_block_read(self, length: int):
        self._metrics["blocks_read_total"].inc()
        self._metrics["bytes_read_total"].inc(length)

    def record_block_changed(self):
        self._metrics["blocks_changed_total"].inc()

    def record_bytes_written(self, length: int, kind: str):
        self._metrics["bytes_written_total"].labels(kind=kind).inc(length)

    def record_write_fault(self):
        self._metrics["block_write_faults_total"].inc()

    def record_run(self, mode: str, duration: float, success: bool):
        """Record the outcome of a whole run."""
        self._metrics["run_duration_seconds"].labels(mode=mode).observe(duration)
        self._metrics["last_run_timestamp_seconds"].labels(mode=mode).set(time.time())
        self._metrics["last_run_success"].labels(mode=mode).set(1 if success else 0)

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format."""
        return generate_latest(self.registry)

    def write_textfile(self, path: str) -> None:
        """Write the registry for the node-exporter textfile collector."""
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        write_to_textfile(path, self.registry)
        logger.info("Metrics written", extra={"path": path})

    def get_summary(self) -> Dict[str, float]:
        """Current sample values keyed by sample name, for logging."""
        summary: Dict[str, float] = {}
        for metric in self.registry.collect():
            for sample in metric.samples:
                if sample.name.endswith("_created") or sample.name.endswith("_bucket"):
                    continue
                key = sample.name
                if sample.labels:
                    key += "{" + ",".join(f"{k}={v}" for k, v in sorted(sample.labels.items())) + "}"
                summary[key] = sample.value
        return summary


__all__ = ["BackupMetrics", "MetricConfig", "MetricType", "DEFAULT_METRICS"]
