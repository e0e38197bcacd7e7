"""
Performance monitoring for migration runs.

Tracks row throughput, per-stage timings and process memory (via psutil)
for one run. Resource sampling happens on a daemon thread so the migration
loop itself only bumps counters.
"""

import time
import logging
import psutil
import threading

from typing import Any, Dict, List, Optional
from datetime import datetime
from dataclasses import dataclass, field


@dataclass
class PerformanceMetrics:
    """Container for performance metrics."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    rows_read: int = 0
    rows_migrated: int = 0
    rows_failed: int = 0

    # Accumulated stage timings in seconds, keyed by stage name
    stage_times: Dict[str, float] = field(default_factory=dict)

    # System resource metrics
    peak_memory_mb: float = 0.0
    avg_cpu_percent: float = 0.0

    # Throughput metrics
    rows_per_second: float = 0.0
    rows_per_minute: float = 0.0


class PerformanceMonitor:
    """
    Collects throughput and resource metrics for one migration run.

    Usage:
        monitor.start_monitoring()
        monitor.start_stage('provisioning'); ...; monitor.end_stage('provisioning')
        monitor.record_rows(read=..., migrated=..., failed=...)
        summary = monitor.stop_monitoring()
    """

    def __init__(self, sample_interval: float = 0.5):
        self.logger = logging.getLogger(__name__)
        self.sample_interval = sample_interval
        self._metrics = PerformanceMetrics()
        self._is_monitoring = False
        self._monitoring_thread = None
        self._stop_monitoring_flag = threading.Event()
        self._cpu_samples: List[float] = []
        self._stage_start_times: Dict[str, float] = {}

    @property
    def metrics(self) -> PerformanceMetrics:
        return self._metrics

    def start_monitoring(self) -> None:
        """Start performance monitoring with resource tracking."""
        if self._is_monitoring:
            self.logger.warning("Performance monitoring already started")
            return

        self._metrics = PerformanceMetrics(start_time=datetime.now())
        self._cpu_samples = []
        self._is_monitoring = True
        self._stop_monitoring_flag.clear()
        self.sample()

        self._monitoring_thread = threading.Thread(target=self._monitor_resources, daemon=True)
        self._monitoring_thread.start()
        self.logger.debug("Performance monitoring started")

    def stop_monitoring(self) -> Dict[str, Any]:
        """Stop monitoring and return the performance summary."""
        if not self._is_monitoring:
            return self.get_summary()

        self._stop_monitoring_flag.set()
        if self._monitoring_thread and self._monitoring_thread.is_alive():
            self._monitoring_thread.join(timeout=1.0)
        self.sample()
        self._metrics.end_time = datetime.now()
        self._is_monitoring = False
        self._calculate_final_metrics()

        self.logger.info(f"Migrated {self._metrics.rows_migrated} of {self._metrics.rows_read} rows read "
                         f"in {self.elapsed_seconds:.2f} seconds ({self._metrics.rows_per_second:.1f} rows/sec)")
        return self.get_summary()

    def record_rows(self, read: int = 0, migrated: int = 0, failed: int = 0) -> None:
        self._metrics.rows_read += read
        self._metrics.rows_migrated += migrated
        self._metrics.rows_failed += failed

    def start_stage(self, stage_name: str) -> None:
        self._stage_start_times[stage_name] = time.time()

    def end_stage(self, stage_name: str) -> float:
        """End timing a stage and return its duration."""
        if stage_name not in self._stage_start_times:
            return 0.0
        duration = time.time() - self._stage_start_times.pop(stage_name)
        self._metrics.stage_times[stage_name] = self._metrics.stage_times.get(stage_name, 0.0) + duration
        return duration

    def sample(self) -> float:
        """Sample process memory now and update the peak; returns current MB."""
        memory_mb = self._get_current_memory_mb()
        if memory_mb > self._metrics.peak_memory_mb:
            self._metrics.peak_memory_mb = memory_mb
        return memory_mb

    @property
    def elapsed_seconds(self) -> float:
        if not self._metrics.start_time:
            return 0.0
        end = self._metrics.end_time or datetime.now()
        return (end - self._metrics.start_time).total_seconds()

    def get_summary(self) -> Dict[str, Any]:
        return {
            'elapsed_seconds': self.elapsed_seconds,
            'rows_read': self._metrics.rows_read,
            'rows_migrated': self._metrics.rows_migrated,
            'rows_failed': self._metrics.rows_failed,
            'rows_per_second': self._metrics.rows_per_second,
            'rows_per_minute': self._metrics.rows_per_minute,
            'stage_times_seconds': dict(self._metrics.stage_times),
            'peak_memory_mb': self._metrics.peak_memory_mb,
            'avg_cpu_percent': self._metrics.avg_cpu_percent,
        }

    def _monitor_resources(self) -> None:
        """Monitor system resources in background thread."""
        while not self._stop_monitoring_flag.wait(self.sample_interval):
            try:
                self.sample()
                self._cpu_samples.append(psutil.cpu_percent(interval=None))
            except psutil.Error as e:
                self.logger.warning(f"Error monitoring resources: {e}")
                break

    def _get_current_memory_mb(self) -> float:
        try:
            return psutil.Process().memory_info().rss / 1024 / 1024
        except psutil.Error:
            return 0.0

    def _calculate_final_metrics(self) -> None:
        total_time = self.elapsed_seconds
        if total_time > 0:
            self._metrics.rows_per_second = self._metrics.rows_migrated / total_time
            self._metrics.rows_per_minute = self._metrics.rows_per_second * 60
        if self._cpu_samples:
            self._metrics.avg_cpu_percent = sum(self._cpu_samples) / len(self._cpu_samples)
