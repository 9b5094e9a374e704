"""
Metrics Collection for Sync Jobs

Collects in-process metrics for:
- Job lifecycle (started, succeeded, failed, retried, dead-lettered)
- Processing times (average, p95) per job type
- Stock batch outcomes (synced, failed, skipped)

Collectors are constructed explicitly and passed to the components that
record into them.
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

JOB_COUNTERS = ("started", "succeeded", "failed", "retried", "dead_lettered")


def _job_counter() -> Dict[str, int]:
    return {name: 0 for name in JOB_COUNTERS}


@dataclass
class JobMetrics:
    """Counters for job execution, overall and per job type."""
    totals: Dict[str, int] = field(default_factory=_job_counter)
    by_type: Dict[str, Dict[str, int]] = field(default_factory=lambda: defaultdict(_job_counter))

    def increment(self, job_type: str, counter: str) -> None:
        self.totals[counter] += 1
        self.by_type[job_type][counter] += 1


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: Optional[str] = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: Optional[str] = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: Optional[str] = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Collector
# =============================================================================

class SyncMetrics:
    """
    Thread-safe metrics collector for sync jobs.

    Usage:
        metrics = SyncMetrics()
        metrics.record_job_started("order-sync")
        metrics.record_job_succeeded("order-sync", duration_ms=420)
    """

    def __init__(self):
        self.jobs = JobMetrics()
        self.timings = TimingMetrics()
        self.stock = {"synced": 0, "failed": 0, "skipped": 0}
        self._lock = Lock()

    def record_job_started(self, job_type: str):
        with self._lock:
            self.jobs.increment(job_type, "started")

    def record_job_succeeded(self, job_type: str, duration_ms: Optional[float] = None):
        with self._lock:
            self.jobs.increment(job_type, "succeeded")
            if duration_ms is not None:
                self.timings.add_sample(duration_ms, job_type)

    def record_job_failed(self, job_type: str, duration_ms: Optional[float] = None):
        with self._lock:
            self.jobs.increment(job_type, "failed")
            if duration_ms is not None:
                self.timings.add_sample(duration_ms, job_type)

    def record_job_retried(self, job_type: str):
        with self._lock:
            self.jobs.increment(job_type, "retried")

    def record_job_dead_lettered(self, job_type: str):
        with self._lock:
            self.jobs.increment(job_type, "dead_lettered")

    def record_stock_batch(self, synced: int, failed: int, skipped: int):
        with self._lock:
            self.stock["synced"] += synced
            self.stock["failed"] += failed
            self.stock["skipped"] += skipped

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "jobs": {
                    **self.jobs.totals,
                    "by_type": {k: dict(v) for k, v in self.jobs.by_type.items()},
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_job_type": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
                "stock": dict(self.stock),
            }
