"""
Metrics Collection for the Fulfillment Pipeline

Collects in-process counters and timings for:
- Lifecycle transitions (accepted / rejected, by edge)
- Reconciliation runs (all matched vs discrepancies)
- Gate sessions (opened, completed, abandoned)
- Processing times (average, p95)
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class TransitionMetrics:
    """Counters for lifecycle transitions."""
    accepted: int = 0
    rejected: int = 0

    # By edge ("SUBMITTED->CONFIRMED") and by rejection reason
    by_edge: Dict[str, int] = field(default_factory=lambda: defaultdict(int))
    rejections_by_reason: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class ReconciliationMetrics:
    """Counters for reconciliation runs."""
    runs: int = 0
    all_matched: int = 0
    discrepancies: int = 0
    by_verdict: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class GateMetrics:
    """Counters for gate sessions."""
    opened: int = 0
    completed: int = 0
    abandoned: int = 0
    incomplete_attempts: int = 0


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        """Add a timing sample."""
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for the fulfillment pipeline.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_transition("SUBMITTED", "CONFIRMED")
        metrics.record_reconciliation(all_matched=True, verdict_counts={"MATCHED": 3})
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.transitions = TransitionMetrics()
        self.reconciliations = ReconciliationMetrics()
        self.gates = GateMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def record_transition(self, from_status: str, to_status: str):
        with self._lock:
            self.transitions.accepted += 1
            self.transitions.by_edge[f"{from_status}->{to_status}"] += 1

    def record_transition_rejected(self, from_status: str, to_status: str, reason: str):
        with self._lock:
            self.transitions.rejected += 1
            self.transitions.rejections_by_reason[reason] += 1

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def record_reconciliation(self, all_matched: bool, verdict_counts: Dict[str, int],
                              duration_ms: float = None):
        with self._lock:
            self.reconciliations.runs += 1
            if all_matched:
                self.reconciliations.all_matched += 1
            else:
                self.reconciliations.discrepancies += 1
            for verdict, count in verdict_counts.items():
                self.reconciliations.by_verdict[verdict] += count
            if duration_ms:
                self.timings.add_sample(duration_ms, "reconciliation")

    # =========================================================================
    # Gate
    # =========================================================================

    def record_gate_opened(self):
        with self._lock:
            self.gates.opened += 1

    def record_gate_completed(self):
        with self._lock:
            self.gates.completed += 1

    def record_gate_abandoned(self):
        with self._lock:
            self.gates.abandoned += 1

    def record_gate_incomplete(self):
        with self._lock:
            self.gates.incomplete_attempts += 1

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        """Record a processing time sample."""
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        """Get timing statistics for a stage."""
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "transitions": {
                    "accepted": self.transitions.accepted,
                    "rejected": self.transitions.rejected,
                    "by_edge": dict(self.transitions.by_edge),
                    "rejections_by_reason": dict(self.transitions.rejections_by_reason),
                },
                "reconciliations": {
                    "runs": self.reconciliations.runs,
                    "all_matched": self.reconciliations.all_matched,
                    "discrepancies": self.reconciliations.discrepancies,
                    "by_verdict": dict(self.reconciliations.by_verdict),
                },
                "gates": {
                    "opened": self.gates.opened,
                    "completed": self.gates.completed,
                    "abandoned": self.gates.abandoned,
                    "incomplete_attempts": self.gates.incomplete_attempts,
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()
