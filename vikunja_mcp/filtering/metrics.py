"""Timing and counters for filter runs.

Every run of the hybrid strategy produces a :class:`FilterRunStats` that is
attached to its result. :class:`FilterMetrics` aggregates those per
provenance (server, client, hybrid-merged) and counts failed runs by kind,
so an agent or operator can see how often filtering falls back to local
evaluation and what it costs.
"""

import time
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Any


def elapsed_ms(start: float) -> float:
    """Milliseconds since ``start`` (a ``time.perf_counter()`` reading)."""
    return (time.perf_counter() - start) * 1000


@dataclass
class FilterRunStats:
    """Measurements for a single filter run."""

    provenance: str
    candidates: int
    matched: int
    total_time_ms: float = 0.0
    remote_time_ms: float = 0.0
    local_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "provenance": self.provenance,
            "candidates": self.candidates,
            "matched": self.matched,
            "total_time_ms": round(self.total_time_ms, 1),
            "remote_time_ms": round(self.remote_time_ms, 1),
            "local_time_ms": round(self.local_time_ms, 1),
        }


@dataclass
class ProvenanceTotals:
    runs: int = 0
    total_time_ms: float = 0.0
    max_time_ms: float = 0.0
    candidates: int = 0
    matched: int = 0

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.runs if self.runs else 0.0

    def to_summary_dict(self) -> dict[str, Any]:
        return {
            "runs": self.runs,
            "avg_time_ms": round(self.avg_time_ms, 1),
            "max_time_ms": round(self.max_time_ms, 1),
            "candidates": self.candidates,
            "matched": self.matched,
        }


class FilterMetrics:
    """Thread-safe aggregate of filter run statistics."""

    def __init__(self):
        self._lock = Lock()
        self._totals: dict[str, ProvenanceTotals] = defaultdict(ProvenanceTotals)
        self._failures: dict[str, int] = defaultdict(int)
        self._started = time.time()

    def record(self, stats: FilterRunStats) -> None:
        with self._lock:
            totals = self._totals[stats.provenance]
            totals.runs += 1
            totals.total_time_ms += stats.total_time_ms
            totals.max_time_ms = max(totals.max_time_ms, stats.total_time_ms)
            totals.candidates += stats.candidates
            totals.matched += stats.matched

    def record_failure(self, kind: str) -> None:
        """Count a run that ended in an error of the given kind."""
        with self._lock:
            self._failures[kind] += 1

    def runs(self, provenance: str) -> int:
        with self._lock:
            totals = self._totals.get(provenance)
            return totals.runs if totals else 0

    def snapshot(self) -> dict[str, Any]:
        """Summary of everything recorded since creation or the last reset."""
        with self._lock:
            by_provenance = {
                name: totals.to_summary_dict() for name, totals in sorted(self._totals.items())
            }
            total_runs = sum(totals.runs for totals in self._totals.values())
            local_runs = total_runs - (
                self._totals["server"].runs if "server" in self._totals else 0
            )
            return {
                "total_runs": total_runs,
                "failed_runs": sum(self._failures.values()),
                "fallback_rate": round(local_runs / total_runs, 3) if total_runs else 0.0,
                "by_provenance": by_provenance,
                "failures": dict(sorted(self._failures.items())),
                "uptime_s": round(time.time() - self._started, 1),
            }

    def reset(self) -> None:
        with self._lock:
            self._totals.clear()
            self._failures.clear()
            self._started = time.time()
