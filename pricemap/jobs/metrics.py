"""Per-source scraping metrics."""
import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class SourceStats:
    """Cumulative counters of one source."""

    parsed: int = 0
    saved: int = 0
    errors: int = 0
    run_count: int = 0
    last_run_time: Optional[datetime] = None
    average_duration: float = 0.0  # seconds

    def as_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["last_run_time"] = self.last_run_time.isoformat() if self.last_run_time else None
        data["average_duration"] = round(self.average_duration, 3)
        return data


class MetricsRecorder:
    """Accumulates per-source run metrics. Safe to share between workers."""

    def __init__(self):
        self.start_time = time.time()
        self._lock = threading.Lock()
        self._sources: Dict[str, SourceStats] = {}
        self.total_parsed = 0
        self.total_saved = 0
        self.total_errors = 0

    def record_run(
        self,
        source_name: str,
        parsed: int,
        saved: int,
        errors: int,
        duration: float,
    ) -> None:
        """Record one source execution."""
        with self._lock:
            stats = self._sources.get(source_name)
            if stats is None:
                stats = SourceStats()
                self._sources[source_name] = stats

            stats.parsed += parsed
            stats.saved += saved
            stats.errors += errors
            stats.last_run_time = datetime.utcnow()
            previous_runs = stats.run_count
            stats.run_count += 1
            stats.average_duration = (stats.average_duration * previous_runs + duration) / stats.run_count

            self.total_parsed += parsed
            self.total_saved += saved
            self.total_errors += errors

    def source_snapshot(self, source_name: str) -> Optional[SourceStats]:
        """Copy of one source's stats, None if it never ran."""
        with self._lock:
            stats = self._sources.get(source_name)
            return dataclasses.replace(stats) if stats else None

    def snapshot(self) -> dict:
        """Consistent copy of all metrics."""
        with self._lock:
            uptime = time.time() - self.start_time
            return {
                "uptime_seconds": round(uptime, 2),
                "total_parsed": self.total_parsed,
                "total_saved": self.total_saved,
                "total_errors": self.total_errors,
                "properties_per_sec": self.total_parsed / uptime if uptime > 0 else 0.0,
                "sources": {name: stats.as_dict() for name, stats in self._sources.items()},
            }

    def log_summary(self) -> None:
        """Log current metrics."""
        summary = self.snapshot()
        logger.info(
            f"Parsed: {summary['total_parsed']} | "
            f"Saved: {summary['total_saved']} | "
            f"Errors: {summary['total_errors']} | "
            f"Rate: {summary['properties_per_sec']:.2f}/s"
        )
        for name, stats in sorted(summary["sources"].items()):
            logger.info(
                f"  {name}: parsed={stats['parsed']} saved={stats['saved']} "
                f"errors={stats['errors']} runs={stats['run_count']} avg={stats['average_duration']}s"
            )
