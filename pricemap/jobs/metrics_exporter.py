"""Metrics exporter for observability."""
import time
from pathlib import Path
from typing import Optional

import aiofiles
import orjson

from pricemap.config import DATA_DIR

METRICS_FILE = DATA_DIR / "metrics.jsonl"


class MetricsExporter:
    """Appends run metrics to a JSONL file."""

    def __init__(self, metrics_file: Optional[Path] = None):
        self.metrics_file = Path(metrics_file) if metrics_file else METRICS_FILE

    async def export(self, run_id: str, snapshot: dict, failed_sources: list[str]) -> None:
        """Append one line for a finished run."""
        line = {
            "ts": time.time(),
            "run_id": run_id,
            "failed_sources": failed_sources,
            **snapshot,
        }
        self.metrics_file.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.metrics_file, "ab") as f:
            await f.write(orjson.dumps(line) + b"\n")

    def read_last(self, limit: int = 100) -> list[dict]:
        """Last `limit` exported lines."""
        if not self.metrics_file.exists():
            return []
        lines = self.metrics_file.read_bytes().splitlines()
        return [orjson.loads(line) for line in lines[-limit:] if line.strip()]
