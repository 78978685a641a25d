"""Disk spool for batches the store could not accept."""
import logging
from pathlib import Path
from typing import Iterator, Sequence

import aiofiles
import orjson

from pricemap.config import SPOOL_DIR
from pricemap.parse.models import PropertyRecord

logger = logging.getLogger(__name__)


class SpoolManager:
    """Manages JSONL spool files for offline buffering."""

    def __init__(self, spool_dir: Path = SPOOL_DIR):
        self.spool_dir = Path(spool_dir)
        self.spool_dir.mkdir(parents=True, exist_ok=True)

    def _get_spool_file(self, batch_id: str) -> Path:
        """Get spool file path for a batch."""
        return self.spool_dir / f"batch_{batch_id}.jsonl"

    async def write_batch(self, records: Sequence[PropertyRecord], batch_id: str) -> Path:
        """Append a failed batch to its spool file."""
        spool_file = self._get_spool_file(batch_id)
        async with aiofiles.open(spool_file, "ab") as f:
            for record in records:
                await f.write(orjson.dumps(record.model_dump(mode="json")) + b"\n")
        logger.warning(f"Spooled {len(records)} records to {spool_file.name}")
        return spool_file

    async def read_batch(self, spool_file: Path) -> list[PropertyRecord]:
        """Read all records from a spool file, skipping unreadable lines."""
        if not spool_file.exists():
            return []

        records = []
        async with aiofiles.open(spool_file, "rb") as f:
            async for line in f:
                if not line.strip():
                    continue
                try:
                    records.append(PropertyRecord(**orjson.loads(line)))
                except Exception as e:
                    logger.warning(f"Error reading spool line: {e}")
                    continue

        return records

    async def delete_batch(self, spool_file: Path) -> None:
        """Delete a spool file after successful upload."""
        if spool_file.exists():
            spool_file.unlink()

    def list_spool_files(self) -> Iterator[Path]:
        """List all spool files, oldest first."""
        return iter(sorted(self.spool_dir.glob("batch_*.jsonl"), key=lambda p: p.stat().st_mtime))
