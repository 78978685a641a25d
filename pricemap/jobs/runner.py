"""Main job runner orchestrating the scraping pipeline."""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from pricemap.jobs.metrics import MetricsRecorder
from pricemap.jobs.metrics_exporter import MetricsExporter
from pricemap.jobs.run_control import RunControl, ScrapeCancelled
from pricemap.parse.models import FactorSet, PropertyRecord
from pricemap.parse.validation import is_valid
from pricemap.sources.base import Source
from pricemap.store.base import PropertyStore
from pricemap.store.spool import SpoolManager

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class Enricher(Protocol):
    """Computes and stores location factors of a saved property."""

    async def compute_factors(self, record: PropertyRecord) -> FactorSet: ...

    async def save_factors(self, factors: FactorSet) -> None: ...


@dataclass
class JobResult:
    """Outcome of one source in a run."""

    source_name: str
    error: Optional[BaseException] = None
    parsed: int = 0
    saved: int = 0
    errors: int = 0
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def cancelled(self) -> bool:
        return isinstance(self.error, ScrapeCancelled)


class ScrapeRunError(Exception):
    """One or more sources failed. `results` holds every JobResult of the run."""

    def __init__(self, results: list[JobResult]):
        self.results = results
        self.failed = [r for r in results if not r.ok]
        names = ", ".join(r.source_name for r in self.failed)
        super().__init__(f"{len(self.failed)} of {len(results)} sources failed: {names}")

    @property
    def failed_sources(self) -> list[str]:
        return [r.source_name for r in self.failed]


class ScrapeRunner:
    """Runs sources, persists their records in batches and records metrics."""

    def __init__(
        self,
        sources: Sequence[Source],
        store: PropertyStore,
        metrics: Optional[MetricsRecorder] = None,
        enricher: Optional[Enricher] = None,
        spool: Optional[SpoolManager] = None,
        exporter: Optional[MetricsExporter] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.sources = list(sources)
        self.store = store
        self.metrics = metrics or MetricsRecorder()
        self.enricher = enricher
        self.spool = spool
        self.exporter = exporter
        self.batch_size = batch_size
        self.run_id = str(uuid.uuid4())
        self._enrichment_tasks: set[asyncio.Task] = set()

    async def run_all(self, control: Optional[RunControl] = None) -> list[JobResult]:
        """Run every source one after the other."""
        control = control or RunControl()
        logger.info(f"Run {self.run_id}: {len(self.sources)} sources, sequential")

        results = []
        for source in self.sources:
            stop, reason = control.should_stop()
            if stop:
                results.append(JobResult(source.name, error=ScrapeCancelled(reason)))
                continue
            results.append(await self._run_source(source, control))

        await self._finish(results, control)
        return results

    async def run_all_concurrent(self, workers: int, control: Optional[RunControl] = None) -> list[JobResult]:
        """Run sources on a pool of `workers` tasks fed from a bounded queue."""
        if workers < 1:
            raise ValueError("workers must be at least 1")
        control = control or RunControl()
        logger.info(f"Run {self.run_id}: {len(self.sources)} sources, {workers} workers")

        jobs: asyncio.Queue = asyncio.Queue(maxsize=max(len(self.sources), 1))
        for source in self.sources:
            jobs.put_nowait(source)
        done: asyncio.Queue = asyncio.Queue()

        async def worker(worker_id: int) -> None:
            while True:
                try:
                    source = jobs.get_nowait()
                except asyncio.QueueEmpty:
                    return
                stop, reason = control.should_stop()
                if stop:
                    logger.info(f"Worker {worker_id}: skipping {source.name} ({reason})")
                    result = JobResult(source.name, error=ScrapeCancelled(reason))
                else:
                    logger.debug(f"Worker {worker_id}: running {source.name}")
                    result = await self._run_source(source, control)
                done.put_nowait(result)
                jobs.task_done()

        await asyncio.gather(*(worker(i) for i in range(min(workers, len(self.sources)))))

        results = []
        while not done.empty():
            results.append(done.get_nowait())
        order = {source.name: i for i, source in enumerate(self.sources)}
        results.sort(key=lambda r: order.get(r.source_name, len(order)))

        await self._finish(results, control)
        return results

    async def _run_source(self, source: Source, control: RunControl) -> JobResult:
        """Parse one source and persist what it produced. Never raises."""
        result = JobResult(source.name)
        start_time = time.monotonic()
        records: list[PropertyRecord] = []

        try:
            records = await source.parse(control)
        except ScrapeCancelled as e:
            records = e.records
            result.error = e
            logger.warning(f"Source {source.name} cancelled ({e.reason}) after {len(records)} records")
        except Exception as e:
            result.error = e
            result.errors += 1
            logger.error(f"Error running source {source.name}: {e}")

        result.parsed = len(records)
        valid = []
        for record in records:
            if is_valid(record):
                valid.append(record)
            else:
                result.errors += 1

        if valid:
            saved, errors = await self.save_records(source.name, valid)
            result.saved += saved
            result.errors += errors

        result.duration = time.monotonic() - start_time
        self.metrics.record_run(source.name, result.parsed, result.saved, result.errors, result.duration)
        logger.info(
            f"Source {source.name}: parsed={result.parsed} saved={result.saved} "
            f"errors={result.errors} in {result.duration:.2f}s"
        )
        return result

    async def save_records(self, source_name: str, records: Sequence[PropertyRecord]) -> tuple[int, int]:
        """Upsert records in batches of `batch_size`. Returns (saved, errors)."""
        total_saved = 0
        total_errors = 0

        for batch_index, start in enumerate(range(0, len(records), self.batch_size)):
            batch = list(records[start : start + self.batch_size])
            try:
                saved, errors = await self.store.upsert_batch(batch)
            except Exception as e:
                logger.error(f"Batch {batch_index} of {source_name} failed: {e}")
                saved, errors = 0, len(batch)

            total_saved += saved
            total_errors += errors

            if saved == 0 and errors > 0:
                await self._spool_batch(f"{self.run_id}_{source_name}_{batch_index}", batch)
            elif saved > 0:
                self._schedule_enrichment([r for r in batch if r.id is not None])

        return total_saved, total_errors

    async def _spool_batch(self, batch_id: str, batch: list[PropertyRecord]) -> None:
        if self.spool is None:
            return
        try:
            await self.spool.write_batch(batch, batch_id)
        except OSError as e:
            logger.error(f"Could not spool batch {batch_id}: {e}")

    def _schedule_enrichment(self, records: list[PropertyRecord]) -> None:
        if self.enricher is None or not records:
            return
        task = asyncio.create_task(self._enrich(records))
        self._enrichment_tasks.add(task)
        task.add_done_callback(self._enrichment_tasks.discard)

    async def _enrich(self, records: list[PropertyRecord]) -> None:
        for record in records:
            try:
                factors = await self.enricher.compute_factors(record)
                await self.enricher.save_factors(factors)
            except Exception as e:
                logger.warning(f"Enrichment failed for property {record.id}: {e}")

    async def wait_for_enrichment(self) -> None:
        """Wait for background enrichment scheduled so far."""
        if self._enrichment_tasks:
            await asyncio.gather(*list(self._enrichment_tasks), return_exceptions=True)

    async def replay_spool(self) -> tuple[int, int]:
        """Re-upsert spooled batches, deleting the files that were fully saved.

        Returns (saved, errors).
        """
        if self.spool is None:
            return 0, 0

        total_saved = 0
        total_errors = 0
        for spool_file in self.spool.list_spool_files():
            records = await self.spool.read_batch(spool_file)
            if not records:
                await self.spool.delete_batch(spool_file)
                continue

            try:
                saved, errors = await self.store.upsert_batch(records)
            except Exception as e:
                logger.error(f"Replay of {spool_file.name} failed: {e}")
                saved, errors = 0, len(records)

            total_saved += saved
            total_errors += errors
            if errors == 0:
                await self.spool.delete_batch(spool_file)
                logger.info(f"Replayed {saved} records from {spool_file.name}")

        return total_saved, total_errors

    async def _finish(self, results: list[JobResult], control: RunControl) -> None:
        """Final report and metrics export; raises ScrapeRunError on failures."""
        failed = [r for r in results if not r.ok]
        await self._final_report(results, control)

        if self.exporter is not None:
            try:
                await self.exporter.export(
                    self.run_id, self.metrics.snapshot(), [r.source_name for r in failed]
                )
            except OSError as e:
                logger.error(f"Metrics export failed: {e}")

        if failed:
            raise ScrapeRunError(results)

    async def _final_report(self, results: list[JobResult], control: RunControl) -> None:
        """Generate final report."""
        run_summary = control.get_summary()

        logger.info("=" * 60)
        logger.info("FINAL REPORT")
        logger.info(f"Run ID: {self.run_id}")
        logger.info(f"Elapsed: {run_summary['elapsed_seconds']:.2f} seconds")
        if run_summary["stopped"]:
            logger.info(f"Stopped: {run_summary['reason']}")
        logger.info(f"Sources: {len(results)}")
        logger.info(f"Parsed: {sum(r.parsed for r in results)}")
        logger.info(f"Saved: {sum(r.saved for r in results)}")
        logger.info(f"Errors: {sum(r.errors for r in results)}")
        for result in results:
            status = "OK" if result.ok else ("CANCELLED" if result.cancelled else f"FAILED ({result.error})")
            logger.info(f"  {result.source_name}: {status}")
        logger.info("=" * 60)
