"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from pricemap.config import Config, config
from pricemap.fetch.client import Fetcher
from pricemap.fetch.proxy_pool import ProxyPool
from pricemap.jobs.metrics import MetricsRecorder
from pricemap.jobs.metrics_exporter import MetricsExporter
from pricemap.jobs.run_control import RunControl
from pricemap.jobs.runner import ScrapeRunError, ScrapeRunner
from pricemap.logging_conf import setup_logging
from pricemap.services.cache import TTLCache
from pricemap.services.geocoding import HTTPGeocoder
from pricemap.sources.registry import SourceRegistry
from pricemap.store.base import PropertyStore
from pricemap.store.spool import SpoolManager
from pricemap.store.sqlite_store import SQLitePropertyStore

logger = logging.getLogger(__name__)


def build_store(cfg: Config = config) -> PropertyStore:
    """Store selected by STORE_BACKEND."""
    if cfg.STORE_BACKEND == "supabase":
        from pricemap.store.supabase_store import SupabasePropertyStore

        return SupabasePropertyStore()
    return SQLitePropertyStore(cfg.DB_PATH)


def build_proxy_pool(cfg: Config = config) -> Optional[ProxyPool]:
    """Pool from PROXY_LIST, None when no proxies are configured."""
    if not cfg.PROXY_LIST:
        return None
    pool = ProxyPool(max_failures=cfg.PROXY_MAX_FAILURES)
    added = pool.add_many(cfg.PROXY_LIST)
    logger.info(f"Proxy pool: {added} endpoints")
    return pool if added else None


def build_runner(
    store: PropertyStore,
    geocoder: Optional[HTTPGeocoder] = None,
    source_names: Optional[list[str]] = None,
    batch_size: Optional[int] = None,
    metrics: Optional[MetricsRecorder] = None,
    cfg: Config = config,
) -> ScrapeRunner:
    """Wire sources, fetchers and persistence into a runner."""
    proxy_pool = build_proxy_pool(cfg)
    sources = SourceRegistry().build(
        lambda: Fetcher.from_config(cfg, proxy_pool=proxy_pool),
        geocoder=geocoder,
        names=source_names or cfg.SOURCES or None,
    )
    return ScrapeRunner(
        sources=sources,
        store=store,
        metrics=metrics,
        spool=SpoolManager(),
        exporter=MetricsExporter(),
        batch_size=batch_size or cfg.BATCH_SIZE,
    )


async def close_sources(runner: ScrapeRunner) -> None:
    for source in runner.sources:
        await source.fetcher.aclose()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="PriceMap listing scraper")

    parser.add_argument(
        "--mode",
        choices=["sequential", "concurrent"],
        default=None,
        help=f"Run sources one by one or on a worker pool (default: {config.RUN_MODE})",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help=f"Worker count in concurrent mode (default: {config.WORKERS})",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop the run after N seconds (default: no limit)",
    )
    parser.add_argument(
        "--sources",
        type=str,
        default=None,
        help="Comma-separated source names (default: all)",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help=f"Records per store upsert (default: {config.BATCH_SIZE})",
    )
    parser.add_argument(
        "--list-sources",
        action="store_true",
        help="Print the available sources and exit",
    )
    parser.add_argument(
        "--replay-spool",
        action="store_true",
        help="Re-upsert spooled batches before running",
    )

    return parser.parse_args(argv)


def install_signal_handlers(control: RunControl) -> list[signal.Signals]:
    """Turn SIGINT/SIGTERM into `control.cancel` so gathered records are still saved."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, control.cancel, f"received {sig.name}")
        except (NotImplementedError, RuntimeError) as e:
            # No loop signal support on this platform or outside the main thread
            logger.debug(f"Cannot handle {sig.name} through the event loop: {e}")
            continue
        installed.append(sig)
    return installed


def remove_signal_handlers(signals: list[signal.Signals]) -> None:
    loop = asyncio.get_running_loop()
    for sig in signals:
        loop.remove_signal_handler(sig)


async def run(args: argparse.Namespace) -> int:
    """Run one scrape. Returns the process exit code."""
    store = build_store()
    await store.initialize()

    cache = TTLCache(ttl=config.GEOCODE_CACHE_TTL, sweep_interval=config.CACHE_SWEEP_INTERVAL)
    geocoder = HTTPGeocoder(api_key=config.OPENCAGE_API_KEY, cache=cache)

    source_names = [s for s in args.sources.split(",") if s.strip()] if args.sources else None
    runner = build_runner(store, geocoder, source_names, args.batch_size)
    control = RunControl(stop_after_seconds=args.timeout or config.RUN_TIMEOUT or None)
    signals = install_signal_handlers(control)

    mode = args.mode or config.RUN_MODE
    workers = args.workers or config.WORKERS
    try:
        if args.replay_spool:
            saved, errors = await runner.replay_spool()
            logger.info(f"Spool replay: saved={saved} errors={errors}")

        if mode == "sequential":
            await runner.run_all(control)
        else:
            await runner.run_all_concurrent(workers, control)
        return 0
    except ScrapeRunError as e:
        logger.error(str(e))
        return 1
    finally:
        remove_signal_handlers(signals)
        await runner.wait_for_enrichment()
        await close_sources(runner)
        await geocoder.aclose()
        cache.close()
        await store.close()
        runner.metrics.log_summary()


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    setup_logging()
    args = parse_args(argv)

    if args.list_sources:
        for name in SourceRegistry().names():
            print(name)
        return

    try:
        Config.validate()
        if args.workers is not None and args.workers < 1:
            raise ValueError("--workers must be at least 1")
        if args.batch_size is not None and args.batch_size < 1:
            raise ValueError("--batch-size must be at least 1")
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    logger.info("=" * 60)
    logger.info("PriceMap Scraper Starting")
    logger.info(f"Mode: {args.mode or config.RUN_MODE}")
    logger.info(f"Workers: {args.workers or config.WORKERS}")
    logger.info(f"Batch size: {args.batch_size or config.BATCH_SIZE}")
    logger.info(f"Store: {config.STORE_BACKEND}")
    logger.info(f"Tor: {config.USE_TOR}")
    logger.info("=" * 60)

    try:
        exit_code = asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
