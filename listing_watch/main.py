"""Main application entry point."""

import asyncio
import logging
import signal

from prometheus_client import start_http_server

from listing_watch.config import settings
from listing_watch.db.repository import SQLWatchRepository
from listing_watch.db.session import create_session_factory, init_models
from listing_watch.errors import NoProxiesAvailable
from listing_watch.ingest.marketplace import MarketplaceClient
from listing_watch.ingest.proxy_manager import ProxyPool
from listing_watch.ingest.response_cache import ResponseCache
from listing_watch.logging_config import setup_logging
from listing_watch.metrics import MetricsAggregator
from listing_watch.notify.telegram import TelegramNotifier
from listing_watch.worker.credential import CredentialRefresher
from listing_watch.worker.monitor import MonitoringService
from listing_watch.worker.scheduler import refresh_counts, setup_scheduler

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def run() -> int:
    """Build every component, run until SIGINT/SIGTERM and shut down cleanly."""
    setup_logging()
    logger.info("Starting listing-watch...")

    engine, session_factory = create_session_factory()
    await init_models(engine)
    repository = SQLWatchRepository(session_factory)

    metrics = MetricsAggregator()
    cache = ResponseCache()
    proxy_pool = ProxyPool()
    try:
        await proxy_pool.initialize()
    except NoProxiesAvailable as e:
        if settings.require_proxies:
            logger.error(f"Cannot start without proxies: {e}")
            await engine.dispose()
            return 1
        logger.warning(f"{e}; sending requests directly")

    client = MarketplaceClient(metrics, cache=cache, proxy_pool=proxy_pool)
    notifier = TelegramNotifier()
    service = MonitoringService(repository, client, notifier, metrics)
    refresher = CredentialRefresher(client, service, metrics)

    if not await refresher.refresh():
        logger.warning("No initial session credential; waiting for the refresh job")

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Prometheus metrics exposed on port {settings.metrics_port}")

    await refresh_counts(repository, metrics)

    scheduler = setup_scheduler(
        metrics,
        cache,
        refresher,
        repository=repository,
        scheduler=service.scheduler,
    )
    scheduler.start()
    logger.info("Scheduler started")

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    if not await service.start():
        # Retried once a credential refresh succeeds
        scheduler.add_job(
            _start_when_ready,
            "interval",
            seconds=settings.polling_interval_seconds,
            args=[service, scheduler],
            id="service_start",
            name="Start monitoring once a credential is available",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    await stop_event.wait()

    # Shutdown
    logger.info("Shutting down...")
    if service.is_running:
        service.stop()
    metrics.save_snapshot()
    scheduler.shutdown(wait=False)
    await notifier.close()
    await engine.dispose()
    logger.info("Shutdown complete")
    return 0


async def _start_when_ready(service: MonitoringService, scheduler) -> None:
    if service.is_running or (service.credential and await service.start()):
        scheduler.remove_job("service_start")


def main() -> None:
    raise SystemExit(asyncio.run(run()))


if __name__ == "__main__":
    main()
