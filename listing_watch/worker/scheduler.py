"""APScheduler housekeeping jobs.

The sweep job itself is owned by ``MonitoringService``; this module adds
the jobs that keep its surroundings fresh: session credential, response
cache, metrics snapshot and watch/user counts.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from listing_watch.config import settings
from listing_watch.db.repository import SQLWatchRepository
from listing_watch.ingest.response_cache import ResponseCache
from listing_watch.metrics import MetricsAggregator
from listing_watch.worker.credential import CredentialRefresher

logger = logging.getLogger(__name__)


async def refresh_counts(repository: SQLWatchRepository, metrics: MetricsAggregator) -> None:
    """Copy watch and user totals from storage into the metrics snapshot."""
    try:
        total_watches, active_watches = await repository.count_watches()
        users = await repository.list_users()
    except Exception as e:
        logger.error(f"Failed to refresh watch/user counts: {e}")
        metrics.record_error("count_refresh", str(e))
        return

    metrics.update_watch_counts(total_watches, active_watches)
    metrics.update_user_counts(
        len(users),
        sum(1 for user in users if user.notifications_enabled),
    )


def setup_scheduler(
    metrics: MetricsAggregator,
    cache: ResponseCache,
    refresher: CredentialRefresher,
    repository: Optional[SQLWatchRepository] = None,
    scheduler: Optional[AsyncIOScheduler] = None,
) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Args:
        metrics: Aggregator whose snapshot is saved and refreshed
        cache: Response cache to sweep
        refresher: Credential refresher
        repository: Source of watch/user counts; the count job is skipped without one
        scheduler: Existing scheduler to add jobs to

    Returns:
        Configured scheduler instance (not started)
    """
    scheduler = scheduler or AsyncIOScheduler()

    scheduler.add_job(
        refresher.refresh,
        IntervalTrigger(minutes=settings.credential_refresh_minutes),
        id="credential_refresh",
        name="Refresh marketplace session credential",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        cache.sweep,
        IntervalTrigger(seconds=settings.cache_sweep_interval_seconds),
        id="cache_sweep",
        name="Evict expired response cache entries",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        metrics.save_snapshot,
        IntervalTrigger(seconds=settings.metrics_save_interval_seconds),
        id="metrics_save",
        name="Save metrics snapshot",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    scheduler.add_job(
        metrics.update_system_metrics,
        IntervalTrigger(seconds=settings.system_metrics_interval_seconds),
        id="system_metrics",
        name="Refresh process memory and uptime",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )

    if repository is not None:
        scheduler.add_job(
            refresh_counts,
            IntervalTrigger(seconds=settings.metrics_save_interval_seconds),
            args=[repository, metrics],
            id="count_refresh",
            name="Refresh watch and user counts",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

    logger.info(
        "Scheduler configured: credential refresh every %d minutes, cache sweep every %d seconds, "
        "metrics snapshot every %d seconds",
        settings.credential_refresh_minutes,
        settings.cache_sweep_interval_seconds,
        settings.metrics_save_interval_seconds,
    )

    return scheduler
