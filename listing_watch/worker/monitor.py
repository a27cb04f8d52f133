"""Monitoring service: periodic sweeps over every active watch.

A sweep loads the active watches and checks them in fixed-size groups. All
watches of a group are checked concurrently and the next group starts only
when the whole group has finished, with a short pause in between. Every
watch check and every item is its own failure domain: errors are logged,
counted and absorbed at that boundary so one watch can never hold up or
fail another.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from listing_watch.config import settings
from listing_watch.db.repository import WatchRepository
from listing_watch.domain import Item, ItemSummary, User, Watch
from listing_watch.errors import ListingWatchError
from listing_watch.ingest.marketplace import MarketplaceClient
from listing_watch.logging_config import get_logger
from listing_watch.metrics import MetricsAggregator
from listing_watch.notify.formatters import format_item_message
from listing_watch.notify.telegram import Notifier

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "watch_sweep"

# Error categories recorded by the monitor
SWEEP_ERROR = "sweep"
WATCH_CHECK_ERROR = "watch_check"
ITEM_PROCESSING_ERROR = "item_processing"
NOTIFICATION_ERROR = "notification"


class ItemOutcome(str, Enum):
    """What happened to one item summary."""

    SKIPPED_CURSOR = "skipped_cursor"
    SKIPPED_KNOWN = "skipped_known"
    SKIPPED_KEYWORD = "skipped_keyword"
    SKIPPED_REPUTATION = "skipped_reputation"
    NOTIFIED = "notified"
    NOTIFY_FAILED = "notify_failed"
    FAILED = "failed"


def find_banned_keyword(summary: ItemSummary, banned_keywords: list[str]) -> Optional[str]:
    """Return the first banned keyword found in the title or description."""
    title = summary.title.lower()
    description = summary.description.lower()
    for keyword in banned_keywords:
        needle = keyword.strip().lower()
        if needle and (needle in title or needle in description):
            return keyword
    return None


class MonitoringService:
    """
    Scheduler and per-watch workflow.

    The service is either stopped or running. ``start`` requires a session
    credential; the credential can be swapped at any time with
    ``set_credential`` without restarting the schedule.
    """

    def __init__(
        self,
        repository: WatchRepository,
        client: MarketplaceClient,
        notifier: Notifier,
        metrics: MetricsAggregator,
        scheduler: Optional[AsyncIOScheduler] = None,
        polling_interval: Optional[float] = None,
        concurrency: Optional[int] = None,
        group_pause: Optional[float] = None,
        filter_zero_reputation: Optional[bool] = None,
    ):
        self.repository = repository
        self.client = client
        self.notifier = notifier
        self.metrics = metrics
        self.scheduler = scheduler or AsyncIOScheduler()
        self.polling_interval = polling_interval or settings.polling_interval_seconds
        self.concurrency = max(1, concurrency or settings.concurrent_requests)
        self.group_pause = settings.group_pause_seconds if group_pause is None else group_pause
        self.filter_zero_reputation = (
            settings.filter_zero_reputation_sellers
            if filter_zero_reputation is None
            else filter_zero_reputation
        )

        self._credential: Optional[str] = None
        self._running = False
        self._sweep_in_progress = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def credential(self) -> Optional[str]:
        return self._credential

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweep_in_progress

    def set_credential(self, credential: str) -> None:
        """Swap the credential used by checks that start from now on."""
        self._credential = credential
        logger.info("Session credential updated in monitoring service")

    async def start(self) -> bool:
        """
        Start periodic sweeps; the first sweep runs immediately.

        Returns:
            True if the service was started, False if it was already running
            or no credential is set
        """
        if self._running:
            logger.warning("Monitoring service is already running")
            return False

        if not self._credential:
            logger.error("Cannot start monitoring service without a session credential")
            return False

        self._running = True
        self.scheduler.add_job(
            self.run_sweep,
            IntervalTrigger(seconds=self.polling_interval),
            id=SWEEP_JOB_ID,
            name="Sweep active watches",
            next_run_time=datetime.now(timezone.utc),
            # A second instance may enter run_sweep so the overlap is recorded there
            max_instances=2,
            coalesce=True,
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()

        logger.info(
            f"Monitoring service started (interval {self.polling_interval}s, "
            f"{self.concurrency} concurrent checks, {self.group_pause}s between groups)"
        )
        return True

    def stop(self) -> bool:
        """
        Stop scheduling new sweeps. Checks already running are left to finish.

        Returns:
            True if the service was stopped, False if it was not running
        """
        if not self._running:
            logger.warning("Monitoring service is not running")
            return False

        try:
            self.scheduler.remove_job(SWEEP_JOB_ID)
        except JobLookupError:
            logger.debug("Sweep job already removed")

        self._running = False
        logger.info("Monitoring service stopped")
        return True

    async def run_sweep(self) -> None:
        """Check every active watch, group by group."""
        if self._sweep_in_progress:
            logger.warning("Previous sweep still running, skipping this one")
            self.metrics.record_sweep(skipped=True)
            return

        if not self._credential:
            logger.warning("No session credential set, skipping sweep")
            self.metrics.record_sweep(skipped=True)
            return

        self._sweep_in_progress = True
        started = time.perf_counter()
        try:
            try:
                watches = await self.repository.list_active_watches()
            except Exception as e:
                logger.error(f"Could not load active watches: {e}")
                self._record_failure(SWEEP_ERROR, e, "loading active watches")
                return

            watches = [watch for watch in watches if watch.active]
            self.metrics.set_active_watches(len(watches))

            if not watches:
                logger.info("No active watches to check")
                return

            logger.info(f"Checking {len(watches)} active watches")
            for start in range(0, len(watches), self.concurrency):
                group = watches[start:start + self.concurrency]
                results = await asyncio.gather(
                    *(self.check_watch(watch) for watch in group),
                    return_exceptions=True,
                )
                for watch, outcome in zip(group, results):
                    if isinstance(outcome, BaseException):
                        # check_watch absorbs its own failures; this is a last resort
                        logger.error(f"Unhandled failure checking watch {watch.id}: {outcome!r}")
                        self._record_failure(WATCH_CHECK_ERROR, outcome, f"watch {watch.id}")

                if start + self.concurrency < len(watches):
                    await asyncio.sleep(self.group_pause)

            logger.info("Finished checking all watches")
        finally:
            duration = time.perf_counter() - started
            self._sweep_in_progress = False
            self.metrics.record_sweep(duration)

    async def check_watch(self, watch: Watch) -> int:
        """
        Check one watch for new items.

        Returns:
            Number of notifications delivered
        """
        log = get_logger(__name__, watch_id=watch.id)
        # Later credential swaps do not affect this check
        credential = self._credential

        try:
            result = await self.client.list_items(credential, watch.url)
            if not result.ok:
                log.warning(f"Listing failed for watch {watch.id}: {result.error}")
                self.metrics.record_watch_check(0)
                return 0

            items = result.value or []
            self.metrics.record_watch_check(len(items))
            if not items:
                log.info(f"No items found for watch {watch.id}")
                return 0

            log.info(f"Found {len(items)} items for watch {watch.id}")

            user = await self.repository.get_user(watch.owner_id)
            if user is None:
                log.warning(f"Owner {watch.owner_id} of watch {watch.id} not found")
                return 0

            if not user.notifications_enabled:
                log.info(f"Notifications disabled for user {user.id}")
                return 0

            delivered = 0
            for summary in items:
                outcome = await self.process_item(summary, watch, user, credential)
                if outcome is ItemOutcome.NOTIFIED:
                    delivered += 1

            await self.repository.update_watch(watch.id, last_checked=datetime.utcnow())
            return delivered

        except Exception as e:
            log.error(f"Error checking watch {watch.id}: {e}", exc_info=True)
            self._record_failure(WATCH_CHECK_ERROR, e, f"watch {watch.id}")
            return 0

    async def process_item(
        self,
        summary: ItemSummary,
        watch: Watch,
        user: User,
        credential: Optional[str] = None,
    ) -> ItemOutcome:
        """
        Run one item summary through the dedup and filter gate.

        Checks run cheapest first: watch cursor, item ledger, banned
        keywords, seller reputation. Only then is the full item fetched,
        recorded and announced.
        """
        item_id = summary.id
        if credential is None:
            credential = self._credential

        try:
            if watch.last_item == item_id:
                return ItemOutcome.SKIPPED_CURSOR

            if await self.repository.item_exists(item_id):
                return ItemOutcome.SKIPPED_KNOWN

            keyword = find_banned_keyword(summary, watch.banned_keywords)
            if keyword is not None:
                logger.info(f"Item {item_id} filtered out by keyword {keyword!r}")
                return ItemOutcome.SKIPPED_KEYWORD

            if self.filter_zero_reputation and summary.seller_reputation == 0:
                logger.info(f"Item {item_id} filtered out due to zero seller reputation")
                return ItemOutcome.SKIPPED_REPUTATION

            result = await self.client.fetch_item_detail(credential, item_id)
            if not result.ok:
                logger.warning(f"Could not fetch item {item_id}: {result.error}")
                return ItemOutcome.FAILED

            item = result.value
            await self.repository.create_item(item)
            await self.repository.update_watch(watch.id, last_item=item_id)
            watch.last_item = item_id

        except Exception as e:
            logger.error(f"Error processing item {item_id} for watch {watch.id}: {e}")
            self._record_failure(ITEM_PROCESSING_ERROR, e, f"item {item_id}")
            return ItemOutcome.FAILED

        delivered = await self.notify(item, watch, user)
        return ItemOutcome.NOTIFIED if delivered else ItemOutcome.NOTIFY_FAILED

    async def notify(self, item: Item, watch: Watch, user: User) -> bool:
        """
        Send the new-item message to the watch owner.

        Returns:
            True if the notifier accepted the message
        """
        try:
            message = format_item_message(item, watch)
            await self.notifier.send(user.recipient_id, message)
        except Exception as e:
            logger.error(f"Error sending notification for item {item.item_id} to {user.recipient_id}: {e}")
            self.metrics.record_error(NOTIFICATION_ERROR, str(e))
            return False

        self.metrics.record_notification_sent()
        logger.info(f"Notification sent to {user.recipient_id} for item {item.item_id}")
        return True

    def _record_failure(self, category: str, error: BaseException, context: str) -> None:
        """Count a failure under its error kind, or the category for foreign errors."""
        kind = error.kind.value if isinstance(error, ListingWatchError) else category
        self.metrics.record_error(kind, f"{context}: {error}")
