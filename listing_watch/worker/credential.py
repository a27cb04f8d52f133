"""Periodic session credential refresh."""

import logging

from listing_watch.ingest.marketplace import MarketplaceClient
from listing_watch.metrics import MetricsAggregator
from listing_watch.worker.monitor import MonitoringService

logger = logging.getLogger(__name__)

CREDENTIAL_REFRESH_ERROR = "credential_refresh"


class CredentialRefresher:
    """Fetches a fresh session cookie and hands it to the monitoring service."""

    def __init__(
        self,
        client: MarketplaceClient,
        service: MonitoringService,
        metrics: MetricsAggregator,
    ):
        self.client = client
        self.service = service
        self.metrics = metrics

    async def refresh(self) -> bool:
        """
        Acquire a new credential.

        On failure the service keeps the credential it already has.

        Returns:
            True if the service received a new credential
        """
        result = await self.client.acquire_credential()
        if not result.ok:
            logger.error(f"Credential refresh failed, keeping the current one: {result.error}")
            self.metrics.record_error(CREDENTIAL_REFRESH_ERROR, str(result.error))
            return False

        self.service.set_credential(result.value)
        logger.info("Session credential refreshed")
        return True
