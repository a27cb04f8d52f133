"""Marketplace client: session credential, catalog search and item detail.

Every operation runs through ``_execute``, which times the call, records it
in the metrics aggregator and folds any ``MarketplaceError`` into a
``Result``. Nothing is retried here; retry decisions belong to callers.
"""

import logging
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit

import httpx

from listing_watch.config import settings
from listing_watch.domain import Item, ItemSummary, Seller
from listing_watch.errors import ErrorKind, MarketplaceError, Result
from listing_watch.ingest.proxy_manager import ProxyPool
from listing_watch.ingest.request_builder import RequestBuilder, ResponseEnvelope
from listing_watch.ingest.response_cache import ResponseCache
from listing_watch.metrics import MetricsAggregator

logger = logging.getLogger(__name__)

T = TypeVar("T")

CATALOG_PATH = "/api/v2/catalog/items"
ITEM_PATH = "/api/v2/items/{item_id}"

# Query parameters the client always sets itself
_RESERVED_PARAMS = {"per_page", "order", "page"}

# Cache lookup sentinel; cached values may be falsy
_MISSING = object()


def classify_failure(envelope: ResponseEnvelope, default: ErrorKind) -> ErrorKind:
    """Map a failed envelope to an error kind."""
    if envelope.status_code == 404:
        return ErrorKind.NOT_FOUND
    if envelope.status_code == 429:
        return ErrorKind.RATE_LIMITED
    return default


def parse_price(raw: Any) -> tuple[Optional[Decimal], str]:
    """
    Parse an upstream price into (amount, currency).

    Accepts either a bare amount ("12.50", 12.5) or an object of the form
    ``{"amount": "12.50", "currency_code": "EUR"}``.
    """
    currency = ""
    if isinstance(raw, dict):
        currency = raw.get("currency_code") or ""
        raw = raw.get("amount")
    if raw is None or raw == "":
        return None, currency
    try:
        return Decimal(str(raw)), currency
    except InvalidOperation:
        raise ValueError(f"unparseable price {raw!r}")


def normalize_item(payload: dict[str, Any]) -> Item:
    """Turn a raw item detail payload into the canonical Item shape."""
    price, currency = parse_price(payload.get("price"))
    user = payload.get("user") or {}
    photos = payload.get("photos") or []
    size = payload.get("size_title") or payload.get("size") or ""
    if isinstance(size, dict):
        size = size.get("title") or ""

    return Item(
        item_id=str(payload["id"]),
        title=payload.get("title") or "",
        description=payload.get("description") or "",
        price=price,
        currency=payload.get("currency") or currency,
        size=size,
        brand=payload.get("brand_title") or "",
        url=payload.get("url") or "",
        image_url=photos[0].get("url", "") if photos else "",
        seller=Seller(
            id=str(user.get("id", "")),
            username=user.get("login") or "",
            reputation=user.get("feedback_reputation"),
        ),
    )


class MarketplaceClient:
    """Client for the three marketplace operations the monitor needs."""

    def __init__(
        self,
        metrics: MetricsAggregator,
        cache: Optional[ResponseCache] = None,
        proxy_pool: Optional[ProxyPool] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        catalog_ttl: Optional[float] = None,
        item_ttl: Optional[float] = None,
    ):
        self.metrics = metrics
        self.cache = cache if cache is not None else ResponseCache()
        self.proxy_pool = proxy_pool
        self.base_url = (base_url or settings.resolved_marketplace_url).rstrip("/")
        self.transport = transport
        self.catalog_ttl = catalog_ttl if catalog_ttl is not None else settings.catalog_cache_ttl_seconds
        self.item_ttl = item_ttl if item_ttl is not None else settings.item_cache_ttl_seconds

    def _request(self, url: str) -> RequestBuilder:
        return (
            RequestBuilder.get(url)
            .with_next_proxy(self.proxy_pool)
            .with_transport(self.transport)
        )

    async def _execute(
        self,
        endpoint: str,
        operation: Callable[[], Awaitable[T]],
        failure_kind: ErrorKind,
    ) -> Result[T]:
        """Run an operation, meter it and fold failures into a Result."""
        started = time.perf_counter()
        try:
            value = await operation()
        except MarketplaceError as e:
            error = e
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            # Payload did not have the shape we expect
            error = MarketplaceError(f"malformed {endpoint} payload: {e}", failure_kind)
        else:
            latency_ms = (time.perf_counter() - started) * 1000
            self.metrics.record_call(endpoint, True, latency_ms)
            return Result.success(value)

        latency_ms = (time.perf_counter() - started) * 1000
        self.metrics.record_call(endpoint, False, latency_ms)
        self.metrics.record_error(error.kind.value, error.message)

        if error.kind in (ErrorKind.NOT_FOUND, ErrorKind.RATE_LIMITED):
            logger.warning(f"{endpoint}: {error}")
        else:
            logger.error(f"{endpoint}: {error}")
        return Result.failure(error)

    async def acquire_credential(self) -> Result[str]:
        """
        Fetch a session cookie from the marketplace root.

        Returns:
            Result holding a ``Cookie`` header value
        """

        async def operation() -> str:
            envelope = await self._request(self.base_url).send()
            if not envelope.success:
                raise MarketplaceError(
                    f"session request failed: {envelope.error}",
                    classify_failure(envelope, ErrorKind.UPSTREAM_UNAVAILABLE),
                )

            set_cookies = envelope.headers.get_list("set-cookie") if envelope.headers else []
            pairs = [header.split(";", 1)[0].strip() for header in set_cookies]
            pairs = [pair for pair in pairs if "=" in pair]
            if not pairs:
                raise MarketplaceError("no session cookie in response", ErrorKind.CREDENTIAL_MISSING)

            logger.info("Fetched session credential from marketplace")
            return "; ".join(pairs)

        return await self._execute("fetch_cookie", operation, ErrorKind.UPSTREAM_UNAVAILABLE)

    def build_catalog_url(
        self,
        query_url: str,
        page_size: int = 96,
        order: str = "newest_first",
    ) -> str:
        """Move the query parameters of a user-facing search URL onto the API endpoint."""
        params = [
            (key, value)
            for key, value in parse_qsl(urlsplit(query_url).query, keep_blank_values=True)
            if key not in _RESERVED_PARAMS
        ]
        params += [("per_page", str(page_size)), ("order", order)]
        return f"{self.base_url}{CATALOG_PATH}?{urlencode(params)}"

    async def list_items(
        self,
        credential: str,
        query_url: str,
        page_size: Optional[int] = None,
        order: Optional[str] = None,
        use_cache: bool = True,
    ) -> Result[list[ItemSummary]]:
        """
        List the newest items matching a watch's query URL.

        Args:
            credential: Session cookie
            query_url: Search URL as copied from the marketplace website
            page_size: Items per page (default from settings)
            order: Sort order (default from settings)
            use_cache: Serve identical queries from the cache for a short window

        Returns:
            Result holding the item summaries, newest first
        """
        api_url = self.build_catalog_url(
            query_url,
            page_size or settings.catalog_page_size,
            order or settings.catalog_order,
        )
        cache_key = f"catalog:{api_url}"

        async def operation() -> list[ItemSummary]:
            if use_cache:
                cached = self.cache.get(cache_key, _MISSING)
                if cached is not _MISSING:
                    logger.debug(f"Using cached catalog items for {query_url}")
                    return cached

            envelope = await self._request(api_url).with_cookie(credential).send()
            if not envelope.success:
                raise MarketplaceError(
                    f"catalog request failed: {envelope.error}",
                    classify_failure(envelope, ErrorKind.ITEMS_UNAVAILABLE),
                )

            items = [ItemSummary.from_payload(entry) for entry in envelope.data.get("items") or []]
            if use_cache:
                self.cache.set(cache_key, items, self.catalog_ttl)
            return items

        return await self._execute("catalog_items", operation, ErrorKind.ITEMS_UNAVAILABLE)

    async def fetch_item_detail(
        self,
        credential: str,
        item_id: str,
        use_cache: bool = True,
    ) -> Result[Item]:
        """
        Fetch and normalize the full record of one item.

        Returns:
            Result holding the canonical Item
        """
        cache_key = f"item:{item_id}"

        async def operation() -> Item:
            if use_cache:
                cached = self.cache.get(cache_key, _MISSING)
                if cached is not _MISSING:
                    logger.debug(f"Using cached item for {item_id}")
                    return cached

            url = f"{self.base_url}{ITEM_PATH.format(item_id=item_id)}"
            envelope = await self._request(url).with_cookie(credential).send()
            if not envelope.success:
                raise MarketplaceError(
                    f"item {item_id} request failed: {envelope.error}",
                    classify_failure(envelope, ErrorKind.ITEM_UNAVAILABLE),
                )

            item = normalize_item(envelope.data["item"])
            if use_cache:
                self.cache.set(cache_key, item, self.item_ttl)
            return item

        return await self._execute("item_details", operation, ErrorKind.ITEM_UNAVAILABLE)
