"""In-memory stand-ins for the repository, marketplace client and notifier."""

import asyncio
import dataclasses
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from listing_watch.domain import Item, ItemSummary, Seller, User, Watch
from listing_watch.errors import ErrorKind, MarketplaceError, NotificationError, RepositoryUnavailable, Result


def make_summary(item_id, title="Vintage denim jacket", description="", reputation=4.8) -> ItemSummary:
    return ItemSummary(
        id=str(item_id),
        title=title,
        description=description,
        seller_reputation=reputation,
    )


def make_item(item_id, title="Vintage denim jacket") -> Item:
    return Item(
        item_id=str(item_id),
        title=title,
        url=f"https://www.vinted.fr/items/{item_id}",
        price=Decimal("25.00"),
        currency="EUR",
        size="M",
        brand="Levi's",
        description="Barely worn",
        seller=Seller(id="77", username="closet_clearout", reputation=4.8),
    )


def make_watch(watch_id=1, owner_id=1, **fields) -> Watch:
    fields.setdefault("url", f"https://www.vinted.fr/catalog?brand_ids[]=53&watch={watch_id}")
    fields.setdefault("name", f"Watch {watch_id}")
    return Watch(id=watch_id, owner_id=owner_id, **fields)


def make_user(user_id=1, **fields) -> User:
    fields.setdefault("recipient_id", f"chat-{user_id}")
    return User(id=user_id, **fields)


class FakeRepository:
    """Dict-backed repository with the same duplicate-item behavior as the SQL one."""

    def __init__(self, watches=(), users=()):
        self.watches: dict[int, Watch] = {watch.id: watch for watch in watches}
        self.users: dict[int, User] = {user.id: user for user in users}
        self.items: dict[str, Item] = {}
        self.updates: list[tuple[int, dict[str, Any]]] = []
        self.fail_list = False

    async def list_active_watches(self) -> list[Watch]:
        if self.fail_list:
            raise RepositoryUnavailable("database is down")
        # Callers get detached copies, like rows mapped out of a session
        return [dataclasses.replace(watch) for watch in self.watches.values() if watch.active]

    async def get_watch(self, watch_id: int) -> Optional[Watch]:
        watch = self.watches.get(watch_id)
        return dataclasses.replace(watch) if watch else None

    async def update_watch(self, watch_id: int, **fields) -> Optional[Watch]:
        self.updates.append((watch_id, fields))
        watch = self.watches.get(watch_id)
        if watch is None:
            return None
        for name, value in fields.items():
            setattr(watch, name, value)
        watch.updated_at = datetime.utcnow()
        return dataclasses.replace(watch)

    async def create_item(self, item: Item) -> Item:
        if item.item_id in self.items:
            raise RepositoryUnavailable(f"item {item.item_id} already recorded")
        self.items[item.item_id] = item
        return item

    async def item_exists(self, item_id: str) -> bool:
        return item_id in self.items

    async def get_user(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    def updates_of(self, field: str) -> list[Any]:
        return [fields[field] for _, fields in self.updates if field in fields]


class FakeClient:
    """
    Marketplace client double.

    ``listings`` maps a query URL to summaries, an ErrorKind (returned as a
    failed Result) or an exception (raised). ``details`` does the same per
    item id; unknown ids resolve to ``make_item(id)``.
    """

    def __init__(self, listings=None, details=None, delay: float = 0.0):
        self.listings: dict[str, Any] = listings or {}
        self.details: dict[str, Any] = details or {}
        self.delay = delay
        self.credentials = ["session=fresh"]
        self.list_calls: list[tuple[str, str]] = []
        self.detail_calls: list[tuple[str, str]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @staticmethod
    def _resolve(value: Any) -> Result:
        if isinstance(value, ErrorKind):
            return Result.failure(MarketplaceError("upstream said no", value))
        if isinstance(value, Exception):
            raise value
        return Result.success(value)

    async def list_items(self, credential, query_url, **kwargs) -> Result:
        self.list_calls.append((credential, query_url))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        return self._resolve(self.listings.get(query_url, []))

    async def fetch_item_detail(self, credential, item_id, **kwargs) -> Result:
        self.detail_calls.append((credential, item_id))
        return self._resolve(self.details.get(item_id, make_item(item_id)))

    async def acquire_credential(self) -> Result:
        value = self.credentials.pop(0) if self.credentials else ErrorKind.CREDENTIAL_MISSING
        return self._resolve(value)


class FakeNotifier:
    """Records messages; recipients in ``failing`` raise NotificationError."""

    def __init__(self, failing=()):
        self.sent: list[tuple[str, str]] = []
        self.failing = set(failing)

    async def send(self, recipient_id: str, message: str) -> None:
        if recipient_id in self.failing:
            raise NotificationError(f"chat {recipient_id} blocked the bot")
        self.sent.append((recipient_id, message))
