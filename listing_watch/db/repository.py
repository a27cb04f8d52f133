"""Watch repository: the storage boundary consumed by the monitor.

``WatchRepository`` is the interface the orchestrator depends on.
``SQLWatchRepository`` implements it with the SQLAlchemy async ORM and adds
the user/watch CRUD the chat front-end uses. Storage failures never leave
this module as SQLAlchemy exceptions; they are re-raised as
``RepositoryUnavailable``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from listing_watch.config import settings
from listing_watch.db.models import ItemModel, UserModel, WatchModel
from listing_watch.domain import Item, Seller, User, Watch
from listing_watch.errors import RepositoryUnavailable

logger = logging.getLogger(__name__)

# Fields the front-end and the monitor may change on a watch
WATCH_UPDATABLE_FIELDS = {"url", "name", "active", "banned_keywords", "last_checked", "last_item"}
USER_UPDATABLE_FIELDS = {"username", "first_name", "last_name", "language", "notifications_enabled", "max_watches", "is_admin"}


class UserNotFound(LookupError):
    """Raised when an operation references an unknown user."""


class WatchLimitReached(RuntimeError):
    """Raised when a non-admin user already owns the maximum number of watches."""


class WatchRepository(Protocol):
    """Storage operations the monitoring service depends on."""

    async def list_active_watches(self) -> list[Watch]:
        ...

    async def get_watch(self, watch_id: int) -> Optional[Watch]:
        ...

    async def update_watch(self, watch_id: int, **fields) -> Optional[Watch]:
        ...

    async def create_item(self, item: Item) -> Item:
        ...

    async def item_exists(self, item_id: str) -> bool:
        ...

    async def get_user(self, user_id: int) -> Optional[User]:
        ...


def _to_watch(row: WatchModel) -> Watch:
    return Watch(
        id=row.id,
        owner_id=row.owner_id,
        url=row.url,
        name=row.name,
        active=row.active,
        banned_keywords=list(row.banned_keywords or []),
        last_checked=row.last_checked,
        last_item=row.last_item,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_user(row: UserModel) -> User:
    return User(
        id=row.id,
        recipient_id=row.recipient_id,
        username=row.username or "",
        notifications_enabled=row.notifications_enabled,
        language=row.language,
        is_admin=row.is_admin,
        max_watches=row.max_watches,
        watch_ids=[watch.id for watch in row.watches],
    )


def _to_item(row: ItemModel) -> Item:
    return Item(
        item_id=row.item_id,
        title=row.title,
        description=row.description or "",
        price=row.price,
        currency=row.currency or "",
        size=row.size or "",
        brand=row.brand or "",
        url=row.url,
        image_url=row.image_url or "",
        seller=Seller(
            id=row.seller_id or "",
            username=row.seller_username or "",
            reputation=row.seller_reputation,
        ),
        created_at=row.created_at,
    )


class SQLWatchRepository:
    """SQLAlchemy-backed repository."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise RepositoryUnavailable(f"{type(e).__name__}: {e}") from e

    # ------------------------------------------------------------------
    # Operations used by the monitor
    # ------------------------------------------------------------------

    async def list_active_watches(self) -> list[Watch]:
        async with self._session() as db:
            result = await db.execute(
                select(WatchModel).where(WatchModel.active.is_(True)).order_by(WatchModel.id)
            )
            return [_to_watch(row) for row in result.scalars().all()]

    async def get_watch(self, watch_id: int) -> Optional[Watch]:
        async with self._session() as db:
            row = await db.get(WatchModel, watch_id)
            return _to_watch(row) if row else None

    async def update_watch(self, watch_id: int, **fields) -> Optional[Watch]:
        """
        Update a watch and refresh its ``updated_at``.

        Raises:
            ValueError: If a field is not updatable
        """
        unknown = set(fields) - WATCH_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update watch fields: {', '.join(sorted(unknown))}")

        async with self._session() as db:
            row = await db.get(WatchModel, watch_id)
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            row.updated_at = datetime.utcnow()
            await db.commit()
            return _to_watch(row)

    async def create_item(self, item: Item) -> Item:
        seller = item.seller or Seller(id="", username="")
        async with self._session() as db:
            row = ItemModel(
                item_id=item.item_id,
                title=item.title,
                description=item.description,
                price=item.price,
                currency=item.currency,
                size=item.size,
                brand=item.brand,
                url=item.url,
                image_url=item.image_url,
                seller_id=seller.id,
                seller_username=seller.username,
                seller_reputation=seller.reputation,
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise RepositoryUnavailable(f"item {item.item_id} already recorded") from e
            return _to_item(row)

    async def item_exists(self, item_id: str) -> bool:
        async with self._session() as db:
            result = await db.execute(
                select(func.count()).select_from(ItemModel).where(ItemModel.item_id == item_id)
            )
            return result.scalar_one() > 0

    async def get_user(self, user_id: int) -> Optional[User]:
        async with self._session() as db:
            result = await db.execute(
                select(UserModel)
                .options(selectinload(UserModel.watches))
                .where(UserModel.id == user_id)
            )
            row = result.scalar_one_or_none()
            return _to_user(row) if row else None

    # ------------------------------------------------------------------
    # Front-end CRUD
    # ------------------------------------------------------------------

    async def get_user_by_recipient(self, recipient_id: str) -> Optional[User]:
        async with self._session() as db:
            result = await db.execute(
                select(UserModel)
                .options(selectinload(UserModel.watches))
                .where(UserModel.recipient_id == recipient_id)
            )
            row = result.scalar_one_or_none()
            return _to_user(row) if row else None

    async def create_user(
        self,
        recipient_id: str,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
    ) -> User:
        """Register a user; configured admin IDs get unlimited watches."""
        async with self._session() as db:
            row = UserModel(
                recipient_id=recipient_id,
                username=username,
                first_name=first_name,
                last_name=last_name,
                max_watches=settings.max_watches_per_user,
                is_admin=recipient_id in settings.admin_user_ids,
                watches=[],
            )
            db.add(row)
            await db.commit()
            logger.info(f"Created user {row.id} for recipient {recipient_id}")
            return _to_user(row)

    async def update_user(self, user_id: int, **fields) -> Optional[User]:
        unknown = set(fields) - USER_UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")

        async with self._session() as db:
            result = await db.execute(
                select(UserModel)
                .options(selectinload(UserModel.watches))
                .where(UserModel.id == user_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            for name, value in fields.items():
                setattr(row, name, value)
            row.last_active = datetime.utcnow()
            await db.commit()
            return _to_user(row)

    async def delete_user(self, user_id: int) -> bool:
        """Delete a user together with all of their watches."""
        async with self._session() as db:
            result = await db.execute(
                select(UserModel)
                .options(selectinload(UserModel.watches))
                .where(UserModel.id == user_id)
            )
            row = result.scalar_one_or_none()
            if row is None:
                return False
            await db.delete(row)
            await db.commit()
            logger.info(f"Deleted user {user_id}")
            return True

    async def list_users(self) -> list[User]:
        async with self._session() as db:
            result = await db.execute(
                select(UserModel).options(selectinload(UserModel.watches)).order_by(UserModel.id)
            )
            return [_to_user(row) for row in result.scalars().all()]

    async def count_watches(self) -> tuple[int, int]:
        """Return (total, active) watch counts."""
        async with self._session() as db:
            total = (await db.execute(select(func.count()).select_from(WatchModel))).scalar_one()
            active = (
                await db.execute(
                    select(func.count()).select_from(WatchModel).where(WatchModel.active.is_(True))
                )
            ).scalar_one()
            return total, active

    async def create_watch(
        self,
        owner_id: int,
        url: str,
        name: Optional[str] = None,
        banned_keywords: Optional[list[str]] = None,
    ) -> Watch:
        """
        Create a watch for a user.

        Raises:
            UserNotFound: If the owner does not exist
            WatchLimitReached: If a non-admin owner is at their limit
        """
        async with self._session() as db:
            result = await db.execute(
                select(UserModel)
                .options(selectinload(UserModel.watches))
                .where(UserModel.id == owner_id)
            )
            owner = result.scalar_one_or_none()
            if owner is None:
                raise UserNotFound(f"User {owner_id} not found")
            if len(owner.watches) >= owner.max_watches and not owner.is_admin:
                raise WatchLimitReached(
                    f"User {owner_id} already has {len(owner.watches)} watches"
                )

            row = WatchModel(
                url=url,
                name=name or f"Watch {len(owner.watches) + 1}",
                banned_keywords=list(banned_keywords or []),
            )
            owner.watches.append(row)
            await db.commit()
            logger.info(f"Created watch {row.id} for user {owner_id}")
            return _to_watch(row)

    async def list_user_watches(self, owner_id: int) -> list[Watch]:
        async with self._session() as db:
            result = await db.execute(
                select(WatchModel).where(WatchModel.owner_id == owner_id).order_by(WatchModel.id)
            )
            return [_to_watch(row) for row in result.scalars().all()]

    async def delete_watch(self, watch_id: int) -> bool:
        """Delete a watch; it disappears from its owner's watch list with it."""
        async with self._session() as db:
            row = await db.get(WatchModel, watch_id)
            if row is None:
                return False
            await db.delete(row)
            await db.commit()
            logger.info(f"Deleted watch {watch_id}")
            return True

    async def get_item(self, item_id: str) -> Optional[Item]:
        async with self._session() as db:
            result = await db.execute(select(ItemModel).where(ItemModel.item_id == item_id))
            row = result.scalar_one_or_none()
            return _to_item(row) if row else None
