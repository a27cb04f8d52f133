"""Domain records shared by the client, repository and orchestrator."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


@dataclass
class Seller:
    """Flattened seller block of an item."""

    id: str
    username: str
    reputation: Optional[float] = None


@dataclass
class ItemSummary:
    """One entry of a catalog search result."""

    id: str
    title: str
    description: str = ""
    seller_reputation: Optional[float] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ItemSummary":
        user = payload.get("user") or {}
        reputation = user.get("feedback_reputation")
        return cls(
            id=str(payload["id"]),
            title=payload.get("title") or "",
            description=payload.get("description") or "",
            seller_reputation=float(reputation) if reputation is not None else None,
            raw=payload,
        )


@dataclass
class Item:
    """Canonical item record; immutable once persisted."""

    item_id: str
    title: str
    url: str
    price: Optional[Decimal] = None
    currency: str = ""
    description: str = ""
    size: str = ""
    brand: str = ""
    image_url: str = ""
    seller: Optional[Seller] = None
    created_at: Optional[datetime] = None


@dataclass
class Watch:
    """A user-owned search query polled by the orchestrator."""

    id: int
    owner_id: int
    url: str
    name: str = ""
    active: bool = True
    banned_keywords: list[str] = field(default_factory=list)
    last_checked: Optional[datetime] = None
    last_item: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class User:
    """Owner of watches and recipient of notifications."""

    id: int
    recipient_id: str
    username: str = ""
    notifications_enabled: bool = True
    language: str = "en"
    is_admin: bool = False
    max_watches: int = 5
    watch_ids: list[int] = field(default_factory=list)
