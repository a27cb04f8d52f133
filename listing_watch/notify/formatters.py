"""Message formatting for new-item notifications."""

from decimal import Decimal
from typing import Optional

from listing_watch.domain import Item, Watch

DESCRIPTION_PREVIEW_LENGTH = 100


def format_price(price: Optional[Decimal], currency: str) -> str:
    if price is None:
        return "N/A"
    return f"{price:.2f} {currency}".strip()


def truncate(text: str, length: int = DESCRIPTION_PREVIEW_LENGTH) -> str:
    if not text:
        return "N/A"
    if len(text) <= length:
        return text
    return text[:length] + "..."


def format_item_message(item: Item, watch: Watch) -> str:
    """
    Format a new item as a Telegram Markdown message.

    Args:
        item: Canonical item record
        watch: Watch that surfaced the item

    Returns:
        Message text
    """
    seller_name = item.seller.username if item.seller else "N/A"
    seller_rating = item.seller.reputation if item.seller and item.seller.reputation else 0

    return (
        "🔔 *New Item Found!*\n\n"
        f"*{item.title}*\n\n"
        f"💰 Price: {format_price(item.price, item.currency)}\n"
        f"👕 Size: {item.size or 'N/A'}\n"
        f"🏷️ Brand: {item.brand or 'N/A'}\n"
        f"👤 Seller: {seller_name} (⭐ {seller_rating})\n\n"
        f"📝 Description: {truncate(item.description)}\n\n"
        f"🔍 Watch: {watch.name or watch.url}\n\n"
        f"[View listing]({item.url})"
    )
