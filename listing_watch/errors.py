"""Error taxonomy and the result type returned by the marketplace client."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Enumerated failure kinds callers can branch on."""

    CREDENTIAL_MISSING = "credential_missing"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    ITEMS_UNAVAILABLE = "items_unavailable"
    ITEM_UNAVAILABLE = "item_unavailable"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    REPOSITORY_UNAVAILABLE = "repository_unavailable"
    NO_PROXIES_AVAILABLE = "no_proxies_available"


class ListingWatchError(RuntimeError):
    """Base error carrying an ErrorKind."""

    kind: ErrorKind = ErrorKind.UPSTREAM_UNAVAILABLE

    def __init__(self, message: str = "", kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}" if self.message else self.kind.value


class MarketplaceError(ListingWatchError):
    """Raised (and then folded into a Result) by marketplace operations."""


class RepositoryUnavailable(ListingWatchError):
    """Raised when the watch repository cannot complete a call."""

    kind = ErrorKind.REPOSITORY_UNAVAILABLE


class NoProxiesAvailable(ListingWatchError):
    """Raised when proxy initialization produced an empty pool."""

    kind = ErrorKind.NO_PROXIES_AVAILABLE


class NotificationError(RuntimeError):
    """Raised when a notifier fails to deliver a message."""


@dataclass(frozen=True)
class Result(Generic[T]):
    """Success-or-failure union returned by every marketplace operation."""

    value: Optional[T] = None
    error: Optional[MarketplaceError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: MarketplaceError) -> "Result[T]":
        return cls(error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None
