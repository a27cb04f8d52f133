"""Proxy pool for rotating egress endpoints."""

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import httpx

from listing_watch.config import settings
from listing_watch.errors import NoProxiesAvailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProxyInfo:
    """Proxy information for use in outbound requests."""

    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def url(self) -> str:
        """Get proxy URL for httpx."""
        if self.username and self.password:
            return f"http://{self.username}:{self.password}@{self.host}:{self.port}"
        return f"http://{self.host}:{self.port}"

    @classmethod
    def from_line(cls, line: str) -> "ProxyInfo":
        """Parse an ``address:port:username:password`` record."""
        parts = line.strip().split(":")
        if len(parts) not in (2, 4):
            raise ValueError(f"Expected address:port[:username:password], got {line!r}")
        host, port = parts[0], int(parts[1])
        username, password = (parts[2], parts[3]) if len(parts) == 4 else (None, None)
        return cls(host=host, port=port, username=username, password=password)


class ProxyPool:
    """
    Round-robin pool of egress proxies.

    The pool is filled once at start-up from a remote list endpoint or a
    static file and only replaced wholesale afterwards. There is no weighting
    and no health tracking: ``next()`` walks the list and wraps around.
    """

    def __init__(
        self,
        proxies: Optional[Iterable[ProxyInfo]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._proxies: list[ProxyInfo] = list(proxies or [])
        self._current_index: int = 0
        self._lock = threading.Lock()
        self._transport = transport

    async def initialize(
        self,
        use_remote: Optional[bool] = None,
        proxy_file: Optional[str | Path] = None,
    ) -> int:
        """
        Populate the pool from the configured source.

        Args:
            use_remote: Load from the remote list endpoint (defaults to settings)
            proxy_file: Static list path (defaults to settings)

        Returns:
            Number of proxies loaded

        Raises:
            NoProxiesAvailable: If the source yielded no proxies
        """
        if use_remote is None:
            use_remote = settings.use_remote_proxies

        if use_remote:
            try:
                proxies = await self.fetch_remote_proxies()
            except httpx.HTTPError as e:
                logger.error(f"Failed to fetch proxies from remote list: {e}")
                proxies = []
        else:
            proxies = self.load_proxies_from_file(proxy_file or settings.proxy_file)

        self.replace(proxies)

        if not proxies:
            raise NoProxiesAvailable("proxy source returned no proxies")

        logger.info(f"Loaded {len(proxies)} proxies")
        return len(proxies)

    async def fetch_remote_proxies(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> list[ProxyInfo]:
        """Fetch every page of the remote proxy list."""
        url: Optional[str] = api_url or settings.proxy_api_url
        headers = {"Authorization": f"Token {api_key or settings.proxy_api_key}"}
        params: Optional[dict] = {"mode": "direct", "page_size": 100}
        proxies: list[ProxyInfo] = []

        async with httpx.AsyncClient(
            timeout=settings.request_timeout_seconds,
            transport=self._transport,
        ) as client:
            while url:
                response = await client.get(url, headers=headers, params=params)
                response.raise_for_status()
                payload = response.json()

                for entry in payload.get("results") or []:
                    proxies.append(
                        ProxyInfo(
                            host=entry["proxy_address"],
                            port=int(entry["port"]),
                            username=entry.get("username"),
                            password=entry.get("password"),
                        )
                    )

                # The next link already carries the query string
                url = payload.get("next")
                params = None

        return proxies

    def load_proxies_from_file(self, path: str | Path) -> list[ProxyInfo]:
        """Read ``address:port:username:password`` lines from a file."""
        path = Path(path)
        if not path.exists():
            logger.error(f"Proxy file {path} not found")
            return []

        proxies = []
        for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                proxies.append(ProxyInfo.from_line(line))
            except ValueError as e:
                logger.warning(f"Skipping malformed proxy on line {lineno} of {path}: {e}")
        return proxies

    def replace(self, proxies: Iterable[ProxyInfo]) -> None:
        """Swap the whole pool and reset the rotation cursor."""
        with self._lock:
            self._proxies = list(proxies)
            self._current_index = 0

    def next(self) -> Optional[ProxyInfo]:
        """
        Get next proxy in rotation.

        Returns:
            ProxyInfo, or None when the pool is empty (send directly)
        """
        with self._lock:
            if not self._proxies:
                return None
            proxy = self._proxies[self._current_index]
            self._current_index = (self._current_index + 1) % len(self._proxies)
            return proxy

    @property
    def proxy_count(self) -> int:
        return len(self._proxies)

    def __len__(self) -> int:
        return len(self._proxies)
