"""Outbound HTTP requests with proxy rotation and a uniform response envelope.

Network failures, timeouts and non-2xx statuses are all folded into
``ResponseEnvelope(success=False, ...)`` instead of being raised, so callers
have a single branch to handle.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from listing_watch.config import settings
from listing_watch.ingest.proxy_manager import ProxyInfo, ProxyPool
from listing_watch.ingest.user_agent_pool import UserAgentPool

logger = logging.getLogger(__name__)

_default_user_agents: Optional[UserAgentPool] = None


def _user_agents() -> UserAgentPool:
    global _default_user_agents
    if _default_user_agents is None:
        _default_user_agents = UserAgentPool(pool_size=settings.user_agent_pool_size)
    return _default_user_agents


def default_headers(user_agents: Optional[UserAgentPool] = None) -> dict[str, str]:
    """Fixed JSON headers plus a freshly drawn user agent."""
    pool = user_agents or _user_agents()
    return {
        "User-Agent": pool.get_random(),
        "Accept": "application/json",
        "Accept-Language": "en-US,en;q=0.9",
    }


@dataclass(frozen=True)
class ResponseEnvelope:
    """Normalized outcome of one request."""

    success: bool
    data: Any = None
    error: Optional[str] = None
    status_code: Optional[int] = None
    headers: Optional[httpx.Headers] = None


@dataclass
class RequestBuilder:
    """
    Describes one outbound request and sends it.

    Usage:
        envelope = await (
            RequestBuilder.get(url)
            .with_next_proxy(pool)
            .with_cookie(cookie)
            .send()
        )
    """

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=default_headers)
    body: Any = None
    proxy: Optional[ProxyInfo] = None
    timeout: float = field(default_factory=lambda: settings.request_timeout_seconds)
    transport: Optional[httpx.AsyncBaseTransport] = None

    @classmethod
    def get(cls, url: str, **kwargs) -> RequestBuilder:
        return cls("GET", url, **kwargs)

    @classmethod
    def post(cls, url: str, **kwargs) -> RequestBuilder:
        return cls("POST", url, **kwargs)

    def with_next_proxy(self, pool: Optional[ProxyPool]) -> RequestBuilder:
        """Take the next proxy from the pool; an empty pool means a direct request."""
        self.proxy = pool.next() if pool is not None else None
        return self

    def with_proxy(self, proxy: Optional[ProxyInfo]) -> RequestBuilder:
        self.proxy = proxy
        return self

    def with_cookie(self, cookie: str) -> RequestBuilder:
        self.headers["Cookie"] = cookie
        return self

    def with_header(self, name: str, value: str) -> RequestBuilder:
        self.headers[name] = value
        return self

    def with_json(self, body: Any) -> RequestBuilder:
        self.body = body
        return self

    def with_timeout(self, seconds: float) -> RequestBuilder:
        self.timeout = seconds
        return self

    def with_transport(self, transport: Optional[httpx.AsyncBaseTransport]) -> RequestBuilder:
        self.transport = transport
        return self

    def client_options(self) -> dict[str, Any]:
        """Keyword arguments for the httpx client carrying this request."""
        options: dict[str, Any] = {
            "timeout": httpx.Timeout(self.timeout),
            "follow_redirects": True,
        }
        if self.proxy is not None:
            # Credentials travel inside the proxy URL
            options["proxy"] = self.proxy.url
        if self.transport is not None:
            options["transport"] = self.transport
        return options

    async def send(self) -> ResponseEnvelope:
        """Execute the request and return a normalized envelope."""
        try:
            async with httpx.AsyncClient(**self.client_options()) as client:
                response = await client.request(
                    self.method,
                    self.url,
                    headers=self.headers,
                    json=self.body,
                )
        except httpx.TimeoutException as e:
            logger.warning(f"Request to {self.url} timed out after {self.timeout}s")
            return ResponseEnvelope(success=False, error=f"timeout: {e}")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning(f"Request to {self.url} failed: {type(e).__name__}: {e}")
            return ResponseEnvelope(success=False, error=f"{type(e).__name__}: {e}")

        if not response.is_success:
            logger.warning(f"Request to {self.url} returned HTTP {response.status_code}")
            return ResponseEnvelope(
                success=False,
                error=f"HTTP {response.status_code}",
                status_code=response.status_code,
                headers=response.headers,
            )

        content_type = response.headers.get("content-type", "")
        if "json" in content_type:
            try:
                data = response.json()
            except ValueError as e:
                return ResponseEnvelope(
                    success=False,
                    error=f"invalid JSON body: {e}",
                    status_code=response.status_code,
                    headers=response.headers,
                )
        else:
            data = response.text

        return ResponseEnvelope(
            success=True,
            data=data,
            status_code=response.status_code,
            headers=response.headers,
        )
