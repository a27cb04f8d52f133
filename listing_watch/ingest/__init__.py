"""Outbound marketplace access: requests, proxies, caching and the client."""
