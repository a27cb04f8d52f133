"""Tests for errors, domain records, configuration and logging setup."""

import json
import logging

from listing_watch.config import Settings
from listing_watch.domain import ItemSummary
from listing_watch.errors import ErrorKind, MarketplaceError, NoProxiesAvailable, RepositoryUnavailable, Result
from listing_watch.logging_config import get_logger, setup_logging


class TestResult:

    def test_success(self):
        result = Result.success([1, 2])

        assert result.ok
        assert result.value == [1, 2]
        assert result.kind is None

    def test_failure_exposes_kind(self):
        result = Result.failure(MarketplaceError("HTTP 429", ErrorKind.RATE_LIMITED))

        assert not result.ok
        assert result.kind is ErrorKind.RATE_LIMITED
        assert str(result.error) == "rate_limited: HTTP 429"


def test_error_kinds_fixed_per_class():
    assert RepositoryUnavailable("down").kind is ErrorKind.REPOSITORY_UNAVAILABLE
    assert NoProxiesAvailable().kind is ErrorKind.NO_PROXIES_AVAILABLE
    assert str(NoProxiesAvailable()) == "no_proxies_available"


def test_summary_from_payload():
    summary = ItemSummary.from_payload(
        {"id": 99, "title": "Boots", "user": {"feedback_reputation": "0.5"}}
    )

    assert summary.id == "99"
    assert summary.description == ""
    assert summary.seller_reputation == 0.5


def test_marketplace_url_derived_from_extension():
    assert Settings(marketplace_domain_extension="de").resolved_marketplace_url == "https://www.vinted.de"
    assert (
        Settings(marketplace_base_url="http://localhost:8080/").resolved_marketplace_url
        == "http://localhost:8080"
    )


def test_setup_logging_writes_json(tmp_path):
    root = setup_logging(base_dir=tmp_path)
    try:
        get_logger("listing_watch.test", watch_id=12).error("watch failed")
        for handler in root.handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "app.log").read_text(encoding="utf-8").splitlines()
        record = json.loads(lines[-1])
        assert record["message"] == "watch failed"
        assert record["level"] == "ERROR"
        assert record["watch_id"] == 12
        assert (tmp_path / "logs" / "error.log").read_text(encoding="utf-8").strip()
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
        logging.getLogger().setLevel(logging.WARNING)
