"""Tests for the CoinGecko price feed."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from shardledger.connectors.price_feed import PriceQuote, fetch_prices, get_price
from shardledger.errors import VerificationUnavailable
from tests.helpers import http_response

UPDATED = 1767225600  # 2026-01-01T00:00:00Z


class TestFetchPrices:
    def test_parses_quotes(self, monkeypatch):
        captured = {}

        def fake_get(url, params=None, headers=None, timeout=None):
            captured["ids"] = params["ids"]
            return http_response(
                200,
                {
                    "illuvium": {"usd": 12.5, "last_updated_at": UPDATED},
                    "ethereum": {"usd": 3100, "last_updated_at": UPDATED},
                },
                url,
            )

        monkeypatch.setattr("shardledger.connectors.price_feed.httpx.get", fake_get)
        quotes = fetch_prices(["ilv", "ETH", "PEPE"])
        assert captured["ids"] == "ethereum,illuvium"
        assert quotes["ILV"].usd_price == 12.5
        assert quotes["ETH"].usd_price == 3100.0
        assert quotes["ILV"].last_updated_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert "PEPE" not in quotes

    def test_unmapped_assets_skip_request(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("should not be called")

        monkeypatch.setattr("shardledger.connectors.price_feed.httpx.get", fail)
        assert fetch_prices(["PEPE"]) == {}

    def test_rate_limited(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.price_feed.httpx.get",
            lambda *a, **kw: http_response(429, {"status": {"error_code": 429}}),
        )
        with pytest.raises(VerificationUnavailable, match="HTTP 429"):
            fetch_prices(["ILV"])

    def test_get_price_missing(self, monkeypatch):
        monkeypatch.setattr(
            "shardledger.connectors.price_feed.httpx.get", lambda *a, **kw: http_response(200, {})
        )
        assert get_price("ILV") is None


class TestStaleness:
    def test_fresh_and_stale(self):
        now = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
        quote = PriceQuote("ILV", 12.5, now - timedelta(minutes=30))
        assert quote.age_minutes(now) == 30
        assert not quote.is_stale(now=now)
        assert quote.is_stale(max_age_minutes=15, now=now)

    def test_default_limit_from_settings(self, monkeypatch):
        monkeypatch.setattr("shardledger.connectors.price_feed.settings.price_max_age_minutes", 10)
        now = datetime(2026, 1, 1, 12, tzinfo=timezone.utc)
        assert PriceQuote("ETH", 3000.0, now - timedelta(minutes=11)).is_stale(now=now)
