"""CoinGecko USD price feed for vault snapshot valuation."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import httpx

from shardledger.config import settings
from shardledger.connectors.verification import result_from_http_error
from shardledger.errors import VerificationUnavailable

logger = logging.getLogger(__name__)

PROVIDER = "coingecko"

COINGECKO_IDS = {
    "ILV": "illuvium",
    "ETH": "ethereum",
    "WETH": "weth",
    "BTC": "bitcoin",
    "WBTC": "wrapped-bitcoin",
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
}


@dataclass
class PriceQuote:
    asset: str
    usd_price: float
    last_updated_at: datetime

    def age_minutes(self, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.last_updated_at).total_seconds() / 60

    def is_stale(self, max_age_minutes: float | None = None, now: datetime | None = None) -> bool:
        limit = settings.price_max_age_minutes if max_age_minutes is None else max_age_minutes
        return self.age_minutes(now) > limit


def _headers() -> dict[str, str]:
    if settings.coingecko_api_key:
        return {"x-cg-demo-api-key": settings.coingecko_api_key}
    return {}


def fetch_prices(assets: list[str]) -> dict[str, PriceQuote]:
    """Current USD quotes for the given asset symbols.

    Symbols without a CoinGecko mapping are skipped. Raises
    VerificationUnavailable when the feed cannot be reached.
    """
    ids = {COINGECKO_IDS[a.upper()]: a.upper() for a in assets if a.upper() in COINGECKO_IDS}
    if not ids:
        return {}

    try:
        resp = httpx.get(
            f"{settings.coingecko_api_url}/simple/price",
            params={
                "ids": ",".join(sorted(ids)),
                "vs_currencies": "usd",
                "include_last_updated_at": "true",
            },
            headers=_headers(),
            timeout=settings.verifier_timeout_sec,
        )
        resp.raise_for_status()
    except httpx.HTTPError as e:
        result = result_from_http_error(PROVIDER, e)
        raise VerificationUnavailable(PROVIDER, result.reason) from e

    quotes: dict[str, PriceQuote] = {}
    for cg_id, data in resp.json().items():
        symbol = ids.get(cg_id)
        if symbol is None or "usd" not in data:
            continue
        updated = data.get("last_updated_at")
        quotes[symbol] = PriceQuote(
            asset=symbol,
            usd_price=float(data["usd"]),
            last_updated_at=(
                datetime.fromtimestamp(updated, tz=timezone.utc)
                if updated
                else datetime.now(timezone.utc)
            ),
        )
    logger.info("Fetched %d/%d prices from CoinGecko", len(quotes), len(ids))
    return quotes


def get_price(asset: str) -> PriceQuote | None:
    return fetch_prices([asset]).get(asset.upper())
