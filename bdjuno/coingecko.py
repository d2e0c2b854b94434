"""Client for the CoinGecko market data APIs."""

from __future__ import annotations

import json
import math
import re
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping

from bdjuno.types import TokenPrice

API_BASE_URL = "https://api.coingecko.com/api/v3"
_TIMEOUT_SECONDS = 30

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)


def _parse_time(value: str | None) -> datetime:
    if not value:
        return _ZERO_TIME
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid timestamp: {value!r}")
    date, clock, fraction, offset = match.groups()
    micros = (fraction or "")[:6].ljust(6, "0")
    offset = "+00:00" if offset in ("Z", "z") else offset
    return datetime.fromisoformat(f"{date}T{clock}.{micros}{offset}")


@dataclass(frozen=True)
class CoinInfo:
    """The identity of a single token known to CoinGecko."""

    id: str
    symbol: str
    name: str

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> CoinInfo:
        """Build from one entry of the coins list response."""
        return cls(
            id=data.get("id") or "",
            symbol=data.get("symbol") or "",
            name=data.get("name") or "",
        )


@dataclass(frozen=True)
class MarketTicker:
    """Current market data for a single token."""

    symbol: str
    current_price: float
    market_cap: float
    last_updated: datetime

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> MarketTicker:
        """Build from one entry of the markets response."""
        return cls(
            symbol=data.get("symbol") or "",
            current_price=float(data.get("current_price") or 0.0),
            market_cap=float(data.get("market_cap") or 0.0),
            last_updated=_parse_time(data.get("last_updated")),
        )


def _query_coingecko(endpoint: str) -> Any:
    with urllib.request.urlopen(API_BASE_URL + endpoint, timeout=_TIMEOUT_SECONDS) as response:
        try:
            body = response.read()
        except OSError as err:
            raise OSError(f"error while reading response body: {err}") from err
    try:
        return json.loads(body)
    except ValueError as err:
        raise ValueError(f"error while unmarshaling response body: {err}") from err


def get_coins_list() -> list[CoinInfo]:
    """Fetch the list of all the tokens supported by CoinGecko."""
    return [CoinInfo.from_json(entry) for entry in _query_coingecko("/coins/list")]


def get_tokens_prices(ids: Iterable[str]) -> list[TokenPrice]:
    """Fetch the current prices of the tokens having the given ids."""
    query = f"/coins/markets?vs_currency=usd&ids={','.join(ids)}"
    tickers = [MarketTicker.from_json(entry) for entry in _query_coingecko(query)]
    return convert_coingecko_prices(tickers)


def convert_coingecko_prices(prices: Iterable[MarketTicker]) -> list[TokenPrice]:
    """Turn market tickers into token prices, truncating the market cap."""
    return [
        TokenPrice(
            unit_name=ticker.symbol,
            price=ticker.current_price,
            market_cap=int(math.trunc(ticker.market_cap)),
            timestamp=ticker.last_updated,
        )
        for ticker in prices
    ]