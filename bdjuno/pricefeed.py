"""Module storing configured tokens and keeping their market prices up to date."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Mapping, Sequence

import yaml

from bdjuno.coingecko import get_tokens_prices
from bdjuno.types import Token, TokenPrice, TokenUnit
from bdjuno.utils import Scheduler, watch_method

_log = logging.getLogger(__name__)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_PRICE_INTERVAL = timedelta(minutes=2)
_HISTORY_INTERVAL = timedelta(hours=1)


@dataclass(frozen=True)
class PricefeedConfig:
    """The configuration of the price feed module."""

    tokens: list[Token] = field(default_factory=list)


def _parse_unit(data: Mapping[str, Any]) -> TokenUnit:
    return TokenUnit(
        denom=str(data.get("denom") or ""),
        exponent=int(data.get("exponent") or 0),
        aliases=[str(alias) for alias in data.get("aliases") or []],
        price_id=str(data.get("price_id") or ""),
    )


def _parse_token(data: Mapping[str, Any]) -> Token:
    return Token(
        name=str(data.get("name") or ""),
        units=[_parse_unit(unit) for unit in data.get("units") or []],
    )


def parse_config(data: bytes | str) -> PricefeedConfig | None:
    """Read the ``pricefeed`` section of a YAML configuration, or None if absent."""
    try:
        document = yaml.safe_load(data)
    except yaml.YAMLError as err:
        raise ValueError(f"invalid pricefeed configuration: {err}") from err
    if document is None:
        return None
    if not isinstance(document, Mapping):
        raise ValueError("invalid pricefeed configuration: not a mapping")
    section = document.get("pricefeed")
    if section is None:
        return None
    if not isinstance(section, Mapping):
        raise ValueError("invalid pricefeed configuration: section is not a mapping")
    try:
        return PricefeedConfig(tokens=[_parse_token(token) for token in section.get("tokens") or []])
    except (AttributeError, TypeError, ValueError) as err:
        raise ValueError(f"invalid pricefeed configuration: {err}") from err


class PricefeedModule:
    """Stores the configured tokens and periodically refreshes their prices."""

    def __init__(
        self,
        config_data: bytes | str,
        db: Any,
        fetch_prices: Callable[[Sequence[str]], list[TokenPrice]] = get_tokens_prices,
    ) -> None:
        self.config = parse_config(config_data)
        self.db = db
        self._fetch_prices = fetch_prices

    def name(self) -> str:
        return "pricefeed"

    def run_additional_operations(self) -> None:
        """Check the configuration and store the configured tokens."""
        if self.config is None:
            raise ValueError("pricefeed config is not set but module is enabled")
        self._store_tokens(self.config.tokens)

    def _store_tokens(self, tokens: Iterable[Token]) -> None:
        _log.debug("storing tokens")
        prices: list[TokenPrice] = []
        for token in tokens:
            try:
                self.db.save_token(token)
            except Exception as err:
                raise RuntimeError(f"error while saving token: {err}") from err
            prices.extend(
                TokenPrice(unit.denom, 0, 0, _ZERO_TIME) for unit in token.units if unit.price_id
            )
        try:
            self.db.save_tokens_prices(prices)
        except Exception as err:
            raise RuntimeError(f"error while storing token prices: {err}") from err

    def register_periodic_operations(self, scheduler: Scheduler) -> None:
        """Refresh prices every two minutes and the price history every hour."""
        _log.debug("setting up periodic tasks")
        scheduler.every(_PRICE_INTERVAL, lambda: watch_method(self.update_price))
        scheduler.every(_HISTORY_INTERVAL, lambda: watch_method(self.update_prices_history))

    def _get_token_prices(self) -> list[TokenPrice]:
        try:
            ids = list(self.db.get_tokens_price_id())
        except Exception as err:
            raise RuntimeError(f"error while getting tokens price id: {err}") from err
        if not ids:
            _log.debug("no traded tokens price id found")
            return []
        try:
            return list(self._fetch_prices(ids))
        except Exception as err:
            raise RuntimeError(f"error while getting tokens prices: {err}") from err

    def update_price(self) -> None:
        """Fetch the latest token prices and store them."""
        _log.debug("updating token price and market cap")
        prices = self._get_token_prices()
        try:
            self.db.save_tokens_prices(prices)
        except Exception as err:
            raise RuntimeError(f"error while saving token prices: {err}") from err

    def update_prices_history(self) -> None:
        """Fetch the latest token prices and append them to the price history.

        All prices get the same timestamp, so that an unchanged price is still
        recorded as a new history entry.
        """
        _log.debug("updating token price and market cap history")
        timestamp = datetime.now(timezone.utc)
        prices = [dataclasses.replace(price, timestamp=timestamp) for price in self._get_token_prices()]
        try:
            self.db.save_token_prices_history(prices)
        except Exception as err:
            raise RuntimeError(f"error while saving token prices history: {err}") from err