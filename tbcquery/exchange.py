"""Current TBC exchange rate from a market ticker."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

from tbcquery.core import QueryError

_LOG = logging.getLogger(__name__)

DEFAULT_SYMBOL = "TBCUSDT"
REQUEST_TIMEOUT = 5.0
CURRENCY = "USD"


@dataclass(frozen=True)
class ExchangeRate:
    """Rate of TBC in US dollars at a moment, with its 24-hour change."""

    currency: str
    rate: float
    time: int
    change_percent: str = ""


class TickerSource(Protocol):
    """Market data client; raises QueryError or OSError on failure."""

    def ticker_price(self, symbol: str, timeout: float) -> str:
        """Return the latest price of ``symbol`` as text."""
        ...

    def ticker_24h_change(self, symbol: str, timeout: float) -> str:
        """Return the 24-hour price change percentage of ``symbol``."""
        ...


def get_exchange_rate(client: TickerSource, symbol: str = DEFAULT_SYMBOL) -> ExchangeRate:
    """Return the current rate; failures give a zero rate rather than an error."""
    try:
        price_text = client.ticker_price(symbol, REQUEST_TIMEOUT)
    except (QueryError, OSError) as exc:
        _LOG.error("failed to fetch price of %s: %s", symbol, exc)
        return ExchangeRate(CURRENCY, 0.0, int(time.time()))

    try:
        rate = float(price_text)
    except (TypeError, ValueError) as exc:
        _LOG.error("cannot parse price %r: %s", price_text, exc)
        rate = 0.0

    try:
        change_percent = client.ticker_24h_change(symbol, REQUEST_TIMEOUT)
    except (QueryError, OSError) as exc:
        _LOG.error("failed to fetch 24h ticker of %s: %s", symbol, exc)
        change_percent = ""

    result = ExchangeRate(CURRENCY, rate, int(time.time()), change_percent)
    _LOG.info("exchange rate %s %s, change %s", result.currency, result.rate, result.change_percent)
    return result