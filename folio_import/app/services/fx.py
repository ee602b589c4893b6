"""
FX (Foreign Exchange) service.

Resolves the rate of the account's reference currency against USD for a
trade date. Rates come from the market data quotes (``EUR=X`` style
symbols) and are cached under ``CURRENCY:YYYY-MM-DD`` in a TTL cache owned
by the service instance.

When the quote cannot be obtained (API down, circuit open, symbol missing)
a static approximate rate is used instead of failing the row.
"""
from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional

from cachetools import TTLCache

from folio_import.app.logging_config import get_logger
from folio_import.app.services.market_data import MarketDataClient, MarketDataError

logger = get_logger(__name__)

USD = "USD"

# Units of currency per 1 USD, used when no live quote is available
FALLBACK_RATES: Dict[str, Decimal] = {
    "COP": Decimal("4200"),
    "EUR": Decimal("0.92"),
    "GBP": Decimal("0.79"),
    "MXN": Decimal("17.5"),
    "BRL": Decimal("5.0"),
    }


class FXServiceError(Exception):
    """Base exception for FX service errors."""
    pass


class RateNotFoundError(FXServiceError):
    """Raised when the market data API has no quote for a currency."""
    pass


def fallback_rate(currency: str) -> Decimal:
    return FALLBACK_RATES.get(currency.upper(), Decimal("1"))


class FXRateService:
    """
    Cached FX lookups for one pipeline context.

    Args:
        client: Market data client providing ``CCY=X`` quotes
        cache: TTL cache for ``CCY:date`` -> rate
        concurrency: Max concurrent lookups during prefetch
    """

    def __init__(self, client: MarketDataClient, cache: TTLCache, concurrency: int = 5):
        self.client = client
        self.cache = cache
        self.concurrency = max(1, concurrency)

    @staticmethod
    def cache_key(currency: str, on_date: date) -> str:
        return f"{currency.upper()}:{on_date.isoformat()}"

    async def get_rate(self, currency: Optional[str], on_date: date) -> Decimal:
        """
        Units of ``currency`` per 1 USD on ``on_date``.

        USD (or no currency) short-circuits to 1. Never raises for a missing
        quote: the static fallback table is used instead.
        """
        if not currency or currency.upper() == USD:
            return Decimal("1")

        key = self.cache_key(currency, on_date)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        try:
            rate = await self.fetch_rate(currency)
        except (RateNotFoundError, MarketDataError) as e:
            rate = fallback_rate(currency)
            logger.warning("Using fallback FX rate", currency=currency, date=on_date.isoformat(), rate=str(rate), reason=str(e))

        self.cache[key] = rate
        return rate

    async def fetch_rate(self, currency: str) -> Decimal:
        """
        Live rate from the ``CCY=X`` quote.

        Raises:
            RateNotFoundError: If the quote is missing or carries no price
            MarketDataError: If the lookup itself fails
        """
        symbol = f"{currency.upper()}=X"
        quotes = await self.client.get_quotes([symbol])

        for quote in quotes:
            if quote.symbol.upper() == symbol:
                price = quote.last_price
                if price is not None and price > 0:
                    return price
                break

        raise RateNotFoundError(f"No FX quote available for {symbol}")

    async def prefetch(self, currency: Optional[str], dates: Iterable[date]) -> Dict[date, Decimal]:
        """
        Warm the cache for every unique date, running lookups concurrently.

        Returns:
            Mapping date -> rate for the requested dates
        """
        unique_dates = sorted(set(dates))
        if not currency or currency.upper() == USD:
            return {d: Decimal("1") for d in unique_dates}

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(on_date: date) -> Decimal:
            async with semaphore:
                return await self.get_rate(currency, on_date)

        logger.debug("Prefetching FX rates", currency=currency, dates=len(unique_dates))
        rates = await asyncio.gather(*(_bounded(d) for d in unique_dates))
        return dict(zip(unique_dates, rates))
