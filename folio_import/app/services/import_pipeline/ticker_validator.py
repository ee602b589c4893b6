"""
Ticker validation against the market data API.

The unique normalized tickers of a sample are checked with batched quote
lookups (<= 100 symbols per call). Each ticker ends in exactly one bucket:

- valid: a quote with the same symbol (case-insensitive) came back
- invalid: the lookup answered but the symbol is absent; a suggestion is
  looked up (typo table first, then a 3-letter prefix search)
- unverified: the lookup itself failed or timed out, nothing is known

Batches and suggestion lookups run as concurrent tasks bounded by a
semaphore; every batch is joined before suggestions start.
"""
from __future__ import annotations

import asyncio
import re
from typing import Dict, Iterable, List, Optional, Sequence

from folio_import.app.db.models import AssetType
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.analysis import TickerValidationEntry, TickerValidationSummary
from folio_import.app.schemas.market_data import MarketQuote
from folio_import.app.services.import_pipeline.patterns import QUOTE_TYPE_MAPPING, TYPO_CORRECTIONS
from folio_import.app.services.market_data import MarketDataClient

logger = get_logger(__name__)

MAX_TICKERS_PER_REQUEST = 100
VALIDATION_TIMEOUT_SECONDS = 15.0
SUGGESTION_PREFIX_LENGTH = 3


def normalize_ticker(ticker) -> str:
    """
    Canonical form of a ticker cell: trimmed, uppercase, no whitespace, no
    leading '$' and no trailing '.'.

    Idempotent: normalize_ticker(normalize_ticker(x)) == normalize_ticker(x).
    """
    if ticker is None:
        return ""
    text = re.sub(r"\s+", "", str(ticker)).upper()
    text = re.sub(r"^\$+", "", text)
    return re.sub(r"\.+$", "", text)


def unique_tickers(tickers: Iterable) -> List[str]:
    """Normalized, non-empty, de-duplicated, in first-seen order."""
    seen: Dict[str, None] = {}
    for ticker in tickers:
        normalized = normalize_ticker(ticker)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


def detect_asset_type(quote_type: Optional[str], type_disp: Optional[str] = None) -> AssetType:
    """
    Asset class from the API classification.

    Exact quote types (EQUITY, ETF, MUTUALFUND, CRYPTOCURRENCY, CURRENCY)
    come from QUOTE_TYPE_MAPPING; anything else is classified by substring
    ('etf'/'fund' -> etf, 'crypto' -> crypto), defaulting to stock.
    """
    raw = (quote_type or type_disp or "").strip()
    mapped = QUOTE_TYPE_MAPPING.get(raw.upper())
    if mapped is not None:
        return mapped

    lowered = raw.lower()
    if "etf" in lowered or "fund" in lowered:
        return AssetType.ETF
    if "crypto" in lowered:
        return AssetType.CRYPTO
    return AssetType.STOCK


def _batches(items: Sequence[str], size: int) -> List[List[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class TickerValidator:
    """
    Args:
        client: Market data client
        timeout: Seconds allowed per quote batch / suggestion search
        concurrency: Max concurrent lookups
        batch_size: Max symbols per quote call
    """

    def __init__(
        self,
        client: MarketDataClient,
        timeout: float = VALIDATION_TIMEOUT_SECONDS,
        concurrency: int = 5,
        batch_size: int = MAX_TICKERS_PER_REQUEST,
        ):
        self.client = client
        self.timeout = timeout
        self.concurrency = max(1, concurrency)
        self.batch_size = batch_size

    async def validate(self, tickers: Iterable) -> TickerValidationSummary:
        """Validate every unique ticker of ``tickers`` (raw cells, duplicates allowed)."""
        symbols = unique_tickers(tickers)
        summary = TickerValidationSummary(total=len(symbols))
        if not symbols:
            return summary

        semaphore = asyncio.Semaphore(self.concurrency)
        batches = _batches(symbols, self.batch_size)
        logger.info("Validating tickers", tickers=len(symbols), batches=len(batches))

        outcomes = await asyncio.gather(*(self._validate_batch(batch, semaphore) for batch in batches))

        invalid: List[str] = []
        for batch, (quotes, error) in zip(batches, outcomes):
            if error is not None:
                for ticker in batch:
                    summary.unverified += 1
                    summary.unverified_tickers.append(ticker)
                    summary.details[ticker] = TickerValidationEntry(
                        original_ticker=ticker,
                        is_unverified=True,
                        error=f"Could not verify: {error}",
                        )
                continue

            by_symbol = {quote.symbol.upper(): quote for quote in quotes}
            for ticker in batch:
                quote = by_symbol.get(ticker.upper())
                if quote is not None:
                    summary.valid += 1
                    summary.details[ticker] = self._valid_entry(ticker, quote)
                else:
                    summary.invalid += 1
                    summary.invalid_tickers.append(ticker)
                    summary.details[ticker] = TickerValidationEntry(original_ticker=ticker, error="Ticker not found")
                    invalid.append(ticker)

        if invalid:
            suggestions = await asyncio.gather(*(self._bounded_suggestion(t, semaphore) for t in invalid))
            for ticker, suggestion in zip(invalid, suggestions):
                if suggestion:
                    summary.suggestions[ticker] = suggestion
                    summary.details[ticker] = summary.details[ticker].model_copy(update={"suggestion": suggestion})

        logger.info(
            "Ticker validation finished",
            valid=summary.valid,
            invalid=summary.invalid,
            unverified=summary.unverified,
            )
        return summary

    async def _validate_batch(self, batch: List[str], semaphore: asyncio.Semaphore):
        """(quotes, None) on success, ([], error) when the lookup failed."""
        async with semaphore:
            try:
                quotes = await asyncio.wait_for(self.client.get_quotes(batch), timeout=self.timeout)
                return quotes, None
            except asyncio.TimeoutError:
                logger.warning("Ticker batch validation timed out", tickers=len(batch), timeout=self.timeout)
                return [], "Timeout"
            except Exception as e:
                logger.warning("Ticker batch validation failed", tickers=len(batch), error=str(e))
                return [], str(e)

    async def _bounded_suggestion(self, ticker: str, semaphore: asyncio.Semaphore) -> Optional[str]:
        async with semaphore:
            return await self.find_suggestion(ticker)

    async def find_suggestion(self, ticker: str) -> Optional[str]:
        """
        Best-effort correction for an unknown ticker.

        Lookup failures are logged and yield no suggestion.
        """
        if ticker in TYPO_CORRECTIONS:
            return TYPO_CORRECTIONS[ticker]

        if len(ticker) < SUGGESTION_PREFIX_LENGTH:
            return None

        prefix = ticker[:SUGGESTION_PREFIX_LENGTH]
        try:
            candidates = await asyncio.wait_for(self.client.search(prefix), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Suggestion search timed out", ticker=ticker, prefix=prefix)
            return None
        except Exception as e:
            logger.warning("Suggestion search failed", ticker=ticker, prefix=prefix, error=str(e))
            return None

        for candidate in candidates:
            symbol = candidate.symbol.upper()
            if symbol.startswith(prefix) and symbol != ticker:
                return symbol
        return None

    @staticmethod
    def _valid_entry(ticker: str, quote: MarketQuote) -> TickerValidationEntry:
        return TickerValidationEntry(
            original_ticker=ticker,
            is_valid=True,
            normalized_ticker=quote.symbol,
            asset_type=detect_asset_type(quote.quote_type),
            market=quote.exchange,
            currency=quote.currency or "USD",
            company_name=quote.display_name,
            sector=quote.sector,
            industry=quote.industry,
            logo=quote.logo,
            )
