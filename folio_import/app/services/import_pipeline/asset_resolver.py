"""
Asset resolution (find-or-create).

Maps every unique ticker of an import batch to an asset of the target
account:
- an active asset with the same ticker is reused
- otherwise, when creation is allowed, metadata is fetched from the market
  data API (cached per pipeline context) and a new asset is created with
  zero units; acquisition date and price come from the earliest buy

Failures are reported per ticker and never stop the other tickers.
"""
from __future__ import annotations

from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict

from folio_import.app.db.models import AssetType, TransactionType
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.imports import AssetInfo, AssetResolutionResult, RawTransactionRow
from folio_import.app.services.import_pipeline.enricher import normalize_transaction_type
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository
from folio_import.app.services.import_pipeline.patterns import MARKET_CURRENCY_MAP
from folio_import.app.services.import_pipeline.ticker_validator import detect_asset_type
from folio_import.app.services.market_data import MarketDataClient, MarketDataError
from folio_import.app.utils.datetime_utils import parse_trade_datetime, utcnow
from folio_import.app.utils.decimal_utils import parse_decimal

logger = get_logger(__name__)


class TickerInfo(BaseModel):
    """Market metadata used to create an asset."""
    model_config = ConfigDict(frozen=True)

    asset_type: AssetType
    market: str
    currency: str
    name: str


def infer_currency(market: Optional[str]) -> Optional[str]:
    """Trading currency of a known exchange code, None when unknown."""
    return MARKET_CURRENCY_MAP.get((market or "").strip().upper())


def find_first_buy(rows: Sequence[RawTransactionRow], now: Optional[datetime] = None) -> Optional[RawTransactionRow]:
    """Earliest buy row by trade date (rows with an unreadable date sort last)."""
    buys = [row for row in rows if normalize_transaction_type(row.type) == TransactionType.BUY]
    if not buys:
        return None

    def _sort_key(row: RawTransactionRow):
        parsed = parse_trade_datetime(row.date, now=now)
        return (parsed is None, parsed[0] if parsed else datetime.max)

    return sorted(buys, key=_sort_key)[0]


class AssetResolver:
    """
    Args:
        repository: Ledger repository bound to the request session
        client: Market data client
        ticker_cache: TTL cache for ticker -> TickerInfo (owned by the pipeline context)
    """

    def __init__(self, repository: LedgerRepository, client: MarketDataClient, ticker_cache: TTLCache):
        self.repository = repository
        self.client = client
        self.ticker_cache = ticker_cache

    async def resolve(
        self,
        grouped_rows: Dict[str, List[RawTransactionRow]],
        portfolio_account_id: int,
        user_id: str,
        create_missing: bool,
        ) -> AssetResolutionResult:
        """
        Resolve each normalized ticker of ``grouped_rows``.

        Returns:
            AssetResolutionResult with the ticker -> AssetInfo map, ids of the
            created assets and ticker -> error message
        """
        result = AssetResolutionResult()

        for ticker, rows in grouped_rows.items():
            try:
                info = await self._resolve_one(ticker, rows, portfolio_account_id, user_id, create_missing, result)
            except Exception as e:
                logger.error("Error resolving asset", ticker=ticker, error=str(e), exc_info=True)
                result.errors[ticker] = str(e) or "Unknown error during asset resolution"
                continue
            if info is not None:
                result.asset_map[ticker] = info

        logger.info(
            "Assets resolved",
            resolved=len(result.asset_map),
            created=len(result.created),
            errors=len(result.errors),
            )
        return result

    async def _resolve_one(
        self,
        ticker: str,
        rows: List[RawTransactionRow],
        portfolio_account_id: int,
        user_id: str,
        create_missing: bool,
        result: AssetResolutionResult,
        ) -> Optional[AssetInfo]:
        existing = await self.repository.find_active_asset(ticker, portfolio_account_id)
        if existing is not None:
            logger.debug("Reusing existing asset", ticker=ticker, asset_id=existing.id)
            return AssetInfo(
                id=existing.id,
                ticker=ticker,
                asset_type=existing.asset_type or AssetType.STOCK,
                market=existing.market or "",
                currency=existing.currency or "USD",
                is_new=False,
                )

        if not create_missing:
            result.errors[ticker] = "Asset not found and create_missing_assets is disabled"
            return None

        info = await self.get_ticker_info(ticker)
        if info is None:
            result.errors[ticker] = f"Unable to get market data for ticker: {ticker}"
            return None

        first_buy = find_first_buy(rows)
        acquisition_date: date_type = utcnow().date()
        acquisition_price = Decimal("0")
        if first_buy is not None:
            parsed = parse_trade_datetime(first_buy.date)
            if parsed is not None:
                acquisition_date = parsed[0].date()
            acquisition_price = abs(parse_decimal(first_buy.price) or Decimal("0"))

        asset = await self.repository.create_asset(
            ticker=ticker,
            account_id=portfolio_account_id,
            user_id=user_id,
            asset_type=info.asset_type,
            market=info.market,
            currency=info.currency,
            company=info.name,
            acquisition_date=acquisition_date,
            unit_value=acquisition_price,
            )
        result.created.append(asset.id)
        logger.info("Asset created", ticker=ticker, asset_id=asset.id, asset_type=info.asset_type.value, market=info.market)

        return AssetInfo(
            id=asset.id,
            ticker=ticker,
            asset_type=info.asset_type,
            market=info.market,
            currency=info.currency,
            is_new=True,
            )

    async def get_ticker_info(self, ticker: str) -> Optional[TickerInfo]:
        """
        Metadata of a ticker: symbol search first (exact match, else first
        hit), quotes as fallback. Only successful lookups are cached.
        """
        cached = self.ticker_cache.get(ticker)
        if cached is not None:
            return cached

        try:
            info = await self._lookup(ticker)
        except MarketDataError as e:
            logger.warning("Ticker metadata lookup failed", ticker=ticker, error=e.message, error_code=e.error_code)
            return None

        if info is None:
            logger.warning("No market data found for ticker", ticker=ticker)
            return None

        self.ticker_cache[ticker] = info
        return info

    async def _lookup(self, ticker: str) -> Optional[TickerInfo]:
        candidates = await self.client.search(ticker)
        if candidates:
            match = next((c for c in candidates if c.symbol.upper() == ticker.upper()), candidates[0])
            market = match.market
            return TickerInfo(
                asset_type=detect_asset_type(match.quote_type, match.type_disp),
                market=market,
                currency=infer_currency(market) or (match.currency or "USD").upper(),
                name=match.display_name or ticker,
                )

        quotes = await self.client.get_quotes([ticker])
        quote = next((q for q in quotes if q.symbol.upper() == ticker.upper()), None)
        if quote is None:
            return None

        market = quote.exchange or ""
        return TickerInfo(
            asset_type=detect_asset_type(quote.quote_type),
            market=market,
            currency=(quote.currency or infer_currency(market) or "USD").upper(),
            name=quote.display_name or ticker,
            )
