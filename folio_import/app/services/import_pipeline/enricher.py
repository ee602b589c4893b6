"""
Transaction enrichment.

Turns mapped raw rows into ledger-ready EnrichedTransaction records:

1. ticker -> resolved asset            (ASSET_NOT_FOUND)
2. side synonyms -> buy/sell           (INVALID_DATA)
3. amount/price/commission -> |value| at ledger precision
                                       (INVALID_DATA when amount/price is 0
                                       there, or any value is out of range)
4. date -> UTC timestamp               (INVALID_DATA)
5. FX rate of the reference currency on the trade date

Rates for every distinct trade date are prefetched concurrently before the
per-row loop. Problems are collected per row, never raised.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from folio_import.app.db.models import Transaction, TransactionType
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.imports import (
    AssetInfo,
    EnrichedTransaction,
    EnrichmentResult,
    ImportErrorCode,
    ImportRowError,
    RawTransactionRow,
    )
from folio_import.app.services.fx import FXRateService
from folio_import.app.services.import_pipeline.patterns import BUY_SYNONYMS, SELL_SYNONYMS
from folio_import.app.services.import_pipeline.ticker_validator import normalize_ticker
from folio_import.app.utils.datetime_utils import parse_trade_datetime, utcnow
from folio_import.app.utils.decimal_utils import get_model_column_precision, parse_decimal, truncate_to_db_precision

logger = get_logger(__name__)

USD = "USD"


def normalize_transaction_type(value) -> Optional[TransactionType]:
    """Map a free-text side (English or Spanish) to buy/sell, or None."""
    if isinstance(value, TransactionType):
        return value
    normalized = str(value or "").strip().lower()
    if normalized in BUY_SYNONYMS:
        return TransactionType.BUY
    if normalized in SELL_SYNONYMS:
        return TransactionType.SELL
    return None


def fit_ledger_column(value: Decimal, column: str) -> Optional[Decimal]:
    """
    |value| truncated to the precision of a Transaction column.

    Returns:
        The stored value, or None when it exceeds the column's integer
        digits or truncates to zero (e.g. 0.00000001 at 6 decimals)
    """
    precision, scale = get_model_column_precision(Transaction, column)
    value = abs(value)
    if value >= Decimal(10) ** (precision - scale):
        return None
    truncated = truncate_to_db_precision(value, Transaction, column)
    return truncated if truncated > 0 else None


def _row_error(row: RawTransactionRow, code: ImportErrorCode, message: str) -> ImportRowError:
    return ImportRowError(
        row_number=row.original_row_number or 0,
        ticker=row.ticker or "UNKNOWN",
        code=code,
        message=message,
        )


class TransactionEnricher:
    """
    Args:
        fx: FX service of the current pipeline context
    """

    def __init__(self, fx: FXRateService):
        self.fx = fx

    async def enrich(
        self,
        rows: Sequence[RawTransactionRow],
        asset_map: Dict[str, AssetInfo],
        portfolio_account_id: int,
        user_id: str,
        default_currency: Optional[str],
        now: Optional[datetime] = None,
        ) -> EnrichmentResult:
        """
        Enrich ``rows`` (already numbered) against the resolved ``asset_map``.

        Args:
            default_currency: Reference currency of the account (rate stored
                in dollar_price_to_date); None means USD
            now: Processing instant, used as time of day for date-only rows
        """
        now = now or utcnow()
        reference_currency = (default_currency or USD).upper()
        result = EnrichmentResult()

        rates = await self._prefetch_rates(rows, reference_currency, now)

        for row in rows:
            try:
                enriched = self._enrich_row(row, asset_map, portfolio_account_id, user_id, reference_currency, rates, now, result.errors)
            except Exception as e:
                logger.error("Unexpected error enriching row", row=row.original_row_number, error=str(e), exc_info=True)
                result.errors.append(_row_error(row, ImportErrorCode.ENRICHMENT_FAILED, str(e) or "Unknown enrichment error"))
                continue
            if enriched is not None:
                result.data.append(enriched)

        logger.info("Enrichment finished", enriched=len(result.data), errors=len(result.errors))
        return result

    async def _prefetch_rates(self, rows: Sequence[RawTransactionRow], currency: str, now: datetime):
        if currency == USD:
            return {}
        dates = []
        for row in rows:
            parsed = parse_trade_datetime(row.date, now=now)
            if parsed is not None:
                dates.append(parsed[0].date())
        return await self.fx.prefetch(currency, dates)

    def _enrich_row(
        self,
        row: RawTransactionRow,
        asset_map: Dict[str, AssetInfo],
        portfolio_account_id: int,
        user_id: str,
        reference_currency: str,
        rates: dict,
        now: datetime,
        errors: List[ImportRowError],
        ) -> Optional[EnrichedTransaction]:
        ticker = normalize_ticker(row.ticker)
        asset = asset_map.get(ticker)
        if asset is None:
            errors.append(_row_error(row, ImportErrorCode.ASSET_NOT_FOUND, f"Asset not found for ticker: {row.ticker}"))
            return None

        tx_type = normalize_transaction_type(row.type)
        if tx_type is None:
            errors.append(_row_error(row, ImportErrorCode.INVALID_DATA, f"Invalid transaction type: {row.type}"))
            return None

        amount = parse_decimal(row.amount)
        amount = fit_ledger_column(amount, "amount") if amount is not None else None
        if amount is None:
            errors.append(_row_error(row, ImportErrorCode.INVALID_DATA, f"Invalid amount: {row.amount}"))
            return None

        price = parse_decimal(row.price)
        price = fit_ledger_column(price, "price") if price is not None else None
        if price is None:
            errors.append(_row_error(row, ImportErrorCode.INVALID_DATA, f"Invalid price: {row.price}"))
            return None

        commission = abs(parse_decimal(row.commission) or Decimal("0"))
        precision, scale = get_model_column_precision(Transaction, "commission")
        if commission >= Decimal(10) ** (precision - scale):
            errors.append(_row_error(row, ImportErrorCode.INVALID_DATA, f"Invalid commission: {row.commission}"))
            return None
        commission = truncate_to_db_precision(commission, Transaction, "commission")

        parsed_date = parse_trade_datetime(row.date, now=now)
        if parsed_date is None:
            errors.append(_row_error(row, ImportErrorCode.INVALID_DATA, f"Invalid date: {row.date}"))
            return None
        trade_at, has_time = parsed_date

        # Missing from the prefetch only when the reference currency is USD
        rate = rates.get(trade_at.date(), Decimal("1"))

        return EnrichedTransaction(
            asset_id=asset.id,
            asset_name=ticker,
            type=tx_type,
            amount=amount,
            price=price,
            date=trade_at,
            date_has_time=has_time,
            currency=(row.currency or "").strip().upper() or reference_currency,
            commission=commission,
            asset_type=asset.asset_type,
            market=asset.market,
            dollar_price_to_date=rate,
            default_currency_for_acquisition_dollar=reference_currency,
            portfolio_account_id=portfolio_account_id,
            user_id=user_id,
            original_row_number=row.original_row_number or 0,
            )
