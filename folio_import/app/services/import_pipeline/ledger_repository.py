"""
Ledger persistence for the import pipeline.

Thin async repository over the portfolio_accounts / assets / transactions
tables. Stages of the pipeline never build queries themselves; they go
through this class so tests can run them against a temporary SQLite file.

The caller owns the session. Methods that must be durable on their own
(asset creation, chunk inserts, aggregate updates) commit explicitly and
roll back on failure.
"""
from __future__ import annotations

from datetime import date as date_type
from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from folio_import.app.db.models import (
    Asset,
    AssetType,
    IMPORT_SOURCE_BATCH,
    PortfolioAccount,
    Transaction,
    )
from folio_import.app.schemas.imports import EnrichedTransaction
from folio_import.app.utils.decimal_utils import truncate_to_db_precision


class LedgerRepository:
    """Data access used by the resolver, duplicate detector and batch writer."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # ACCOUNTS
    # =========================================================================

    async def get_account(self, account_id: int) -> Optional[PortfolioAccount]:
        return await self.session.get(PortfolioAccount, account_id)

    async def create_account(self, user_id: str, name: str, default_currency: str = "USD") -> PortfolioAccount:
        account = PortfolioAccount(user_id=user_id, name=name, default_currency=default_currency)
        self.session.add(account)
        await self.session.commit()
        await self.session.refresh(account)
        return account

    # =========================================================================
    # ASSETS
    # =========================================================================

    async def find_active_asset(self, ticker: str, account_id: int) -> Optional[Asset]:
        stmt = (
            select(Asset)
            .where(Asset.name == ticker)
            .where(Asset.portfolio_account_id == account_id)
            .where(Asset.is_active == True)  # noqa: E712
            .order_by(Asset.id)
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create_asset(
        self,
        ticker: str,
        account_id: int,
        user_id: str,
        asset_type: AssetType,
        market: str,
        currency: str,
        company: Optional[str],
        acquisition_date: date_type,
        unit_value: Decimal,
        ) -> Asset:
        """Insert and commit a new active asset with zero units."""
        asset = Asset(
            name=ticker,
            portfolio_account_id=account_id,
            user_id=user_id,
            asset_type=asset_type,
            market=market,
            currency=currency,
            company=company,
            units=Decimal("0"),
            unit_value=truncate_to_db_precision(unit_value, Asset, "unit_value"),
            commission=Decimal("0"),
            acquisition_date=acquisition_date,
            is_active=True,
            import_source=IMPORT_SOURCE_BATCH,
            )
        self.session.add(asset)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        await self.session.refresh(asset)
        return asset

    async def get_asset(self, asset_id: int) -> Optional[Asset]:
        return await self.session.get(Asset, asset_id)

    async def list_account_assets(self, account_id: int) -> List[Asset]:
        stmt = select(Asset).where(Asset.portfolio_account_id == account_id).order_by(Asset.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def save_asset_aggregates(self, asset: Asset, units: Decimal, unit_value: Decimal, is_active: bool) -> None:
        asset.units = truncate_to_db_precision(units, Asset, "units")
        asset.unit_value = truncate_to_db_precision(unit_value, Asset, "unit_value")
        asset.is_active = is_active
        self.session.add(asset)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def list_transactions_for_tickers(
        self,
        user_id: str,
        account_id: int,
        tickers: Sequence[str],
        ) -> List[Transaction]:
        """Persisted transactions of a user/account for the given tickers (one query)."""
        if not tickers:
            return []
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .where(Transaction.portfolio_account_id == account_id)
            .where(Transaction.asset_name.in_(list(tickers)))
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_asset_history(self, asset_id: int) -> List[Transaction]:
        """Every transaction of an asset in replay order (date, then insertion id)."""
        stmt = (
            select(Transaction)
            .where(Transaction.asset_id == asset_id)
            .order_by(Transaction.date, Transaction.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def insert_transactions(self, items: Sequence[EnrichedTransaction]) -> List[int]:
        """
        Insert a chunk of transactions and commit them together.

        Either every row of the chunk is committed or none is (the session is
        rolled back and the error re-raised).
        """
        try:
            rows = [self._to_row(item) for item in items]
            self.session.add_all(rows)
            await self.session.flush()
            ids = [row.id for row in rows]
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return ids

    @staticmethod
    def _to_row(item: EnrichedTransaction) -> Transaction:
        return Transaction(
            asset_id=item.asset_id,
            asset_name=item.asset_name,
            type=item.type,
            amount=truncate_to_db_precision(item.amount, Transaction, "amount"),
            price=truncate_to_db_precision(item.price, Transaction, "price"),
            commission=truncate_to_db_precision(item.commission, Transaction, "commission"),
            currency=item.currency,
            date=item.date,
            date_has_time=item.date_has_time,
            asset_type=item.asset_type,
            market=item.market,
            dollar_price_to_date=truncate_to_db_precision(item.dollar_price_to_date, Transaction, "dollar_price_to_date"),
            default_currency_for_acquisition_dollar=item.default_currency_for_acquisition_dollar,
            portfolio_account_id=item.portfolio_account_id,
            user_id=item.user_id,
            import_source=IMPORT_SOURCE_BATCH,
            original_row_number=item.original_row_number,
            )
