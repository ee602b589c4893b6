"""
Database models for FolioImport.

All models use SQLModel (SQLAlchemy 2.x) with the following conventions:
- Decimal columns use Numeric(18, 6) for precision (FX rates Numeric(24, 10))
- Timestamps in UTC (created_at, updated_at)
- Foreign keys enforced with PRAGMA foreign_keys=ON
- Direction of a trade lives in Transaction.type, amounts are always positive
"""
from datetime import date as date_type, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Column,
    Index,
    Numeric,
    event,
    CheckConstraint,
    )
from sqlmodel import Field, SQLModel

from folio_import.app.utils.datetime_utils import utcnow


# ============================================================================
# ENUMS
# ============================================================================

class AssetType(str, Enum):
    """
    Asset class of an imported instrument.

    - STOCK: Individual company shares (e.g., Apple, Ecopetrol)
    - ETF: Exchange traded and mutual funds (e.g., SPY, VOO)
    - CRYPTO: Cryptocurrencies and currency pairs (e.g., BTC-USD)
    """
    STOCK = "stock"
    ETF = "etf"
    CRYPTO = "crypto"


class TransactionType(str, Enum):
    """
    Trade direction.

    - BUY: ↑ units, updates the weighted average unit cost
    - SELL: ↓ units, cost basis unchanged
    """
    BUY = "buy"
    SELL = "sell"


IMPORT_SOURCE_BATCH = "batch_import"


# ============================================================================
# MODELS
# ============================================================================


class PortfolioAccount(SQLModel, table=True):
    """
    Portfolio account owned by a user; every asset and transaction belongs to one.

    default_currency is the reference currency used for the FX rate stored
    on each transaction (dollar_price_to_date).
    """
    __tablename__ = "portfolio_accounts"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(nullable=False, index=True)
    name: str = Field(nullable=False)
    default_currency: str = Field(default="USD", nullable=False)  # ISO 4217
    is_active: bool = Field(default=True, nullable=False)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Asset(SQLModel, table=True):
    """
    Holding of a ticker inside a portfolio account.

    Aggregates:
    - units: current quantity held (never negative)
    - unit_value: weighted average unit cost of the buys
    - is_active: False once units reach 0

    An asset is identified by (name, portfolio_account_id, is_active=True);
    the import pipeline creates at most one per ticker and account and
    never deletes any.
    """
    __tablename__ = "assets"
    __table_args__ = (
        Index("idx_assets_name_account_active", "name", "portfolio_account_id", "is_active"),
        CheckConstraint("units >= 0", name="ck_assets_units_non_negative"),
        )

    id: Optional[int] = Field(default=None, primary_key=True)

    name: str = Field(nullable=False, index=True)  # Ticker symbol
    portfolio_account_id: int = Field(foreign_key="portfolio_accounts.id", nullable=False, index=True)
    user_id: str = Field(nullable=False)

    asset_type: AssetType = Field(default=AssetType.STOCK, nullable=False)
    market: Optional[str] = Field(default=None)
    currency: str = Field(default="USD", nullable=False)  # ISO 4217
    company: Optional[str] = Field(default=None)

    units: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(18, 6), nullable=False))
    unit_value: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(18, 6), nullable=False))
    commission: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(18, 6), nullable=False))
    acquisition_date: Optional[date_type] = Field(default=None)

    is_active: bool = Field(default=True, nullable=False)
    import_source: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Transaction(SQLModel, table=True):
    """
    Executed buy/sell of an asset.

    Date semantics:
    - date: full UTC timestamp of the trade
    - date_has_time: True when the source carried a time of day; otherwise
      the time part is the processing instant and only the calendar day
      is meaningful (duplicate detection compares the day only)

    FX:
    - dollar_price_to_date: units of default_currency_for_acquisition_dollar
      per 1 USD on the trade date (1 for USD)
    """
    __tablename__ = "transactions"
    __table_args__ = (
        Index("idx_transactions_account_asset_date", "portfolio_account_id", "asset_name", "date", "id"),
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint("price > 0", name="ck_transactions_price_positive"),
        CheckConstraint("commission >= 0", name="ck_transactions_commission_non_negative"),
        )

    id: Optional[int] = Field(default=None, primary_key=True)

    asset_id: int = Field(foreign_key="assets.id", nullable=False, index=True)
    asset_name: str = Field(nullable=False, index=True)  # Ticker at import time
    type: TransactionType = Field(nullable=False)

    amount: Decimal = Field(sa_column=Column(Numeric(18, 6), nullable=False))
    price: Decimal = Field(sa_column=Column(Numeric(18, 6), nullable=False))
    commission: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(18, 6), nullable=False))
    currency: str = Field(nullable=False)  # ISO 4217

    date: datetime = Field(nullable=False, index=True)
    date_has_time: bool = Field(default=False, nullable=False)

    asset_type: AssetType = Field(default=AssetType.STOCK, nullable=False)
    market: Optional[str] = Field(default=None)

    dollar_price_to_date: Decimal = Field(default=Decimal("1"), sa_column=Column(Numeric(24, 10), nullable=False))
    default_currency_for_acquisition_dollar: str = Field(default="USD", nullable=False)

    portfolio_account_id: int = Field(foreign_key="portfolio_accounts.id", nullable=False)
    user_id: str = Field(nullable=False, index=True)

    import_source: Optional[str] = Field(default=None)
    original_row_number: Optional[int] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# EVENT LISTENERS
# ============================================================================

@event.listens_for(PortfolioAccount, "before_update")
@event.listens_for(Asset, "before_update")
@event.listens_for(Transaction, "before_update")
def receive_before_update(mapper, connection, target):
    """Keep updated_at current on every ORM update."""
    target.updated_at = utcnow()
