"""
Database module exports.
"""
from folio_import.app.db.base import (
    SQLModel,
    # Enums
    AssetType,
    TransactionType,
    # Models
    PortfolioAccount,
    Asset,
    Transaction,
    )
from folio_import.app.db.session import create_schema, get_async_engine, get_session

__all__ = [
    "SQLModel",
    "get_async_engine",
    "create_schema",
    "get_session",
    # Enums
    "AssetType",
    "TransactionType",
    # Models
    "PortfolioAccount",
    "Asset",
    "Transaction",
    ]
