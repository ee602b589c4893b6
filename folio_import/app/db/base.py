"""
Database base module.
SQLModel base classes and metadata.
Import all models here so metadata.create_all sees every table.
"""
from sqlmodel import SQLModel

from folio_import.app.db.models import (
    # Enums
    AssetType,
    TransactionType,
    # Models
    PortfolioAccount,
    Asset,
    Transaction,
    )

__all__ = [
    "SQLModel",
    # Enums
    "AssetType",
    "TransactionType",
    # Models
    "PortfolioAccount",
    "Asset",
    "Transaction",
    ]
