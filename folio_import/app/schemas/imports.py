"""
Import execution schemas for FolioImport.

DTOs for the execution phase: raw rows in, enriched rows through the
pipeline, a per-row error list and a summary out.

**Design Notes**:
- Per-row problems never raise; they travel as ImportRowError items
- amount/price are positive magnitudes once enriched, direction lives in ``type``
- Numeric inputs accept str/int/float/Decimal because broker cells arrive as text
"""
from __future__ import annotations

from datetime import date as date_type, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, ConfigDict, field_validator

from folio_import.app.db.models import AssetType, TransactionType
from folio_import.app.utils.currency_utils import validate_currency_code

NumberInput = Union[Decimal, int, float, str, None]
DateInput = Union[datetime, date_type, str, None]


# =============================================================================
# ERRORS
# =============================================================================

class ImportErrorCode(str, Enum):
    ASSET_NOT_FOUND = "ASSET_NOT_FOUND"
    INVALID_DATA = "INVALID_DATA"
    ENRICHMENT_FAILED = "ENRICHMENT_FAILED"
    WRITE_FAILED = "WRITE_FAILED"
    DUPLICATE_DETECTED = "DUPLICATE_DETECTED"
    INSUFFICIENT_UNITS = "INSUFFICIENT_UNITS"


# Reported to the caller but not counted as failures
NON_FATAL_ERROR_CODES = frozenset({
    ImportErrorCode.DUPLICATE_DETECTED,
    ImportErrorCode.INSUFFICIENT_UNITS,
    })


class ImportRowError(BaseModel):
    """Problem attached to one source row."""
    row_number: int
    ticker: str
    code: ImportErrorCode
    message: str

    @property
    def is_fatal(self) -> bool:
        return self.code not in NON_FATAL_ERROR_CODES


# =============================================================================
# PIPELINE ROWS
# =============================================================================

class RawTransactionRow(BaseModel):
    """
    One already-mapped source row, values still as found in the file.

    ``original_row_number`` defaults to the 1-based position in the batch.
    """
    ticker: Optional[str] = None
    type: Optional[str] = None
    amount: NumberInput = None
    price: NumberInput = None
    date: DateInput = None
    currency: Optional[str] = None
    commission: NumberInput = None
    market: Optional[str] = None
    original_row_number: Optional[int] = Field(default=None, ge=1)

    @field_validator('ticker', 'type', 'currency', 'market', mode='before')
    @classmethod
    def coerce_text(cls, v):
        if v is None:
            return None
        return str(v)


class AssetInfo(BaseModel):
    """Asset a ticker resolved to for this import run."""
    model_config = ConfigDict(frozen=True)

    id: int
    ticker: str
    asset_type: AssetType = AssetType.STOCK
    market: str = ""
    currency: str = "USD"
    is_new: bool = False


class EnrichedTransaction(BaseModel):
    """Ledger-ready transaction produced by the enricher."""
    asset_id: int
    asset_name: str
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    price: Decimal = Field(..., gt=0)
    date: datetime = Field(..., description="UTC timestamp of the trade")
    date_has_time: bool = Field(default=False, description="True when the source carried a time of day")
    currency: str
    commission: Decimal = Field(default=Decimal("0"), ge=0)
    asset_type: AssetType
    market: str = ""
    dollar_price_to_date: Decimal = Decimal("1")
    default_currency_for_acquisition_dollar: str = "USD"
    portfolio_account_id: int
    user_id: str
    original_row_number: int


class AssetLedgerUpdate(BaseModel):
    """Net effect of a set of transactions on one asset. Never persisted."""
    asset_id: int
    units_change: Decimal = Decimal("0")
    total_cost: Decimal = Decimal("0")


# =============================================================================
# STAGE RESULTS
# =============================================================================

class AssetResolutionResult(BaseModel):
    asset_map: Dict[str, AssetInfo] = Field(default_factory=dict)
    created: List[int] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)


class EnrichmentResult(BaseModel):
    data: List[EnrichedTransaction] = Field(default_factory=list)
    errors: List[ImportRowError] = Field(default_factory=list)


class DuplicateCheckResult(BaseModel):
    unique: List[EnrichedTransaction] = Field(default_factory=list)
    duplicates: List[EnrichedTransaction] = Field(default_factory=list)


class WriteResult(BaseModel):
    transaction_ids: List[int] = Field(default_factory=list)
    assets_updated: List[int] = Field(default_factory=list)
    errors: List[ImportRowError] = Field(default_factory=list)


class AssetRecalculation(BaseModel):
    """Aggregates of one asset after replaying its transaction history."""
    asset_id: int
    ticker: str
    units: Decimal
    unit_value: Decimal
    is_active: bool
    transactions_replayed: int
    oversold_transaction_ids: List[int] = Field(default_factory=list)


# =============================================================================
# REQUEST / RESPONSE
# =============================================================================

class ImportOptions(BaseModel):
    create_missing_assets: bool = True
    skip_duplicates: bool = True
    default_currency: Optional[str] = Field(
        default=None,
        description="Reference currency for FX rates (defaults to the account currency)"
        )

    @field_validator('default_currency')
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return validate_currency_code(v)


class ImportBatchRequest(BaseModel):
    """
    Mapped rows to post against a portfolio account.

    Used by POST /api/v1/imports/execute. Batch size limits are enforced by
    the service so the CLI gets the same checks.
    """
    portfolio_account_id: int = Field(..., ge=1)
    transactions: List[RawTransactionRow]
    options: ImportOptions = Field(default_factory=ImportOptions)


class ImportSummary(BaseModel):
    total_processed: int
    imported: int
    skipped: int
    errors: int


class ImportBatchResponse(BaseModel):
    success: bool
    summary: ImportSummary
    assets_created: List[int] = Field(default_factory=list)
    assets_updated: List[int] = Field(default_factory=list)
    errors: List[ImportRowError] = Field(default_factory=list)
    imported_transaction_ids: List[int] = Field(default_factory=list)
    processing_time_ms: int = 0
    portfolio_account_id: int


class RecalculateAssetsResponse(BaseModel):
    portfolio_account_id: int
    assets: List[AssetRecalculation] = Field(default_factory=list)


class CreateAccountRequest(BaseModel):
    name: str = Field(..., min_length=1)
    default_currency: str = "USD"

    @field_validator('default_currency')
    @classmethod
    def validate_currency(cls, v: str) -> str:
        return validate_currency_code(v)


class AccountRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    name: str
    default_currency: str
    is_active: bool
