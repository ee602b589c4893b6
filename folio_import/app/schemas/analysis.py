"""
Analysis schemas for FolioImport.

DTOs exchanged by the analysis phase: column mappings, ticker validation
summaries, readiness verdicts and the analyze request/response pair.

**Design Notes**:
- Analysis never writes; every model here is a pure value object
- Sample cells are coerced to str on input (broker exports mix numbers and text)
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

from folio_import.app.db.models import AssetType


# =============================================================================
# FIELDS AND METHODS
# =============================================================================

class TargetField(str, Enum):
    """Semantic trading field a raw column can be mapped to."""
    TICKER = "ticker"
    TYPE = "type"
    AMOUNT = "amount"
    PRICE = "price"
    DATE = "date"
    CURRENCY = "currency"
    COMMISSION = "commission"
    MARKET = "market"
    TOTAL = "total"
    DESCRIPTION = "description"


REQUIRED_FIELDS: List[TargetField] = [
    TargetField.TICKER,
    TargetField.TYPE,
    TargetField.AMOUNT,
    TargetField.PRICE,
    TargetField.DATE,
    ]


class DetectionMethod(str, Enum):
    """Provenance of a mapping; each method carries its own base confidence."""
    HEADER = "header"
    CONTENT = "content"
    CONTEXT = "context"
    BROKER = "broker"
    MANUAL = "manual"


DETECTION_CONFIDENCE: Dict[DetectionMethod, float] = {
    DetectionMethod.HEADER: 0.9,
    DetectionMethod.CONTENT: 0.7,
    DetectionMethod.CONTEXT: 0.5,
    DetectionMethod.BROKER: 0.95,
    DetectionMethod.MANUAL: 1.0,
    }

MAX_SAMPLE_VALUES_PER_COLUMN = 5


class ColumnMapping(BaseModel):
    """
    Assignment of one raw column to one target field.

    A mapping with ``derived_from`` set reads the column of another mapping
    (e.g. IBKR derives the trade side from the sign of the quantity column),
    so it is the only kind allowed to share a source column.
    """
    model_config = ConfigDict(frozen=True)

    source_column: int = Field(..., ge=0, description="Zero-based column index")
    source_header: str = Field(..., description="Header text, or 'Column N' when the file has no header")
    target_field: TargetField
    confidence: float = Field(..., ge=0.0, le=1.0)
    detection_method: DetectionMethod
    sample_values: List[str] = Field(default_factory=list, max_length=MAX_SAMPLE_VALUES_PER_COLUMN)
    transformation: Optional[str] = Field(default=None, description="Hint such as 'parseDate:MM/DD/YYYY'")
    derived_from: Optional[TargetField] = Field(default=None)
    detected_format: Optional[str] = Field(default=None, description="Date layout seen by the content phase")


# =============================================================================
# TICKER VALIDATION
# =============================================================================

class TickerValidationEntry(BaseModel):
    """Outcome for one normalized ticker: valid, invalid, or unverified (lookup failed)."""
    original_ticker: str
    is_valid: bool = False
    is_unverified: bool = False
    normalized_ticker: Optional[str] = None
    asset_type: Optional[AssetType] = None
    market: Optional[str] = None
    currency: Optional[str] = None
    company_name: Optional[str] = None
    sector: Optional[str] = None
    industry: Optional[str] = None
    logo: Optional[str] = None
    suggestion: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode='after')
    def validate_exclusive_outcome(self) -> 'TickerValidationEntry':
        if self.is_valid and self.is_unverified:
            raise ValueError("A ticker cannot be both valid and unverified")
        return self


class TickerValidationSummary(BaseModel):
    """
    Aggregated validation of the unique tickers of a sample.

    Each ticker is counted in exactly one of valid / invalid / unverified.
    """
    total: int = 0
    valid: int = 0
    invalid: int = 0
    unverified: int = 0
    invalid_tickers: List[str] = Field(default_factory=list)
    unverified_tickers: List[str] = Field(default_factory=list)
    suggestions: Dict[str, str] = Field(default_factory=dict)
    details: Dict[str, TickerValidationEntry] = Field(default_factory=dict)


# =============================================================================
# READINESS
# =============================================================================

class ConfidenceTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Readiness(BaseModel):
    can_proceed: bool
    requires_manual_mapping: bool
    confidence: ConfidenceTier
    critical_missing_fields: List[TargetField] = Field(default_factory=list)


class AnalysisFeedback(BaseModel):
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


# =============================================================================
# REQUEST / RESPONSE
# =============================================================================

class AnalyzeFileRequest(BaseModel):
    """
    Sample of an uploaded file, already split into rows and cells.

    Used by POST /api/v1/imports/analyze. ``has_header`` is auto-detected
    when omitted.
    """
    sample_data: List[List[Any]] = Field(..., description="Rows of cells (first row may be the header)")
    file_name: str = Field(default="", description="Original file name, used for broker detection")
    has_header: Optional[bool] = Field(default=None)

    @field_validator('sample_data')
    @classmethod
    def coerce_cells_to_str(cls, v: List[List[Any]]) -> List[List[str]]:
        return [["" if cell is None else str(cell) for cell in row] for row in v]


class AnalysisResult(BaseModel):
    """Mapping proposal plus readiness verdict. Returned even when mapping is poor."""
    success: bool = True
    detected_broker: Optional[str] = None
    detected_broker_name: Optional[str] = None
    mappings: List[ColumnMapping] = Field(default_factory=list)
    unmapped_columns: List[int] = Field(default_factory=list)
    missing_required_fields: List[TargetField] = Field(default_factory=list)
    overall_confidence: float = Field(..., ge=0.0, le=1.0)
    warnings: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    ticker_validation: TickerValidationSummary = Field(default_factory=TickerValidationSummary)
    readiness: Readiness
    detected_date_format: Optional[str] = None
    has_header: bool
    total_rows: int
    total_columns: int
    processing_time_ms: int = 0


class BrokerCatalogEntry(BaseModel):
    """Public view of a known broker signature (GET /api/v1/imports/brokers)."""
    id: str
    display_name: str
    type_derivation: str
    default_currency: Optional[str] = None
    date_format: Optional[str] = None
    unique_headers: List[str] = Field(default_factory=list)
    header_sets: List[List[str]] = Field(default_factory=list)
