"""
Pydantic schemas for FolioImport.

**Organization by Domain**:
- analysis.py: Column mappings, ticker validation, readiness, analyze request/response
- imports.py: Raw/enriched rows, per-row errors, execute request/response
- market_data.py: Quote and search payloads of the market data API

**Naming Conventions**:
- Fields are snake_case; enum values are the lowercase wire values
"""
from folio_import.app.schemas.analysis import (
    TargetField,
    DetectionMethod,
    ColumnMapping,
    TickerValidationEntry,
    TickerValidationSummary,
    ConfidenceTier,
    Readiness,
    AnalyzeFileRequest,
    AnalysisResult,
    BrokerCatalogEntry,
    REQUIRED_FIELDS,
    )
from folio_import.app.schemas.imports import (
    ImportErrorCode,
    ImportRowError,
    RawTransactionRow,
    AssetInfo,
    EnrichedTransaction,
    AssetLedgerUpdate,
    ImportOptions,
    ImportBatchRequest,
    ImportBatchResponse,
    ImportSummary,
    )
from folio_import.app.schemas.market_data import MarketQuote, SearchCandidate

__all__ = [
    # Analysis
    "TargetField",
    "DetectionMethod",
    "ColumnMapping",
    "TickerValidationEntry",
    "TickerValidationSummary",
    "ConfidenceTier",
    "Readiness",
    "AnalyzeFileRequest",
    "AnalysisResult",
    "BrokerCatalogEntry",
    "REQUIRED_FIELDS",
    # Imports
    "ImportErrorCode",
    "ImportRowError",
    "RawTransactionRow",
    "AssetInfo",
    "EnrichedTransaction",
    "AssetLedgerUpdate",
    "ImportOptions",
    "ImportBatchRequest",
    "ImportBatchResponse",
    "ImportSummary",
    # Market data
    "MarketQuote",
    "SearchCandidate",
    ]
