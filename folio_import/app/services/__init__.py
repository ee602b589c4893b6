"""
Services package.
Business logic and external integrations.

- market_data: finance-query API client (retries + circuit breaker)
- fx: reference-currency rates with fallback table
- import_pipeline: file analysis and transaction import
"""
from folio_import.app.services.fx import FXRateService, FXServiceError
from folio_import.app.services.market_data import FinanceQueryClient, MarketDataClient, MarketDataError

__all__ = [
    "MarketDataClient",
    "FinanceQueryClient",
    "MarketDataError",
    "FXRateService",
    "FXServiceError",
    ]
