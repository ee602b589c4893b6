"""
Utility functions for FolioImport.

This package contains:
- datetime_utils: Trade date parsing and date layout detection
- decimal_utils: Locale-tolerant number parsing and DB precision handling
- currency_utils: ISO 4217 code validation
- cache_utils: Named TTL caches
- circuit_breaker: Failure gate for the market data client
"""
