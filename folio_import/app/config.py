"""
Application configuration module.
Loads environment variables and provides application-wide settings.
"""
import os
from pathlib import Path

from pydantic import ConfigDict
from pydantic_settings import BaseSettings

# Get project root (two levels up from this file)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Global flag to indicate test mode (set via --test flag or FOLIO_IMPORT_TEST_MODE env var)
_test_mode = os.environ.get("FOLIO_IMPORT_TEST_MODE", "").lower() in ("1", "true", "yes")


def set_test_mode(enabled: bool = True):
    """
    Enable/disable test mode globally.
    When enabled, DATABASE_URL will automatically use TEST_DATABASE_URL.

    Args:
        enabled: True to enable test mode, False to disable
    """
    global _test_mode
    _test_mode = enabled
    os.environ["FOLIO_IMPORT_TEST_MODE"] = "1" if enabled else "0"


def is_test_mode() -> bool:
    """Check if test mode is enabled."""
    return _test_mode


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables or .env file.
    (Note: Environment variables take precedence over .env file)
    """
    # Database
    DATABASE_URL: str = "sqlite:///./folio_import/data/sqlite/ledger.db"
    TEST_DATABASE_URL: str = "sqlite:///./folio_import/data/sqlite/test_ledger.db"

    # API
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "FolioImport"
    VERSION: str = "0.1.0"

    # Server
    PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = True

    # Portfolio
    DEFAULT_CURRENCY: str = "USD"  # ISO 4217, used when neither request nor account specify one

    # Market data (finance-query compatible API)
    MARKET_DATA_BASE_URL: str = "https://finance-query.onrender.com/v1"
    MARKET_DATA_TIMEOUT_SECONDS: float = 15.0
    MARKET_DATA_MAX_RETRIES: int = 3
    MARKET_DATA_RETRY_DELAY_SECONDS: float = 1.0

    # Circuit breaker around market data calls
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_RESET_SECONDS: float = 60.0

    # Caches (seconds)
    TICKER_INFO_CACHE_TTL: int = 3600
    FX_RATE_CACHE_TTL: int = 6 * 3600

    # Analysis limits
    ANALYSIS_MAX_SAMPLE_ROWS: int = 100
    ANALYSIS_MAX_PAYLOAD_BYTES: int = 1024 * 1024
    ANALYSIS_SLOW_WARNING_MS: int = 3000

    # Import limits
    IMPORT_MAX_BATCH_TRANSACTIONS: int = 500
    LEDGER_WRITE_CHUNK_SIZE: int = 500  # Max rows committed atomically together

    # Bound for concurrent external lookups (ticker batches, FX prefetch, suggestions)
    FAN_OUT_CONCURRENCY: int = 5

    # CORS (for frontend development)
    BACKEND_CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    model_config = ConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        case_sensitive=True,
        env_file_encoding='utf-8'
        )


def get_settings() -> Settings:
    """
    Get settings instance.

    In test mode, DATABASE_URL is automatically overridden with TEST_DATABASE_URL.

    Returns:
        Settings: Application settings
    """
    settings = Settings()

    if is_test_mode():
        settings.DATABASE_URL = settings.TEST_DATABASE_URL

    return settings
