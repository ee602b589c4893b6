"""
Import pipeline context.

Bundles the collaborators one analysis or import run needs: settings, the
market data client, and the caches and services built on top of it. Every
context owns its own CacheRegistry, so nothing is shared through module
globals and tests get a clean slate by building a new context.
"""
from __future__ import annotations

from typing import Optional

from cachetools import TTLCache

from folio_import.app.config import Settings, get_settings
from folio_import.app.services.fx import FXRateService
from folio_import.app.services.import_pipeline.ticker_validator import TickerValidator
from folio_import.app.services.market_data import FinanceQueryClient, MarketDataClient
from folio_import.app.utils.cache_utils import CacheRegistry

TICKER_INFO_CACHE = "ticker_info"
FX_RATE_CACHE = "fx_rates"


class ImportPipelineContext:
    """
    Args:
        client: Market data client (shared by the validator, resolver and FX service)
        settings: Application settings (get_settings() when omitted)
        caches: Cache registry (a fresh one when omitted)
    """

    def __init__(
        self,
        client: MarketDataClient,
        settings: Optional[Settings] = None,
        caches: Optional[CacheRegistry] = None,
        ):
        self.settings = settings or get_settings()
        self.client = client
        self.caches = caches or CacheRegistry(owner="import_pipeline")

        self.fx = FXRateService(
            client,
            self.caches.get_ttl_cache(FX_RATE_CACHE, maxsize=1000, ttl=self.settings.FX_RATE_CACHE_TTL),
            concurrency=self.settings.FAN_OUT_CONCURRENCY,
            )
        self.ticker_validator = TickerValidator(
            client,
            timeout=self.settings.MARKET_DATA_TIMEOUT_SECONDS,
            concurrency=self.settings.FAN_OUT_CONCURRENCY,
            )

    @property
    def ticker_cache(self) -> TTLCache:
        return self.caches.get_ttl_cache(TICKER_INFO_CACHE, maxsize=1000, ttl=self.settings.TICKER_INFO_CACHE_TTL)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ImportPipelineContext":
        """Context with a new FinanceQueryClient (used by the CLI)."""
        settings = settings or get_settings()
        return cls(FinanceQueryClient.from_settings(settings), settings=settings)

    async def aclose(self) -> None:
        await self.client.aclose()
