"""
Market data client.

The import pipeline needs two lookups from an external market data API:
- ``search(query)``: symbol search, used for suggestions and asset metadata
- ``get_quotes(symbols)``: batched quotes, used for ticker validation and FX

FinanceQueryClient talks to a finance-query compatible REST API
(``/quotes?symbols=A,B`` and ``/search?query=X``) with httpx. Every call is
retried with a fixed delay and wrapped by a circuit breaker owned by the
client instance, so once the API is down callers fail fast.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, List, Optional

import httpx

from folio_import.app.config import Settings
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.market_data import MarketQuote, SearchCandidate
from folio_import.app.utils.circuit_breaker import CircuitBreaker, CircuitOpenError

logger = get_logger(__name__)


class MarketDataError(Exception):
    """Raised when the market data API cannot answer (network, HTTP, payload or open circuit)."""

    def __init__(self, message: str, error_code: str = "MARKET_DATA_ERROR", details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


# ============================================================================
# ABSTRACT CLIENT
# ============================================================================

class MarketDataClient(ABC):
    """Lookup interface consumed by the ticker validator, asset resolver and FX service."""

    @abstractmethod
    async def search(self, query: str) -> List[SearchCandidate]:
        """
        Search symbols matching ``query``.

        Raises:
            MarketDataError: If the lookup itself fails (an empty list means no match)
        """
        pass

    @abstractmethod
    async def get_quotes(self, symbols: List[str]) -> List[MarketQuote]:
        """
        Fetch quotes for ``symbols`` in one call.

        Unknown symbols are simply absent from the result.

        Raises:
            MarketDataError: If the lookup itself fails
        """
        pass

    async def aclose(self) -> None:
        """Release resources held by the client (nothing by default)."""
        return None


# ============================================================================
# FINANCE-QUERY IMPLEMENTATION
# ============================================================================

class FinanceQueryClient(MarketDataClient):
    """
    httpx client for a finance-query compatible API.

    Args:
        base_url: API root, e.g. https://finance-query.onrender.com/v1
        timeout: Per-request timeout in seconds
        max_retries: Attempts per call before giving up
        retry_delay: Seconds to wait between attempts
        breaker: Circuit breaker (one is created when omitted)
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 15.0,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        breaker: Optional[CircuitBreaker] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.breaker = breaker or CircuitBreaker("market_data")
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "FinanceQueryClient":
        breaker = CircuitBreaker(
            "market_data",
            failure_threshold=settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            reset_timeout=settings.CIRCUIT_BREAKER_RESET_SECONDS,
            )
        return cls(
            base_url=settings.MARKET_DATA_BASE_URL,
            timeout=settings.MARKET_DATA_TIMEOUT_SECONDS,
            max_retries=settings.MARKET_DATA_MAX_RETRIES,
            retry_delay=settings.MARKET_DATA_RETRY_DELAY_SECONDS,
            breaker=breaker,
            transport=transport,
            )

    async def search(self, query: str) -> List[SearchCandidate]:
        payload = await self._request("/search", {"query": query})
        if not isinstance(payload, list):
            logger.warning("Unexpected search payload", query=query, payload_type=type(payload).__name__)
            return []
        return [SearchCandidate.model_validate(item) for item in payload if isinstance(item, dict) and item.get("symbol")]

    async def get_quotes(self, symbols: List[str]) -> List[MarketQuote]:
        if not symbols:
            return []
        payload = await self._request("/quotes", {"symbols": ",".join(symbols)})
        return [MarketQuote.model_validate(item) for item in _quote_items(payload)]

    async def _request(self, path: str, params: dict) -> Any:
        try:
            return await self.breaker.call(lambda: self._fetch_json(path, params))
        except CircuitOpenError as e:
            raise MarketDataError(str(e), error_code="CIRCUIT_OPEN") from e

    async def _fetch_json(self, path: str, params: dict) -> Any:
        """GET ``path`` with retries; raises MarketDataError once every attempt failed."""
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_retries + 1):
            try:
                async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
                    response = await client.get(path, params=params)
                    response.raise_for_status()
                    return response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.warning(
                    "Market data request failed",
                    path=path,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(e),
                    )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay)

        raise MarketDataError(
            f"Market data request {path} failed after {self.max_retries} attempts: {last_error}",
            details={"path": path, "params": params},
            ) from last_error


def _quote_items(payload: Any) -> List[dict]:
    """Quotes come back as a list, or as a dict keyed by symbol depending on the API version."""
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict) and item.get("symbol")]
    if isinstance(payload, dict):
        items = []
        for symbol, item in payload.items():
            if isinstance(item, dict):
                items.append({"symbol": symbol, **item})
        return items
    return []
