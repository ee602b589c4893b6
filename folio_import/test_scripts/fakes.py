"""
In-memory market data client for tests.

Quotes and search results are plain dicts in the API's own (camelCase)
shape, so the same payloads exercise the schema parsing too.
"""
from typing import Dict, List, Optional

from folio_import.app.schemas.market_data import MarketQuote, SearchCandidate
from folio_import.app.services.market_data import MarketDataClient, MarketDataError


def equity_quote(symbol: str, name: Optional[str] = None, exchange: str = "NMS", price: str = "100") -> dict:
    return {
        "symbol": symbol,
        "name": name or f"{symbol} Inc.",
        "quoteType": "EQUITY",
        "exchange": exchange,
        "currency": "USD",
        "regularMarketPrice": price,
        }


class FakeMarketDataClient(MarketDataClient):
    """
    Args:
        quotes: symbol -> quote payload
        search_results: query -> list of search payloads
        fail_quotes: Raise MarketDataError from get_quotes
        fail_search: Raise MarketDataError from search
    """

    def __init__(
        self,
        quotes: Optional[Dict[str, dict]] = None,
        search_results: Optional[Dict[str, List[dict]]] = None,
        fail_quotes: bool = False,
        fail_search: bool = False,
        ):
        self.quotes = {k.upper(): v for k, v in (quotes or {}).items()}
        self.search_results = {k.upper(): v for k, v in (search_results or {}).items()}
        self.fail_quotes = fail_quotes
        self.fail_search = fail_search
        self.quote_calls: List[List[str]] = []
        self.search_calls: List[str] = []
        self.closed = False

    async def search(self, query: str) -> List[SearchCandidate]:
        self.search_calls.append(query)
        if self.fail_search:
            raise MarketDataError("search unavailable")
        return [SearchCandidate.model_validate(item) for item in self.search_results.get(query.upper(), [])]

    async def get_quotes(self, symbols: List[str]) -> List[MarketQuote]:
        self.quote_calls.append(list(symbols))
        if self.fail_quotes:
            raise MarketDataError("quotes unavailable")
        return [MarketQuote.model_validate(self.quotes[s.upper()]) for s in symbols if s.upper() in self.quotes]

    async def aclose(self) -> None:
        self.closed = True
