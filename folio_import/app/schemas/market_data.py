"""
Market data schemas.

Payloads of the finance-query compatible API (``/quotes`` and ``/search``).
Only the fields the import pipeline reads are declared; the rest is ignored.
Both camelCase (API) and snake_case (tests, fakes) names are accepted.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, ConfigDict, field_validator

from folio_import.app.utils.decimal_utils import parse_decimal


class MarketQuote(BaseModel):
    """Quote for one symbol, as returned by ``/quotes?symbols=...``."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    symbol: str
    name: Optional[str] = None
    short_name: Optional[str] = Field(default=None, alias="shortName")
    quote_type: Optional[str] = Field(default=None, alias="quoteType")
    exchange: Optional[str] = None
    currency: Optional[str] = None
    price: Optional[Decimal] = None
    regular_market_price: Optional[Decimal] = Field(default=None, alias="regularMarketPrice")
    sector: Optional[str] = None
    industry: Optional[str] = None
    logo: Optional[str] = None

    @field_validator('price', 'regular_market_price', mode='before')
    @classmethod
    def parse_price(cls, v):
        if v is None:
            return None
        return parse_decimal(v)

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.short_name

    @property
    def last_price(self) -> Optional[Decimal]:
        return self.regular_market_price or self.price


class SearchCandidate(BaseModel):
    """One hit of ``/search?query=...``."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    symbol: str
    name: Optional[str] = None
    shortname: Optional[str] = None
    longname: Optional[str] = None
    exchange: Optional[str] = None
    exch_disp: Optional[str] = Field(default=None, alias="exchDisp")
    quote_type: Optional[str] = Field(default=None, alias="quoteType")
    type_disp: Optional[str] = Field(default=None, alias="typeDisp")
    currency: Optional[str] = None
    logo: Optional[str] = None

    @property
    def display_name(self) -> Optional[str]:
        return self.shortname or self.longname or self.name

    @property
    def market(self) -> str:
        return self.exchange or self.exch_disp or ""
