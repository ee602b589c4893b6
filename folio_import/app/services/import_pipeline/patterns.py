"""
Pattern catalog for the import pipeline.

Static, read-only tables:
- HEADER_PATTERNS: header regexes per target field (priority = dict order)
- CONTENT patterns: value regexes used by the content phase
- BROKER_SIGNATURES: known broker export formats, keyed by broker id
- Lookup tables: quote type -> asset type, market -> currency, ticker typos

Adding a broker is a data change: append a BrokerSignature to
BROKER_SIGNATURES, no detector code is touched.
"""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from folio_import.app.db.models import AssetType, TransactionType
from folio_import.app.schemas.analysis import TargetField

# =============================================================================
# HEADER PATTERNS
# =============================================================================

# Field -> regexes tried with re.IGNORECASE. For each column the first field
# (in this order) with a matching pattern wins.
HEADER_PATTERNS: Dict[TargetField, List[str]] = {
    TargetField.TICKER: [
        r"^(symbol|ticker|stock|asset|símbolo|simbolo|activo|instrumento|security)$",
        r"\b(symbol|ticker|stock)\b",
        ],
    TargetField.TYPE: [
        r"^(type|action|operation|side|tipo|operación|operacion|acción|accion)$",
        r"\b(buy.?sell|action|type)\b",
        ],
    TargetField.AMOUNT: [
        r"^(quantity|qty|shares|units|amount|cantidad|unidades|acciones)$",
        r"\b(quantity|shares|units)\b",
        ],
    TargetField.PRICE: [
        r"^(price|cost|valor|precio|unit.?price|t\.?\s*price|trade.?price)$",
        r"\b(price|cost|valor)\b",
        ],
    TargetField.DATE: [
        r"^(date|fecha|trade.?date|settlement|fecha.?operación|execution.?date)$",
        r"\bdate\b",
        ],
    TargetField.CURRENCY: [
        r"^(currency|ccy|curr|moneda|divisa)$",
        r"\bcurrency\b",
        ],
    TargetField.COMMISSION: [
        r"^(commission|fee|comm|comisión|comision|fees|comm.?fee)$",
        r"\b(commission|fee)\b",
        ],
    TargetField.MARKET: [
        r"^(market|exchange|mercado|bolsa)$",
        ],
    TargetField.TOTAL: [
        r"^(total|amount|net.?amount|proceeds|importe|monto)$",
        ],
    }

# =============================================================================
# CONTENT PATTERNS
# =============================================================================

# 1-5 uppercase letters, optional class/exchange suffix (BRK.B, SAN.MC)
TICKER_VALUE_PATTERN = r"^[A-Z]{1,5}(\.[A-Z]{1,2})?$"

NUMBER_VALUE_PATTERN = r"^-?[\d,]+\.?\d*$"

# Name -> regex, tried in order; the name is reported as detected_format
DATE_VALUE_PATTERNS: Dict[str, str] = {
    "iso": r"^\d{4}-\d{2}-\d{2}$",
    "slash": r"^\d{1,2}/\d{1,2}/\d{4}$",
    "dash": r"^\d{1,2}-\d{1,2}-\d{4}$",
    "textMonth": r"^[A-Z][a-z]{2}\s+\d{1,2},?\s+\d{4}$",
    "dateTime": r"^\d{4}-\d{2}-\d{2}[T\s]\d{2}:\d{2}",
    "brokerDateTime": r"^\d{4}-\d{2}-\d{2},\s*\d{2}:\d{2}",
    }

# Bilingual (EN/ES) trade side synonyms, compared lowercased
BUY_SYNONYMS = frozenset({"buy", "b", "compra", "c", "bot", "bought", "open", "long"})
SELL_SYNONYMS = frozenset({"sell", "s", "venta", "v", "sld", "sold", "close", "short"})

# Hint stored on generic mappings
TRANSFORMATION_HINTS: Dict[TargetField, str] = {
    TargetField.TICKER: "uppercase",
    TargetField.TYPE: "normalizeType",
    TargetField.AMOUNT: "parseNumber",
    TargetField.PRICE: "parseNumber",
    TargetField.DATE: "parseDate:auto",
    TargetField.CURRENCY: "uppercase",
    TargetField.COMMISSION: "parseNumber:absolute",
    }

DERIVE_FROM_QUANTITY_SIGN = "deriveFromQuantitySign"

# =============================================================================
# BROKER SIGNATURES
# =============================================================================


class TypeDerivation(str, Enum):
    EXPLICIT_COLUMN = "explicit_column"
    QUANTITY_SIGN = "quantity_sign"


class BrokerSignature(BaseModel):
    """
    Export format of one broker.

    - header_sets: typical header rows; 80% of one set present = match
    - unique_headers: headers no other broker uses (verbatim match wins)
    - file_patterns: filename regexes, matched case-insensitively
    - column_mappings: exact header -> target field
    - type_patterns: broker action text -> side (e.g. "YOU BOUGHT")
    - date_format: layout of the date column (strptime twin in strptime_format)
    """
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    header_sets: List[List[str]]
    unique_headers: List[str] = Field(default_factory=list)
    file_patterns: List[str] = Field(default_factory=list)
    column_mappings: Dict[str, TargetField]
    type_derivation: TypeDerivation = TypeDerivation.EXPLICIT_COLUMN
    type_patterns: Dict[TransactionType, List[str]] = Field(default_factory=dict)
    default_currency: Optional[str] = "USD"
    date_format: Optional[str] = None
    strptime_format: Optional[str] = None


_SIGNATURES: List[BrokerSignature] = [
    BrokerSignature(
        id="interactive_brokers",
        display_name="Interactive Brokers",
        header_sets=[
            ["Symbol", "Date/Time", "Quantity", "T. Price", "Comm/Fee"],
            ["Symbol", "TradeDate", "Quantity", "TradePrice", "Commission"],
            ["Símbolo", "Fecha/Hora", "Cantidad", "Precio T.", "Comisión"],
            ],
        unique_headers=["T. Price", "Comm/Fee", "Realized P/L", "MTM P/L"],
        file_patterns=[r"ibkr", r"interactive.?brokers", r"flex.?query", r"statement_"],
        column_mappings={
            "Symbol": TargetField.TICKER,
            "Date/Time": TargetField.DATE,
            "TradeDate": TargetField.DATE,
            "Quantity": TargetField.AMOUNT,
            "T. Price": TargetField.PRICE,
            "TradePrice": TargetField.PRICE,
            "Comm/Fee": TargetField.COMMISSION,
            "Commission": TargetField.COMMISSION,
            "Currency": TargetField.CURRENCY,
            "Exchange": TargetField.MARKET,
            "Símbolo": TargetField.TICKER,
            "Fecha/Hora": TargetField.DATE,
            "Cantidad": TargetField.AMOUNT,
            "Precio T.": TargetField.PRICE,
            "Comisión": TargetField.COMMISSION,
            },
        type_derivation=TypeDerivation.QUANTITY_SIGN,
        date_format="YYYY-MM-DD, HH:mm:ss",
        strptime_format="%Y-%m-%d, %H:%M:%S",
        ),
    BrokerSignature(
        id="td_ameritrade",
        display_name="TD Ameritrade",
        header_sets=[
            ["Symbol", "Trade Date", "Quantity", "Price", "Commission"],
            ["SYMBOL", "TRADE DATE", "QTY", "PRICE", "COMMISSION"],
            ],
        unique_headers=["REG FEE", "SHORT-TERM RDM FEE"],
        file_patterns=[r"td.?ameritrade", r"tda", r"schwab"],
        column_mappings={
            "Symbol": TargetField.TICKER,
            "SYMBOL": TargetField.TICKER,
            "Trade Date": TargetField.DATE,
            "TRADE DATE": TargetField.DATE,
            "Quantity": TargetField.AMOUNT,
            "QTY": TargetField.AMOUNT,
            "Price": TargetField.PRICE,
            "PRICE": TargetField.PRICE,
            "Commission": TargetField.COMMISSION,
            "COMMISSION": TargetField.COMMISSION,
            "Action": TargetField.TYPE,
            },
        type_patterns={
            TransactionType.BUY: ["Bought", "BUY", "BOUGHT"],
            TransactionType.SELL: ["Sold", "SELL", "SOLD"],
            },
        date_format="MM/DD/YYYY",
        strptime_format="%m/%d/%Y",
        ),
    BrokerSignature(
        id="fidelity",
        display_name="Fidelity",
        header_sets=[
            ["Symbol", "Action", "Quantity", "Price", "Settlement Date"],
            ["Symbol", "Security Description", "Action", "Quantity", "Price"],
            ],
        unique_headers=["Security Description", "Settlement Date", "Account Name"],
        file_patterns=[r"fidelity", r"brokerage"],
        column_mappings={
            "Symbol": TargetField.TICKER,
            "Action": TargetField.TYPE,
            "Quantity": TargetField.AMOUNT,
            "Price": TargetField.PRICE,
            "Settlement Date": TargetField.DATE,
            "Commission": TargetField.COMMISSION,
            },
        type_patterns={
            TransactionType.BUY: ["YOU BOUGHT", "BOUGHT", "BUY"],
            TransactionType.SELL: ["YOU SOLD", "SOLD", "SELL"],
            },
        date_format="MM/DD/YYYY",
        strptime_format="%m/%d/%Y",
        ),
    BrokerSignature(
        id="etoro",
        display_name="eToro",
        header_sets=[
            ["Position ID", "Action", "Amount", "Units", "Open Rate", "Close Rate"],
            ["Asset", "Action", "Amount", "Units", "Rate"],
            ],
        unique_headers=["Position ID", "Open Rate", "Close Rate", "Profit"],
        file_patterns=[r"etoro"],
        column_mappings={
            "Asset": TargetField.TICKER,
            "Action": TargetField.TYPE,
            "Amount": TargetField.TOTAL,
            "Units": TargetField.AMOUNT,
            "Open Rate": TargetField.PRICE,
            "Rate": TargetField.PRICE,
            "Open Date": TargetField.DATE,
            },
        type_patterns={
            TransactionType.BUY: ["Buy", "Open", "Long"],
            TransactionType.SELL: ["Sell", "Close", "Short"],
            },
        date_format="DD/MM/YYYY HH:mm:ss",
        strptime_format="%d/%m/%Y %H:%M:%S",
        ),
    BrokerSignature(
        id="charles_schwab",
        display_name="Charles Schwab",
        header_sets=[
            ["Symbol", "Action", "Quantity", "Price", "Date"],
            ["Symbol", "Description", "Action", "Qty", "Price", "Fees & Comm"],
            ],
        unique_headers=["Fees & Comm", "Account Number"],
        file_patterns=[r"schwab"],
        column_mappings={
            "Symbol": TargetField.TICKER,
            "Action": TargetField.TYPE,
            "Quantity": TargetField.AMOUNT,
            "Qty": TargetField.AMOUNT,
            "Price": TargetField.PRICE,
            "Date": TargetField.DATE,
            "Fees & Comm": TargetField.COMMISSION,
            },
        type_patterns={
            TransactionType.BUY: ["Buy", "Bought"],
            TransactionType.SELL: ["Sell", "Sold"],
            },
        date_format="MM/DD/YYYY",
        strptime_format="%m/%d/%Y",
        ),
    BrokerSignature(
        id="robinhood",
        display_name="Robinhood",
        header_sets=[
            ["Instrument", "Activity Date", "Quantity", "Average Price"],
            ],
        unique_headers=["Instrument", "Activity Date", "Average Price"],
        file_patterns=[r"robinhood"],
        column_mappings={
            "Instrument": TargetField.TICKER,
            "Activity Date": TargetField.DATE,
            "Quantity": TargetField.AMOUNT,
            "Average Price": TargetField.PRICE,
            "Trans Code": TargetField.TYPE,
            },
        type_patterns={
            TransactionType.BUY: ["Buy", "BUY"],
            TransactionType.SELL: ["Sell", "SLL"],
            },
        date_format="YYYY-MM-DD",
        strptime_format="%Y-%m-%d",
        ),
    ]

# Detection order follows insertion order
BROKER_SIGNATURES: Dict[str, BrokerSignature] = {sig.id: sig for sig in _SIGNATURES}


def get_broker_display_name(broker_id: Optional[str]) -> Optional[str]:
    if broker_id is None:
        return None
    signature = BROKER_SIGNATURES.get(broker_id)
    return signature.display_name if signature else broker_id


# =============================================================================
# LOOKUP TABLES
# =============================================================================

QUOTE_TYPE_MAPPING: Dict[str, AssetType] = {
    "EQUITY": AssetType.STOCK,
    "ETF": AssetType.ETF,
    "MUTUALFUND": AssetType.ETF,
    "CRYPTOCURRENCY": AssetType.CRYPTO,
    "CURRENCY": AssetType.CRYPTO,
    }

# Exchange code -> trading currency
MARKET_CURRENCY_MAP: Dict[str, str] = {
    "NMS": "USD",  # NASDAQ
    "NYQ": "USD",  # NYSE
    "NASDAQ": "USD",
    "NYSE": "USD",
    "NYSEARCA": "USD",
    "AMEX": "USD",
    "LSE": "GBP",
    "LON": "GBP",
    "FRA": "EUR",
    "PAR": "EUR",
    "TYO": "JPY",
    "HKG": "HKD",
    "BVC": "COP",  # Colombia
    }

# Frequent wrong/retired symbols -> current symbol
TYPO_CORRECTIONS: Dict[str, str] = {
    "GOOG": "GOOGL",
    "FB": "META",
    "BRKB": "BRK-B",
    "BRKA": "BRK-A",
    }
