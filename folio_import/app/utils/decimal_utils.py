"""
Decimal utilities for FolioImport.

Broker exports carry numbers as loosely formatted text ("1,234.50", "$150",
"(12.5)"). This module turns them into Decimal, and keeps stored values
aligned with the NUMERIC(precision, scale) columns of the ledger tables.

Usage:
    from folio_import.app.utils.decimal_utils import parse_decimal, truncate_to_db_precision

    parse_decimal("1,234.56")                                   # Decimal("1234.56")
    truncate_to_db_precision(Decimal("1.1234567"), Transaction, "amount")  # Decimal("1.123456")
"""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional, Tuple, Type, Union

from sqlalchemy import Numeric
from sqlmodel import SQLModel

NumberLike = Union[str, int, float, Decimal, None]


def parse_decimal(value: NumberLike) -> Optional[Decimal]:
    """
    Parse a number from the formats found in broker exports.

    Handles:
    - Plain numbers: 123.45, -5
    - Thousands separators: 1,234.56
    - Parentheses as negative: (123.45) -> -123.45
    - Currency symbols and spaces: $ 1,000

    Args:
        value: Raw cell value

    Returns:
        Decimal, or None when empty or not a finite number
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        # str() keeps the shortest repr (150.5 instead of 150.49999...)
        parsed = Decimal(str(value))
        return parsed if parsed.is_finite() else None

    text = str(value).strip()
    for symbol in ("$", "€", "£", " ", " "):
        text = text.replace(symbol, "")

    if text.startswith("(") and text.endswith(")"):
        text = "-" + text[1:-1]

    text = text.replace(",", "")
    if not text:
        return None

    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None

    return parsed if parsed.is_finite() else None


def round_half_up(value: Decimal, places: int) -> Decimal:
    """Round like a calculator (0.005 -> 0.01), unlike Python's banker's rounding."""
    return value.quantize(Decimal(10) ** -places, rounding=ROUND_HALF_UP)


def format_compact(value: Decimal, places: int) -> str:
    """
    Round to ``places`` decimals and render without trailing zeros or exponent.

    Example:
        >>> format_compact(Decimal("150.50"), 2)
        '150.5'
        >>> format_compact(Decimal("10.0000"), 4)
        '10'
    """
    rounded = round_half_up(value, places).normalize()
    if rounded == 0:
        return "0"
    return f"{rounded:f}"


def get_model_column_precision(model: Type[SQLModel], column_name: str) -> Tuple[int, int]:
    """
    Get (precision, scale) for a numeric column from SQLModel.

    Args:
        model: SQLModel class (e.g., Transaction, Asset)
        column_name: Column name (e.g., "amount", "unit_value")

    Returns:
        Tuple of (precision, scale)

    Raises:
        ValueError: If column not found or not a Numeric type
    """
    if not hasattr(model, '__table__'):
        raise ValueError(f"Model {model.__name__} has no __table__ attribute")

    table = model.__table__

    if column_name not in table.columns:
        raise ValueError(f"Column '{column_name}' not found in {model.__name__}")

    column_type = table.columns[column_name].type

    if not isinstance(column_type, Numeric):
        raise ValueError(
            f"Column '{column_name}' in {model.__name__} is not Numeric type "
            f"(found: {type(column_type).__name__})"
            )

    if column_type.precision is None or column_type.scale is None:
        raise ValueError(f"Column '{column_name}' in {model.__name__} has undefined precision/scale")

    return column_type.precision, column_type.scale


def truncate_to_db_precision(value: Decimal, model: Type[SQLModel], column_name: str) -> Decimal:
    """
    Truncate decimal to match database column precision.

    Uses ROUND_DOWN to match SQLite truncation, so the value kept in memory
    is exactly what a read-back returns.

    Example:
        >>> truncate_to_db_precision(Decimal("175.123456789"), Transaction, "price")
        Decimal("175.123456")
    """
    _, scale = get_model_column_precision(model, column_name)
    return value.quantize(Decimal(10) ** -scale, rounding=ROUND_DOWN)
