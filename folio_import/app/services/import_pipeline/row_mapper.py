"""
Row mapper.

Applies an accepted column mapping to the data rows of a file and produces
RawTransactionRow items ready for execution:
- side derived from the quantity sign (deriveFromQuantitySign mappings)
- broker action text ("YOU BOUGHT ...") translated through type patterns
- broker date layouts rewritten as ISO strings
- price derived as |total / amount| when only a total column is mapped

Values that cannot be interpreted are passed through untouched; the
enricher reports them as INVALID_DATA with the right row number.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Sequence

from folio_import.app.db.models import TransactionType
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.analysis import ColumnMapping, TargetField
from folio_import.app.schemas.imports import RawTransactionRow
from folio_import.app.services.import_pipeline.column_detector import cell_text
from folio_import.app.services.import_pipeline.patterns import (
    BROKER_SIGNATURES,
    BrokerSignature,
    DERIVE_FROM_QUANTITY_SIGN,
    )
from folio_import.app.utils.decimal_utils import parse_decimal

logger = get_logger(__name__)

_ROW_FIELDS = (
    TargetField.TICKER,
    TargetField.TYPE,
    TargetField.AMOUNT,
    TargetField.PRICE,
    TargetField.DATE,
    TargetField.CURRENCY,
    TargetField.COMMISSION,
    TargetField.MARKET,
    )


def side_from_quantity(amount: str) -> Optional[str]:
    """'sell' for a negative quantity, 'buy' for a positive one, None otherwise."""
    value = parse_decimal(amount)
    if value is None or value == 0:
        return None
    return TransactionType.SELL.value if value < 0 else TransactionType.BUY.value


def side_from_patterns(text: str, signature: BrokerSignature) -> Optional[str]:
    """
    Translate broker action text with the signature's type patterns.

    Exact (case-insensitive) matches are tried first, then containment with
    the longest pattern first ("YOU BOUGHT" before "BOUGHT").
    """
    lowered = text.strip().lower()
    if not lowered or not signature.type_patterns:
        return None

    for tx_type, patterns in signature.type_patterns.items():
        if any(lowered == pattern.lower() for pattern in patterns):
            return tx_type.value

    candidates = [
        (pattern.lower(), tx_type)
        for tx_type, patterns in signature.type_patterns.items()
        for pattern in patterns
        ]
    for pattern, tx_type in sorted(candidates, key=lambda item: len(item[0]), reverse=True):
        if pattern in lowered:
            return tx_type.value
    return None


def normalize_broker_date(text: str, signature: Optional[BrokerSignature]) -> str:
    """Rewrite a date in the broker's layout as ISO; unparseable values are returned as-is."""
    if not text or signature is None or not signature.strptime_format:
        return text
    try:
        parsed = datetime.strptime(text.strip(), signature.strptime_format)
    except ValueError:
        return text
    if "%H" in signature.strptime_format:
        return parsed.isoformat()
    return parsed.date().isoformat()


def price_from_total(total: str, amount: str) -> Optional[str]:
    total_value = parse_decimal(total)
    amount_value = parse_decimal(amount)
    if total_value is None or not amount_value:
        return None
    try:
        return str(abs(total_value / amount_value))
    except (InvalidOperation, ZeroDivisionError):
        return None


def apply_mapping(
    sample_rows: Sequence[Sequence],
    mappings: Sequence[ColumnMapping],
    has_header: bool,
    broker_id: Optional[str] = None,
    ) -> List[RawTransactionRow]:
    """
    Build RawTransactionRow items from raw rows.

    ``original_row_number`` is the 1-based line of the row in the file
    (the header counts as line 1). Blank rows are skipped.
    """
    signature = BROKER_SIGNATURES.get(broker_id) if broker_id else None
    first_line = 2 if has_header else 1
    data_rows = sample_rows[1:] if has_header else sample_rows

    by_field: Dict[TargetField, ColumnMapping] = {}
    for mapping in mappings:
        by_field.setdefault(mapping.target_field, mapping)

    rows: List[RawTransactionRow] = []
    for offset, raw in enumerate(data_rows):
        if not any(cell_text(raw, i).strip() for i in range(len(raw))):
            continue

        values: Dict[str, Optional[str]] = {}
        for field in _ROW_FIELDS:
            mapping = by_field.get(field)
            if mapping is None:
                continue
            text = cell_text(raw, mapping.source_column).strip()
            values[field.value] = text or None

        amount = values.get(TargetField.AMOUNT.value) or ""

        type_mapping = by_field.get(TargetField.TYPE)
        if type_mapping is not None and type_mapping.transformation == DERIVE_FROM_QUANTITY_SIGN:
            values[TargetField.TYPE.value] = side_from_quantity(amount)
        elif signature is not None and values.get(TargetField.TYPE.value):
            derived = side_from_patterns(values[TargetField.TYPE.value], signature)
            if derived:
                values[TargetField.TYPE.value] = derived

        if values.get(TargetField.DATE.value):
            values[TargetField.DATE.value] = normalize_broker_date(values[TargetField.DATE.value], signature)

        total_mapping = by_field.get(TargetField.TOTAL)
        if TargetField.PRICE not in by_field and total_mapping is not None:
            values[TargetField.PRICE.value] = price_from_total(cell_text(raw, total_mapping.source_column), amount)

        rows.append(RawTransactionRow(original_row_number=first_line + offset, **values))

    logger.debug("Mapping applied", rows=len(rows), broker=broker_id, fields=[f.value for f in by_field])
    return rows
