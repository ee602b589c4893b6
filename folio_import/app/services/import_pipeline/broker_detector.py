"""
Broker format detection.

Recognizes a known broker export from its header row and/or file name and
produces the broker's pre-built column mapping.

Detection order (first hit wins):
1. Unique header: any header no other broker uses, verbatim
2. Header set: >= 80% of one of the broker's typical headers (case-insensitive)
3. File name: broker regexes, case-insensitive (also used when there is no header)
"""
from __future__ import annotations

import re
from typing import List, Optional, Sequence

from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.analysis import (
    BrokerCatalogEntry,
    ColumnMapping,
    DETECTION_CONFIDENCE,
    DetectionMethod,
    MAX_SAMPLE_VALUES_PER_COLUMN,
    TargetField,
    )
from folio_import.app.services.import_pipeline.patterns import (
    BROKER_SIGNATURES,
    BrokerSignature,
    DERIVE_FROM_QUANTITY_SIGN,
    TypeDerivation,
    )

logger = get_logger(__name__)

HEADER_SET_MATCH_RATIO = 0.8

# Derived type mapping is slightly less certain than a direct header mapping
DERIVED_TYPE_CONFIDENCE_FACTOR = 0.9


def detect_broker(headers: Optional[Sequence[str]], file_name: Optional[str]) -> Optional[str]:
    """
    Detect the broker of an export.

    Args:
        headers: First row of the file, or None when the file has no header
        file_name: Original file name (may be empty)

    Returns:
        Broker id (key of BROKER_SIGNATURES) or None for a generic file
    """
    if not headers:
        return detect_by_filename(file_name)

    normalized = [str(h or "").strip() for h in headers]
    lowered = {h.lower() for h in normalized}

    for broker_id, signature in BROKER_SIGNATURES.items():
        if any(unique in normalized for unique in signature.unique_headers):
            logger.debug("Broker detected by unique header", broker=broker_id)
            return broker_id

    for broker_id, signature in BROKER_SIGNATURES.items():
        for expected in signature.header_sets:
            matches = sum(1 for header in expected if header.lower() in lowered)
            if matches >= len(expected) * HEADER_SET_MATCH_RATIO:
                logger.debug("Broker detected by header set", broker=broker_id, matched=matches, expected=len(expected))
                return broker_id

    return detect_by_filename(file_name)


def detect_by_filename(file_name: Optional[str]) -> Optional[str]:
    if not file_name:
        return None

    name = file_name.lower()
    for broker_id, signature in BROKER_SIGNATURES.items():
        for pattern in signature.file_patterns:
            if re.search(pattern, name, re.IGNORECASE):
                logger.debug("Broker detected by file name", broker=broker_id, file_name=file_name)
                return broker_id

    return None


def transformation_for(field: TargetField, signature: BrokerSignature) -> Optional[str]:
    if field == TargetField.TICKER:
        return "uppercase"
    if field == TargetField.DATE:
        return f"parseDate:{signature.date_format or 'auto'}"
    if field in (TargetField.AMOUNT, TargetField.PRICE):
        return "parseNumber"
    if field == TargetField.COMMISSION:
        return "parseNumber:absolute"
    if field == TargetField.TYPE:
        return "normalizeType"
    return None


def get_broker_mappings(broker_id: str, sample_rows: List[List[str]], has_header: bool) -> List[ColumnMapping]:
    """
    Build the column mapping of a detected broker.

    Every header found in the broker table is mapped at broker confidence
    (the first column wins when two headers map to the same field). For
    quantity-sign brokers without an explicit type column, a ``type`` mapping
    derived from the amount column is added.

    Returns:
        Mappings, or an empty list when the broker is unknown or the file has
        no header row
    """
    signature = BROKER_SIGNATURES.get(broker_id)
    if signature is None:
        logger.warning("No mapping table for broker", broker=broker_id)
        return []

    if not has_header or not sample_rows:
        logger.warning("Broker mapping needs a header row", broker=broker_id)
        return []

    headers = sample_rows[0]
    data_rows = sample_rows[1:]
    confidence = DETECTION_CONFIDENCE[DetectionMethod.BROKER]

    mappings: List[ColumnMapping] = []
    mapped_fields = set()

    for column_index, raw_header in enumerate(headers):
        header = str(raw_header or "").strip()
        field = signature.column_mappings.get(header)
        if field is None or field in mapped_fields:
            continue

        samples = [
            str(row[column_index]) if column_index < len(row) and row[column_index] is not None else ""
            for row in data_rows[:MAX_SAMPLE_VALUES_PER_COLUMN]
            ]
        mappings.append(
            ColumnMapping(
                source_column=column_index,
                source_header=header,
                target_field=field,
                confidence=confidence,
                detection_method=DetectionMethod.BROKER,
                sample_values=[value for value in samples if value],
                transformation=transformation_for(field, signature),
                )
            )
        mapped_fields.add(field)

    if TargetField.TYPE not in mapped_fields and signature.type_derivation == TypeDerivation.QUANTITY_SIGN:
        amount = next((m for m in mappings if m.target_field == TargetField.AMOUNT), None)
        if amount is not None:
            mappings.append(
                ColumnMapping(
                    source_column=amount.source_column,
                    source_header=amount.source_header,
                    target_field=TargetField.TYPE,
                    confidence=confidence * DERIVED_TYPE_CONFIDENCE_FACTOR,
                    detection_method=DetectionMethod.BROKER,
                    sample_values=[],
                    transformation=DERIVE_FROM_QUANTITY_SIGN,
                    derived_from=TargetField.AMOUNT,
                    )
                )

    logger.debug("Broker mappings built", broker=broker_id, mappings=len(mappings))
    return mappings


def list_brokers() -> List[BrokerCatalogEntry]:
    """Public catalog of the known broker signatures, in detection order."""
    return [
        BrokerCatalogEntry(
            id=signature.id,
            display_name=signature.display_name,
            type_derivation=signature.type_derivation.value,
            default_currency=signature.default_currency,
            date_format=signature.date_format,
            unique_headers=list(signature.unique_headers),
            header_sets=[list(header_set) for header_set in signature.header_sets],
            )
        for signature in BROKER_SIGNATURES.values()
        ]
