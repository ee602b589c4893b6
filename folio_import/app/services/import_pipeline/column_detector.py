"""
Generic column detection.

Infers which raw column holds which trading field for files that match no
known broker. Three phases run in cascade, each one only looking at the
columns and fields no earlier phase (or the caller) has claimed:

1. Header  (0.9)          header text against HEADER_PATTERNS
2. Content (0.7 x ratio)  >= 70% of up to 20 sample values match a pattern
3. Context (0.5)          relaxed structural tests, required fields only

Every phase is a pure function; ``detect_columns_generic`` composes them
and owns the exclusion sets.
"""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.analysis import (
    ColumnMapping,
    DETECTION_CONFIDENCE,
    DetectionMethod,
    MAX_SAMPLE_VALUES_PER_COLUMN,
    REQUIRED_FIELDS,
    TargetField,
    )
from folio_import.app.services.import_pipeline.patterns import (
    BUY_SYNONYMS,
    DATE_VALUE_PATTERNS,
    HEADER_PATTERNS,
    NUMBER_VALUE_PATTERN,
    SELL_SYNONYMS,
    TICKER_VALUE_PATTERN,
    TRANSFORMATION_HINTS,
    )
from folio_import.app.utils.currency_utils import is_iso_currency

logger = get_logger(__name__)

CONTENT_SAMPLE_ROWS = 20
CONTEXT_SAMPLE_ROWS = 10
CONTENT_MATCH_THRESHOLD = 0.7


# =============================================================================
# CELL HELPERS
# =============================================================================

def cell_text(row: Sequence, index: int) -> str:
    """Cell as string ('' for missing/None)."""
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index])


def column_label(headers: Optional[Sequence], index: int) -> str:
    if headers is not None:
        header = cell_text(headers, index).strip()
        if header:
            return header
    return f"Column {index + 1}"


def parse_leading_number(value: str) -> Optional[float]:
    """
    Leading numeric prefix of a cell, ignoring ',' and '$' ("12abc" -> 12.0).

    Returns None when the text does not start with a number.
    """
    text = re.sub(r"[,$]", "", value).strip()
    match = re.match(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?", text)
    if not match:
        return None
    return float(match.group(0))


def _column_values(rows: Sequence[Sequence], index: int, limit: int) -> List[str]:
    values = (cell_text(row, index).strip() for row in rows[:limit])
    return [v for v in values if v]


# =============================================================================
# HEADER DETECTION
# =============================================================================

def detect_has_header(rows: Sequence[Sequence]) -> bool:
    """
    Guess whether the first row is a header.

    True when every cell of the first row is non-numeric text and at least
    one cell of the second row starts with a number.
    """
    if len(rows) < 2:
        return False

    first_all_text = all(
        cell_text(rows[0], i).strip() and parse_leading_number(cell_text(rows[0], i)) is None
        for i in range(len(rows[0]))
        )
    second_has_number = any(
        parse_leading_number(cell_text(rows[1], i)) is not None
        for i in range(len(rows[1]))
        )
    return first_all_text and second_has_number


def match_header(header: str) -> Optional[TargetField]:
    """First field (in HEADER_PATTERNS order) whose patterns match the header."""
    for field, patterns in HEADER_PATTERNS.items():
        for pattern in patterns:
            if re.search(pattern, header, re.IGNORECASE):
                return field
    return None


def detect_by_headers(headers: Sequence, data_rows: Sequence[Sequence]) -> List[ColumnMapping]:
    """One candidate mapping per recognizable header, in column order."""
    mappings = []

    for index in range(len(headers)):
        header = cell_text(headers, index).strip()
        if not header:
            continue

        field = match_header(header)
        if field is None:
            continue

        samples = [cell_text(row, index) for row in data_rows[:MAX_SAMPLE_VALUES_PER_COLUMN]]
        mappings.append(
            ColumnMapping(
                source_column=index,
                source_header=header,
                target_field=field,
                confidence=DETECTION_CONFIDENCE[DetectionMethod.HEADER],
                detection_method=DetectionMethod.HEADER,
                sample_values=[s for s in samples if s],
                transformation=TRANSFORMATION_HINTS.get(field),
                )
            )

    return mappings


# =============================================================================
# CONTENT DETECTION
# =============================================================================

class ContentCandidate(BaseModel):
    field: TargetField
    confidence: float = Field(..., ge=0.0, le=1.0)
    detected_format: Optional[str] = None


def _date_format_of(value: str) -> Optional[str]:
    for name, pattern in DATE_VALUE_PATTERNS.items():
        if re.match(pattern, value):
            return name
    return None


def analyze_numeric_column(values: Sequence[str]) -> Optional[Tuple[TargetField, float]]:
    """
    Tell amount, price and commission apart in a numeric column.

    Heuristics:
    - commission: all >= 0, max < 100 and mean < 20
    - amount: mostly integers (> 70%), unless large decimals
    - price: decimals, all >= 0, mean > 1
    - otherwise amount at low confidence
    """
    numbers = [n for n in (parse_leading_number(v) for v in values) if n is not None]
    if not numbers:
        return None

    largest = max(numbers)
    mean = sum(numbers) / len(numbers)
    has_decimals = any(not n.is_integer() for n in numbers)
    all_positive = all(n >= 0 for n in numbers)

    if all_positive and largest < 100 and mean < 20:
        return TargetField.COMMISSION, 0.6

    if not has_decimals or largest < 10000:
        integers = sum(1 for n in numbers if n.is_integer())
        if integers / len(numbers) > 0.7:
            return TargetField.AMOUNT, 0.6

    if has_decimals and all_positive and mean > 1:
        return TargetField.PRICE, 0.5

    return TargetField.AMOUNT, 0.4


def analyze_column_content(values: Sequence[str]) -> List[ContentCandidate]:
    """
    Fields the values look like, most specific first.

    Order: type, date, currency, ticker, numeric. Side words ("Buy") and
    ISO codes ("USD") also fit the ticker shape, so they are tried before it.
    """
    if not values:
        return []

    total = len(values)
    type_hits = date_hits = currency_hits = ticker_hits = number_hits = 0
    date_format = None

    for value in values:
        if value.lower() in BUY_SYNONYMS or value.lower() in SELL_SYNONYMS:
            type_hits += 1

        fmt = _date_format_of(value)
        if fmt:
            date_hits += 1
            date_format = fmt

        if is_iso_currency(value.upper()) and value.isalpha():
            currency_hits += 1

        if re.match(TICKER_VALUE_PATTERN, value.upper()):
            ticker_hits += 1

        if re.match(NUMBER_VALUE_PATTERN, re.sub(r"[,$]", "", value)):
            number_hits += 1

    candidates = []
    for field, hits, fmt in (
        (TargetField.TYPE, type_hits, None),
        (TargetField.DATE, date_hits, date_format),
        (TargetField.CURRENCY, currency_hits, None),
        (TargetField.TICKER, ticker_hits, None),
        ):
        ratio = hits / total
        if ratio >= CONTENT_MATCH_THRESHOLD:
            candidates.append(ContentCandidate(field=field, confidence=ratio, detected_format=fmt))

    if number_hits / total >= CONTENT_MATCH_THRESHOLD:
        numeric = analyze_numeric_column(values)
        if numeric:
            candidates.append(ContentCandidate(field=numeric[0], confidence=numeric[1]))

    return candidates


def detect_by_content(
    index: int,
    header: str,
    values: Sequence[str],
    excluded_fields: Set[TargetField],
    ) -> Optional[ColumnMapping]:
    for candidate in analyze_column_content(values):
        if candidate.field in excluded_fields:
            continue
        return ColumnMapping(
            source_column=index,
            source_header=header,
            target_field=candidate.field,
            confidence=DETECTION_CONFIDENCE[DetectionMethod.CONTENT] * candidate.confidence,
            detection_method=DetectionMethod.CONTENT,
            sample_values=list(values[:MAX_SAMPLE_VALUES_PER_COLUMN]),
            transformation=TRANSFORMATION_HINTS.get(candidate.field),
            detected_format=candidate.detected_format,
            )
    return None


# =============================================================================
# CONTEXT DETECTION
# =============================================================================

def context_matches(field: TargetField, values: Sequence[str]) -> bool:
    """Relaxed structural test of a column for one required field."""
    if field == TargetField.TICKER:
        return all(len(v) <= 6 and re.match(r"^[A-Za-z]+", v) for v in values)
    if field == TargetField.TYPE:
        return len({v.lower() for v in values}) == 2
    if field == TargetField.DATE:
        return all(("/" in v or "-" in v) and len(v) >= 8 for v in values)
    if field in (TargetField.AMOUNT, TargetField.PRICE):
        return all(parse_leading_number(v) is not None for v in values)
    return False


def detect_by_context(
    field: TargetField,
    headers: Optional[Sequence],
    data_rows: Sequence[Sequence],
    candidate_columns: Iterable[int],
    ) -> Optional[ColumnMapping]:
    for index in candidate_columns:
        values = _column_values(data_rows, index, CONTEXT_SAMPLE_ROWS)
        if not values or not context_matches(field, values):
            continue
        return ColumnMapping(
            source_column=index,
            source_header=column_label(headers, index),
            target_field=field,
            confidence=DETECTION_CONFIDENCE[DetectionMethod.CONTEXT],
            detection_method=DetectionMethod.CONTEXT,
            sample_values=values[:MAX_SAMPLE_VALUES_PER_COLUMN],
            transformation=TRANSFORMATION_HINTS.get(field),
            )
    return None


# =============================================================================
# COORDINATOR
# =============================================================================

def detect_columns_generic(
    sample_rows: Sequence[Sequence],
    has_header: bool,
    claimed_columns: Optional[Set[int]] = None,
    claimed_fields: Optional[Set[TargetField]] = None,
    ) -> List[ColumnMapping]:
    """
    Run header, content and context phases over a sample.

    Args:
        sample_rows: Rows of the sample (header row included when has_header)
        has_header: Whether the first row is a header
        claimed_columns: Columns already mapped by the caller (e.g. broker)
        claimed_fields: Fields already mapped by the caller

    Returns:
        New mappings only; never one for a claimed column or field
    """
    if not sample_rows:
        return []

    headers = sample_rows[0] if has_header else None
    data_rows = sample_rows[1:] if has_header else sample_rows
    column_count = len(sample_rows[0])

    mapped_columns: Set[int] = set(claimed_columns or ())
    mapped_fields: Set[TargetField] = set(claimed_fields or ())
    mappings: List[ColumnMapping] = []

    def _claim(mapping: ColumnMapping) -> None:
        mappings.append(mapping)
        mapped_columns.add(mapping.source_column)
        mapped_fields.add(mapping.target_field)

    # Phase 1: headers
    if headers is not None:
        for mapping in detect_by_headers(headers, data_rows):
            if mapping.source_column in mapped_columns or mapping.target_field in mapped_fields:
                continue
            _claim(mapping)

    # Phase 2: content of the columns still free
    for index in range(column_count):
        if index in mapped_columns:
            continue
        values = _column_values(data_rows, index, CONTENT_SAMPLE_ROWS)
        if not values:
            continue
        mapping = detect_by_content(index, column_label(headers, index), values, mapped_fields)
        if mapping:
            _claim(mapping)

    # Phase 3: context, only for required fields still missing
    for field in REQUIRED_FIELDS:
        if field in mapped_fields:
            continue
        free_columns = [i for i in range(column_count) if i not in mapped_columns]
        if not free_columns:
            break
        mapping = detect_by_context(field, headers, data_rows, free_columns)
        if mapping:
            _claim(mapping)

    logger.debug(
        "Generic column detection finished",
        columns=column_count,
        mapped=len(mappings),
        fields=[m.target_field.value for m in mappings],
        )
    return mappings
