"""
File analysis service.

Proposes a column mapping for a sample of an uploaded file and tells the
caller whether it can proceed. Nothing is written.

Steps:
1. Input guards (non-empty sample, payload size) and truncation to the row limit
2. Header row detection when the caller did not say
3. Broker detection and broker mappings
4. Generic header/content/context detection for whatever the broker left
   unmapped (skipped when a broker covered every required field)
5. Ticker validation of the mapped ticker column
6. Score, feedback, readiness and date-format hint

Poor mappings still produce a result; only structurally invalid input
raises AnalysisInputError.
"""
from __future__ import annotations

import json
import time
from typing import List, Optional, Sequence

from folio_import.app.logging_config import bound_import_run, get_logger
from folio_import.app.schemas.analysis import (
    AnalysisResult,
    AnalyzeFileRequest,
    ColumnMapping,
    DetectionMethod,
    REQUIRED_FIELDS,
    TargetField,
    TickerValidationSummary,
    )
from folio_import.app.services.import_pipeline import confidence
from folio_import.app.services.import_pipeline.broker_detector import detect_broker, get_broker_mappings
from folio_import.app.services.import_pipeline.column_detector import cell_text, detect_columns_generic, detect_has_header
from folio_import.app.services.import_pipeline.context import ImportPipelineContext
from folio_import.app.services.import_pipeline.patterns import BROKER_SIGNATURES, get_broker_display_name
from folio_import.app.utils.datetime_utils import detect_date_format

logger = get_logger(__name__)

MAX_INVALID_TICKERS_REPORTED = 10


class AnalysisInputError(Exception):
    """Raised when the sample is structurally unusable (empty, not rows, too large)."""
    pass


def _mapped_column_values(data_rows: Sequence[Sequence], mapping: Optional[ColumnMapping]) -> List[str]:
    if mapping is None:
        return []
    values = (cell_text(row, mapping.source_column).strip() for row in data_rows)
    return [v for v in values if v]


def _date_format_hint(broker: Optional[str], date_mapping: Optional[ColumnMapping], data_rows: Sequence[Sequence]) -> Optional[str]:
    if broker and date_mapping is not None and date_mapping.detection_method == DetectionMethod.BROKER:
        signature = BROKER_SIGNATURES.get(broker)
        if signature is not None and signature.date_format:
            return signature.date_format
    values = _mapped_column_values(data_rows, date_mapping)
    return detect_date_format(values[0]) if values else None


async def analyze_file(request: AnalyzeFileRequest, context: ImportPipelineContext) -> AnalysisResult:
    """
    Analyze a file sample.

    Raises:
        AnalysisInputError: Empty sample or payload above the size limit
    """
    started = time.perf_counter()
    settings = context.settings

    rows = request.sample_data
    if not rows:
        raise AnalysisInputError("sample_data must be a non-empty array of rows")

    payload_size = len(json.dumps(rows, ensure_ascii=False).encode("utf-8"))
    if payload_size > settings.ANALYSIS_MAX_PAYLOAD_BYTES:
        raise AnalysisInputError(
            f"sample_data is too large ({payload_size} bytes, max {settings.ANALYSIS_MAX_PAYLOAD_BYTES})"
            )

    if len(rows) > settings.ANALYSIS_MAX_SAMPLE_ROWS:
        logger.debug("Truncating sample", rows=len(rows), max_rows=settings.ANALYSIS_MAX_SAMPLE_ROWS)
        rows = rows[:settings.ANALYSIS_MAX_SAMPLE_ROWS]

    with bound_import_run("analyze", file_name=request.file_name):
        has_header = request.has_header if request.has_header is not None else detect_has_header(rows)
        headers = rows[0] if has_header else None
        data_rows = rows[1:] if has_header else rows

        broker = detect_broker(headers, request.file_name)
        mappings: List[ColumnMapping] = get_broker_mappings(broker, rows, has_header) if broker else []
        mapped_fields = {m.target_field for m in mappings}

        if not broker or any(field not in mapped_fields for field in REQUIRED_FIELDS):
            mappings = mappings + detect_columns_generic(
                rows,
                has_header,
                claimed_columns={m.source_column for m in mappings},
                claimed_fields=set(mapped_fields),
                )
            mapped_fields = {m.target_field for m in mappings}

        total_columns = max((len(row) for row in rows), default=0)
        mapped_columns = {m.source_column for m in mappings}
        unmapped_columns = [i for i in range(total_columns) if i not in mapped_columns]
        missing = [field for field in REQUIRED_FIELDS if field not in mapped_fields]

        by_field = {}
        for mapping in mappings:
            by_field.setdefault(mapping.target_field, mapping)

        ticker_values = _mapped_column_values(data_rows, by_field.get(TargetField.TICKER))
        if ticker_values:
            validation = await context.ticker_validator.validate(ticker_values)
        else:
            validation = TickerValidationSummary()

        overall = confidence.score(mappings, missing, validation, broker)
        notes = confidence.feedback(mappings, missing, validation, broker)
        readiness = confidence.evaluate_readiness(overall, missing)

        processing_time_ms = int((time.perf_counter() - started) * 1000)
        if processing_time_ms > settings.ANALYSIS_SLOW_WARNING_MS:
            logger.warning("Slow file analysis", processing_time_ms=processing_time_ms, rows=len(rows))

        logger.info(
            "File analyzed",
            broker=broker,
            mappings=len(mappings),
            missing=[f.value for f in missing],
            overall_confidence=overall,
            can_proceed=readiness.can_proceed,
            processing_time_ms=processing_time_ms,
            )

        return AnalysisResult(
            success=True,
            detected_broker=broker,
            detected_broker_name=get_broker_display_name(broker),
            mappings=mappings,
            unmapped_columns=unmapped_columns,
            missing_required_fields=missing,
            overall_confidence=overall,
            warnings=notes.warnings,
            suggestions=notes.suggestions,
            ticker_validation=validation.model_copy(
                update={"invalid_tickers": validation.invalid_tickers[:MAX_INVALID_TICKERS_REPORTED]}
                ),
            readiness=readiness,
            detected_date_format=_date_format_hint(broker, by_field.get(TargetField.DATE), data_rows),
            has_header=has_header,
            total_rows=len(data_rows),
            total_columns=total_columns,
            processing_time_ms=processing_time_ms,
            )
