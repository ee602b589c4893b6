"""
Test the analysis phase end to end (detection, validation, scoring).
"""
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT))

from folio_import.app.config import Settings
from folio_import.app.schemas.analysis import AnalyzeFileRequest, ConfidenceTier, DetectionMethod, TargetField
from folio_import.app.services.import_pipeline.analysis_service import AnalysisInputError, analyze_file
from folio_import.app.services.import_pipeline.context import ImportPipelineContext
from folio_import.test_scripts.fakes import FakeMarketDataClient, equity_quote

HEADER_SAMPLE = [
    ["Ticker", "Type", "Shares", "Price", "Date"],
    ["AAPL", "buy", "10", "150.25", "2024-01-15"],
    ["MSFT", "sell", "5", "380.10", "2024-01-16"],
    ]


def _context(client=None, **settings) -> ImportPipelineContext:
    client = client or FakeMarketDataClient(quotes={"AAPL": equity_quote("AAPL"), "MSFT": equity_quote("MSFT")})
    return ImportPipelineContext(client, settings=Settings(**settings))


class TestAnalyzeFile:

    @pytest.mark.asyncio
    async def test_generic_headers(self):
        """AS-001: Generic header file maps every required field and can proceed."""
        result = await analyze_file(AnalyzeFileRequest(sample_data=HEADER_SAMPLE, file_name="trades.csv"), _context())

        assert result.detected_broker is None
        assert result.has_header is True
        assert {m.target_field for m in result.mappings} >= {
            TargetField.TICKER, TargetField.TYPE, TargetField.AMOUNT, TargetField.PRICE, TargetField.DATE,
            }
        assert result.missing_required_fields == []
        assert result.ticker_validation.valid == 2
        assert result.overall_confidence == 0.86
        assert result.readiness.confidence == ConfidenceTier.HIGH
        assert result.readiness.can_proceed is True
        assert result.detected_date_format == "YYYY-MM-DD"
        assert result.total_rows == 2
        assert result.total_columns == 5
        assert result.unmapped_columns == []

    @pytest.mark.asyncio
    async def test_ibkr_partial_export(self):
        """AS-002: IBKR headers are mapped by the broker table at 0.95."""
        sample = [["Symbol", "T. Price", "Comm/Fee"], ["AAPL", "150.5", "1.0"]]

        result = await analyze_file(AnalyzeFileRequest(sample_data=sample), _context())

        assert result.detected_broker == "interactive_brokers"
        assert result.detected_broker_name == "Interactive Brokers"
        ticker = next(m for m in result.mappings if m.target_field == TargetField.TICKER)
        assert ticker.confidence == pytest.approx(0.95)
        assert ticker.detection_method == DetectionMethod.BROKER
        assert set(result.missing_required_fields) == {TargetField.TYPE, TargetField.AMOUNT, TargetField.DATE}
        assert result.readiness.can_proceed is False
        assert result.readiness.requires_manual_mapping is True

    @pytest.mark.asyncio
    async def test_broker_date_format_hint(self):
        sample = [
            ["Symbol", "Date/Time", "Quantity", "T. Price", "Comm/Fee"],
            ["AAPL", "2024-01-15, 10:30:00", "-5", "150.25", "-1.00"],
            ]

        result = await analyze_file(AnalyzeFileRequest(sample_data=sample), _context())

        assert result.detected_date_format == "YYYY-MM-DD, HH:mm:ss"
        assert result.missing_required_fields == []
        derived = next(m for m in result.mappings if m.target_field == TargetField.TYPE)
        assert derived.derived_from == TargetField.AMOUNT

    @pytest.mark.asyncio
    async def test_market_data_outage_still_analyzes(self):
        """AS-003: Unverified tickers are reported and scored neutral."""
        client = FakeMarketDataClient(fail_quotes=True)

        result = await analyze_file(AnalyzeFileRequest(sample_data=HEADER_SAMPLE), _context(client))

        assert result.success is True
        assert result.ticker_validation.unverified == 2
        assert result.ticker_validation.invalid == 0
        assert any("could not be verified" in w for w in result.warnings)
        assert result.readiness.can_proceed is True

    @pytest.mark.asyncio
    async def test_invalid_ticker_list_is_capped(self):
        rows = [["Ticker", "Type", "Shares", "Price", "Date"]]
        rows += [[f"ZZ{chr(65 + i)}", "buy", "1", "10.5", "2024-01-15"] for i in range(12)]

        result = await analyze_file(AnalyzeFileRequest(sample_data=rows), _context(FakeMarketDataClient()))

        assert result.ticker_validation.invalid == 12
        assert len(result.ticker_validation.invalid_tickers) == 10

    @pytest.mark.asyncio
    async def test_sample_is_truncated(self):
        rows = [HEADER_SAMPLE[0]] + [HEADER_SAMPLE[1]] * 149

        result = await analyze_file(AnalyzeFileRequest(sample_data=rows), _context())

        assert result.total_rows == 99

    @pytest.mark.asyncio
    async def test_explicit_has_header(self):
        rows = [["AAPL", "buy", "100", "2024-01-15", "150.25"]]

        result = await analyze_file(AnalyzeFileRequest(sample_data=rows, has_header=False), _context())

        assert result.has_header is False
        assert result.total_rows == 1

    @pytest.mark.asyncio
    async def test_empty_sample(self):
        """AS-004: Empty samples are rejected."""
        with pytest.raises(AnalysisInputError):
            await analyze_file(AnalyzeFileRequest(sample_data=[]), _context())

    @pytest.mark.asyncio
    async def test_payload_too_large(self):
        with pytest.raises(AnalysisInputError, match="too large"):
            await analyze_file(AnalyzeFileRequest(sample_data=HEADER_SAMPLE), _context(ANALYSIS_MAX_PAYLOAD_BYTES=50))

    def test_cells_are_coerced_to_text(self):
        request = AnalyzeFileRequest(sample_data=[["AAPL", 10, None, 1.5]])
        assert request.sample_data == [["AAPL", "10", "", "1.5"]]
