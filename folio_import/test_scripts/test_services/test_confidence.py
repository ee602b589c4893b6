"""
Test confidence scoring, feedback and readiness tiers.
"""
import pytest

from folio_import.app.schemas.analysis import (
    ColumnMapping,
    ConfidenceTier,
    DetectionMethod,
    REQUIRED_FIELDS,
    TargetField,
    TickerValidationSummary,
    )
from folio_import.app.services.import_pipeline import confidence


def _mapping(field: TargetField, column: int, value: float = 0.9, method: DetectionMethod = DetectionMethod.HEADER) -> ColumnMapping:
    return ColumnMapping(
        source_column=column,
        source_header=field.value,
        target_field=field,
        confidence=value,
        detection_method=method,
        )


@pytest.fixture
def full_mappings():
    return [_mapping(field, i) for i, field in enumerate(REQUIRED_FIELDS)]


def _validation(total: int, valid: int, invalid: int = 0, unverified: int = 0, suggestions=None) -> TickerValidationSummary:
    return TickerValidationSummary(
        total=total,
        valid=valid,
        invalid=invalid,
        unverified=unverified,
        suggestions=suggestions or {},
        )


class TestTickerValidationScore:

    def test_no_validation_is_neutral(self):
        """CS-001: Missing or empty validation contributes 0.5."""
        assert confidence.ticker_validation_score(None) == 0.5
        assert confidence.ticker_validation_score(_validation(0, 0)) == 0.5

    def test_all_unverified_is_neutral(self):
        """CS-002: A market data outage neither rewards nor sinks the analysis."""
        assert confidence.ticker_validation_score(_validation(4, 0, unverified=4)) == 0.5

    def test_low_valid_ratio_is_halved(self):
        assert confidence.ticker_validation_score(_validation(4, 1, invalid=3)) == pytest.approx(0.125)

    def test_all_valid(self):
        assert confidence.ticker_validation_score(_validation(4, 4)) == pytest.approx(1.0)

    def test_unverified_weighs_neutral(self):
        # 2 verified and valid (1.0 each), 2 unverified (0.5 each)
        assert confidence.ticker_validation_score(_validation(4, 2, unverified=2)) == pytest.approx(0.75)


class TestScore:

    def test_monotonic_in_valid_ratio(self, full_mappings):
        """CS-010: More valid tickers never lower the score."""
        scores = [
            confidence.score(full_mappings, [], _validation(10, valid, invalid=10 - valid), None)
            for valid in range(11)
            ]
        assert scores == sorted(scores)

    def test_header_scenario(self, full_mappings):
        """CS-011: All required fields at 0.9, all tickers valid, no broker -> 0.86."""
        assert confidence.score(full_mappings, [], _validation(2, 2), None) == 0.86

    def test_broker_bonus_is_capped(self):
        mappings = [_mapping(f, i, 0.95, DetectionMethod.BROKER) for i, f in enumerate(REQUIRED_FIELDS)]
        assert confidence.score(mappings, [], _validation(3, 3), "interactive_brokers") == 1.0

    def test_missing_ticker_penalty(self, full_mappings):
        """CS-012: Missing ticker multiplies by 0.3, missing date by 0.5."""
        without_ticker = [m for m in full_mappings if m.target_field != TargetField.TICKER]
        without_date = [m for m in full_mappings if m.target_field != TargetField.DATE]

        base = confidence.score(full_mappings, [], None, None)
        no_ticker = confidence.score(without_ticker, [TargetField.TICKER], None, None)
        no_date = confidence.score(without_date, [TargetField.DATE], None, None)

        assert no_ticker < no_date < base
        assert no_ticker < 0.3

    def test_weak_required_mappings_penalty(self, full_mappings):
        weak = [_mapping(f, i, 0.5) for i, f in enumerate(REQUIRED_FIELDS)]
        assert confidence.score(weak, [], None, None) < confidence.score(full_mappings, [], None, None) * 0.6

    def test_score_is_bounded(self):
        assert confidence.score([], list(REQUIRED_FIELDS), _validation(5, 0, invalid=5), None) >= 0.0

    def test_score_has_two_decimals(self, full_mappings):
        result = confidence.score(full_mappings, [], _validation(3, 2, invalid=1), None)
        assert round(result, 2) == result


class TestFeedback:

    def test_missing_fields_and_suggestions(self):
        result = confidence.feedback(
            [_mapping(TargetField.TICKER, 0)],
            [TargetField.DATE],
            _validation(2, 1, invalid=1, suggestions={"FB": "META"}),
            None,
            )

        assert any("Required fields not mapped: date" in w for w in result.warnings)
        assert any("1 of 2 tickers were not recognized" in w for w in result.warnings)
        assert "Suggested corrections: FB → META" in result.suggestions
        assert any("USD will be assumed" in s for s in result.suggestions)

    def test_unverified_warning(self, full_mappings):
        result = confidence.feedback(full_mappings, [], _validation(3, 0, unverified=3), None)
        assert any("could not be verified" in w for w in result.warnings)

    def test_broker_suggestion(self, full_mappings):
        result = confidence.feedback(full_mappings, [], None, "interactive_brokers")
        assert any(s.startswith("Interactive Brokers format detected") for s in result.suggestions)


class TestReadiness:

    def test_high_confidence_can_proceed(self):
        """CS-020: >= 0.8 is high and can proceed."""
        readiness = confidence.evaluate_readiness(0.85, [])
        assert readiness.confidence == ConfidenceTier.HIGH
        assert readiness.can_proceed is True
        assert readiness.requires_manual_mapping is False

    def test_missing_required_blocks(self):
        """CS-021: A missing required field blocks regardless of the score."""
        readiness = confidence.evaluate_readiness(0.7, [TargetField.DATE])
        assert readiness.confidence == ConfidenceTier.MEDIUM
        assert readiness.can_proceed is False
        assert readiness.requires_manual_mapping is True
        assert readiness.critical_missing_fields == [TargetField.DATE]

    def test_low_confidence_blocks(self):
        readiness = confidence.evaluate_readiness(0.59, [])
        assert readiness.confidence == ConfidenceTier.LOW
        assert readiness.can_proceed is False
        assert readiness.requires_manual_mapping is False

    def test_threshold_is_inclusive(self):
        assert confidence.evaluate_readiness(0.6, []).can_proceed is True
