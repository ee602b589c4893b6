"""
Confidence scoring for an analysis.

Overall score (0..1) = weighted sum of four components, plus a bonus when a
known broker was detected, then penalties for critical gaps:

    required fields coverage  0.40  (coverage blended 70/30 with avg confidence)
    mapping confidence        0.30  (required fields weigh double)
    ticker validation         0.20  (valid ratio, halved below 50%)
    broker detected           0.10  (+0.05 bonus)

Penalties: x0.3 without ticker, x0.5 without date, -10% per weak required
mapping, and a proportional cut when more than 30% of tickers are invalid.
"""
from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Sequence

from folio_import.app.schemas.analysis import (
    AnalysisFeedback,
    ColumnMapping,
    ConfidenceTier,
    Readiness,
    REQUIRED_FIELDS,
    TargetField,
    TickerValidationSummary,
    )
from folio_import.app.services.import_pipeline.patterns import get_broker_display_name
from folio_import.app.utils.decimal_utils import round_half_up

WEIGHT_REQUIRED_FIELDS = 0.40
WEIGHT_MAPPING_CONFIDENCE = 0.30
WEIGHT_TICKER_VALIDATION = 0.20
WEIGHT_BROKER_DETECTION = 0.10

BROKER_DETECTION_BONUS = 0.05

MIN_ACCEPTABLE_CONFIDENCE = 0.6
HIGH_CONFIDENCE = 0.8

NEUTRAL_TICKER_SCORE = 0.5
MAX_SUGGESTIONS_IN_FEEDBACK = 3


# =============================================================================
# COMPONENT SCORES
# =============================================================================

def required_fields_score(mappings: Sequence[ColumnMapping], missing: Sequence[TargetField]) -> float:
    score = (len(REQUIRED_FIELDS) - len(missing)) / len(REQUIRED_FIELDS)

    required = [m for m in mappings if m.target_field in REQUIRED_FIELDS]
    if required:
        average = sum(m.confidence for m in required) / len(required)
        score = score * 0.7 + average * 0.3

    return score


def mapping_confidence_score(mappings: Sequence[ColumnMapping]) -> float:
    if not mappings:
        return 0.0

    weighted_sum = 0.0
    total_weight = 0
    for mapping in mappings:
        weight = 2 if mapping.target_field in REQUIRED_FIELDS else 1
        weighted_sum += mapping.confidence * weight
        total_weight += weight

    return weighted_sum / total_weight


def ticker_validation_score(validation: Optional[TickerValidationSummary]) -> float:
    """
    Score of the ticker validation outcome.

    Only verified tickers count towards the valid ratio; unverified ones
    (lookup failed) contribute the neutral 0.5, so an outage of the market
    data API neither rewards nor sinks the analysis.
    """
    if validation is None or validation.total == 0:
        return NEUTRAL_TICKER_SCORE

    verified = validation.total - validation.unverified
    if verified <= 0:
        return NEUTRAL_TICKER_SCORE

    valid_ratio = validation.valid / verified
    valid_score = valid_ratio * 0.5 if valid_ratio < 0.5 else valid_ratio

    return (valid_score * verified + NEUTRAL_TICKER_SCORE * validation.unverified) / validation.total


def apply_penalties(
    score: float,
    mappings: Sequence[ColumnMapping],
    missing: Sequence[TargetField],
    validation: Optional[TickerValidationSummary],
    ) -> float:
    if TargetField.TICKER in missing:
        score *= 0.3
    if TargetField.DATE in missing:
        score *= 0.5

    weak_required = [
        m for m in mappings
        if m.target_field in REQUIRED_FIELDS and m.confidence < MIN_ACCEPTABLE_CONFIDENCE
        ]
    if weak_required:
        score *= (1 - 0.1 * len(weak_required))

    if validation is not None and validation.total > 0:
        invalid_ratio = validation.invalid / validation.total
        if invalid_ratio > 0.3:
            score *= (1 - invalid_ratio * 0.3)

    return max(0.0, score)


# =============================================================================
# PUBLIC API
# =============================================================================

def score(
    mappings: Sequence[ColumnMapping],
    missing: Sequence[TargetField],
    validation: Optional[TickerValidationSummary],
    broker: Optional[str],
    ) -> float:
    """Overall confidence, rounded half-up to 2 decimals."""
    overall = (
        required_fields_score(mappings, missing) * WEIGHT_REQUIRED_FIELDS
        + mapping_confidence_score(mappings) * WEIGHT_MAPPING_CONFIDENCE
        + ticker_validation_score(validation) * WEIGHT_TICKER_VALIDATION
        + (1.0 if broker else 0.0) * WEIGHT_BROKER_DETECTION
        )

    if broker:
        overall = min(1.0, overall + BROKER_DETECTION_BONUS)

    overall = apply_penalties(overall, mappings, missing, validation)
    overall = min(1.0, overall)
    return float(round_half_up(Decimal(str(overall)), 2))


def feedback(
    mappings: Sequence[ColumnMapping],
    missing: Sequence[TargetField],
    validation: Optional[TickerValidationSummary],
    broker: Optional[str],
    ) -> AnalysisFeedback:
    """Operator-facing warnings and suggestions for an analysis."""
    warnings: List[str] = []
    suggestions: List[str] = []

    if missing:
        warnings.append(f"Required fields not mapped: {', '.join(f.value for f in missing)}")
        for field in missing:
            suggestions.append(f"Assign the column for '{field.value}' manually")

    weak = [m for m in mappings if m.confidence < MIN_ACCEPTABLE_CONFIDENCE]
    if weak:
        warnings.append(
            f"{len(weak)} mapping(s) with low confidence: {', '.join(m.target_field.value for m in weak)}"
            )
        suggestions.append("Review the low-confidence mappings before continuing")

    if validation is not None and validation.invalid > 0:
        warnings.append(f"{validation.invalid} of {validation.total} tickers were not recognized")
        if validation.suggestions:
            corrections = list(validation.suggestions.items())[:MAX_SUGGESTIONS_IN_FEEDBACK]
            suggestions.append(
                "Suggested corrections: " + ", ".join(f"{bad} → {good}" for bad, good in corrections)
                )

    if validation is not None and validation.unverified > 0:
        warnings.append(
            f"{validation.unverified} of {validation.total} tickers could not be verified (market data unavailable)"
            )

    mapped_fields = {m.target_field for m in mappings}
    if TargetField.CURRENCY not in mapped_fields:
        suggestions.append("No currency column detected. USD will be assumed for every transaction.")
    if TargetField.COMMISSION not in mapped_fields:
        suggestions.append("No commission column detected. A $0 commission will be assumed per transaction.")

    if broker:
        suggestions.append(
            f"{get_broker_display_name(broker)} format detected. Mappings were optimized automatically."
            )

    return AnalysisFeedback(warnings=warnings, suggestions=suggestions)


def evaluate_readiness(overall_confidence: float, missing: Sequence[TargetField]) -> Readiness:
    critical = [f for f in missing if f in REQUIRED_FIELDS]

    if overall_confidence >= HIGH_CONFIDENCE:
        tier = ConfidenceTier.HIGH
    elif overall_confidence >= MIN_ACCEPTABLE_CONFIDENCE:
        tier = ConfidenceTier.MEDIUM
    else:
        tier = ConfidenceTier.LOW

    return Readiness(
        can_proceed=not critical and overall_confidence >= MIN_ACCEPTABLE_CONFIDENCE,
        requires_manual_mapping=bool(critical),
        confidence=tier,
        critical_missing_fields=critical,
        )
