"""
Transaction import pipeline.

Analysis (read-only):
    broker_detector -> column_detector -> ticker_validator -> confidence

Execution:
    asset_resolver -> enricher -> duplicate_detector -> batch_writer

analysis_service / import_service are the entry points used by the API and
the CLI; row_mapper turns an accepted mapping into execution rows.
"""
from folio_import.app.services.import_pipeline.analysis_service import AnalysisInputError, analyze_file
from folio_import.app.services.import_pipeline.context import ImportPipelineContext
from folio_import.app.services.import_pipeline.import_service import (
    AccountAccessError,
    AccountForbiddenError,
    AccountNotFoundError,
    ImportRequestError,
    create_account,
    execute_import,
    recalculate_assets,
    )
from folio_import.app.services.import_pipeline.row_mapper import apply_mapping

__all__ = [
    "ImportPipelineContext",
    "AnalysisInputError",
    "analyze_file",
    "ImportRequestError",
    "AccountAccessError",
    "AccountNotFoundError",
    "AccountForbiddenError",
    "execute_import",
    "recalculate_assets",
    "create_account",
    "apply_mapping",
    ]
