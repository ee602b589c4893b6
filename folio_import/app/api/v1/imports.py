"""
Import API endpoints for FolioImport.

Provides the two phases of a transaction import plus support endpoints:
- POST /imports/analyze: Propose a column mapping for a file sample
- POST /imports/execute: Import mapped rows into a portfolio account
- POST /imports/accounts/{id}/assets/recalculate: Replay asset aggregates
- GET /imports/brokers: Known broker formats
- POST /imports/accounts: Create a portfolio account

The caller identifies itself with the X-User-Id header (authentication is
handled upstream).
"""
from typing import List

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from folio_import.app.db.session import get_session
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.analysis import AnalysisResult, AnalyzeFileRequest, BrokerCatalogEntry
from folio_import.app.schemas.imports import (
    AccountRead,
    CreateAccountRequest,
    ImportBatchRequest,
    ImportBatchResponse,
    RecalculateAssetsResponse,
    )
from folio_import.app.services.import_pipeline.analysis_service import AnalysisInputError, analyze_file
from folio_import.app.services.import_pipeline.broker_detector import list_brokers
from folio_import.app.services.import_pipeline.context import ImportPipelineContext
from folio_import.app.services.import_pipeline.import_service import (
    AccountForbiddenError,
    AccountNotFoundError,
    ImportRequestError,
    create_account,
    execute_import,
    recalculate_assets,
    )

logger = get_logger(__name__)

import_router = APIRouter(prefix="/imports", tags=["imports"])


def get_pipeline_context(request: Request) -> ImportPipelineContext:
    """Fresh pipeline context (own caches) around the application's market data client."""
    return ImportPipelineContext(request.app.state.market_client)


# =============================================================================
# ANALYSIS
# =============================================================================

@import_router.post("/analyze", response_model=AnalysisResult)
async def analyze(
    payload: AnalyzeFileRequest,
    context: ImportPipelineContext = Depends(get_pipeline_context),
    ) -> AnalysisResult:
    """
    Analyze a file sample and propose a column mapping.

    Always answers 200 with readiness and warnings, even for poor mappings.

    Raises:
        HTTPException 400: Empty sample or payload too large
    """
    try:
        return await analyze_file(payload, context)
    except AnalysisInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error("Error analyzing file", file_name=payload.file_name, error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@import_router.get("/brokers", response_model=List[BrokerCatalogEntry])
async def get_brokers() -> List[BrokerCatalogEntry]:
    """List the broker export formats recognized by the analysis."""
    return list_brokers()


# =============================================================================
# EXECUTION
# =============================================================================

@import_router.post("/execute", response_model=ImportBatchResponse)
async def execute(
    payload: ImportBatchRequest,
    x_user_id: str = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_session),
    context: ImportPipelineContext = Depends(get_pipeline_context),
    ) -> ImportBatchResponse:
    """
    Import mapped rows into a portfolio account.

    Per-row problems are returned in ``errors``; they never fail the call.

    Raises:
        HTTPException 400: Empty or oversized batch
        HTTPException 403: Account belongs to another user or is inactive
        HTTPException 404: Account not found
    """
    try:
        return await execute_import(session, context, payload, x_user_id)
    except ImportRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccountForbiddenError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        logger.error(
            "Error importing transactions",
            portfolio_account_id=payload.portfolio_account_id,
            error=str(e),
            exc_info=True,
            )
        raise HTTPException(status_code=500, detail=f"Import failed: {e}")


@import_router.post("/accounts/{account_id}/assets/recalculate", response_model=RecalculateAssetsResponse)
async def recalculate_account_assets(
    account_id: int,
    x_user_id: str = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_session),
    ) -> RecalculateAssetsResponse:
    """Rebuild units, unit value and active flag of every asset from its transactions."""
    try:
        return await recalculate_assets(session, account_id, x_user_id)
    except AccountNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccountForbiddenError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except Exception as e:
        logger.error("Error recalculating assets", portfolio_account_id=account_id, error=str(e), exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# ACCOUNTS
# =============================================================================

@import_router.post("/accounts", response_model=AccountRead, status_code=201)
async def create_portfolio_account(
    payload: CreateAccountRequest,
    x_user_id: str = Header(..., alias="X-User-Id"),
    session: AsyncSession = Depends(get_session),
    ) -> AccountRead:
    return await create_account(session, x_user_id, payload)
