"""
Import execution service.

Runs a batch of mapped rows through the pipeline for one portfolio
account:

    verify account -> number rows -> resolve assets -> enrich
        -> skip duplicates -> write chunks + replay aggregates

Per-row problems are collected in the response (never raised). Only a
structurally invalid request (ImportRequestError) or a missing / foreign /
inactive account (AccountAccessError) aborts the call.
"""
from __future__ import annotations

import time
from collections import OrderedDict
from typing import Dict, List

from sqlalchemy.ext.asyncio import AsyncSession

from folio_import.app.db.models import PortfolioAccount
from folio_import.app.logging_config import bound_import_run, get_logger
from folio_import.app.schemas.imports import (
    AccountRead,
    CreateAccountRequest,
    ImportBatchRequest,
    ImportBatchResponse,
    ImportErrorCode,
    ImportRowError,
    ImportSummary,
    RawTransactionRow,
    RecalculateAssetsResponse,
    )
from folio_import.app.services.import_pipeline.asset_resolver import AssetResolver
from folio_import.app.services.import_pipeline.batch_writer import BatchWriter
from folio_import.app.services.import_pipeline.context import ImportPipelineContext
from folio_import.app.services.import_pipeline.duplicate_detector import DuplicateDetector
from folio_import.app.services.import_pipeline.enricher import TransactionEnricher
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository
from folio_import.app.services.import_pipeline.ticker_validator import normalize_ticker

logger = get_logger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ImportRequestError(Exception):
    """Raised when the batch itself is unusable (empty or above the size limit)."""
    pass


class AccountAccessError(Exception):
    """Base class for account verification failures."""
    pass


class AccountNotFoundError(AccountAccessError):
    pass


class AccountForbiddenError(AccountAccessError):
    """The account belongs to another user or is inactive."""
    pass


# =============================================================================
# HELPERS
# =============================================================================

async def verify_account(repository: LedgerRepository, account_id: int, user_id: str) -> PortfolioAccount:
    account = await repository.get_account(account_id)
    if account is None:
        raise AccountNotFoundError(f"Portfolio account {account_id} not found")
    if account.user_id != user_id:
        raise AccountForbiddenError(f"Portfolio account {account_id} does not belong to the current user")
    if not account.is_active:
        raise AccountForbiddenError(f"Portfolio account {account_id} is inactive")
    return account


def number_rows(rows: List[RawTransactionRow]) -> List[RawTransactionRow]:
    """Give every row without an original_row_number its 1-based batch position."""
    return [
        row if row.original_row_number else row.model_copy(update={"original_row_number": index})
        for index, row in enumerate(rows, start=1)
        ]


def group_by_ticker(rows: List[RawTransactionRow]) -> Dict[str, List[RawTransactionRow]]:
    grouped: Dict[str, List[RawTransactionRow]] = OrderedDict()
    for row in rows:
        ticker = normalize_ticker(row.ticker)
        if ticker:
            grouped.setdefault(ticker, []).append(row)
    return grouped


# =============================================================================
# ENTRY POINTS
# =============================================================================

async def execute_import(
    session: AsyncSession,
    context: ImportPipelineContext,
    request: ImportBatchRequest,
    user_id: str,
    ) -> ImportBatchResponse:
    """
    Import a batch of mapped rows into a portfolio account.

    Raises:
        ImportRequestError: Empty batch or more rows than allowed
        AccountAccessError: Account missing, foreign or inactive
    """
    started = time.perf_counter()
    settings = context.settings
    options = request.options

    if not request.transactions:
        raise ImportRequestError("transactions must be a non-empty array")
    if len(request.transactions) > settings.IMPORT_MAX_BATCH_TRANSACTIONS:
        raise ImportRequestError(
            f"Too many transactions: {len(request.transactions)} (max {settings.IMPORT_MAX_BATCH_TRANSACTIONS})"
            )

    with bound_import_run("execute", portfolio_account_id=request.portfolio_account_id, user_id=user_id):
        repository = LedgerRepository(session)
        account = await verify_account(repository, request.portfolio_account_id, user_id)
        default_currency = options.default_currency or account.default_currency or settings.DEFAULT_CURRENCY

        rows = number_rows(request.transactions)
        errors: List[ImportRowError] = []

        for row in rows:
            if not normalize_ticker(row.ticker):
                errors.append(ImportRowError(
                    row_number=row.original_row_number,
                    ticker="UNKNOWN",
                    code=ImportErrorCode.INVALID_DATA,
                    message="Missing ticker",
                    ))

        grouped = group_by_ticker(rows)
        logger.info("Import started", rows=len(rows), tickers=len(grouped), default_currency=default_currency)

        # 1. Assets
        resolver = AssetResolver(repository, context.client, context.ticker_cache)
        resolution = await resolver.resolve(grouped, account.id, user_id, options.create_missing_assets)

        for ticker, message in resolution.errors.items():
            for row in grouped.get(ticker, []):
                errors.append(ImportRowError(
                    row_number=row.original_row_number,
                    ticker=ticker,
                    code=ImportErrorCode.ASSET_NOT_FOUND,
                    message=message,
                    ))

        resolvable = [
            row for ticker, ticker_rows in grouped.items()
            if ticker in resolution.asset_map
            for row in ticker_rows
            ]
        resolvable.sort(key=lambda row: row.original_row_number)

        # 2. Enrichment
        enrichment = await TransactionEnricher(context.fx).enrich(
            resolvable, resolution.asset_map, account.id, user_id, default_currency,
            )
        errors.extend(enrichment.errors)

        # 3. Duplicates
        to_write = enrichment.data
        duplicates = []
        if options.skip_duplicates:
            check = await DuplicateDetector(repository).detect(enrichment.data)
            to_write = check.unique
            duplicates = check.duplicates
            for dup in duplicates:
                errors.append(ImportRowError(
                    row_number=dup.original_row_number,
                    ticker=dup.asset_name,
                    code=ImportErrorCode.DUPLICATE_DETECTED,
                    message=f"Duplicate transaction skipped: {dup.asset_name} {dup.date.date().isoformat()} {dup.type.value}",
                    ))

        # 4. Write
        written = await BatchWriter(repository, settings.LEDGER_WRITE_CHUNK_SIZE).write(to_write)
        errors.extend(written.errors)

        errors.sort(key=lambda e: e.row_number)
        fatal = [e for e in errors if e.is_fatal]
        processing_time_ms = int((time.perf_counter() - started) * 1000)

        response = ImportBatchResponse(
            success=not fatal,
            summary=ImportSummary(
                total_processed=len(rows),
                imported=len(written.transaction_ids),
                skipped=len(duplicates),
                errors=len(fatal),
                ),
            assets_created=resolution.created,
            assets_updated=written.assets_updated,
            errors=errors,
            imported_transaction_ids=written.transaction_ids,
            processing_time_ms=processing_time_ms,
            portfolio_account_id=account.id,
            )

        logger.info(
            "Import finished",
            imported=response.summary.imported,
            skipped=response.summary.skipped,
            errors=response.summary.errors,
            assets_created=len(response.assets_created),
            processing_time_ms=processing_time_ms,
            )
        return response


async def recalculate_assets(
    session: AsyncSession,
    portfolio_account_id: int,
    user_id: str,
    ) -> RecalculateAssetsResponse:
    """
    Replay the history of every asset of an account and store the aggregates.

    Repairs aggregates left stale by an import interrupted between the write
    and the aggregate steps.

    Raises:
        AccountAccessError: Account missing, foreign or inactive
    """
    repository = LedgerRepository(session)
    account = await verify_account(repository, portfolio_account_id, user_id)
    writer = BatchWriter(repository)

    response = RecalculateAssetsResponse(portfolio_account_id=account.id)
    for asset in await repository.list_account_assets(account.id):
        recalculation = await writer.recalculate_asset(asset.id)
        if recalculation is not None:
            response.assets.append(recalculation)

    logger.info("Account assets recalculated", portfolio_account_id=account.id, assets=len(response.assets))
    return response


async def create_account(session: AsyncSession, user_id: str, request: CreateAccountRequest) -> AccountRead:
    account = await LedgerRepository(session).create_account(user_id, request.name, request.default_currency)
    logger.info("Portfolio account created", portfolio_account_id=account.id, user_id=user_id)
    return AccountRead.model_validate(account)
