"""
Test import execution end to end against a SQLite ledger.
"""
import sys
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT))

from folio_import.app.config import Settings
from folio_import.app.schemas.imports import (
    CreateAccountRequest,
    ImportBatchRequest,
    ImportErrorCode,
    ImportOptions,
    RawTransactionRow,
    )
from folio_import.app.services.import_pipeline.context import ImportPipelineContext
from folio_import.app.services.import_pipeline.import_service import (
    AccountForbiddenError,
    AccountNotFoundError,
    ImportRequestError,
    create_account,
    execute_import,
    recalculate_assets,
    )
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository
from folio_import.test_scripts.fakes import FakeMarketDataClient
from folio_import.test_scripts.test_db_config import create_test_account, create_test_engine

AAPL_SEARCH = {"AAPL": [{"symbol": "AAPL", "shortname": "Apple Inc.", "exchange": "NMS", "quoteType": "EQUITY"}]}


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = await create_test_engine(tmp_path)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def account(session):
    return await create_test_account(session)


def _context(client=None, **settings) -> ImportPipelineContext:
    return ImportPipelineContext(client or FakeMarketDataClient(search_results=AAPL_SEARCH), settings=Settings(**settings))


def _ledger_rows():
    return [
        RawTransactionRow(ticker="AAPL", type="buy", amount="10", price="150", date="2024-01-15"),
        RawTransactionRow(ticker="AAPL", type="buy", amount="10", price="150", date="2024-01-16"),
        RawTransactionRow(ticker="AAPL", type="sell", amount="5", price="200", date="2024-01-17"),
        ]


class TestExecuteImport:

    @pytest.mark.asyncio
    async def test_happy_path(self, session, account):
        """IS-001: Three rows create the asset and leave 15 units at 150."""
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=_ledger_rows())

        response = await execute_import(session, _context(), request, account.user_id)

        assert response.success is True
        assert response.summary.total_processed == 3
        assert response.summary.imported == 3
        assert response.summary.skipped == 0
        assert response.summary.errors == 0
        assert len(response.assets_created) == 1
        assert response.errors == []

        asset = await LedgerRepository(session).get_asset(response.assets_created[0])
        await session.refresh(asset)
        assert asset.units == Decimal("15")
        assert asset.unit_value == Decimal("150")
        assert asset.is_active is True

    @pytest.mark.asyncio
    async def test_reimport_skips_every_row(self, session, account):
        """IS-002: Importing the same batch twice writes nothing the second time."""
        context = _context()
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=_ledger_rows())
        first = await execute_import(session, context, request, account.user_id)

        second = await execute_import(session, context, request, account.user_id)

        assert second.success is True
        assert second.summary.imported == 0
        assert second.summary.skipped == 3
        assert second.summary.errors == 0
        assert [e.code for e in second.errors] == [ImportErrorCode.DUPLICATE_DETECTED] * 3
        assert second.errors[0].message == "Duplicate transaction skipped: AAPL 2024-01-15 buy"
        assert second.assets_created == []

        asset = await LedgerRepository(session).get_asset(first.assets_created[0])
        await session.refresh(asset)
        assert asset.units == Decimal("15")

    @pytest.mark.asyncio
    async def test_duplicates_kept_when_check_disabled(self, session, account):
        context = _context()
        rows = _ledger_rows()[:1]
        await execute_import(session, context, ImportBatchRequest(portfolio_account_id=account.id, transactions=rows), account.user_id)

        response = await execute_import(
            session,
            context,
            ImportBatchRequest(portfolio_account_id=account.id, transactions=rows, options=ImportOptions(skip_duplicates=False)),
            account.user_id,
            )

        assert response.summary.imported == 1
        assert response.summary.skipped == 0

    @pytest.mark.asyncio
    async def test_missing_assets_without_creation(self, session, account):
        """IS-003: Unknown tickers fail per row when asset creation is disabled."""
        request = ImportBatchRequest(
            portfolio_account_id=account.id,
            transactions=_ledger_rows(),
            options=ImportOptions(create_missing_assets=False),
            )

        response = await execute_import(session, _context(), request, account.user_id)

        assert response.success is False
        assert response.summary.imported == 0
        assert response.summary.errors == 3
        assert [(e.row_number, e.code) for e in response.errors] == [
            (1, ImportErrorCode.ASSET_NOT_FOUND),
            (2, ImportErrorCode.ASSET_NOT_FOUND),
            (3, ImportErrorCode.ASSET_NOT_FOUND),
            ]

    @pytest.mark.asyncio
    async def test_missing_ticker_is_invalid_data(self, session, account):
        rows = _ledger_rows()[:1] + [RawTransactionRow(ticker="  ", type="buy", amount="1", price="1", date="2024-01-15")]
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=rows)

        response = await execute_import(session, _context(), request, account.user_id)

        assert response.success is False
        assert response.summary.imported == 1
        error = response.errors[0]
        assert (error.row_number, error.ticker, error.code) == (2, "UNKNOWN", ImportErrorCode.INVALID_DATA)

    @pytest.mark.asyncio
    async def test_amount_below_ledger_precision_fails_its_row_only(self, session, account):
        """IS-005: A row whose amount truncates to zero is INVALID_DATA; the rest of its chunk is written."""
        rows = [
            RawTransactionRow(ticker="AAPL", type="buy", amount="1", price="100", date=f"2024-01-{day}")
            for day in (10, 11, 12, 13)
            ]
        rows.insert(2, RawTransactionRow(ticker="AAPL", type="buy", amount="0.00000001", price="100", date="2024-01-14"))
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=rows)

        response = await execute_import(session, _context(), request, account.user_id)

        assert response.success is False
        assert response.summary.imported == 4
        assert response.summary.errors == 1
        assert [(e.row_number, e.code) for e in response.errors] == [(3, ImportErrorCode.INVALID_DATA)]

        asset = await LedgerRepository(session).get_asset(response.assets_created[0])
        await session.refresh(asset)
        assert asset.units == Decimal("4")

    @pytest.mark.asyncio
    async def test_original_row_numbers_are_kept(self, session, account):
        rows = [RawTransactionRow(ticker="AAPL", type="hold", amount="1", price="1", date="2024-01-15", original_row_number=42)]
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=rows)

        response = await execute_import(session, _context(), request, account.user_id)

        assert [e.row_number for e in response.errors] == [42]
        assert response.errors[0].code == ImportErrorCode.INVALID_DATA

    @pytest.mark.asyncio
    async def test_foreign_currency_account_gets_rate(self, session):
        """IS-004: A EUR account stores the USD->EUR rate of the trade date."""
        account = await create_test_account(session, default_currency="EUR")
        client = FakeMarketDataClient(
            search_results=AAPL_SEARCH,
            quotes={"EUR=X": {"symbol": "EUR=X", "regularMarketPrice": "0.9"}},
            )
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=_ledger_rows()[:1])

        response = await execute_import(session, _context(client), request, account.user_id)

        assert response.summary.imported == 1
        history = await LedgerRepository(session).list_asset_history(response.assets_created[0])
        assert history[0].dollar_price_to_date == Decimal("0.9")
        assert history[0].default_currency_for_acquisition_dollar == "EUR"


class TestRequestGuards:

    @pytest.mark.asyncio
    async def test_empty_batch(self, session, account):
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=[])
        with pytest.raises(ImportRequestError):
            await execute_import(session, _context(), request, account.user_id)

    @pytest.mark.asyncio
    async def test_batch_above_limit(self, session, account):
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=_ledger_rows())
        with pytest.raises(ImportRequestError, match="Too many transactions"):
            await execute_import(session, _context(IMPORT_MAX_BATCH_TRANSACTIONS=2), request, account.user_id)

    @pytest.mark.asyncio
    async def test_foreign_account(self, session, account):
        """IS-010: Another user's account is forbidden."""
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=_ledger_rows())
        with pytest.raises(AccountForbiddenError):
            await execute_import(session, _context(), request, "someone-else")

    @pytest.mark.asyncio
    async def test_missing_account(self, session):
        request = ImportBatchRequest(portfolio_account_id=999, transactions=_ledger_rows())
        with pytest.raises(AccountNotFoundError):
            await execute_import(session, _context(), request, "user-1")

    @pytest.mark.asyncio
    async def test_inactive_account(self, session):
        account = await create_test_account(session, is_active=False)
        request = ImportBatchRequest(portfolio_account_id=account.id, transactions=_ledger_rows())
        with pytest.raises(AccountForbiddenError, match="inactive"):
            await execute_import(session, _context(), request, account.user_id)


class TestAccountMaintenance:

    @pytest.mark.asyncio
    async def test_recalculate_repairs_aggregates(self, session, account):
        """IS-020: Replaying the ledger fixes tampered aggregates."""
        response = await execute_import(
            session, _context(), ImportBatchRequest(portfolio_account_id=account.id, transactions=_ledger_rows()), account.user_id,
            )
        repository = LedgerRepository(session)
        asset = await repository.get_asset(response.assets_created[0])
        await repository.save_asset_aggregates(asset, Decimal("999"), Decimal("1"), True)

        result = await recalculate_assets(session, account.id, account.user_id)

        assert result.portfolio_account_id == account.id
        assert len(result.assets) == 1
        assert result.assets[0].units == Decimal("15")
        assert result.assets[0].unit_value == Decimal("150")
        assert result.assets[0].transactions_replayed == 3

    @pytest.mark.asyncio
    async def test_recalculate_checks_ownership(self, session, account):
        with pytest.raises(AccountForbiddenError):
            await recalculate_assets(session, account.id, "someone-else")

    @pytest.mark.asyncio
    async def test_create_account(self, session):
        created = await create_account(session, "user-9", CreateAccountRequest(name="Broker A", default_currency="EUR"))

        assert created.id is not None
        assert created.user_id == "user-9"
        assert created.default_currency == "EUR"
        assert created.is_active is True
