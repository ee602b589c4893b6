"""
Test asset resolution: reuse, creation from market data, and failures.
"""
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from cachetools import TTLCache
from sqlalchemy.ext.asyncio import AsyncSession

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT))

from folio_import.app.db.models import AssetType
from folio_import.app.schemas.imports import RawTransactionRow
from folio_import.app.services.import_pipeline.asset_resolver import AssetResolver, find_first_buy, infer_currency
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository
from folio_import.test_scripts.fakes import FakeMarketDataClient, equity_quote
from folio_import.test_scripts.test_db_config import create_test_account, create_test_asset, create_test_engine


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


def _resolver(session, client) -> AssetResolver:
    return AssetResolver(LedgerRepository(session), client, TTLCache(maxsize=100, ttl=60))


def _rows(ticker: str = "AAPL"):
    return [
        RawTransactionRow(ticker=ticker, type="buy", amount="5", price="170", date="2024-03-01", original_row_number=1),
        RawTransactionRow(ticker=ticker, type="buy", amount="10", price="150", date="2024-01-15", original_row_number=2),
        RawTransactionRow(ticker=ticker, type="sell", amount="2", price="140", date="2024-01-01", original_row_number=3),
        ]


def test_find_first_buy_is_earliest_buy():
    """AR-001: The sell on Jan 1st is ignored; the earliest buy wins."""
    first = find_first_buy(_rows())
    assert first.original_row_number == 2


def test_find_first_buy_without_buys():
    assert find_first_buy([RawTransactionRow(ticker="AAPL", type="sell")]) is None


@pytest.mark.parametrize("market,expected", [("NMS", "USD"), ("lse", "GBP"), ("BVC", "COP"), ("XXX", None), (None, None)])
def test_infer_currency(market, expected):
    assert infer_currency(market) == expected


class TestAssetResolver:

    @pytest.mark.asyncio
    async def test_existing_asset_is_reused(self, session, account):
        """AR-010: An active asset with the same ticker is reused, no API call."""
        asset = await create_test_asset(session, account, "AAPL")
        client = FakeMarketDataClient()

        result = await _resolver(session, client).resolve({"AAPL": _rows()}, account.id, account.user_id, True)

        info = result.asset_map["AAPL"]
        assert info.id == asset.id
        assert info.is_new is False
        assert result.created == []
        assert client.search_calls == []

    @pytest.mark.asyncio
    async def test_inactive_asset_is_not_reused(self, session, account):
        old = await create_test_asset(session, account, "AAPL", is_active=False)
        client = FakeMarketDataClient(search_results={"AAPL": [{"symbol": "AAPL", "shortname": "Apple Inc.", "exchange": "NMS", "quoteType": "EQUITY"}]})

        result = await _resolver(session, client).resolve({"AAPL": _rows()}, account.id, account.user_id, True)

        assert result.asset_map["AAPL"].id != old.id
        assert result.asset_map["AAPL"].is_new is True

    @pytest.mark.asyncio
    async def test_missing_asset_is_created_from_search(self, session, account):
        """AR-011: Creation uses the first buy's date and price as acquisition data."""
        client = FakeMarketDataClient(search_results={
            "AAPL": [
                {"symbol": "AAPL.MX", "shortname": "Apple (Mexico)", "exchange": "MEX"},
                {"symbol": "AAPL", "shortname": "Apple Inc.", "exchange": "NMS", "quoteType": "EQUITY"},
                ],
            })

        result = await _resolver(session, client).resolve({"AAPL": _rows()}, account.id, account.user_id, True)

        info = result.asset_map["AAPL"]
        assert info.is_new is True
        assert result.created == [info.id]
        assert info.currency == "USD"
        assert info.market == "NMS"

        asset = await LedgerRepository(session).get_asset(info.id)
        assert asset.company == "Apple Inc."
        assert asset.acquisition_date == date(2024, 1, 15)
        assert asset.unit_value == Decimal("150")
        assert asset.units == Decimal("0")
        assert asset.is_active is True

    @pytest.mark.asyncio
    async def test_quote_fallback_when_search_is_empty(self, session, account):
        client = FakeMarketDataClient(quotes={"VOO": {"symbol": "VOO", "quoteType": "ETF", "exchange": "PCX", "currency": "USD"}})

        result = await _resolver(session, client).resolve({"VOO": _rows("VOO")}, account.id, account.user_id, True)

        assert result.asset_map["VOO"].asset_type == AssetType.ETF

    @pytest.mark.asyncio
    async def test_market_decides_currency(self, session, account):
        client = FakeMarketDataClient(search_results={"VOD": [{"symbol": "VOD", "shortname": "Vodafone", "exchange": "LSE", "currency": "USD"}]})

        result = await _resolver(session, client).resolve({"VOD": _rows("VOD")}, account.id, account.user_id, True)

        assert result.asset_map["VOD"].currency == "GBP"

    @pytest.mark.asyncio
    async def test_create_missing_disabled(self, session, account):
        """AR-012: Unknown ticker with creation disabled is a per-ticker error."""
        result = await _resolver(session, FakeMarketDataClient()).resolve(
            {"AAPL": _rows()}, account.id, account.user_id, False,
            )

        assert result.asset_map == {}
        assert "create_missing_assets is disabled" in result.errors["AAPL"]

    @pytest.mark.asyncio
    async def test_unknown_ticker(self, session, account):
        result = await _resolver(session, FakeMarketDataClient()).resolve(
            {"ZZZZ": _rows("ZZZZ")}, account.id, account.user_id, True,
            )

        assert result.errors == {"ZZZZ": "Unable to get market data for ticker: ZZZZ"}

    @pytest.mark.asyncio
    async def test_market_data_outage_is_per_ticker(self, session, account):
        """AR-013: A lookup failure fails the ticker, not the whole resolution."""
        await create_test_asset(session, account, "MSFT")
        client = FakeMarketDataClient(fail_search=True, fail_quotes=True)

        result = await _resolver(session, client).resolve(
            {"AAPL": _rows(), "MSFT": _rows("MSFT")}, account.id, account.user_id, True,
            )

        assert "AAPL" in result.errors
        assert "MSFT" in result.asset_map

    @pytest.mark.asyncio
    async def test_ticker_info_is_cached(self, session):
        client = FakeMarketDataClient(quotes={"AAPL": equity_quote("AAPL")})
        resolver = _resolver(session, client)

        first = await resolver.get_ticker_info("AAPL")
        second = await resolver.get_ticker_info("AAPL")

        assert first == second
        assert len(client.search_calls) == 1
        assert len(client.quote_calls) == 1

    @pytest.mark.asyncio
    async def test_failed_lookup_is_not_cached(self, session):
        client = FakeMarketDataClient(fail_search=True)
        resolver = _resolver(session, client)

        assert await resolver.get_ticker_info("AAPL") is None
        assert "AAPL" not in resolver.ticker_cache
