"""
Test chunked ledger writes and asset aggregate maintenance.
"""
import sys
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

PROJECT_ROOT = Path(__file__).resolve().parents[3]
sys.path.insert(0, str(PROJECT_ROOT))

from folio_import.app.db.models import Asset, AssetType, TransactionType
from folio_import.app.schemas.imports import AssetLedgerUpdate, ImportErrorCode
from folio_import.app.services.import_pipeline.batch_writer import (
    BatchWriter,
    apply_ledger_update,
    calculate_asset_updates,
    settle_position,
    split_into_chunks,
    )
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository
from folio_import.test_scripts.test_db_config import (
    create_test_account,
    create_test_asset,
    create_test_engine,
    make_transaction,
    )


def _day(day: int) -> datetime:
    return datetime(2024, 1, day, 12, 0, tzinfo=timezone.utc)


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
async def asset(session):
    account = await create_test_account(session)
    return await create_test_asset(session, account)


class TestLedgerMath:

    def test_weighted_average_on_buy(self):
        """BW-001: 10@150 then 10@150 keeps 150; a sell never moves the average."""
        units, value = apply_ledger_update(
            Decimal("0"), Decimal("0"),
            AssetLedgerUpdate(asset_id=1, units_change=Decimal("10"), total_cost=Decimal("1500")),
            )
        assert (units, value) == (Decimal("10"), Decimal("150"))

        units, value = apply_ledger_update(
            units, value,
            AssetLedgerUpdate(asset_id=1, units_change=Decimal("10"), total_cost=Decimal("1500")),
            )
        assert (units, value) == (Decimal("20"), Decimal("150"))

        units, value = apply_ledger_update(units, value, AssetLedgerUpdate(asset_id=1, units_change=Decimal("-5")))
        assert (units, value) == (Decimal("15"), Decimal("150"))
        assert settle_position(units) == (Decimal("15"), True)

    def test_average_moves_with_new_price(self):
        units, value = apply_ledger_update(
            Decimal("10"), Decimal("100"),
            AssetLedgerUpdate(asset_id=1, units_change=Decimal("10"), total_cost=Decimal("2000")),
            )
        assert value == Decimal("150")

    def test_negative_balance_is_carried(self):
        """BW-002: Overselling leaves a signed balance; only the stored units are clamped at zero."""
        units, value = apply_ledger_update(Decimal("5"), Decimal("100"), AssetLedgerUpdate(asset_id=1, units_change=Decimal("-8")))
        assert units == Decimal("-3")
        assert value == Decimal("100")
        assert settle_position(units) == (Decimal("0"), False)

    def test_buy_after_short_balance_prices_only_new_units(self):
        units, value = apply_ledger_update(
            Decimal("-5"), Decimal("0"),
            AssetLedgerUpdate(asset_id=1, units_change=Decimal("10"), total_cost=Decimal("1500")),
            )
        assert (units, value) == (Decimal("5"), Decimal("150"))


    def test_calculate_asset_updates(self):
        asset = Asset(id=1, name="AAPL", portfolio_account_id=1, user_id="user-1", asset_type=AssetType.STOCK, market="NMS")
        updates = calculate_asset_updates([
            make_transaction(asset, 1, amount="10", price="150"),
            make_transaction(asset, 2, TransactionType.SELL, amount="4", price="200"),
            ])

        update = updates[asset.id]
        assert update.units_change == Decimal("6")
        assert update.total_cost == Decimal("1500")

    def test_split_into_chunks(self):
        chunks = split_into_chunks(list(range(501)), 500)
        assert [len(c) for c in chunks] == [500, 1]
        assert split_into_chunks([], 500) == []
        with pytest.raises(ValueError):
            split_into_chunks([1], 0)


class TestBatchWriter:

    @pytest.mark.asyncio
    async def test_ledger_scenario(self, session, asset):
        """BW-010: buy 10@150, buy 10@150, sell 5@200 -> 15 units at 150."""
        repository = LedgerRepository(session)
        writer = BatchWriter(repository)

        await writer.write([make_transaction(asset, 1, when=_day(10))])
        stored = await repository.get_asset(asset.id)
        assert (stored.units, stored.unit_value) == (Decimal("10"), Decimal("150"))

        await writer.write([make_transaction(asset, 1, when=_day(11))])
        stored = await repository.get_asset(asset.id)
        assert (stored.units, stored.unit_value) == (Decimal("20"), Decimal("150"))

        result = await writer.write([make_transaction(asset, 1, TransactionType.SELL, amount="5", price="200", when=_day(12))])
        stored = await repository.get_asset(asset.id)
        assert (stored.units, stored.unit_value) == (Decimal("15"), Decimal("150"))
        assert stored.is_active is True
        assert result.assets_updated == [asset.id]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_large_batch_is_written_in_chunks(self, session, asset, monkeypatch):
        """BW-011: 501 rows -> two chunk commits."""
        repository = LedgerRepository(session)
        calls = []
        original = repository.insert_transactions

        async def counting_insert(items):
            calls.append(len(items))
            return await original(items)

        monkeypatch.setattr(repository, "insert_transactions", counting_insert)

        rows = [make_transaction(asset, i, amount="1", price="10") for i in range(1, 502)]
        result = await BatchWriter(repository, chunk_size=500).write(rows)

        assert calls == [500, 1]
        assert len(result.transaction_ids) == 501
        stored = await repository.get_asset(asset.id)
        assert stored.units == Decimal("501")

    @pytest.mark.asyncio
    async def test_failed_chunk_only_fails_its_rows(self, session, asset, monkeypatch):
        """BW-012: A failing second chunk yields WRITE_FAILED for its rows; the first stays committed."""
        repository = LedgerRepository(session)
        calls = []
        original = repository.insert_transactions

        async def flaky_insert(items):
            calls.append(len(items))
            if len(calls) == 2:
                raise RuntimeError("disk full")
            return await original(items)

        monkeypatch.setattr(repository, "insert_transactions", flaky_insert)

        rows = [make_transaction(asset, i, amount="1", price="10") for i in range(1, 502)]
        result = await BatchWriter(repository, chunk_size=500).write(rows)

        assert len(result.transaction_ids) == 500
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.code == ImportErrorCode.WRITE_FAILED
        assert error.row_number == 501
        assert "disk full" in error.message

        stored = await repository.get_asset(asset.id)
        assert stored.units == Decimal("500")

    @pytest.mark.asyncio
    async def test_row_mapping_failure_is_reported_per_chunk(self, session, asset, monkeypatch):
        """BW-017: An error while building ORM rows fails that chunk as WRITE_FAILED instead of escaping."""
        repository = LedgerRepository(session)
        original = repository._to_row

        def picky_to_row(item):
            if item.original_row_number == 3:
                raise ValueError("bad row")
            return original(item)

        monkeypatch.setattr(repository, "_to_row", picky_to_row)

        rows = [make_transaction(asset, i, amount="1", price="10") for i in range(1, 5)]
        result = await BatchWriter(repository, chunk_size=2).write(rows)

        assert len(result.transaction_ids) == 2
        assert [(e.row_number, e.code) for e in result.errors] == [
            (3, ImportErrorCode.WRITE_FAILED),
            (4, ImportErrorCode.WRITE_FAILED),
            ]
        stored = await repository.get_asset(asset.id)
        assert stored.units == Decimal("2")

    @pytest.mark.asyncio
    async def test_oversell_is_reported(self, session, asset):
        """BW-013: A sell beyond held units clamps at zero and is reported as INSUFFICIENT_UNITS."""
        repository = LedgerRepository(session)
        result = await BatchWriter(repository).write([
            make_transaction(asset, 1, amount="5", when=_day(10)),
            make_transaction(asset, 2, TransactionType.SELL, amount="8", when=_day(11)),
            ])

        assert len(result.transaction_ids) == 2
        assert [(e.row_number, e.code) for e in result.errors] == [(2, ImportErrorCode.INSUFFICIENT_UNITS)]
        assert result.errors[0].is_fatal is False

        stored = await repository.get_asset(asset.id)
        assert stored.units == Decimal("0")
        assert stored.is_active is False

    @pytest.mark.asyncio
    async def test_recalculation_is_idempotent(self, session, asset):
        """BW-014: Replaying the same history twice gives the same aggregates."""
        repository = LedgerRepository(session)
        writer = BatchWriter(repository)
        await writer.write([
            make_transaction(asset, 1, amount="10", price="100", when=_day(10)),
            make_transaction(asset, 2, amount="10", price="200", when=_day(11)),
            ])

        first = await writer.recalculate_asset(asset.id)
        second = await writer.recalculate_asset(asset.id)

        assert first.units == second.units == Decimal("20")
        assert first.unit_value == second.unit_value == Decimal("150")
        assert second.transactions_replayed == 2

    @pytest.mark.asyncio
    async def test_history_order_is_by_trade_date(self, session, asset):
        """BW-015: A back-dated buy written later is replayed before the sell."""
        repository = LedgerRepository(session)
        writer = BatchWriter(repository)

        result = await writer.write([make_transaction(asset, 1, TransactionType.SELL, amount="5", when=_day(12))])
        assert result.errors[0].code == ImportErrorCode.INSUFFICIENT_UNITS

        result = await writer.write([make_transaction(asset, 1, amount="10", when=_day(10))])
        assert result.errors == []
        stored = await repository.get_asset(asset.id)
        assert stored.units == Decimal("5")

    @pytest.mark.asyncio
    async def test_sell_dated_before_buy_in_one_batch(self, session, asset):
        """BW-016: buy 10@150 on Jan 15 with a sell of 5 on Jan 10 nets 5 units, no error."""
        repository = LedgerRepository(session)

        result = await BatchWriter(repository).write([
            make_transaction(asset, 1, amount="10", price="150", when=_day(15)),
            make_transaction(asset, 2, TransactionType.SELL, amount="5", price="200", when=_day(10)),
            ])

        assert result.errors == []
        stored = await repository.get_asset(asset.id)
        assert (stored.units, stored.unit_value) == (Decimal("5"), Decimal("150"))
        assert stored.is_active is True

    @pytest.mark.asyncio
    async def test_asset_without_history_is_untouched(self, session, asset):
        writer = BatchWriter(LedgerRepository(session))

        recalculation = await writer.recalculate_asset(asset.id)

        assert recalculation.transactions_replayed == 0
        assert await writer.recalculate_asset(999) is None

    @pytest.mark.asyncio
    async def test_empty_write(self, session):
        result = await BatchWriter(LedgerRepository(session)).write([])
        assert result.transaction_ids == [] and result.errors == []
