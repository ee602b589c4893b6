"""
Test duplicate detection against the ledger and inside a batch.
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

from folio_import.app.db.models import TransactionType
from folio_import.app.services.import_pipeline.duplicate_detector import DuplicateDetector, create_signature
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository
from folio_import.test_scripts.test_db_config import (
    create_test_account,
    create_test_asset,
    create_test_engine,
    make_transaction,
    )


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


@pytest_asyncio.fixture
async def asset(session, account):
    return await create_test_asset(session, account)


class TestSignature:

    def test_date_only_signature(self):
        """DD-001: ticker|date|amount(4dp)|price(2dp)|type|account."""
        signature = create_signature(
            "aapl",
            datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
            False,
            Decimal("10"),
            Decimal("150.50"),
            TransactionType.BUY,
            1,
            )
        assert signature == "AAPL|2024-01-15|10|150.5|buy|1"

    def test_signature_with_time(self):
        signature = create_signature(
            "AAPL",
            datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
            True,
            Decimal("10.00001"),
            Decimal("150.499"),
            TransactionType.SELL,
            3,
            )
        assert signature == "AAPL|2024-01-15T10:30:00|10|150.5|sell|3"

    def test_naive_datetime_is_utc(self):
        naive = create_signature("AAPL", datetime(2024, 1, 15, 23, 0), True, Decimal("1"), Decimal("1"), "buy", 1)
        aware = create_signature("AAPL", datetime(2024, 1, 15, 23, 0, tzinfo=timezone.utc), True, Decimal("1"), Decimal("1"), "buy", 1)
        assert naive == aware


class TestDuplicateDetector:

    @pytest.mark.asyncio
    async def test_k_in_batch_m_in_storage(self, session, asset):
        """DD-010: k identical rows against m stored -> the first max(0, k-m) are unique, the rest duplicates."""
        repository = LedgerRepository(session)
        await repository.insert_transactions([make_transaction(asset, 1)])

        batch = [make_transaction(asset, row) for row in (1, 2, 3)]
        result = await DuplicateDetector(repository).detect(batch)

        assert [tx.original_row_number for tx in result.unique] == [1, 2]
        assert [tx.original_row_number for tx in result.duplicates] == [3]

    @pytest.mark.asyncio
    async def test_later_occurrence_is_flagged(self, session, asset):
        """DD-014: With one stored copy, the later of two batch rows carries DUPLICATE_DETECTED."""
        repository = LedgerRepository(session)
        await repository.insert_transactions([make_transaction(asset, 1)])

        result = await DuplicateDetector(repository).detect([make_transaction(asset, 10), make_transaction(asset, 11)])

        assert [tx.original_row_number for tx in result.unique] == [10]
        assert [tx.original_row_number for tx in result.duplicates] == [11]

    @pytest.mark.asyncio
    async def test_more_stored_than_in_batch(self, session, asset):
        repository = LedgerRepository(session)
        await repository.insert_transactions([make_transaction(asset, 1), make_transaction(asset, 2)])

        result = await DuplicateDetector(repository).detect([make_transaction(asset, 1)])

        assert result.unique == []
        assert len(result.duplicates) == 1

    @pytest.mark.asyncio
    async def test_identical_rows_in_empty_ledger_are_kept(self, session, asset):
        """DD-011: Two identical trades in one file are both real trades."""
        result = await DuplicateDetector(LedgerRepository(session)).detect(
            [make_transaction(asset, 1), make_transaction(asset, 2)]
            )

        assert len(result.unique) == 2
        assert result.duplicates == []

    @pytest.mark.asyncio
    async def test_date_only_rows_match_regardless_of_time(self, session, asset):
        """DD-012: Date-only rows compare by calendar day."""
        repository = LedgerRepository(session)
        await repository.insert_transactions([
            make_transaction(asset, 1, when=datetime(2024, 1, 15, 8, 0, tzinfo=timezone.utc)),
            ])

        later_same_day = make_transaction(asset, 1, when=datetime(2024, 1, 15, 18, 0, tzinfo=timezone.utc))
        result = await DuplicateDetector(repository).detect([later_same_day])

        assert len(result.duplicates) == 1

    @pytest.mark.asyncio
    async def test_different_price_is_not_duplicate(self, session, asset):
        repository = LedgerRepository(session)
        await repository.insert_transactions([make_transaction(asset, 1, price="150")])

        result = await DuplicateDetector(repository).detect([make_transaction(asset, 1, price="151")])

        assert len(result.unique) == 1

    @pytest.mark.asyncio
    async def test_other_account_is_ignored(self, session, account, asset):
        """DD-013: Rows of another account never count as stored duplicates."""
        other_account = await create_test_account(session, name="Other")
        other_asset = await create_test_asset(session, other_account)
        repository = LedgerRepository(session)
        await repository.insert_transactions([make_transaction(other_asset, 1)])

        result = await DuplicateDetector(repository).detect([make_transaction(asset, 1)])

        assert len(result.unique) == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self, session):
        result = await DuplicateDetector(LedgerRepository(session)).detect([])
        assert result.unique == [] and result.duplicates == []
