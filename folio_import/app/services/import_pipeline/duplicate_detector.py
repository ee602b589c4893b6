"""
Duplicate detection for enriched transactions.

A transaction is identified by its signature:

    TICKER|date|amount(4dp)|price(2dp)|type|account

``date`` is the calendar day, or the full second-resolution timestamp when
the source carried a time of day. Signatures are counted, not just tested
for membership: a signature appearing k times in the batch and m times in
storage keeps its first max(0, k - m) rows in batch order and flags the
rest as duplicates, so two legitimate identical fills in one file both
survive a first import and are both skipped on a re-import.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime
from decimal import Decimal
from typing import Sequence

from folio_import.app.db.models import TransactionType
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.imports import DuplicateCheckResult, EnrichedTransaction
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository
from folio_import.app.utils.datetime_utils import as_utc
from folio_import.app.utils.decimal_utils import format_compact

logger = get_logger(__name__)


def create_signature(
    ticker: str,
    when: datetime,
    has_time: bool,
    amount: Decimal,
    price: Decimal,
    tx_type,
    account_id: int,
    ) -> str:
    moment = as_utc(when)
    side = tx_type.value if isinstance(tx_type, TransactionType) else str(tx_type)
    date_part = moment.strftime("%Y-%m-%dT%H:%M:%S") if has_time else moment.strftime("%Y-%m-%d")
    return "|".join([
        ticker.upper(),
        date_part,
        format_compact(Decimal(amount), 4),
        format_compact(Decimal(price), 2),
        side.lower(),
        str(account_id),
        ])


def signature_of(tx: EnrichedTransaction) -> str:
    return create_signature(
        tx.asset_name, tx.date, tx.date_has_time, tx.amount, tx.price, tx.type, tx.portfolio_account_id,
        )


class DuplicateDetector:
    """Filters a batch against persisted transactions and against itself."""

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    async def detect(self, transactions: Sequence[EnrichedTransaction]) -> DuplicateCheckResult:
        if not transactions:
            return DuplicateCheckResult()

        stored = await self._stored_signature_counts(transactions)

        signatures = [signature_of(tx) for tx in transactions]
        in_batch = Counter(signatures)

        seen: Counter = Counter()
        result = DuplicateCheckResult()
        for tx, signature in zip(transactions, signatures):
            seen[signature] += 1
            if seen[signature] <= max(0, in_batch[signature] - stored[signature]):
                result.unique.append(tx)
            else:
                result.duplicates.append(tx)

        logger.info("Duplicate check finished", unique=len(result.unique), duplicates=len(result.duplicates))
        return result

    async def _stored_signature_counts(self, transactions: Sequence[EnrichedTransaction]) -> Counter:
        counts: Counter = Counter()

        # One query per (user, account); a batch normally holds a single pair
        scopes = {(tx.user_id, tx.portfolio_account_id) for tx in transactions}
        for user_id, account_id in scopes:
            tickers = sorted({tx.asset_name for tx in transactions
                              if tx.user_id == user_id and tx.portfolio_account_id == account_id})
            existing = await self.repository.list_transactions_for_tickers(user_id, account_id, tickers)
            for row in existing:
                counts[create_signature(
                    row.asset_name, row.date, row.date_has_time, row.amount, row.price, row.type, row.portfolio_account_id,
                    )] += 1

        return counts
