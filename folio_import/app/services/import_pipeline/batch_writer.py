"""
Batch writer.

Persists enriched transactions in chunks and reconciles the aggregates of
every touched asset.

Write phase:
- transactions are split into chunks of at most ``chunk_size`` rows
- chunks are committed strictly in order, each one atomically
- a failed chunk reports WRITE_FAILED for each of its rows; later chunks
  still run

Aggregate phase:
- units / weighted-average unit value / is_active are recomputed by
  replaying the asset's whole persisted history ordered by (date, id)
- nothing is added as a blind delta, so running the replay again (or after
  a crash between the two phases) converges to the same state
- the balance is carried signed through the replay (a sell dated before
  its buy is filled by that buy) and clamped at 0 only when stored; sells
  that leave it negative at the end are reported as INSUFFICIENT_UNITS
  (non-fatal) when they belong to this import
"""
from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from folio_import.app.db.models import TransactionType
from folio_import.app.logging_config import get_logger
from folio_import.app.schemas.imports import (
    AssetLedgerUpdate,
    AssetRecalculation,
    EnrichedTransaction,
    ImportErrorCode,
    ImportRowError,
    WriteResult,
    )
from folio_import.app.services.import_pipeline.ledger_repository import LedgerRepository

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 500


# =============================================================================
# PURE LEDGER MATH
# =============================================================================

def apply_ledger_update(units: Decimal, unit_value: Decimal, update: AssetLedgerUpdate) -> Tuple[Decimal, Decimal]:
    """
    Fold a signed change into a running position.

    - units are carried signed: a sell dated before its buy leaves a
      negative balance that the later buy fills
    - the weighted-average unit value only moves when units are added, and
      only the positive part of the prior balance carries its cost:
      (held * unit_value + total_cost) / (held + units_change)

    Returns:
        (new_units, new_unit_value)
    """
    units = Decimal(units or 0)
    unit_value = Decimal(unit_value or 0)

    new_units = units + update.units_change
    new_unit_value = unit_value
    if update.units_change > 0:
        held = max(Decimal("0"), units)
        new_unit_value = (held * unit_value + update.total_cost) / (held + update.units_change)

    return new_units, new_unit_value


def settle_position(units: Decimal) -> Tuple[Decimal, bool]:
    """Stored units of a folded position: never below zero, inactive at zero."""
    settled = max(Decimal("0"), Decimal(units))
    return settled, settled > 0



def signed_units(tx_type: TransactionType, amount: Decimal) -> Decimal:
    amount = abs(Decimal(amount))
    return amount if tx_type == TransactionType.BUY else -amount


def calculate_asset_updates(transactions: Iterable[EnrichedTransaction]) -> Dict[int, AssetLedgerUpdate]:
    """Net units change and buy notional per asset, in first-seen asset order."""
    updates: Dict[int, AssetLedgerUpdate] = OrderedDict()
    for tx in transactions:
        update = updates.setdefault(tx.asset_id, AssetLedgerUpdate(asset_id=tx.asset_id))
        update.units_change += signed_units(tx.type, tx.amount)
        if tx.type == TransactionType.BUY:
            update.total_cost += tx.amount * tx.price
    return updates


def split_into_chunks(items: Sequence, chunk_size: int) -> List[list]:
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    return [list(items[i:i + chunk_size]) for i in range(0, len(items), chunk_size)]


# =============================================================================
# WRITER
# =============================================================================

class BatchWriter:
    """
    Args:
        repository: Ledger repository bound to the request session
        chunk_size: Max rows committed together
    """

    def __init__(self, repository: LedgerRepository, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.repository = repository
        self.chunk_size = chunk_size

    async def write(self, transactions: Sequence[EnrichedTransaction]) -> WriteResult:
        result = WriteResult()
        if not transactions:
            return result

        # tx id -> enriched row, only for rows that were committed
        committed: Dict[int, EnrichedTransaction] = OrderedDict()

        chunks = split_into_chunks(transactions, self.chunk_size)
        for index, chunk in enumerate(chunks, start=1):
            try:
                ids = await self.repository.insert_transactions(chunk)
            except Exception as e:
                logger.error(
                    "Failed to write transaction chunk",
                    chunk=index,
                    chunks=len(chunks),
                    rows=len(chunk),
                    error=str(e),
                    exc_info=True,
                    )
                for tx in chunk:
                    result.errors.append(ImportRowError(
                        row_number=tx.original_row_number,
                        ticker=tx.asset_name,
                        code=ImportErrorCode.WRITE_FAILED,
                        message=f"Failed to write transaction: {e}",
                        ))
                continue

            for tx_id, tx in zip(ids, chunk):
                committed[tx_id] = tx
            result.transaction_ids.extend(ids)
            logger.debug("Transaction chunk committed", chunk=index, chunks=len(chunks), rows=len(ids))

        if not committed:
            return result

        updates = calculate_asset_updates(committed.values())
        for update in updates.values():
            logger.debug(
                "Asset ledger change",
                asset_id=update.asset_id,
                units_change=str(update.units_change),
                total_cost=str(update.total_cost),
                )

        for asset_id in updates:
            try:
                recalculation = await self.recalculate_asset(asset_id)
            except Exception as e:
                # Rows stay committed; the next recalculation repairs the aggregates
                logger.error("Failed to recalculate asset aggregates", asset_id=asset_id, error=str(e), exc_info=True)
                continue
            if recalculation is None:
                continue

            result.assets_updated.append(asset_id)
            for tx_id in recalculation.oversold_transaction_ids:
                tx = committed.get(tx_id)
                if tx is None:
                    continue
                result.errors.append(ImportRowError(
                    row_number=tx.original_row_number,
                    ticker=tx.asset_name,
                    code=ImportErrorCode.INSUFFICIENT_UNITS,
                    message=f"Sell of {tx.amount} exceeds held units; position clamped at 0",
                    ))

        logger.info(
            "Batch write finished",
            written=len(result.transaction_ids),
            assets_updated=len(result.assets_updated),
            errors=len(result.errors),
            )
        return result

    async def recalculate_asset(self, asset_id: int) -> Optional[AssetRecalculation]:
        """
        Replay the persisted history of an asset and store the resulting
        aggregates.

        Assets without any transaction are left untouched.

        Returns:
            AssetRecalculation, or None if the asset does not exist
        """
        asset = await self.repository.get_asset(asset_id)
        if asset is None:
            logger.warning("Asset not found for recalculation", asset_id=asset_id)
            return None

        history = await self.repository.list_asset_history(asset_id)
        if not history:
            return AssetRecalculation(
                asset_id=asset.id,
                ticker=asset.name,
                units=Decimal(asset.units or 0),
                unit_value=Decimal(asset.unit_value or 0),
                is_active=asset.is_active,
                transactions_replayed=0,
                )

        units = Decimal("0")
        unit_value = Decimal("0")
        # Sells that left the balance negative with no later buy filling it
        short_sells: List[int] = []

        for tx in history:
            change = signed_units(tx.type, tx.amount)
            update = AssetLedgerUpdate(
                asset_id=asset_id,
                units_change=change,
                total_cost=abs(Decimal(tx.amount)) * Decimal(tx.price) if change > 0 else Decimal("0"),
                )
            units, unit_value = apply_ledger_update(units, unit_value, update)
            if units >= 0:
                short_sells = []
            elif change < 0:
                short_sells.append(tx.id)

        oversold = short_sells if units < 0 else []
        units, is_active = settle_position(units)

        await self.repository.save_asset_aggregates(asset, units, unit_value, is_active)

        if oversold:
            logger.warning("Sells exceed held units", asset_id=asset_id, transactions=oversold)
        logger.info(
            "Asset aggregates recalculated",
            asset_id=asset_id,
            units=str(units),
            unit_value=str(unit_value),
            is_active=is_active,
            replayed=len(history),
            )

        return AssetRecalculation(
            asset_id=asset.id,
            ticker=asset.name,
            units=Decimal(asset.units),
            unit_value=Decimal(asset.unit_value),
            is_active=is_active,
            transactions_replayed=len(history),
            oversold_transaction_ids=oversold,
            )
