"""Deduplication of application-service transactions.

The homeserver retries a transaction until it is acknowledged, so the same
transaction id may arrive more than once. Ids are recorded only after the
transaction was processed: a crash in between causes a replay, never a
silently dropped transaction. Store errors are not caught here; callers
must refuse the transaction when the store cannot be consulted.
"""

from collections import Counter
from typing import Awaitable, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from .models import ProcessedTransaction
from .store import PersistenceStore

logger = structlog.get_logger()


class TransactionDeduper:
    """Check-and-record of processed transaction ids."""

    def __init__(self, store: PersistenceStore):
        self.store = store
        self._pending: Counter[str] = Counter()

    @staticmethod
    def _key(txn_id: str) -> str:
        return f"txn:{txn_id}"

    async def already_processed(self, txn_id: str) -> bool:
        """Whether ``txn_id`` was recorded before."""
        async with self.store.session_maker() as session:
            result = await session.execute(
                select(ProcessedTransaction.id).where(ProcessedTransaction.txn_id == txn_id)
            )
            return result.first() is not None

    async def record(self, txn_id: str, event_count: int = 0) -> None:
        """Durably record ``txn_id`` as processed. Recording twice is a no-op."""
        try:
            async with self.store.session_scope("transactions") as session:
                result = await session.execute(
                    select(ProcessedTransaction.id).where(ProcessedTransaction.txn_id == txn_id)
                )
                if result.first() is None:
                    session.add(ProcessedTransaction(txn_id=txn_id, event_count=event_count))
        except IntegrityError:
            logger.debug("Transaction already recorded", txn_id=txn_id)

    async def process_once(
        self,
        txn_id: str,
        handler: Callable[[], Awaitable[int]],
    ) -> bool:
        """Run ``handler`` unless ``txn_id`` was processed, then record it.

        Concurrent deliveries of the same id are serialised, so the second
        one sees the first one's record.

        Args:
            txn_id: Transaction id from the homeserver
            handler: Processes the transaction, returns the number of events

        Returns:
            True if the handler ran, False for a duplicate
        """
        key = self._key(txn_id)
        self._pending[key] += 1
        try:
            async with self.store.lock_for(key):
                if await self.already_processed(txn_id):
                    logger.info("Skipping duplicate transaction", txn_id=txn_id)
                    return False
                event_count = await handler()
                await self.record(txn_id, event_count)
                logger.debug("Recorded transaction", txn_id=txn_id, event_count=event_count)
                return True
        finally:
            self._pending[key] -= 1
            if not self._pending[key]:
                # last caller for this id
                del self._pending[key]
                self.store.discard_lock(key)
