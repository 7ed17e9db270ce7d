"""
Batch writer: the single consumer of the sync result channel.

All storage writes of a run go through this task. Records are buffered up to
BATCH_SIZE and flushed in one transaction; the remainder is flushed once the
channel closes. A failed flush stops the writer and fails the run.
"""

import asyncio
import logging
from typing import Protocol, Sequence

from utils.channel import Channel
from utils.schemas import WorkItemDetail

logger = logging.getLogger(__name__)


class WorkItemStore(Protocol):
    def upsert_work_items(self, records: Sequence[WorkItemDetail]) -> None: ...


class BatchWriter:
    def __init__(self, store: WorkItemStore, batch_size: int = 50) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.batch_size = batch_size
        self.written = 0
        self.flushes = 0

    async def run(self, results: Channel[WorkItemDetail]) -> int:
        """Drain the channel until it is closed.

        Returns:
            Number of records persisted

        Raises:
            StorageError: If a flush fails
        """
        buffer: list[WorkItemDetail] = []

        async for record in results:
            buffer.append(record)
            if len(buffer) >= self.batch_size:
                await self._flush(buffer)
                buffer = []

        if buffer:
            await self._flush(buffer)

        logger.info("Batch writer finished (records=%d, flushes=%d)", self.written, self.flushes)
        return self.written

    async def _flush(self, batch: list[WorkItemDetail]) -> None:
        await asyncio.to_thread(self.store.upsert_work_items, batch)
        self.written += len(batch)
        self.flushes += 1
        logger.info("Flushed batch of %d work item(s)", len(batch))
