"""Detached persistence of completed exchanges."""

from __future__ import annotations

import asyncio

from oca.core.logging import get_logger, log_context
from oca.core.metrics import ARCHIVE_WRITES
from oca.db.store import Datastore
from oca.models.entities import Interaction

logger = get_logger(__name__)


class Archiver:
    """Schedules interaction writes without blocking the request path.

    A failed write is logged and counted, never raised and never retried.
    """

    def __init__(self, store: Datastore | None) -> None:
        self.store = store
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def submit(self, interaction: Interaction) -> asyncio.Task | None:
        if self.store is None:
            return None
        task = asyncio.get_running_loop().create_task(self._write(self.store, interaction))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every scheduled write; used on shutdown and in tests."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _write(self, store: Datastore, interaction: Interaction) -> Interaction | None:
        context = log_context(session_id=interaction.session_id, mode=interaction.mode.value)
        try:
            stored = await store.insert_interaction(interaction)
        except Exception as exc:
            ARCHIVE_WRITES.labels(status="failed").inc()
            logger.error("Failed to archive interaction: %s", exc, extra=context)
            return None
        ARCHIVE_WRITES.labels(status="ok").inc()
        logger.info("Interaction archived", extra={**context, **log_context(interaction_id=stored.id)})
        return stored


__all__ = ["Archiver"]
