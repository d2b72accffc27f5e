"""Prior-turn history for a session."""

from __future__ import annotations

from oca.core.logging import get_logger, log_context
from oca.db.store import Datastore
from oca.models.entities import HistoryTurn

logger = get_logger(__name__)


class HistoryLoader:
    """Best-effort read of the most recent exchanges, oldest first."""

    def __init__(self, store: Datastore | None, limit: int = 10) -> None:
        self.store = store
        self.limit = limit

    async def load_history(self, session_id: str | None, limit: int | None = None) -> list[HistoryTurn]:
        limit = limit if limit is not None else self.limit
        if self.store is None or not session_id or limit <= 0:
            return []
        try:
            rows = await self.store.recent_interactions(session_id, limit)
        except Exception as exc:
            logger.warning(
                "Failed to load conversation history: %s",
                exc,
                extra=log_context(session_id=session_id),
            )
            return []
        rows = rows[:limit]
        rows.reverse()
        return [HistoryTurn(user_message=row.user_message, assistant_response=row.assistant_response) for row in rows]


__all__ = ["HistoryLoader"]
