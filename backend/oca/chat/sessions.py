"""Session lifecycle and the read side of the interaction archive."""

from __future__ import annotations

from typing import Any, Mapping

from oca.core.errors import DependencyUnavailable, NotFound, ValidationFailed
from oca.core.logging import get_logger, log_context
from oca.db.store import SESSION_UPDATABLE_FIELDS, Datastore
from oca.models.entities import Interaction, Mode, Session
from oca.utils.ids import new_uuid
from oca.utils.time import utc_now

logger = get_logger(__name__)

ANONYMOUS_STUDENT = "anonymous"


class SessionManager:
    def __init__(self, store: Datastore | None) -> None:
        self.store = store

    async def ensure_session(self, session_id: str | None, student_id: str | None, mode: Mode) -> str:
        """Return a usable session id, creating the session when it is missing.

        Store failures are logged; the current turn proceeds with the id.
        """
        session_id = session_id or new_uuid()
        if self.store is None:
            return session_id
        try:
            existing = await self.store.get_session(session_id)
            now = utc_now()
            if existing is None:
                await self.store.create_session(
                    Session(
                        id=session_id,
                        student_id=student_id or ANONYMOUS_STUDENT,
                        mode=mode,
                        created_at=now,
                        last_activity=now,
                    )
                )
                logger.info("Auto-created session", extra=log_context(session_id=session_id, mode=mode.value))
            else:
                await self.store.touch_session(session_id, now)
        except Exception as exc:
            logger.warning("Session check/creation failed: %s", exc, extra=log_context(session_id=session_id))
        return session_id

    async def create(self, student_id: str, mode: Mode, context: Mapping[str, Any] | None = None) -> Session:
        store = self._require("Session management")
        now = utc_now()
        session = Session(
            id=new_uuid(),
            student_id=student_id,
            mode=mode,
            created_at=now,
            last_activity=now,
            context=dict(context or {}),
        )
        return await store.create_session(session)

    async def get(self, session_id: str) -> tuple[Session, int]:
        store = self._require("Session details")
        session = await store.get_session(session_id)
        if session is None:
            raise NotFound("Session not found")
        return session, await store.count_interactions(session_id)

    async def update(self, session_id: str, fields: Mapping[str, Any]) -> Session:
        store = self._require("Session management")
        updates = {key: value for key, value in fields.items() if key in SESSION_UPDATABLE_FIELDS}
        cleared = sorted(key for key, value in updates.items() if value is None)
        if cleared:
            raise ValidationFailed(f"Fields cannot be null: {', '.join(cleared)}")
        if not updates:
            raise ValidationFailed("No valid fields to update")
        if "mode" in updates:
            updates["mode"] = Mode(updates["mode"])
        session = await store.update_session(session_id, updates)
        if session is None:
            raise NotFound("Session not found")
        return session

    async def list_for_student(self, student_id: str) -> list[Session]:
        store = self._require("Session history")
        return await store.list_sessions_for_student(student_id)

    async def list_interactions(
        self,
        student_id: str | None,
        session_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Interaction], int]:
        store = self._require("Interaction history")
        if not student_id:
            raise ValidationFailed("Missing required parameter: studentId")
        return await store.list_interactions(student_id, session_id=session_id, limit=limit, offset=offset)

    async def get_interaction(self, interaction_id: str) -> Interaction:
        store = self._require("Interaction history")
        interaction = await store.get_interaction(interaction_id)
        if interaction is None:
            raise NotFound("Interaction not found")
        return interaction

    def _require(self, feature: str) -> Datastore:
        if self.store is None:
            raise DependencyUnavailable(f"{feature} is unavailable until the datastore is configured.")
        return self.store


__all__ = ["ANONYMOUS_STUDENT", "SessionManager"]
