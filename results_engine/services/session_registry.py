"""In-memory registry of open dashboard sessions."""

import logging
from datetime import datetime, timedelta, timezone

from results_engine.core.exceptions import NotFoundError
from results_engine.core.scheduler import DebounceTimers
from results_engine.services.session import ExamSession
from results_engine.services.store import ResultsStore

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Create, look up and close ExamSession actors by id."""

    def __init__(self, store: ResultsStore, timers: DebounceTimers):
        self.store = store
        self.timers = timers
        self._sessions: dict[str, ExamSession] = {}

    def create(self, teacher_id: int | None = None) -> ExamSession:
        session = ExamSession(self.store, self.timers, teacher_id=teacher_id)
        self._sessions[session.session_id] = session
        logger.info(f"Opened dashboard session {session.session_id} (teacher {teacher_id})")
        return session

    def get(self, session_id: str) -> ExamSession:
        session = self._sessions.get(session_id)
        if not session:
            raise NotFoundError("Session", session_id)
        return session

    async def close(self, session_id: str) -> bool:
        """Flush and forget a session; False if some edits could not be saved."""
        session = self.get(session_id)
        self._sessions.pop(session_id, None)
        return await session.close()

    async def close_idle(self, idle_for: timedelta) -> int:
        cutoff = datetime.now(timezone.utc) - idle_for
        idle = [sid for sid, s in self._sessions.items() if s.last_activity < cutoff]
        for session_id in idle:
            await self.close(session_id)
        return len(idle)

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions
