"""
Session selection.

Given every session a source currently exposes, pick the single one to
report and control. Ordering, first match wins:

    Playing (the current-session hint if it is playing, else the first)
    > Paused matching the last playing id
    > Paused matching the current-session hint
    > any Paused
    > the current-session hint
    > the first candidate

The last playing id is the only state carried between selections. It
biases a briefly paused player over unrelated paused sessions.
"""
from dataclasses import dataclass
from typing import Any, List, Optional

from .logging_config import get_logger
from .models import PlaybackStatus
from .sources.base import BaseSessionSource, SourceCapability

logger = get_logger(__name__)


@dataclass
class SessionCandidate:
    source_id: str
    status: PlaybackStatus
    session: Any = None


@dataclass
class SelectorMemory:
    last_playing_id: Optional[str] = None


def select_session(
    candidates: List[SessionCandidate],
    memory: SelectorMemory,
    current: Optional[SessionCandidate] = None,
) -> Optional[SessionCandidate]:
    """Pick a session. Updates memory when the result is Playing."""
    current_id = current.source_id if current is not None else None

    result = _pick(candidates, memory, current, current_id)
    if result is not None and result.status == PlaybackStatus.PLAYING:
        memory.last_playing_id = result.source_id
    return result


def _pick(candidates, memory, current, current_id):
    playing = [c for c in candidates if c.status == PlaybackStatus.PLAYING]
    if playing:
        for candidate in playing:
            if candidate.source_id == current_id:
                return candidate
        return playing[0]

    paused = [c for c in candidates if c.status == PlaybackStatus.PAUSED]
    if paused:
        if memory.last_playing_id is not None:
            for candidate in paused:
                if candidate.source_id == memory.last_playing_id:
                    return candidate
        if current_id is not None:
            for candidate in paused:
                if candidate.source_id == current_id:
                    return candidate
        return paused[0]

    if current is not None:
        for candidate in candidates:
            if candidate.source_id == current_id:
                return candidate
        return current

    return candidates[0] if candidates else None


class SessionSelector:
    """
    Runs selection against a live source.

    Candidates whose id or status cannot be read are skipped. If
    enumeration itself fails, the current-session hint (or the last one
    seen) is returned instead.
    """

    def __init__(self, source: BaseSessionSource, memory: Optional[SelectorMemory] = None):
        self.source = source
        self.memory = memory or SelectorMemory()
        self._last_current: Optional[SessionCandidate] = None

    async def describe(self, session: Any) -> Optional[SessionCandidate]:
        if session is None:
            return None
        try:
            source_id = self.source.session_id(session)
            status = await self.source.get_playback_status(session)
        except Exception as e:
            logger.debug(f"Skipping unreadable session: {e}")
            return None
        return SessionCandidate(source_id=source_id, status=PlaybackStatus.from_native(status), session=session)

    async def _current_hint(self) -> Optional[SessionCandidate]:
        if not self.source.capabilities() & SourceCapability.CURRENT_SESSION:
            return None
        try:
            handle = await self.source.get_current_session()
        except Exception as e:
            logger.debug(f"Current session lookup failed: {e}")
            return None
        current = await self.describe(handle)
        if current is not None:
            self._last_current = current
        return current

    async def select(self) -> Optional[SessionCandidate]:
        current = await self._current_hint()

        try:
            sessions = await self.source.list_sessions()
        except Exception as e:
            logger.warning(f"Session enumeration failed: {e}")
            fallback = current or self._last_current
            if fallback is not None and fallback.status == PlaybackStatus.PLAYING:
                self.memory.last_playing_id = fallback.source_id
            return fallback

        candidates = []
        for session in sessions:
            candidate = await self.describe(session)
            if candidate is not None:
                candidates.append(candidate)

        return select_session(candidates, self.memory, current)
