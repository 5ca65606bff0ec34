"""
Windows session source (System Media Transport Controls via winsdk).

Sessions are identified by their source_app_user_model_id. Change events
from the session manager and from every enumerated session are forwarded
to the registered callback, which runs on a WinRT thread.
"""
import asyncio
import threading
from typing import Any, Dict, List, Optional

from ..logging_config import get_logger
from ..models import PlaybackStatus, SessionMetadata
from .base import BaseSessionSource, SourceCapability, SourceConfig

logger = get_logger(__name__)

try:
    from winsdk.windows.media.control import GlobalSystemMediaTransportControlsSessionManager as MediaManager
    from winsdk.windows.storage.streams import DataReader
except ImportError:
    logger.debug("Winsdk not installed. Windows session source will not work.")
    MediaManager = None
    DataReader = None

# Windows PlaybackStatus enum: Closed=0, Opened=1, Changing=2, Stopped=3, Playing=4, Paused=5
_STATUS_PLAYING = 4
_STATUS_PAUSED = 5

THUMBNAIL_TIMEOUT = 3.0


def map_playback_status(code: Optional[int]) -> PlaybackStatus:
    if code == _STATUS_PLAYING:
        return PlaybackStatus.PLAYING
    if code == _STATUS_PAUSED:
        return PlaybackStatus.PAUSED
    return PlaybackStatus.STOPPED


def _read_thumbnail_sync(thumbnail_ref) -> Optional[bytes]:
    """
    Read an SMTC thumbnail stream on a worker thread with its own event loop.

    Keeps slow WinRT stream reads off the helper's loop.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    async def _do_read():
        stream = await asyncio.wait_for(thumbnail_ref.open_read_async(), timeout=THUMBNAIL_TIMEOUT)
        if not stream or stream.size == 0:
            return None
        reader = DataReader(stream)
        await asyncio.wait_for(reader.load_async(stream.size), timeout=THUMBNAIL_TIMEOUT)
        byte_data = bytearray(stream.size)
        reader.read_bytes(byte_data)
        return bytes(byte_data)

    try:
        return loop.run_until_complete(_do_read())
    finally:
        loop.close()


class WindowsSessionSource(BaseSessionSource):

    @classmethod
    def get_config(cls) -> SourceConfig:
        return SourceConfig(
            name="windows",
            display_name="Windows Media (SMTC)",
            platforms=["Windows"],
            needs_polling=False,
        )

    @classmethod
    def capabilities(cls) -> SourceCapability:
        return (SourceCapability.METADATA |
                SourceCapability.PLAYBACK_CONTROL |
                SourceCapability.ARTWORK |
                SourceCapability.CHANGE_EVENTS |
                SourceCapability.CURRENT_SESSION)

    def __init__(self):
        super().__init__()
        self._manager = None
        self._manager_tokens: List[tuple] = []
        # source id -> (session, media token, playback token)
        self._session_tokens: Dict[str, tuple] = {}
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return super().is_available() and MediaManager is not None

    async def initialize(self) -> None:
        if self._manager is None:
            self._manager = await MediaManager.request_async()

    def subscribe(self, callback) -> None:
        super().subscribe(callback)
        if self._manager is None or self._manager_tokens:
            return
        self._manager_tokens = [
            ("sessions", self._manager.add_sessions_changed(self._on_sessions_changed)),
            ("current", self._manager.add_current_session_changed(self._on_event)),
        ]
        self._attach_sessions(list(self._manager.get_sessions()))

    def _on_event(self, sender, args) -> None:
        self._notify_change()

    def _on_sessions_changed(self, sender, args) -> None:
        try:
            self._attach_sessions(list(sender.get_sessions()))
        except Exception as e:
            logger.debug(f"Re-subscribing sessions failed: {e}")
        self._notify_change()

    def _attach_sessions(self, sessions: List[Any]) -> None:
        """Subscribe to new sessions, drop handlers of sessions that went away."""
        if self._on_change is None:
            return
        with self._lock:
            seen = set()
            for session in sessions:
                try:
                    source_id = session.source_app_user_model_id
                except Exception as e:
                    logger.debug(f"Session without app id: {e}")
                    continue
                seen.add(source_id)
                if source_id in self._session_tokens:
                    continue
                try:
                    media_token = session.add_media_properties_changed(self._on_event)
                    playback_token = session.add_playback_info_changed(self._on_event)
                except Exception as e:
                    logger.debug(f"Could not subscribe to {source_id}: {e}")
                    continue
                self._session_tokens[source_id] = (session, media_token, playback_token)
                logger.debug(f"Subscribed to session {source_id}")

            for source_id in list(self._session_tokens):
                if source_id not in seen:
                    self._detach(source_id)

    def _detach(self, source_id: str) -> None:
        session, media_token, playback_token = self._session_tokens.pop(source_id)
        try:
            session.remove_media_properties_changed(media_token)
            session.remove_playback_info_changed(playback_token)
        except Exception as e:
            logger.debug(f"Unsubscribing {source_id} failed: {e}")

    def close(self) -> None:
        with self._lock:
            for source_id in list(self._session_tokens):
                self._detach(source_id)
        if self._manager is not None:
            for kind, token in self._manager_tokens:
                try:
                    if kind == "sessions":
                        self._manager.remove_sessions_changed(token)
                    else:
                        self._manager.remove_current_session_changed(token)
                except Exception as e:
                    logger.debug(f"Removing {kind} handler failed: {e}")
        self._manager_tokens = []
        super().close()

    async def list_sessions(self) -> List[Any]:
        await self.initialize()
        return list(self._manager.get_sessions())

    async def get_current_session(self) -> Optional[Any]:
        await self.initialize()
        return self._manager.get_current_session()

    def session_id(self, session: Any) -> str:
        return session.source_app_user_model_id

    async def get_playback_status(self, session: Any) -> PlaybackStatus:
        playback_info = session.get_playback_info()
        return map_playback_status(playback_info.playback_status if playback_info else None)

    async def get_metadata(self, session: Any) -> Optional[SessionMetadata]:
        info = await session.try_get_media_properties_async()
        if info is None:
            return None

        artwork = None
        if info.thumbnail:
            try:
                artwork = await asyncio.wait_for(
                    asyncio.to_thread(_read_thumbnail_sync, info.thumbnail),
                    timeout=THUMBNAIL_TIMEOUT * 2
                )
            except Exception as e:
                logger.debug(f"Windows thumbnail unavailable: {type(e).__name__}: {e}")

        return SessionMetadata(
            title=info.title or "",
            artist=info.artist or "",
            album_title=info.album_title or "",
            album_artist=info.album_artist or "",
            artwork=artwork,
        )

    async def toggle_playback(self, session: Any) -> bool:
        return bool(await session.try_toggle_play_pause_async())

    async def next_track(self, session: Any) -> bool:
        return bool(await session.try_skip_next_async())

    async def previous_track(self, session: Any) -> bool:
        return bool(await session.try_skip_previous_async())
