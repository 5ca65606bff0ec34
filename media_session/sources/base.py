"""
Base class for native session sources.

A session source wraps one OS "now playing" API. It enumerates the
current playback sessions, reads status and metadata per session, fires
change notifications and forwards transport controls.

To add a platform:
1. Create a new file in media_session/sources/
2. Subclass BaseSessionSource
3. Implement get_config(), capabilities() and the session methods
4. Import it in media_session/sources/__init__.py so it registers

Every call may fail. Callers treat a failing session as absent, so
implementations should raise rather than return half-initialised data.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Flag, auto
from typing import Any, Callable, List, Optional
import platform

from ..models import PlaybackStatus, SessionMetadata


class SourceCapability(Flag):
    """
    Capabilities a source can declare.

    Combine with bitwise OR, check with bitwise AND:
        if source.capabilities() & SourceCapability.CHANGE_EVENTS
    """
    NONE = 0
    METADATA = auto()           # Title/artist/album per session
    PLAYBACK_CONTROL = auto()   # toggle/next/previous
    ARTWORK = auto()            # Raw artwork bytes in metadata
    CHANGE_EVENTS = auto()      # Pushes change notifications
    CURRENT_SESSION = auto()    # Has an OS-preferred "current" session


@dataclass
class SourceConfig:
    """Static identity of a session source."""
    name: str                              # Internal ID ("windows", "macos", "linux")
    display_name: str                      # Human-readable name for logs
    platforms: List[str] = field(default_factory=lambda: ["Windows", "Linux", "Darwin"])
    needs_polling: bool = True             # Change events missing or unreliable


ChangeCallback = Callable[[], None]


class SourceError(Exception):
    """A native query or control call failed."""


class BaseSessionSource(ABC):
    """
    Abstract base class for session sources.

    Required methods:
        get_config(), capabilities()
        list_sessions(), session_id(), get_playback_status(), get_metadata()
        toggle_playback(), next_track(), previous_track()

    Optional methods:
        initialize() - One-time async setup (e.g. request a session manager)
        get_current_session() - OS-preferred session hint
        subscribe()/close() - Change notifications
        is_available() - Platform and dependency checks
    """

    def __init__(self):
        self._config = self.get_config()
        self._on_change: Optional[ChangeCallback] = None

    @classmethod
    @abstractmethod
    def get_config(cls) -> SourceConfig:
        pass

    @classmethod
    @abstractmethod
    def capabilities(cls) -> SourceCapability:
        pass

    @property
    def name(self) -> str:
        """Source name (convenience property)."""
        return self._config.name

    @property
    def needs_polling(self) -> bool:
        return self._config.needs_polling

    def is_available(self) -> bool:
        """
        Check if this source can run here.

        Default implementation checks the current platform against
        config.platforms. Override to add dependency checks.
        """
        return platform.system() in self._config.platforms

    async def initialize(self) -> None:
        """One-time setup before the first enumeration."""
        return None

    @abstractmethod
    async def list_sessions(self) -> List[Any]:
        """Return native session handles in the source's enumeration order."""
        pass

    @abstractmethod
    def session_id(self, session: Any) -> str:
        """Stable identity of a session (app id, player name)."""
        pass

    @abstractmethod
    async def get_playback_status(self, session: Any) -> PlaybackStatus:
        pass

    @abstractmethod
    async def get_metadata(self, session: Any) -> Optional[SessionMetadata]:
        pass

    async def get_current_session(self) -> Optional[Any]:
        """OS-preferred session, if the platform has that notion."""
        return None

    def subscribe(self, callback: ChangeCallback) -> None:
        """
        Register the change callback.

        The callback may be invoked from any thread. Sources that declare
        CHANGE_EVENTS call it whenever the session set, the current
        session, or any session's metadata or playback state changes.
        """
        self._on_change = callback

    def _notify_change(self) -> None:
        callback = self._on_change
        if callback is not None:
            callback()

    def close(self) -> None:
        """Detach native handlers. Safe to call more than once."""
        self._on_change = None

    @abstractmethod
    async def toggle_playback(self, session: Any) -> bool:
        pass

    @abstractmethod
    async def next_track(self, session: Any) -> bool:
        pass

    @abstractmethod
    async def previous_track(self, session: Any) -> bool:
        pass
