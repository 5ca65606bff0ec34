"""
macOS session source via nowplaying-cli or AppleScript fallback.

With nowplaying-cli installed (brew install nowplaying-cli) there is one
system-wide "now playing" session covering every app that reports to
Control Center. Without it, Music.app and Spotify are queried directly
through osascript, one session per running app.

Neither path delivers change notifications to a subprocess, so this
source is polled.
"""
import asyncio
import base64
import binascii
import subprocess
import platform
from typing import Any, List, Optional

from ..config import HELPER
from ..logging_config import get_logger
from ..models import PlaybackStatus, SessionMetadata
from .artwork import load_artwork
from .base import BaseSessionSource, SourceCapability, SourceConfig, SourceError

logger = get_logger(__name__)

NOWPLAYING_SESSION = "nowplaying"
SCRIPTED_APPS = ("Music", "Spotify")
COMMAND_TIMEOUT = 3

# AppleScript verbs per transport command
_APPLESCRIPT_COMMANDS = {
    "toggle": "playpause",
    "next": "next track",
    "previous": "previous track",
}
_NOWPLAYING_COMMANDS = {
    "toggle": "togglePlayPause",
    "next": "next",
    "previous": "previous",
}

_TRACK_SCRIPT = '''
tell application "{app}"
    set trackName to name of current track
    set trackArtist to artist of current track
    set trackAlbum to album of current track
    set trackAlbumArtist to ""
    try
        set trackAlbumArtist to album artist of current track
    end try
    set artUrl to ""
    {artwork}
    return trackName & "\\n" & trackArtist & "\\n" & trackAlbum & "\\n" & trackAlbumArtist & "\\n" & artUrl
end tell
'''
# Only Spotify exposes an artwork URL to AppleScript
_SPOTIFY_ARTWORK = "set artUrl to artwork url of current track"


def _run(args: List[str]) -> str:
    try:
        result = subprocess.run(args, capture_output=True, text=True, timeout=COMMAND_TIMEOUT)
    except subprocess.TimeoutExpired as e:
        raise SourceError(f"{args[0]} timed out") from e
    except (OSError, subprocess.SubprocessError) as e:
        raise SourceError(f"{args[0]} failed: {e}") from e
    if result.returncode != 0:
        raise SourceError(f"{args[0]} exited with {result.returncode}: {result.stderr.strip()}")
    return result.stdout


def _osascript(script: str) -> str:
    return _run(["osascript", "-e", script]).strip()


def parse_rate(value: str) -> PlaybackStatus:
    """nowplaying-cli playbackRate: >0 playing, 0 paused, 'null' nothing loaded."""
    try:
        rate = float(value.strip())
    except ValueError:
        return PlaybackStatus.STOPPED
    return PlaybackStatus.PLAYING if rate > 0 else PlaybackStatus.PAUSED


def _clean(value: str) -> str:
    value = value.strip()
    return "" if value == "null" else value


class MacOSSessionSource(BaseSessionSource):

    def __init__(self):
        super().__init__()
        self._nowplaying_cli_available: Optional[bool] = None

    @classmethod
    def get_config(cls) -> SourceConfig:
        return SourceConfig(
            name="macos",
            display_name="macOS (Now Playing)",
            platforms=["Darwin"],
            needs_polling=True,
        )

    @classmethod
    def capabilities(cls) -> SourceCapability:
        return (SourceCapability.METADATA |
                SourceCapability.PLAYBACK_CONTROL |
                SourceCapability.ARTWORK |
                SourceCapability.CURRENT_SESSION)

    def is_available(self) -> bool:
        # AppleScript is always available on macOS
        return platform.system() == "Darwin"

    def _check_nowplaying_cli(self) -> bool:
        if self._nowplaying_cli_available is None:
            try:
                _run(["nowplaying-cli", "get", "title"])
                self._nowplaying_cli_available = True
                logger.debug("nowplaying-cli found and available")
            except SourceError as e:
                self._nowplaying_cli_available = False
                logger.info(f"nowplaying-cli unavailable ({e}), using AppleScript for Music and Spotify")
        return self._nowplaying_cli_available

    async def _call(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def initialize(self) -> None:
        await self._call(self._check_nowplaying_cli)

    async def list_sessions(self) -> List[Any]:
        if await self._call(self._check_nowplaying_cli):
            return [NOWPLAYING_SESSION]
        sessions = []
        for app in SCRIPTED_APPS:
            try:
                running = await self._call(_osascript, f'application "{app}" is running')
            except SourceError as e:
                logger.debug(f"{app} not queryable: {e}")
                continue
            if running == "true":
                sessions.append(app)
        return sessions

    async def get_current_session(self) -> Optional[Any]:
        if await self._call(self._check_nowplaying_cli):
            return NOWPLAYING_SESSION
        return None

    def session_id(self, session: Any) -> str:
        return session

    async def get_playback_status(self, session: Any) -> PlaybackStatus:
        if session == NOWPLAYING_SESSION:
            return parse_rate(await self._call(_run, ["nowplaying-cli", "get", "playbackRate"]))
        state = await self._call(_osascript, f'tell application "{session}" to player state as string')
        return PlaybackStatus.from_native(state)

    async def get_metadata(self, session: Any) -> Optional[SessionMetadata]:
        if session == NOWPLAYING_SESSION:
            return await self._nowplaying_metadata()

        script = _TRACK_SCRIPT.format(app=session, artwork=_SPOTIFY_ARTWORK if session == "Spotify" else "")
        output = await self._call(_osascript, script)
        lines = output.split("\n") + [""] * 5
        metadata = SessionMetadata(
            title=lines[0].strip(),
            artist=lines[1].strip(),
            album_title=lines[2].strip(),
            album_artist=lines[3].strip(),
        )
        if lines[4].strip():
            metadata.artwork = await self._call(load_artwork, lines[4].strip(), HELPER["artwork_timeout"])
        return metadata

    async def _nowplaying_metadata(self) -> SessionMetadata:
        output = await self._call(_run, ["nowplaying-cli", "get", "title", "artist", "album", "albumArtist"])
        lines = output.split("\n") + [""] * 4
        metadata = SessionMetadata(
            title=_clean(lines[0]),
            artist=_clean(lines[1]),
            album_title=_clean(lines[2]),
            album_artist=_clean(lines[3]),
        )
        try:
            encoded = _clean(await self._call(_run, ["nowplaying-cli", "get", "artworkData"]))
            if encoded:
                metadata.artwork = base64.b64decode(encoded)
        except (SourceError, binascii.Error) as e:
            logger.debug(f"nowplaying-cli artwork unavailable: {e}")
        return metadata

    async def _control(self, session: Any, command: str) -> bool:
        if session == NOWPLAYING_SESSION:
            await self._call(_run, ["nowplaying-cli", _NOWPLAYING_COMMANDS[command]])
        else:
            await self._call(_osascript, f'tell application "{session}" to {_APPLESCRIPT_COMMANDS[command]}')
        logger.debug(f"macOS playback: {command} ({session})")
        return True

    async def toggle_playback(self, session: Any) -> bool:
        return await self._control(session, "toggle")

    async def next_track(self, session: Any) -> bool:
        return await self._control(session, "next")

    async def previous_track(self, session: Any) -> bool:
        return await self._control(session, "previous")
