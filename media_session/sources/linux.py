"""
Linux MPRIS session source via playerctl.

Every MPRIS player (Spotify, VLC, Firefox, Rhythmbox, ...) is one session,
identified by its playerctl player name. playerctl has no push channel we
can rely on here, so this source is polled.

Requirements:
- playerctl installed: sudo apt install playerctl
"""
import asyncio
import subprocess
import platform
from typing import Any, List, Optional, Tuple

from ..config import HELPER
from ..logging_config import get_logger
from ..models import PlaybackStatus, SessionMetadata
from .artwork import load_artwork
from .base import BaseSessionSource, SourceCapability, SourceConfig, SourceError

logger = get_logger(__name__)

# One field per line, in this order
METADATA_FORMAT = "{{title}}\n{{artist}}\n{{album}}\n{{xesam:albumArtist}}\n{{mpris:artUrl}}"

PLAYERCTL_TIMEOUT = 2


def parse_metadata(output: str) -> Tuple[SessionMetadata, str]:
    """Split playerctl --format output into metadata and the artwork URL."""
    lines = output.split("\n")
    lines += [""] * (5 - len(lines))
    return SessionMetadata(
        title=lines[0].strip(),
        artist=lines[1].strip(),
        album_title=lines[2].strip(),
        album_artist=lines[3].strip(),
    ), lines[4].strip()


class LinuxSessionSource(BaseSessionSource):

    def __init__(self):
        super().__init__()
        self._playerctl_available: Optional[bool] = None

    @classmethod
    def get_config(cls) -> SourceConfig:
        return SourceConfig(
            name="linux",
            display_name="Linux (MPRIS)",
            platforms=["Linux"],
            needs_polling=True,
        )

    @classmethod
    def capabilities(cls) -> SourceCapability:
        return (SourceCapability.METADATA |
                SourceCapability.PLAYBACK_CONTROL |
                SourceCapability.ARTWORK)

    def is_available(self) -> bool:
        """Linux with a working playerctl. The result is cached."""
        if platform.system() != "Linux":
            return False

        if self._playerctl_available is None:
            try:
                result = subprocess.run(["playerctl", "--version"], capture_output=True, timeout=PLAYERCTL_TIMEOUT)
                self._playerctl_available = result.returncode == 0
                if self._playerctl_available:
                    logger.debug(f"playerctl found: {result.stdout.decode().strip()}")
            except FileNotFoundError:
                self._playerctl_available = False
                logger.warning("playerctl not installed. Install with: sudo apt install playerctl")
            except subprocess.TimeoutExpired:
                self._playerctl_available = False
                logger.warning("playerctl check timed out")

        return self._playerctl_available

    async def _run_playerctl(self, *args) -> str:
        """Run playerctl off the loop. Raises SourceError on any failure."""
        loop = asyncio.get_running_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: subprocess.run(
                    ["playerctl", *args],
                    capture_output=True,
                    text=True,
                    timeout=PLAYERCTL_TIMEOUT
                )
            )
        except subprocess.TimeoutExpired as e:
            raise SourceError(f"playerctl {args[-1]} timed out") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise SourceError(f"playerctl {args[-1]} failed: {e}") from e

        if result.returncode != 0:
            raise SourceError(f"playerctl {' '.join(args)}: {result.stderr.strip() or result.returncode}")
        return result.stdout

    async def list_sessions(self) -> List[Any]:
        try:
            output = await self._run_playerctl("--list-all")
        except SourceError as e:
            # playerctl exits non-zero when no players are running
            if "No players found" in str(e):
                return []
            raise
        return [name.strip() for name in output.splitlines() if name.strip()]

    def session_id(self, session: Any) -> str:
        return session

    async def get_playback_status(self, session: Any) -> PlaybackStatus:
        output = await self._run_playerctl("--player", session, "status")
        return PlaybackStatus.from_native(output)

    async def get_metadata(self, session: Any) -> Optional[SessionMetadata]:
        output = await self._run_playerctl("--player", session, "metadata", "--format", METADATA_FORMAT)
        metadata, art_url = parse_metadata(output.rstrip("\n"))
        if art_url:
            loop = asyncio.get_running_loop()
            metadata.artwork = await loop.run_in_executor(None, load_artwork, art_url, HELPER["artwork_timeout"])
        return metadata

    async def _control(self, session: Any, command: str) -> bool:
        await self._run_playerctl("--player", session, command)
        logger.debug(f"playerctl {command} sent to {session}")
        return True

    async def toggle_playback(self, session: Any) -> bool:
        return await self._control(session, "play-pause")

    async def next_track(self, session: Any) -> bool:
        return await self._control(session, "next")

    async def previous_track(self, session: Any) -> bool:
        return await self._control(session, "previous")
