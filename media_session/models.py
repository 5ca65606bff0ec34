"""
Data model shared by the helper process and its consumer.

MediaInfo is the wire record: every field is always present and
defaults to empty (Status defaults to Stopped).
"""
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


class PlaybackStatus(str, Enum):
    PLAYING = "Playing"
    PAUSED = "Paused"
    STOPPED = "Stopped"

    @classmethod
    def from_native(cls, value: Any) -> "PlaybackStatus":
        """Map a native status (name, wire value or code) to a wire status.

        Anything that is not recognisably playing or paused is Stopped.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered == "playing":
                return cls.PLAYING
            if lowered == "paused":
                return cls.PAUSED
        return cls.STOPPED


_ARTIST_SEPARATORS = re.compile(r"[,;]")


def split_artists(artist: Optional[str]) -> List[str]:
    """Split a joined artist string on ',' and ';' into trimmed names."""
    if not artist:
        return []
    return [part.strip() for part in _ARTIST_SEPARATORS.split(artist) if part.strip()]


@dataclass
class CoverArt:
    """Normalized cover and its four quadrants, all base64 PNG."""
    full: str = ""
    parts: List[str] = field(default_factory=lambda: ["", "", "", ""])


@dataclass
class SessionMetadata:
    """Metadata as read from a native session. Artwork is raw image bytes."""
    title: str = ""
    artist: str = ""
    album_title: str = ""
    album_artist: str = ""
    artwork: Optional[bytes] = None


@dataclass
class MediaInfo:
    title: str = ""
    artist: str = ""
    artists: List[str] = field(default_factory=list)
    album_artist: str = ""
    album_title: str = ""
    status: PlaybackStatus = PlaybackStatus.STOPPED
    cover_art: str = ""
    cover_art_parts: List[str] = field(default_factory=lambda: ["", "", "", ""])

    @classmethod
    def from_session(cls, metadata: Optional[SessionMetadata], status: PlaybackStatus,
                     cover: Optional[CoverArt] = None) -> "MediaInfo":
        if metadata is None:
            return cls(status=status)
        info = cls(
            title=metadata.title or "",
            artist=metadata.artist or "",
            artists=split_artists(metadata.artist),
            album_artist=metadata.album_artist or "",
            album_title=metadata.album_title or "",
            status=status,
        )
        if cover is not None and cover.full:
            info.cover_art = cover.full
            info.cover_art_parts = list(cover.parts)
        return info

    def is_empty(self) -> bool:
        """Nothing playing: no title, no artist and no artists."""
        return not self.title and not self.artist and not self.artists
