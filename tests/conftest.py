"""Pytest configuration and shared fixtures"""
import io
import os
import queue
import sys

import numpy as np
import pytest
from PIL import Image

# Add parent directory to path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from media_session.models import PlaybackStatus, SessionMetadata
from media_session.sources.base import BaseSessionSource, SourceCapability, SourceConfig, SourceError


class FakeSession:
    def __init__(self, source_id, status=PlaybackStatus.STOPPED, metadata=None, broken=False):
        self.source_id = source_id
        self.status = status
        self.metadata = metadata
        self.broken = broken


class FakeSource(BaseSessionSource):
    """In-memory session source. Broken sessions raise on every call."""

    events = False
    caps = (SourceCapability.METADATA | SourceCapability.PLAYBACK_CONTROL |
            SourceCapability.ARTWORK | SourceCapability.CURRENT_SESSION)

    def __init__(self, sessions=None, current=None):
        super().__init__()
        self.sessions = list(sessions or [])
        self.current = current
        self.fail_enumeration = False
        self.calls = []
        self.initialized = False
        self.closed = False

    @classmethod
    def get_config(cls) -> SourceConfig:
        return SourceConfig(name="fake", display_name="Fake", needs_polling=not cls.events)

    @classmethod
    def capabilities(cls) -> SourceCapability:
        caps = cls.caps
        if cls.events:
            caps |= SourceCapability.CHANGE_EVENTS
        return caps

    async def initialize(self):
        self.initialized = True

    async def list_sessions(self):
        if self.fail_enumeration:
            raise SourceError("enumeration failed")
        return list(self.sessions)

    async def get_current_session(self):
        return self.current

    def session_id(self, session):
        if session.broken:
            raise SourceError(f"{session.source_id} is gone")
        return session.source_id

    async def get_playback_status(self, session):
        if session.broken:
            raise SourceError(f"{session.source_id} is gone")
        return session.status

    async def get_metadata(self, session):
        if session.broken:
            raise SourceError(f"{session.source_id} is gone")
        return session.metadata

    def fire_change(self):
        self._notify_change()

    def close(self):
        self.closed = True
        super().close()

    async def toggle_playback(self, session):
        self.calls.append(("toggle", session.source_id))
        return True

    async def next_track(self, session):
        self.calls.append(("next", session.source_id))
        return True

    async def previous_track(self, session):
        self.calls.append(("previous", session.source_id))
        return True


class EventFakeSource(FakeSource):
    events = True


class LineFeed:
    """Blocking line iterator standing in for stdin. close() is EOF."""

    def __init__(self):
        self._queue = queue.Queue()

    def send(self, line):
        self._queue.put(line if line.endswith("\n") else line + "\n")

    def close(self):
        self._queue.put(None)

    def __iter__(self):
        while True:
            line = self._queue.get()
            if line is None:
                return
            yield line


def png_bytes(width, height, color=(200, 30, 60, 255)):
    buffer = io.BytesIO()
    Image.new("RGBA", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def fake_source():
    return FakeSource()


@pytest.fixture
def gradient_square():
    """144x144 RGBA image with distinct values per pixel."""
    y, x = np.mgrid[0:144, 0:144]
    pixels = np.zeros((144, 144, 4), dtype=np.uint8)
    pixels[..., 0] = x
    pixels[..., 1] = y
    pixels[..., 2] = (x + y) % 256
    pixels[..., 3] = 255
    return pixels


@pytest.fixture
def playing_session():
    metadata = SessionMetadata(title="Song", artist="A, B ; C", album_title="Album", album_artist="A")
    return FakeSession("player.one", PlaybackStatus.PLAYING, metadata)
