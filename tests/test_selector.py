import logging

from conftest import FakeSession, FakeSource
from media_session.models import PlaybackStatus
from media_session.sources.base import SourceCapability
from media_session.selector import SelectorMemory, SessionCandidate, SessionSelector, select_session

logging.basicConfig(level=logging.DEBUG)

PLAYING = PlaybackStatus.PLAYING
PAUSED = PlaybackStatus.PAUSED
STOPPED = PlaybackStatus.STOPPED


def cand(source_id, status):
    return SessionCandidate(source_id=source_id, status=status)


def test_single_playing_wins_regardless_of_memory():
    memory = SelectorMemory(last_playing_id="browser")
    candidates = [cand("browser", PAUSED), cand("music", PLAYING), cand("video", STOPPED)]

    result = select_session(candidates, memory)

    assert result.source_id == "music"
    assert memory.last_playing_id == "music"


def test_several_playing_prefers_current_hint():
    candidates = [cand("a", PLAYING), cand("b", PLAYING)]

    assert select_session(candidates, SelectorMemory(), cand("b", PLAYING)).source_id == "b"
    assert select_session(candidates, SelectorMemory()).source_id == "a"


def test_paused_prefers_last_playing():
    memory = SelectorMemory(last_playing_id="music")
    candidates = [cand("browser", PAUSED), cand("music", PAUSED)]

    for _ in range(3):
        assert select_session(candidates, memory, cand("browser", PAUSED)).source_id == "music"


def test_paused_falls_back_to_current_then_first():
    memory = SelectorMemory(last_playing_id="gone")
    candidates = [cand("a", PAUSED), cand("b", PAUSED)]

    assert select_session(candidates, memory, cand("b", PAUSED)).source_id == "b"
    assert select_session(candidates, memory).source_id == "a"


def test_paused_selection_leaves_memory_alone():
    memory = SelectorMemory(last_playing_id="music")
    select_session([cand("browser", PAUSED)], memory)
    assert memory.last_playing_id == "music"


def test_no_active_session_uses_current_then_first():
    candidates = [cand("a", STOPPED), cand("b", STOPPED)]

    assert select_session(candidates, SelectorMemory(), cand("b", STOPPED)).source_id == "b"
    assert select_session(candidates, SelectorMemory()).source_id == "a"


def test_current_hint_outside_enumeration_is_returned():
    hint = cand("system", STOPPED)
    assert select_session([], SelectorMemory(), hint) is hint


def test_empty_without_hint_is_none():
    assert select_session([], SelectorMemory()) is None


async def test_selector_skips_broken_candidates():
    source = FakeSource([
        FakeSession("broken", PLAYING, broken=True),
        FakeSession("music", PAUSED),
    ])
    selector = SessionSelector(source)

    result = await selector.select()

    assert result.source_id == "music"
    assert result.status == PAUSED


async def test_selector_remembers_playing_session():
    music = FakeSession("music", PLAYING)
    browser = FakeSession("browser", PAUSED)
    source = FakeSource([browser, music], current=browser)
    selector = SessionSelector(source)

    assert (await selector.select()).source_id == "music"

    music.status = PAUSED
    assert (await selector.select()).source_id == "music"
    assert selector.memory.last_playing_id == "music"


async def test_enumeration_failure_falls_back_to_current():
    current = FakeSession("system", PAUSED)
    source = FakeSource([current], current=current)
    selector = SessionSelector(source)
    await selector.select()

    source.fail_enumeration = True
    assert (await selector.select()).source_id == "system"

    # Hint unavailable now: last known current session is used
    source.current = None
    assert (await selector.select()).source_id == "system"


async def test_enumeration_failure_without_any_hint_is_none():
    source = FakeSource()
    source.fail_enumeration = True
    assert await SessionSelector(source).select() is None


async def test_current_hint_ignored_without_capability():
    class NoCurrentSource(FakeSource):
        caps = SourceCapability.METADATA | SourceCapability.PLAYBACK_CONTROL

    first = FakeSession("first", PAUSED)
    preferred = FakeSession("preferred", PAUSED)
    source = NoCurrentSource([first, preferred], current=preferred)

    assert (await SessionSelector(source).select()).source_id == "first"
