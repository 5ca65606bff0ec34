"""
The resident helper process.

Reads one command per line from stdin (toggle, next, previous, update;
case-insensitive, trimmed, anything else ignored) and writes one MediaInfo
JSON line to stdout per completed update. Change notifications, poll ticks
and the update command all feed the same UpdateScheduler.
"""
import asyncio
import sys
import threading
from typing import Optional, Set, TextIO

from .logging_config import get_logger
from .codec import encode_media_info
from .models import MediaInfo
from .scheduler import DEFAULT_DEBOUNCE, UpdateScheduler
from .selector import SessionSelector
from .sources.base import BaseSessionSource, SourceCapability
from .thumbnail import TARGET_SIZE, build_cover_art

logger = get_logger(__name__)

COMMANDS = ("toggle", "next", "previous", "update")


def parse_command(line: str) -> Optional[str]:
    command = line.strip().lower()
    return command if command in COMMANDS else None


class HelperProcess:
    def __init__(self, source: BaseSessionSource, output: Optional[TextIO] = None,
                 input: Optional[TextIO] = None, debounce: float = DEFAULT_DEBOUNCE,
                 poll_interval: float = 2.0, thumbnail_size: int = TARGET_SIZE):
        self.source = source
        self.selector = SessionSelector(source)
        self.output = output or sys.stdout
        self.input = input or sys.stdin
        self.debounce = debounce
        self.poll_interval = poll_interval
        self.thumbnail_size = thumbnail_size
        self.scheduler: Optional[UpdateScheduler] = None
        self.emitted = 0
        self._stop: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()
        self._output_lock = threading.Lock()

    @property
    def polling(self) -> bool:
        return self.poll_interval > 0 and self.source.needs_polling

    # ------------------------------------------------------------------
    # Update pipeline
    # ------------------------------------------------------------------

    async def build_media_info(self) -> MediaInfo:
        """select -> metadata -> cover art. Failing native calls degrade, never raise."""
        candidate = await self.selector.select()
        if candidate is None:
            return MediaInfo()

        capabilities = self.source.capabilities()
        metadata = None
        if capabilities & SourceCapability.METADATA:
            try:
                metadata = await self.source.get_metadata(candidate.session)
            except Exception as e:
                logger.warning(f"Metadata unavailable for {candidate.source_id}: {e}")

        cover = None
        if capabilities & SourceCapability.ARTWORK and metadata is not None and metadata.artwork:
            loop = asyncio.get_running_loop()
            cover = await loop.run_in_executor(None, build_cover_art, metadata.artwork, self.thumbnail_size)

        return MediaInfo.from_session(metadata, candidate.status, cover)

    def emit(self, info: MediaInfo) -> None:
        line = encode_media_info(info)
        with self._output_lock:
            self.output.write(line)
            self.output.flush()
        self.emitted += 1

    async def update(self) -> None:
        info = await self.build_media_info()
        self.emit(info)
        logger.debug(f"Emitted {info.status.value}: {info.artist} - {info.title}")

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def control(self, command: str) -> bool:
        """Run a transport command against the selected session."""
        if not self.source.capabilities() & SourceCapability.PLAYBACK_CONTROL:
            logger.info(f"{self.source.name} source cannot {command}")
            return False
        actions = {
            "toggle": self.source.toggle_playback,
            "next": self.source.next_track,
            "previous": self.source.previous_track,
        }
        candidate = await self.selector.select()
        if candidate is None:
            logger.info(f"No session to {command}")
            return False
        try:
            return bool(await actions[command](candidate.session))
        except Exception as e:
            logger.warning(f"{command} failed on {candidate.source_id}: {e}")
            return False

    async def handle_command(self, command: str) -> None:
        if command == "update":
            if self.scheduler is not None:
                self.scheduler.run_now()
            return
        ok = await self.control(command)
        if ok and self.scheduler is not None:
            # Sources without change events would otherwise wait for the next tick
            self.scheduler.trigger()

    def dispatch(self, line: str) -> None:
        """Fire-and-forget a command line. Loop thread only."""
        command = parse_command(line)
        if command is None:
            if line.strip():
                logger.debug(f"Ignoring unknown command: {line.strip()!r}")
            return
        task = asyncio.get_running_loop().create_task(self.handle_command(command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _read_commands(self, loop: asyncio.AbstractEventLoop) -> None:
        """Blocking stdin loop on its own thread. EOF stops the helper."""
        try:
            for line in self.input:
                loop.call_soon_threadsafe(self.dispatch, line)
        except (OSError, ValueError) as e:
            logger.warning(f"stdin closed: {e}")
        finally:
            if not loop.is_closed():
                loop.call_soon_threadsafe(self.stop)

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            self.scheduler.trigger()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        self.scheduler = UpdateScheduler(self.update, self.debounce, loop)

        await self.source.initialize()
        if self.source.capabilities() & SourceCapability.CHANGE_EVENTS:
            self.source.subscribe(self.scheduler.trigger_threadsafe)

        logger.info(f"Helper running with {self.source.name} source (polling: {self.polling})")
        self.scheduler.run_now()

        reader = threading.Thread(target=self._read_commands, args=(loop,), name="stdin-reader", daemon=True)
        reader.start()
        poller = loop.create_task(self._poll()) if self.polling else None

        try:
            await self._stop.wait()
        finally:
            if poller is not None:
                poller.cancel()
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            await self.scheduler.close()
            self.source.close()
        logger.info("Helper stopped")
        return 0

    async def run_once(self, command: Optional[str] = None) -> int:
        """One-shot mode: perform a command, or print one MediaInfo line, then return."""
        await self.source.initialize()
        try:
            if command is None or command == "update":
                self.emit(await self.build_media_info())
            else:
                await self.control(command)
        finally:
            self.source.close()
        return 0
