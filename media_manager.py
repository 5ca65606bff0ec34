"""
Consumer side of the media session bridge.

ProcessSupervisor owns one helper process: it starts it for the first
subscriber and stops it after the last one leaves, reassembles MediaInfo
lines from the helper's stdout, and restarts the helper after unexpected
exits with a growing delay. After max_failures consecutive crashes with no
successfully parsed message in between it gives up and reports a terminal
HELPER_ERROR until reset() or a fresh subscribe().

Subscribers receive MediaManagerResult values and never see exceptions.
"""
import asyncio
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from media_session.config import SUPERVISOR, get_helper_path
from media_session.logging_config import get_logger
from media_session.codec import ParsingError, decode_media_info
from media_session.helper import COMMANDS
from media_session.models import MediaInfo

logger = get_logger(__name__)
helper_logger = get_logger("media_manager.helper")

READ_CHUNK = 64 * 1024
ONE_SHOT_TIMEOUT = 10.0
CONTROL_COMMANDS = ("toggle", "next", "previous")
# Helper console lines start with the level name
_ERROR_PREFIXES = ("ERROR", "CRITICAL")


class ErrorType(str, Enum):
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    HELPER_ERROR = "HELPER_ERROR"
    PARSING_ERROR = "PARSING_ERROR"
    NOTHING_PLAYING = "NOTHING_PLAYING"


@dataclass
class MediaError:
    type: ErrorType
    message: str
    code: Optional[Union[int, str]] = None
    terminal: bool = False


@dataclass
class MediaManagerResult:
    success: bool
    data: Optional[MediaInfo] = None
    error: Optional[MediaError] = None

    @classmethod
    def ok(cls, data: MediaInfo) -> "MediaManagerResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, type: ErrorType, message: str, code=None, terminal: bool = False) -> "MediaManagerResult":
        return cls(success=False, error=MediaError(type, message, code, terminal))

    @classmethod
    def from_info(cls, info: MediaInfo) -> "MediaManagerResult":
        """Empty MediaInfo means nothing is playing, whatever its Status."""
        if info.is_empty():
            return cls.fail(ErrorType.NOTHING_PLAYING, "No media is currently playing")
        return cls.ok(info)


Subscriber = Callable[[MediaManagerResult], None]


def file_not_found(path: Path) -> MediaManagerResult:
    logger.error(f"{path.name} not found at: {path}")
    logger.error("Build the helper with: python build.py")
    return MediaManagerResult.fail(ErrorType.FILE_NOT_FOUND, f"{path.name} not found at: {path}", terminal=True)


def helper_command(path: Path, args: Sequence[str] = ()) -> List[str]:
    """Command line for the helper. Python sources run under the current interpreter."""
    if path.suffix == ".py":
        return [sys.executable, str(path), *args]
    return [str(path), *args]


class LineFramer:
    """Reassembles newline-terminated lines from arbitrarily split chunks."""

    def __init__(self):
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[bytes]:
        self._buffer.extend(chunk)
        *complete, rest = self._buffer.split(b"\n")
        self._buffer = bytearray(rest)
        lines = []
        for line in complete:
            line = line.rstrip(b"\r")
            if line.strip():
                lines.append(bytes(line))
        return lines

    @property
    def pending(self) -> bytes:
        return bytes(self._buffer)

    def clear(self) -> None:
        self._buffer = bytearray()


class SupervisorState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"
    FAILED = "failed"


class ProcessSupervisor:
    def __init__(self, helper_path: Optional[Union[str, Path]] = None, args: Sequence[str] = (),
                 restart_delay: Optional[float] = None, restart_backoff: Optional[float] = None,
                 max_restart_delay: Optional[float] = None, max_failures: Optional[int] = None,
                 kill_timeout: Optional[float] = None):
        self.helper_path = Path(helper_path) if helper_path else get_helper_path()
        self.args = list(args)
        self.restart_delay = SUPERVISOR["restart_delay"] if restart_delay is None else restart_delay
        self.restart_backoff = SUPERVISOR["restart_backoff"] if restart_backoff is None else restart_backoff
        self.max_restart_delay = SUPERVISOR["max_restart_delay"] if max_restart_delay is None else max_restart_delay
        self.max_failures = SUPERVISOR["max_failures"] if max_failures is None else max_failures
        self.kill_timeout = SUPERVISOR["kill_timeout"] if kill_timeout is None else kill_timeout

        self.state = SupervisorState.STOPPED
        self.consecutive_failures = 0
        self.spawn_count = 0
        self._subscribers: List[Subscriber] = []
        self._process: Optional[asyncio.subprocess.Process] = None
        self._framer = LineFramer()
        self._watcher: Optional[asyncio.Task] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._stopping = False

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def subscribe(self, callback: Subscriber) -> None:
        """Add a subscriber. The first one starts the helper; a failed helper is reset."""
        self._subscribers.append(callback)
        if self.state == SupervisorState.FAILED:
            self._reset_failures()
        if len(self._subscribers) == 1 or self.state == SupervisorState.STOPPED:
            await self.start()

    async def unsubscribe(self, callback: Subscriber) -> None:
        """Remove a subscriber. The helper is stopped when none remain."""
        try:
            self._subscribers.remove(callback)
        except ValueError:
            logger.debug("unsubscribe() for unknown subscriber")
            return
        if not self._subscribers:
            await self.stop()

    def _publish(self, result: MediaManagerResult) -> None:
        for callback in list(self._subscribers):
            try:
                callback(result)
            except Exception:
                logger.exception("Subscriber callback failed")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_process_running(self) -> bool:
        return (self.state == SupervisorState.RUNNING
                and self._process is not None
                and self._process.returncode is None)

    def next_restart_delay(self) -> float:
        exponent = max(self.consecutive_failures - 1, 0)
        return min(self.restart_delay * (self.restart_backoff ** exponent), self.max_restart_delay)

    async def start(self) -> None:
        """Spawn the helper unless it is running, starting, waiting to restart or failed."""
        async with self._lock:
            if self.state != SupervisorState.STOPPED:
                logger.debug(f"start() ignored in state {self.state.value}")
                return
            await self._spawn()

    async def _spawn(self) -> None:
        self.state = SupervisorState.STARTING
        self._stopping = False
        self._framer.clear()

        if not self.helper_path.exists():
            self.state = SupervisorState.FAILED
            self._publish(file_not_found(self.helper_path))
            return

        command = helper_command(self.helper_path, self.args)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            self.state = SupervisorState.FAILED
            self._publish(file_not_found(self.helper_path))
            return
        except OSError as e:
            logger.error(f"Failed to start helper: {e}")
            self._on_failure(f"Failed to start helper: {e}", getattr(e, "errno", None))
            return

        self.spawn_count += 1
        self._process = process
        self.state = SupervisorState.RUNNING
        logger.info(f"Helper started (pid {process.pid})")
        self._watcher = asyncio.get_running_loop().create_task(self._watch(process))

    async def _watch(self, process: asyncio.subprocess.Process) -> None:
        results = await asyncio.gather(
            self._read_stdout(process), self._read_stderr(process), return_exceptions=True
        )
        failed = [r for r in results if isinstance(r, Exception)]
        for error in failed:
            logger.error(f"Reading helper output failed: {error!r}")
        if failed and process.returncode is None:
            # Nobody drains its pipes any more
            self._kill(process)
        returncode = await process.wait()

        if self._process is process:
            self._process = None
        if self._stopping:
            logger.info(f"Helper stopped (exit code {returncode})")
            return

        logger.warning(f"Helper exited unexpectedly (exit code {returncode})")
        self._on_failure(f"Helper exited with code {returncode}", returncode)

    @staticmethod
    def _kill(process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
        except ProcessLookupError:
            logger.debug("Helper already gone")

    def _on_failure(self, message: str, code=None) -> None:
        self.consecutive_failures += 1

        if not self._subscribers:
            self.state = SupervisorState.STOPPED
            return

        if self.consecutive_failures >= self.max_failures:
            self.state = SupervisorState.FAILED
            logger.error(f"Helper failed {self.consecutive_failures} times in a row, giving up")
            self._publish(MediaManagerResult.fail(
                ErrorType.HELPER_ERROR,
                f"{message} ({self.consecutive_failures} consecutive failures, not restarting)",
                code,
                terminal=True,
            ))
            return

        self.state = SupervisorState.CRASHED
        delay = self.next_restart_delay()
        logger.warning(f"Restarting helper in {delay:.2f}s (failure {self.consecutive_failures}/{self.max_failures})")
        self._publish(MediaManagerResult.fail(ErrorType.HELPER_ERROR, message, code))
        self._restart_task = asyncio.get_running_loop().create_task(self._restart_after(delay))

    async def _restart_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        async with self._lock:
            self._restart_task = None
            if self.state != SupervisorState.CRASHED:
                return
            if not self._subscribers:
                self.state = SupervisorState.STOPPED
                return
            await self._spawn()

    async def stop(self) -> None:
        """Stop the helper (closing stdin first, killing after kill_timeout) and cancel pending restarts."""
        async with self._lock:
            self._stopping = True
            if self._restart_task is not None:
                self._restart_task.cancel()
                self._restart_task = None

            process = self._process
            if process is not None and process.returncode is None:
                await self._terminate(process)
            if self._watcher is not None:
                await self._watcher
                self._watcher = None

            self._process = None
            if self.state != SupervisorState.FAILED:
                self.state = SupervisorState.STOPPED

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        # The helper exits on stdin EOF
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            return
        except asyncio.TimeoutError:
            logger.debug("Helper ignored stdin EOF, terminating")
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning("Helper ignored terminate, killing")
            process.kill()
            await process.wait()

    def _reset_failures(self) -> None:
        self.consecutive_failures = 0
        if self.state == SupervisorState.FAILED:
            self.state = SupervisorState.STOPPED

    async def reset(self) -> None:
        """Clear the failure count and leave the terminal state, restarting if anyone is subscribed."""
        self._reset_failures()
        if self._subscribers:
            await self.start()

    # ------------------------------------------------------------------
    # I/O
    # ------------------------------------------------------------------

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        while True:
            chunk = await process.stdout.read(READ_CHUNK)
            if not chunk:
                break
            for line in self._framer.feed(chunk):
                self._handle_line(line)
        if self._framer.pending.strip():
            logger.debug(f"Discarding {len(self._framer.pending)} bytes of unterminated output")
        self._framer.clear()

    def _handle_line(self, line: bytes) -> None:
        try:
            info = decode_media_info(line)
        except ParsingError as e:
            logger.warning(f"Dropping malformed helper output: {e}")
            self._publish(MediaManagerResult.fail(ErrorType.PARSING_ERROR, str(e)))
            return
        self.consecutive_failures = 0
        self._publish(MediaManagerResult.from_info(info))

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        # Chunked like stdout so arbitrarily long lines cannot overrun the stream limit
        framer = LineFramer()
        while True:
            chunk = await process.stderr.read(READ_CHUNK)
            if not chunk:
                break
            for raw in framer.feed(chunk):
                self._handle_stderr_line(raw.decode("utf-8", errors="replace").rstrip())

    def _handle_stderr_line(self, text: str) -> None:
        if text.startswith(_ERROR_PREFIXES):
            helper_logger.error(text)
            self._publish(MediaManagerResult.fail(ErrorType.HELPER_ERROR, text))
        else:
            helper_logger.debug(text)

    def send_command(self, command: str) -> bool:
        """Write a command to the helper's stdin. Dropped (False) unless the helper is running."""
        command = command.strip().lower()
        if command not in COMMANDS:
            raise ValueError(f"Unknown command: {command!r}")
        process = self._process
        if not self.is_process_running() or process.stdin is None or process.stdin.is_closing():
            logger.debug(f"Dropping '{command}', helper not running")
            return False
        process.stdin.write(f"{command}\n".encode("utf-8"))
        return True

    def request_update(self) -> bool:
        return self.send_command("update")


# ==========================================
# One-shot invocation
# ==========================================

async def run_once(args: Sequence[str] = (), helper_path: Optional[Union[str, Path]] = None,
                   timeout: float = ONE_SHOT_TIMEOUT) -> MediaManagerResult:
    """Run the helper once with args and map its outcome to a result."""
    path = Path(helper_path) if helper_path else get_helper_path()
    if not path.exists():
        return file_not_found(path)

    try:
        process = await asyncio.create_subprocess_exec(
            *helper_command(path, args),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return file_not_found(path)
    except OSError as e:
        return MediaManagerResult.fail(ErrorType.HELPER_ERROR, str(e), getattr(e, "errno", None))

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return MediaManagerResult.fail(ErrorType.HELPER_ERROR, f"Helper timed out after {timeout}s")

    if process.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip() or f"Helper exited with code {process.returncode}"
        return MediaManagerResult.fail(ErrorType.HELPER_ERROR, message, process.returncode)

    if not stdout.strip():
        errors = [line for line in stderr.decode("utf-8", errors="replace").splitlines()
                  if line.startswith(_ERROR_PREFIXES)]
        if errors:
            return MediaManagerResult.fail(ErrorType.HELPER_ERROR, errors[-1])
        if args and args[0] in CONTROL_COMMANDS:
            return MediaManagerResult.ok(MediaInfo())
        return MediaManagerResult.fail(ErrorType.NOTHING_PLAYING, "No media is currently playing")

    lines = LineFramer().feed(stdout if stdout.endswith(b"\n") else stdout + b"\n")
    try:
        info = decode_media_info(lines[-1])
    except ParsingError as e:
        logger.warning(f"Failed to parse helper output: {e}")
        return MediaManagerResult.fail(ErrorType.PARSING_ERROR, str(e))
    return MediaManagerResult.from_info(info)


async def get_media_info(helper_path=None) -> MediaManagerResult:
    return await run_once(["update"], helper_path)


async def toggle_play_pause(helper_path=None) -> MediaManagerResult:
    return await run_once(["toggle"], helper_path)


async def next_media(helper_path=None) -> MediaManagerResult:
    return await run_once(["next"], helper_path)


async def previous_media(helper_path=None) -> MediaManagerResult:
    return await run_once(["previous"], helper_path)
