import asyncio
import json
import textwrap
from unittest.mock import patch

import pytest

from media_manager import (
    ErrorType,
    LineFramer,
    ProcessSupervisor,
    SupervisorState,
    get_media_info,
    run_once,
    toggle_play_pause,
)
from media_session.codec import decode_media_info

ECHO_HELPER = """
import json, sys

def emit(title, artist="A, B"):
    print(json.dumps({"Title": title, "Artist": artist, "Status": "Playing"}), flush=True)

emit("start")
for line in sys.stdin:
    command = line.strip()
    if command == "update":
        emit("updated")
    elif command == "silence":
        print(json.dumps({}), flush=True)
    elif command:
        emit(command)
"""

CRASHING_HELPER = """
import sys
sys.exit(3)
"""

FLAKY_HELPER = """
import json
print(json.dumps({"Title": "ok", "Status": "Paused"}), flush=True)
raise SystemExit(1)
"""

NOISY_HELPER = """
import json, sys
print("not json", flush=True)
print("ERROR media_helper: native call failed", file=sys.stderr, flush=True)
print("INFO media_helper: just chatting", file=sys.stderr, flush=True)
print(json.dumps({"Title": "fine"}), flush=True)
sys.stdin.read()
"""


def write_helper(tmp_path, name, source):
    path = tmp_path / f"{name}.py"
    path.write_text(textwrap.dedent(source), encoding="utf-8")
    return path


async def wait_until(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class Recorder:
    def __init__(self):
        self.results = []

    def __call__(self, result):
        self.results.append(result)

    def titles(self):
        return [r.data.title for r in self.results if r.success]

    def errors(self, error_type):
        return [r.error for r in self.results if not r.success and r.error.type == error_type]


def fast_supervisor(path, **kwargs):
    options = dict(restart_delay=0.01, restart_backoff=1.0, max_restart_delay=0.05,
                   max_failures=5, kill_timeout=2.0)
    options.update(kwargs)
    return ProcessSupervisor(path, **options)


# ------------------------------------------------------------------
# Framing
# ------------------------------------------------------------------

def test_line_split_across_chunks():
    framer = LineFramer()

    assert framer.feed(b'{"Tit') == []
    lines = framer.feed(b'le":"A"}\n')

    assert len(lines) == 1
    assert decode_media_info(lines[0]).title == "A"
    assert framer.pending == b""


def test_many_lines_in_one_chunk_and_partial_tail():
    framer = LineFramer()

    lines = framer.feed(b'{"Title":"1"}\r\n\n{"Title":"2"}\n{"Title":"3"')

    assert [decode_media_info(line).title for line in lines] == ["1", "2"]
    assert framer.pending == b'{"Title":"3"'
    assert [decode_media_info(line).title for line in framer.feed(b"}\n")] == ["3"]


def test_multibyte_character_split_between_chunks():
    encoded = json.dumps({"Title": "Ünïcode"}, ensure_ascii=False).encode("utf-8") + b"\n"
    split_at = encoded.index("Ü".encode("utf-8")) + 1
    framer = LineFramer()

    lines = framer.feed(encoded[:split_at]) + framer.feed(encoded[split_at:])

    assert decode_media_info(lines[0]).title == "Ünïcode"


def test_restart_delay_grows_and_caps():
    supervisor = ProcessSupervisor("missing", restart_delay=1.0, restart_backoff=2.0, max_restart_delay=10.0)

    delays = []
    for failures in range(1, 6):
        supervisor.consecutive_failures = failures
        delays.append(supervisor.next_restart_delay())

    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0]


# ------------------------------------------------------------------
# Process lifecycle
# ------------------------------------------------------------------

async def test_subscribe_runs_helper_and_routes_commands(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "echo", ECHO_HELPER))
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: recorder.titles() == ["start"])
    assert supervisor.is_process_running()
    assert recorder.results[0].data.artists == ["A", "B"]

    assert supervisor.send_command("Toggle") is True
    assert supervisor.request_update() is True
    await wait_until(lambda: recorder.titles() == ["start", "toggle", "updated"])

    supervisor.send_command("next")
    await wait_until(lambda: len(recorder.results) == 4)

    await supervisor.unsubscribe(recorder)
    assert supervisor.state == SupervisorState.STOPPED
    assert not supervisor.is_process_running()
    assert supervisor.spawn_count == 1
    assert supervisor.send_command("toggle") is False


async def test_empty_record_is_nothing_playing(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "echo", ECHO_HELPER))
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: len(recorder.results) == 1)
    supervisor._process.stdin.write(b"silence\n")
    await wait_until(lambda: len(recorder.results) == 2)
    await supervisor.unsubscribe(recorder)

    assert recorder.errors(ErrorType.NOTHING_PLAYING)


async def test_reference_counting(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "echo", ECHO_HELPER))
    first, second = Recorder(), Recorder()

    await supervisor.subscribe(first)
    await supervisor.subscribe(second)
    await wait_until(lambda: first.titles() and second.titles())
    assert supervisor.spawn_count == 1

    await supervisor.unsubscribe(first)
    assert supervisor.is_process_running()

    await supervisor.unsubscribe(second)
    assert not supervisor.is_process_running()
    assert supervisor.spawn_count == 1


async def test_gives_up_after_consecutive_crashes(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "crash", CRASHING_HELPER))
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: supervisor.state == SupervisorState.FAILED)
    await asyncio.sleep(0.2)

    assert supervisor.spawn_count == 5
    errors = recorder.errors(ErrorType.HELPER_ERROR)
    assert len(errors) == 5
    assert [e.terminal for e in errors] == [False, False, False, False, True]
    assert errors[-1].code == 3
    assert supervisor.send_command("toggle") is False

    # A fresh subscriber resets the failure state and tries again
    await supervisor.subscribe(Recorder())
    await wait_until(lambda: supervisor.state == SupervisorState.FAILED)
    assert supervisor.spawn_count == 10

    await supervisor.stop()


async def test_successful_parse_resets_failure_count(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "flaky", FLAKY_HELPER), max_failures=3)
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: supervisor.spawn_count >= 6)

    assert supervisor.state != SupervisorState.FAILED
    assert not any(e.terminal for e in recorder.errors(ErrorType.HELPER_ERROR))
    assert recorder.titles().count("ok") >= 5

    await supervisor.unsubscribe(recorder)
    assert supervisor.state == SupervisorState.STOPPED


async def test_reset_leaves_failed_state(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "crash", CRASHING_HELPER), max_failures=2)
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: supervisor.state == SupervisorState.FAILED)
    assert supervisor.spawn_count == 2

    await supervisor.reset()
    await wait_until(lambda: supervisor.spawn_count == 4 and supervisor.state == SupervisorState.FAILED)
    await supervisor.unsubscribe(recorder)


async def test_stop_cancels_pending_restart(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "crash", CRASHING_HELPER),
                                 restart_delay=0.5, max_restart_delay=0.5)
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: supervisor.state == SupervisorState.CRASHED)
    await supervisor.unsubscribe(recorder)
    await asyncio.sleep(0.7)

    assert supervisor.spawn_count == 1
    assert supervisor.state == SupervisorState.STOPPED


async def test_parse_errors_and_stderr_do_not_kill_helper(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "noisy", NOISY_HELPER))
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: "fine" in recorder.titles()
                     and recorder.errors(ErrorType.HELPER_ERROR))

    assert len(recorder.errors(ErrorType.PARSING_ERROR)) == 1
    helper_errors = recorder.errors(ErrorType.HELPER_ERROR)
    assert len(helper_errors) == 1
    assert "native call failed" in helper_errors[0].message
    assert not helper_errors[0].terminal
    assert supervisor.is_process_running()
    assert supervisor.consecutive_failures == 0

    await supervisor.unsubscribe(recorder)


async def test_missing_binary_is_file_not_found(tmp_path):
    supervisor = fast_supervisor(tmp_path / "bin" / "MediaHelper")
    recorder = Recorder()

    await supervisor.subscribe(recorder)

    errors = recorder.errors(ErrorType.FILE_NOT_FOUND)
    assert len(errors) == 1
    assert "MediaHelper" in errors[0].message
    assert supervisor.spawn_count == 0
    assert supervisor.state == SupervisorState.FAILED


def test_unknown_command_is_rejected(tmp_path):
    supervisor = fast_supervisor(tmp_path / "missing")
    with pytest.raises(ValueError):
        supervisor.send_command("rewind")


# ------------------------------------------------------------------
# One-shot invocation
# ------------------------------------------------------------------

async def test_run_once_reads_single_record(tmp_path):
    path = write_helper(tmp_path, "once", """
        import json
        print(json.dumps({"Title": "Once", "Artist": "X; Y"}))
    """)

    result = await get_media_info(path)

    assert result.success
    assert result.data.title == "Once"
    assert result.data.artists == ["X", "Y"]


async def test_run_once_empty_output(tmp_path):
    path = write_helper(tmp_path, "quiet", "import sys\n")

    assert (await get_media_info(path)).error.type == ErrorType.NOTHING_PLAYING
    assert (await toggle_play_pause(path)).success


async def test_run_once_errors(tmp_path):
    failing = write_helper(tmp_path, "failing", "raise SystemExit(2)\n")
    garbage = write_helper(tmp_path, "garbage", "print('{oops')\n")
    complaining = write_helper(tmp_path, "complaining", """
        import sys
        print("ERROR media_helper: no session source", file=sys.stderr)
    """)

    result = await run_once(["update"], failing)
    assert result.error.type == ErrorType.HELPER_ERROR
    assert result.error.code == 2

    assert (await run_once(["update"], garbage)).error.type == ErrorType.PARSING_ERROR
    assert (await run_once(["toggle"], complaining)).error.type == ErrorType.HELPER_ERROR
    assert (await run_once(["update"], tmp_path / "nope")).error.type == ErrorType.FILE_NOT_FOUND


async def test_long_stderr_line_then_exit_is_restarted(tmp_path):
    path = write_helper(tmp_path, "chatty", """
        import sys
        print("WARNING " + "x" * 200000, file=sys.stderr, flush=True)
        print("ERROR " + "y" * 100000, file=sys.stderr, flush=True)
        sys.exit(4)
    """)
    supervisor = fast_supervisor(path)
    recorder = Recorder()

    await supervisor.subscribe(recorder)
    await wait_until(lambda: supervisor.spawn_count > 1)

    exits = [e for e in recorder.errors(ErrorType.HELPER_ERROR) if e.code == 4]
    assert exits
    assert any(e.message.startswith("ERROR yyy") for e in recorder.errors(ErrorType.HELPER_ERROR))

    await supervisor.unsubscribe(recorder)
    assert supervisor.state == SupervisorState.STOPPED


async def test_failing_reader_counts_as_crash(tmp_path):
    supervisor = fast_supervisor(write_helper(tmp_path, "echo", ECHO_HELPER), max_failures=20)
    recorder = Recorder()

    with patch.object(supervisor, "_handle_line", side_effect=RuntimeError("decoder failed")):
        await supervisor.subscribe(recorder)
        await wait_until(lambda: supervisor.spawn_count > 1)

    first_error = recorder.errors(ErrorType.HELPER_ERROR)[0]
    assert not first_error.terminal

    # The restarted helper is read normally again
    await wait_until(lambda: "start" in recorder.titles())
    await supervisor.unsubscribe(recorder)
    assert supervisor.state == SupervisorState.STOPPED
