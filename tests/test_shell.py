"""Tests for libshell.Shell against a real /bin/sh."""

from __future__ import annotations

import threading
import time
import typing as t

import pytest

from libshell import exc
from libshell.command import Command, CommandCapture, CommandState
from libshell.constants import MARKER, UNEXPECTED_TERMINATION
from libshell.shell import Shell
from libshell.test.constants import COMMAND_TIMEOUT_SECONDS
from libshell.test.retry import retry_until

from tests.helpers import PopenRecorder

if t.TYPE_CHECKING:
    from libshell.registry import ShellRegistry


class OrderRecorder(CommandCapture):
    """Capture that also logs terminal callbacks into a shared list."""

    def __init__(self, log: list[tuple[str, int]], *lines: str, command_id: int) -> None:
        super().__init__(*lines, command_id=command_id)
        self._log = log

    def on_finished(self, command_id: int, exit_code: int) -> None:
        """Record completion."""
        self._log.append(("finished", command_id))

    def on_terminated(self, command_id: int, reason: str) -> None:
        """Record termination."""
        self._log.append(("terminated", command_id))


def test_echo_hello(shell: Shell) -> None:
    """One output line, then success with exit code 0."""
    cmd = shell.add(CommandCapture("echo hello"))

    assert cmd.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0
    assert cmd.output == ["hello"]
    assert cmd.state is CommandState.FINISHED


def test_false_exit_code(shell: Shell) -> None:
    """A failing command finishes with its exit code and no output."""
    cmd = shell.add(CommandCapture("false"))

    assert cmd.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 1
    assert cmd.output == []


def test_commands_complete_in_submission_order(shell: Shell) -> None:
    """Back-to-back commands complete in the order they were added."""
    log: list[tuple[str, int]] = []
    commands = [
        OrderRecorder(log, "sleep 0.2; echo first", command_id=1),
        OrderRecorder(log, "echo second", command_id=2),
        OrderRecorder(log, "sleep 0.1; echo third", command_id=3),
    ]
    for cmd in commands:
        shell.add(cmd)

    for cmd in commands:
        cmd.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS)

    assert log == [("finished", 1), ("finished", 2), ("finished", 3)]
    assert [cmd.output for cmd in commands] == [["first"], ["second"], ["third"]]
    assert [cmd.sequence_id for cmd in commands] == [0, 1, 2]


def test_stderr_is_merged(shell: Shell) -> None:
    """Output written to stderr reaches the command too."""
    result = shell.run("echo oops 1>&2; (exit 3)", timeout=COMMAND_TIMEOUT_SECONDS)
    assert result.output == ["oops"]
    assert result.exit_code == 3


def test_output_without_trailing_newline(shell: Shell) -> None:
    """Output sharing a line with the marker is split off."""
    result = shell.run("printf partial", timeout=COMMAND_TIMEOUT_SECONDS)
    assert result.output == ["partial"]
    assert result.exit_code == 0


def test_multi_line_command(shell: Shell) -> None:
    """A command made of several lines runs as one unit."""
    result = shell.run("echo a", "echo b", timeout=COMMAND_TIMEOUT_SECONDS)
    assert result.output == ["a", "b"]


def test_marker_in_command_output_is_not_completion(shell: Shell) -> None:
    """Output carrying the marker with the next id does not complete early."""
    fake = shell.add(
        CommandCapture(f"printf 'before%s 1 0\\n' '{MARKER}'; sleep 0.1; false"),
    )
    after = shell.add(CommandCapture("echo after"))

    assert fake.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 1
    assert fake.output == ["before"]
    assert after.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0
    assert after.output == ["after"]


def test_compaction_keeps_every_command(shell_registry: ShellRegistry) -> None:
    """A tiny threshold forces compactions without losing completions."""
    sh = shell_registry.start_custom_shell("/bin/sh", max_commands=4)
    commands = [sh.add(CommandCapture(f"echo {i}", command_id=i)) for i in range(10)]

    for i, cmd in enumerate(commands):
        assert cmd.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0
        assert cmd.output == [str(i)]

    stats = sh.get_stats()
    assert stats.queue.compactions >= 1
    assert stats.queue.total_read == 10
    assert stats.queue.total_written == 10


def test_close_drains_queue_and_exits(shell: Shell) -> None:
    """Commands added before close still run; the interpreter then exits."""
    commands = [shell.add(CommandCapture(f"echo {i}")) for i in range(3)]
    shell.close()
    shell.close()

    for cmd in commands:
        assert cmd.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0

    assert shell.join(timeout=COMMAND_TIMEOUT_SECONDS)
    assert shell.process.returncode == 0
    assert shell.is_alive is False
    assert shell.get_stats().queue.dead is True


def test_add_after_close_raises(shell: Shell) -> None:
    """add() always fails once close() was requested."""
    shell.close()
    with pytest.raises(exc.IllegalState):
        shell.add(Command("true"))
    shell.close()
    with pytest.raises(exc.IllegalState):
        shell.add(Command("true"))


def test_close_from_many_threads(shell: Shell) -> None:
    """Concurrent close() calls behave like a single one."""
    cmd = shell.add(CommandCapture("echo once"))
    threads = [threading.Thread(target=shell.close) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert cmd.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0
    assert shell.join(timeout=COMMAND_TIMEOUT_SECONDS)


def test_killed_process_terminates_outstanding(shell: Shell) -> None:
    """Killing the interpreter terminates outstanding commands in order."""
    log: list[tuple[str, int]] = []
    running = shell.add(OrderRecorder(log, "sleep 5 >/dev/null 2>&1", command_id=1))
    queued = shell.add(OrderRecorder(log, "echo never", command_id=2))
    retry_until(lambda: running.state is CommandState.EXECUTING)

    shell.kill()

    assert running.wait(timeout=COMMAND_TIMEOUT_SECONDS)
    assert queued.wait(timeout=COMMAND_TIMEOUT_SECONDS)
    assert running.state is CommandState.TERMINATED
    assert running.reason == UNEXPECTED_TERMINATION
    assert queued.state is CommandState.TERMINATED
    assert log == [("terminated", 1), ("terminated", 2)]

    with pytest.raises(exc.IllegalState):
        shell.add(Command("true"))
    assert shell.join(timeout=COMMAND_TIMEOUT_SECONDS)


def test_run_raises_on_termination(shell: Shell) -> None:
    """run() surfaces termination as UnexpectedTermination."""
    threading.Timer(0.3, shell.kill).start()
    with pytest.raises(exc.UnexpectedTermination):
        shell.run("sleep 5 >/dev/null 2>&1", timeout=COMMAND_TIMEOUT_SECONDS)


def test_run_timeout(shell: Shell) -> None:
    """run() raises CommandTimeout while the command keeps running."""
    with pytest.raises(exc.CommandTimeout):
        shell.run("sleep 1", timeout=0.05)


def test_context_manager_closes() -> None:
    """Leaving the with block closes the shell."""
    with Shell.start(timeout=COMMAND_TIMEOUT_SECONDS) as sh:
        cmd = sh.add(CommandCapture("echo ctx"))
    assert cmd.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0
    assert sh.join(timeout=COMMAND_TIMEOUT_SECONDS)


def test_startup_timeout_kills_process(popen_recorder: PopenRecorder) -> None:
    """A process that never echoes the probe times out close to the limit."""
    started = time.monotonic()
    with pytest.raises(exc.StartupTimeout):
        Shell.start(["sleep", "30"], timeout=0.5, retries=3)
    elapsed = time.monotonic() - started

    assert elapsed < 0.5 + 3
    assert popen_recorder.attempts == 1
    assert popen_recorder.processes[0].poll() is not None


def test_startup_timeout_with_forked_child_is_bounded(
    popen_recorder: PopenRecorder,
) -> None:
    """A child still holding stdout does not delay the startup timeout."""
    started = time.monotonic()
    with pytest.raises(exc.StartupTimeout):
        Shell.start(["sh", "-c", "sleep 6; true"], timeout=0.5, retries=0)
    elapsed = time.monotonic() - started

    assert elapsed < 0.5 + 3
    assert popen_recorder.attempts == 1
    assert popen_recorder.processes[0].poll() is not None


def test_startup_timeout_reports_diagnostic() -> None:
    """Stray startup output shows up in the timeout message."""
    with pytest.raises(exc.StartupTimeout, match="unexpected startup output"):
        Shell.start(["cat"], timeout=0.5, retries=0)


def test_access_denied_retries(popen_recorder: PopenRecorder) -> None:
    """An interpreter that exits during startup is retried, then denied."""
    with pytest.raises(exc.AccessDenied):
        Shell.start(["true"], timeout=COMMAND_TIMEOUT_SECONDS, retries=2)

    assert popen_recorder.attempts == 3
    assert all(proc.poll() is not None for proc in popen_recorder.processes)


def test_spawn_error_retries(popen_recorder: PopenRecorder) -> None:
    """A missing interpreter is retried and the spawn failure surfaces."""
    with pytest.raises(exc.SpawnError) as excinfo:
        Shell.start(["/nonexistent/libshell-sh"], timeout=1, retries=1)

    assert popen_recorder.attempts == 2
    assert isinstance(excinfo.value.__cause__, OSError)


def test_failing_callback_does_not_stop_shell(shell: Shell) -> None:
    """An exception raised by a callback is logged and the shell keeps going."""

    class Exploding(CommandCapture):
        def on_output(self, command_id: int, line: str) -> None:
            raise RuntimeError(line)

    boom = shell.add(Exploding("echo boom"))
    assert boom.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0

    result = shell.run("echo still here", timeout=COMMAND_TIMEOUT_SECONDS)
    assert result.output == ["still here"]


def test_callback_can_add_during_compaction() -> None:
    """A command added from an output callback does not stall housekeeping."""
    with Shell.start(timeout=COMMAND_TIMEOUT_SECONDS, max_commands=1) as sh:
        follow_ups: list[CommandCapture] = []

        class Chaining(CommandCapture):
            def on_output(self, command_id: int, line: str) -> None:
                super().on_output(command_id, line)
                if not follow_ups:
                    follow_ups.append(sh.add(CommandCapture("echo follow-up")))

        first = sh.add(Chaining("sleep 0.3; echo first"))
        second = sh.add(CommandCapture("echo second"))

        assert first.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0
        assert second.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0
        assert len(follow_ups) == 1
        follow_up = follow_ups[0]
        assert follow_up.wait_for_finish(timeout=COMMAND_TIMEOUT_SECONDS) == 0

    assert first.output == ["first"]
    assert second.output == ["second"]
    assert follow_up.output == ["follow-up"]
    assert sh.get_stats().queue.compactions >= 1
