"""Run assembled scripts in a shell and capture their output."""

import io
import logging
import os
import select
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, TextIO

logger = logging.getLogger(__name__)

STDOUT = "stdout"
STDERR = "stderr"
STDIN = "stdin"

# Seconds the stdin relay waits in select() before checking for shutdown
_RELAY_POLL = 0.1


@dataclass
class OutputLine:
    """One captured line and the stream it came from."""

    stream: str
    text: str


class OutputLog:
    """Append-only log shared by the stream readers."""

    def __init__(self) -> None:
        self._lines: list[OutputLine] = []
        self._lock = threading.Lock()

    def append(self, stream: str, text: str) -> None:
        with self._lock:
            self._lines.append(OutputLine(stream, text))

    def lines(self, *streams: str) -> list[str]:
        """Captured text, optionally limited to some streams, in arrival order."""
        with self._lock:
            return [
                line.text for line in self._lines if not streams or line.stream in streams
            ]

    def entries(self) -> list[OutputLine]:
        with self._lock:
            return list(self._lines)


@dataclass
class CommandResult:
    """Outcome of one script run. Failures are data, never exceptions."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    error: str | None = None
    interrupted: bool = False
    output: list[OutputLine] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.exit_code == 0

    @property
    def output_lines(self) -> list[str]:
        """stdout and stderr lines in arrival order."""
        return [line.text for line in self.output if line.stream != STDIN]


class ProcessRunner:
    """Run script text with a shell interpreter.

    The script is passed with `-c`; extra args become `$1`, `$2`, ...
    """

    def __init__(
        self,
        shell: str = "bash",
        timeout: float = 0.0,
        relay_stdin: bool = False,
        stdin: TextIO | None = None,
    ) -> None:
        self.shell = shell
        self.timeout = timeout or None
        self.relay_stdin = relay_stdin
        self.stdin = stdin

    def _command(self, text: str, args: Iterable[str]) -> list[str]:
        return [self.shell, "-c", text, "runbook", *args]

    def _environment(self, env_overrides: dict[str, str] | None) -> dict[str, str]:
        env = dict(os.environ)
        if env_overrides:
            env.update(env_overrides)
        return env

    def run(
        self,
        text: str,
        args: Iterable[str] = (),
        env_overrides: dict[str, str] | None = None,
    ) -> CommandResult:
        """Run `text` to completion and return its captured output."""
        try:
            completed = subprocess.run(
                self._command(text, args),
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
                env=self._environment(env_overrides),
            )
        except subprocess.TimeoutExpired as e:
            logger.warning("Script timed out after %s seconds", self.timeout)
            return CommandResult(
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr),
                error=f"timed out after {self.timeout} seconds",
            )
        except OSError as e:
            logger.warning("Failed to start %s: %s", self.shell, e)
            return CommandResult(error=str(e))

        output = [OutputLine(STDOUT, line) for line in completed.stdout.splitlines()]
        output += [OutputLine(STDERR, line) for line in completed.stderr.splitlines()]
        return CommandResult(
            stdout=completed.stdout,
            stderr=completed.stderr,
            exit_code=completed.returncode,
            error=_signal_error(completed.returncode),
            output=output,
        )

    def stream(
        self,
        text: str,
        args: Iterable[str] = (),
        env_overrides: dict[str, str] | None = None,
        on_line: Callable[[OutputLine], None] | None = None,
    ) -> CommandResult:
        """Run `text`, draining stdout and stderr concurrently.

        `on_line` is called from the reader threads as each line arrives.
        On timeout or KeyboardInterrupt the process group is killed. All
        reader threads are joined before returning.
        """
        relay = self.relay_stdin and _selectable(self.stdin or sys.stdin)
        try:
            process = subprocess.Popen(
                self._command(text, args),
                stdin=subprocess.PIPE if relay else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=self._environment(env_overrides),
                start_new_session=True,
            )
        except OSError as e:
            logger.warning("Failed to start %s: %s", self.shell, e)
            return CommandResult(error=str(e))

        log = OutputLog()
        stop = threading.Event()

        def _record(stream: str, line: str) -> None:
            log.append(stream, line)
            if on_line is not None:
                on_line(OutputLine(stream, line))

        readers = [
            threading.Thread(
                target=_drain, args=(process.stdout, STDOUT, _record), daemon=True
            ),
            threading.Thread(
                target=_drain, args=(process.stderr, STDERR, _record), daemon=True
            ),
        ]
        if relay:
            readers.append(
                threading.Thread(
                    target=_relay,
                    args=(self.stdin or sys.stdin, process.stdin, stop, _record),
                    daemon=True,
                )
            )
        for reader in readers:
            reader.start()

        error = None
        interrupted = False
        try:
            process.wait(timeout=self.timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Script timed out after %s seconds", self.timeout)
            error = f"timed out after {self.timeout} seconds"
            _kill_group(process)
        except KeyboardInterrupt:
            logger.info("Script interrupted")
            error = "interrupted"
            interrupted = True
            _kill_group(process)
        finally:
            stop.set()
            for reader in readers:
                reader.join()

        exit_code = process.returncode
        return CommandResult(
            stdout="".join(f"{line}\n" for line in log.lines(STDOUT)),
            stderr="".join(f"{line}\n" for line in log.lines(STDERR)),
            exit_code=exit_code,
            error=error or _signal_error(exit_code),
            interrupted=interrupted,
            output=log.entries(),
        )


def _drain(pipe: TextIO, stream: str, record: Callable[[str, str], None]) -> None:
    """Read a pipe to end-of-stream."""
    with pipe:
        for line in iter(pipe.readline, ""):
            record(stream, line.rstrip("\n"))


def _relay(
    source: TextIO,
    sink: TextIO,
    stop: threading.Event,
    record: Callable[[str, str], None],
) -> None:
    """Forward terminal input to the child until it exits or input ends."""
    try:
        while not stop.is_set():
            ready, _, _ = select.select([source], [], [], _RELAY_POLL)
            if not ready:
                continue
            line = source.readline()
            if not line:
                break
            record(STDIN, line.rstrip("\n"))
            sink.write(line)
            sink.flush()
    except (BrokenPipeError, OSError, ValueError) as e:
        logger.debug("stdin relay stopped: %s", e)
    finally:
        try:
            sink.close()
        except OSError as e:
            logger.debug("Closing child stdin failed: %s", e)


def _selectable(source: TextIO) -> bool:
    try:
        source.fileno()
    except (OSError, ValueError, io.UnsupportedOperation):
        return False
    return True


def _kill_group(process: subprocess.Popen) -> None:
    """Terminate the process group started for a script and reap it."""
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except ProcessLookupError:
        logger.debug("Process group %s already gone", process.pid)
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        os.killpg(process.pid, signal.SIGKILL)
        process.wait()


def _signal_error(exit_code: int | None) -> str | None:
    if exit_code is not None and exit_code < 0:
        return f"terminated by signal {-exit_code}"
    return None


def _decode(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return data
