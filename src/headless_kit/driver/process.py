"""Child process spawning, output capture and termination.

Commands are always built as argument vectors. Shell mode flattens the
vector into a quoted command line; arguments are never interpolated raw.
"""
import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from enum import Enum

from .errors import BinaryNotFoundError, ProcessExecutionError, ProcessTimeoutError

log = logging.getLogger(__name__)

# Short detection calls (e.g. ``chrome --version``), seconds.
DEFAULT_TIMEOUT = 0.5


class ProcessState(Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    EXITED = "exited"
    FAILED = "failed"


_TERMINAL = (ProcessState.EXITED, ProcessState.FAILED)


@dataclass
class ChildProcessHandle:
    """A spawned process and its lifecycle state.

    The owner must drive the handle to a terminal state (via ``wait``,
    ``terminate`` or :meth:`ChildProcessRunner.run`) before discarding it.
    """
    command: list[str]
    env: dict[str, str] | None = None
    timeout: float = DEFAULT_TIMEOUT
    shell: bool = False
    process: subprocess.Popen | None = field(default=None, repr=False)
    state: ProcessState = ProcessState.NOT_STARTED
    pid: int | None = None
    returncode: int | None = None

    @property
    def args(self) -> list[str]:
        return self.command[1:]

    @property
    def running(self) -> bool:
        return self.poll() is ProcessState.RUNNING

    def poll(self) -> ProcessState:
        """Refresh and return the state without blocking."""
        if self.state is ProcessState.RUNNING and self.process is not None:
            code = self.process.poll()
            if code is not None:
                self._finish(code)
        return self.state

    def wait(self, timeout: float | None = None) -> int | None:
        """Block until exit. Raises ``subprocess.TimeoutExpired`` on timeout."""
        if self.state is ProcessState.RUNNING and self.process is not None:
            self._finish(self.process.wait(timeout=timeout))
        return self.returncode

    def terminate(self, grace: float = 5.0) -> None:
        """Terminate the process, killing it if it ignores SIGTERM for *grace* seconds.

        No-op once the handle is in a terminal state.
        """
        if self.poll() in _TERMINAL or self.process is None:
            return
        log.debug("Terminating pid %s (%s)", self.pid, os.path.basename(self.command[0]))
        try:
            self.process.terminate()
            self.process.wait(timeout=grace)
        except subprocess.TimeoutExpired:
            log.warning("pid %s ignored SIGTERM for %.1fs, killing", self.pid, grace)
            self.process.kill()
            try:
                self.process.wait(timeout=grace)
            except subprocess.TimeoutExpired:
                log.error("pid %s still alive %.1fs after SIGKILL", self.pid, grace)
                self.returncode = None
                self.state = ProcessState.FAILED
                return
        except ProcessLookupError:
            pass
        self.returncode = self.process.returncode
        self.state = ProcessState.EXITED

    def _finish(self, code: int) -> None:
        self.returncode = code
        self.state = ProcessState.EXITED if code == 0 else ProcessState.FAILED


class ChildProcessRunner:
    """Spawns executables and collects their output."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    @staticmethod
    def build_command(executable: str, args=()) -> list[str]:
        return [executable, *args]

    @staticmethod
    def command_line(command: list[str]) -> str:
        """Flatten an argument vector into a single, quoted shell command line."""
        if os.name == "nt":
            return subprocess.list2cmdline(command)
        return shlex.join(command)

    def spawn(
        self,
        executable: str,
        args=(),
        *,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        shell: bool = False,
        capture: bool = True,
    ) -> ChildProcessHandle:
        """Start *executable* and return a running handle without waiting.

        With ``capture=False`` stdout/stderr are discarded, which is what a
        long-lived background process needs (an unread pipe eventually blocks
        the child).
        """
        command = self.build_command(executable, args)
        handle = ChildProcessHandle(
            command=command,
            env=env,
            timeout=self.timeout if timeout is None else timeout,
            shell=shell,
        )
        target = self.command_line(command) if shell else command
        stream = subprocess.PIPE if capture else subprocess.DEVNULL
        log.debug("Spawning: %s", target)
        try:
            handle.process = subprocess.Popen(
                target,
                shell=shell,
                env=env,
                stdout=stream,
                stderr=stream,
                text=True,
                errors="replace",
            )
        except FileNotFoundError as e:
            handle.state = ProcessState.FAILED
            raise BinaryNotFoundError(f"Could not find binary: {executable}") from e
        except OSError as e:
            handle.state = ProcessState.FAILED
            raise ProcessExecutionError(command, None, str(e)) from e
        handle.pid = handle.process.pid
        handle.state = ProcessState.RUNNING
        return handle

    def run(self, handle: ChildProcessHandle) -> str:
        """Block until *handle* exits and return its stdout."""
        if handle.process is None:
            raise ProcessExecutionError(handle.command, None, "process was never started")
        try:
            out, err = handle.process.communicate(timeout=handle.timeout)
        except subprocess.TimeoutExpired as e:
            handle.process.kill()
            handle.process.communicate()
            handle.returncode = handle.process.returncode
            handle.state = ProcessState.FAILED
            raise ProcessTimeoutError(handle.command, handle.timeout) from e
        handle._finish(handle.process.returncode)
        if handle.state is ProcessState.FAILED:
            raise ProcessExecutionError(handle.command, handle.returncode, err or "")
        return out or ""

    def execute(self, executable: str, args=(), **kwargs) -> str:
        """Spawn and run to completion; returns stdout."""
        return self.run(self.spawn(executable, args, **kwargs))
