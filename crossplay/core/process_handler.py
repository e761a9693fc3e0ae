"""Async handler for a supervised child process (server or tunnel agent)."""

import asyncio
import logging
from asyncio.subprocess import Process
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from crossplay.core.exceptions import ProcessSpawnError

logger = logging.getLogger(__name__)


@dataclass
class ProcessState:
    """Current state of the child process."""

    is_running: bool = False
    pid: int | None = None
    started_at: datetime | None = None
    exit_code: int | None = None


@dataclass
class ProcessConfig:
    """Configuration for starting a child process."""

    args: list[str]
    working_dir: Path
    name: str = "process"
    env: dict[str, str] | None = None
    new_session: bool = True
    extra: dict[str, Any] = field(default_factory=dict)


class ProcessHandler:
    """
    Handles one child process.

    Provides async start/terminate, newline-terminated stdin commands and
    line-by-line stdout/stderr streaming. Callbacks for one stream are called
    in the order the lines were read; the two streams are read concurrently.
    """

    def __init__(self, config: ProcessConfig):
        self.config = config
        self._process: Process | None = None
        self._state = ProcessState()
        self._stdout_callbacks: list[Callable[[str], Any]] = []
        self._stderr_callbacks: list[Callable[[str], Any]] = []
        self._exit_callbacks: list[Callable[[int], Any]] = []
        self._reader_task: asyncio.Task | None = None

    @property
    def state(self) -> ProcessState:
        """Get current process state."""
        return self._state

    @property
    def is_running(self) -> bool:
        """Check if process is currently running."""
        return self._state.is_running and self._process is not None

    @property
    def pid(self) -> int | None:
        return self._state.pid

    def on_stdout(self, callback: Callable[[str], Any]) -> None:
        """Register callback for stdout lines."""
        self._stdout_callbacks.append(callback)

    def on_stderr(self, callback: Callable[[str], Any]) -> None:
        """Register callback for stderr lines."""
        self._stderr_callbacks.append(callback)

    def on_exit(self, callback: Callable[[int], Any]) -> None:
        """Register callback for process exit."""
        self._exit_callbacks.append(callback)

    async def start(self) -> bool:
        """
        Start the process.

        Returns:
            True if started, False if already running

        Raises:
            ProcessSpawnError: If the executable cannot be launched
        """
        if self.is_running:
            return False

        self.config.working_dir.mkdir(parents=True, exist_ok=True)

        args = self.config.args
        logger.info("Starting %s: %s", self.config.name, " ".join(args[:3]) + " ...")
        logger.debug("Working directory: %s", self.config.working_dir)

        try:
            self._process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.config.working_dir,
                env=self.config.env,
                # Own process group so terminal signals don't reach the child
                start_new_session=self.config.new_session,
            )
        except OSError as e:
            logger.error("Failed to start %s: %s", self.config.name, e)
            self._state = ProcessState(is_running=False)
            raise ProcessSpawnError(f"Failed to start {self.config.name}: {e}") from e

        self._state = ProcessState(
            is_running=True,
            pid=self._process.pid,
            started_at=datetime.now(),
        )
        logger.info("%s started with PID: %s", self.config.name, self._process.pid)

        self._reader_task = asyncio.create_task(self._read_output())
        return True

    async def send_command(self, command: str) -> bool:
        """
        Write a command line to stdin.

        Args:
            command: Command to send (without newline)

        Returns:
            True if sent, False if not running or the pipe is closed
        """
        if not self.is_running or self._process is None or self._process.stdin is None:
            return False

        try:
            self._process.stdin.write(f"{command}\n".encode())
            await self._process.stdin.drain()
            return True
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning("Cannot write to %s stdin: %s", self.config.name, e)
            return False

    def terminate(self) -> bool:
        """
        Send SIGTERM (TerminateProcess on Windows).

        Returns:
            True if the signal was sent, False if there was nothing to stop
        """
        if self._process is None or self._process.returncode is not None:
            return False
        try:
            self._process.terminate()
            return True
        except ProcessLookupError:
            return False

    async def wait(self) -> int | None:
        """Wait until the process has exited and its exit callbacks ran."""
        task = self._reader_task
        if task is not None:
            await asyncio.shield(task)
        return self._state.exit_code

    async def _dispatch(self, callbacks: list[Callable[..., Any]], *args: Any) -> None:
        for callback in callbacks:
            try:
                result = callback(*args)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Callback for %s failed", self.config.name)

    async def _read_stream(
        self,
        stream: asyncio.StreamReader | None,
        callbacks: list[Callable[[str], Any]],
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError as e:
                # Line longer than the stream limit, the reader skips it
                logger.warning("Skipping oversized %s output line: %s", self.config.name, e)
                continue
            except OSError as e:
                logger.warning("Error reading %s output: %s", self.config.name, e)
                break
            if not line:
                break
            decoded = line.decode("utf-8", errors="replace").rstrip("\r\n")
            await self._dispatch(callbacks, decoded)

    async def _read_output(self) -> None:
        """Read stdout and stderr until EOF, then report the exit code."""
        process = self._process
        if process is None:
            return

        await asyncio.gather(
            self._read_stream(process.stdout, self._stdout_callbacks),
            self._read_stream(process.stderr, self._stderr_callbacks),
        )

        exit_code = await process.wait()
        self._state.exit_code = exit_code
        self._state.is_running = False
        self._process = None
        logger.info("%s exited with code: %s", self.config.name, exit_code)

        await self._dispatch(self._exit_callbacks, exit_code)
