"""Supervisor for the playit.gg tunnel agent."""

import asyncio
import logging
import re
from collections.abc import Callable
from pathlib import Path

from crossplay.core.exceptions import ProcessSpawnError
from crossplay.core.log_buffer import LogBuffer
from crossplay.core.process_handler import ProcessConfig, ProcessHandler
from crossplay.storage.models import LogCategory, TunnelState

logger = logging.getLogger(__name__)

# Example: myaddr.playit.gg => 127.0.0.1:25565
BINDING_PATTERN = re.compile(r"(?P<address>[^\s=>]+)\s*=>\s*127\.0\.0\.1:(?P<port>\d+)")
SETUP_PATTERN = re.compile(r"Visit link to setup\s+(?P<url>https?://\S+)", re.IGNORECASE)
APPROVED_PATTERN = re.compile(r"\bapproved\b", re.IGNORECASE)
ANSI_PATTERN = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")


class TunnelManager:
    """
    Runs the tunnel agent next to the server and tracks its public addresses.

    Addresses are only known from the agent's own output; they are cleared
    whenever the agent is stopped and must be re-reported after a restart.
    """

    def __init__(
        self,
        binary: str | None,
        working_dir: Path,
        ports: dict[int, str],
        log_buffer: LogBuffer,
        extra_args: list[str] | None = None,
        secret: str = "",
        process_factory: Callable[[ProcessConfig], ProcessHandler] = ProcessHandler,
    ):
        """
        Initialize the tunnel manager.

        Args:
            binary: Resolved agent executable, None if it was not found
            working_dir: Directory the agent runs in
            ports: Local ports to watch, mapped to a label ("Java", "Bedrock")
            log_buffer: Where operator-facing notices are published
            extra_args: Additional agent arguments
            secret: Agent secret key, passed with --secret when set
            process_factory: Creates the process handler (replaced in tests)
        """
        self.binary = binary
        self.working_dir = working_dir
        self.ports = ports
        self.log_buffer = log_buffer
        self.extra_args = extra_args or []
        self.secret = secret
        self._process_factory = process_factory
        self._process: ProcessHandler | None = None
        self._addresses: dict[int, str] = {}
        self._setup_url: str | None = None
        self._lock = asyncio.Lock()

    @property
    def installed(self) -> bool:
        return self.binary is not None

    @property
    def state(self) -> TunnelState:
        if not self.installed:
            return TunnelState.NOT_INSTALLED
        if self._process is not None and self._process.is_running:
            return TunnelState.RUNNING
        return TunnelState.IDLE

    @property
    def addresses(self) -> dict[int, str]:
        """Public address per local port, as last reported by the agent."""
        return dict(self._addresses)

    @property
    def setup_url(self) -> str | None:
        """Claim URL the operator must visit before the agent gets tunnels."""
        return self._setup_url

    def address_for(self, port: int) -> str | None:
        return self._addresses.get(port)

    def _notify(self, message: str, category: LogCategory, raw: str | None = None) -> None:
        self.log_buffer.add(message, category, raw=raw, source="tunnel")

    def _build_args(self) -> list[str]:
        args = [str(self.binary)]
        if self.secret:
            args += ["--secret", self.secret]
        args += self.extra_args
        return args

    async def start(self) -> bool:
        """
        Start the agent.

        Returns:
            True if started; False (with a warning) if not installed,
            already running or the spawn failed
        """
        if not self.installed:
            logger.warning("Tunnel agent not installed, skipping start")
            self._notify("⚠️ Tunnel agent (playit) is not installed", LogCategory.WARN)
            return False

        async with self._lock:
            if self.state == TunnelState.RUNNING:
                logger.warning("Tunnel agent already running")
                return False

            process = self._process_factory(
                ProcessConfig(args=self._build_args(), working_dir=self.working_dir, name="playit")
            )
            process.on_stdout(lambda line: self._handle_output(process, line))
            process.on_stderr(lambda line: self._handle_output(process, line))
            process.on_exit(lambda code: self._handle_exit(process, code))

            self._addresses.clear()
            self._setup_url = None
            try:
                await process.start()
            except ProcessSpawnError as e:
                logger.warning("Tunnel agent failed to start: %s", e)
                self._notify(f"⚠️ Tunnel failed to start: {e}", LogCategory.WARN)
                return False

            self._process = process
            self._notify("🚇 Tunnel agent started", LogCategory.INFO)
            return True

    async def stop(self) -> bool:
        """
        Terminate the agent and forget all addresses.

        Returns:
            True if a running agent was signalled
        """
        self._addresses.clear()
        self._setup_url = None

        async with self._lock:
            process = self._process
            self._process = None
            self._addresses.clear()
            if process is None or not process.is_running:
                return False
            process.terminate()
            logger.info("Tunnel agent stopping")
            self._notify("🚇 Tunnel agent stopped", LogCategory.INFO)
            return True

    def _handle_exit(self, process: ProcessHandler, exit_code: int) -> None:
        if self._process is process:
            self._process = None
            self._addresses.clear()
            self._setup_url = None
            logger.warning("Tunnel agent exited unexpectedly with code %s", exit_code)
            self._notify(f"⚠️ Tunnel agent exited (code {exit_code})", LogCategory.WARN)
        else:
            logger.info("Tunnel agent exited with code %s", exit_code)

    def _handle_output(self, process: ProcessHandler, line: str) -> None:
        # Output from an agent that was already stopped is not trusted
        if process is self._process:
            self.handle_line(line)

    def handle_line(self, line: str) -> None:
        """Parse one line of agent output."""
        text = ANSI_PATTERN.sub("", line).strip()
        if not text:
            return
        logger.debug("[playit] %s", text)

        setup = SETUP_PATTERN.search(text)
        if setup:
            url = setup.group("url")
            if url != self._setup_url:
                self._setup_url = url
                self._notify(f"🔑 Tunnel setup required, visit {url}", LogCategory.WARN, raw=text)
            return

        if APPROVED_PATTERN.search(text) and self._setup_url is not None:
            self._setup_url = None
            self._notify("✅ Tunnel agent approved", LogCategory.SUCCESS, raw=text)
            return

        for match in BINDING_PATTERN.finditer(text):
            port = int(match.group("port"))
            label = self.ports.get(port)
            if label is None:
                continue
            address = match.group("address")
            if self._addresses.get(port) == address:
                continue
            self._addresses[port] = address
            logger.info("Tunnel address for %s: %s", label, address)
            self._notify(f"🌐 {label} tunnel address: {address}", LogCategory.SUCCESS, raw=text)
