"""Main server manager that orchestrates all components."""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from crossplay.core.exceptions import ProcessSpawnError
from crossplay.core.log_buffer import LogBuffer, Subscription
from crossplay.core.log_classifier import classify, is_startup_complete
from crossplay.core.process_handler import ProcessConfig, ProcessHandler
from crossplay.core.tunnel import TunnelManager
from crossplay.core.world_guard import WorldSeedGuard
from crossplay.minecraft.server_properties import write_server_files
from crossplay.storage.config_store import ConfigStore
from crossplay.storage.models import (
    ControlResult,
    LogCategory,
    LogEntry,
    ServerConfig,
    ServerState,
    ServerStatus,
    WorldDecision,
    WorldDecisionReason,
)
from crossplay.utils.binaries import find_executable
from crossplay.utils.config import Settings
from crossplay.utils.network import UNKNOWN_PUBLIC_IP, detect_public_ip, get_local_ip

logger = logging.getLogger(__name__)

SHUTDOWN_COMMAND = "stop"

# Aikar's flags, recommended for Paper servers
JVM_FLAGS = [
    "-XX:+UseG1GC",
    "-XX:+ParallelRefProcEnabled",
    "-XX:MaxGCPauseMillis=200",
    "-XX:+UnlockExperimentalVMOptions",
    "-XX:+DisableExplicitGC",
    "-XX:+AlwaysPreTouch",
    "-XX:G1HeapWastePercent=5",
    "-XX:G1MixedGCCountTarget=4",
    "-XX:G1MixedGCLiveThresholdPercent=90",
    "-XX:G1RSetUpdatingPauseTimePercent=5",
    "-XX:SurvivorRatio=32",
    "-XX:+PerfDisableSharedMem",
    "-XX:MaxTenuringThreshold=1",
    "-Dusing.aikars.flags=https://mcflags.emc.gs",
    "-Daikars.new.flags=true",
]


class ServerManager:
    """
    Owns the Minecraft server process and its lifecycle.

    State machine: offline -> starting -> online -> stopping -> offline.
    Checks the world against the configured seed before each start, runs
    the tunnel agent alongside the server and turns console output into
    classified log entries.

    All state changes happen on the event loop; start/stop/command requests
    are serialized by a lock while status reads never wait on it.
    """

    def __init__(
        self,
        settings: Settings,
        store: ConfigStore,
        log_buffer: LogBuffer | None = None,
        tunnel: TunnelManager | None = None,
        world_guard: WorldSeedGuard | None = None,
        process_factory: Callable[[ProcessConfig], ProcessHandler] = ProcessHandler,
        local_ip: str | None = None,
    ):
        self.settings = settings
        self.store = store
        self.log_buffer = log_buffer or LogBuffer()
        server_dir = settings.paths.server_dir

        self.world_guard = world_guard or WorldSeedGuard(
            store, server_dir, settings.paths.backups_dir
        )
        self.tunnel = tunnel or TunnelManager(
            binary=find_executable(settings.tunnel.binary, server_dir),
            working_dir=server_dir,
            ports={settings.ports.java: "Java", settings.ports.bedrock: "Bedrock"},
            log_buffer=self.log_buffer,
            extra_args=settings.tunnel.extra_args,
            secret=settings.tunnel.secret,
            process_factory=process_factory,
        )
        if not self.tunnel.installed:
            logger.info("Tunnel agent %r not found, tunnelling disabled", settings.tunnel.binary)

        self._process_factory = process_factory
        self._process: ProcessHandler | None = None
        self._state = ServerState.OFFLINE
        self._started_at: datetime | None = None
        self._lock = asyncio.Lock()
        self._server_ready = asyncio.Event()
        self._tunnel_task: asyncio.Task | None = None
        self._world_write: asyncio.Future | None = None

        self.local_ip = local_ip or get_local_ip()
        self.public_ip: str | None = None
        self.last_world_decision: WorldDecision | None = None

        if store.last_error:
            self._log(f"⚠️ {store.last_error}, using default settings", LogCategory.WARN)

    # === State ===

    @property
    def config(self) -> ServerConfig:
        return self.store.config

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def is_running(self) -> bool:
        """Check if a server process exists (starting, online or stopping)."""
        return self._process is not None

    @property
    def is_ready(self) -> bool:
        return self._state == ServerState.ONLINE

    @property
    def uptime_seconds(self) -> int:
        if self._started_at is None:
            return 0
        return int((datetime.now() - self._started_at).total_seconds())

    def connections(self) -> dict[str, dict[str, str]]:
        """Addresses players can use, per reachability scope."""
        java, bedrock = self.settings.ports.java, self.settings.ports.bedrock
        result = {
            "local": {"java": f"localhost:{java}", "bedrock": f"localhost:{bedrock}"},
            "network": {
                "java": f"{self.local_ip}:{java}",
                "bedrock": f"{self.local_ip}:{bedrock}",
            },
        }
        if self.public_ip and self.public_ip != UNKNOWN_PUBLIC_IP:
            result["internet"] = {
                "java": f"{self.public_ip}:{java}",
                "bedrock": f"{self.public_ip}:{bedrock}",
                "note": "Port forwarding required",
            }
        tunnel_java = self.tunnel.address_for(java)
        tunnel_bedrock = self.tunnel.address_for(bedrock)
        if tunnel_java or tunnel_bedrock:
            result["tunnel"] = {}
            if tunnel_java:
                result["tunnel"]["java"] = tunnel_java
            if tunnel_bedrock:
                result["tunnel"]["bedrock"] = tunnel_bedrock
        return result

    def status(self) -> ServerStatus:
        """Snapshot of the current state for polling consumers."""
        return ServerStatus(
            state=self._state,
            running=self.is_running,
            ready=self.is_ready,
            uptime_seconds=self.uptime_seconds,
            local_ip=self.local_ip,
            public_ip=self.public_ip,
            java_port=self.settings.ports.java,
            bedrock_port=self.settings.ports.bedrock,
            tunnel_state=self.tunnel.state,
            tunnel_addresses=self.tunnel.addresses,
            tunnel_setup_url=self.tunnel.setup_url,
            connections=self.connections(),
        )

    def subscribe_logs(self) -> tuple[list[LogEntry], Subscription]:
        """Replay of recent entries plus a live feed continuing right after it."""
        return self.log_buffer.subscribe()

    async def refresh_public_ip(self) -> str:
        self.public_ip = await detect_public_ip()
        return self.public_ip

    def _log(self, message: str, category: LogCategory = LogCategory.INFO) -> LogEntry:
        return self.log_buffer.add(message, category)

    def _result(self, success: bool, message: str) -> ControlResult:
        return ControlResult(success=success, message=message, state=self._state)

    # === Server Operations ===

    def _build_command(self, config: ServerConfig) -> list[str]:
        """Build the Java command line."""
        java = self.settings.java
        return [
            java.java_path,
            f"-Xms{config.performance.min_heap}",
            f"-Xmx{config.performance.max_heap}",
            *JVM_FLAGS,
            *java.extra_args,
            "-jar",
            java.jar_file,
            "nogui",
        ]

    def _prepare_world(self) -> tuple[ServerConfig, WorldDecision]:
        """Runs in a worker thread before the spawn."""
        with self.store.lock:
            config = self.store.config
            exists = self.world_guard.world_exists(config)
            return config, self.world_guard.evaluate(config, exists)

    def _report_world_decision(self, decision: WorldDecision, config: ServerConfig) -> None:
        seed = config.world.current_seed or "random"
        if decision.reason == WorldDecisionReason.NO_WORLD_EXISTS:
            self._log(f"🌍 No world found, generating a new one (seed: {seed})", LogCategory.WORLD)
        elif decision.reason == WorldDecisionReason.SEED_CHANGED:
            self._log(
                f"🌍 Seed changed, previous world saved as {decision.backup_name}; "
                f"generating a new world (seed: {seed})",
                LogCategory.WORLD,
            )
        elif decision.reason == WorldDecisionReason.BACKUP_FAILED:
            self._log(
                f"❌ World backup failed, keeping the existing world: {decision.error}",
                LogCategory.ERROR,
            )
        else:
            self._log("🌍 Using existing world", LogCategory.INFO)

    async def start(self) -> ControlResult:
        """
        Start the server.

        Returns:
            Result with success=False if already active or the spawn failed
        """
        async with self._lock:
            if self._state != ServerState.OFFLINE:
                return self._result(False, "Server is already starting or running")

            server_dir = self.settings.paths.server_dir
            self._log("🚀 Starting Minecraft crossplay server...", LogCategory.INFO)

            # The world must not be touched by the server while this runs
            loop = asyncio.get_running_loop()
            config, decision = await loop.run_in_executor(None, self._prepare_world)
            self.last_world_decision = decision
            self._report_world_decision(decision, config)

            try:
                write_server_files(server_dir, config, self.settings.ports.java)
            except OSError as e:
                logger.error("Cannot write server files: %s", e)
                self._log(f"❌ Cannot write server files: {e}", LogCategory.ERROR)
                return self._result(False, f"Cannot write server files: {e}")

            process = self._process_factory(
                ProcessConfig(
                    args=self._build_command(config),
                    working_dir=server_dir,
                    name="minecraft",
                )
            )
            process.on_stdout(lambda line: self._handle_line(process, line, "stdout"))
            process.on_stderr(lambda line: self._handle_line(process, line, "stderr"))
            process.on_exit(lambda code: self._handle_exit(process, code))

            self._server_ready.clear()
            try:
                await process.start()
            except ProcessSpawnError as e:
                self._log(f"❌ {e}", LogCategory.ERROR)
                await self._stop_tunnel()
                return self._result(False, str(e))

            self._process = process
            self._state = ServerState.STARTING
            self._started_at = datetime.now()

            # Only once the server process exists; not awaited
            if config.tunnel.auto_start and self.tunnel.installed:
                self._tunnel_task = asyncio.create_task(self.tunnel.start())
            logger.info("Server starting (pid=%s)", process.pid)
            self._log("⏳ Please wait while the server initializes...", LogCategory.INFO)
            return self._result(True, "Server is starting...")

    async def stop(self) -> ControlResult:
        """
        Ask the server to shut down gracefully.

        Sends the shutdown command and returns; the state becomes offline
        when the process exits. Never kills the process.
        """
        async with self._lock:
            if self._state == ServerState.OFFLINE:
                return self._result(False, "Server is already offline")
            if self._state == ServerState.STOPPING:
                return self._result(False, "Server is already stopping")

            process = self._process
            self._state = ServerState.STOPPING
            self._server_ready.clear()
            logger.info("Stopping server")
            self._log("⏹️ Stopping Minecraft server...", LogCategory.INFO)

            await self._stop_tunnel()

            if process is None or not await process.send_command(SHUTDOWN_COMMAND):
                self._log("⚠️ Could not send the stop command to the server", LogCategory.WARN)
                return self._result(False, "Could not send the stop command")
            return self._result(True, "Server is stopping...")

    async def send_command(self, command: str) -> ControlResult:
        """Send a console command; only allowed while the server is online."""
        command = command.strip()
        if not command:
            return self._result(False, "Command is empty")

        async with self._lock:
            if self._state != ServerState.ONLINE or self._process is None:
                return self._result(False, "Server must be online to send commands")

            if not await self._process.send_command(command):
                return self._result(False, f"Could not send command: {command}")

            logger.info("[COMMAND] %s", command)
            self._log(f"[COMMAND] {command}", LogCategory.INFO)
            return self._result(True, f"Command executed: {command}")

    async def wait_until_ready(self, timeout: float | None = None) -> bool:
        """
        Wait for the server to be fully started.

        Returns:
            True if online, False on timeout
        """
        try:
            await asyncio.wait_for(self._server_ready.wait(), timeout)
            return True
        except TimeoutError:
            return False

    async def wait_until_stopped(self) -> None:
        """Wait for the current process (if any) to exit."""
        process = self._process
        if process is not None:
            await process.wait()

    async def shutdown(self) -> None:
        """Stop the server and tunnel before the manager exits."""
        if self._state in (ServerState.STARTING, ServerState.ONLINE):
            await self.stop()
        await self.wait_until_stopped()
        await self._stop_tunnel()
        if self._world_write is not None:
            await self._world_write

    async def _stop_tunnel(self) -> None:
        task, self._tunnel_task = self._tunnel_task, None
        if task is not None:
            # A start still in flight must finish first so its agent is stopped below
            await asyncio.wait([task])
            if not task.cancelled() and task.exception() is not None:
                logger.warning("Tunnel start failed: %s", task.exception())
        await self.tunnel.stop()

    # === Process events ===

    def _handle_line(self, process: ProcessHandler, line: str, stream: str) -> None:
        """Classify one console line; the startup banner brings the server online."""
        if process is not self._process:
            return
        if stream == "stderr":
            logger.warning("[STDERR] %s", line)
        else:
            logger.debug("[MC] %s", line)

        category, message = classify(line)
        came_online = self._state == ServerState.STARTING and is_startup_complete(line)
        if came_online:
            self._state = ServerState.ONLINE
            self._server_ready.set()
            # The document write syncs to disk, keep it off the loop
            self._world_write = asyncio.get_running_loop().run_in_executor(
                None, self.world_guard.mark_generated
            )
            logger.info("Server is online")

        self.log_buffer.add(message, category, raw=line, source=stream)

        if came_online:
            self._announce_online()

    def _announce_online(self) -> None:
        java, bedrock = self.settings.ports.java, self.settings.ports.bedrock
        java_address = self.tunnel.address_for(java) or f"{self.local_ip}:{java}"
        bedrock_address = self.tunnel.address_for(bedrock) or f"{self.local_ip}:{bedrock}"
        self._log("🎉 Server is now online!", LogCategory.SUCCESS)
        self._log(f"☕ Java Edition: {java_address}", LogCategory.SUCCESS)
        self._log(f"📱 Bedrock Edition: {bedrock_address}", LogCategory.SUCCESS)

    async def _handle_exit(self, process: ProcessHandler, exit_code: int) -> None:
        """Handle server process exit."""
        if process is not self._process:
            return

        self._process = None
        self._state = ServerState.OFFLINE
        self._started_at = None
        self._server_ready.clear()

        if exit_code == 0:
            logger.info("Server stopped normally")
            self._log("✅ Server stopped normally", LogCategory.INFO)
        else:
            logger.error("Server crashed with exit code %s", exit_code)
            self._log(
                f"💥 Server crashed (exit code {exit_code}), check the messages above",
                LogCategory.ERROR,
            )

        await self._stop_tunnel()
