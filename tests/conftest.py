import asyncio

import pytest

from crossplay.core.exceptions import ProcessSpawnError
from crossplay.core.log_buffer import LogBuffer
from crossplay.core.process_handler import ProcessConfig
from crossplay.core.server_manager import ServerManager
from crossplay.core.tunnel import TunnelManager
from crossplay.storage.config_store import ConfigStore
from crossplay.utils.config import PathsConfig, Settings

DONE_LINE = '[12:00:05 INFO]: Done (4.321s)! For help, type "help"'


class FakeProcess:
    """Stands in for ProcessHandler; tests push output and exit codes by hand."""

    def __init__(self, config: ProcessConfig, fail: bool = False):
        self.config = config
        self.fail = fail
        self.is_running = False
        self.pid: int | None = None
        self.commands: list[str] = []
        self.terminated = False
        self.exit_code: int | None = None
        self._stdout = []
        self._stderr = []
        self._exit = []

    def on_stdout(self, callback):
        self._stdout.append(callback)

    def on_stderr(self, callback):
        self._stderr.append(callback)

    def on_exit(self, callback):
        self._exit.append(callback)

    async def start(self) -> bool:
        if self.fail:
            raise ProcessSpawnError(f"Failed to start {self.config.name}: not found")
        self.is_running = True
        self.pid = 4242
        return True

    async def send_command(self, command: str) -> bool:
        if not self.is_running:
            return False
        self.commands.append(command)
        return True

    def terminate(self) -> bool:
        if not self.is_running:
            return False
        self.terminated = True
        return True

    async def wait(self):
        return self.exit_code

    def emit(self, line: str, stream: str = "stdout") -> None:
        for callback in self._stdout if stream == "stdout" else self._stderr:
            callback(line)

    async def exit(self, code: int) -> None:
        self.is_running = False
        self.exit_code = code
        for callback in self._exit:
            result = callback(code)
            if asyncio.iscoroutine(result):
                await result


class FakeProcessFactory:
    def __init__(self):
        self.created: list[FakeProcess] = []
        self.fail_names: set[str] = set()

    def __call__(self, config: ProcessConfig) -> FakeProcess:
        process = FakeProcess(config, fail=config.name in self.fail_names)
        self.created.append(process)
        return process

    def by_name(self, name: str) -> list[FakeProcess]:
        return [p for p in self.created if p.config.name == name]


async def settle() -> None:
    """Let tasks scheduled with create_task run."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        paths=PathsConfig(
            server_dir=tmp_path / "server",
            config_file=tmp_path / "data" / "server-config.json",
        )
    )


@pytest.fixture
def store(settings) -> ConfigStore:
    config_store = ConfigStore(settings.paths.config_file)
    config_store.load()
    return config_store


@pytest.fixture
def factory() -> FakeProcessFactory:
    return FakeProcessFactory()


@pytest.fixture
def make_manager(settings, store, factory):
    def _make(tunnel_binary: str | None = "playit") -> ServerManager:
        buffer = LogBuffer()
        tunnel = TunnelManager(
            binary=tunnel_binary,
            working_dir=settings.paths.server_dir,
            ports={settings.ports.java: "Java", settings.ports.bedrock: "Bedrock"},
            log_buffer=buffer,
            process_factory=factory,
        )
        return ServerManager(
            settings,
            store,
            log_buffer=buffer,
            tunnel=tunnel,
            process_factory=factory,
            local_ip="192.168.1.20",
        )

    return _make
