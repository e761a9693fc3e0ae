"""Data models using Pydantic."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Base for models persisted in the JSON configuration document (camelCase keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
    )


class ServerSettings(DocumentModel):
    """Gameplay settings rendered into server.properties before each start."""

    seed: str = ""
    gamemode: Literal["survival", "creative", "adventure", "spectator"] = "survival"
    difficulty: Literal["peaceful", "easy", "normal", "hard"] = "easy"
    max_players: int = Field(default=20, ge=1)
    motd: str = "Crossplay Minecraft Server - Friends Welcome!"
    pvp: bool = True
    enable_command_block: bool = True
    allow_nether: bool = True
    allow_end: bool = True
    spawn_protection: int = Field(default=0, ge=0)
    view_distance: int = Field(default=10, ge=2, le=32)
    simulation_distance: int = Field(default=10, ge=2, le=32)
    level_name: str = "world"
    online_mode: bool = False
    white_list: bool = False
    force_resource_pack: bool = False


class PerformanceSettings(DocumentModel):
    """JVM heap bounds (values like "1G", "512M")."""

    min_heap: str = Field(default="1G", pattern=r"^\d+[KkMmGg]$")
    max_heap: str = Field(default="3G", pattern=r"^\d+[KkMmGg]$")


class TunnelSettings(DocumentModel):
    """Tunnel agent settings."""

    auto_start: bool = False


class WorldTracking(DocumentModel):
    """
    Tracks which seed the on-disk world was generated with.

    current_seed follows server.seed; last_used_seed is the seed of the
    world currently on disk.
    """

    current_seed: str = ""
    last_used_seed: str = ""
    world_generated: bool = False


class ServerConfig(DocumentModel):
    """The persisted configuration document."""

    server: ServerSettings = Field(default_factory=ServerSettings)
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings)
    tunnel: TunnelSettings = Field(default_factory=TunnelSettings)
    world: WorldTracking = Field(default_factory=WorldTracking)


class ServerState(str, Enum):
    """Lifecycle state of the managed server process."""

    OFFLINE = "offline"
    STARTING = "starting"
    ONLINE = "online"
    STOPPING = "stopping"


class TunnelState(str, Enum):
    """Lifecycle state of the tunnel agent."""

    NOT_INSTALLED = "not_installed"
    IDLE = "idle"
    RUNNING = "running"


class LogCategory(str, Enum):
    """Category assigned to a console line."""

    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"
    PLAYER = "player"
    WORLD = "world"


class LogEntry(BaseModel):
    """One classified console line, as stored in the log buffer."""

    model_config = ConfigDict(frozen=True)

    sequence: int
    timestamp: datetime = Field(default_factory=datetime.now)
    message: str
    category: LogCategory = LogCategory.INFO
    raw: str = ""
    source: Literal["stdout", "stderr", "manager", "tunnel"] = "manager"


class WorldDecisionReason(str, Enum):
    """Why a world was (or was not) regenerated."""

    NO_WORLD_EXISTS = "no_world_exists"
    SEED_CHANGED = "seed_changed"
    SEED_UNCHANGED = "seed_unchanged"
    BACKUP_FAILED = "backup_failed"


class WorldDecision(BaseModel):
    """Result of evaluating the world against the configured seed."""

    should_create_new: bool
    reason: WorldDecisionReason
    backup_name: str | None = None
    error: str | None = None


class ControlResult(BaseModel):
    """Outcome of a start/stop/command request."""

    success: bool
    message: str
    state: ServerState


class ServerStatus(BaseModel):
    """Point-in-time view of the manager, for polling consumers."""

    state: ServerState = ServerState.OFFLINE
    running: bool = False
    ready: bool = False
    uptime_seconds: int = 0
    local_ip: str = "localhost"
    public_ip: str | None = None
    java_port: int = 25565
    bedrock_port: int = 19132
    tunnel_state: TunnelState = TunnelState.NOT_INSTALLED
    tunnel_addresses: dict[int, str] = Field(default_factory=dict)
    tunnel_setup_url: str | None = None
    connections: dict[str, dict[str, str]] = Field(default_factory=dict)
