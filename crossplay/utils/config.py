"""Manager settings using Pydantic Settings."""

import os
from pathlib import Path
from typing import Self

import yaml
from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_ENV_VAR = "CROSSPLAY_CONFIG"


class PathsConfig(BaseModel):
    """File paths configuration."""

    server_dir: Path = Path("./minecraft-server")
    config_file: Path = Path("./data/server-config.json")
    backups_dir: Path | None = None  # defaults to server_dir

    def resolve(self, base_dir: Path) -> None:
        """Convert relative paths to absolute."""
        if not self.server_dir.is_absolute():
            self.server_dir = (base_dir / self.server_dir).resolve()
        if not self.config_file.is_absolute():
            self.config_file = (base_dir / self.config_file).resolve()
        if self.backups_dir is not None and not self.backups_dir.is_absolute():
            self.backups_dir = (base_dir / self.backups_dir).resolve()


class JavaConfig(BaseModel):
    """How the server JAR is launched."""

    java_path: str = "java"
    jar_file: str = "paper-server.jar"
    extra_args: list[str] = Field(default_factory=list)


class PortsConfig(BaseModel):
    """Ports the server listens on (Bedrock via Geyser)."""

    java: int = 25565
    bedrock: int = 19132


class TunnelConfig(BaseModel):
    """playit.gg agent configuration."""

    binary: str = "playit"
    secret: str = ""
    extra_args: list[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    """Diagnostic logging settings."""

    level: str = "INFO"


class Settings(BaseSettings):
    """Main manager configuration."""

    model_config = SettingsConfigDict(
        env_prefix="CROSSPLAY_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    paths: PathsConfig = Field(default_factory=PathsConfig)
    java: JavaConfig = Field(default_factory=JavaConfig)
    ports: PortsConfig = Field(default_factory=PortsConfig)
    tunnel: TunnelConfig = Field(default_factory=TunnelConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def apply_env_secret(self) -> Self:
        """Take the tunnel secret from PLAYIT_SECRET if not configured."""
        env_secret = os.getenv("PLAYIT_SECRET")
        if env_secret and not self.tunnel.secret:
            self.tunnel.secret = env_secret
        return self


def _substitute_env(value: object) -> object:
    """Replace a "${VAR}" string with the variable's value."""
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        return os.getenv(value[2:-1], "")
    return value


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from a YAML file and the environment."""
    if config_path is None:
        env_path = os.getenv(CONFIG_ENV_VAR)
        config_path = Path(env_path) if env_path else Path.cwd() / "config.yaml"

    config_data = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}

        tunnel = config_data.get("tunnel")
        if isinstance(tunnel, dict) and "secret" in tunnel:
            tunnel["secret"] = _substitute_env(tunnel["secret"])

    settings = Settings(**config_data)
    settings.paths.resolve(config_path.parent.resolve())
    return settings
