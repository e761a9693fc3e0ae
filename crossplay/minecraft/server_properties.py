"""Rendering of server.properties, eula.txt and the bukkit.yml End toggle."""

import logging
from pathlib import Path

import yaml

from crossplay.storage.models import ServerConfig, ServerSettings

logger = logging.getLogger(__name__)


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value)
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def build_properties(settings: ServerSettings, java_port: int) -> dict[str, object]:
    """Map configuration fields one-to-one to server.properties keys."""
    return {
        "server-ip": "0.0.0.0",
        "server-port": java_port,
        "enable-query": True,
        "query.port": java_port,
        "gamemode": settings.gamemode,
        "difficulty": settings.difficulty,
        "max-players": settings.max_players,
        "motd": settings.motd,
        "pvp": settings.pvp,
        "enable-command-block": settings.enable_command_block,
        "allow-nether": settings.allow_nether,
        "spawn-protection": settings.spawn_protection,
        "view-distance": settings.view_distance,
        "simulation-distance": settings.simulation_distance,
        "level-name": settings.level_name,
        "level-seed": settings.seed,
        "online-mode": settings.online_mode,
        "white-list": settings.white_list,
        "enforce-whitelist": settings.white_list,
        "require-resource-pack": settings.force_resource_pack,
    }


def render_properties(settings: ServerSettings, java_port: int) -> str:
    """Render server.properties content."""
    lines = ["# Generated by crossplay server manager, edits are overwritten on start"]
    for key, value in build_properties(settings, java_port).items():
        lines.append(f"{key}={_format_value(value)}")
    return "\n".join(lines) + "\n"


def update_bukkit_settings(path: Path, allow_end: bool) -> None:
    """Set settings.allow-end in bukkit.yml, keeping the other keys."""
    data: dict = {}
    if path.exists():
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    data.setdefault("settings", {})["allow-end"] = allow_end
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def write_server_files(server_dir: Path, config: ServerConfig, java_port: int) -> None:
    """
    Write the files the server reads at startup.

    Raises:
        OSError: If a file cannot be written
    """
    server_dir.mkdir(parents=True, exist_ok=True)
    (server_dir / "server.properties").write_text(
        render_properties(config.server, java_port), encoding="utf-8"
    )
    (server_dir / "eula.txt").write_text("eula=true\n", encoding="utf-8")

    try:
        update_bukkit_settings(server_dir / "bukkit.yml", config.server.allow_end)
    except yaml.YAMLError as e:
        logger.warning("Could not update bukkit.yml: %s", e)
