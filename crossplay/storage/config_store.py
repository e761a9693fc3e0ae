"""Persistent storage for the server configuration document."""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from crossplay.core.exceptions import ConfigError
from crossplay.storage.models import ServerConfig, WorldTracking

logger = logging.getLogger(__name__)


class ConfigStore:
    """
    Loads, migrates and saves the JSON configuration document.

    The in-memory ``config`` is the shared view used by every other component.
    All mutations go through this class so the document has a single writer.
    """

    def __init__(self, path: Path):
        self.path = path
        self.config = ServerConfig()
        self.last_error: str | None = None
        # Writers run on the event loop and in worker threads
        self._lock = threading.RLock()

    @property
    def lock(self):
        """Held while a read-decide-write sequence must not interleave with updates."""
        return self._lock

    def load(self) -> ServerConfig:
        """
        Load the document from disk.

        Creates a default document if none exists and migrates legacy
        documents that lack the world-tracking block. Read or validation
        errors fall back to defaults; the file on disk is left untouched.

        Returns:
            The loaded configuration (also stored in ``self.config``)
        """
        self.last_error = None

        if not self.path.exists():
            logger.info("No configuration at %s, writing defaults", self.path)
            self.config = ServerConfig()
            self.save()
            return self.config

        try:
            raw = self._read_raw()
        except ConfigError as e:
            self.last_error = str(e)
            logger.warning("%s; using default configuration", e)
            self.config = ServerConfig()
            return self.config

        migrated = "world" not in raw
        if migrated:
            raw["world"] = self._legacy_world_block(raw)

        try:
            config = ServerConfig.model_validate(raw)
        except ValidationError as e:
            self.last_error = f"Invalid configuration in {self.path}: {e.error_count()} error(s)"
            logger.warning("%s; using default configuration", self.last_error)
            logger.debug("Validation details: %s", e)
            self.config = ServerConfig()
            return self.config

        # A seed edited by hand is picked up as the new target seed
        if config.world.current_seed != config.server.seed:
            logger.info(
                "Seed changed outside the manager: %r -> %r",
                config.world.current_seed,
                config.server.seed,
            )
            config.world.current_seed = config.server.seed
            migrated = True

        self.config = config
        if migrated:
            logger.info("Migrated configuration document %s", self.path)
            self.save()
        return self.config

    def _read_raw(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Cannot read configuration {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration {self.path} is not a JSON object")
        return data

    @staticmethod
    def _legacy_world_block(raw: dict[str, Any]) -> dict[str, Any]:
        """Legacy documents already have a generated world for their seed."""
        server = raw.get("server")
        seed = server.get("seed", "") if isinstance(server, dict) else ""
        seed = "" if seed is None else str(seed)
        return WorldTracking(
            current_seed=seed,
            last_used_seed=seed,
            world_generated=True,
        ).model_dump(by_alias=True)

    def save(self, config: ServerConfig | None = None) -> bool:
        """
        Write the document atomically (temp file + rename).

        Args:
            config: Configuration to persist, defaults to the current one

        Returns:
            True if written, False on failure (logged, never raised)
        """
        with self._lock:
            if config is not None:
                self.config = config
            return self._write(self.config.model_dump_json(by_alias=True, indent=2))

    def _write(self, payload: str) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=self.path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            self.last_error = f"Cannot write configuration {self.path}: {e}"
            logger.warning(self.last_error)
            return False
        return True

    def update(
        self,
        server: dict[str, Any] | None = None,
        performance: dict[str, Any] | None = None,
        tunnel: dict[str, Any] | None = None,
    ) -> ServerConfig:
        """
        Apply partial settings changes and persist them.

        Waits for any in-progress write, including the world check that
        runs in a worker thread while the server starts.

        Raises:
            pydantic.ValidationError: If a value is invalid (nothing is changed)
        """
        with self._lock:
            current = self.config.model_dump()
            for section, changes in (
                ("server", server),
                ("performance", performance),
                ("tunnel", tunnel),
            ):
                if changes:
                    current[section].update(changes)

            config = ServerConfig.model_validate(current)
            config.world.current_seed = config.server.seed
            self.save(config)
            return self.config

    def mark_world(
        self,
        config: ServerConfig | None = None,
        *,
        last_used_seed: str | None = None,
        world_generated: bool | None = None,
    ) -> bool:
        """Update the world-tracking block and persist it."""
        with self._lock:
            if config is not None:
                self.config = config
            world = self.config.world
            if last_used_seed is not None:
                world.last_used_seed = last_used_seed
            if world_generated is not None:
                world.world_generated = world_generated
            return self.save()
