"""World regeneration decisions and seed-change backups."""

import logging
import os
import shutil
from datetime import datetime
from pathlib import Path

from crossplay.core.exceptions import BackupError
from crossplay.storage.config_store import ConfigStore
from crossplay.storage.models import ServerConfig, WorldDecision, WorldDecisionReason

logger = logging.getLogger(__name__)


class WorldSeedGuard:
    """
    Decides whether the world must be regenerated before a start.

    When the configured seed differs from the seed the on-disk world was
    generated with, the world is copied to a timestamped backup directory and
    only then removed, so a failed backup never loses data.
    """

    TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

    def __init__(self, store: ConfigStore, server_dir: Path, backups_dir: Path | None = None):
        """
        Initialize the guard.

        Args:
            store: Configuration store (single writer of the document)
            server_dir: Server working directory containing the world
            backups_dir: Where backups go, defaults to server_dir
        """
        self.store = store
        self.server_dir = server_dir
        self.backups_dir = backups_dir or server_dir

    def world_path(self, config: ServerConfig) -> Path:
        """Get path to the world folder for the configured level name."""
        return self.server_dir / config.server.level_name

    def world_exists(self, config: ServerConfig) -> bool:
        """Check whether a world folder is present on disk."""
        return self.world_path(config).is_dir()

    def evaluate(self, config: ServerConfig, world_exists: bool) -> WorldDecision:
        """
        Decide whether a new world will be generated on the next start.

        Runs synchronously and must finish before the server is spawned.
        Never raises for filesystem errors: a failed backup yields
        ``backup_failed`` and the existing world is kept.
        """
        world = config.world

        if not world_exists:
            seed = world.current_seed
            logger.info("No world found, a new one will be generated (seed=%r)", seed)
            self.store.mark_world(config, last_used_seed=seed, world_generated=False)
            return WorldDecision(
                should_create_new=True,
                reason=WorldDecisionReason.NO_WORLD_EXISTS,
            )

        if world.current_seed == world.last_used_seed:
            return WorldDecision(
                should_create_new=False,
                reason=WorldDecisionReason.SEED_UNCHANGED,
            )

        logger.info(
            "Seed changed (%r -> %r), backing up current world",
            world.last_used_seed,
            world.current_seed,
        )
        try:
            backup_name = self.backup_world(self.world_path(config))
        except BackupError as e:
            logger.error("World backup failed, keeping existing world: %s", e)
            return WorldDecision(
                should_create_new=False,
                reason=WorldDecisionReason.BACKUP_FAILED,
                error=str(e),
            )

        self.store.mark_world(config, last_used_seed=world.current_seed, world_generated=False)
        return WorldDecision(
            should_create_new=True,
            reason=WorldDecisionReason.SEED_CHANGED,
            backup_name=backup_name,
        )

    def mark_generated(self) -> None:
        """Record that the server finished generating/loading the world."""
        with self.store.lock:
            world = self.store.config.world
            if world.world_generated:
                return
            self.store.mark_world(world_generated=True)
        logger.info("World marked as generated (seed=%r)", world.last_used_seed)

    def backup_world(self, world_path: Path) -> str:
        """
        Copy the world to a new backup folder, then remove the original.

        Returns:
            Name of the backup folder

        Raises:
            BackupError: If the copy or the removal of the original fails.
                The original world is intact whenever this is raised.
        """
        if world_path.is_symlink() or not world_path.is_dir():
            raise BackupError(f"World folder is not a regular directory: {world_path}")

        self.backups_dir.mkdir(parents=True, exist_ok=True)
        backup_path = self._unique_backup_path(world_path.name)

        try:
            copy_tree(world_path, backup_path)
        except OSError as e:
            remove_partial(backup_path)
            raise BackupError(f"Failed to copy world to {backup_path}: {e}") from e

        logger.info("World copied to %s", backup_path)

        # Move aside first so the world path disappears atomically
        discard_path = world_path.with_name(f".{world_path.name}.discard-{backup_path.name}")
        try:
            os.replace(world_path, discard_path)
        except OSError as e:
            raise BackupError(f"Failed to remove original world {world_path}: {e}") from e

        try:
            remove_tree(discard_path)
        except OSError as e:
            logger.warning("Could not delete old world at %s: %s", discard_path, e)

        return backup_path.name

    def _unique_backup_path(self, world_name: str) -> Path:
        now = datetime.now()
        candidate = self.backups_dir / f"{world_name}_backup_{now.strftime(self.TIMESTAMP_FORMAT)}"
        if not candidate.exists():
            return candidate

        fine = self.backups_dir / f"{candidate.name}-{now.microsecond:06d}"
        counter = 1
        candidate = fine
        while candidate.exists():
            candidate = fine.with_name(f"{fine.name}-{counter}")
            counter += 1
        return candidate


def copy_tree(source: Path, destination: Path) -> None:
    """
    Copy a directory tree using an explicit stack.

    Symbolic links are recreated as links and never followed.
    The destination must not exist.

    Raises:
        OSError: On any failure; the partial copy is left for the caller
    """
    destination.mkdir(parents=False, exist_ok=False)
    stack: list[tuple[Path, Path]] = [(source, destination)]

    while stack:
        src_dir, dst_dir = stack.pop()
        with os.scandir(src_dir) as entries:
            for entry in entries:
                src = Path(entry.path)
                dst = dst_dir / entry.name
                if entry.is_symlink():
                    os.symlink(os.readlink(src), dst)
                elif entry.is_dir(follow_symlinks=False):
                    dst.mkdir()
                    stack.append((src, dst))
                else:
                    shutil.copy2(src, dst, follow_symlinks=False)


def remove_tree(root: Path) -> None:
    """
    Delete a directory tree using an explicit stack.

    Symbolic links are unlinked, their targets are never touched.
    """
    directories: list[Path] = []
    stack = [root]

    while stack:
        current = stack.pop()
        directories.append(current)
        with os.scandir(current) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    stack.append(Path(entry.path))
                else:
                    os.unlink(entry.path)

    # Children were appended after their parents
    for directory in reversed(directories):
        os.rmdir(directory)


def remove_partial(path: Path) -> None:
    """Best-effort cleanup of an incomplete backup."""
    if not path.exists():
        return
    try:
        remove_tree(path)
    except OSError as e:
        logger.warning("Could not clean up partial backup %s: %s", path, e)
