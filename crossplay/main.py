#!/usr/bin/env python3
"""
Crossplay Minecraft Server Manager - console front-end.

Usage:
    python -m crossplay.main [--config config.yaml] [--start]

Console input:
    !start / !stop / !status / !quit, anything else is sent to the server.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from crossplay.core.log_buffer import Subscription
from crossplay.core.server_manager import ServerManager
from crossplay.storage.config_store import ConfigStore
from crossplay.storage.models import LogCategory, LogEntry
from crossplay.utils.binaries import check_java
from crossplay.utils.config import Settings, load_settings

CATEGORY_LABELS = {
    LogCategory.INFO: "INFO",
    LogCategory.WARN: "WARN",
    LogCategory.ERROR: "ERROR",
    LogCategory.SUCCESS: "OK",
    LogCategory.PLAYER: "PLAYER",
    LogCategory.WORLD: "WORLD",
}


def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def format_entry(entry: LogEntry) -> str:
    label = CATEGORY_LABELS.get(entry.category, entry.category.value)
    return f"[{entry.timestamp:%H:%M:%S}] [{label}] {entry.message}"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Crossplay Minecraft server manager")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--start", action="store_true", help="Start the server immediately")
    return parser.parse_args(argv)


async def print_logs(replay: list[LogEntry], subscription: Subscription) -> None:
    """Print the replayed history, then follow new entries."""
    for entry in replay:
        print(format_entry(entry), flush=True)
    async for entry in subscription:
        print(format_entry(entry), flush=True)


async def handle_input(manager: ServerManager, text: str) -> bool:
    """
    Run one line of operator input.

    Returns:
        False when the operator asked to quit
    """
    text = text.strip()
    if not text:
        return True
    if text == "!quit":
        return False

    if text == "!start":
        result = await manager.start()
    elif text == "!stop":
        result = await manager.stop()
    elif text == "!status":
        status = manager.status()
        print(status.model_dump_json(indent=2), flush=True)
        return True
    else:
        result = await manager.send_command(text)

    if not result.success:
        print(f"! {result.message}", flush=True)
    return True


async def console_loop(manager: ServerManager) -> None:
    """Read operator commands from stdin until EOF or !quit."""
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            break
        if not await handle_input(manager, line):
            break


async def check_requirements(settings: Settings) -> bool:
    """Check that Java is available."""
    logger = logging.getLogger(__name__)

    logger.info("Checking Java installation...")
    java_info = await check_java(settings.java.java_path)
    if not java_info.is_valid:
        logger.error("Java check failed: %s", java_info.error)
        logger.error("Please install Java 17 or higher.")
        return False

    logger.info("Found Java %s at %s", java_info.version, java_info.path)
    if java_info.major_version < 17:
        logger.warning(
            "Java %s detected. Minecraft 1.18+ requires Java 17+.", java_info.major_version
        )
    return True


async def async_main(args: argparse.Namespace, settings: Settings) -> None:
    """Async entry point."""
    logger = logging.getLogger(__name__)

    if not await check_requirements(settings):
        sys.exit(1)

    settings.paths.server_dir.mkdir(parents=True, exist_ok=True)
    jar_path = settings.paths.server_dir / settings.java.jar_file
    if not jar_path.exists():
        logger.warning("Server JAR not found at %s, starting will fail", jar_path)

    store = ConfigStore(settings.paths.config_file)
    store.load()

    manager = ServerManager(settings, store)
    logger.info("Server directory: %s", settings.paths.server_dir)
    logger.info("Configuration: %s", settings.paths.config_file)

    replay, subscription = manager.subscribe_logs()
    printer = asyncio.create_task(print_logs(replay, subscription))
    public_ip_task = asyncio.create_task(manager.refresh_public_ip())

    try:
        if args.start:
            result = await manager.start()
            if not result.success:
                logger.error(result.message)
        await console_loop(manager)
    finally:
        logger.info("Shutting down...")
        await manager.shutdown()
        subscription.close()
        public_ip_task.cancel()
        await asyncio.gather(printer, public_ip_task, return_exceptions=True)


def main() -> None:
    """Main entry point."""
    args = parse_args()
    try:
        settings = load_settings(args.config)
    except Exception as e:
        print(f"Failed to load configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(settings.logging.level)

    try:
        asyncio.run(async_main(args, settings))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
