"""Classification of Minecraft server console lines."""

import re
from collections.abc import Callable
from dataclasses import dataclass

from crossplay.storage.models import LogCategory

# Example: [12:34:56 INFO]: Alice joined the game
JOIN_PATTERN = re.compile(r"(\w+) joined the game")
LEFT_PATTERN = re.compile(r"(\w+) left the game")

# Console marker used for the readiness check:
# Done (2.5s)! For help, type "help"
DONE_MARKER = "Done ("
HELP_MARKER = 'For help, type "help"'

VERSION_BANNER = "Starting minecraft server version"
GEYSER_MARKER = "Started Geyser"
VIAVERSION_MARKER = "ViaVersion detected server version"


@dataclass(frozen=True)
class LogRule:
    """One entry of the classification table."""

    name: str
    matches: Callable[[str], bool]
    category: LogCategory
    decorate: Callable[[str], str] = lambda line: line


def _player_notice(pattern: re.Pattern, template: str) -> Callable[[str], str]:
    def decorate(line: str) -> str:
        match = pattern.search(line)
        if not match:
            return line
        return template.format(player=match.group(1))

    return decorate


def _chat(line: str) -> str:
    # Drop the "[time thread/LEVEL]:" prefix, keep "<player> message"
    start = line.find("<")
    return f"💬 {line[start:]}" if start >= 0 else line


def _contains_all(*needles: str) -> Callable[[str], bool]:
    return lambda line: all(needle in line for needle in needles)


def _contains_any(*needles: str) -> Callable[[str], bool]:
    return lambda line: any(needle in line for needle in needles)


# First match wins; several markers appear inside each other's lines,
# e.g. a chat message may mention "ERROR", so player rules come first.
RULES: tuple[LogRule, ...] = (
    LogRule(
        "player_join",
        _contains_all("joined the game"),
        LogCategory.PLAYER,
        _player_notice(JOIN_PATTERN, "👋 {player} joined the game"),
    ),
    LogRule(
        "player_leave",
        _contains_all("left the game"),
        LogCategory.PLAYER,
        _player_notice(LEFT_PATTERN, "🚪 {player} left the game"),
    ),
    LogRule("chat", _contains_all("<", ">"), LogCategory.PLAYER, _chat),
    LogRule("version_banner", _contains_all(VERSION_BANNER), LogCategory.SUCCESS),
    LogRule(
        "startup_complete",
        _contains_all(DONE_MARKER, HELP_MARKER),
        LogCategory.SUCCESS,
        lambda line: "✅ Server startup complete",
    ),
    LogRule(
        "world_prepare",
        _contains_any("Preparing spawn area", "Preparing level"),
        LogCategory.WORLD,
    ),
    LogRule("world_time", _contains_all("Time elapsed:"), LogCategory.WORLD),
    LogRule("plugin_loading", _contains_all("Loading", "plugin"), LogCategory.INFO),
    LogRule("plugin_enabling", _contains_all("Enabling", "plugin"), LogCategory.SUCCESS),
    LogRule(
        "bridge_online",
        _contains_all(GEYSER_MARKER),
        LogCategory.SUCCESS,
        lambda line: "🔗 Crossplay bridge (Geyser) is online",
    ),
    LogRule(
        "multiversion_online",
        _contains_all(VIAVERSION_MARKER),
        LogCategory.SUCCESS,
        lambda line: "🔀 Multi-version support (ViaVersion) is online",
    ),
    LogRule("error", _contains_any("ERROR", "SEVERE"), LogCategory.ERROR),
    LogRule("warning", _contains_all("WARN"), LogCategory.WARN),
)


def match_rule(line: str) -> LogRule | None:
    """Return the first rule matching the line, if any."""
    for rule in RULES:
        if rule.matches(line):
            return rule
    return None


def classify(line: str) -> tuple[LogCategory, str]:
    """
    Classify a raw console line.

    Args:
        line: Raw line from the server stdout/stderr

    Returns:
        (category, decorated message); unmatched lines are info and unchanged
    """
    rule = match_rule(line)
    if rule is None:
        return LogCategory.INFO, line
    return rule.category, rule.decorate(line)


def is_startup_complete(line: str) -> bool:
    """Check if the line is the server's "startup complete" banner."""
    rule = match_rule(line)
    return rule is not None and rule.name == "startup_complete"
