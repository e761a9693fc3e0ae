"""Crossplay Minecraft server manager."""

__version__ = "0.1.0"
