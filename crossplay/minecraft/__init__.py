"""Minecraft-specific file rendering."""

from crossplay.minecraft.server_properties import render_properties, write_server_files

__all__ = ["render_properties", "write_server_files"]
