"""Probing for the executables the manager launches."""

import asyncio
import os
import re
import shutil
from dataclasses import dataclass
from pathlib import Path


@dataclass
class JavaInfo:
    """Information about Java installation."""

    path: str
    version: str
    major_version: int
    is_valid: bool
    error: str | None = None


def find_executable(name: str, search_dir: Path | None = None) -> str | None:
    """
    Resolve an executable by path, PATH lookup or inside search_dir.

    Returns:
        Absolute path to the executable, or None if not found
    """
    candidate = Path(name)
    if candidate.is_absolute() or candidate.parent != Path("."):
        if candidate.is_file() and os.access(candidate, os.X_OK):
            return str(candidate.resolve())
        return None

    resolved = shutil.which(name)
    if resolved:
        return resolved

    if search_dir is not None:
        for filename in (name, f"{name}.exe"):
            local = search_dir / filename
            if local.is_file() and os.access(local, os.X_OK):
                return str(local.resolve())
    return None


def parse_java_major(version: str) -> int:
    """
    Extract the major version.

    "17.0.1" -> 17, "1.8.0_301" -> 8
    """
    pattern = r"1\.(\d+)" if version.startswith("1.") else r"(\d+)"
    match = re.match(pattern, version)
    return int(match.group(1)) if match else 0


async def check_java(java_path: str = "java") -> JavaInfo:
    """
    Check if Java is installed and get version information.

    Args:
        java_path: Path to java executable or "java" to use PATH

    Returns:
        JavaInfo with version details or error information
    """
    actual_path = find_executable(java_path)
    if actual_path is None:
        return JavaInfo(
            path=java_path,
            version="",
            major_version=0,
            is_valid=False,
            error=f"Java executable not found: {java_path}",
        )

    try:
        process = await asyncio.create_subprocess_exec(
            actual_path,
            "-version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=10.0)
    except TimeoutError:
        return JavaInfo(actual_path, "", 0, False, "Timeout while checking Java version")
    except OSError as e:
        return JavaInfo(actual_path, "", 0, False, f"Error checking Java: {e}")

    # Java prints its version to stderr:
    # openjdk version "17.0.1" 2021-10-19
    output = stderr.decode("utf-8", errors="replace")
    version_match = re.search(r'version "([^"]+)"', output)
    if not version_match:
        return JavaInfo(
            path=actual_path,
            version="",
            major_version=0,
            is_valid=False,
            error=f"Could not parse Java version from output: {output[:100]}",
        )

    version_str = version_match.group(1)
    return JavaInfo(
        path=actual_path,
        version=version_str,
        major_version=parse_java_major(version_str),
        is_valid=True,
    )
