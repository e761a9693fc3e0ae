import asyncio
import os
import sys

import httpx
import pytest

from crossplay.utils.binaries import find_executable, parse_java_major
from crossplay.utils.config import load_settings
from crossplay.utils.network import UNKNOWN_PUBLIC_IP, detect_public_ip


def test_load_settings_defaults_without_file(tmp_path):
    settings = load_settings(tmp_path / "missing.yaml")

    assert settings.ports.java == 25565
    assert settings.ports.bedrock == 19132
    assert settings.java.jar_file == "paper-server.jar"
    assert settings.paths.server_dir == (tmp_path / "minecraft-server").resolve()


def test_load_settings_from_yaml(tmp_path, monkeypatch):
    monkeypatch.setenv("MY_PLAYIT_SECRET", "from-env")
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "paths:\n"
        "  server_dir: srv\n"
        "  config_file: /abs/config.json\n"
        "ports:\n"
        "  java: 25570\n"
        "tunnel:\n"
        "  binary: /opt/playit/playit\n"
        "  secret: ${MY_PLAYIT_SECRET}\n",
        encoding="utf-8",
    )

    settings = load_settings(config_path)

    assert settings.paths.server_dir == (tmp_path / "srv").resolve()
    assert settings.paths.config_file.as_posix().endswith("/abs/config.json")
    assert settings.ports.java == 25570
    assert settings.tunnel.binary == "/opt/playit/playit"
    assert settings.tunnel.secret == "from-env"


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX executable bits")
def test_find_executable(tmp_path):
    agent = tmp_path / "playit"
    agent.write_text("#!/bin/sh\n", encoding="utf-8")
    agent.chmod(0o755)

    assert find_executable(str(agent)) == str(agent.resolve())
    assert find_executable("playit-does-not-exist-xyz", tmp_path) is None
    assert find_executable(str(tmp_path / "nope")) is None

    os.chmod(agent, 0o644)
    assert find_executable(str(agent)) is None


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX executable bits")
def test_find_executable_in_server_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("PATH", "")
    agent = tmp_path / "playit"
    agent.write_text("#!/bin/sh\n", encoding="utf-8")
    agent.chmod(0o755)

    assert find_executable("playit", tmp_path) == str(agent.resolve())


@pytest.mark.parametrize(
    ("version", "major"),
    [("17.0.1", 17), ("21", 21), ("1.8.0_301", 8), ("garbage", 0)],
)
def test_parse_java_major(version, major):
    assert parse_java_major(version) == major


def test_detect_public_ip():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, text="203.0.113.7\n"))

    assert asyncio.run(detect_public_ip(transport=transport)) == "203.0.113.7"


def test_detect_public_ip_failure():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    assert asyncio.run(detect_public_ip(transport=transport)) == UNKNOWN_PUBLIC_IP
