import asyncio

import pytest

from crossplay.core.log_buffer import LogBuffer
from crossplay.core.tunnel import TunnelManager
from crossplay.storage.models import LogCategory, TunnelState

JAVA, BEDROCK = 25565, 19132


@pytest.fixture
def buffer():
    return LogBuffer()


@pytest.fixture
def make_tunnel(tmp_path, buffer, factory):
    def _make(binary="playit", **kwargs):
        return TunnelManager(
            binary=binary,
            working_dir=tmp_path,
            ports={JAVA: "Java", BEDROCK: "Bedrock"},
            log_buffer=buffer,
            process_factory=factory,
            **kwargs,
        )

    return _make


def _started(tunnel, factory):
    assert asyncio.run(tunnel.start()) is True
    return factory.by_name("playit")[-1]


def test_not_installed_start_is_a_warning(make_tunnel, buffer, factory):
    tunnel = make_tunnel(binary=None)

    assert tunnel.state == TunnelState.NOT_INSTALLED
    assert asyncio.run(tunnel.start()) is False
    assert factory.created == []
    assert buffer.snapshot()[-1].category == LogCategory.WARN


def test_java_binding_leaves_bedrock_untouched(make_tunnel, factory):
    tunnel = make_tunnel()
    agent = _started(tunnel, factory)

    agent.emit("myaddr.playit.gg => 127.0.0.1:25565")

    assert tunnel.state == TunnelState.RUNNING
    assert tunnel.address_for(JAVA) == "myaddr.playit.gg"
    assert tunnel.address_for(BEDROCK) is None
    assert tunnel.addresses == {JAVA: "myaddr.playit.gg"}


def test_repeated_binding_is_logged_once(make_tunnel, factory, buffer):
    tunnel = make_tunnel()
    agent = _started(tunnel, factory)

    for _ in range(3):
        agent.emit("myaddr.playit.gg => 127.0.0.1:25565")
    agent.emit("other.playit.gg => 127.0.0.1:25565")

    notices = [e.message for e in buffer.snapshot() if "tunnel address" in e.message]
    assert notices == [
        "🌐 Java tunnel address: myaddr.playit.gg",
        "🌐 Java tunnel address: other.playit.gg",
    ]
    assert tunnel.address_for(JAVA) == "other.playit.gg"


def test_unknown_ports_and_noise_are_ignored(make_tunnel, factory):
    tunnel = make_tunnel()
    agent = _started(tunnel, factory)

    agent.emit("web.playit.gg => 127.0.0.1:8080")
    agent.emit("checking for updates...")
    agent.emit("")

    assert tunnel.addresses == {}


def test_ansi_codes_and_bedrock_binding(make_tunnel, factory):
    tunnel = make_tunnel()
    agent = _started(tunnel, factory)

    agent.emit("\x1b[32mbed-rock.gl.at.ply.gg:7021\x1b[0m => 127.0.0.1:19132 (minecraft-bedrock)")

    assert tunnel.addresses == {BEDROCK: "bed-rock.gl.at.ply.gg:7021"}


def test_setup_url_then_approval(make_tunnel, factory, buffer):
    tunnel = make_tunnel()
    agent = _started(tunnel, factory)

    agent.emit("Visit link to setup https://playit.gg/claim/5a6b7c8d9e")
    agent.emit("Visit link to setup https://playit.gg/claim/5a6b7c8d9e")

    assert tunnel.setup_url == "https://playit.gg/claim/5a6b7c8d9e"
    assert tunnel.addresses == {}
    setup_notices = [e for e in buffer.snapshot() if "setup required" in e.message]
    assert len(setup_notices) == 1
    assert setup_notices[0].category == LogCategory.WARN

    agent.emit("program approved :)")

    assert tunnel.setup_url is None
    assert buffer.snapshot()[-1].category == LogCategory.SUCCESS


def test_stop_clears_bindings_and_setup_state(make_tunnel, factory):
    tunnel = make_tunnel()
    agent = _started(tunnel, factory)
    agent.emit("myaddr.playit.gg => 127.0.0.1:25565")
    agent.emit("Visit link to setup https://playit.gg/claim/abc")

    assert asyncio.run(tunnel.stop()) is True

    assert agent.terminated is True
    assert tunnel.addresses == {}
    assert tunnel.setup_url is None
    assert tunnel.state == TunnelState.IDLE


def test_stop_when_idle_is_noop(make_tunnel):
    tunnel = make_tunnel()

    assert asyncio.run(tunnel.stop()) is False
    assert tunnel.state == TunnelState.IDLE


def test_second_start_while_running_is_noop(make_tunnel, factory):
    tunnel = make_tunnel()
    _started(tunnel, factory)

    assert asyncio.run(tunnel.start()) is False
    assert len(factory.by_name("playit")) == 1


def test_spawn_failure_is_non_fatal(make_tunnel, factory, buffer):
    factory.fail_names.add("playit")
    tunnel = make_tunnel()

    assert asyncio.run(tunnel.start()) is False
    assert tunnel.state == TunnelState.IDLE
    assert buffer.snapshot()[-1].category == LogCategory.WARN


def test_unexpected_exit_clears_bindings(make_tunnel, factory, buffer):
    tunnel = make_tunnel()
    agent = _started(tunnel, factory)
    agent.emit("myaddr.playit.gg => 127.0.0.1:25565")

    asyncio.run(agent.exit(1))

    assert tunnel.state == TunnelState.IDLE
    assert tunnel.addresses == {}
    assert "exited" in buffer.snapshot()[-1].message


def test_restart_requires_fresh_bindings(make_tunnel, factory):
    tunnel = make_tunnel()
    first = _started(tunnel, factory)
    first.emit("myaddr.playit.gg => 127.0.0.1:25565")
    asyncio.run(tunnel.stop())

    second = _started(tunnel, factory)

    assert second is not first
    assert tunnel.addresses == {}
    first.emit("stale.playit.gg => 127.0.0.1:25565")
    assert tunnel.addresses == {}
    second.emit("myaddr.playit.gg => 127.0.0.1:25565")
    assert tunnel.addresses == {JAVA: "myaddr.playit.gg"}


def test_secret_and_extra_args(make_tunnel):
    tunnel = make_tunnel(secret="s3cr3t", extra_args=["start"])

    assert tunnel._build_args() == ["playit", "--secret", "s3cr3t", "start"]
