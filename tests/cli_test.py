import functools
import io
from datetime import datetime

import pytest
import yaml

from muxlink import __main__ as cli
from muxlink.connection import ConnectionManager
from muxlink.models import Session


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump({
        "hosts": [
            {"alias": "dev", "host": "dev.local", "username": "me", "auth_method": "password"},
        ]
    }))
    return path


@pytest.fixture
def fake_manager(monkeypatch, transport_factory):
    monkeypatch.setattr(cli, "ConnectionManager", functools.partial(ConnectionManager, transport_factory=transport_factory))
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt: "secret")
    return transport_factory


def test_parser_subcommands():
    args = cli.build_parser().parse_args(["dev", "send", "work", "ls", "-la"])
    assert args.host == "dev"
    assert args.command == "send"
    assert args.text == ["ls", "-la"]

    args = cli.build_parser().parse_args(["-l", "debug", "dev", "new"])
    assert args.log_level == "debug"
    assert args.name is None


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["dev"])


def test_format_session():
    session = Session(
        id="c:work",
        name="work",
        created=datetime(2024, 1, 1, 10, 0),
        last_activity=datetime(2024, 1, 1, 10, 0),
        window_count=1,
        is_active=False,
        connection_id="c",
    )
    assert cli.format_session(session) == "work\t1 window\tdetached\tcreated 2024-01-01 10:00"


def test_main_missing_config(tmp_path, capsys):
    assert cli.main(["-c", str(tmp_path / "missing.yml"), "dev", "list"]) == 1
    assert "Configuration file not found" in capsys.readouterr().err


def test_main_unknown_host(config_file, capsys):
    assert cli.main(["-c", str(config_file), "prod", "list"]) == 2
    assert "Unknown host alias: prod" in capsys.readouterr().err


def test_main_new_session(config_file, fake_manager, capsys):
    assert cli.main(["-c", str(config_file), "dev", "new", "work"]) == 0

    out = capsys.readouterr().out
    assert out.startswith("work\t1 window\tdetached")
    transport = fake_manager.last
    assert transport.config.password == "secret"
    assert transport.commands[0] == 'tmux new-session -d -s "work"'
    assert transport.close_calls == 1


def test_main_send(config_file, fake_manager):
    fake_manager.sessions["work"] = (1704103200, 1, 0)

    assert cli.main(["-c", str(config_file), "dev", "send", "work", "echo", '"hi"']) == 0
    assert fake_manager.last.commands[-1] == 'tmux send-keys -t "work" "echo \\"hi\\"" Enter'


def test_main_connection_refused(config_file, fake_manager, capsys):
    fake_manager.connect_error = ConnectionRefusedError(111, "Connect call failed")

    assert cli.main(["-c", str(config_file), "dev", "list"]) == 1
    assert "Connection refused by dev.local:22" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_attach_forwards_lines_and_key_escapes(monkeypatch, transport_factory):
    monkeypatch.setattr(cli.sys, "stdin", io.StringIO("ls -la\n~ctrl+c\n"))
    manager = ConnectionManager(transport_factory=transport_factory)
    await manager.connect({"host": "dev.local", "username": "me", "auth_method": "password", "password": "pw"})

    await cli._attach(manager, "work")

    channel = transport_factory.last.channels[0]
    assert channel.writes == [b'tmux attach-session -t "work"\n', b"ls -la\n", b"\x03"]
    assert channel.closed is True
    assert manager.is_attached is False


@pytest.mark.asyncio
async def test_attach_stops_when_remote_closes(monkeypatch, transport_factory):
    monkeypatch.setattr(cli.sys, "stdin", io.StringIO("typed after close\n"))
    manager = ConnectionManager(transport_factory=transport_factory)
    await manager.connect({"host": "dev.local", "username": "me", "auth_method": "password", "password": "pw"})
    attach = manager.attach_to_session

    async def attach_then_close(name):
        channel = await attach(name)
        channel.remote_close()
        return channel

    monkeypatch.setattr(manager, "attach_to_session", attach_then_close)

    await cli._attach(manager, "work")

    channel = transport_factory.last.channels[0]
    assert channel.writes == [b'tmux attach-session -t "work"\n']
    assert manager.is_attached is False
