from datetime import datetime

from pydantic import ValidationError
import pytest

from muxlink.models import CommandResult, ConnectionConfig, Session, Settings, TerminalOutput


def test_connection_config_password():
    config = ConnectionConfig(
        host="localhost",
        username="testuser",
        auth_method="password",
        password="secret",
    )
    assert config.port == 22
    assert config.connect_timeout == 30.0
    assert "secret" not in repr(config)


def test_connection_config_is_immutable():
    config = ConnectionConfig(host="h", username="u", auth_method="password", password="p")
    with pytest.raises(ValidationError):
        config.host = "other"


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"host": "  "}, "host is required"),
        ({"username": ""}, "username is required"),
        ({"port": 0}, "port must be between"),
        ({"port": 65536}, "port must be between"),
        ({"password": None}, "password is required"),
        ({"password": "   "}, "password is required"),
        ({"auth_method": "key"}, "private key is required"),
        ({"auth_method": "agent"}, "auth_method"),
        ({"connect_timeout": 0}, "connect_timeout"),
    ],
)
def test_connection_config_rejects_invalid(overrides, message):
    data = {"host": "localhost", "username": "u", "auth_method": "password", "password": "p"}
    data.update(overrides)
    with pytest.raises(ValidationError, match=message):
        ConnectionConfig(**data)


def test_connection_config_key_auth():
    config = ConnectionConfig(
        host="localhost", username="u", auth_method="key", private_key="-----BEGIN KEY-----"
    )
    assert config.password is None
    assert config.private_key.startswith("-----BEGIN")


def test_session_model():
    now = datetime.now()
    session = Session(
        id=Session.make_id("conn-1", "work"),
        name="work",
        created=now,
        last_activity=now,
        window_count=2,
        is_active=True,
        connection_id="conn-1",
    )
    assert session.id == "conn-1:work"
    assert session.created == now

    with pytest.raises(ValidationError):
        Session(
            id="x",
            name="work",
            created=now,
            last_activity=now,
            window_count=0,
            is_active=False,
            connection_id="conn-1",
        )


def test_session_ids_distinct_across_connections():
    assert Session.make_id("conn-1", "work") != Session.make_id("conn-2", "work")
    assert Session.make_id("conn-1", "work") == Session.make_id("conn-1", "work")


def test_terminal_output_keeps_bytes():
    output = TerminalOutput(data=b"\x1b[31mred\x07")
    assert output.kind == "stdout"
    assert output.data == b"\x1b[31mred\x07"
    assert output.text == "\x1b[31mred\x07"
    assert isinstance(output.timestamp, datetime)


def test_command_result_ok():
    assert CommandResult(exit_status=0).ok
    assert not CommandResult(exit_status=1).ok
    assert not CommandResult(exit_status=0, stderr="warning\n").ok


def test_settings_get_host():
    settings = Settings(
        hosts=[{"alias": "dev", "host": "dev.local", "username": "me", "auth_method": "password"}]
    )
    assert settings.get_host("dev").host == "dev.local"
    with pytest.raises(KeyError):
        settings.get_host("missing")
