"""
Shared pytest fixtures for muxlink tests.
"""

import asyncio
import shlex
import time
from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from muxlink.models import CommandResult, ConnectionConfig
from muxlink.transport import InteractiveChannel, Transport


class FakeChannel(InteractiveChannel):
    """Records writes instead of sending them anywhere."""

    def __init__(self, on_output, on_closed=None):
        self.on_output = on_output
        self.on_closed = on_closed
        self.writes: List[bytes] = []
        self.closed = False
        self.close_error: Optional[Exception] = None

    @property
    def is_closed(self) -> bool:
        return self.closed

    def write(self, data: Union[bytes, str]) -> None:
        if isinstance(data, str):
            data = data.encode("utf-8")
        self.writes.append(data)

    def feed(self, data: bytes, kind: str = "stdout") -> None:
        """Simulate bytes arriving from the remote side."""
        self.on_output(data, kind)

    def remote_close(self) -> None:
        self.closed = True
        if self.on_closed:
            self.on_closed(self)

    async def close(self) -> None:
        self.closed = True
        if self.close_error:
            raise self.close_error


class FakeTmuxTransport(Transport):
    """
    In-memory transport that answers the tmux commands muxlink issues.

    Sessions live in ``self.sessions`` as name -> (created, windows, attached).
    """

    def __init__(self, config: ConnectionConfig, on_close: Optional[Callable] = None):
        self.config = config
        self.on_close = on_close
        self.sessions: Dict[str, Tuple[int, int, int]] = {}
        self.commands: List[str] = []
        self.channels: List[FakeChannel] = []
        self.interactive_commands: List[str] = []
        self.connect_gate: Optional[asyncio.Event] = None
        self.connect_error: Optional[BaseException] = None
        self.close_error: Optional[Exception] = None
        self.overrides: Dict[str, CommandResult] = {}
        self.hide_new_sessions = False
        self.connected = False
        self.close_calls = 0

    @property
    def is_closed(self) -> bool:
        return not self.connected

    async def connect(self) -> None:
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error:
            raise self.connect_error
        self.connected = True

    async def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        if command in self.overrides:
            return self.overrides[command]

        argv = shlex.split(command)
        if argv[:2] == ["tmux", "-V"]:
            return CommandResult(stdout="tmux 3.3a\n", exit_status=0)
        if argv[:2] == ["tmux", "list-sessions"]:
            if not self.sessions:
                return CommandResult(
                    stderr="no server running on /tmp/tmux-1000/default\n", exit_status=1
                )
            lines = [
                f"{name}|{created}|{created}|{attached}|{windows}"
                for name, (created, windows, attached) in self.sessions.items()
            ]
            return CommandResult(stdout="\n".join(lines) + "\n", exit_status=0)
        if argv[:2] == ["tmux", "new-session"]:
            name = argv[argv.index("-s") + 1]
            if name in self.sessions:
                return CommandResult(stderr=f"duplicate session: {name}\n", exit_status=1)
            if not self.hide_new_sessions:
                self.sessions[name] = (int(time.time()), 1, 0)
            return CommandResult(exit_status=0)
        if argv[:2] == ["tmux", "kill-session"]:
            name = argv[argv.index("-t") + 1]
            if self.sessions.pop(name, None) is None:
                return CommandResult(stderr=f"can't find session: {name}\n", exit_status=1)
            return CommandResult(exit_status=0)
        if argv[:2] == ["tmux", "send-keys"]:
            name = argv[argv.index("-t") + 1]
            if name not in self.sessions:
                return CommandResult(stderr=f"can't find session: {name}\n", exit_status=1)
            return CommandResult(exit_status=0)
        return CommandResult(stderr=f"sh: {argv[0]}: command not found\n", exit_status=127)

    async def open_interactive(self, initial_command, on_output, on_closed=None,
                               term_type="xterm-256color", term_size=(80, 24)):
        channel = FakeChannel(on_output, on_closed)
        channel.write(initial_command + "\n")
        self.interactive_commands.append(initial_command)
        self.channels.append(channel)
        return channel

    async def close(self) -> None:
        self.close_calls += 1
        self.connected = False
        if self.close_error:
            raise self.close_error

    def drop(self, exc: Optional[Exception] = None) -> None:
        """Simulate the remote end closing the connection."""
        self.connected = False
        if self.on_close:
            self.on_close(exc)


class FakeTransportFactory:
    """Transport factory that remembers every transport it built."""

    def __init__(self):
        self.created: List[FakeTmuxTransport] = []
        self.connect_error: Optional[BaseException] = None
        self.connect_gate: Optional[asyncio.Event] = None
        self.sessions: Dict[str, Tuple[int, int, int]] = {}

    def __call__(self, config, on_close=None) -> FakeTmuxTransport:
        transport = FakeTmuxTransport(config, on_close=on_close)
        transport.connect_error = self.connect_error
        transport.connect_gate = self.connect_gate
        transport.sessions.update(self.sessions)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTmuxTransport:
        return self.created[-1]


@pytest.fixture
def password_config():
    return ConnectionConfig(
        host="test.example.com",
        port=22,
        username="testuser",
        auth_method="password",
        password="testpass",
    )


@pytest.fixture
def transport_factory():
    return FakeTransportFactory()
