from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ConnectionState(Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class ConnectionConfig(BaseModel):
    """Everything needed to open one authenticated SSH transport."""

    model_config = ConfigDict(frozen=True)

    host: str
    port: int = 22
    username: str
    auth_method: Literal['password', 'key']
    password: Optional[str] = Field(default=None, repr=False)
    private_key: Optional[str] = Field(default=None, repr=False)
    passphrase: Optional[str] = Field(default=None, repr=False)
    connect_timeout: float = 30.0
    verify_host_key: bool = True

    @model_validator(mode="after")
    def _check_fields(self) -> "ConnectionConfig":
        if not self.host.strip():
            raise ValueError("host is required")
        if not self.username.strip():
            raise ValueError("username is required")
        if not 1 <= self.port <= 65535:
            raise ValueError("port must be between 1 and 65535")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.auth_method == "password" and not (self.password and self.password.strip()):
            raise ValueError("password is required for password authentication")
        if self.auth_method == "key" and not (self.private_key and self.private_key.strip()):
            raise ValueError("private key is required for key authentication")
        return self


class Session(BaseModel):
    """A remote tmux session as seen by the most recent listing."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = Field(min_length=1)
    created: datetime
    last_activity: datetime
    window_count: int = Field(ge=1)
    is_active: bool
    connection_id: str

    @staticmethod
    def make_id(connection_id: str, name: str) -> str:
        # tmux rejects ':' in session names, so the split point is unambiguous
        return f"{connection_id}:{name}"


class TerminalOutput(BaseModel):
    """A chunk of bytes read from an attached interactive channel."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    timestamp: datetime = Field(default_factory=datetime.now)
    kind: Literal['stdout', 'stderr'] = 'stdout'

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


class CommandResult(BaseModel):
    """Captured result of a control command run to completion."""

    model_config = ConfigDict(frozen=True)

    stdout: str = ""
    stderr: str = ""
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0 and not self.stderr.strip()


class HostProfile(BaseModel):
    """A host entry from the config file. Never holds secrets."""

    alias: str
    host: str
    port: int = 22
    username: str
    auth_method: Literal['password', 'key']
    key_path: Optional[str] = None


class Settings(BaseModel):
    connect_timeout: float = 30.0
    term_type: str = "xterm-256color"
    term_cols: int = 80
    term_rows: int = 24
    hosts: List[HostProfile] = Field(default_factory=list)

    def get_host(self, alias: str) -> HostProfile:
        """Returns the profile for ``alias``.

        Raises:
            KeyError: If no host with that alias is configured
        """
        for host in self.hosts:
            if host.alias == alias:
                return host
        raise KeyError(alias)
