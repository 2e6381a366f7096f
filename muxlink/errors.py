import asyncio
import errno
import socket
from enum import Enum
from typing import Optional

import asyncssh

from .models import ConnectionConfig


class MuxlinkError(Exception):
    """Base class for every error raised by muxlink."""


class ConfigurationError(MuxlinkError, ValueError):
    """Invalid or missing connection settings, detected before any I/O."""


class InvalidSessionNameError(MuxlinkError, ValueError):
    """A session name that cannot be passed safely to tmux."""


class NotConnectedError(MuxlinkError):
    def __init__(self, message: str = "SSH connection not established"):
        super().__init__(message)


class NoActiveChannelError(MuxlinkError):
    def __init__(self, message: str = "No active shell session"):
        super().__init__(message)


class UnknownKeySequenceError(MuxlinkError, ValueError):
    def __init__(self, sequence: str):
        super().__init__(f"Unknown key sequence: {sequence}")
        self.sequence = sequence


class UnknownConnectionError(MuxlinkError, KeyError):
    def __init__(self, handle: str):
        super().__init__(f"Unknown connection handle: {handle}")
        self.handle = handle

    def __str__(self) -> str:
        return self.args[0]


class ProtocolInconsistencyError(MuxlinkError):
    """tmux accepted a command but the follow-up listing disagrees with it."""


class CommandError(MuxlinkError):
    """A control command exited non-zero or wrote to stderr."""

    def __init__(self, operation: str, exit_status: int, stderr: str = ""):
        self.operation = operation
        self.exit_status = exit_status
        self.stderr = stderr
        detail = stderr.strip() or f"exit status {exit_status}"
        super().__init__(f"failed to {operation}: {detail}")


class ErrorKind(Enum):
    AUTHENTICATION = "authentication"
    HOST_KEY = "host_key"
    PROTOCOL = "protocol"
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    HOST_NOT_FOUND = "host_not_found"
    NETWORK_UNREACHABLE = "network_unreachable"
    CONNECTION_LOST = "connection_lost"
    UNKNOWN = "unknown"


class TransportError(MuxlinkError, ConnectionError):
    """A failure of the SSH transport, tagged with its classified kind."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind


def classify_error(error: BaseException) -> ErrorKind:
    """Maps a low-level transport failure onto an ErrorKind.

    asyncssh, the socket layer and the resolver all report failures through
    a handful of generic exception types, so this looks at the type, the errno
    and the message text. Nothing outside this function should inspect error
    strings.
    """
    error_str = str(error).lower()
    # asyncio reports socket failures as "Connect call failed (...)" with only the errno set
    code = getattr(error, "errno", None)

    if isinstance(error, asyncssh.PermissionDenied) or "permission denied" in error_str \
            or "authentication failed" in error_str:
        return ErrorKind.AUTHENTICATION

    if isinstance(error, (asyncssh.HostKeyNotVerifiable, asyncssh.KeyExchangeFailed)) \
            or "host key" in error_str:
        return ErrorKind.HOST_KEY

    if isinstance(error, (asyncssh.ProtocolError, asyncssh.ProtocolNotSupported)):
        return ErrorKind.PROTOCOL

    if isinstance(error, asyncssh.ConnectionLost) or "connection lost" in error_str:
        return ErrorKind.CONNECTION_LOST

    # gaierror is an OSError, so it has to be checked before the errno-style matches
    if isinstance(error, socket.gaierror) or any(
        marker in error_str
        for marker in ("enotfound", "name or service not known", "nodename nor servname",
                       "temporary failure in name resolution", "getaddrinfo failed")
    ):
        return ErrorKind.HOST_NOT_FOUND

    if isinstance(error, ConnectionRefusedError) or code == errno.ECONNREFUSED \
            or "connection refused" in error_str \
            or "econnrefused" in error_str:
        return ErrorKind.CONNECTION_REFUSED

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)) or code == errno.ETIMEDOUT \
            or "timeout" in error_str \
            or "timed out" in error_str or "etimedout" in error_str:
        return ErrorKind.TIMEOUT

    if code in (errno.ENETUNREACH, errno.EHOSTUNREACH) \
            or "network is unreachable" in error_str or "no route to host" in error_str:
        return ErrorKind.NETWORK_UNREACHABLE

    return ErrorKind.UNKNOWN


def describe_error(kind: ErrorKind, config: ConnectionConfig, error: Optional[BaseException] = None) -> str:
    """Generate a user-friendly message for a classified connection failure."""
    target = f"{config.username}@{config.host}"

    if kind is ErrorKind.AUTHENTICATION:
        if config.auth_method == "key":
            return f"❌ Authentication failed for {target}: Check your private key"
        return f"❌ Authentication failed for {target}: Invalid password"
    if kind is ErrorKind.HOST_KEY:
        return f"❌ Host key verification failed for {config.host}: The server identity cannot be verified"
    if kind is ErrorKind.PROTOCOL:
        return f"❌ SSH protocol error with {config.host}: {error}"
    if kind is ErrorKind.CONNECTION_REFUSED:
        return f"❌ Connection refused by {config.host}:{config.port}: SSH server may be down"
    if kind is ErrorKind.TIMEOUT:
        return f"❌ Connection to {config.host}:{config.port} timed out: Host may be unreachable or network is slow"
    if kind is ErrorKind.HOST_NOT_FOUND:
        return f"❌ Host {config.host} not found: Check the hostname"
    if kind is ErrorKind.NETWORK_UNREACHABLE:
        return f"❌ Network unreachable for {config.host}: Check your network connection"
    if kind is ErrorKind.CONNECTION_LOST:
        return f"❌ Connection to {config.host} lost: {error}"

    return f"❌ Failed to connect to {config.host}: {error}"
