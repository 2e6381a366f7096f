"""muxlink - drive remote tmux sessions over SSH."""

__version__ = "0.1.0"

from .connection import ConnectionManager, validate_config
from .errors import (
    CommandError,
    ConfigurationError,
    ErrorKind,
    InvalidSessionNameError,
    MuxlinkError,
    NoActiveChannelError,
    NotConnectedError,
    ProtocolInconsistencyError,
    TransportError,
    UnknownConnectionError,
    UnknownKeySequenceError,
    classify_error,
)
from .events import EventDistributor
from .models import (
    CommandResult,
    ConnectionConfig,
    ConnectionState,
    HostProfile,
    Session,
    Settings,
    TerminalOutput,
)
from .registry import ConnectionRegistry
from .tmux_controller import KEY_SEQUENCES, TmuxController

__all__ = [
    "__version__",
    "CommandError",
    "CommandResult",
    "ConfigurationError",
    "ConnectionConfig",
    "ConnectionManager",
    "ConnectionRegistry",
    "ConnectionState",
    "ErrorKind",
    "EventDistributor",
    "HostProfile",
    "InvalidSessionNameError",
    "KEY_SEQUENCES",
    "MuxlinkError",
    "NoActiveChannelError",
    "NotConnectedError",
    "ProtocolInconsistencyError",
    "Session",
    "Settings",
    "TerminalOutput",
    "TmuxController",
    "TransportError",
    "UnknownConnectionError",
    "UnknownKeySequenceError",
    "classify_error",
    "validate_config",
]
