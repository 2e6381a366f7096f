"""
SSH transport: one authenticated connection offering one-shot command
execution and long-lived interactive byte channels.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Tuple, Union

import asyncssh

from .errors import ConfigurationError, NoActiveChannelError
from .models import CommandResult, ConnectionConfig

logger = logging.getLogger(__name__)

DEFAULT_TERM_TYPE = "xterm-256color"
DEFAULT_TERM_SIZE = (80, 24)

OutputCallback = Callable[[bytes, str], None]
CloseCallback = Callable[[Optional[Exception]], None]


class InteractiveChannel(ABC):
    """
    A duplex byte stream to a remote shell.

    Bytes are passed through untouched in both directions; no line buffering
    and no escape-sequence handling happens here.
    """

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        pass

    @abstractmethod
    def write(self, data: Union[bytes, str]) -> None:
        """Send raw input to the remote shell."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Closing twice is a no-op."""
        pass


class Transport(ABC):
    """
    Abstract transport interface.

    ConnectionManager talks to this and never to asyncssh directly.
    """

    @property
    @abstractmethod
    def is_closed(self) -> bool:
        pass

    @abstractmethod
    async def connect(self) -> None:
        """Open and authenticate the connection.

        Low-level failures (asyncssh.Error, OSError, timeouts) propagate
        unchanged so the caller can classify them.
        """
        pass

    @abstractmethod
    async def run(self, command: str) -> CommandResult:
        """Run ``command`` to completion.

        A non-zero exit status is reported in the result, not raised.
        """
        pass

    @abstractmethod
    async def open_interactive(
        self,
        initial_command: str,
        on_output: OutputCallback,
        on_closed: Optional[Callable[["InteractiveChannel"], None]] = None,
        term_type: str = DEFAULT_TERM_TYPE,
        term_size: Tuple[int, int] = DEFAULT_TERM_SIZE,
    ) -> InteractiveChannel:
        """Open a shell and send ``initial_command`` as its first line."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class _TransportClient(asyncssh.SSHClient):
    """Forwards asyncssh's connection_lost callback to the owning transport."""

    def __init__(self, on_lost: CloseCallback):
        self._on_lost = on_lost

    def connection_lost(self, exc: Optional[Exception]) -> None:
        self._on_lost(exc)


class SSHInteractiveChannel(InteractiveChannel):
    """An asyncssh shell process with stdout/stderr pumped into a callback."""

    READ_SIZE = 4096

    def __init__(
        self,
        process: asyncssh.SSHClientProcess,
        on_output: OutputCallback,
        on_closed: Optional[Callable[[InteractiveChannel], None]] = None,
    ):
        self._process = process
        self._on_output = on_output
        self._on_closed = on_closed
        self._closed = False
        self._pumps: List[asyncio.Task] = []
        self._watcher: Optional[asyncio.Task] = None

    @property
    def is_closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Start forwarding remote output."""
        self._pumps = [
            asyncio.create_task(self._pump(self._process.stdout, "stdout")),
            asyncio.create_task(self._pump(self._process.stderr, "stderr")),
        ]
        self._watcher = asyncio.create_task(self._watch())

    async def _pump(self, stream, kind: str) -> None:
        try:
            while True:
                data = await stream.read(self.READ_SIZE)
                if not data:
                    break
                self._on_output(data, kind)
        except (asyncssh.Error, OSError) as e:
            logger.debug(f"Interactive {kind} stream ended: {e}")

    async def _watch(self) -> None:
        # Both streams hit EOF when the remote side closes the channel
        await asyncio.gather(*self._pumps, return_exceptions=True)
        self._mark_closed()

    def _mark_closed(self) -> None:
        if self._closed:
            return
        self._closed = True
        logger.debug("Interactive channel closed")
        if self._on_closed:
            self._on_closed(self)

    def write(self, data: Union[bytes, str]) -> None:
        if self._closed:
            raise NoActiveChannelError("Interactive channel is closed")
        if isinstance(data, str):
            data = data.encode("utf-8")
        self._process.stdin.write(data)

    async def wait_closed(self) -> None:
        if self._watcher:
            await self._watcher

    async def close(self) -> None:
        if self._closed:
            return
        self._process.close()
        try:
            await self._process.wait_closed()
        finally:
            for task in self._pumps:
                task.cancel()
            self._mark_closed()


class SSHTransport(Transport):
    """Transport backed by an asyncssh client connection."""

    def __init__(self, config: ConnectionConfig, on_close: Optional[CloseCallback] = None):
        self.config = config
        self._on_close = on_close
        self._conn: Optional[asyncssh.SSHClientConnection] = None
        self._closed = True
        # Control commands share one connection; run them one at a time
        self._lock = asyncio.Lock()

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _client_keys(self) -> Optional[list]:
        if self.config.auth_method != "key":
            return None
        try:
            return [asyncssh.import_private_key(self.config.private_key, self.config.passphrase)]
        except (asyncssh.KeyImportError, ValueError) as e:
            raise ConfigurationError(f"Invalid private key for {self.config.host}: {e}") from e

    def _connection_lost(self, exc: Optional[Exception]) -> None:
        was_open = not self._closed
        self._closed = True
        self._conn = None
        if was_open:
            if exc:
                logger.warning(f"Connection to {self.config.host} lost: {exc}")
            else:
                logger.info(f"Connection to {self.config.host} closed")
            if self._on_close:
                self._on_close(exc)

    async def connect(self) -> None:
        client_keys = self._client_keys()
        options = {}
        if not self.config.verify_host_key:
            options["known_hosts"] = None

        logger.info(f"Connecting to {self.config.username}@{self.config.host}:{self.config.port}")
        self._conn = await asyncssh.connect(
            self.config.host,
            port=self.config.port,
            username=self.config.username,
            password=self.config.password if self.config.auth_method == "password" else None,
            client_keys=client_keys,
            agent_path=None,
            connect_timeout=self.config.connect_timeout,
            client_factory=lambda: _TransportClient(self._connection_lost),
            **options,
        )
        self._closed = False

    def _require_open(self) -> asyncssh.SSHClientConnection:
        if self._closed or self._conn is None:
            raise asyncssh.ConnectionLost("Transport is not connected")
        return self._conn

    async def run(self, command: str) -> CommandResult:
        conn = self._require_open()
        async with self._lock:
            logger.debug(f"Running: {command}")
            result = await conn.run(command, check=False)

        return CommandResult(
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            exit_status=result.exit_status if result.exit_status is not None else -1,
        )

    async def open_interactive(
        self,
        initial_command: str,
        on_output: OutputCallback,
        on_closed: Optional[Callable[[InteractiveChannel], None]] = None,
        term_type: str = DEFAULT_TERM_TYPE,
        term_size: Tuple[int, int] = DEFAULT_TERM_SIZE,
    ) -> InteractiveChannel:
        conn = self._require_open()
        # encoding=None keeps the stream as raw bytes in both directions
        process = await conn.create_process(term_type=term_type, term_size=term_size, encoding=None)
        channel = SSHInteractiveChannel(process, on_output, on_closed)
        channel.start()
        channel.write(initial_command + "\n")
        return channel

    async def close(self) -> None:
        conn, self._conn = self._conn, None
        self._closed = True
        if conn is not None:
            conn.close()
            await conn.wait_closed()
