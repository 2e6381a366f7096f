import asyncio
import logging
import uuid
from typing import Any, Callable, List, Mapping, Optional, Tuple, Union

import asyncssh
from pydantic import ValidationError

from .errors import (
    ConfigurationError,
    NoActiveChannelError,
    NotConnectedError,
    TransportError,
    classify_error,
    describe_error,
)
from .events import ConnectionListener, EventDistributor, OutputListener
from .models import ConnectionConfig, ConnectionState, Session, TerminalOutput
from .tmux_controller import TmuxController, resolve_key_sequence, validate_session_name
from .transport import (
    DEFAULT_TERM_SIZE,
    DEFAULT_TERM_TYPE,
    InteractiveChannel,
    SSHTransport,
    Transport,
)

logger = logging.getLogger(__name__)

TransportFactory = Callable[..., Transport]


def validate_config(config: Union[ConnectionConfig, Mapping[str, Any]]) -> ConnectionConfig:
    """Returns ``config`` as a validated ConnectionConfig.

    Raises:
        ConfigurationError: If a required field is missing or invalid
    """
    if isinstance(config, ConnectionConfig):
        return config
    try:
        return ConnectionConfig.model_validate(config)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid connection configuration: {e}") from e


class ConnectionManager:
    """
    Owns one SSH transport and drives tmux through it.

    State moves DISCONNECTED -> CONNECTING -> CONNECTED, and to FAILED or
    DISCONNECTED when a connect attempt fails, the transport drops, or
    disconnect() is called. Every session operation requires CONNECTED and
    never reconnects on its own.
    """

    def __init__(
        self,
        connection_id: Optional[str] = None,
        transport_factory: Optional[TransportFactory] = None,
        controller: Optional[TmuxController] = None,
        term_type: str = DEFAULT_TERM_TYPE,
        term_size: Tuple[int, int] = DEFAULT_TERM_SIZE,
    ):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.events = EventDistributor()
        self.controller = controller or TmuxController()
        self.term_type = term_type
        self.term_size = term_size
        self._transport_factory = transport_factory or SSHTransport
        self._transport: Optional[Transport] = None
        self._pending: Optional[Transport] = None
        self._attempt = 0
        self._channel: Optional[InteractiveChannel] = None
        self._config: Optional[ConnectionConfig] = None
        self._state = ConnectionState.DISCONNECTED
        self._failure_reason: Optional[str] = None

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def failure_reason(self) -> Optional[str]:
        return self._failure_reason

    @property
    def config(self) -> Optional[ConnectionConfig]:
        return self._config

    @property
    def is_attached(self) -> bool:
        return self._channel is not None and not self._channel.is_closed

    def is_connection_active(self) -> bool:
        """Reflects internal state only; no network probe is made."""
        return self._state is ConnectionState.CONNECTED and self._transport is not None

    def _set_state(self, state: ConnectionState, reason: Optional[str] = None) -> None:
        if state is not self._state:
            logger.debug(f"[{self.connection_id}] {self._state.value} -> {state.value}")
        self._state = state
        self._failure_reason = reason if state is ConnectionState.FAILED else None

    # Listener registration

    def add_connection_listener(self, listener: ConnectionListener) -> ConnectionListener:
        return self.events.add_connection_listener(listener)

    def remove_connection_listener(self, listener: ConnectionListener) -> bool:
        return self.events.remove_connection_listener(listener)

    def add_output_listener(self, listener: OutputListener) -> OutputListener:
        return self.events.add_output_listener(listener)

    def remove_output_listener(self, listener: OutputListener) -> bool:
        return self.events.remove_output_listener(listener)

    # Lifecycle

    async def connect(self, config: Union[ConnectionConfig, Mapping[str, Any]]) -> None:
        """Validate ``config``, replace any existing transport and authenticate.

        A disconnect() issued while the handshake is in flight wins: the new
        transport is closed and NotConnectedError is raised.

        Raises:
            ConfigurationError: Before any I/O if the config is invalid
            TransportError: If the connection or authentication fails
            NotConnectedError: If disconnect() was called during the handshake
        """
        config = validate_config(config)

        # The old transport is fully closed before the new one is created
        if self._transport is not None or self._state is not ConnectionState.DISCONNECTED:
            await self.disconnect()

        self._attempt += 1
        attempt = self._attempt
        self._config = config
        self._set_state(ConnectionState.CONNECTING)

        def on_close(exc: Optional[Exception]) -> None:
            self._transport_closed(transport, exc)

        transport = self._transport_factory(config, on_close=on_close)
        self._pending = transport
        try:
            await transport.connect()
        except ConfigurationError as e:
            if attempt == self._attempt:
                self._connect_failed(str(e))
            raise
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            kind = classify_error(e)
            message = describe_error(kind, config, e)
            if attempt == self._attempt:
                self._connect_failed(message)
            raise TransportError(message, kind) from e
        except BaseException:
            # Cancellation or an unexpected error must not leave the state at CONNECTING
            if attempt == self._attempt:
                self._pending = None
                self._set_state(ConnectionState.DISCONNECTED)
                self.events.emit_connection(False)
            raise

        if attempt != self._attempt:
            await self._close_transport(transport)
            raise NotConnectedError(f"Connection to {config.host} was cancelled by disconnect()")

        self._pending = None
        self._transport = transport
        self._set_state(ConnectionState.CONNECTED)
        logger.info(f"[{self.connection_id}] Connected to {config.host}:{config.port}")
        self.events.emit_connection(True)

    def _connect_failed(self, reason: str) -> None:
        logger.warning(f"[{self.connection_id}] {reason}")
        self._pending = None
        self._transport = None
        self._set_state(ConnectionState.FAILED, reason)
        self.events.emit_connection(False)

    def _transport_closed(self, transport: Transport, exc: Optional[Exception]) -> None:
        # Closes we initiated have already detached the transport
        if transport is not self._transport:
            return
        self._transport = None
        self._channel = None
        if exc is not None:
            kind = classify_error(exc)
            self._set_state(ConnectionState.FAILED, describe_error(kind, self._config, exc))
        else:
            self._set_state(ConnectionState.DISCONNECTED)
        self.events.emit_connection(False)

    async def disconnect(self) -> None:
        """Close the channel and transport, abandoning any handshake in flight.

        Never raises; safe to call repeatedly.
        """
        self._attempt += 1
        transport, self._transport = self._transport, None
        pending, self._pending = self._pending, None
        channel, self._channel = self._channel, None
        self._set_state(ConnectionState.DISCONNECTED)

        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.warning(f"[{self.connection_id}] Error closing interactive channel: {e}")

        if transport is None and pending is None:
            return
        for closing in (pending, transport):
            if closing is not None:
                await self._close_transport(closing)
        logger.info(f"[{self.connection_id}] Disconnected")
        self.events.emit_connection(False)

    async def _close_transport(self, transport: Transport) -> None:
        try:
            await transport.close()
        except Exception as e:
            logger.warning(f"[{self.connection_id}] Error during SSH disconnect: {e}")

    def _require_connected(self) -> Transport:
        if not self.is_connection_active():
            raise NotConnectedError()
        return self._transport

    def _require_channel(self) -> InteractiveChannel:
        if not self.is_attached:
            raise NoActiveChannelError()
        return self._channel

    # Session control

    async def check_tmux_available(self) -> tuple[bool, str]:
        transport = self._require_connected()
        return await self.controller.check_tmux_available(transport)

    async def list_sessions(self) -> List[Session]:
        transport = self._require_connected()
        return await self.controller.list_sessions(transport, self.connection_id)

    async def get_session(self, name: str) -> Optional[Session]:
        transport = self._require_connected()
        return await self.controller.get_session(transport, self.connection_id, name)

    async def session_exists(self, name: str) -> bool:
        transport = self._require_connected()
        return await self.controller.session_exists(transport, self.connection_id, name)

    async def create_session(self, name: Optional[str] = None) -> Session:
        transport = self._require_connected()
        return await self.controller.create_session(transport, self.connection_id, name)

    async def kill_session(self, name: str) -> None:
        transport = self._require_connected()
        await self.controller.kill_session(transport, name)

    async def send_command(self, name: str, text: str) -> None:
        """Type ``text`` plus Enter into session ``name`` via tmux send-keys."""
        transport = self._require_connected()
        await self.controller.send_keys(transport, name, text)

    # Interactive channel

    async def attach_to_session(self, name: str) -> InteractiveChannel:
        """Open an interactive channel attached to session ``name``.

        Output from the channel is delivered to output listeners as
        TerminalOutput events. Any previously attached channel is closed first.
        """
        transport = self._require_connected()
        name = validate_session_name(name)
        await self.detach()

        try:
            channel = await transport.open_interactive(
                self.controller.attach_command(name),
                on_output=self._channel_output,
                on_closed=self._channel_closed,
                term_type=self.term_type,
                term_size=self.term_size,
            )
        except (asyncssh.Error, OSError) as e:
            raise TransportError(f"failed to attach to session: {e}", classify_error(e)) from e

        self._channel = channel
        logger.info(f"[{self.connection_id}] Attached to tmux session {name!r}")
        return channel

    async def detach(self) -> None:
        """Close the attached interactive channel, if any."""
        channel, self._channel = self._channel, None
        if channel is not None:
            try:
                await channel.close()
            except Exception as e:
                logger.warning(f"[{self.connection_id}] Error closing interactive channel: {e}")

    def _channel_output(self, data: bytes, kind: str) -> None:
        self.events.emit_output(TerminalOutput(data=data, kind=kind))

    def _channel_closed(self, channel: InteractiveChannel) -> None:
        if channel is self._channel:
            self._channel = None

    def _write(self, data: Union[bytes, str], operation: str) -> None:
        channel = self._require_channel()
        try:
            channel.write(data)
        except (asyncssh.Error, OSError) as e:
            raise TransportError(f"failed to {operation}: {e}", classify_error(e)) from e

    async def send_input(self, data: Union[bytes, str]) -> None:
        """Write raw keystrokes to the attached channel, unmodified."""
        self._require_connected()
        self._write(data, "send input")

    async def send_key_sequence(self, sequence: str) -> None:
        """Write a named control-key sequence (ctrl+c, ctrl+d, ctrl+z, tab, enter).

        Raises:
            UnknownKeySequenceError: For an unrecognized name; nothing is written
        """
        self._require_connected()
        code = resolve_key_sequence(sequence)
        self._write(code, "send key sequence")
