"""
Listener registries for connection-state changes and terminal output.

Dispatch is synchronous and runs on whichever task delivered the event. A
listener that raises is logged and skipped; it never stops delivery to the
listeners after it and never reaches the code that produced the event.
"""

import logging
from typing import Callable, Dict, Generic, List, TypeVar

from .models import TerminalOutput

logger = logging.getLogger(__name__)

T = TypeVar("T")

ConnectionListener = Callable[[bool], None]
OutputListener = Callable[[TerminalOutput], None]


class ListenerRegistry(Generic[T]):
    """An ordered set of callbacks keyed by the callback itself."""

    def __init__(self, name: str):
        self.name = name
        # dicts keep insertion order, which is the delivery order
        self._listeners: Dict[Callable[[T], None], None] = {}

    def add(self, listener: Callable[[T], None]) -> Callable[[T], None]:
        """Registers ``listener`` and returns it so it can be used as a removal handle.

        Adding a listener that is already registered keeps its original position.
        """
        self._listeners.setdefault(listener, None)
        return listener

    def remove(self, listener: Callable[[T], None]) -> bool:
        """Unregisters ``listener``. Returns False if it was not registered."""
        try:
            del self._listeners[listener]
        except KeyError:
            return False
        return True

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)

    def __contains__(self, listener: object) -> bool:
        return listener in self._listeners

    def snapshot(self) -> List[Callable[[T], None]]:
        return list(self._listeners)

    def dispatch(self, event: T) -> int:
        """Delivers ``event`` to every listener registered when dispatch started.

        Returns:
            The number of listeners that raised.
        """
        failures = 0
        # Iterate a copy so listeners may add or remove listeners while being called
        for listener in self.snapshot():
            try:
                listener(event)
            except Exception:
                failures += 1
                logger.exception(f"{self.name} listener {listener!r} raised; continuing")
        return failures


class EventDistributor:
    """Fan-out for the two event kinds a ConnectionManager produces."""

    def __init__(self):
        self.connection: ListenerRegistry[bool] = ListenerRegistry("connection")
        self.output: ListenerRegistry[TerminalOutput] = ListenerRegistry("output")

    def add_connection_listener(self, listener: ConnectionListener) -> ConnectionListener:
        return self.connection.add(listener)

    def remove_connection_listener(self, listener: ConnectionListener) -> bool:
        return self.connection.remove(listener)

    def add_output_listener(self, listener: OutputListener) -> OutputListener:
        return self.output.add(listener)

    def remove_output_listener(self, listener: OutputListener) -> bool:
        return self.output.remove(listener)

    def emit_connection(self, connected: bool) -> None:
        logger.debug(f"Connection event: connected={connected}")
        self.connection.dispatch(connected)

    def emit_output(self, output: TerminalOutput) -> None:
        self.output.dispatch(output)

    def clear(self) -> None:
        self.connection.clear()
        self.output.clear()
