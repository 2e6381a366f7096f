import logging
import secrets
import time
from typing import Dict, List, Optional

from .connection import ConnectionManager
from .errors import UnknownConnectionError

logger = logging.getLogger(__name__)


def generate_handle() -> str:
    """Generate an opaque connection handle, e.g. ``ssh_1717171717171_9f2c3a1b``."""
    return f"ssh_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


class ConnectionRegistry:
    """Maps connection handles to the ConnectionManagers they own.

    Managers are only ever created by create() and only ever released by
    destroy() or close_all(); lookups never create anything.
    """

    def __init__(self):
        self._managers: Dict[str, ConnectionManager] = {}

    def create(self, handle: Optional[str] = None, **manager_kwargs) -> str:
        """Create a manager and return its handle.

        The handle doubles as the manager's connection_id, which keeps
        session ids distinct across connections.

        Raises:
            ValueError: If ``handle`` is already registered
        """
        handle = handle or generate_handle()
        if handle in self._managers:
            raise ValueError(f"Connection handle already registered: {handle}")
        self._managers[handle] = ConnectionManager(connection_id=handle, **manager_kwargs)
        logger.debug(f"Registered connection {handle}")
        return handle

    def get(self, handle: str) -> ConnectionManager:
        try:
            return self._managers[handle]
        except KeyError:
            raise UnknownConnectionError(handle) from None

    async def destroy(self, handle: str) -> None:
        """Disconnect the manager behind ``handle`` and forget it."""
        manager = self._managers.pop(handle, None)
        if manager is None:
            raise UnknownConnectionError(handle)
        await manager.disconnect()
        manager.events.clear()
        logger.debug(f"Destroyed connection {handle}")

    async def close_all(self) -> None:
        """Disconnects and forgets every registered connection."""
        for handle in list(self._managers):
            await self.destroy(handle)

    def handles(self) -> List[str]:
        return list(self._managers)

    def __contains__(self, handle: object) -> bool:
        return handle in self._managers

    def __len__(self) -> int:
        return len(self._managers)
