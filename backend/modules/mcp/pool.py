"""
Reference-counted pool of ad hoc server connections.

Used when a tool resolves to a server that has no managed connection. A
pooled connection is closed once its reference count has stayed at zero for
the eviction delay; acquiring it again before then cancels the eviction.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List, Optional

from models.mcp_server import McpServerModel
from modules.mcp.connection import ServerConnection
from modules.mcp.errors import TransportError
from utils.logging import get_logger

logger = get_logger("mcp.pool")

ConnectionFactory = Callable[[McpServerModel], ServerConnection]


class _PoolEntry:
    def __init__(self, connection: ServerConnection):
        self.connection = connection
        self.refs = 0
        self.lock = asyncio.Lock()
        self.eviction: Optional[asyncio.Task] = None

    def cancel_eviction(self) -> None:
        if self.eviction is not None and not self.eviction.done():
            self.eviction.cancel()
        self.eviction = None


class ConnectionPool:
    def __init__(self, connection_factory: ConnectionFactory, eviction_delay: float = 1.0):
        self._factory = connection_factory
        self.eviction_delay = eviction_delay
        self._entries: Dict[int, _PoolEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, server_id: int) -> bool:
        return server_id in self._entries

    def ref_count(self, server_id: int) -> int:
        entry = self._entries.get(server_id)
        return entry.refs if entry else 0

    @asynccontextmanager
    async def acquire(self, config: McpServerModel) -> AsyncIterator[ServerConnection]:
        """
        Borrow a connected connection for ``config``, connecting on first use.

        Raises:
            TransportError: If the server cannot be connected
        """
        entry = self._entries.get(config.id)
        if entry is None:
            entry = _PoolEntry(self._factory(config))
            self._entries[config.id] = entry

        entry.refs += 1
        entry.cancel_eviction()
        try:
            async with entry.lock:
                if not entry.connection.is_connected:
                    if not await entry.connection.connect():
                        raise TransportError(
                            f"Could not connect to server {config.name}: {entry.connection.last_error}"
                        )
            yield entry.connection
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                entry.eviction = asyncio.create_task(self._evict_later(config.id, entry))

    async def _evict_later(self, server_id: int, entry: _PoolEntry) -> None:
        await asyncio.sleep(self.eviction_delay)
        if entry.refs > 0 or self._entries.get(server_id) is not entry:
            return
        del self._entries[server_id]
        logger.debug(f"Evicting idle pooled connection for server {server_id}")
        await entry.connection.disconnect(update_status=False)

    async def close_all(self) -> None:
        entries: List[_PoolEntry] = list(self._entries.values())
        self._entries.clear()
        for entry in entries:
            entry.cancel_eviction()
            await entry.connection.disconnect(update_status=False)
