"""Realtime change notifications from Supabase postgres_changes channels."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

logger = logging.getLogger(__name__)


class ChangeSubscription:
    """Open channel delivering change payloads onto a queue until closed."""

    def __init__(self, client, channel, queue: asyncio.Queue) -> None:
        self._client = client
        self._channel = channel
        self.queue = queue
        self.closed = False

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._client.remove_channel(self._channel)


class SupabaseChangeFeed:
    def __init__(self, client, schema: str = "public") -> None:
        self._client = client
        self.schema = schema

    async def subscribe(self, table: str, column: str, value: str) -> ChangeSubscription:
        """Subscribe to inserts, updates and deletes on rows where ``column = value``."""
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        loop = asyncio.get_running_loop()

        def _enqueue(payload: dict[str, Any]) -> None:
            # Realtime may invoke callbacks outside the loop's own call stack.
            loop.call_soon_threadsafe(queue.put_nowait, payload)

        channel = self._client.channel(f"{table}-{column}-{value}")
        channel.on_postgres_changes(
            "*",
            callback=_enqueue,
            table=table,
            schema=self.schema,
            filter=f"{column}=eq.{value}",
        )
        await channel.subscribe()
        logger.info(f"Subscribed to {table} changes for {column}={value}")
        return ChangeSubscription(self._client, channel, queue)
