"""Supabase client for the dispatch backend."""

from __future__ import annotations

import asyncio
import logging

from supabase import AsyncClient, acreate_client

from ..config import settings

_client: AsyncClient | None = None
_client_lock = asyncio.Lock()


async def get_supabase_client() -> AsyncClient | None:
    """Get the cached async Supabase client.

    Returns:
        AsyncClient instance if configured, None otherwise.
        The async client is required for realtime channels. Creating it does
        not test the connection; queries may still fail with network errors.
    """
    global _client
    if _client is not None:
        return _client
    if not settings.supabase_url or not settings.supabase_key:
        logging.warning("Supabase credentials not configured (missing URL or key)")
        return None

    async with _client_lock:
        if _client is None:
            try:
                _client = await acreate_client(settings.supabase_url, settings.supabase_key)
            except Exception as e:
                logging.error(f"Failed to create Supabase client: {e}")
                return None
    return _client


def reset_supabase_client() -> None:
    """Drop the cached client so the next call rebuilds it from settings."""
    global _client
    _client = None


# Example usage patterns:
#
# client = await get_supabase_client()
#
# # Select own deliveries
# result = await client.table('deliveries') \
#     .select('*') \
#     .eq('driver_id', driver_id) \
#     .execute()
#
# # Compare-and-set a status transition
# result = await client.table('deliveries') \
#     .update({'status': 'picked_up'}) \
#     .eq('id', delivery_id) \
#     .eq('status', 'assigned') \
#     .execute()
#
# # Realtime change feed
# channel = client.channel(f'deliveries-{driver_id}')
# channel.on_postgres_changes('*', schema='public', table='deliveries',
#                             filter=f'driver_id=eq.{driver_id}', callback=handler)
# await channel.subscribe()
