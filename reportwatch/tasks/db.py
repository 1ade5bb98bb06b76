"""
Event-loop handling for Celery tasks.

Each Celery invocation runs its coroutine under a fresh ``asyncio.run()``.
asyncpg pools are bound to the loop that created them, so the shared pool in
``reportwatch.database`` is forgotten before each run and closed at the end
of it.
"""

import asyncio
import logging

from reportwatch import database

logger = logging.getLogger(__name__)


async def _with_pool(handler, *args):
    try:
        return await handler(*args)
    finally:
        await database.close_pool()


def run_async(handler, *args):
    """Sync entry point: run ``handler(*args)`` in one asyncio.run() call."""
    database.reset_pool()  # Force fresh pool for this event loop
    return asyncio.run(_with_pool(handler, *args))
