"""
Offload blocking storage calls from the asyncio event loop.

SQLite access through SQLModel is synchronous; every coroutine that touches
storage goes through run_blocking() so the loop keeps serving reachability
events and API requests while a commit is in progress.
"""
import asyncio


async def run_blocking(fn, *args, **kwargs):
    """Run a sync callable in the default thread pool and await its result."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))
