"""Thread-pool bridge for blocking git work.

Clone, fetch, push and pull block for seconds or minutes, so MCP handlers and
the scheduler hand them to worker threads. ``run_sync_limited`` also caps how
many sync cycles run at once (``max_parallel_syncs``); cheap calls such as
store reads go through ``run_sync`` and never wait for a slot.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Sequence, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Sync slots, created by the server lifespan; None means unbounded
_slots: asyncio.Semaphore | None = None
_limit = 0
_busy = 0


def init_semaphore(max_parallel: int = 4) -> None:
    """Allow at most *max_parallel* sync cycles to run at once.

    Raises:
        ValueError: If max_parallel is less than 1
    """
    global _slots, _limit, _busy
    if max_parallel < 1:
        raise ValueError(f"max_parallel must be at least 1, got {max_parallel}")
    _slots = asyncio.Semaphore(max_parallel)
    _limit = max_parallel
    _busy = 0
    logger.info("Sync slots initialized: max_parallel=%d", max_parallel)


def reset_semaphore() -> None:
    global _slots, _limit, _busy
    _slots = None
    _limit = 0
    _busy = 0


def busy_slots() -> int:
    """Number of sync cycles currently holding a slot."""
    return _busy


async def run_sync(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run *func* in a worker thread without taking a sync slot.

    Example:
        check = await run_sync(orchestrator.validate_credentials, url, user, token, kind)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def run_sync_limited(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run *func* in a worker thread once a sync slot is free.

    Unbounded until init_semaphore() has been called.
    """
    global _busy
    if _slots is None:
        return await asyncio.to_thread(func, *args, **kwargs)

    if _slots.locked():
        logger.debug(
            "All %d sync slots busy; %s waits",
            _limit,
            getattr(func, "__name__", repr(func)),
        )
    async with _slots:
        _busy += 1
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        finally:
            _busy -= 1


async def gather_limited(coros: Sequence[Coroutine[Any, Any, T]]) -> list[T]:
    """Await *coros* concurrently and return their results in input order.

    Bounding happens inside each coroutine through run_sync_limited, so any
    number of repositories may be requested at once. The first exception
    propagates.
    """
    return list(await asyncio.gather(*coros))
