"""
Tests for async_utils module.

Covers run_sync, run_sync_limited, gather_limited, init_semaphore,
reset_semaphore and busy_slots.
"""

import asyncio
import threading

import pytest

import git_sync_manager.core.async_utils as mod
from git_sync_manager.core.async_utils import (
    busy_slots,
    gather_limited,
    init_semaphore,
    reset_semaphore,
    run_sync,
    run_sync_limited,
)


def _sync_add(a: int, b: int) -> int:
    return a + b


async def test_run_sync_runs_in_worker_thread():
    """run_sync executes off the event loop thread."""
    main_thread = threading.get_ident()
    worker = await run_sync(threading.get_ident)
    assert worker != main_thread


async def test_run_sync_passes_kwargs():
    def _kw(*, name: str) -> str:
        return f"hello {name}"

    assert await run_sync(_kw, name="world") == "hello world"


async def test_run_sync_limited_without_semaphore():
    reset_semaphore()
    assert await run_sync_limited(_sync_add, 2, 5) == 7


async def test_init_and_reset_semaphore():
    try:
        init_semaphore(3)
        assert mod._slots is not None
        assert mod._limit == 3
    finally:
        reset_semaphore()
    assert mod._slots is None


async def test_semaphore_bounds_concurrency():
    """No more than max_parallel blocking calls run at once."""
    active = 0
    peak = 0
    lock = threading.Lock()
    release = threading.Event()

    def _work():
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        release.wait(timeout=5)
        with lock:
            active -= 1
        return True

    try:
        init_semaphore(2)
        task = asyncio.ensure_future(
            gather_limited([run_sync_limited(_work) for _ in range(5)])
        )
        await asyncio.sleep(0.2)
        busy_while_blocked = busy_slots()
        release.set()
        results = await task
        busy_after = busy_slots()
    finally:
        reset_semaphore()

    assert results == [True] * 5
    assert peak <= 2
    assert busy_while_blocked == 2
    assert busy_after == 0


async def test_init_semaphore_rejects_zero():
    reset_semaphore()
    with pytest.raises(ValueError, match="at least 1"):
        init_semaphore(0)
    assert mod._slots is None


async def test_gather_limited_preserves_order():
    async def _value(v):
        await asyncio.sleep(0.01 * (3 - v))
        return v

    assert await gather_limited([_value(i) for i in range(3)]) == [0, 1, 2]
