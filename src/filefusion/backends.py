"""Drive the synchronous split/check/merge processes from other execution models.

Every adapter runs the very same blocking call on a worker thread, so chunks
are still produced, scanned and consumed strictly in index order. Awaiting
callers that get cancelled stop waiting, but the worker thread finishes the
call and may leave partial output on disk.
"""
import asyncio
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Optional, TypeVar

import trio

T = TypeVar("T")

_shared_pool: Optional[ThreadPoolExecutor] = None
_shared_pool_lock = threading.Lock()


async def run_in_asyncio(call: Callable[[], T]) -> T:
    """Run a blocking call from an asyncio event loop"""
    return await asyncio.to_thread(call)


async def run_in_trio(call: Callable[[], T]) -> T:
    """Run a blocking call from a trio event loop"""
    return await trio.to_thread.run_sync(call)


def submit(call: Callable[[], T], executor: Optional[Executor] = None) -> "Future[T]":
    """Schedule a blocking call on a thread pool and return its future.

    Without an explicit executor the call goes to a lazily created pool
    shared by the whole process.
    """
    global _shared_pool
    if executor is None:
        with _shared_pool_lock:
            if _shared_pool is None:
                _shared_pool = ThreadPoolExecutor(thread_name_prefix="filefusion")
                logging.debug("Started shared filefusion thread pool")
            executor = _shared_pool
    return executor.submit(call)
