"""
Schedulers for fanning AI work out over one event loop.

Both keep at most ``limit`` work items running at once. The worker pool keeps
every slot busy until the queue drains; fixed batches wait for the slowest
item of each batch before starting the next one.
"""
import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

from tqdm.asyncio import tqdm

T = TypeVar("T")
R = TypeVar("R")

STRATEGY_POOL = "pool"
STRATEGY_BATCH = "batch"
STRATEGIES = (STRATEGY_POOL, STRATEGY_BATCH)


async def run_worker_pool(
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        limit: int,
        desc: Optional[str] = None,
        unit: str = "item"
) -> List[R]:
    """
    Run ``worker`` over ``items`` with ``limit`` persistent workers pulling
    from a shared queue.

    Returns:
        The results, in the order of ``items``.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    results: List[Optional[R]] = [None] * len(items)
    queue: asyncio.Queue = asyncio.Queue()
    for index, item in enumerate(items):
        queue.put_nowait((index, item))

    with tqdm(total=len(items), desc=desc, unit=unit, disable=desc is None, leave=False) as progress:
        async def drain() -> None:
            while True:
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results[index] = await worker(item)
                progress.update(1)

        async with asyncio.TaskGroup() as group:
            for _ in range(min(limit, len(items))):
                group.create_task(drain())

    return results


async def run_in_batches(
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        limit: int,
        desc: Optional[str] = None,
        unit: str = "item"
) -> List[R]:
    """Run ``worker`` over consecutive batches of at most ``limit`` items."""
    if limit < 1:
        raise ValueError("limit must be at least 1")
    results: List[R] = []
    with tqdm(total=len(items), desc=desc, unit=unit, disable=desc is None, leave=False) as progress:
        for start in range(0, len(items), limit):
            batch = items[start:start + limit]
            results.extend(await asyncio.gather(*(worker(item) for item in batch)))
            progress.update(len(batch))
    return results


async def run_concurrently(
        items: Sequence[T],
        worker: Callable[[T], Awaitable[R]],
        limit: int,
        strategy: str = STRATEGY_POOL,
        desc: Optional[str] = None,
        unit: str = "item"
) -> List[R]:
    """Dispatch to the scheduler named by ``strategy``."""
    if strategy == STRATEGY_BATCH:
        return await run_in_batches(items, worker, limit, desc, unit)
    if strategy == STRATEGY_POOL:
        return await run_worker_pool(items, worker, limit, desc, unit)
    raise ValueError(f"Unknown concurrency strategy '{strategy}'")
