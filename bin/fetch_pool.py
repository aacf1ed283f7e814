#!/usr/bin/env python3
"""
Bounded-concurrency fetch rounds.

A round takes a list of FetchTasks, keeps at most `concurrent_downloads`
requests in flight, and returns exactly one FetchOutcome per task in
submission order. Workers pull (index, task) pairs from a queue, so a slow
or failing request only ever holds one slot.

Everything runs on one event loop; the outcome list and counters are only
touched by worker coroutines between awaits, so no locking is needed.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

import aiohttp
from tqdm import tqdm

from replay_config import ReplayConfig
from single_download import FetchOutcome, FetchTask, fetch_one


# observer(done, total, failures)
ProgressObserver = Callable[[int, int, int], None]
FetchFn = Callable[[aiohttp.ClientSession, FetchTask, int, ReplayConfig], Awaitable[FetchOutcome]]


class ProgressBar:
    """tqdm-backed progress observer for one fetch round."""

    def __init__(self, desc: str, total: int, unit: str = "file"):
        self._pbar = tqdm(total=total, desc=desc, unit=unit)
        self._done = 0

    def __call__(self, done: int, total: int, failures: int) -> None:
        self._pbar.update(done - self._done)
        self._done = done
        if failures:
            self._pbar.set_postfix(failed=failures, refresh=False)

    def close(self) -> None:
        self._pbar.close()


async def run_fetch_round(
    session: aiohttp.ClientSession,
    tasks: Sequence[FetchTask],
    cfg: ReplayConfig,
    observer: Optional[ProgressObserver] = None,
    fetch: FetchFn = fetch_one,
) -> List[FetchOutcome]:
    """
    Fetch every task with bounded concurrency.

    Args:
        session: aiohttp ClientSession shared across rounds
        tasks: Tasks to fetch
        cfg: Configuration (concurrent_downloads, timeout_sec, max_redirects)
        observer: Optional callback invoked after each completion with
                  (done, total, failures); used only for progress reporting
        fetch: Coroutine performing one fetch (defaults to fetch_one)

    Returns:
        One FetchOutcome per task; outcomes[i] belongs to tasks[i]
    """
    total = len(tasks)
    outcomes: List[Optional[FetchOutcome]] = [None] * total
    if total == 0:
        return []

    q: asyncio.Queue[Tuple[int, FetchTask]] = asyncio.Queue()
    for index, task in enumerate(tasks):
        q.put_nowait((index, task))

    done = 0
    failures = 0

    async def worker():
        nonlocal done, failures
        while True:
            try:
                index, task = q.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                out = await fetch(session, task, index, cfg)
            except Exception as e:
                out = FetchOutcome(index, task, False, error=f"Error: {str(e)}")

            outcomes[index] = out
            done += 1
            if not out.success:
                failures += 1
            q.task_done()

            if observer is not None:
                try:
                    observer(done, total, failures)
                except Exception as e:
                    print(f"[Progress] Observer failed at {done}/{total}: {e}")

    workers = [
        asyncio.create_task(worker())
        for _ in range(max(1, min(cfg.concurrent_downloads, total)))
    ]

    await asyncio.gather(*workers)

    missing = [i for i, o in enumerate(outcomes) if o is None]
    if missing:
        raise RuntimeError(f"Fetch round finished without outcomes for tasks {missing[:10]}")

    return outcomes  # type: ignore[return-value]


async def fetch_round_with_progress(
    session: aiohttp.ClientSession,
    tasks: Sequence[FetchTask],
    cfg: ReplayConfig,
    desc: str,
) -> List[FetchOutcome]:
    """run_fetch_round with a tqdm bar when cfg.show_progress is set."""
    if not cfg.show_progress:
        return await run_fetch_round(session, tasks, cfg)

    pbar = ProgressBar(desc, total=len(tasks))
    try:
        return await run_fetch_round(session, tasks, cfg, observer=pbar)
    finally:
        pbar.close()
