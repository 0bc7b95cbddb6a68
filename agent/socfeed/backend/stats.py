import asyncio
from typing import Awaitable, Callable, Optional

from ..errors import SocFeedError
from ..utils.logging import get_logger
from ..wire import BackendStats

logger = get_logger("stats_poller")


class StatsPoller:
    """
    Pulls aggregate statistics on a fixed schedule while connected.

    A failed fetch is logged and skipped; the previous snapshot stays in
    place and the next poll still happens on schedule.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[BackendStats]],
        on_stats: Callable[[BackendStats], None],
        interval: float = 10.0,
    ):
        self._fetch = fetch
        self._on_stats = on_stats
        self.interval = interval
        self.failures = 0
        self._latest: Optional[BackendStats] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def latest(self) -> Optional[BackendStats]:
        return self._latest

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def poll_once(self) -> Optional[BackendStats]:
        try:
            stats = await self._fetch()
        except SocFeedError as e:
            self.failures += 1
            logger.warning(f"Failed to fetch stats, keeping last snapshot: {e}")
            return None

        self._latest = stats
        self._on_stats(stats)
        return stats

    async def _run(self):
        loop = asyncio.get_running_loop()
        while True:
            started = loop.time()
            await self.poll_once()
            elapsed = loop.time() - started
            await asyncio.sleep(max(0.0, self.interval - elapsed))
