import asyncio
from typing import Any, Awaitable, Callable, Optional
from shopfront.background_workers.constants import CANCEL_WAIT_TIMEOUT, STOP_WAIT_TIMEOUT, logger

Job = Callable[[Any], Awaitable[Any]]


class PeriodicWorker:
    """
    Runs ``job(session)`` every ``interval`` seconds on the current event loop.

    Each run gets its own session from ``session_factory``. A failing run is logged
    and the loop carries on with the next tick.
    """

    def __init__(self, name: str, job: Job, session_factory: Callable[[], Any], interval: float):
        self.name = name
        self.job = job
        self.session_factory = session_factory
        self.interval = interval
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.runs = 0

    def start(self):
        if self._task is None:
            self._stop.clear()
            self._task = asyncio.create_task(self._loop(), name=self.name)
            logger.info("worker.started", extra={"worker": self.name, "interval": self.interval})

    async def run_once(self):
        async with self.session_factory() as session:
            result = await self.job(session)
        self.runs += 1
        return result

    async def _loop(self):
        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("worker.run.failed", extra={"worker": self.name})

            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("worker.exiting", extra={"worker": self.name, "runs": self.runs})

    async def shutdown(self, *, wait_timeout: float = STOP_WAIT_TIMEOUT):
        """Ask the loop to stop, wait for the current run, cancel if it overstays."""
        if self._task is None:
            return
        self._stop.set()
        try:
            await asyncio.wait_for(self._task, timeout=wait_timeout)
        except asyncio.TimeoutError:
            logger.warning("worker.stop.timeout", extra={"worker": self.name})
            self._task.cancel()
            try:
                await asyncio.wait_for(self._task, timeout=CANCEL_WAIT_TIMEOUT)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                logger.warning("worker.cancelled", extra={"worker": self.name})
        finally:
            self._task = None
