import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class GameClock:
    """
    Countdown for the active question.

    Calls on_tick(remaining) once per interval, from time_limit - 1 down to 0,
    then on_expire() once. Each start() bumps a generation counter; a run that
    has been superseded or cancelled never reaches on_expire.
    """

    def __init__(
        self,
        on_tick: Callable[[int], Awaitable[None]],
        on_expire: Callable[[], Awaitable[None]],
        tick_interval: float = 1.0,
    ):
        self.on_tick = on_tick
        self.on_expire = on_expire
        self.tick_interval = tick_interval
        self.remaining = 0
        self._generation = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, seconds: int):
        self.cancel()
        self._generation += 1
        self.remaining = seconds
        self._task = asyncio.create_task(self._run(self._generation))
        logger.debug(f"Clock started at {seconds}s (generation {self._generation})")

    def cancel(self):
        self._generation += 1
        task, self._task = self._task, None
        # The expiry path runs inside the clock task; it must not cancel itself
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _run(self, generation: int):
        while self.remaining > 0:
            await asyncio.sleep(self.tick_interval)
            if generation != self._generation:
                return
            self.remaining -= 1
            try:
                await self.on_tick(self.remaining)
            except Exception as e:
                logger.error(f"Timer tick handler failed: {e}")

        if generation != self._generation:
            return
        self._task = None
        await self.on_expire()
