"""
Repeating background poll built on asyncio tasks.

A poll tick is skipped while the previous one is still running, and
consecutive failures stretch the delay exponentially up to a ceiling.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from utils.logging import get_logger, log_poll_event

logger = get_logger("chat.poller")

PollCallback = Callable[[], Awaitable[Any]]

# 2**16 intervals is far past any sane ceiling
MAX_BACKOFF_EXPONENT = 16


class Poller:
    """
    Run ``callback`` every ``interval`` seconds in a background task.

    The callback reports failure by returning ``False`` or raising;
    anything else counts as success.
    """

    def __init__(
        self,
        name: str,
        callback: PollCallback,
        interval: float,
        max_backoff: Optional[float] = None,
        run_immediately: bool = True
    ):
        """
        Initialize the poller.

        Args:
            name: Name used for the task and in logs
            callback: Coroutine function called on every tick
            interval: Seconds between ticks while healthy
            max_backoff: Ceiling for the delay after failures; None disables backoff
            run_immediately: Whether the first tick runs right after start()
        """
        self.name = name
        self.callback = callback
        self.interval = interval
        self.max_backoff = max_backoff
        self.run_immediately = run_immediately

        self._task: Optional[asyncio.Task] = None
        self._generation = 0
        self._in_flight = False
        self._failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def failures(self) -> int:
        return self._failures

    def start(self) -> None:
        """Start polling; a no-op if already running."""
        if self.is_running:
            return

        self._generation += 1
        self._failures = 0
        self._task = asyncio.create_task(
            self._run(self._generation),
            name=f"poll_{self.name}"
        )
        logger.debug(f"Started poller {self.name}", interval=self.interval)

    def cancel(self) -> None:
        """
        Stop polling without waiting for the task to finish.

        When called from inside the poll task itself, the current tick is
        allowed to complete and the loop exits afterwards.
        """
        task, self._task = self._task, None
        self._generation += 1

        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            logger.debug(f"Stopped poller {self.name}")

    async def stop(self) -> None:
        """Stop polling and wait for the task to wind down."""
        task = self._task
        self.cancel()

        if task is not None and task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def tick(self) -> Optional[bool]:
        """
        Run the callback once.

        Returns:
            True/False for success/failure, None if skipped because the
            previous tick is still in flight
        """
        if self._in_flight:
            logger.debug(f"Skipping {self.name} poll, previous one still in flight")
            return None

        self._in_flight = True
        try:
            result = await self.callback()
            success = result is not False
        except Exception as e:
            logger.error(f"Poll {self.name} raised: {e}", exc_info=True)
            success = False
        finally:
            self._in_flight = False

        self._failures = 0 if success else self._failures + 1
        return success

    def next_delay(self) -> float:
        """Seconds to wait before the next tick given the failure streak."""
        if not self._failures or self.max_backoff is None:
            return self.interval
        exponent = min(self._failures, MAX_BACKOFF_EXPONENT)
        return min(self.interval * (2 ** exponent), max(self.max_backoff, self.interval))

    async def _run(self, generation: int) -> None:
        delay = 0.0 if self.run_immediately else self.interval

        while generation == self._generation:
            if delay:
                await asyncio.sleep(delay)
                if generation != self._generation:
                    break

            success = await self.tick()
            delay = self.next_delay()
            log_poll_event(self.name, bool(success), next_delay=delay, skipped=success is None)
