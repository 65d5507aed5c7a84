import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, NamedTuple, Optional, Set

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]
Clock = Callable[[], datetime]

# Long waits are split so that wall-clock jumps (suspend, NTP) are noticed.
MAX_SLEEP_SECONDS = 3600.0


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class _Timer(NamedTuple):
    task: asyncio.Task
    fire_at: Optional[datetime]


class TimerRegistry:
    """
    In-process map from definition id to a single cancellable asyncio timer.

    Each timer is a task that sleeps until its fire time and then awaits its
    callback. The task stays registered while the callback runs, so
    unregistering an id also cancels an occurrence that is in flight. A callback
    may re-register its own id; that replaces the entry without cancelling the
    running task.
    """

    def __init__(self, clock: Clock = utc_now):
        self._clock = clock
        self._timers: Dict[str, _Timer] = {}

    def register(self, key: str, fire_at: Optional[datetime], callback: TimerCallback) -> asyncio.Task:
        """
        Install a timer for ``key``, replacing any existing one.

        A ``fire_at`` in the past, or ``None``, fires on the next loop iteration.
        """
        self.unregister(key)
        task = asyncio.create_task(self._run(key, fire_at, callback), name=f"recurring-timer:{key}")
        self._timers[key] = _Timer(task, fire_at)
        task.add_done_callback(lambda t, key=key: self._discard(key, t))
        return task

    def unregister(self, key: str) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        if timer.task is not asyncio.current_task() and not timer.task.done():
            timer.task.cancel()
        return True

    def list_registered(self) -> Set[str]:
        return set(self._timers)

    def is_registered(self, key: str) -> bool:
        return key in self._timers

    def fire_time(self, key: str) -> Optional[datetime]:
        timer = self._timers.get(key)
        return timer.fire_at if timer else None

    def __len__(self) -> int:
        return len(self._timers)

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.unregister(key)

    async def shutdown(self) -> None:
        """
        Cancel every timer and wait for the tasks to finish.
        """
        tasks = [timer.task for timer in self._timers.values() if timer.task is not asyncio.current_task()]
        self.cancel_all()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _seconds_until(self, fire_at: Optional[datetime]) -> float:
        if fire_at is None:
            return 0.0
        if fire_at.tzinfo is None:
            fire_at = fire_at.replace(tzinfo=timezone.utc)
        return (fire_at - self._clock()).total_seconds()

    async def _run(self, key: str, fire_at: Optional[datetime], callback: TimerCallback) -> None:
        delay = self._seconds_until(fire_at)
        while delay > 0:
            await asyncio.sleep(min(delay, MAX_SLEEP_SECONDS))
            delay = self._seconds_until(fire_at)

        try:
            await callback()
        except Exception:
            logger.exception("Timer callback for %s failed", key)

    def _discard(self, key: str, task: asyncio.Task) -> None:
        timer = self._timers.get(key)
        if timer is not None and timer.task is task:
            del self._timers[key]
