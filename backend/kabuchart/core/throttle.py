import asyncio
import time


class RateLimiter:
    """Space out calls so that at most one starts every min_delay seconds."""

    def __init__(self, min_delay: float) -> None:
        self.min_delay = min_delay
        self._lock: asyncio.Lock | None = None
        self._next_time = 0.0

    async def wait(self) -> None:
        if self.min_delay <= 0:
            return
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            now = time.monotonic()
            if now < self._next_time:
                await sleep(self._next_time - now)
            self._next_time = time.monotonic() + self.min_delay


async def sleep(seconds: float) -> None:
    if seconds > 0:
        await asyncio.sleep(seconds)


async def sleep_with_backoff(base: float, attempt: int) -> None:
    await sleep(base * (2 ** (attempt - 1)))
