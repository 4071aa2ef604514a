import asyncio
from typing import Callable, Optional

from xterminal_broker.core.logger import get_logger
from xterminal_broker.services.session_store import SessionStore

logger = get_logger(__name__)


class SessionSweeper:
    """Periodically evicts idle sessions from a SessionStore."""

    def __init__(
        self,
        store: SessionStore,
        interval: float = 5.0,
        ttl: Optional[float] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.store = store
        self.interval = interval
        self.ttl = store.ttl if ttl is None else ttl
        self._clock = clock or store.clock
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> None:
        self.store.sweep(self._clock(), self.ttl)

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.debug(f"Session sweeper started (every {self.interval}s, ttl {self.ttl}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.run_once()
