"""Graceful shutdown and fatal-fault handling for the sync service."""

import asyncio
import logging
import os
from enum import Enum
from typing import Callable, Optional

from services.sync_service.debounce import DebounceCoalescer
from services.sync_service.work_queue import SyncWorkQueue

logger = logging.getLogger(__name__)


class CoordinatorState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class ShutdownCoordinator:
    """
    Drains the work queue and persists state before the process exits.

    ``shutdown()`` flushes armed debounce timers, waits for the queue to go
    idle for at most ``timeout`` seconds and saves the state. Whatever is
    still queued at the deadline is discarded. ``fail()`` is the path for
    unrecoverable faults: save state and terminate with status 1.
    """

    def __init__(
        self,
        queue: SyncWorkQueue,
        persist: Callable[[], None],
        coalescer: Optional[DebounceCoalescer] = None,
        timeout: float = 10.0,
        exit_process: Callable[[int], None] = os._exit
    ):
        """
        Initialize the coordinator.

        Args:
            queue: Work queue to drain
            persist: Saves the sync state
            coalescer: Debounce coalescer whose armed timers are flushed on stop
            timeout: Hard limit in seconds for draining the queue
            exit_process: Terminates the process; used by fail()
        """
        self.queue = queue
        self.coalescer = coalescer
        self._persist = persist
        self.timeout = timeout
        self._exit_process = exit_process

        self.state = CoordinatorState.RUNNING
        self.exit_code: Optional[int] = None
        self._shutdown_task: Optional[asyncio.Future] = None

    @property
    def is_running(self) -> bool:
        return self.state == CoordinatorState.RUNNING

    async def shutdown(self) -> int:
        """
        Stop accepting work, drain the queue and persist state.

        Safe to call more than once; later calls wait for the first.

        Returns:
            Exit code: 0 when the queue drained, 1 when the timeout forced it
        """
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._drain())
        return await asyncio.shield(self._shutdown_task)

    async def _drain(self) -> int:
        self.state = CoordinatorState.DRAINING
        logger.info("Stop requested, shutting down gracefully...")

        if self.coalescer is not None:
            self.coalescer.flush()

        if self.queue.is_idle:
            self._terminate(0)
            logger.info("Queue empty, state saved, exiting")
            return 0

        logger.warning(f"Waiting for {self.queue.pending} queued sync actions to finish before exiting...")

        try:
            await asyncio.wait_for(self.queue.wait_idle(), timeout=self.timeout)
            exit_code = 0
            logger.info("Queue drained, saving state and exiting")
        except asyncio.TimeoutError:
            logger.error(f"Queue not drained after {self.timeout}s, forcing state save and exit")
            await self.queue.stop()
            exit_code = 1

        self._terminate(exit_code)
        return exit_code

    def fail(self, error: BaseException) -> None:
        """
        Handle an unrecoverable fault: persist state and terminate with status 1.

        Args:
            error: The fault that cannot be recovered from
        """
        logger.critical(f"Unrecoverable error, saving state and exiting: {error}", exc_info=error)

        if self.coalescer is not None:
            self.coalescer.cancel_all()

        try:
            self._terminate(1)
        except Exception as e:
            logger.error(f"Failed to save state during fatal exit: {e}", exc_info=True)
            self.state = CoordinatorState.TERMINATED
            self.exit_code = 1

        for handler in logging.getLogger().handlers:
            handler.flush()
        self._exit_process(1)

    def _terminate(self, exit_code: int) -> None:
        self.state = CoordinatorState.TERMINATED
        self.exit_code = exit_code
        self._persist()
