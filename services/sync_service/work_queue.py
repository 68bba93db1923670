"""Single-worker FIFO queue of pending sync actions."""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional

from shared.errors import SyncError
from shared.models import PendingSyncAction

logger = logging.getLogger(__name__)

ActionHandler = Callable[[PendingSyncAction], Awaitable[Any]]
FailureHandler = Callable[[PendingSyncAction, Exception], Awaitable[None]]


class SyncWorkQueue:
    """
    Runs pending sync actions one at a time in enqueue order.

    Only one action is in flight at any moment, across all notes, to stay
    under Notion's rate limit. After every action, successful or not, the
    sync state is persisted and the worker waits ``action_delay`` seconds
    before taking the next action. Failed actions are logged, handed to
    ``on_failure`` and dropped; they are never re-enqueued.
    """

    def __init__(
        self,
        handler: ActionHandler,
        persist: Callable[[], None],
        action_delay: float = 0.5,
        on_failure: Optional[FailureHandler] = None,
        on_fault: Optional[Callable[[BaseException], None]] = None
    ):
        """
        Initialize the work queue.

        Args:
            handler: Coroutine function executing one action
            persist: Saves the sync state; called after every action
            action_delay: Seconds to wait between two actions
            on_failure: Called with the action and error when an action fails
            on_fault: Called when persisting the state fails; the worker stops
        """
        self._handler = handler
        self._persist = persist
        self.action_delay = action_delay
        self._on_failure = on_failure
        self._on_fault = on_fault

        self._queue: Deque[PendingSyncAction] = deque()
        self._worker: Optional[asyncio.Task] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self.in_flight: Optional[PendingSyncAction] = None

        self.processed_count = 0
        self.failed_count = 0

    @property
    def pending(self) -> int:
        """Number of queued actions, excluding the one in flight."""
        return len(self._queue)

    @property
    def is_idle(self) -> bool:
        """True when nothing is queued and no worker is running."""
        return self._idle.is_set()

    def enqueue(self, action: PendingSyncAction) -> None:
        """Append an action and make sure the worker is running."""
        self._queue.append(action)
        self._idle.clear()
        logger.debug(f"Queued sync for note {action.note_id} ({len(self._queue)} pending)")

        if self._worker is None:
            self._worker = asyncio.get_running_loop().create_task(self._run())

    async def wait_idle(self) -> None:
        """Wait until the queue has drained."""
        await self._idle.wait()

    async def stop(self) -> int:
        """
        Cancel the worker and discard queued actions.

        Returns:
            Number of actions discarded, the in-flight one included
        """
        lost = len(self._queue) + (1 if self.in_flight else 0)
        self._queue.clear()

        worker = self._worker
        if worker is not None and not worker.done():
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass

        self._worker = None
        self.in_flight = None
        self._idle.set()

        if lost:
            logger.warning(f"Discarded {lost} unfinished sync actions")
        return lost

    async def _run(self) -> None:
        try:
            while self._queue:
                action = self._queue.popleft()
                self.in_flight = action
                await self._execute(action)
                self.in_flight = None

                try:
                    self._persist()
                except Exception as e:
                    logger.error(f"Failed to persist sync state: {e}", exc_info=True)
                    if self._on_fault is None:
                        raise
                    self._on_fault(e)
                    return

                await asyncio.sleep(self.action_delay)
        finally:
            self._worker = None
            self.in_flight = None
            if not self._queue:
                self._idle.set()

    async def _execute(self, action: PendingSyncAction) -> None:
        try:
            await self._handler(action)
            self.processed_count += 1
        except Exception as e:
            # Any error ends this action only; the queue keeps going
            self.failed_count += 1
            logger.error(
                f"Sync of note {action.note_id} failed, dropping action: {type(e).__name__}: {e}",
                exc_info=not isinstance(e, SyncError)
            )
            if self._on_failure is not None:
                try:
                    await self._on_failure(action, e)
                except Exception as handler_error:
                    logger.error(f"Failure handler error for note {action.note_id}: {handler_error}", exc_info=True)
