"""Per-note debouncing of change events."""

import asyncio
import logging
from typing import Callable, Dict, Optional

from shared.models import NoteSnapshot, PendingSyncAction

logger = logging.getLogger(__name__)


class DebounceCoalescer:
    """
    Collapses bursts of changes to a note into one pending sync action.

    Each change re-arms a per-note timer of ``delay`` seconds (trailing
    edge). When the timer fires, the latest snapshot seen for the note is
    handed to ``enqueue``. Timers live in memory only.
    """

    def __init__(
        self,
        enqueue: Callable[[PendingSyncAction], None],
        delay: float = 3.0,
        on_fault: Optional[Callable[[BaseException], None]] = None
    ):
        """
        Initialize the coalescer.

        Args:
            enqueue: Receives the action when a timer fires
            delay: Quiet period in seconds before a note is synced
            on_fault: Called with exceptions escaping a timer task
        """
        self._enqueue = enqueue
        self.delay = delay
        self._on_fault = on_fault

        self._timers: Dict[str, asyncio.Task] = {}
        self._latest: Dict[str, NoteSnapshot] = {}

    @property
    def armed(self) -> int:
        """Number of notes waiting for their timer to fire."""
        return len(self._timers)

    def on_change(self, note_id: str, snapshot: NoteSnapshot) -> bool:
        """
        Record a change and (re)arm the note's timer.

        Must be called from the event loop thread.

        Args:
            note_id: Simplenote note ID
            snapshot: Note state carried by the change event

        Returns:
            False when the change was dropped (deleted note), True otherwise
        """
        if snapshot.deleted:
            logger.debug(f"Ignoring change for deleted note {note_id}")
            return False

        existing = self._timers.pop(note_id, None)
        if existing is not None:
            existing.cancel()

        self._latest[note_id] = snapshot

        task = asyncio.get_running_loop().create_task(self._fire_after(note_id))
        task.add_done_callback(self._on_timer_done)
        self._timers[note_id] = task
        return True

    def flush(self) -> int:
        """
        Fire every armed timer now.

        Returns:
            Number of actions handed to the queue
        """
        note_ids = list(self._timers)
        for note_id in note_ids:
            self._timers[note_id].cancel()
            self._fire(note_id)

        if note_ids:
            logger.info(f"Flushed {len(note_ids)} pending debounced changes")
        return len(note_ids)

    def cancel_all(self) -> None:
        """Discard every armed timer without syncing."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
        self._latest.clear()

    async def _fire_after(self, note_id: str) -> None:
        await asyncio.sleep(self.delay)
        self._fire(note_id)

    def _fire(self, note_id: str) -> None:
        self._timers.pop(note_id, None)
        snapshot = self._latest.pop(note_id, None)
        if snapshot is None:
            return

        self._enqueue(PendingSyncAction(note_id=note_id, snapshot=snapshot))

    def _on_timer_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return

        error = task.exception()
        if error is None:
            return

        logger.error(f"Debounce timer failed: {error}", exc_info=error)
        if self._on_fault is not None:
            self._on_fault(error)
        else:
            task.get_loop().call_exception_handler({
                "message": "Debounce timer failed",
                "exception": error,
                "task": task,
            })
