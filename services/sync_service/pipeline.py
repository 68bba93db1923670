"""Wiring of the change-ingestion and reconciliation pipeline."""

import logging
import os
from typing import Any, Callable, Dict, Optional

from notion_client import AsyncClient

from shared.config import SyncSettings
from shared.db_operations import DeadLetterOperations
from shared.errors import AuthExpiredError
from shared.models import NoteSnapshot, PendingSyncAction
from shared.state_store import StateStore
from services.notion_writer.properties import PropertyLayout
from services.notion_writer.rate_limit import ApiInvoker
from services.notion_writer.writer import NotionWriter
from services.sync_service.debounce import DebounceCoalescer
from services.sync_service.notifications import NotificationService
from services.sync_service.orchestrator import SyncOrchestrator
from services.sync_service.shutdown import ShutdownCoordinator
from services.sync_service.work_queue import SyncWorkQueue

logger = logging.getLogger(__name__)


class SyncPipeline:
    """
    Change events in, Notion pages out.

    Changes go through the debounce coalescer into the single-worker
    queue, which upserts each note through the orchestrator and saves the
    state file after every action.
    """

    def __init__(
        self,
        settings: SyncSettings,
        client: Optional[AsyncClient] = None,
        state_store: Optional[StateStore] = None,
        invoker: Optional[ApiInvoker] = None,
        dead_letters: Optional[DeadLetterOperations] = None,
        notification_service: Optional[NotificationService] = None,
        exit_process: Callable[[int], None] = os._exit
    ):
        """
        Initialize the pipeline and load the persisted state.

        Args:
            settings: Service settings
            client: Notion API client, created from the settings when omitted
            state_store: State store, created from the settings when omitted
            invoker: Retrying invoker, created from the settings when omitted
            dead_letters: Dead-letter log, created when DEAD_LETTER_DATABASE_URL is set
            notification_service: Critical error notifications
            exit_process: Terminates the process on unrecoverable faults
        """
        self.settings = settings
        self.state_store = state_store or StateStore(settings.state_file)
        self.state = self.state_store.load()

        self.client = client or AsyncClient(auth=settings.notion_token)
        self.invoker = invoker or ApiInvoker(max_attempts=settings.max_retries)
        self.writer = NotionWriter(
            self.client,
            self.invoker,
            PropertyLayout(
                content_property=settings.content_property,
                id_property=settings.id_property,
                tags_property=settings.tags_property,
                title_max_length=settings.title_max_length,
                chunk_size=settings.chunk_size,
                max_chunks=settings.max_chunks,
                tag_max_length=settings.tag_max_length,
            )
        )
        self.orchestrator = SyncOrchestrator(self.writer, self.state)

        if dead_letters is None and settings.dead_letter_database_url:
            dead_letters = DeadLetterOperations(settings.dead_letter_database_url)
            dead_letters.create_tables()
        self.dead_letters = dead_letters
        self.notification_service = notification_service or NotificationService()

        self.queue = SyncWorkQueue(
            self._execute,
            self.save_state,
            action_delay=settings.api_delay,
            on_failure=self._handle_failure,
            on_fault=self.fail
        )
        self.coalescer = DebounceCoalescer(
            self.queue.enqueue,
            delay=settings.debounce_delay,
            on_fault=self.fail
        )
        self.coordinator = ShutdownCoordinator(
            self.queue,
            self.save_state,
            coalescer=self.coalescer,
            timeout=settings.shutdown_timeout,
            exit_process=exit_process
        )

    async def start(self) -> None:
        """Resolve the Notion database; must run before changes are synced."""
        await self.writer.resolve_database(self.settings.notion_database_id)

    def on_change(self, note_id: str, note: Dict[str, Any]) -> bool:
        """
        Accept a raw change event from the note feed.

        Returns:
            False when the change was dropped
        """
        if not self.coordinator.is_running:
            logger.warning(f"Shutting down, ignoring change for note {note_id}")
            return False
        return self.coalescer.on_change(note_id, NoteSnapshot.from_note(note))

    def save_state(self) -> None:
        self.state_store.save(self.state)

    def fail(self, error: BaseException) -> None:
        self.coordinator.fail(error)

    async def shutdown(self) -> int:
        """Drain, persist and release the Notion client; returns the exit code."""
        exit_code = await self.coordinator.shutdown()
        await self.client.aclose()
        return exit_code

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.coordinator.state.value,
            "mapped_notes": len(self.state.note_to_page),
            "armed_changes": self.coalescer.armed,
            "queued_actions": self.queue.pending,
            "in_flight": self.queue.in_flight.note_id if self.queue.in_flight else None,
            "processed_actions": self.queue.processed_count,
            "failed_actions": self.queue.failed_count,
        }

    async def _execute(self, action: PendingSyncAction) -> Dict:
        result = await self.orchestrator.sync_note(action)
        if self.dead_letters is not None:
            try:
                self.dead_letters.delete_dead_letters(action.note_id)
            except Exception as e:
                # Note is already synced
                logger.error(f"Failed to clear dead letters for note {action.note_id}: {e}", exc_info=True)
        return result

    async def _handle_failure(self, action: PendingSyncAction, error: Exception) -> None:
        if self.dead_letters is not None:
            self.dead_letters.add_dead_letter(
                note_id=action.note_id,
                error_type=type(error).__name__,
                error_message=str(error),
                notion_page_id=self.state.note_to_page.get(action.note_id)
            )

        if isinstance(error, AuthExpiredError):
            await self.notification_service.send_critical_error_notification(
                note_id=action.note_id,
                error_message=f"Notion rejected the integration token: {error}",
                context={"stage": "notion_auth"}
            )
