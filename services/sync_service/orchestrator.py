"""Sync orchestration logic."""

import logging
from typing import Dict

from shared.errors import NotFoundStaleError
from shared.models import PendingSyncAction, SyncState
from services.notion_writer.writer import NotionWriter

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Upserts one note into Notion and records the resulting page mapping."""

    def __init__(self, writer: NotionWriter, state: SyncState):
        """
        Initialize the sync orchestrator.

        Args:
            writer: Notion writer used for all page calls
            state: Sync state, mutated only from the work queue worker
        """
        self.writer = writer
        self.state = state

    async def sync_note(self, action: PendingSyncAction) -> Dict:
        """
        Create or update the Notion page for a note.

        This is the upsert protocol:
        1. Builds page properties from the action's snapshot
        2. Looks up the mapped page for the note
        3. Updates the mapped page; a deleted or stale page falls back to create
        4. Creates a page for unmapped notes and records the new page ID

        Args:
            action: Pending sync action to execute

        Returns:
            Dictionary with note_id, notion_page_id and operation

        Raises:
            SyncError: If the Notion calls fail after retries
        """
        note_id = action.note_id
        snapshot = action.snapshot
        properties = self.writer.build_properties(note_id, snapshot.content, snapshot.tags)

        page_id = self.state.note_to_page.get(note_id)
        operation = "update"

        if page_id:
            try:
                await self.writer.update_page(page_id, properties)
            except NotFoundStaleError as e:
                logger.warning(f"Notion page {page_id} for note {note_id} is gone ({e}), recreating")
                page_id = None

        if not page_id:
            operation = "create"
            page_id = await self.writer.create_page(note_id, properties)
            self.state.note_to_page[note_id] = page_id

        if snapshot.modified_at is not None:
            self.state.note_to_modify[note_id] = snapshot.modified_at

        logger.info(f"Synced note {note_id} to Notion page {page_id} ({operation})")

        return {
            "note_id": note_id,
            "notion_page_id": page_id,
            "operation": operation
        }
