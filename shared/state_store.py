"""Durable storage of the note-to-page mapping."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Union

from shared.models import SyncState

logger = logging.getLogger(__name__)


class StateStore:
    """Loads and saves SyncState as a JSON file, replacing it atomically."""

    def __init__(self, path: Union[str, Path]):
        """
        Initialize the state store.

        Args:
            path: Location of the JSON state file
        """
        self.path = Path(path)

    def load(self) -> SyncState:
        """
        Load the persisted state.

        Never raises: a missing, unreadable or malformed file yields an
        empty state so the service can always start.

        Returns:
            The persisted SyncState, or an empty one
        """
        if not self.path.exists():
            logger.info(f"No state file at {self.path}, starting with empty state")
            return SyncState()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read state file {self.path}, starting with empty state: {e}")
            return SyncState()

        if not isinstance(data, dict) or not isinstance(data.get("note_to_page"), dict):
            logger.warning(f"State file {self.path} has no note mapping, starting with empty state")
            return SyncState()

        state = SyncState.from_dict(data)
        logger.info(f"State loaded, {len(state.note_to_page)} notes mapped")
        return state

    def save(self, state: SyncState) -> None:
        """
        Persist the full state.

        Writes to a temporary file next to the target and renames it over
        the target, so a crash leaves either the old or the new state.

        Args:
            state: State to persist
        """
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"State saved to {self.path} ({len(state.note_to_page)} notes)")
