"""Shared data models for the Simplenote to Notion realtime sync."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class NoteSnapshot:
    """State of a Simplenote note at the moment a change was observed."""
    content: str = ""
    tags: List[str] = field(default_factory=list)
    deleted: bool = False
    modified_at: Optional[float] = None

    @classmethod
    def from_note(cls, note: Dict[str, Any]) -> "NoteSnapshot":
        """Build a snapshot from a raw Simperium note object."""
        note = note or {}
        tags = note.get("tags") or []
        return cls(
            content=note.get("content") or "",
            tags=[str(tag) for tag in tags],
            deleted=bool(note.get("deleted", False)),
            modified_at=note.get("modificationDate"),
        )


@dataclass
class PendingSyncAction:
    """A deferred create-or-update of one note, executed once by the work queue."""
    note_id: str
    snapshot: NoteSnapshot
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class SyncState:
    """Persisted mapping of Simplenote note IDs to Notion page IDs."""
    note_to_page: Dict[str, str] = field(default_factory=dict)
    note_to_modify: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "note_to_page": dict(self.note_to_page),
            "note_to_modify": dict(self.note_to_modify),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncState":
        return cls(
            note_to_page=dict(data.get("note_to_page") or {}),
            note_to_modify=dict(data.get("note_to_modify") or {}),
        )
