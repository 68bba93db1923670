"""Conversion of Simplenote notes into Notion page properties."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

TRUNCATION_MARKER = "..."


@dataclass(frozen=True)
class PropertyLayout:
    """Property names of the target database and the limits Notion imposes."""
    title_property: str = "Name"
    content_property: str = "What`s in your mind?"
    id_property: str = "Simplenote ID"
    tags_property: Optional[str] = "Tags"
    title_max_length: int = 80
    chunk_size: int = 1800
    max_chunks: int = 100
    tag_max_length: int = 50


def extract_title(content: str, max_length: int = 80) -> str:
    """Return the first line with visible text, truncated, or "Untitled"."""
    for line in content.split("\n"):
        if line.strip():
            return line[:max_length]
    return "Untitled"


def chunk_text(text: str, size: int) -> List[str]:
    """Split text into consecutive pieces of at most size characters."""
    if not text:
        return []
    return [text[i:i + size] for i in range(0, len(text), size)]


def _rich_text(content: str) -> Dict[str, Any]:
    return {"type": "text", "text": {"content": content}}


def build_content_chunks(content: str, layout: PropertyLayout) -> List[Dict[str, Any]]:
    """
    Build the rich-text array holding the note body.

    Notion caps a rich-text property at max_chunks items. Longer notes keep
    the first max_chunks chunks and the last one ends in TRUNCATION_MARKER.

    Args:
        content: Raw note body
        layout: Property layout with chunk limits

    Returns:
        List of Notion rich-text objects
    """
    chunks = chunk_text(content, layout.chunk_size)

    if len(chunks) > layout.max_chunks:
        chunks = chunks[:layout.max_chunks]
        keep = layout.chunk_size - len(TRUNCATION_MARKER)
        chunks[-1] = chunks[-1][:keep] + TRUNCATION_MARKER

    return [_rich_text(chunk) for chunk in chunks]


def build_page_properties(
    note_id: str,
    content: str,
    tags: Optional[List[str]],
    layout: PropertyLayout
) -> Dict[str, Any]:
    """
    Build Notion page properties from a note.

    Args:
        note_id: Simplenote note ID, stored on the page for reverse lookup
        content: Raw note body
        tags: Simplenote tags
        layout: Target database property layout

    Returns:
        Dictionary of Notion page properties
    """
    content = content or ""
    title = extract_title(content, layout.title_max_length)

    properties = {
        layout.title_property: {"title": [_rich_text(title)]},
        layout.content_property: {"rich_text": build_content_chunks(content, layout)},
        layout.id_property: {"rich_text": [_rich_text(note_id)]},
    }

    # Omitted rather than cleared when the note has no tags
    if layout.tags_property and tags:
        properties[layout.tags_property] = {
            "multi_select": [{"name": tag[:layout.tag_max_length]} for tag in tags]
        }

    return properties
