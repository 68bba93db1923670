"""Shared configuration utilities."""

import os
import re
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_float(key: str, default: float) -> float:
    """Get a numeric environment variable, falling back to default when unset."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {key} must be a number, got {value!r}")


def get_env_file() -> str:
    """Path of the .env file holding credentials."""
    return get_env("ENV_FILE", ".env")


def load_env_file() -> None:
    """Load the .env file into the process environment (existing values win)."""
    load_dotenv(get_env_file(), override=False)


def clean_database_id(database_id: str) -> str:
    """
    Clean and extract a Notion database ID from various formats.

    Handles:
    - Plain UUID: 2fb86a4c5fbf806dbeb6f3f2c1b23d10
    - UUID with dashes: 2fb86a4c-5fbf-806d-beb6-f3f2c1b23d10
    - Notion URL: https://www.notion.so/Workspace-2fb86a4c5fbf806dbeb6f3f2c1b23d10?v=...

    Args:
        database_id: Database ID in any format

    Returns:
        Clean database ID (32 hex characters without dashes)

    Raises:
        ValueError: If no database ID can be found
    """
    database_id = database_id.strip()
    candidate = database_id.split("?")[0]

    dashed = re.search(
        r"([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})",
        candidate
    )
    if dashed:
        return dashed.group(1).replace("-", "").lower()

    # Page titles in URLs end in hex letters too, so anchor on the trailing run
    match = re.search(r"([0-9a-fA-F]{32})(?![0-9a-fA-F])", candidate)
    if not match:
        raise ValueError(f"Invalid database ID format: {database_id}. Expected 32 hex characters.")

    return match.group(1).lower()


@dataclass(frozen=True)
class SyncSettings:
    """Runtime settings for the realtime sync service."""
    notion_token: str
    notion_database_id: str
    state_file: str = "sync_state.json"
    debounce_delay: float = 3.0
    api_delay: float = 0.5
    max_retries: int = 5
    shutdown_timeout: float = 10.0
    title_max_length: int = 80
    chunk_size: int = 1800
    max_chunks: int = 100
    tag_max_length: int = 50
    content_property: str = "What`s in your mind?"
    id_property: str = "Simplenote ID"
    tags_property: Optional[str] = "Tags"
    simperium_app_id: Optional[str] = None
    simperium_token: Optional[str] = None
    simplenote_email: Optional[str] = None
    dead_letter_database_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SyncSettings":
        """Create settings from environment variables."""
        # An explicitly empty NOTION_TAGS_PROPERTY disables tag syncing
        tags_property = os.getenv("NOTION_TAGS_PROPERTY", "Tags")

        return cls(
            notion_token=get_env("NOTION_TOKEN", required=True),
            notion_database_id=clean_database_id(get_env("NOTION_DATABASE_ID", required=True)),
            state_file=get_env("SYNC_STATE_FILE", "sync_state.json"),
            debounce_delay=get_float("DEBOUNCE_DELAY", 3.0),
            api_delay=get_float("NOTION_API_DELAY", 0.5),
            max_retries=int(get_float("NOTION_MAX_RETRIES", 5)),
            shutdown_timeout=get_float("SHUTDOWN_TIMEOUT", 10.0),
            content_property=get_env("NOTION_CONTENT_PROPERTY", "What`s in your mind?"),
            id_property=get_env("NOTION_ID_PROPERTY", "Simplenote ID"),
            tags_property=tags_property or None,
            simperium_app_id=get_env("SIMPERIUM_APP_ID"),
            simperium_token=get_env("SIMPERIUM_TOKEN"),
            simplenote_email=get_env("SN_EMAIL"),
            dead_letter_database_url=get_env("DEAD_LETTER_DATABASE_URL"),
        )
