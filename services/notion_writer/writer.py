"""Notion Writer - handles page creation and updates in Notion."""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from notion_client import AsyncClient

from services.notion_writer.properties import PropertyLayout, build_page_properties
from services.notion_writer.rate_limit import ApiInvoker

logger = logging.getLogger(__name__)


class NotionWriter:
    """Writes Simplenote notes into a Notion database through the retrying invoker."""

    def __init__(
        self,
        client: AsyncClient,
        invoker: ApiInvoker,
        layout: Optional[PropertyLayout] = None
    ):
        """
        Initialize Notion Writer.

        Args:
            client: Notion API client
            invoker: Retrying invoker every API call goes through
            layout: Property layout; the title property is replaced by
                resolve_database()
        """
        self.client = client
        self.invoker = invoker
        self.layout = layout or PropertyLayout()
        self.parent: Optional[Dict[str, str]] = None

    async def resolve_database(self, database_id: str) -> Dict[str, Any]:
        """
        Discover where pages are created and which property holds the title.

        Databases exposing data sources take pages under the first data
        source; the schema is then read from that data source.

        Args:
            database_id: Clean Notion database ID

        Returns:
            Dictionary with parent and title_property
        """
        logger.info(f"Retrieving Notion database schema for {database_id}")
        database = await self.invoker.invoke(
            lambda: self.client.databases.retrieve(database_id=database_id),
            "retrieve database"
        )

        parent = {"database_id": database_id}
        properties = database.get("properties", {})

        data_sources: List[Dict[str, Any]] = database.get("data_sources") or []
        if data_sources:
            data_source_id = data_sources[0]["id"]
            parent = {"data_source_id": data_source_id}
            data_source = await self.invoker.invoke(
                lambda: self.client.request(path=f"data_sources/{data_source_id}", method="GET"),
                "retrieve data source"
            )
            properties = data_source.get("properties", {})
            logger.info(f"Using Notion data source {data_source_id}")

        title_property = None
        for prop_name, prop_config in properties.items():
            if prop_config.get("type") == "title":
                title_property = prop_name
                break

        if not title_property:
            title_property = "Name"
            logger.warning(f"No title property found in database, using default: {title_property}")

        self.parent = parent
        self.layout = replace(self.layout, title_property=title_property)
        logger.info(f"Notion configuration loaded (title property: {title_property})")

        return {"parent": parent, "title_property": title_property}

    def build_properties(self, note_id: str, content: str, tags: List[str]) -> Dict[str, Any]:
        """Build page properties for a note using the resolved layout."""
        return build_page_properties(note_id, content, tags, self.layout)

    async def create_page(self, note_id: str, properties: Dict[str, Any]) -> str:
        """
        Create a new Notion page for a note.

        Args:
            note_id: Simplenote note ID, for logging
            properties: Page properties from build_properties()

        Returns:
            ID of the created page

        Raises:
            RuntimeError: If resolve_database() has not run
            SyncError: If the Notion API call fails
        """
        if self.parent is None:
            raise RuntimeError("Notion database not resolved, call resolve_database() first")

        parent = self.parent
        response = await self.invoker.invoke(
            lambda: self.client.pages.create(parent=parent, properties=properties),
            f"create page for note {note_id}"
        )

        page_id = response["id"]
        logger.info(f"[Create] Created Notion page {page_id} for note {note_id}")
        return page_id

    async def update_page(self, page_id: str, properties: Dict[str, Any]) -> None:
        """
        Update the properties of an existing Notion page.

        Args:
            page_id: Notion page ID to update
            properties: Page properties from build_properties()

        Raises:
            NotFoundStaleError: If the page was deleted or the ID is stale
            SyncError: If the Notion API call fails otherwise
        """
        await self.invoker.invoke(
            lambda: self.client.pages.update(page_id=page_id, properties=properties),
            f"update page {page_id}"
        )
        logger.info(f"[Update] Updated Notion page {page_id}")
