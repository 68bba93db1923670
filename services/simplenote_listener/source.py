"""Boundary to the realtime note change feed and its connection supervision."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

from services.simplenote_listener.auth import SimperiumTokenRenewer

logger = logging.getLogger(__name__)


class ChangeListener(ABC):
    """Callbacks a change event source delivers to."""

    @abstractmethod
    def on_change(self, note_id: str, note: Dict[str, Any]) -> None:
        """A note was created, edited or deleted."""

    @abstractmethod
    def on_unauthorized(self) -> None:
        """The source rejected the access token."""


class ChangeEventSource(ABC):
    """An open connection delivering note changes to a listener."""

    @abstractmethod
    async def start(self, listener: ChangeListener) -> None:
        """Connect and begin delivering changes."""

    @abstractmethod
    async def stop(self) -> None:
        """Close the connection."""


SourceFactory = Callable[[str], ChangeEventSource]

# Called with the Simperium app ID and an access token
RealtimeSourceFactory = Callable[[Optional[str], str], ChangeEventSource]


class ConnectionSupervisor(ChangeListener):
    """
    Keeps a change event source connected.

    Changes are forwarded to ``on_change``. When the source reports an
    unauthorized token, the token is renewed and a new source is connected
    after ``reconnect_delay`` seconds. A failed renewal is unrecoverable and
    goes to ``on_fatal``.
    """

    def __init__(
        self,
        source_factory: SourceFactory,
        on_change: Callable[[str, Dict[str, Any]], None],
        renewer: SimperiumTokenRenewer,
        on_fatal: Callable[[BaseException], None],
        reconnect_delay: float = 2.0
    ):
        """
        Initialize the supervisor.

        Args:
            source_factory: Builds a source for an access token
            on_change: Receives every change
            renewer: Renews the access token
            on_fatal: Called when the token cannot be renewed
            reconnect_delay: Seconds to wait before reconnecting
        """
        self.source_factory = source_factory
        self._on_change = on_change
        self.renewer = renewer
        self._on_fatal = on_fatal
        self.reconnect_delay = reconnect_delay

        self.source: Optional[ChangeEventSource] = None
        self._renewal: Optional[asyncio.Task] = None

    async def start(self, token: Optional[str] = None) -> None:
        """Connect with the given token, renewing it first when missing."""
        if not token:
            logger.info("No Simperium token configured, requesting one...")
            token = await self.renewer.renew()
        await self._connect(token)

    async def stop(self) -> None:
        """Stop any pending renewal and close the source."""
        if self._renewal is not None and not self._renewal.done():
            self._renewal.cancel()
            try:
                await self._renewal
            except asyncio.CancelledError:
                pass
        self._renewal = None
        await self._close_source()

    def on_change(self, note_id: str, note: Dict[str, Any]) -> None:
        logger.info(f"Change captured for note {note_id}")
        self._on_change(note_id, note)

    def on_unauthorized(self) -> None:
        if self._renewal is not None and not self._renewal.done():
            logger.debug("Token renewal already in progress")
            return
        logger.warning("Simperium authorization lost, renewing token...")
        self._renewal = asyncio.get_running_loop().create_task(self._renew_and_reconnect())

    async def _connect(self, token: str) -> None:
        logger.info("Opening Simplenote change feed connection...")
        self.source = self.source_factory(token)
        await self.source.start(self)
        logger.info("Change feed connected, listening for note updates")

    async def _close_source(self) -> None:
        source, self.source = self.source, None
        if source is not None:
            await source.stop()

    async def _renew_and_reconnect(self) -> None:
        try:
            await self._close_source()
            token = await self.renewer.renew()
            await asyncio.sleep(self.reconnect_delay)
            await self._connect(token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Token renewal failed, exiting so a supervisor can restart the service: {e}")
            self._on_fatal(e)
