"""Real-time notification channel (Socket.IO client)."""
import asyncio
import logging
from typing import Any, Callable, Optional

import socketio
from socketio import exceptions as socketio_exceptions

from campus_notifications.core.config import settings
from campus_notifications.core.events import EventTarget, Listener

logger = logging.getLogger(__name__)

# Local events raised by SocketService
CONNECTED = "connected"
DISCONNECTED = "disconnected"
ERROR = "error"
NEW_NOTIFICATION = "new_notification"
NOTIFICATION_UPDATED = "notification_updated"
NOTIFICATION_READ = "notification_read"
NOTIFICATION_IMPORTANT_UPDATED = "notification_important_updated"
NOTIFICATION_DELETED = "notification_deleted"

# Server events forwarded unchanged to local listeners
FORWARDED_EVENTS = (
    NEW_NOTIFICATION,
    NOTIFICATION_UPDATED,
    NOTIFICATION_READ,
    NOTIFICATION_IMPORTANT_UPDATED,
    NOTIFICATION_DELETED,
)

# Outbound intents
MARK_NOTIFICATION_READ = "mark_notification_read"
MARK_NOTIFICATION_IMPORTANT = "mark_notification_important"
DELETE_NOTIFICATION = "delete_notification"

TokenProvider = Callable[[], Optional[str]]


class SocketService:
    """
    One authenticated Socket.IO connection plus a local publish/subscribe layer.

    Consumers register with `on`/`off` and never touch the socket itself.
    Connection errors become local `error` events; nothing here raises to
    the caller. There is no automatic reconnection: call `reconnect()`.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        url: Optional[str] = None,
        *,
        reconnect_delay: Optional[float] = None,
        client_factory: Callable[..., Any] = socketio.AsyncClient,
    ):
        self.url = url or settings.SOCKET_URL
        self.reconnect_delay = settings.SOCKET_RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        self._token_provider = token_provider
        self._client_factory = client_factory
        self._sio: Optional[Any] = None
        self._connected = False
        self._connecting = False
        self._events = EventTarget()

    @property
    def is_connected(self) -> bool:
        return self._sio is not None and self._connected

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        token = self._token_provider()
        if not token:
            logger.error("No auth token found for socket connection")
            return
        if self.is_connected or self._connecting:
            logger.debug("Socket already connected")
            return

        self._connecting = True
        self._sio = self._client_factory(reconnection=False)
        self._setup_event_handlers(self._sio)
        try:
            await self._sio.connect(self.url, auth={"token": token})
        except socketio_exceptions.ConnectionError as exc:
            # connect_error has already been forwarded as a local `error` event
            logger.warning("Socket connection to %s failed: %s", self.url, exc)
            self._connected = False
        finally:
            self._connecting = False

    async def disconnect(self) -> None:
        sio, self._sio = self._sio, None
        was_connected, self._connected = self._connected, False
        if sio is not None and was_connected:
            await sio.disconnect()

    async def reconnect(self) -> None:
        await self.disconnect()
        await asyncio.sleep(self.reconnect_delay)
        await self.connect()

    def _setup_event_handlers(self, sio: Any) -> None:
        async def on_connect(*_args: Any) -> None:
            logger.info("Connected to notification server")
            self._connected = True
            self._events.dispatch(CONNECTED)

        async def on_disconnect(*args: Any) -> None:
            reason = args[0] if args else None
            logger.info("Disconnected from notification server: %s", reason)
            self._connected = False
            self._events.dispatch(DISCONNECTED, reason)

        async def on_connect_error(data: Any = None) -> None:
            logger.error("Socket connection error: %s", data)
            self._connected = False
            self._events.dispatch(ERROR, data)

        sio.on("connect", on_connect)
        sio.on("disconnect", on_disconnect)
        sio.on("connect_error", on_connect_error)
        for event in FORWARDED_EVENTS:
            sio.on(event, self._forwarder(event))

    def _forwarder(self, event: str) -> Callable[[Any], Any]:
        async def forward(data: Any = None) -> None:
            logger.debug("Socket event %s: %s", event, data)
            self._events.dispatch(event, data)
        return forward

    # ------------------------------------------------------------------
    # Local pub/sub
    # ------------------------------------------------------------------

    def on(self, event: str, handler: Listener) -> None:
        self._events.add_listener(event, handler)

    def off(self, event: str, handler: Listener) -> None:
        self._events.remove_listener(event, handler)

    def _dispatch(self, event: str, data: Any = None) -> None:
        self._events.dispatch(event, data)

    # ------------------------------------------------------------------
    # Outbound intents (fire-and-forget)
    # ------------------------------------------------------------------

    async def emit(self, event: str, payload: Any = None) -> bool:
        """Send an intent to the server. Returns False (and drops it) when not connected."""
        if not self.is_connected:
            logger.debug("Socket not connected; dropping %s", event)
            return False
        try:
            await self._sio.emit(event, payload)
        except socketio_exceptions.SocketIOError as exc:
            logger.debug("Socket emit of %s dropped: %s", event, exc)
            return False
        return True

    async def mark_notification_as_read(self, notification_id: str) -> bool:
        return await self.emit(MARK_NOTIFICATION_READ, {"notificationId": notification_id})

    async def mark_notification_as_important(self, notification_id: str, is_important: bool) -> bool:
        return await self.emit(
            MARK_NOTIFICATION_IMPORTANT,
            {"notificationId": notification_id, "isImportant": is_important},
        )

    async def delete_notification(self, notification_id: str) -> bool:
        return await self.emit(DELETE_NOTIFICATION, {"notificationId": notification_id})
