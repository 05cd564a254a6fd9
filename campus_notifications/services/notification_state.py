"""
Shared notification state for one session.

NotificationState is the process-wide fan-out point between the store and
every presentation consumer. It is created by the composition root
(`start()` on mount, `close()` on unmount) and:

  - loads notifications, unread count, preferences and stats concurrently,
    falling back to safe defaults per branch;
  - turns socket pushes, in-page refresh events and cross-tab storage
    events into `refresh()` calls;
  - applies the local patch after each confirmed mutation and writes the
    cross-tab marker;
  - synthesizes local, never-persisted notifications for instant feedback.

Every store failure is caught here and kept in `error`; nothing raises to
consumers. Work finishing after `close()` is discarded: an action whose
request completes after close skips the patch, marker and emit and returns
False, and a preference write returns None.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar, Union

from campus_notifications.core.config import settings
from campus_notifications.core.errors import NotificationError
from campus_notifications.core.events import EventTarget
from campus_notifications.core.storage import StorageEvent, StorageHandle
from campus_notifications.schemas.notification import (
    Notification,
    NotificationCategory,
    NotificationFilters,
    NotificationPage,
    NotificationPriority,
    NotificationStats,
    NotificationType,
    coerce_display_text,
)
from campus_notifications.schemas.preferences import (
    FrequencyPreferences,
    NotificationChannel,
    NotificationPreferences,
    QuietHours,
    default_preferences,
)
from campus_notifications.services import socket_service
from campus_notifications.services.notification_service import (
    NotificationService,
    is_quiet_now,
    should_deliver,
)
from campus_notifications.services.notification_store import StoreSnapshot
from campus_notifications.services.socket_service import SocketService

logger = logging.getLogger(__name__)

T = TypeVar("T")

# In-page event other components dispatch to ask for a refresh
PAGE_REFRESH_EVENT = "notificationRefresh"

LOCAL_TITLE_FALLBACK = "New notification"


@dataclass(frozen=True)
class NotificationStateSnapshot:
    """Read-only view handed to consumers."""
    notifications: Tuple[Notification, ...]
    unread_count: int
    preferences: Optional[NotificationPreferences]
    is_loading: bool
    error: Optional[str]
    stats: Optional[NotificationStats]

    def to_wire(self) -> Dict[str, Any]:
        return {
            "notifications": [n.to_wire() for n in self.notifications],
            "unreadCount": self.unread_count,
            "preferences": self.preferences.to_wire() if self.preferences else None,
            "isLoading": self.is_loading,
            "error": self.error,
            "stats": self.stats.to_wire() if self.stats else None,
        }


StateListener = Callable[[NotificationStateSnapshot], None]


class NotificationState:
    def __init__(
        self,
        service: NotificationService,
        socket: SocketService,
        storage: StorageHandle,
        *,
        page_events: Optional[EventTarget] = None,
        sync_key: Optional[str] = None,
        page_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service = service
        self.socket = socket
        self.storage = storage
        self.page_events = page_events or EventTarget()
        self.sync_key = sync_key or settings.SYNC_STORAGE_KEY
        self.page_size = page_size or settings.INITIAL_PAGE_SIZE
        self.poll_interval = settings.STORAGE_POLL_INTERVAL if poll_interval is None else poll_interval
        self._clock = clock

        self.notifications: Tuple[Notification, ...] = ()
        self.unread_count = 0
        self.preferences: Optional[NotificationPreferences] = None
        self.is_loading = False
        self.error: Optional[str] = None
        self.stats: Optional[NotificationStats] = None

        self._listeners: List[StateListener] = []
        self._tasks: Set[asyncio.Task] = set()
        self._poller: Optional[asyncio.Task] = None
        self._unsubscribe_store: Optional[Callable[[], None]] = None
        self._preference_writes = 0
        self._started = False
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        if self._started or self._closed:
            return
        self._started = True
        self.socket.on(socket_service.NEW_NOTIFICATION, self._on_socket_change)
        self.socket.on(socket_service.NOTIFICATION_UPDATED, self._on_socket_change)
        self.page_events.add_listener(PAGE_REFRESH_EVENT, self._on_page_refresh)
        self.storage.add_listener(self._on_storage_change)
        self._unsubscribe_store = self.service.store.subscribe(self._on_store_change)
        if self.storage.requires_polling:
            self._poller = asyncio.get_running_loop().create_task(self._poll_storage())
        await self.socket.connect()
        await self.load_initial_data()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.socket.off(socket_service.NEW_NOTIFICATION, self._on_socket_change)
        self.socket.off(socket_service.NOTIFICATION_UPDATED, self._on_socket_change)
        self.page_events.remove_listener(PAGE_REFRESH_EVENT, self._on_page_refresh)
        self.storage.remove_listener(self._on_storage_change)
        if self._unsubscribe_store:
            self._unsubscribe_store()
            self._unsubscribe_store = None

        pending = list(self._tasks)
        if self._poller is not None:
            pending.append(self._poller)
            self._poller = None
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

        await self.socket.disconnect()
        self._listeners.clear()

    async def __aenter__(self) -> "NotificationState":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def settle(self) -> None:
        """Wait until every scheduled refresh has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Consumers
    # ------------------------------------------------------------------

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> NotificationStateSnapshot:
        return NotificationStateSnapshot(
            notifications=self.notifications,
            unread_count=self.unread_count,
            preferences=self.preferences,
            is_loading=self.is_loading,
            error=self.error,
            stats=self.stats,
        )

    def _publish(self) -> None:
        if self._closed:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Notification state listener failed")

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_initial_data(self) -> None:
        """Fetch list, unread count, preferences and stats concurrently. A second call while loading is a no-op."""
        if self.is_loading or self._closed:
            return
        self.is_loading = True
        self.error = None
        self._publish()
        try:
            page, unread, preferences, stats = await asyncio.gather(
                self.service.get_user_notifications(1, self.page_size),
                self.service.get_unread_count(),
                self.service.get_notification_preferences(),
                self.service.get_notification_stats(),
                return_exceptions=True,
            )
            if self._closed:
                return
            self.notifications = () if self._absorbed("notifications", page) else tuple(page.notifications)
            self.unread_count = 0 if self._absorbed("unread count", unread) else unread
            self.preferences = default_preferences() if self._absorbed("preferences", preferences) else preferences
            self.stats = NotificationStats() if self._absorbed("stats", stats) else stats
        finally:
            self.is_loading = False
            self._publish()

    async def refresh(self) -> None:
        """Re-fetch the list and unread count (not preferences or stats). Failed branches keep old values."""
        if self._closed:
            return
        page, unread = await asyncio.gather(
            self.service.get_user_notifications(1, self.page_size),
            self.service.get_unread_count(),
            return_exceptions=True,
        )
        if self._closed:
            return
        changed = False
        if not self._absorbed("notifications", page):
            self.notifications = tuple(page.notifications)
            changed = True
        if not self._absorbed("unread count", unread):
            self.unread_count = unread
            changed = True
        if changed:
            self._publish()

    async def retry(self) -> None:
        self.clear_error()
        await self.load_initial_data()

    @staticmethod
    def _absorbed(branch: str, result: Any) -> bool:
        if not isinstance(result, BaseException):
            return False
        if isinstance(result, NotificationError):
            logger.warning("Loading %s failed: %s", branch, result.message)
        else:
            logger.error("Loading %s failed", branch, exc_info=result)
        return True

    # ------------------------------------------------------------------
    # Signal bridges
    # ------------------------------------------------------------------

    def _schedule_refresh(self) -> None:
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self.refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_socket_change(self, _data: Any = None) -> None:
        self._schedule_refresh()

    def _on_page_refresh(self, _detail: Any = None) -> None:
        self._schedule_refresh()

    def _on_storage_change(self, event: StorageEvent) -> None:
        if event.key == self.sync_key:
            self._schedule_refresh()

    def _on_store_change(self, snapshot: StoreSnapshot) -> None:
        # Loads and preference writes publish their own result.
        if self.is_loading or self._preference_writes:
            return
        if snapshot.preferences is not None and snapshot.preferences != self.preferences:
            self.preferences = snapshot.preferences
            self._publish()

    async def _poll_storage(self) -> None:
        while not self._closed:
            try:
                events = await self.storage.acollect()
                if not self._closed:
                    self.storage.deliver(events)
            except Exception:
                logger.exception("Polling shared storage failed")
            await asyncio.sleep(self.poll_interval)

    async def _broadcast_change(self) -> None:
        """Tell other sessions something changed; they refetch on receipt."""
        try:
            await self.storage.aset_item(self.sync_key, str(time.time_ns() // 1_000_000))
        except Exception:
            logger.exception("Writing the cross-tab marker failed")
    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def _fail(self, exc: NotificationError) -> None:
        self.error = exc.message
        self._publish()

    async def _attempt(self, call: Awaitable[T]) -> Tuple[bool, Optional[T]]:
        try:
            return True, await call
        except NotificationError as exc:
            self._fail(exc)
            return False, None

    def _find(self, notification_id: str) -> Optional[Notification]:
        for notification in self.notifications:
            if notification.id == notification_id:
                return notification
        return None

    async def mark_as_read(self, notification_id: str) -> bool:
        ok, _ = await self._attempt(self.service.mark_notification_as_read(notification_id))
        if not ok or self._closed:
            return False
        target = self._find(notification_id)
        read_at = datetime.now(timezone.utc)
        self.notifications = tuple(
            n.marked_read(read_at) if n.id == notification_id else n for n in self.notifications
        )
        if target is not None and not target.read:
            self.unread_count = max(0, self.unread_count - 1)
        self._publish()
        await self._broadcast_change()
        await self.socket.mark_notification_as_read(notification_id)
        return True

    async def mark_as_important(self, notification_id: str, is_important: bool) -> bool:
        ok, _ = await self._attempt(
            self.service.mark_notification_as_important(notification_id, is_important)
        )
        if not ok or self._closed:
            return False
        self.notifications = tuple(
            n.with_importance(is_important) if n.id == notification_id else n for n in self.notifications
        )
        self._publish()
        await self._broadcast_change()
        await self.socket.mark_notification_as_important(notification_id, is_important)
        return True

    async def mark_all_as_read(self) -> bool:
        ok, _ = await self._attempt(self.service.mark_all_notifications_as_read())
        if not ok or self._closed:
            return False
        read_at = datetime.now(timezone.utc)
        self.notifications = tuple(n.marked_read(read_at) for n in self.notifications)
        self.unread_count = 0
        self._publish()
        await self._broadcast_change()
        return True

    async def delete_notification(self, notification_id: str) -> bool:
        ok, _ = await self._attempt(self.service.delete_notification(notification_id))
        if not ok or self._closed:
            return False
        target = self._find(notification_id)
        self.notifications = tuple(n for n in self.notifications if n.id != notification_id)
        if target is not None and not target.read:
            self.unread_count = max(0, self.unread_count - 1)
        self._publish()
        await self._broadcast_change()
        await self.socket.delete_notification(notification_id)
        return True

    # ------------------------------------------------------------------
    # Queries (do not touch the shared list)
    # ------------------------------------------------------------------

    async def get_filtered_notifications(
        self, filters: Union[NotificationFilters, Dict[str, Any], None] = None
    ) -> Optional[NotificationPage]:
        _, page = await self._attempt(self.service.get_notifications_with_filters(filters))
        return page

    async def search_notifications(self, query: str) -> Optional[NotificationPage]:
        _, page = await self._attempt(self.service.search_notifications(query))
        return page

    async def get_important_notifications(self) -> Optional[NotificationPage]:
        _, page = await self._attempt(self.service.get_important_notifications())
        return page

    async def get_notifications_by_category(
        self, category: Union[NotificationCategory, str]
    ) -> Optional[NotificationPage]:
        _, page = await self._attempt(self.service.get_notifications_by_category(category))
        return page

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def _apply_preferences(self, call: Awaitable[NotificationPreferences]) -> Optional[NotificationPreferences]:
        self._preference_writes += 1
        try:
            ok, preferences = await self._attempt(call)
        finally:
            self._preference_writes -= 1
        if not ok or self._closed:
            return None
        self.preferences = preferences
        self._publish()
        await self._broadcast_change()
        return preferences

    async def update_preferences(
        self, preferences: Union[NotificationPreferences, Dict[str, Any]]
    ) -> Optional[NotificationPreferences]:
        return await self._apply_preferences(self.service.update_notification_preferences(preferences))

    async def update_type_preference(
        self,
        type_: str,
        enabled: bool,
        channel: Union[NotificationChannel, str] = NotificationChannel.IN_APP,
    ) -> Optional[NotificationPreferences]:
        return await self._apply_preferences(
            self.service.update_notification_type_preference(type_, channel, enabled)
        )

    async def update_frequency(
        self, frequency: Union[FrequencyPreferences, Dict[str, Any]]
    ) -> Optional[NotificationPreferences]:
        return await self._apply_preferences(self.service.update_frequency_preferences(frequency))

    async def update_quiet_hours(
        self, quiet_hours: Union[QuietHours, Dict[str, Any]]
    ) -> Optional[NotificationPreferences]:
        return await self._apply_preferences(self.service.update_quiet_hours(quiet_hours))

    async def reset_preferences(self) -> Optional[NotificationPreferences]:
        return await self._apply_preferences(self.service.reset_notification_preferences())

    # ------------------------------------------------------------------
    # Local notifications and helpers
    # ------------------------------------------------------------------

    def is_within_quiet_hours(self) -> bool:
        if self.preferences is None:
            return False
        return is_quiet_now(self.preferences.quiet_hours, self._clock())

    def should_show_notification(self, notification: Notification) -> bool:
        return should_deliver(notification, self.preferences)

    def show_local_notification(
        self,
        title: Any,
        *,
        message: Any = None,
        body: Any = None,
        type_: str = NotificationType.INFO.value,
        category: Union[NotificationCategory, str] = NotificationCategory.SYSTEM,
        priority: Union[NotificationPriority, str] = NotificationPriority.MEDIUM,
        notification_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
        action_url: Optional[str] = None,
        action_text: Optional[str] = None,
    ) -> bool:
        """
        Prepend an in-memory notification for immediate feedback.

        Returns False when suppressed by quiet hours or when a record with the
        same id is already listed. The record never reaches the server.
        """
        if self.is_within_quiet_hours():
            logger.debug("Quiet hours: local notification suppressed")
            return False
        notification = self.service.create_notification(
            type_,
            coerce_display_text(title, LOCAL_TITLE_FALLBACK) or LOCAL_TITLE_FALLBACK,
            body if body is not None else (message if message is not None else ""),
            data,
            notification_id=notification_id or f"local-{uuid.uuid4().hex}",
            category=category,
            priority=priority,
            action_url=action_url,
            action_text=action_text,
        )
        return self.add_local_notification(notification)

    def add_local_notification(self, notification: Notification) -> bool:
        if self._closed:
            return False
        if self.is_within_quiet_hours():
            logger.debug("Quiet hours: local notification suppressed")
            return False
        if self._find(notification.id) is not None:
            logger.debug("Notification %s already exists, skipping duplicate", notification.id)
            return False
        self.notifications = (notification,) + self.notifications
        if not notification.read:
            self.unread_count += 1
        self._publish()
        return True

    def clear_error(self) -> None:
        self.error = None
        self._publish()
