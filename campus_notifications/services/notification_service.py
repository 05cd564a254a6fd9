"""Notification service: intent-level facade over the store plus pure display/delivery helpers."""
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Dict, Mapping, Optional, TypeVar, Union
import uuid

from pydantic import TypeAdapter, ValidationError

from campus_notifications.core.errors import NotificationError
from campus_notifications.schemas.notification import (
    Notification,
    NotificationCategory,
    NotificationFilters,
    NotificationPage,
    NotificationPriority,
    NotificationStats,
    NotificationType,
)
from campus_notifications.schemas.preferences import (
    FrequencyPreferences,
    FrequencyType,
    NotificationChannel,
    NotificationPreferences,
    QuietHours,
)
from campus_notifications.services.notification_store import NotificationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ICON = "🔔"
ICON_BY_TYPE: Dict[str, str] = {
    NotificationType.ETH_RECEIVED.value: "💰",
    NotificationType.NEW_EVENT.value: "🎉",
    NotificationType.NEW_ORDER.value: "🛒",
    NotificationType.ORDER_STATUS.value: "📦",
    NotificationType.EVENT_REMINDER.value: "⏰",
    NotificationType.ORDER_REFUND.value: "💸",
    NotificationType.WALLET_LOW_BALANCE.value: "⚠️",
    NotificationType.EVENT_REGISTRATION_FULL.value: "🚫",
    NotificationType.PRODUCT_RESTOCKED.value: "📦",
    NotificationType.ADMIN_ANNOUNCEMENT.value: "📢",
    NotificationType.FRIEND_REQUEST.value: "👥",
    NotificationType.ACHIEVEMENT_UNLOCKED.value: "🏆",
    NotificationType.SECURITY_ALERT.value: "🔒",
    NotificationType.MAINTENANCE_SCHEDULED.value: "🔧",
}

DEFAULT_COLOR_CLASS = "text-blue-600"
COLOR_CLASS_BY_PRIORITY: Dict[str, str] = {
    NotificationPriority.LOW.value: "text-gray-600",
    NotificationPriority.MEDIUM.value: DEFAULT_COLOR_CLASS,
    NotificationPriority.HIGH.value: "text-orange-600",
    NotificationPriority.URGENT.value: "text-red-600",
}

JUST_NOW = "Just now"
YESTERDAY = "Yesterday"
UNKNOWN_DATE = "Unknown date"
MINUTES_PER_DAY = 24 * 60

_datetime_adapter = TypeAdapter(datetime)


# ---------------------------------------------------------------------------
# Pure helpers (no network, no state)
# ---------------------------------------------------------------------------

def icon_for(type_: Any) -> str:
    key = type_.value if isinstance(type_, NotificationType) else type_
    return ICON_BY_TYPE.get(key, DEFAULT_ICON) if isinstance(key, str) else DEFAULT_ICON


def color_class_for(priority: Any) -> str:
    key = priority.value if isinstance(priority, NotificationPriority) else priority
    return COLOR_CLASS_BY_PRIORITY.get(key, DEFAULT_COLOR_CLASS) if isinstance(key, str) else DEFAULT_COLOR_CLASS


def _as_aware_datetime(value: Any) -> Optional[datetime]:
    """datetime, ISO string or epoch milliseconds -> aware datetime (naive input is UTC)."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, datetime):
        try:
            value = _datetime_adapter.validate_python(value)
        except ValidationError:
            return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def relative_time(timestamp: Any, now: Optional[datetime] = None) -> str:
    """
    Short human label for a timestamp.

    Under an hour (or in the future) -> "Just now"; under a day -> "Nh ago";
    under two days -> "Yesterday"; otherwise the local date in the locale's
    format. Unparseable input -> "Unknown date"; an unparseable `now` means
    the current time.
    """
    moment = _as_aware_datetime(timestamp)
    if moment is None:
        return UNKNOWN_DATE
    now = _as_aware_datetime(now) or datetime.now(timezone.utc)
    hours = int((now - moment).total_seconds() // 3600)
    if hours < 1:
        return JUST_NOW
    if hours < 24:
        return f"{hours}h ago"
    if hours < 48:
        return YESTERDAY
    return moment.astimezone().strftime("%x")


def parse_time(value: str) -> int:
    """'HH:MM' -> minutes since midnight."""
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def is_quiet_now(
    quiet_hours: Union[QuietHours, Mapping[str, Any], None],
    now: Optional[datetime] = None,
) -> bool:
    """True when `now` (local time) falls inside the quiet window. Both ends are inclusive."""
    if quiet_hours is None:
        return False
    if not isinstance(quiet_hours, QuietHours):
        try:
            quiet_hours = QuietHours.model_validate(quiet_hours)
        except ValidationError:
            logger.warning("Ignoring malformed quiet hours: %r", quiet_hours)
            return False
    if not quiet_hours.enabled:
        return False

    now = now or datetime.now()
    current = now.hour * 60 + now.minute
    start = parse_time(quiet_hours.start_time)
    end = parse_time(quiet_hours.end_time)
    if start <= end:
        return start <= current <= end
    # window wraps midnight
    return current >= start or current <= end


def should_deliver(notification: Notification, preferences: Optional[NotificationPreferences]) -> bool:
    """In-app delivery check: channel switch first, then the per-type opt-out (missing entry = allowed)."""
    if preferences is None:
        return True
    channel = preferences.in_app
    if not channel.enabled:
        return False
    return channel.types.get(notification.type) is not False


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------

class NotificationService:
    """Notification operations for presentation code. Store errors are logged and re-raised."""

    types = NotificationType
    categories = NotificationCategory
    priorities = NotificationPriority
    channels = NotificationChannel
    frequencies = FrequencyType

    icon_for = staticmethod(icon_for)
    color_class_for = staticmethod(color_class_for)
    relative_time = staticmethod(relative_time)
    should_deliver = staticmethod(should_deliver)
    is_quiet_now = staticmethod(is_quiet_now)
    parse_time = staticmethod(parse_time)

    def __init__(self, store: NotificationStore):
        self.store = store

    async def _call(self, action: str, call: Awaitable[T]) -> T:
        try:
            return await call
        except NotificationError as exc:
            logger.error("NotificationService: error %s: %s", action, exc.message)
            raise

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_user_notifications(self, page: int = 1, limit: Optional[int] = None) -> NotificationPage:
        return await self._call("getting user notifications", self.store.get_user_notifications(page, limit))

    async def get_notifications_with_filters(
        self, filters: Union[NotificationFilters, Dict[str, Any], None] = None
    ) -> NotificationPage:
        return await self._call(
            "getting filtered notifications", self.store.get_notifications_with_filters(filters)
        )

    async def search_notifications(self, query: str) -> NotificationPage:
        return await self._call("searching notifications", self.store.search_notifications(query))

    async def get_notification_stats(self) -> NotificationStats:
        return await self._call("getting notification stats", self.store.get_notification_stats())

    async def get_important_notifications(self) -> NotificationPage:
        return await self._call("getting important notifications", self.store.get_important_notifications())

    async def get_notifications_by_category(self, category: Union[NotificationCategory, str]) -> NotificationPage:
        return await self._call(
            "getting notifications by category", self.store.get_notifications_by_category(category)
        )

    async def get_unread_count(self) -> int:
        return await self._call("getting unread count", self.store.get_unread_count())

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def mark_notification_as_read(self, notification_id: str) -> Dict[str, Any]:
        return await self._call(
            "marking notification as read", self.store.mark_notification_as_read(notification_id)
        )

    async def mark_notification_as_important(self, notification_id: str, is_important: bool) -> Dict[str, Any]:
        return await self._call(
            "marking notification as important",
            self.store.mark_notification_as_important(notification_id, is_important),
        )

    async def mark_all_notifications_as_read(self) -> Dict[str, Any]:
        return await self._call(
            "marking all notifications as read", self.store.mark_all_notifications_as_read()
        )

    async def delete_notification(self, notification_id: str) -> Dict[str, Any]:
        return await self._call("deleting notification", self.store.delete_notification(notification_id))

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def get_notification_preferences(self) -> NotificationPreferences:
        return await self._call("getting preferences", self.store.get_notification_preferences())

    async def update_notification_preferences(
        self, preferences: Union[NotificationPreferences, Dict[str, Any]]
    ) -> NotificationPreferences:
        return await self._call(
            "updating preferences", self.store.update_notification_preferences(preferences)
        )

    async def update_notification_type_preference(
        self,
        type_: str,
        channel: Union[NotificationChannel, str] = NotificationChannel.IN_APP,
        enabled: bool = True,
    ) -> NotificationPreferences:
        return await self._call(
            "updating type preference",
            self.store.update_notification_type_preference(type_, channel, enabled),
        )

    async def update_frequency_preferences(
        self, frequency: Union[FrequencyPreferences, Dict[str, Any]]
    ) -> NotificationPreferences:
        return await self._call(
            "updating frequency preferences", self.store.update_frequency_preferences(frequency)
        )

    async def update_quiet_hours(self, quiet_hours: Union[QuietHours, Dict[str, Any]]) -> NotificationPreferences:
        return await self._call("updating quiet hours", self.store.update_quiet_hours(quiet_hours))

    async def reset_notification_preferences(self) -> NotificationPreferences:
        return await self._call("resetting preferences", self.store.reset_notification_preferences())

    # ------------------------------------------------------------------
    # Factory helpers: local confirmation records, never sent to the server
    # ------------------------------------------------------------------

    def create_notification(
        self,
        type_: str,
        title: Any,
        message: Any = "",
        data: Optional[Dict[str, Any]] = None,
        **extra: Any,
    ) -> Notification:
        notification_id = extra.pop("notification_id", None) or f"local-{uuid.uuid4().hex}"
        return self.store.create_notification(
            type_, title, message, data, notification_id=notification_id, **extra
        )

    def order_success_notification(self, order: Mapping[str, Any]) -> Notification:
        return self.create_notification(
            NotificationType.ORDER_STATUS.value,
            "Order Successful!",
            f"You have successfully ordered {order.get('quantity')}x \"{order.get('productName')}\" "
            f"for {order.get('total')} coins",
            {
                "orderId": order.get("orderId"),
                "productId": order.get("productId"),
                "quantity": order.get("quantity"),
                "total": order.get("total"),
            },
            category=NotificationCategory.ORDER,
            priority=NotificationPriority.MEDIUM,
            action_url="/student/transactions",
            action_text="View Order",
        )

    def event_registration_notification(self, event: Mapping[str, Any]) -> Notification:
        return self.create_notification(
            NotificationType.EVENT_REMINDER.value,
            "Event Registration Confirmed!",
            f"You have successfully registered for \"{event.get('eventName')}\" on {event.get('eventDate')}",
            {
                "eventId": event.get("eventId"),
                "eventName": event.get("eventName"),
                "eventDate": event.get("eventDate"),
                "registrationId": event.get("registrationId"),
            },
            category=NotificationCategory.EVENT,
            priority=NotificationPriority.MEDIUM,
            action_url="/student/events",
            action_text="View Event",
        )

    def _new_order_notification(self, order: Mapping[str, Any], action_url: str) -> Notification:
        return self.create_notification(
            NotificationType.NEW_ORDER.value,
            "New Order Received!",
            f"{order.get('studentName')} ordered {order.get('quantity')}x \"{order.get('productName')}\" "
            f"- Total: {order.get('total')} coins",
            {
                "orderId": order.get("orderId"),
                "studentId": order.get("studentId"),
                "studentName": order.get("studentName"),
                "productId": order.get("productId"),
                "productName": order.get("productName"),
                "quantity": order.get("quantity"),
                "total": order.get("total"),
            },
            category=NotificationCategory.ORDER,
            priority=NotificationPriority.HIGH,
            action_url=action_url,
            action_text="View Order",
        )

    def new_order_admin_notification(self, order: Mapping[str, Any]) -> Notification:
        return self._new_order_notification(order, "/admin/orders")

    def new_order_seller_notification(self, order: Mapping[str, Any]) -> Notification:
        return self._new_order_notification(order, "/seller/orders")

    def student_joined_event_notification(self, registration: Mapping[str, Any]) -> Notification:
        """Admin-side record for a student registering to an event."""
        return self.create_notification(
            NotificationType.NEW_EVENT.value,
            "Student Joined Event!",
            f"{registration.get('studentName')} joined \"{registration.get('eventName')}\"",
            {
                "eventId": registration.get("eventId"),
                "eventName": registration.get("eventName"),
                "studentId": registration.get("studentId"),
                "studentName": registration.get("studentName"),
                "registrationId": registration.get("registrationId"),
            },
            category=NotificationCategory.EVENT,
            priority=NotificationPriority.MEDIUM,
            action_url="/admin/events",
            action_text="View Event",
        )
