"""Notification store: REST calls plus the canonical client-side list and preferences."""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
from pydantic import ValidationError

from campus_notifications.core.config import settings
from campus_notifications.core.errors import (
    MSG_INVALID_RESPONSE,
    NotificationAPIError,
    NotificationError,
    NotificationNetworkError,
    message_from_body,
)
from campus_notifications.schemas.notification import (
    Notification,
    NotificationCategory,
    NotificationFilters,
    NotificationPage,
    NotificationStats,
    category_for_type,
    priority_for_type,
)
from campus_notifications.schemas.preferences import (
    FrequencyPreferences,
    NotificationChannel,
    NotificationPreferences,
    QuietHours,
    TypePreferenceUpdate,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]


@dataclass(frozen=True)
class StoreSnapshot:
    notifications: Tuple[Notification, ...]
    preferences: Optional[NotificationPreferences]


StoreListener = Callable[[StoreSnapshot], None]


class NotificationStore:
    """
    Owns the notification list and preferences of one session.

    Only the unfiltered paginated fetch replaces `notifications`; filtered,
    search, stats, category and important queries just return results.
    Mutations are server-confirmed: the REST call runs first and the local
    change (plus one listener notification) happens only on success.
    """

    def __init__(self, client: httpx.AsyncClient, token_provider: TokenProvider):
        self.client = client
        self._token_provider = token_provider
        self._notifications: List[Notification] = []
        self._preferences: Optional[NotificationPreferences] = None
        self._listeners: List[StoreListener] = []

    @classmethod
    def create_client(cls, base_url: Optional[str] = None, **kwargs: Any) -> httpx.AsyncClient:
        """AsyncClient pointed at the notification API (trailing slash so relative paths append)."""
        base_url = (base_url or settings.NOTIFICATION_API_URL).rstrip("/") + "/"
        kwargs.setdefault("timeout", settings.REQUEST_TIMEOUT_SECONDS)
        return httpx.AsyncClient(base_url=base_url, **kwargs)

    @property
    def notifications(self) -> Tuple[Notification, ...]:
        return tuple(self._notifications)

    @property
    def preferences(self) -> Optional[NotificationPreferences]:
        return self._preferences

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener; returns the matching unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            self.unsubscribe(listener)

        return unsubscribe

    def unsubscribe(self, listener: StoreListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def snapshot(self) -> StoreSnapshot:
        return StoreSnapshot(notifications=tuple(self._notifications), preferences=self._preferences)

    def _notify_listeners(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Notification store listener failed")

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self._token_provider()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        failure_message: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
    ) -> Any:
        try:
            response = await self.client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(),
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, path or "/", exc)
            raise NotificationNetworkError() from exc

        try:
            body = response.json() if response.content else {}
        except ValueError:
            body = None

        if response.is_error:
            raise NotificationAPIError(
                message_from_body(body) or failure_message,
                status_code=response.status_code,
            )
        if body is None:
            raise NotificationAPIError(MSG_INVALID_RESPONSE, status_code=response.status_code)
        return body

    @staticmethod
    def _parse(parser: Callable[[Any], Any], body: Any) -> Any:
        try:
            return parser(body)
        except ValidationError as exc:
            raise NotificationError(MSG_INVALID_RESPONSE) from exc

    @staticmethod
    def _input(model: Any, value: Any, what: str) -> Any:
        try:
            return model.model_validate(value)
        except ValidationError as exc:
            raise NotificationError(f"Invalid {what}") from exc

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_user_notifications(self, page: int = 1, limit: Optional[int] = None) -> NotificationPage:
        """Fetch one page and make it the canonical list."""
        limit = limit or settings.DEFAULT_PAGE_SIZE
        body = await self._request(
            "GET", "", "Failed to fetch notifications", params={"page": page, "limit": limit}
        )
        result = self._parse(NotificationPage.from_body, body)
        self._notifications = list(result.notifications)
        self._notify_listeners()
        return result

    async def get_notifications_with_filters(
        self, filters: Union[NotificationFilters, Dict[str, Any], None] = None
    ) -> NotificationPage:
        if not isinstance(filters, NotificationFilters):
            filters = self._input(NotificationFilters, filters or {}, "notification filters")
        body = await self._request(
            "GET", "filtered", "Failed to fetch filtered notifications", params=filters.to_query()
        )
        return self._parse(NotificationPage.from_body, body)

    async def search_notifications(self, query: str) -> NotificationPage:
        body = await self._request("GET", "search", "Failed to search notifications", params={"q": query})
        return self._parse(NotificationPage.from_body, body)

    async def get_notification_stats(self) -> NotificationStats:
        body = await self._request("GET", "stats", "Failed to fetch notification stats")
        return self._parse(NotificationStats.from_body, body)

    async def get_important_notifications(self) -> NotificationPage:
        body = await self._request("GET", "important", "Failed to fetch important notifications")
        return self._parse(NotificationPage.from_body, body)

    async def get_notifications_by_category(self, category: Union[NotificationCategory, str]) -> NotificationPage:
        try:
            category = NotificationCategory(category)
        except ValueError as exc:
            raise NotificationError(f"Unknown notification category: {category}") from exc
        body = await self._request(
            "GET", f"category/{category.value}", "Failed to fetch notifications by category"
        )
        return self._parse(NotificationPage.from_body, body)

    async def get_unread_count(self) -> int:
        body = await self._request("GET", "unread-count", "Failed to fetch unread count")
        count = body.get("unreadCount") if isinstance(body, dict) else None
        if not isinstance(count, int) or isinstance(count, bool):
            raise NotificationError(MSG_INVALID_RESPONSE)
        return max(count, 0)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def mark_notification_as_read(self, notification_id: str) -> Dict[str, Any]:
        body = await self._request(
            "PUT", f"{notification_id}/read", "Failed to mark notification as read"
        )
        read_at = datetime.now(timezone.utc)
        self._notifications = [
            n.marked_read(read_at) if n.id == notification_id else n for n in self._notifications
        ]
        self._notify_listeners()
        return body

    async def mark_notification_as_important(self, notification_id: str, is_important: bool) -> Dict[str, Any]:
        body = await self._request(
            "PUT",
            f"{notification_id}/important",
            "Failed to mark notification as important",
            json={"isImportant": is_important},
        )
        self._notifications = [
            n.with_importance(is_important) if n.id == notification_id else n for n in self._notifications
        ]
        self._notify_listeners()
        return body

    async def mark_all_notifications_as_read(self) -> Dict[str, Any]:
        body = await self._request("PUT", "mark-all-read", "Failed to mark all notifications as read")
        read_at = datetime.now(timezone.utc)
        self._notifications = [n.marked_read(read_at) for n in self._notifications]
        self._notify_listeners()
        return body

    async def delete_notification(self, notification_id: str) -> Dict[str, Any]:
        body = await self._request("DELETE", notification_id, "Failed to delete notification")
        self._notifications = [n for n in self._notifications if n.id != notification_id]
        self._notify_listeners()
        return body

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def _accept_preferences(self, body: Any) -> NotificationPreferences:
        raw = body.get("preferences") if isinstance(body, dict) else None
        if not isinstance(raw, dict):
            raise NotificationError(MSG_INVALID_RESPONSE)
        preferences = self._parse(NotificationPreferences.model_validate, raw)
        self._preferences = preferences
        self._notify_listeners()
        return preferences

    async def get_notification_preferences(self) -> NotificationPreferences:
        body = await self._request("GET", "preferences", "Failed to fetch notification preferences")
        return self._accept_preferences(body)

    async def update_notification_preferences(
        self, preferences: Union[NotificationPreferences, Dict[str, Any]]
    ) -> NotificationPreferences:
        if not isinstance(preferences, NotificationPreferences):
            preferences = self._input(NotificationPreferences, preferences, "notification preferences")
        body = await self._request(
            "PUT",
            "preferences",
            "Failed to update notification preferences",
            json={"preferences": preferences.to_wire()},
        )
        return self._accept_preferences(body)

    async def update_notification_type_preference(
        self,
        type_: str,
        channel: Union[NotificationChannel, str] = NotificationChannel.IN_APP,
        enabled: bool = True,
    ) -> NotificationPreferences:
        update = self._input(
            TypePreferenceUpdate, {"type": type_, "channel": channel, "enabled": enabled}, "type preference"
        )
        body = await self._request(
            "PUT",
            "preferences/type",
            "Failed to update notification type preference",
            json=update.to_wire(),
        )
        return self._accept_preferences(body)

    async def update_frequency_preferences(
        self, frequency: Union[FrequencyPreferences, Dict[str, Any]]
    ) -> NotificationPreferences:
        if not isinstance(frequency, FrequencyPreferences):
            frequency = self._input(FrequencyPreferences, frequency, "frequency preferences")
        body = await self._request(
            "PUT",
            "preferences/frequency",
            "Failed to update frequency preferences",
            json={"frequency": frequency.to_wire()},
        )
        return self._accept_preferences(body)

    async def update_quiet_hours(self, quiet_hours: Union[QuietHours, Dict[str, Any]]) -> NotificationPreferences:
        if not isinstance(quiet_hours, QuietHours):
            quiet_hours = self._input(QuietHours, quiet_hours, "quiet hours")
        body = await self._request(
            "PUT",
            "preferences/quiet-hours",
            "Failed to update quiet hours",
            json={"quietHours": quiet_hours.to_wire()},
        )
        return self._accept_preferences(body)

    async def reset_notification_preferences(self) -> NotificationPreferences:
        body = await self._request("POST", "preferences/reset", "Failed to reset notification preferences")
        return self._accept_preferences(body)

    # ------------------------------------------------------------------
    # Local records
    # ------------------------------------------------------------------

    @staticmethod
    def create_notification(
        type_: str,
        title: Any,
        message: Any = "",
        data: Optional[Dict[str, Any]] = None,
        *,
        notification_id: str,
        **extra: Any,
    ) -> Notification:
        """Build a notification in memory. It is never sent to the server."""
        return Notification(
            id=notification_id,
            type=type_,
            title=title,
            message=message,
            data=data or {},
            read=False,
            category=extra.pop("category", None) or category_for_type(type_),
            priority=extra.pop("priority", None) or priority_for_type(type_),
            is_important=False,
            created_at=datetime.now(timezone.utc),
            **extra,
        )
