"""Notification schemas."""
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Notification types pushed by the server."""
    ETH_RECEIVED = "eth_received"
    NEW_EVENT = "new_event"
    NEW_ORDER = "new_order"
    ORDER_STATUS = "order_status"
    EVENT_REMINDER = "event_reminder"
    ORDER_REFUND = "order_refund"
    WALLET_LOW_BALANCE = "wallet_low_balance"
    EVENT_REGISTRATION_FULL = "event_registration_full"
    PRODUCT_RESTOCKED = "product_restocked"
    ADMIN_ANNOUNCEMENT = "admin_announcement"
    FRIEND_REQUEST = "friend_request"
    ACHIEVEMENT_UNLOCKED = "achievement_unlocked"
    SECURITY_ALERT = "security_alert"
    MAINTENANCE_SCHEDULED = "maintenance_scheduled"
    INFO = "info"                      # locally synthesized feedback


class NotificationCategory(str, Enum):
    PAYMENT = "payment"
    EVENT = "event"
    ORDER = "order"
    SYSTEM = "system"
    SOCIAL = "social"
    SECURITY = "security"
    ACHIEVEMENT = "achievement"


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


CATEGORY_BY_TYPE: Dict[str, NotificationCategory] = {
    NotificationType.ETH_RECEIVED.value: NotificationCategory.PAYMENT,
    NotificationType.NEW_EVENT.value: NotificationCategory.EVENT,
    NotificationType.NEW_ORDER.value: NotificationCategory.ORDER,
    NotificationType.ORDER_STATUS.value: NotificationCategory.ORDER,
    NotificationType.ORDER_REFUND.value: NotificationCategory.ORDER,
    NotificationType.EVENT_REMINDER.value: NotificationCategory.EVENT,
    NotificationType.WALLET_LOW_BALANCE.value: NotificationCategory.SYSTEM,
    NotificationType.EVENT_REGISTRATION_FULL.value: NotificationCategory.EVENT,
    NotificationType.PRODUCT_RESTOCKED.value: NotificationCategory.ORDER,
    NotificationType.ADMIN_ANNOUNCEMENT.value: NotificationCategory.SYSTEM,
    NotificationType.FRIEND_REQUEST.value: NotificationCategory.SOCIAL,
    NotificationType.ACHIEVEMENT_UNLOCKED.value: NotificationCategory.ACHIEVEMENT,
    NotificationType.SECURITY_ALERT.value: NotificationCategory.SECURITY,
    NotificationType.MAINTENANCE_SCHEDULED.value: NotificationCategory.SYSTEM,
}

PRIORITY_BY_TYPE: Dict[str, NotificationPriority] = {
    NotificationType.ETH_RECEIVED.value: NotificationPriority.HIGH,
    NotificationType.SECURITY_ALERT.value: NotificationPriority.URGENT,
    NotificationType.WALLET_LOW_BALANCE.value: NotificationPriority.HIGH,
    NotificationType.ORDER_REFUND.value: NotificationPriority.HIGH,
    NotificationType.ADMIN_ANNOUNCEMENT.value: NotificationPriority.MEDIUM,
    NotificationType.NEW_EVENT.value: NotificationPriority.MEDIUM,
    NotificationType.EVENT_REMINDER.value: NotificationPriority.LOW,
    NotificationType.PRODUCT_RESTOCKED.value: NotificationPriority.LOW,
    NotificationType.FRIEND_REQUEST.value: NotificationPriority.LOW,
    NotificationType.ACHIEVEMENT_UNLOCKED.value: NotificationPriority.MEDIUM,
    NotificationType.MAINTENANCE_SCHEDULED.value: NotificationPriority.MEDIUM,
}

TITLE_PLACEHOLDER = "No title"


def category_for_type(type_: str) -> NotificationCategory:
    return CATEGORY_BY_TYPE.get(type_, NotificationCategory.SYSTEM)


def priority_for_type(type_: str) -> NotificationPriority:
    return PRIORITY_BY_TYPE.get(type_, NotificationPriority.MEDIUM)


def coerce_display_text(value: Any, fallback: str = "") -> str:
    """
    Best-effort string for a display field that may arrive as anything.

    Strings pass through; numbers and booleans are stringified; mappings
    yield their `title`, else `message`, else `name`, else their JSON text;
    anything else yields `fallback`. Never raises.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in ("title", "message", "name"):
            if value.get(key):
                return coerce_display_text(value[key], fallback)
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return fallback
    if isinstance(value, (list, tuple)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return fallback
    return fallback


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


class CamelModel(BaseModel):
    """Wire models: camelCase on the wire, snake_case in Python, immutable once built."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Notification(CamelModel):
    """One notification record, normalized at ingestion."""
    id: str = Field(validation_alias=AliasChoices("_id", "id"), serialization_alias="_id")
    type: str = NotificationType.INFO.value
    title: str = TITLE_PLACEHOLDER
    message: str = ""
    category: NotificationCategory = NotificationCategory.SYSTEM
    priority: NotificationPriority = NotificationPriority.MEDIUM
    read: bool = False
    read_at: Optional[datetime] = None
    is_important: bool = False
    action_url: Optional[str] = None
    action_text: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    data: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def normalize_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        type_ = coerce_display_text(data.get("type"), NotificationType.INFO.value) or NotificationType.INFO.value
        data["type"] = type_
        data["title"] = coerce_display_text(data.get("title"), TITLE_PLACEHOLDER)
        data["message"] = coerce_display_text(data.get("message"), "")

        if data.get("category") not in NotificationCategory._value2member_map_:
            data["category"] = category_for_type(type_)
        if data.get("priority") not in NotificationPriority._value2member_map_:
            data["priority"] = priority_for_type(type_)

        for name in ("createdAt", "created_at"):
            if data.get(name) is None:
                data.pop(name, None)
        if "createdAt" not in data and "created_at" not in data and data.get("timestamp"):
            data["createdAt"] = data["timestamp"]
        if data.get("data") is None:
            data["data"] = {}

        # readAt is present exactly when the record is read
        read = bool(_pick(data, "read"))
        data["read"] = read
        read_at = _pick(data, "readAt", "read_at")
        data.pop("read_at", None)
        data["readAt"] = (read_at or datetime.now(timezone.utc)) if read else None
        return data

    @field_validator("id", mode="before")
    @classmethod
    def id_as_string(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("action_url", "action_text", mode="before")
    @classmethod
    def optional_text(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return coerce_display_text(value) or None

    def marked_read(self, at: Optional[datetime] = None) -> "Notification":
        if self.read:
            return self
        return self.model_copy(update={"read": True, "read_at": at or datetime.now(timezone.utc)})

    def with_importance(self, is_important: bool) -> "Notification":
        return self.model_copy(update={"is_important": is_important})


def parse_notifications(items: Any) -> List[Notification]:
    """Validate a list of wire records: invalid entries are skipped, duplicate ids keep the first one."""
    if not isinstance(items, (list, tuple)):
        return []
    parsed: List[Notification] = []
    seen = set()
    for item in items:
        try:
            notification = Notification.model_validate(item)
        except ValidationError as exc:
            logger.warning("Skipping malformed notification record: %s", exc.errors()[:1])
            continue
        if notification.id in seen:
            continue
        seen.add(notification.id)
        parsed.append(notification)
    return parsed


def dedupe(notifications: Iterable[Notification]) -> List[Notification]:
    result: List[Notification] = []
    seen = set()
    for notification in notifications:
        if notification.id not in seen:
            seen.add(notification.id)
            result.append(notification)
    return result


class Pagination(CamelModel):
    current_page: int = 1
    total_pages: int = 1
    total_notifications: int = 0
    has_more: bool = False


class NotificationPage(CamelModel):
    """Notification list response: one page plus the server's unread count."""
    notifications: List[Notification] = Field(default_factory=list)
    pagination: Optional[Pagination] = None
    unread_count: int = 0

    @classmethod
    def from_body(cls, body: Any) -> "NotificationPage":
        if isinstance(body, list):
            body = {"notifications": body}
        if not isinstance(body, dict):
            body = {}
        pagination = body.get("pagination")
        unread = body.get("unreadCount", body.get("unread_count"))
        return cls(
            notifications=parse_notifications(body.get("notifications")),
            pagination=Pagination.model_validate(pagination) if isinstance(pagination, dict) else None,
            unread_count=unread if isinstance(unread, int) and unread >= 0 else 0,
        )


class NotificationStats(CamelModel):
    total: int = 0
    unread: int = 0
    important: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)

    @classmethod
    def from_body(cls, body: Any) -> "NotificationStats":
        if isinstance(body, dict) and isinstance(body.get("stats"), dict):
            body = body["stats"]
        return cls.model_validate(body if isinstance(body, dict) else {})


class NotificationFilters(CamelModel):
    """Query for GET /filtered. Unset fields are not sent."""
    read: Optional[bool] = None
    category: Optional[NotificationCategory] = None
    priority: Optional[NotificationPriority] = None
    sort_by: Optional[str] = None
    page: Optional[int] = Field(default=None, ge=1)
    limit: Optional[int] = Field(default=None, ge=1, le=100)

    def to_query(self) -> Dict[str, str]:
        query: Dict[str, str] = {}
        for key, value in self.model_dump(by_alias=True, exclude_none=True, mode="json").items():
            if isinstance(value, bool):
                query[key] = "true" if value else "false"
            else:
                query[key] = str(value)
        return query


# ---------------------------------------------------------------------------
# Boundary request bodies
# ---------------------------------------------------------------------------

class ImportanceUpdate(CamelModel):
    is_important: bool


class LocalNotificationCreate(CamelModel):
    """Body of POST /notifications/local. `body` wins over `message` when both are given."""
    title: Any = None
    message: Any = None
    body: Any = None
    type: str = NotificationType.INFO.value
    category: NotificationCategory = NotificationCategory.SYSTEM
    priority: NotificationPriority = NotificationPriority.MEDIUM
    id: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    action_url: Optional[str] = None
    action_text: Optional[str] = None
