"""Notifications router: the shared state exposed to presentation consumers."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, status

from campus_notifications.api.dependencies import SharedState
from campus_notifications.schemas.notification import (
    ImportanceUpdate,
    LocalNotificationCreate,
    NotificationCategory,
    NotificationFilters,
    NotificationPage,
    NotificationPriority,
)
from campus_notifications.schemas.preferences import (
    FrequencyPreferences,
    NotificationPreferences,
    QuietHours,
    TypePreferenceUpdate,
)
from campus_notifications.services.notification_state import NotificationState

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _failed(state: NotificationState) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail={
            "code": "notification_upstream_error",
            "message": state.error or "Notification request failed",
            "retriable": True,
        },
    )


def _page(state: NotificationState, page: Optional[NotificationPage]) -> Dict[str, Any]:
    if page is None:
        raise _failed(state)
    return page.to_wire()


def _preferences(state: NotificationState, preferences: Optional[NotificationPreferences]) -> Dict[str, Any]:
    if preferences is None:
        raise _failed(state)
    return {"preferences": preferences.to_wire()}


@router.get("")
def get_state(state: SharedState):
    """Current list, unread count, preferences, stats, loading flag and error."""
    return state.snapshot().to_wire()


@router.post("/refresh")
async def refresh(state: SharedState):
    await state.refresh()
    return state.snapshot().to_wire()


@router.post("/retry")
async def retry(state: SharedState):
    """Clear the error and run the initial load again."""
    await state.retry()
    return state.snapshot().to_wire()


@router.delete("/error")
async def clear_error(state: SharedState):
    state.clear_error()
    return state.snapshot().to_wire()


# ------------------------------------------------------------------
# Queries (leave the shared list untouched)
# ------------------------------------------------------------------

@router.get("/filtered")
async def filtered(
    state: SharedState,
    read: Optional[bool] = Query(None),
    category: Optional[NotificationCategory] = Query(None),
    priority: Optional[NotificationPriority] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    page: Optional[int] = Query(None, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
):
    filters = NotificationFilters(
        read=read, category=category, priority=priority, sort_by=sort_by, page=page, limit=limit
    )
    return _page(state, await state.get_filtered_notifications(filters))


@router.get("/search")
async def search(state: SharedState, q: str = Query(..., min_length=1)):
    return _page(state, await state.search_notifications(q))


@router.get("/important")
async def important(state: SharedState):
    return _page(state, await state.get_important_notifications())


@router.get("/category/{category}")
async def by_category(category: NotificationCategory, state: SharedState):
    return _page(state, await state.get_notifications_by_category(category))


# ------------------------------------------------------------------
# Actions
# ------------------------------------------------------------------

@router.patch("/read-all")
async def mark_all_read(state: SharedState):
    if not await state.mark_all_as_read():
        raise _failed(state)
    return state.snapshot().to_wire()


@router.patch("/{notification_id}/read")
async def mark_read(notification_id: str, state: SharedState):
    if not await state.mark_as_read(notification_id):
        raise _failed(state)
    return state.snapshot().to_wire()


@router.patch("/{notification_id}/important")
async def mark_important(notification_id: str, body: ImportanceUpdate, state: SharedState):
    if not await state.mark_as_important(notification_id, body.is_important):
        raise _failed(state)
    return state.snapshot().to_wire()


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str, state: SharedState):
    if not await state.delete_notification(notification_id):
        raise _failed(state)
    return state.snapshot().to_wire()


@router.post("/local", status_code=status.HTTP_201_CREATED)
async def show_local(body: LocalNotificationCreate, state: SharedState):
    """Prepend a local, never-persisted notification. `shown` is False when suppressed or duplicate."""
    shown = state.show_local_notification(
        body.title,
        message=body.message,
        body=body.body,
        type_=body.type,
        category=body.category,
        priority=body.priority,
        notification_id=body.id,
        data=body.data,
        action_url=body.action_url,
        action_text=body.action_text,
    )
    return {"shown": shown, "state": state.snapshot().to_wire()}


# ------------------------------------------------------------------
# Preferences
# ------------------------------------------------------------------

@router.get("/preferences")
def get_preferences(state: SharedState):
    preferences = state.preferences
    return {"preferences": preferences.to_wire() if preferences else None}


@router.put("/preferences")
async def update_preferences(body: NotificationPreferences, state: SharedState):
    return _preferences(state, await state.update_preferences(body))


@router.put("/preferences/type")
async def update_type_preference(body: TypePreferenceUpdate, state: SharedState):
    return _preferences(state, await state.update_type_preference(body.type, body.enabled, body.channel))


@router.put("/preferences/frequency")
async def update_frequency(body: FrequencyPreferences, state: SharedState):
    return _preferences(state, await state.update_frequency(body))


@router.put("/preferences/quiet-hours")
async def update_quiet_hours(body: QuietHours, state: SharedState):
    return _preferences(state, await state.update_quiet_hours(body))


@router.post("/preferences/reset")
async def reset_preferences(state: SharedState):
    return _preferences(state, await state.reset_preferences())
