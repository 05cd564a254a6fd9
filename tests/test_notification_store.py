"""NotificationStore against the in-memory notification API."""
import pytest

from campus_notifications.core.errors import (
    MSG_INVALID_RESPONSE,
    MSG_NETWORK_ERROR,
    NotificationAPIError,
    NotificationError,
    NotificationNetworkError,
)
from campus_notifications.schemas.preferences import FrequencyType, NotificationChannel
from campus_notifications.services.notification_store import NotificationStore
from tests.fakes import make_notification, unreachable_client

pytestmark = pytest.mark.anyio


async def test_get_user_notifications_replaces_list_and_notifies(store):
    snapshots = []
    store.subscribe(snapshots.append)

    page = await store.get_user_notifications(1, 50)

    assert [n.id for n in store.notifications] == ["n1", "n2", "n3"]
    assert page.unread_count == 2
    assert page.pagination.total_notifications == 3
    assert len(snapshots) == 1
    assert [n.id for n in snapshots[0].notifications] == ["n1", "n2", "n3"]


async def test_duplicate_ids_from_server_are_dropped(server, store):
    server.notifications.append(make_notification("n1", title="duplicate"))
    await store.get_user_notifications()
    assert [n.id for n in store.notifications] == ["n1", "n2", "n3"]
    assert store.notifications[0].title == "Event n1"


async def test_queries_do_not_touch_the_list(store):
    await store.get_user_notifications()
    before = store.notifications

    filtered = await store.get_notifications_with_filters({"read": False})
    found = await store.search_notifications("coins")
    important = await store.get_important_notifications()
    by_category = await store.get_notifications_by_category("payment")

    assert [n.id for n in filtered.notifications] == ["n1", "n2"]
    assert [n.id for n in found.notifications] == ["n2"]
    assert [n.id for n in important.notifications] == ["n3"]
    assert [n.id for n in by_category.notifications] == ["n2"]
    assert store.notifications == before


async def test_unknown_category_is_rejected_before_the_request(server, store):
    with pytest.raises(NotificationError):
        await store.get_notifications_by_category("gossip")
    assert server.count("category") == 0


async def test_invalid_filters_are_rejected(store):
    with pytest.raises(NotificationError):
        await store.get_notifications_with_filters({"limit": 0})


async def test_stats_and_unread_count(store):
    stats = await store.get_notification_stats()
    assert stats.total == 3
    assert stats.unread == 2
    assert stats.important == 1
    assert stats.by_category == {"event": 2, "payment": 1}
    assert await store.get_unread_count() == 2


async def test_mark_as_read_is_confirmed_then_applied(server, store):
    await store.get_user_notifications()
    snapshots = []
    store.subscribe(snapshots.append)

    await store.mark_notification_as_read("n1")

    target = store.notifications[0]
    assert target.read is True
    assert target.read_at is not None
    assert server.notifications[0]["read"] is True
    assert len(snapshots) == 1


async def test_failed_mutation_leaves_list_untouched(server, store):
    await store.get_user_notifications()
    before = store.notifications
    snapshots = []
    store.subscribe(snapshots.append)
    server.fail("read", 500, "Could not update notification")

    with pytest.raises(NotificationAPIError) as excinfo:
        await store.mark_notification_as_read("n1")

    assert excinfo.value.message == "Could not update notification"
    assert excinfo.value.status_code == 500
    assert excinfo.value.retriable is True
    assert store.notifications == before
    assert snapshots == []


async def test_error_without_server_message_uses_operation_message(server, store):
    server.fail("delete", 403)
    with pytest.raises(NotificationAPIError) as excinfo:
        await store.delete_notification("n1")
    assert excinfo.value.message == "Failed to delete notification"
    assert excinfo.value.retriable is False


async def test_mark_as_important_and_delete(server, store):
    await store.get_user_notifications()

    await store.mark_notification_as_important("n2", True)
    assert store.notifications[1].is_important is True
    assert server.notifications[1]["isImportant"] is True

    await store.delete_notification("n2")
    assert [n.id for n in store.notifications] == ["n1", "n3"]


async def test_mark_all_as_read(store):
    await store.get_user_notifications()
    await store.mark_notification_as_read("n1")
    first_read_at = store.notifications[0].read_at

    await store.mark_all_notifications_as_read()

    assert all(n.read for n in store.notifications)
    assert store.notifications[0].read_at == first_read_at
    assert await store.get_unread_count() == 0


async def test_missing_token_is_rejected_by_server(http_client):
    store = NotificationStore(http_client, lambda: None)
    with pytest.raises(NotificationAPIError) as excinfo:
        await store.get_unread_count()
    assert excinfo.value.status_code == 401
    assert excinfo.value.message == "Not authorized"


async def test_network_failure_raises_generic_message():
    async with unreachable_client() as client:
        store = NotificationStore(client, lambda: "token")
        with pytest.raises(NotificationNetworkError) as excinfo:
            await store.get_user_notifications()
    assert excinfo.value.message == MSG_NETWORK_ERROR
    assert store.notifications == ()


async def test_preferences_round_trip(server, store):
    snapshots = []
    store.subscribe(snapshots.append)

    preferences = await store.get_notification_preferences()
    assert preferences.in_app.enabled is True
    assert store.preferences == preferences

    updated = await store.update_notification_type_preference("new_event", NotificationChannel.IN_APP, False)
    assert updated.in_app.types == {"new_event": False}
    assert server.preferences["inApp"]["types"] == {"new_event": False}

    updated = await store.update_frequency_preferences({"type": "digest", "digestTime": "18:00", "weeklyDay": "friday"})
    assert updated.frequency.type == FrequencyType.DIGEST
    assert updated.frequency.digest_time == "18:00"

    updated = await store.update_quiet_hours({"enabled": True, "startTime": "23:00", "endTime": "07:00"})
    assert updated.quiet_hours.enabled is True

    reset = await store.reset_notification_preferences()
    assert reset.in_app.types == {}
    assert reset.quiet_hours.enabled is False
    assert len(snapshots) == 5


async def test_update_preferences_sends_whole_document(server, store):
    preferences = await store.get_notification_preferences()
    changed = preferences.model_copy(update={"push": preferences.push.model_copy(update={"enabled": True})})

    result = await store.update_notification_preferences(changed)

    assert result.push.enabled is True
    assert server.preferences["push"]["enabled"] is True
    assert server.preferences["quietHours"]["startTime"] == "22:00"


@pytest.mark.parametrize("body", [{"success": True}, {"preferences": None}, {"preferences": []}])
async def test_preference_reply_without_document_is_rejected(server, store, body):
    before = await store.get_notification_preferences()
    snapshots = []
    store.subscribe(snapshots.append)
    server.respond("preferences-reset", body)

    with pytest.raises(NotificationError) as excinfo:
        await store.reset_notification_preferences()

    assert excinfo.value.message == MSG_INVALID_RESPONSE
    assert store.preferences == before
    assert snapshots == []


async def test_invalid_quiet_hours_never_reach_server(server, store):
    with pytest.raises(NotificationError):
        await store.update_quiet_hours({"enabled": True, "startTime": "9pm", "endTime": "07:00"})
    assert server.count("preferences-quiet-hours") == 0


async def test_failing_listener_does_not_block_others(store):
    received = []

    def broken(_snapshot):
        raise RuntimeError("boom")

    store.subscribe(broken)
    store.subscribe(received.append)
    await store.get_user_notifications()
    assert len(received) == 1


async def test_unsubscribe_stops_delivery(store):
    received = []
    unsubscribe = store.subscribe(received.append)
    unsubscribe()
    await store.get_user_notifications()
    assert received == []


async def test_create_notification_is_local_only(server, store):
    notification = store.create_notification("info", {"title": "Saved"}, notification_id="local-1")
    assert notification.title == "Saved"
    assert notification.id == "local-1"
    assert server.calls == []
