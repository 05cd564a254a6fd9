"""Wire parsing and normalization of notification records, pages and preferences."""
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from campus_notifications.schemas.notification import (
    TITLE_PLACEHOLDER,
    Notification,
    NotificationCategory,
    NotificationFilters,
    NotificationPage,
    NotificationPriority,
    NotificationStats,
    coerce_display_text,
    dedupe,
    parse_notifications,
)
from campus_notifications.schemas.preferences import (
    FrequencyType,
    NotificationChannel,
    NotificationPreferences,
    QuietHours,
    default_preferences,
)
from tests.fakes import make_notification


@pytest.mark.parametrize(
    "value,expected",
    [
        ("Hello", "Hello"),
        (42, "42"),
        (True, "true"),
        ({"title": "Nested title"}, "Nested title"),
        ({"message": "From message"}, "From message"),
        ({"name": "From name"}, "From name"),
        ({"title": {"name": "Deep"}}, "Deep"),
        (None, TITLE_PLACEHOLDER),
    ],
)
def test_coerce_display_text(value, expected):
    assert coerce_display_text(value, TITLE_PLACEHOLDER) == expected


def test_coerce_display_text_falls_back_to_json():
    assert coerce_display_text({"amount": 5}) == '{"amount": 5}'


def test_object_title_is_flattened_on_ingestion():
    notification = Notification.model_validate(make_notification("n1", title={"message": "Welcome"}))
    assert notification.title == "Welcome"


def test_missing_title_gets_placeholder():
    record = make_notification("n1")
    del record["title"]
    assert Notification.model_validate(record).title == TITLE_PLACEHOLDER


def test_accepts_id_alias_and_numeric_id():
    record = make_notification("ignored")
    del record["_id"]
    record["id"] = 17
    notification = Notification.model_validate(record)
    assert notification.id == "17"
    assert notification.to_wire()["_id"] == "17"


def test_unknown_category_and_priority_are_derived_from_type():
    notification = Notification.model_validate(
        make_notification("n1", type="security_alert", category="bogus", priority=None)
    )
    assert notification.category == NotificationCategory.SECURITY
    assert notification.priority == NotificationPriority.URGENT


def test_read_record_without_read_at_gets_one():
    notification = Notification.model_validate(make_notification("n1", read=True))
    assert notification.read is True
    assert notification.read_at is not None


def test_unread_record_drops_read_at():
    notification = Notification.model_validate(
        make_notification("n1", read=False, readAt="2026-01-09T08:00:00Z")
    )
    assert notification.read_at is None


def test_timestamp_is_used_when_created_at_is_missing():
    record = make_notification("n1")
    del record["createdAt"]
    record["timestamp"] = "2026-02-01T10:00:00Z"
    notification = Notification.model_validate(record)
    assert notification.created_at == datetime(2026, 2, 1, 10, 0, tzinfo=timezone.utc)


def test_records_are_immutable():
    notification = Notification.model_validate(make_notification("n1"))
    with pytest.raises(ValidationError):
        notification.title = "changed"


def test_marked_read_returns_patched_copy():
    original = Notification.model_validate(make_notification("n1"))
    patched = original.marked_read()
    assert original.read is False
    assert patched.read is True
    assert patched.read_at is not None


def test_parse_notifications_skips_invalid_and_duplicates():
    parsed = parse_notifications([
        make_notification("a", title="first"),
        {"title": "no id"},
        make_notification("a", title="second"),
        make_notification("b"),
    ])
    assert [n.id for n in parsed] == ["a", "b"]
    assert parsed[0].title == "first"


def test_dedupe_keeps_first_occurrence():
    a1 = Notification.model_validate(make_notification("a", title="one"))
    a2 = Notification.model_validate(make_notification("a", title="two"))
    assert dedupe([a1, a2]) == [a1]


def test_page_from_body_accepts_bare_list():
    page = NotificationPage.from_body([make_notification("a")])
    assert len(page.notifications) == 1
    assert page.unread_count == 0


def test_page_from_body_reads_pagination_and_unread_count():
    page = NotificationPage.from_body({
        "notifications": [make_notification("a")],
        "pagination": {"currentPage": 2, "totalPages": 3, "totalNotifications": 41, "hasMore": True},
        "unreadCount": 7,
    })
    assert page.pagination.current_page == 2
    assert page.pagination.has_more is True
    assert page.unread_count == 7


def test_stats_unwraps_envelope():
    stats = NotificationStats.from_body({"stats": {"total": 3, "unread": 1, "byCategory": {"event": 2}}})
    assert stats.total == 3
    assert stats.by_category == {"event": 2}
    assert NotificationStats.from_body(None) == NotificationStats()


def test_filters_to_query_omits_unset_fields():
    filters = NotificationFilters(read=False, category="order", sort_by="createdAt")
    assert filters.to_query() == {"read": "false", "category": "order", "sortBy": "createdAt"}


def test_default_preferences():
    preferences = default_preferences()
    assert preferences.in_app.enabled is True
    assert preferences.push.enabled is False
    assert preferences.frequency.type == FrequencyType.INSTANT
    assert preferences.frequency.digest_time == "09:00"
    assert preferences.quiet_hours.enabled is False
    assert (preferences.quiet_hours.start_time, preferences.quiet_hours.end_time) == ("22:00", "08:00")
    assert preferences.channel(NotificationChannel.PUSH) is preferences.push


def test_preferences_round_trip_camel_case():
    wire = {
        "inApp": {"enabled": True, "types": {"new_event": False}},
        "frequency": {"type": "digest", "digestTime": "18:30", "weeklyDay": "friday"},
        "quietHours": {"enabled": True, "startTime": "23:00", "endTime": "07:00"},
    }
    preferences = NotificationPreferences.model_validate(wire)
    dumped = preferences.to_wire()
    assert dumped["inApp"]["types"] == {"new_event": False}
    assert dumped["frequency"]["digestTime"] == "18:30"
    assert dumped["quietHours"]["startTime"] == "23:00"


def test_quiet_hours_rejects_bad_time():
    with pytest.raises(ValidationError):
        QuietHours(enabled=True, start_time="25:00", end_time="08:00")
