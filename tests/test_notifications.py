from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from laundry.application.notifications import (
    REMINDER_TODAY,
    REMINDER_TOMORROW,
    NotificationDispatcher,
    reminder_message,
    shop_zone,
)
from laundry.domain.errors import NotificationNotFound
from laundry.domain.models import Notification
from laundry.infrastructure.db import NOTIFICATIONS

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def dispatcher(store, publisher):
    return NotificationDispatcher(store, publisher)


def test_notify_persists_then_publishes(dispatcher, store, publisher):
    outcome = dispatcher.notify("customer", "c1", "Your order status has been updated to: completed", "o1")

    assert outcome.delivered
    saved = store.find_one(NOTIFICATIONS, {"_id": outcome.notification.id})
    assert saved["read"] is False
    assert saved["recipient_type"] == "customer"
    [event] = publisher.events
    assert event.channel == "private-client-c1"
    assert event.event == "new-notification"
    assert event.payload["id"] == outcome.notification.id
    assert event.payload["related_order_id"] == "o1"


def test_publish_failure_keeps_record(store, failing_publisher):
    dispatcher = NotificationDispatcher(store, failing_publisher)
    outcome = dispatcher.notify("admin", "a1", "New feedback on order 123: 5/5")

    assert not outcome.delivered
    assert outcome.warnings[0].kind == "NotificationDeliveryFailure"
    assert outcome.warnings[0].context["channel"] == "private-admin-a1"
    assert store.find_one(NOTIFICATIONS, {"_id": outcome.notification.id}) is not None


def test_store_failure_still_publishes(dispatcher, store, publisher):
    store.failing = {NOTIFICATIONS}
    outcome = dispatcher.notify("customer", "c1", "hello")

    assert not outcome.delivered
    assert "not saved" in outcome.warnings[0].detail
    assert len(publisher.named("new-notification")) == 1


def test_numeric_recipient_id_is_stringified(dispatcher, store):
    outcome = dispatcher.notify("admin", 7, "hi")
    assert store.find_one(NOTIFICATIONS, {"_id": outcome.notification.id})["recipient_id"] == "7"


@pytest.mark.parametrize(
    "scheduled, expected",
    [
        (NOW, REMINDER_TODAY),
        (NOW + timedelta(hours=20), REMINDER_TOMORROW),
        (NOW.date() + timedelta(days=1), REMINDER_TOMORROW),
        (NOW + timedelta(days=2), None),
        (NOW - timedelta(days=1), None),
        (None, None),
    ],
)
def test_reminder_window(scheduled, expected):
    message = reminder_message(scheduled, "123456789", NOW, timezone.utc)
    assert message == (expected.format(order_id="123456789") if expected else None)


def test_reminder_uses_calendar_days_in_shop_zone():
    manila = ZoneInfo("Asia/Manila")
    # 23:00 local on the 19th, pickup at 01:00 local on the 20th
    now = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)
    scheduled = datetime(2026, 10, 19, 17, 0, tzinfo=timezone.utc)

    assert reminder_message(scheduled, "1", now, manila) == REMINDER_TOMORROW.format(order_id="1")
    assert reminder_message(scheduled, "1", now, timezone.utc) == REMINDER_TODAY.format(order_id="1")


def test_naive_schedule_treated_as_utc():
    assert reminder_message(datetime(2026, 10, 20, 8, 0), "1", NOW, timezone.utc) is not None


def test_shop_zone():
    assert shop_zone("UTC") is timezone.utc
    assert shop_zone("Asia/Manila") == ZoneInfo("Asia/Manila")


def test_list_newest_first(dispatcher, store):
    for n, minutes in (("n-old", 0), ("n-new", 5), ("n-mid", 2)):
        notification = Notification(
            id=n, message=n, recipient_id="c2", recipient_type="customer", timestamp=NOW + timedelta(minutes=minutes)
        )
        store.insert_one(NOTIFICATIONS, notification.to_document())
    dispatcher.notify("admin", "c2", "not for the customer")

    listed = dispatcher.list_for("customer", "c2")
    assert [n.id for n in listed] == ["n-new", "n-mid", "n-old"]


def test_mark_read_publishes_event(dispatcher, publisher):
    notification = dispatcher.notify("customer", "c2", "ready").notification
    publisher.events.clear()

    read, warnings = dispatcher.mark_read(notification.id)

    assert read.read and warnings == []
    assert dispatcher.list_for("customer", "c2", unread_only=True) == []
    [event] = publisher.events
    assert (event.channel, event.event) == ("private-client-c2", "notification-read")
    assert event.payload["notification_id"] == notification.id


def test_mark_read_unknown(dispatcher):
    with pytest.raises(NotificationNotFound):
        dispatcher.mark_read("missing")


def test_mark_all_read(dispatcher, publisher):
    for message in ("one", "two", "three"):
        dispatcher.notify("admin", "a9", message)
    dispatcher.notify("admin", "a8", "other admin")
    publisher.events.clear()

    count, warnings = dispatcher.mark_all_read("admin", "a9")

    assert count == 3 and warnings == []
    assert publisher.events[0].channel == "private-admin-a9"
    assert publisher.events[0].event == "notifications-all-read"
    assert len(dispatcher.list_for("admin", "a8", unread_only=True)) == 1


def test_mark_all_read_with_nothing_unread_is_silent(dispatcher, publisher):
    count, _ = dispatcher.mark_all_read("customer", "nobody")
    assert count == 0
    assert publisher.events == []


def test_date_only_schedule_today():
    assert reminder_message(date(2026, 10, 19), "9", NOW, timezone.utc) == REMINDER_TODAY.format(order_id="9")
