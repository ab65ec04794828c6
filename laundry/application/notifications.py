"""Notification records and their live delivery.

A notification is stored first and then pushed to the recipient's channel as
``new-notification``. Neither step may fail the order mutation that caused
it: failures come back as warnings and are logged.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Optional, Union
from zoneinfo import ZoneInfo

from laundry.domain.channels import OrderEvent, channel_for
from laundry.domain.errors import (
    NotificationNotFound,
    OperationWarning,
    PublishError,
    StoreError,
    delivery_warning,
)
from laundry.domain.models import Notification, RecipientType, utcnow
from laundry.infrastructure.db import NOTIFICATIONS, EntityStore, new_id
from laundry.infrastructure.pubsub import EventPublisher
from shared.core import get_logger

logger = get_logger(__name__)

REMINDER_TODAY = "Reminder: your laundry order {order_id} is scheduled for today."
REMINDER_TOMORROW = "Reminder: your laundry order {order_id} is scheduled for tomorrow."


@dataclass
class DispatchOutcome:
    notification: Notification
    warnings: list[OperationWarning] = field(default_factory=list)

    @property
    def delivered(self) -> bool:
        return not self.warnings


def shop_zone(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _local_date(value: Union[datetime, date], tz: tzinfo) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(tz).date()
    return value


def reminder_message(scheduled: Optional[Union[datetime, date]], order_id: str, now: datetime, tz: tzinfo) -> Optional[str]:
    """Reminder text when ``scheduled`` is today or tomorrow in ``tz``.

    Days are calendar days in the shop's zone, so an order placed at 23:00 for
    01:00 the next morning counts as tomorrow.
    """
    if scheduled is None:
        return None
    days = (_local_date(scheduled, tz) - _local_date(now, tz)).days
    if days == 0:
        return REMINDER_TODAY.format(order_id=order_id)
    if days == 1:
        return REMINDER_TOMORROW.format(order_id=order_id)
    return None


class NotificationDispatcher:
    def __init__(self, store: EntityStore, publisher: EventPublisher):
        self.store = store
        self.publisher = publisher

    def notify(
        self,
        recipient_type: Union[RecipientType, str],
        recipient_id: str,
        message: str,
        related_order_id: Optional[str] = None,
        is_reminder: bool = False,
        link: Optional[str] = None,
    ) -> DispatchOutcome:
        notification = Notification(
            id=new_id(),
            message=message,
            recipient_id=str(recipient_id),
            recipient_type=recipient_type,
            related_order_id=related_order_id,
            is_reminder=is_reminder,
            link=link,
        )
        outcome = DispatchOutcome(notification)
        context = {
            "notification_id": notification.id,
            "recipient_type": notification.recipient_type,
            "recipient_id": notification.recipient_id,
            "related_order_id": related_order_id,
        }

        try:
            self.store.insert_one(NOTIFICATIONS, notification.to_document())
        except StoreError as e:
            logger.warning(f"Failed to persist notification: {e.message}", extra={"extra_fields": context})
            outcome.warnings.append(delivery_warning(f"notification not saved: {e.message}", **context))

        channel = channel_for(notification.recipient_type, notification.recipient_id)
        try:
            self.publisher.publish(channel, OrderEvent.NEW_NOTIFICATION.value, notification.model_dump(mode="json"))
        except PublishError as e:
            logger.warning(f"Failed to publish notification: {e.message}", extra={"extra_fields": context})
            outcome.warnings.append(delivery_warning(f"notification not published: {e.message}", channel=channel, **context))

        if outcome.delivered:
            logger.info(f"Notification sent on {channel}", extra={"extra_fields": context})
        return outcome

    def publish_event(self, recipient_type: Union[RecipientType, str], recipient_id: str, event: str, payload: dict[str, Any]) -> list[OperationWarning]:
        """Publish a lifecycle event; a failure becomes a warning."""
        channel = channel_for(recipient_type, recipient_id)
        try:
            self.publisher.publish(channel, event, payload)
        except PublishError as e:
            logger.warning(
                f"Failed to publish {event} on {channel}: {e.message}",
                extra={"extra_fields": {"channel": channel, "event": event}},
            )
            return [delivery_warning(f"{event} not published: {e.message}", channel=channel, event=event)]
        return []

    def list_for(self, recipient_type: Union[RecipientType, str], recipient_id: str, unread_only: bool = False) -> list[Notification]:
        query = {"recipient_type": RecipientType(recipient_type).value, "recipient_id": str(recipient_id)}
        if unread_only:
            query["read"] = False
        docs = self.store.find(NOTIFICATIONS, query, sort=[("timestamp", -1)])
        return [Notification.from_document(doc) for doc in docs]

    def mark_read(self, notification_id: str) -> tuple[Notification, list[OperationWarning]]:
        doc = self.store.find_one(NOTIFICATIONS, {"_id": notification_id})
        if doc is None:
            raise NotificationNotFound(notification_id)
        self.store.update_one(NOTIFICATIONS, {"_id": notification_id}, {"$set": {"read": True}})
        notification = Notification.from_document(dict(doc, read=True))
        warnings = self.publish_event(
            notification.recipient_type,
            notification.recipient_id,
            OrderEvent.NOTIFICATION_READ.value,
            {"notification_id": notification_id, "timestamp": utcnow().isoformat()},
        )
        return notification, warnings

    def mark_all_read(self, recipient_type: Union[RecipientType, str], recipient_id: str) -> tuple[int, list[OperationWarning]]:
        kind = RecipientType(recipient_type).value
        count = self.store.update_many(
            NOTIFICATIONS,
            {"recipient_type": kind, "recipient_id": str(recipient_id), "read": False},
            {"$set": {"read": True}},
        )
        logger.info(
            f"Marked {count} notifications as read for {kind} {recipient_id}",
            extra={"extra_fields": {"recipient_type": kind, "recipient_id": str(recipient_id), "count": count}},
        )
        warnings = []
        if count:
            warnings = self.publish_event(
                kind, str(recipient_id), OrderEvent.NOTIFICATIONS_ALL_READ.value, {"timestamp": utcnow().isoformat()}
            )
        return count, warnings
