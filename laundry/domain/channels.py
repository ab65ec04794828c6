"""Channel and event names shared by publishers and subscribers.

Subscribers build channel names independently, so any change here silently
breaks live delivery. Customers subscribe under the ``client`` token even
though notification records say ``customer``; existing subscribers depend
on it.
"""
from enum import Enum
from typing import Union

from .models import RecipientType

CHANNEL_PREFIX = "private"

_CHANNEL_TOKENS = {
    RecipientType.ADMIN.value: "admin",
    RecipientType.CUSTOMER.value: "client",
}


class OrderEvent(str, Enum):
    NEW_NOTIFICATION = "new-notification"
    UPDATE_ORDER_STATUS = "update-order-status"
    UPDATE_ORDER_PRICE = "update-order-price"
    UPDATE_PAYMENT_STATUS = "update-payment-status"
    UPDATE_DATE_COMPLETED = "update-date-completed"
    NEW_FEEDBACK = "new-feedback"
    UPDATE_FEEDBACK = "update-feedback"
    DELETE_FEEDBACK = "delete-feedback"
    UPDATE_PAYMENT_STATUS_PROOF = "update-payment-status-proof"
    DELETE_ORDER = "delete-order"
    NOTIFICATION_READ = "notification-read"
    NOTIFICATIONS_ALL_READ = "notifications-all-read"


# mutation kind -> lifecycle event
_EVENTS_BY_KIND = {
    "status": OrderEvent.UPDATE_ORDER_STATUS,
    "pricing": OrderEvent.UPDATE_ORDER_PRICE,
    "payment_status": OrderEvent.UPDATE_PAYMENT_STATUS,
    "date_completed": OrderEvent.UPDATE_DATE_COMPLETED,
    "feedback:add": OrderEvent.NEW_FEEDBACK,
    "feedback:update": OrderEvent.UPDATE_FEEDBACK,
    "feedback:delete": OrderEvent.DELETE_FEEDBACK,
    "payment_proof": OrderEvent.UPDATE_PAYMENT_STATUS_PROOF,
    "delete": OrderEvent.DELETE_ORDER,
}


def channel_for(recipient_type: Union[RecipientType, str], recipient_id) -> str:
    kind = recipient_type.value if isinstance(recipient_type, RecipientType) else str(recipient_type)
    try:
        token = _CHANNEL_TOKENS[kind]
    except KeyError:
        raise ValueError(f"Unknown recipient type: {recipient_type!r}") from None
    return f"{CHANNEL_PREFIX}-{token}-{recipient_id}"


def event_for(mutation_kind: str) -> str:
    try:
        return _EVENTS_BY_KIND[mutation_kind].value
    except KeyError:
        raise ValueError(f"No event for mutation kind: {mutation_kind!r}") from None
