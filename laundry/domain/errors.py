"""Error taxonomy for order synchronization and notification.

Hard errors (``NotFound`` family, validation, conflicts) abort an operation
before anything is written. Soft failures (``PartialSyncFailure``,
``NotificationDeliveryFailure``) are collected as warnings on an otherwise
successful result.
"""
from dataclasses import asdict, dataclass
from typing import Any, Optional


class LaundryError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(LaundryError):
    status_code = 404


class OrderNotFound(NotFound):
    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class SubEntityNotFound(NotFound):
    """A feedback or payment targeted inside an existing order is missing."""

    def __init__(self, entity: str, entity_id: str, order_id: str):
        super().__init__(f"{entity.capitalize()} {entity_id} not found on order {order_id}")
        self.entity = entity
        self.entity_id = entity_id
        self.order_id = order_id


class RecipientNotFound(NotFound):
    pass


class NotificationNotFound(NotFound):
    def __init__(self, notification_id: str):
        super().__init__(f"Notification {notification_id} not found")
        self.notification_id = notification_id


class MutationValidationError(LaundryError):
    status_code = 422


class DuplicateFeedback(MutationValidationError):
    status_code = 409

    def __init__(self, feedback_id: str, order_id: str):
        super().__init__(f"Feedback {feedback_id} already exists on order {order_id}")
        self.feedback_id = feedback_id


class ConflictError(LaundryError):
    status_code = 409

    def __init__(self, order_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__(
            f"Order {order_id} was modified concurrently (expected version {expected}, found {actual})"
        )
        self.expected = expected
        self.actual = actual


class StoreError(LaundryError):
    status_code = 503


class PublishError(LaundryError):
    status_code = 503


class PartialSyncFailure(LaundryError):
    """Canonical write landed but some denormalized copies did not.

    Raised only where a partial result cannot be accepted (order deletion);
    elsewhere the failures travel as warnings.
    """

    status_code = 502

    def __init__(self, order_id: str, failures: list["CopyFailure"]):
        super().__init__(f"{len(failures)} denormalized copies of order {order_id} failed to update")
        self.order_id = order_id
        self.failures = failures


@dataclass
class CopyFailure:
    collection: str
    document_id: Optional[str]
    reason: str

    def as_warning(self, order_id: str) -> "OperationWarning":
        return OperationWarning(
            kind="PartialSyncFailure",
            detail=f"copy of order {order_id} in {self.collection} not updated: {self.reason}",
            context={"collection": self.collection, "document_id": self.document_id},
        )


@dataclass
class OperationWarning:
    """A non-fatal problem attached to a successful response."""

    kind: str
    detail: str
    context: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def delivery_warning(detail: str, **context: Any) -> OperationWarning:
    return OperationWarning(kind="NotificationDeliveryFailure", detail=detail, context=context or None)
