import random
from datetime import datetime
from typing import Callable, Optional

from laundry.core_settings import Settings, get_settings
from laundry.domain.channels import event_for
from laundry.domain.errors import (
    NotFound,
    OperationWarning,
    PartialSyncFailure,
    StoreError,
)
from laundry.domain.models import Feedback, Order, OrderStatus, PaymentProof, PaymentStatus, RecipientType, utcnow
from laundry.domain.mutations import (
    CompletionDate,
    FeedbackChange,
    OrderMutation,
    PaymentProofSubmission,
    PaymentStatusChange,
    PricingChange,
    StatusChange,
)
from laundry.infrastructure.db import CUSTOMERS, ORDERS, SHOPS, EntityStore, new_id
from laundry.infrastructure.pubsub import EventPublisher
from shared.core import get_logger
from .notifications import NotificationDispatcher, reminder_message, shop_zone
from .recipients import RecipientResolver
from .schemas import (
    DeleteResult,
    FeedbackResult,
    FeedbackUpdate,
    MarkAllReadResult,
    NotificationResult,
    OrderCreate,
    OrderResult,
    PaymentProofResult,
    PlaceOrderResult,
)
from .synchronizer import StateSynchronizer, SyncResult

logger = get_logger(__name__)

CUSTOMER_ORDERS_LINK = "/auth/orders"
ADMIN_ORDERS_LINK = "/admin/orders"
ADMIN_FEEDBACK_LINK = "/admin/feedback"
ADMIN_PAYMENTS_LINK = "/admin/payments"


def _dump(warnings: list[OperationWarning]) -> list[dict]:
    return [w.to_dict() for w in warnings]


class OrderService:
    def __init__(
        self,
        store: EntityStore,
        publisher: EventPublisher,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock
        self.sync = StateSynchronizer(store)
        self.resolver = RecipientResolver(store)
        self.dispatcher = NotificationDispatcher(store, publisher)

    def _generate_order_id(self) -> str:
        """Random 9-digit order number, re-drawn until unused."""
        for _ in range(self.settings.ORDER_ID_ATTEMPTS):
            candidate = f"{random.randint(0, 999_999_999):09d}"
            if self.store.find_one(ORDERS, {"order_id": candidate}) is None:
                return candidate
        raise StoreError(f"Could not allocate a unique order number in {self.settings.ORDER_ID_ATTEMPTS} attempts")

    def get(self, order_id: str) -> Order:
        return Order.from_document(self.sync.load(order_id))

    def place_order(self, data: OrderCreate) -> PlaceOrderResult:
        if self.store.find_one(SHOPS, {"shop_id": data.shop_id}) is None:
            raise NotFound(f"Shop {data.shop_id} not found")
        if self.store.find_one(CUSTOMERS, {"customer_id": data.customer_id}) is None:
            raise NotFound(f"Customer {data.customer_id} not found")

        order = Order(
            id=new_id(),
            order_id=self._generate_order_id(),
            date_placed=self.clock(),
            **data.model_dump(),
        )
        self.store.insert_one(ORDERS, order.to_document())
        logger.info(
            f"Order {order.order_id} placed",
            extra={"extra_fields": {"order_id": order.id, "customer_id": order.customer_id, "shop_id": order.shop_id}},
        )
        warnings = [f.as_warning(order.id) for f in self.sync.attach(order)]

        reminder = None
        message = reminder_message(order.date, order.order_id, self.clock(), shop_zone(self.settings.SHOP_TIMEZONE))
        if message:
            outcome = self.dispatcher.notify(
                RecipientType.CUSTOMER,
                order.customer_id,
                message,
                related_order_id=order.id,
                is_reminder=True,
                link=CUSTOMER_ORDERS_LINK,
            )
            reminder = outcome.notification
            warnings.extend(outcome.warnings)

        return PlaceOrderResult(order=order, triggered_reminder=reminder, warnings=_dump(warnings))

    def _apply(self, order_id: str, mutation: OrderMutation, expected_version: Optional[int] = None) -> tuple[SyncResult, list[OperationWarning]]:
        result = self.sync.apply(order_id, mutation, expected_version)
        return result, [f.as_warning(order_id) for f in result.failures]

    def _fan_out(
        self,
        order: Order,
        kind: str,
        changes: dict,
        customer_message: Optional[str] = None,
        admin_message: Optional[str] = None,
        to_customer: bool = True,
        to_admin: bool = True,
        shop_id: Optional[str] = None,
        admin_link: str = ADMIN_ORDERS_LINK,
    ) -> list[OperationWarning]:
        """Publish the lifecycle event and the human-readable notifications."""
        event = event_for(kind)
        payload = {
            "order_id": order.id,
            "order_number": order.order_id,
            **changes,
            "timestamp": self.clock().isoformat(),
        }
        warnings = []
        if to_customer:
            customer_id = self.resolver.resolve_customer_for_order(order)
            warnings += self.dispatcher.publish_event(RecipientType.CUSTOMER, customer_id, event, payload)
            if customer_message:
                warnings += self.dispatcher.notify(
                    RecipientType.CUSTOMER, customer_id, customer_message, order.id, link=CUSTOMER_ORDERS_LINK
                ).warnings
        if to_admin:
            admin_id = self.resolver.admin_id_for_order(order, shop_id)
            if admin_id is None:
                warnings.append(
                    OperationWarning(
                        kind="RecipientNotFound",
                        detail=f"no admin resolved for order {order.id}; {event} not sent to admin",
                        context={"order_id": order.id},
                    )
                )
            else:
                warnings += self.dispatcher.publish_event(RecipientType.ADMIN, admin_id, event, payload)
                if admin_message:
                    warnings += self.dispatcher.notify(
                        RecipientType.ADMIN, admin_id, admin_message, order.id, link=admin_link
                    ).warnings
        return warnings

    def update_order_status(self, order_id: str, new_status: OrderStatus, expected_version: Optional[int] = None) -> OrderResult:
        mutation = StatusChange(new_status)
        result, warnings = self._apply(order_id, mutation, expected_version)
        order = result.order
        status = mutation.status.value
        warnings += self._fan_out(
            order,
            mutation.kind,
            mutation.changes(),
            customer_message=f"Your order status has been updated to: {status}",
            admin_message=f"Order {order.order_id} status updated to: {status}",
        )
        return OrderResult(order=order, warnings=_dump(warnings))

    def update_order_pricing(
        self,
        order_id: str,
        total_weight: float,
        total_price: float,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrderResult:
        mutation = PricingChange(total_weight, total_price, notes)
        result, warnings = self._apply(order_id, mutation, expected_version)
        order = result.order
        warnings += self._fan_out(
            order,
            mutation.kind,
            mutation.changes(),
            customer_message=f"Your order {order.order_id} has been weighed at {total_weight} kg. Total price: {total_price}",
        )
        return OrderResult(order=order, warnings=_dump(warnings))

    def update_payment_status(
        self,
        order_id: str,
        new_payment_status: PaymentStatus,
        payment_id: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> OrderResult:
        mutation = PaymentStatusChange(new_payment_status, payment_id)
        result, warnings = self._apply(order_id, mutation, expected_version)
        order = result.order
        warnings += self._fan_out(
            order,
            mutation.kind,
            mutation.changes(),
            customer_message=f"Payment for order {order.order_id} is now: {mutation.payment_status.value}",
            to_admin=False,
        )
        return OrderResult(order=order, warnings=_dump(warnings))

    def update_date_completed(self, order_id: str, date_completed: Optional[datetime] = None) -> OrderResult:
        mutation = CompletionDate(date_completed or self.clock())
        result, warnings = self._apply(order_id, mutation)
        warnings += self._fan_out(result.order, mutation.kind, mutation.changes(), to_admin=False)
        return OrderResult(order=result.order, warnings=_dump(warnings))

    def add_feedback(self, order_id: str, feedback: Feedback, shop_id: Optional[str] = None) -> FeedbackResult:
        mutation = FeedbackChange(feedback, "add")
        result, warnings = self._apply(order_id, mutation)
        order = result.order
        warnings += self._fan_out(
            order,
            mutation.kind,
            mutation.changes(),
            admin_message=f"New feedback on order {order.order_id}: {feedback.rating}/5",
            to_customer=False,
            shop_id=shop_id,
            admin_link=ADMIN_FEEDBACK_LINK,
        )
        return FeedbackResult(feedback=self._feedback(order, feedback.feedback_id), feedback_id=feedback.feedback_id, warnings=_dump(warnings))

    def update_feedback(self, order_id: str, feedback_id: str, data: FeedbackUpdate, shop_id: Optional[str] = None) -> FeedbackResult:
        fields = data.model_dump(exclude_none=True)
        if "date_submitted" not in fields:
            # an edit keeps the original submission date
            existing = self._feedback(self.get(order_id), feedback_id)
            if existing is not None:
                fields["date_submitted"] = existing.date_submitted
        feedback = Feedback(feedback_id=feedback_id, **fields)
        mutation = FeedbackChange(feedback, "update")
        result, warnings = self._apply(order_id, mutation)
        warnings += self._fan_out(result.order, mutation.kind, mutation.changes(), to_customer=False, shop_id=shop_id)
        return FeedbackResult(feedback=self._feedback(result.order, feedback_id), feedback_id=feedback_id, warnings=_dump(warnings))

    def delete_feedback(self, order_id: str, feedback_id: str, shop_id: Optional[str] = None) -> FeedbackResult:
        mutation = FeedbackChange(feedback_id, "delete")
        result, warnings = self._apply(order_id, mutation)
        warnings += self._fan_out(result.order, mutation.kind, mutation.changes(), to_customer=False, shop_id=shop_id)
        return FeedbackResult(feedback_id=feedback_id, warnings=_dump(warnings))

    def list_feedbacks(self, order_id: str) -> list[Feedback]:
        return self.get(order_id).feedbacks

    @staticmethod
    def _feedback(order: Order, feedback_id: str) -> Optional[Feedback]:
        return next((f for f in order.feedbacks if f.feedback_id == feedback_id), None)

    def add_payment_proof(self, order_id: str, proof: PaymentProof) -> PaymentProofResult:
        mutation = PaymentProofSubmission(proof)
        result, warnings = self._apply(order_id, mutation)
        order = result.order
        warnings += self._fan_out(
            order,
            mutation.kind,
            mutation.changes(),
            admin_message=f"Proof of payment submitted for order {order.order_id}",
            to_customer=False,
            shop_id=proof.shop_id,
            admin_link=ADMIN_PAYMENTS_LINK,
        )
        return PaymentProofResult(
            proof_of_payment=order.proof_of_payment,
            payment_status=order.payment_status,
            warnings=_dump(warnings),
        )

    def delete_order(self, order_id: str) -> DeleteResult:
        """Remove every copy first, then the canonical order.

        If any copy cannot be removed the canonical order stays, so no copy
        ever outlives it and the delete can simply be retried.
        """
        order = self.get(order_id)
        admin_id = self.resolver.admin_id_for_order(order)
        failures = self.sync.detach(order_id)
        if failures:
            raise PartialSyncFailure(order_id, failures)
        self.store.delete_one(ORDERS, {"_id": order_id})
        logger.info(f"Order {order.order_id} deleted", extra={"extra_fields": {"order_id": order_id}})

        payload = {"order_id": order.id, "order_number": order.order_id, "timestamp": self.clock().isoformat()}
        event = event_for("delete")
        warnings = self.dispatcher.publish_event(RecipientType.CUSTOMER, order.customer_id, event, payload)
        if admin_id:
            warnings += self.dispatcher.publish_event(RecipientType.ADMIN, admin_id, event, payload)
        return DeleteResult(deleted=True, order_id=order_id, warnings=_dump(warnings))

    def resync_order(self, order_id: str) -> OrderResult:
        result = self.sync.resync(order_id)
        return OrderResult(order=result.order, warnings=_dump([f.as_warning(order_id) for f in result.failures]))


class NotificationService:
    def __init__(self, store: EntityStore, publisher: EventPublisher):
        self.dispatcher = NotificationDispatcher(store, publisher)

    def list(self, recipient_type: RecipientType, recipient_id: str, unread_only: bool = False):
        return self.dispatcher.list_for(recipient_type, recipient_id, unread_only)

    def mark_read(self, notification_id: str) -> NotificationResult:
        notification, warnings = self.dispatcher.mark_read(notification_id)
        return NotificationResult(notification=notification, warnings=_dump(warnings))

    def mark_all_read(self, recipient_type: RecipientType, recipient_id: str) -> MarkAllReadResult:
        count, warnings = self.dispatcher.mark_all_read(recipient_type, recipient_id)
        return MarkAllReadResult(count=count, warnings=_dump(warnings))
