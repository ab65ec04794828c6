"""Field-level order mutations.

A mutation validates itself against the canonical order, then patches it
in place. Patches are idempotent. Embedded copies are not patched: they
receive the canonical values of the fields named in ``fields``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from .errors import DuplicateFeedback, MutationValidationError, SubEntityNotFound
from .models import Feedback, OrderStatus, PaymentProof, PaymentStatus, utcnow


def _index_of(items: list[dict], key: str, value: str) -> Optional[int]:
    for i, item in enumerate(items):
        if item.get(key) == value:
            return i
    return None


class OrderMutation:
    kind = "order"
    # order fields the mutation writes; copies receive the canonical values
    fields: tuple = ()

    def validate(self, order: dict[str, Any]) -> None:
        """Reject the mutation before any write. Default: always valid."""

    def apply(self, order: dict[str, Any]) -> None:
        raise NotImplementedError

    def changes(self) -> dict[str, Any]:
        """Minimal description of the change for event payloads."""
        raise NotImplementedError


@dataclass
class StatusChange(OrderMutation):
    status: OrderStatus
    kind = "status"
    fields = ("order_status",)

    def __post_init__(self):
        self.status = OrderStatus(self.status)

    def apply(self, order):
        order["order_status"] = self.status.value

    def changes(self):
        return {"order_status": self.status.value}


@dataclass
class PaymentStatusChange(OrderMutation):
    payment_status: PaymentStatus
    # when given, must name the order's active proof of payment
    payment_id: Optional[str] = None
    kind = "payment_status"
    fields = ("payment_status",)

    def __post_init__(self):
        self.payment_status = PaymentStatus(self.payment_status)

    def validate(self, order):
        if self.payment_id is None:
            return
        proof = order.get("proof_of_payment") or {}
        if proof.get("payment_id") != self.payment_id:
            raise SubEntityNotFound("payment", self.payment_id, order["id"])

    def apply(self, order):
        order["payment_status"] = self.payment_status.value

    def changes(self):
        return {"payment_status": self.payment_status.value}


@dataclass
class PricingChange(OrderMutation):
    total_weight: float
    total_price: float
    notes: Optional[str] = None
    kind = "pricing"
    fields = ("total_weight", "total_price", "notes")

    def __post_init__(self):
        if self.total_weight is None or self.total_price is None:
            raise MutationValidationError("total_weight and total_price are required")
        if self.total_weight < 0 or self.total_price < 0:
            raise MutationValidationError("total_weight and total_price must be non-negative")

    def apply(self, order):
        order["total_weight"] = self.total_weight
        order["total_price"] = self.total_price
        order["notes"] = self.notes

    def changes(self):
        return {"total_weight": self.total_weight, "total_price": self.total_price, "notes": self.notes}


@dataclass
class CompletionDate(OrderMutation):
    date_completed: datetime = field(default_factory=utcnow)
    kind = "date_completed"
    fields = ("date_completed",)

    def apply(self, order):
        order["date_completed"] = self.date_completed

    def changes(self):
        return {"date_completed": self.date_completed.isoformat()}


FEEDBACK_OPS = ("add", "update", "delete")


@dataclass
class FeedbackChange(OrderMutation):
    """Add, update or delete one feedback, keyed by ``feedback_id``.

    For ``delete`` only the id matters; ``feedback`` may be a bare id string.
    """

    feedback: Any
    op: str = "add"
    fields = ("feedbacks",)

    def __post_init__(self):
        if self.op not in FEEDBACK_OPS:
            raise MutationValidationError(f"Unknown feedback operation: {self.op}")
        if isinstance(self.feedback, str):
            if self.op != "delete":
                raise MutationValidationError("A full feedback is required to add or update")
            self.feedback_id = self.feedback
            self.document = None
        else:
            if isinstance(self.feedback, dict):
                self.feedback = Feedback.model_validate(self.feedback)
            self.feedback_id = self.feedback.feedback_id
            self.document = self.feedback.model_dump(mode="python")

    @property
    def kind(self):
        return f"feedback:{self.op}"

    def validate(self, order):
        exists = _index_of(order.get("feedbacks") or [], "feedback_id", self.feedback_id) is not None
        if self.op == "add" and exists:
            raise DuplicateFeedback(self.feedback_id, order["id"])
        if self.op != "add" and not exists:
            raise SubEntityNotFound("feedback", self.feedback_id, order["id"])

    def apply(self, order):
        feedbacks = order.setdefault("feedbacks", [])
        i = _index_of(feedbacks, "feedback_id", self.feedback_id)
        if self.op == "delete":
            if i is not None:
                del feedbacks[i]
            return
        doc = dict(self.document, order_id=order.get("order_id"))
        if i is None:
            feedbacks.append(doc)
        else:
            feedbacks[i] = doc

    def changes(self):
        if self.op == "delete":
            return {"feedback_id": self.feedback_id}
        return {
            "feedback_id": self.feedback_id,
            "rating": self.feedback.rating,
            "comments": self.feedback.comments,
        }


@dataclass
class PaymentProofSubmission(OrderMutation):
    proof: PaymentProof
    kind = "payment_proof"
    fields = ("proof_of_payment", "payment_status", "payment_history")

    def __post_init__(self):
        if isinstance(self.proof, dict):
            self.proof = PaymentProof.model_validate(self.proof)
        self.document = self.proof.model_dump(mode="python")

    def apply(self, order):
        order["proof_of_payment"] = dict(self.document)
        order["payment_status"] = PaymentStatus.FOR_REVIEW.value
        history = order.setdefault("payment_history", [])
        if _index_of(history, "payment_id", self.proof.payment_id) is None:
            history.append(dict(self.document))

    def changes(self):
        return {
            "payment_id": self.proof.payment_id,
            "amount_sent": self.proof.amount_sent,
            "payment_status": PaymentStatus.FOR_REVIEW.value,
        }
