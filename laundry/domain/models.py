from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    FOR_REVIEW = "for_review"
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RecipientType(str, Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class ClothingItem(BaseModel):
    type: str
    quantity: int = Field(..., ge=0)


class TimeRange(BaseModel):
    t: Optional[int] = None
    i: Optional[int] = None


class Feedback(BaseModel):
    feedback_id: str = Field(..., min_length=1)
    customer_id: str
    order_id: Optional[str] = None
    rating: float = Field(..., ge=0, le=5)
    comments: str = ""
    date_submitted: datetime = Field(default_factory=utcnow)


class PaymentProof(BaseModel):
    payment_id: str = Field(..., min_length=1)
    customer_id: Optional[str] = None
    shop_id: Optional[str] = None
    amount_sent: float = Field(..., ge=0)
    amount_paid: float = Field(0, ge=0)
    reference_number: str = ""
    payment_method: str = ""
    payment_date: datetime = Field(default_factory=utcnow)
    # opaque reference to the uploaded screenshot
    screenshot: Optional[str] = None
    paid_the_driver: bool = False


class Order(BaseModel):
    """Canonical order. Denormalized copies share this exact shape."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str
    order_id: str
    customer_id: str
    shop_id: str
    order_status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    total_weight: float = Field(0, ge=0)
    total_price: float = Field(0, ge=0)
    notes: Optional[str] = None
    date_placed: datetime = Field(default_factory=utcnow)
    date_completed: Optional[datetime] = None
    date: Optional[datetime] = None
    services: list[str] = []
    clothes: list[ClothingItem] = []
    feedbacks: list[Feedback] = []
    proof_of_payment: Optional[PaymentProof] = None
    payment_history: list[PaymentProof] = []
    order_type: Optional[str] = None
    machine_id: Optional[str] = None
    soap: Optional[bool] = None
    time_range: TimeRange = Field(default_factory=TimeRange)
    address: Optional[str] = None
    delivery_instructions: str = ""
    payment_method: str = ""
    version: int = 1
    # legacy shop reference, read-only; new documents never carry it
    shop: Optional[Any] = Field(default=None, exclude=True)

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(mode="python")
        doc["_id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Order":
        data = normalize_shop_reference(doc)
        data.pop("_id", None)
        return cls.model_validate(data)


class Notification(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    id: str
    message: str = Field(..., min_length=1)
    recipient_id: str
    recipient_type: RecipientType
    related_order_id: Optional[str] = None
    read: bool = False
    timestamp: datetime = Field(default_factory=utcnow)
    is_reminder: bool = False
    link: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        doc = self.model_dump(mode="python")
        doc["_id"] = self.id
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Notification":
        data = dict(doc)
        data.pop("_id", None)
        data["recipient_id"] = str(data["recipient_id"])
        return cls.model_validate(data)


class Shop(BaseModel):
    shop_id: str
    name: str = ""
    type: str = "pickup&delivery"
    orders: list[dict[str, Any]] = []


class Admin(BaseModel):
    admin_id: str
    shop_id: str
    # storage allows an array but an admin owns exactly one shop
    shops: list[Shop] = []


class Customer(BaseModel):
    customer_id: str
    name: str = ""
    orders: list[dict[str, Any]] = []


def normalize_shop_reference(doc: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``doc`` carrying a plain ``shop_id``.

    Legacy documents store the shop as ``shop`` holding either a raw string
    or an embedded shop object. The raw string is kept under ``shop`` so the
    recipient resolver can still try it as a Shop ``_id``.
    """
    data = dict(doc)
    if data.get("shop_id"):
        data["shop_id"] = str(data["shop_id"])
        return data
    legacy = data.get("shop")
    if isinstance(legacy, dict):
        ref = legacy.get("shop_id") or legacy.get("_id")
        data["shop_id"] = str(ref) if ref is not None else ""
    elif legacy is not None:
        data["shop_id"] = str(legacy)
    return data
