from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Optional

from laundry.domain.models import (
    ClothingItem,
    Feedback,
    Notification,
    Order,
    OrderStatus,
    PaymentProof,
    PaymentStatus,
    RecipientType,
    TimeRange,
)

class OrderCreate(BaseModel):
    customer_id: str
    shop_id: str
    services: list[str] = []
    clothes: list[ClothingItem] = []
    # pickup or self-service date
    date: Optional[datetime] = None
    delivery_instructions: str = ""
    payment_method: str = ""
    order_type: Optional[str] = None
    total_weight: float = Field(0, ge=0)
    total_price: float = Field(0, ge=0)
    machine_id: Optional[str] = None
    soap: Optional[bool] = None
    time_range: TimeRange = Field(default_factory=TimeRange)
    address: Optional[str] = None

class StatusUpdate(BaseModel):
    new_status: OrderStatus
    expected_version: Optional[int] = None

class PaymentStatusUpdate(BaseModel):
    new_payment_status: PaymentStatus
    payment_id: Optional[str] = None
    expected_version: Optional[int] = None

class PricingUpdate(BaseModel):
    total_weight: float = Field(..., ge=0)
    total_price: float = Field(..., ge=0)
    notes: Optional[str] = None
    expected_version: Optional[int] = None

class DateCompletedUpdate(BaseModel):
    date_completed: Optional[datetime] = None

class FeedbackUpdate(BaseModel):
    customer_id: str
    rating: float = Field(..., ge=0, le=5)
    comments: str = ""
    date_submitted: Optional[datetime] = None

class MarkAllRead(BaseModel):
    recipient_type: RecipientType
    recipient_id: str

class WarningRead(BaseModel):
    kind: str
    detail: str
    context: Optional[dict[str, Any]] = None

class OrderResult(BaseModel):
    order: Order
    warnings: list[WarningRead] = []

class PlaceOrderResult(OrderResult):
    triggered_reminder: Optional[Notification] = None

class FeedbackResult(BaseModel):
    feedback: Optional[Feedback] = None
    feedback_id: str
    warnings: list[WarningRead] = []

class PaymentProofResult(BaseModel):
    proof_of_payment: PaymentProof
    payment_status: PaymentStatus
    warnings: list[WarningRead] = []

class DeleteResult(BaseModel):
    deleted: bool
    order_id: str
    warnings: list[WarningRead] = []

class NotificationResult(BaseModel):
    notification: Notification
    warnings: list[WarningRead] = []

class MarkAllReadResult(BaseModel):
    count: int
    warnings: list[WarningRead] = []

class ChannelRead(BaseModel):
    recipient_type: RecipientType
    recipient_id: str
    channel: str
