from fastapi import APIRouter, Depends, Query
from typing import Optional
from laundry.infrastructure.db import EntityStore, get_store
from laundry.infrastructure.pubsub import EventPublisher, get_publisher
from laundry.application.service import NotificationService, OrderService
from laundry.application.schemas import (
    ChannelRead,
    DateCompletedUpdate,
    DeleteResult,
    FeedbackResult,
    FeedbackUpdate,
    MarkAllRead,
    MarkAllReadResult,
    NotificationResult,
    OrderCreate,
    OrderResult,
    PaymentProofResult,
    PaymentStatusUpdate,
    PlaceOrderResult,
    PricingUpdate,
    StatusUpdate,
)
from laundry.domain.channels import channel_for
from laundry.domain.models import Feedback, Notification, Order, PaymentProof, RecipientType

router = APIRouter(prefix="/orders", tags=["orders"])
notifications_router = APIRouter(prefix="/notifications", tags=["notifications"])
channels_router = APIRouter(prefix="/channels", tags=["channels"])

def get_order_service(
    store: EntityStore = Depends(get_store),
    publisher: EventPublisher = Depends(get_publisher),
) -> OrderService:
    return OrderService(store, publisher)

def get_notification_service(
    store: EntityStore = Depends(get_store),
    publisher: EventPublisher = Depends(get_publisher),
) -> NotificationService:
    return NotificationService(store, publisher)

@router.post("/", response_model=PlaceOrderResult, status_code=201)
def place_order(payload: OrderCreate, service: OrderService = Depends(get_order_service)):
    """Place an order and embed it in its shop, admin and customer."""
    return service.place_order(payload)

@router.get("/{order_id}", response_model=Order)
def get_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.get(order_id)

@router.delete("/{order_id}", response_model=DeleteResult)
def delete_order(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.delete_order(order_id)

@router.patch("/{order_id}/status", response_model=OrderResult)
def update_order_status(order_id: str, payload: StatusUpdate, service: OrderService = Depends(get_order_service)):
    return service.update_order_status(order_id, payload.new_status, payload.expected_version)

@router.patch("/{order_id}/price", response_model=OrderResult)
def update_order_pricing(order_id: str, payload: PricingUpdate, service: OrderService = Depends(get_order_service)):
    return service.update_order_pricing(
        order_id, payload.total_weight, payload.total_price, payload.notes, payload.expected_version
    )

@router.patch("/{order_id}/payment-status", response_model=OrderResult)
def update_payment_status(order_id: str, payload: PaymentStatusUpdate, service: OrderService = Depends(get_order_service)):
    return service.update_payment_status(
        order_id, payload.new_payment_status, payload.payment_id, payload.expected_version
    )

@router.patch("/{order_id}/date-completed", response_model=OrderResult)
def update_date_completed(
    order_id: str,
    payload: Optional[DateCompletedUpdate] = None,
    service: OrderService = Depends(get_order_service),
):
    return service.update_date_completed(order_id, payload.date_completed if payload else None)

@router.get("/{order_id}/feedbacks", response_model=list[Feedback])
def list_feedbacks(order_id: str, service: OrderService = Depends(get_order_service)):
    return service.list_feedbacks(order_id)

@router.post("/{order_id}/feedbacks", response_model=FeedbackResult, status_code=201)
def add_feedback(
    order_id: str,
    payload: Feedback,
    shop_id: Optional[str] = Query(None, description="Shop owning the order, skips admin lookup"),
    service: OrderService = Depends(get_order_service),
):
    return service.add_feedback(order_id, payload, shop_id)

@router.put("/{order_id}/feedbacks/{feedback_id}", response_model=FeedbackResult)
def update_feedback(
    order_id: str,
    feedback_id: str,
    payload: FeedbackUpdate,
    shop_id: Optional[str] = Query(None),
    service: OrderService = Depends(get_order_service),
):
    return service.update_feedback(order_id, feedback_id, payload, shop_id)

@router.delete("/{order_id}/feedbacks/{feedback_id}", response_model=FeedbackResult)
def delete_feedback(
    order_id: str,
    feedback_id: str,
    shop_id: Optional[str] = Query(None),
    service: OrderService = Depends(get_order_service),
):
    return service.delete_feedback(order_id, feedback_id, shop_id)

@router.post("/{order_id}/payment-proof", response_model=PaymentProofResult, status_code=201)
def add_payment_proof(order_id: str, payload: PaymentProof, service: OrderService = Depends(get_order_service)):
    return service.add_payment_proof(order_id, payload)

@router.post("/{order_id}/resync", response_model=OrderResult)
def resync_order(order_id: str, service: OrderService = Depends(get_order_service)):
    """Rewrite every denormalized copy from the canonical order."""
    return service.resync_order(order_id)

@notifications_router.get("/{recipient_type}/{recipient_id}", response_model=list[Notification])
def list_notifications(
    recipient_type: RecipientType,
    recipient_id: str,
    unread_only: bool = Query(False),
    service: NotificationService = Depends(get_notification_service),
):
    """Notifications for one recipient, newest first."""
    return service.list(recipient_type, recipient_id, unread_only)

@notifications_router.patch("/{notification_id}/read", response_model=NotificationResult)
def mark_notification_read(notification_id: str, service: NotificationService = Depends(get_notification_service)):
    return service.mark_read(notification_id)

@notifications_router.post("/mark-all-as-read", response_model=MarkAllReadResult)
def mark_all_read(payload: MarkAllRead, service: NotificationService = Depends(get_notification_service)):
    return service.mark_all_read(payload.recipient_type, payload.recipient_id)

@channels_router.get("/{recipient_type}/{recipient_id}", response_model=ChannelRead)
def get_channel(recipient_type: RecipientType, recipient_id: str):
    """Channel a subscriber must listen on for this recipient."""
    return ChannelRead(
        recipient_type=recipient_type,
        recipient_id=recipient_id,
        channel=channel_for(recipient_type, recipient_id),
    )
