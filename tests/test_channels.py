import pytest

from laundry.domain.channels import OrderEvent, channel_for, event_for
from laundry.domain.models import RecipientType


def test_admin_channel():
    assert channel_for("admin", "7") == "private-admin-7"
    assert channel_for("admin", "7") == channel_for(RecipientType.ADMIN, "7")


def test_customer_channel_uses_client_token():
    assert channel_for("customer", "c1") == "private-client-c1"
    assert channel_for(RecipientType.CUSTOMER, 42) == "private-client-42"


def test_unknown_recipient_type_rejected():
    with pytest.raises(ValueError):
        channel_for("client", "c1")


def test_event_names():
    assert event_for("status") == "update-order-status"
    assert event_for("pricing") == "update-order-price"
    assert event_for("feedback:add") == "new-feedback"
    assert event_for("feedback:update") == "update-feedback"
    assert event_for("feedback:delete") == "delete-feedback"
    assert event_for("payment_proof") == "update-payment-status-proof"
    assert OrderEvent.NEW_NOTIFICATION.value == "new-notification"


def test_lifecycle_events_never_reuse_notification_event():
    kinds = ["status", "pricing", "payment_status", "date_completed", "feedback:add",
             "feedback:update", "feedback:delete", "payment_proof", "delete"]
    assert "new-notification" not in {event_for(k) for k in kinds}


def test_unknown_mutation_kind():
    with pytest.raises(ValueError):
        event_for("rename")
