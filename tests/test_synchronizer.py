from datetime import datetime, timezone

import pytest

from laundry.application.synchronizer import StateSynchronizer
from laundry.domain.errors import (
    ConflictError,
    DuplicateFeedback,
    MutationValidationError,
    OrderNotFound,
    SubEntityNotFound,
)
from laundry.domain.models import Feedback, Order, PaymentProof
from laundry.domain.mutations import (
    CompletionDate,
    FeedbackChange,
    PaymentProofSubmission,
    PaymentStatusChange,
    PricingChange,
    StatusChange,
)
from laundry.infrastructure.db import ADMINS, CUSTOMERS, ORDERS, SHOPS


def canonical(store, order_id):
    return store.find_one(ORDERS, {"_id": order_id})


def feedback(feedback_id="fb-1", rating=4):
    return Feedback(feedback_id=feedback_id, customer_id="c1", rating=rating, comments="Crisp and clean")


@pytest.fixture
def sync(store):
    return StateSynchronizer(store)


@pytest.mark.parametrize(
    "mutation, fields",
    [
        (StatusChange("completed"), {"order_status": "completed"}),
        (PaymentStatusChange("paid"), {"payment_status": "paid"}),
        (PricingChange(6.5, 390.0, "heavy load"), {"total_weight": 6.5, "total_price": 390.0, "notes": "heavy load"}),
        (
            CompletionDate(datetime(2026, 10, 20, 15, 0, tzinfo=timezone.utc)),
            {"date_completed": datetime(2026, 10, 20, 15, 0, tzinfo=timezone.utc)},
        ),
    ],
)
def test_mutation_reaches_every_copy(sync, store, placed, copies_of, mutation, fields):
    result = sync.apply(placed.id, mutation)

    assert result.complete
    copies = copies_of(placed.id)
    assert set(copies) == {SHOPS, ADMINS, CUSTOMERS}
    for field, value in fields.items():
        assert canonical(store, placed.id)[field] == value
        for embedded in copies.values():
            assert embedded[0][field] == value


def test_version_bumps_once_per_change(sync, store, placed, copies_of):
    sync.apply(placed.id, StatusChange("in progress"))
    assert canonical(store, placed.id)["version"] == 2
    assert all(c[0]["version"] == 2 for c in copies_of(placed.id).values())


def test_reapplying_is_idempotent(sync, store, placed, copies_of):
    sync.apply(placed.id, StatusChange("completed"))
    first = (canonical(store, placed.id), copies_of(placed.id))
    sync.apply(placed.id, StatusChange("completed"))

    assert (canonical(store, placed.id), copies_of(placed.id)) == first


def test_feedback_lifecycle_in_copies(sync, store, placed, copies_of):
    sync.apply(placed.id, FeedbackChange(feedback(), "add"))
    sync.apply(placed.id, FeedbackChange(feedback(rating=2), "update"))

    for embedded in copies_of(placed.id).values():
        assert [f["rating"] for f in embedded[0]["feedbacks"]] == [2]
        assert embedded[0]["feedbacks"][0]["order_id"] == placed.order_id

    sync.apply(placed.id, FeedbackChange("fb-1", "delete"))
    assert canonical(store, placed.id)["feedbacks"] == []
    for embedded in copies_of(placed.id).values():
        assert embedded[0]["feedbacks"] == []


def test_duplicate_feedback_rejected(sync, store, placed):
    sync.apply(placed.id, FeedbackChange(feedback(), "add"))
    with pytest.raises(DuplicateFeedback):
        sync.apply(placed.id, FeedbackChange(feedback(rating=1), "add"))
    assert len(canonical(store, placed.id)["feedbacks"]) == 1


def test_missing_feedback_is_sub_entity_not_found(sync, store, placed, copies_of):
    before = (canonical(store, placed.id), copies_of(placed.id))
    with pytest.raises(SubEntityNotFound) as exc:
        sync.apply(placed.id, FeedbackChange("fb-404", "delete"))

    assert not isinstance(exc.value, OrderNotFound)
    assert exc.value.entity == "feedback"
    assert (canonical(store, placed.id), copies_of(placed.id)) == before


def test_payment_status_for_unknown_payment(sync, placed):
    with pytest.raises(SubEntityNotFound):
        sync.apply(placed.id, PaymentStatusChange("paid", payment_id="pay-404"))


def test_unknown_order(sync):
    with pytest.raises(OrderNotFound):
        sync.apply("missing", StatusChange("completed"))


def test_invalid_payloads_rejected_before_write():
    with pytest.raises(MutationValidationError):
        PricingChange(-1, 10)
    with pytest.raises(MutationValidationError):
        FeedbackChange("fb-1", "add")
    with pytest.raises(MutationValidationError):
        FeedbackChange(feedback(), "merge")
    with pytest.raises(ValueError):
        StatusChange("lost")


def test_payment_proof_keeps_one_active_and_history(sync, store, placed, copies_of):
    first = PaymentProof(payment_id="pay-1", amount_sent=300, reference_number="REF1", payment_method="gcash")
    second = PaymentProof(payment_id="pay-2", amount_sent=390, reference_number="REF2", payment_method="gcash")
    sync.apply(placed.id, PaymentProofSubmission(first))
    sync.apply(placed.id, PaymentProofSubmission(second))
    sync.apply(placed.id, PaymentProofSubmission(second))

    doc = canonical(store, placed.id)
    assert doc["payment_status"] == "for_review"
    assert doc["proof_of_payment"]["payment_id"] == "pay-2"
    assert [p["payment_id"] for p in doc["payment_history"]] == ["pay-1", "pay-2"]
    for embedded in copies_of(placed.id).values():
        assert embedded[0]["proof_of_payment"]["payment_id"] == "pay-2"


def test_stale_expected_version_conflicts(sync, store, placed):
    sync.apply(placed.id, StatusChange("in progress"))
    with pytest.raises(ConflictError):
        sync.apply(placed.id, StatusChange("completed"), expected_version=1)
    assert canonical(store, placed.id)["order_status"] == "in progress"


def test_concurrent_canonical_write_detected(store, placed):
    sync = StateSynchronizer(store)
    original = store.update_one

    def racing_update(collection, query, update):
        if collection == ORDERS and "version" in query:
            # another writer lands between our read and our write
            original(ORDERS, {"_id": placed.id}, {"$set": {"version": 99}})
        return original(collection, query, update)

    store.update_one = racing_update
    with pytest.raises(ConflictError) as exc:
        sync.apply(placed.id, StatusChange("cancelled"))
    assert exc.value.actual == 99


def test_copy_failure_reported_not_masked(store, placed, copies_of):
    store.failing = {CUSTOMERS}
    result = StateSynchronizer(store).apply(placed.id, StatusChange("completed"))

    assert not result.complete
    assert [f.collection for f in result.failures] == [CUSTOMERS]
    assert result.order.order_status == "completed"
    copies = copies_of(placed.id)
    assert copies[SHOPS][0]["order_status"] == "completed"
    assert copies[CUSTOMERS][0]["order_status"] == "pending"


def test_rerun_after_failure_converges(store, placed, copies_of):
    sync = StateSynchronizer(store)
    store.failing = {ADMINS}
    sync.apply(placed.id, StatusChange("completed"))
    store.failing = set()

    result = sync.apply(placed.id, StatusChange("completed"))
    assert result.complete
    assert copies_of(placed.id)[ADMINS][0]["order_status"] == "completed"


def test_resync_overwrites_drifted_copy(sync, store, placed, copies_of):
    shop = store.find_one(SHOPS, {"shop_id": "s1"})
    shop["orders"][0]["total_price"] = 9999
    store.update_one(SHOPS, {"_id": shop["_id"]}, {"$set": {"orders": shop["orders"]}})

    result = sync.resync(placed.id)

    assert result.complete
    assert copies_of(placed.id)[SHOPS][0]["total_price"] == canonical(store, placed.id)["total_price"]


def test_detach_removes_all_copies(sync, placed, copies_of):
    assert sync.detach(placed.id) == []
    assert copies_of(placed.id) == {}


def test_attach_reports_missing_owner(sync, store):
    order = Order(id="o-lost", order_id="000000001", customer_id="nobody", shop_id="s1")
    failures = sync.attach(order)
    assert [f.collection for f in failures] == [CUSTOMERS]


def test_legacy_shop_reference_is_normalized(sync, store):
    store.insert_one(
        ORDERS,
        {"_id": "legacy-1", "id": "legacy-1", "order_id": "123", "customer_id": "c1", "shop": {"shop_id": "s1"}},
    )
    result = sync.apply("legacy-1", StatusChange("in progress"))
    assert result.order.shop_id == "s1"
    assert canonical(store, "legacy-1")["shop_id"] == "s1"


@pytest.fixture
def interleave(store):
    """Run ``action`` once, right before the first write to ``collection``."""

    def _interleave(collection, action):
        pending = [action]
        for name in ("update_one", "update_many"):
            original = getattr(store, name)

            def write(coll, query, update, array_filters=None, _original=original):
                if coll == collection and pending:
                    pending.pop()()
                return _original(coll, query, update, array_filters)

            setattr(store, name, write)

    return _interleave


ALL_COPIES = {SHOPS, ADMINS, CUSTOMERS}


@pytest.mark.parametrize("collection", [SHOPS, ADMINS, CUSTOMERS])
def test_sibling_placed_during_propagation_survives(sync, service, order_input, placed, copies_of, interleave, collection):
    sibling = []
    interleave(collection, lambda: sibling.append(service.place_order(order_input).order))

    result = sync.apply(placed.id, StatusChange("completed"))

    assert result.complete
    assert set(copies_of(sibling[0].id)) == ALL_COPIES
    assert all(c[0]["order_status"] == "completed" for c in copies_of(placed.id).values())


@pytest.mark.parametrize("collection", [SHOPS, ADMINS, CUSTOMERS])
def test_sibling_update_during_propagation_survives(sync, service, order_input, placed, copies_of, interleave, collection):
    sibling = service.place_order(order_input).order
    interleave(collection, lambda: sync.apply(sibling.id, StatusChange("cancelled")))

    sync.apply(placed.id, PricingChange(3.0, 180.0))

    for embedded in copies_of(sibling.id).values():
        assert embedded[0]["order_status"] == "cancelled"
        assert embedded[0]["total_price"] == 0
    for embedded in copies_of(placed.id).values():
        assert embedded[0]["total_price"] == 180.0
        assert embedded[0]["order_status"] == "pending"


@pytest.mark.parametrize("collection", [SHOPS, ADMINS, CUSTOMERS])
def test_sibling_update_during_attach_survives(sync, service, order_input, placed, copies_of, interleave, collection):
    interleave(collection, lambda: sync.apply(placed.id, StatusChange("cancelled")))

    newcomer = service.place_order(order_input).order

    assert set(copies_of(newcomer.id)) == ALL_COPIES
    assert all(c[0]["order_status"] == "cancelled" for c in copies_of(placed.id).values())


@pytest.mark.parametrize("collection", [SHOPS, ADMINS, CUSTOMERS])
def test_sibling_update_during_detach_survives(sync, service, order_input, placed, copies_of, interleave, collection):
    sibling = service.place_order(order_input).order
    interleave(collection, lambda: sync.apply(sibling.id, StatusChange("cancelled")))

    assert sync.detach(placed.id) == []

    assert copies_of(placed.id) == {}
    assert set(copies_of(sibling.id)) == ALL_COPIES
    assert all(c[0]["order_status"] == "cancelled" for c in copies_of(sibling.id).values())


def test_attach_is_idempotent(sync, store, placed, copies_of):
    order = Order.from_document(canonical(store, placed.id))
    assert sync.attach(order) == []
    assert {name: len(found) for name, found in copies_of(placed.id).items()} == {SHOPS: 1, ADMINS: 1, CUSTOMERS: 1}


def test_attach_adds_missing_admin_shop_entry(sync, store, copies_of):
    store.insert_one(SHOPS, {"_id": "shop-doc-s2", "shop_id": "s2", "orders": []})
    store.insert_one(ADMINS, {"_id": "admin-doc-a2", "admin_id": "a2", "shop_id": "s2", "shops": []})
    order = Order(id="o-s2", order_id="000000002", customer_id="c1", shop_id="s2")

    assert sync.attach(order) == []
    admin = store.find_one(ADMINS, {"admin_id": "a2"})
    assert admin["shops"][0]["shop_id"] == "s2"
    assert [o["id"] for o in admin["shops"][0]["orders"]] == ["o-s2"]
