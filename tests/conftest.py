import os
from datetime import datetime, timezone

os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("PUBSUB_BACKEND", "memory")

import pytest

from laundry.application.schemas import OrderCreate
from laundry.application.service import NotificationService, OrderService
from laundry.core_settings import Settings
from laundry.domain.errors import PublishError, StoreError
from laundry.infrastructure.db import ADMINS, CUSTOMERS, SHOPS, InMemoryEntityStore
from laundry.infrastructure.pubsub import InMemoryEventPublisher

NOW = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


class FailingStore(InMemoryEntityStore):
    """Fails writes to the listed collections."""

    def __init__(self, failing=()):
        super().__init__()
        self.failing = set(failing)

    def update_one(self, collection, query, update, array_filters=None):
        if collection in self.failing:
            raise StoreError(f"update_one on {collection} failed: connection reset")
        return super().update_one(collection, query, update, array_filters)

    def update_many(self, collection, query, update, array_filters=None):
        if collection in self.failing:
            raise StoreError(f"update_many on {collection} failed: connection reset")
        return super().update_many(collection, query, update, array_filters)

    def insert_one(self, collection, doc):
        if collection in self.failing:
            raise StoreError(f"insert_one on {collection} failed: connection reset")
        return super().insert_one(collection, doc)


class FailingPublisher(InMemoryEventPublisher):
    def publish(self, channel, event, payload):
        raise PublishError(f"publish {event} on {channel} failed: broker down")


def seed(store, shop_id="s1", admin_id="a1", customer_id="c1"):
    store.insert_one(SHOPS, {"_id": f"shop-doc-{shop_id}", "shop_id": shop_id, "name": "Fresh Fold", "orders": []})
    store.insert_one(
        ADMINS,
        {
            "_id": f"admin-doc-{admin_id}",
            "admin_id": admin_id,
            "shop_id": shop_id,
            "shops": [{"shop_id": shop_id, "name": "Fresh Fold", "orders": []}],
        },
    )
    store.insert_one(CUSTOMERS, {"_id": f"customer-doc-{customer_id}", "customer_id": customer_id, "orders": []})


@pytest.fixture
def store():
    s = FailingStore()
    seed(s)
    return s


@pytest.fixture
def publisher():
    return InMemoryEventPublisher()


@pytest.fixture
def settings():
    return Settings(SHOP_TIMEZONE="UTC", STORE_BACKEND="memory", PUBSUB_BACKEND="memory")


@pytest.fixture
def service(store, publisher, settings):
    return OrderService(store, publisher, settings=settings, clock=lambda: NOW)


@pytest.fixture
def notification_service(store, publisher):
    return NotificationService(store, publisher)


@pytest.fixture
def order_input():
    return OrderCreate(
        customer_id="c1",
        shop_id="s1",
        services=["wash", "fold"],
        clothes=[{"type": "Shirt", "quantity": 4}],
        date=NOW,
        payment_method="cash",
    )


@pytest.fixture
def placed(service, order_input, publisher):
    order = service.place_order(order_input).order
    publisher.events.clear()
    return order


@pytest.fixture
def copies_of(store):
    """Every embedded copy of an order, keyed by collection."""

    def _copies(order_id):
        found = {}
        for doc in store.find(SHOPS, {"orders.id": order_id}):
            found.setdefault(SHOPS, []).extend(o for o in doc["orders"] if o["id"] == order_id)
        for doc in store.find(ADMINS, {"shops.orders.id": order_id}):
            for shop in doc["shops"]:
                found.setdefault(ADMINS, []).extend(o for o in shop["orders"] if o["id"] == order_id)
        for doc in store.find(CUSTOMERS, {"orders.id": order_id}):
            found.setdefault(CUSTOMERS, []).extend(o for o in doc["orders"] if o["id"] == order_id)
        return found

    return _copies


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def failing_publisher():
    return FailingPublisher()
