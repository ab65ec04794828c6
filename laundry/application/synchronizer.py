"""Keeps the canonical order and its denormalized copies in step.

An order lives in ``orders`` and is embedded in three other places: its
shop's ``orders``, the owning admin's ``shops[].orders`` and the customer's
``orders``. Every copy target is described once as a ``CopyTarget`` and all
of them go through the same write loop, so adding a fourth derived view is
one more entry in ``COPY_TARGETS``.

Copy writes address the embedded order element alone (``$[o]`` array
filters, ``$push``, ``$pull``). The owner's array is never rewritten, so
concurrent writes to other orders of the same shop or customer survive.
"""
import copy
from dataclasses import dataclass, field
from typing import Callable, Optional

from laundry.domain.errors import ConflictError, CopyFailure, OrderNotFound, StoreError
from laundry.domain.models import Order
from laundry.domain.mutations import OrderMutation
from laundry.infrastructure.db import ADMINS, CUSTOMERS, ORDERS, SHOPS, EntityStore
from shared.core import get_logger

logger = get_logger(__name__)

Push = tuple[dict, Optional[list[dict]]]


@dataclass(frozen=True)
class CopyTarget:
    collection: str
    # update path of the embedded order arrays; "$[]" walks every admin shop
    orders_path: str
    # query matching documents that embed the order with this id
    match: Callable[[str], dict]
    # query selecting the document a new order is attached to
    owner: Callable[[Order], dict]
    # update (and array filters) pushing a snapshot into the owner document
    push: Callable[[dict, Order, dict], Push]

    def element(self) -> str:
        return f"{self.orders_path}.$[o]"


def _push_to_orders(doc: dict, order: Order, snapshot: dict) -> Push:
    return {"$push": {"orders": snapshot}}, None


def _push_to_admin_shop(doc: dict, order: Order, snapshot: dict) -> Push:
    # admin -> shop is 1:1; the order goes to the entry for its shop
    for shop in doc.get("shops") or []:
        if str(shop.get("shop_id")) == order.shop_id:
            return {"$push": {"shops.$[s].orders": snapshot}}, [{"s.shop_id": shop["shop_id"]}]
    return {"$push": {"shops": {"shop_id": order.shop_id, "orders": [snapshot]}}}, None


COPY_TARGETS = (
    CopyTarget(
        collection=SHOPS,
        orders_path="orders",
        match=lambda oid: {"orders.id": oid},
        owner=lambda order: {"shop_id": order.shop_id},
        push=_push_to_orders,
    ),
    CopyTarget(
        collection=ADMINS,
        orders_path="shops.$[].orders",
        match=lambda oid: {"shops.orders.id": oid},
        owner=lambda order: {"shop_id": order.shop_id},
        push=_push_to_admin_shop,
    ),
    CopyTarget(
        collection=CUSTOMERS,
        orders_path="orders",
        match=lambda oid: {"orders.id": oid},
        owner=lambda order: {"customer_id": order.customer_id},
        push=_push_to_orders,
    ),
)


@dataclass
class SyncResult:
    order: Order
    failures: list[CopyFailure] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failures


class StateSynchronizer:
    def __init__(self, store: EntityStore, targets=COPY_TARGETS):
        self.store = store
        self.targets = targets

    def load(self, order_id: str) -> dict:
        doc = self.store.find_one(ORDERS, {"_id": order_id})
        if doc is None:
            raise OrderNotFound(order_id)
        return doc

    def apply(self, order_id: str, mutation: OrderMutation, expected_version: Optional[int] = None) -> SyncResult:
        doc = self.load(order_id)
        current = Order.from_document(doc)
        canonical = current.to_document()
        if expected_version is not None and expected_version != current.version:
            raise ConflictError(order_id, expected_version, current.version)

        mutation.validate(canonical)
        patched = copy.deepcopy(canonical)
        mutation.apply(patched)
        # round-trip through the model so a bad patch never reaches the store
        updated = Order.from_document(patched)
        updated.shop = current.shop

        if updated.to_document() != canonical:
            updated.version = current.version + 1
            self._write_canonical(updated, doc.get("version"))
            logger.info(
                f"Order {order_id} updated ({mutation.kind})",
                extra={"extra_fields": {"order_id": order_id, "mutation": mutation.kind, "version": updated.version}},
            )

        written = updated.to_document()
        values = {name: written[name] for name in mutation.fields}
        values["version"] = updated.version
        failures = self._propagate(
            order_id, lambda element: {f"{element}.{name}": value for name, value in values.items()}
        )
        self._report(order_id, mutation.kind, failures)
        return SyncResult(updated, failures)

    def _write_canonical(self, order: Order, previous_version: Optional[int]) -> None:
        fields = order.to_document()
        fields.pop("_id")
        matched = self.store.update_one(ORDERS, {"_id": order.id, "version": previous_version}, {"$set": fields})
        if not matched:
            latest = self.store.find_one(ORDERS, {"_id": order.id})
            if latest is None:
                raise OrderNotFound(order.id)
            raise ConflictError(order.id, previous_version, latest.get("version"))

    def _propagate(self, order_id: str, assignments: Callable[[str], dict]) -> list[CopyFailure]:
        """``$set`` on the embedded order element in every copy target."""
        failures = []
        for target in self.targets:
            try:
                self.store.update_many(
                    target.collection,
                    target.match(order_id),
                    {"$set": assignments(target.element())},
                    array_filters=[{"o.id": order_id}],
                )
            except StoreError as e:
                failures.append(CopyFailure(target.collection, None, e.message))
        return failures

    def resync(self, order_id: str) -> SyncResult:
        """Overwrite every existing copy with the canonical snapshot."""
        order = Order.from_document(self.load(order_id))
        snapshot = order.to_document()
        snapshot.pop("_id")

        failures = self._propagate(order_id, lambda element: {element: snapshot})
        self._report(order_id, "resync", failures)
        return SyncResult(order, failures)

    def attach(self, order: Order) -> list[CopyFailure]:
        """Embed a newly placed order in its shop, admin and customer."""
        snapshot = order.to_document()
        snapshot.pop("_id")
        failures = []
        for target in self.targets:
            try:
                owners = self.store.find(target.collection, target.owner(order))
                if not owners:
                    failures.append(CopyFailure(target.collection, None, "owning document not found"))
                    continue
                # only the first owner receives the copy
                doc = owners[0]
                update, array_filters = target.push(doc, order, snapshot)
                # skipped when the owner already embeds the order
                query = {"_id": doc["_id"]}
                query.update({path: {"$ne": oid} for path, oid in target.match(order.id).items()})
                self.store.update_one(target.collection, query, update, array_filters=array_filters)
            except StoreError as e:
                failures.append(CopyFailure(target.collection, None, e.message))
        self._report(order.id, "attach", failures)
        return failures

    def detach(self, order_id: str) -> list[CopyFailure]:
        """Remove every embedded copy of the order. The canonical order is untouched."""
        failures = []
        for target in self.targets:
            try:
                self.store.update_many(
                    target.collection, target.match(order_id), {"$pull": {target.orders_path: {"id": order_id}}}
                )
            except StoreError as e:
                failures.append(CopyFailure(target.collection, None, e.message))
        self._report(order_id, "detach", failures)
        return failures

    @staticmethod
    def _report(order_id: str, operation: str, failures: list[CopyFailure]) -> None:
        for failure in failures:
            logger.error(
                f"Partial sync failure for order {order_id} in {failure.collection}",
                extra={
                    "extra_fields": {
                        "order_id": order_id,
                        "operation": operation,
                        "collection": failure.collection,
                        "document_id": failure.document_id,
                        "reason": failure.reason,
                    }
                },
            )
