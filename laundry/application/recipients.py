"""Works out who hears about an order.

The customer is stored on the order. The admin is whoever owns the order's
shop. Orders written before ``shop_id`` became the only shop reference carry
a legacy ``shop`` value that may be a Shop ``_id`` or a ``shop_id``; the
fallback steps below exist only for those documents.
"""
from typing import Optional

from laundry.domain.errors import RecipientNotFound
from laundry.domain.models import Order
from laundry.infrastructure.db import ADMINS, SHOPS, EntityStore
from shared.core import get_logger

logger = get_logger(__name__)


class RecipientResolver:
    def __init__(self, store: EntityStore):
        self.store = store

    def resolve_customer_for_order(self, order: Order) -> str:
        return order.customer_id

    def resolve_admin_for_order(self, order: Order, shop_id: Optional[str] = None) -> dict:
        shop_id = shop_id or order.shop_id
        if shop_id:
            admin = self._admin_for_shop(shop_id)
            if admin:
                return admin

        # TODO: drop the legacy steps once every stored order has shop_id set
        legacy = self._legacy_reference(order)
        if legacy:
            shop = self.store.find_one(SHOPS, {"_id": legacy})
            if shop and shop.get("shop_id"):
                admin = self._admin_for_shop(str(shop["shop_id"]))
                if admin:
                    return self._fell_back(order, admin, "shop-document")

            admin = self._admin_for_shop(legacy)
            if admin:
                return self._fell_back(order, admin, "legacy-shop-id")

        admin = self.store.find_one(ADMINS, {"shops.orders.id": order.id})
        if admin:
            return self._fell_back(order, admin, "embedded-scan")

        raise RecipientNotFound(f"No admin found for order {order.id}")

    def admin_id_for_order(self, order: Order, shop_id: Optional[str] = None) -> Optional[str]:
        """Like ``resolve_admin_for_order`` but returns ``None`` when unresolved."""
        try:
            return str(self.resolve_admin_for_order(order, shop_id)["admin_id"])
        except RecipientNotFound:
            logger.warning(
                f"Admin recipient unresolved for order {order.id}",
                extra={"extra_fields": {"order_id": order.id, "shop_id": shop_id or order.shop_id}},
            )
            return None

    def _admin_for_shop(self, shop_id: str) -> Optional[dict]:
        admin = self.store.find_one(ADMINS, {"shop_id": shop_id})
        if admin is None and shop_id.isdigit():
            # admins registered with a numeric shop_id
            admin = self.store.find_one(ADMINS, {"shop_id": int(shop_id)})
        return admin

    @staticmethod
    def _legacy_reference(order: Order) -> Optional[str]:
        if isinstance(order.shop, dict):
            ref = order.shop.get("_id") or order.shop.get("shop_id")
            return str(ref) if ref is not None else None
        if order.shop is not None:
            return str(order.shop)
        return None

    @staticmethod
    def _fell_back(order: Order, admin: dict, path: str) -> dict:
        logger.info(
            f"Resolved admin for order {order.id} via {path}",
            extra={"extra_fields": {"order_id": order.id, "admin_id": admin.get("admin_id"), "path": path}},
        )
        return admin
