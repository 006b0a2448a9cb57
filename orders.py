"""
Order workflow.

Creating an order is a sequence of independent writes: one OrderItem per
cart line, then the Order itself with a total computed from current product
prices. The sequence is not transactional. A failure part way through
leaves the already-saved OrderItems behind; nothing is rolled back.
"""
import logging
from typing import Any, Dict, List, Optional

from database import ORDER_ITEMS, ORDERS, PRODUCTS, USERS, Store, serialize_doc, to_object_id
from errors import NotFound, ValidationError
from schemas import Order, OrderCreate, OrderItem

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = {"name": 1, "price": 1}
USER_FIELDS = {"name": 1}


class OrderWorkflow:
    def __init__(self, store: Store):
        self.store = store

    # ----- Writes -----

    def create(self, payload: OrderCreate) -> Dict[str, Any]:
        item_ids = [self._save_item(item.quantity, item.product) for item in payload.order_items]
        total_price = sum(self._line_total(item_id) for item_id in item_ids)

        order = Order(
            order_items=item_ids,
            shipping_address1=payload.shipping_address1,
            shipping_address2=payload.shipping_address2,
            city=payload.city,
            zip=payload.zip,
            country=payload.country,
            phone=payload.phone,
            user=to_object_id(payload.user) or payload.user,
            total_price=total_price,
        )
        order_id = self.store.create_document(ORDERS, order)
        logger.info("Order saved: %s (%d items, total %s)", order_id, len(item_ids), total_price)
        return self.populate(self.store.get_document(ORDERS, order_id))

    def _save_item(self, quantity: int, product_ref: str):
        item = OrderItem(quantity=quantity, product=to_object_id(product_ref) or product_ref)
        return to_object_id(self.store.create_document(ORDER_ITEMS, item))

    def _line_total(self, item_id) -> float:
        item = self.store.get_document(ORDER_ITEMS, item_id)
        if item is None:
            return 0
        product = self.store.get_document(PRODUCTS, item.get("product"), {"price": 1})
        if product is None:
            logger.warning("Order item %s references unknown product %s", item_id, item.get("product"))
            return 0
        return product.get("price", 0) * item.get("quantity", 0)

    def update_status(self, order_id: str, status: str) -> Dict[str, Any]:
        order = self.store.update_document(ORDERS, order_id, {"status": status})
        if order is None:
            raise NotFound("Order not found")
        logger.info("Order updated: %s -> %s", order_id, status)
        return self.populate(order)

    def delete(self, order_id: str) -> None:
        # line items are left in place
        if self.store.delete_document(ORDERS, order_id) is None:
            raise NotFound("Order not found")
        logger.info("Order deleted: %s", order_id)

    # ----- Reads -----

    def list_orders(self, filter_dict: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        orders = self.store.get_documents(ORDERS, filter_dict, sort=[("dateOrdered", -1)])
        return [self.populate(o) for o in orders]

    def get(self, order_id: str) -> Dict[str, Any]:
        order = self.store.get_document(ORDERS, order_id)
        if order is None:
            raise NotFound("Order not found")
        return self.populate(order)

    def user_orders(self, user_id: str) -> List[Dict[str, Any]]:
        user_ref = to_object_id(user_id) or user_id
        return self.list_orders({"user": user_ref})

    def total_sales(self) -> float:
        result = self.store.aggregate(
            ORDERS, [{"$group": {"_id": None, "totalsales": {"$sum": "$totalPrice"}}}]
        )
        if not result:
            raise ValidationError("The order sales cannot be generated")
        return result[0]["totalsales"]

    def order_count(self) -> int:
        return self.store.count_documents(ORDERS)

    def populate(self, order: dict) -> Dict[str, Any]:
        """Expand line items (with product name/price) and the buyer's name."""
        items = []
        for item_id in order.get("orderItems", []):
            item = self.store.get_document(ORDER_ITEMS, item_id)
            if item is None:
                continue
            item["product"] = self.store.get_document(PRODUCTS, item.get("product"), PRODUCT_FIELDS)
            items.append(item)

        populated = {**order, "orderItems": items}
        populated["user"] = self.store.get_document(USERS, order.get("user"), USER_FIELDS)
        return serialize_doc(populated)
