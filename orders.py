"""Orders and their fulfillment state machine.

An order is written once at checkout from a snapshot of the cart: line
names and prices are copied so later product edits never change history.
After that only the status fields, the payment fields and the append-only
``status_history`` move.
"""

import logging
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import ProductCatalog
from database import insert_document, next_sequence, paginate, parse_object_id, sort_spec, utcnow
from errors import InvalidTransitionError, NotFoundError, ValidationError
from schemas import Order, OrderItem, ShippingAddress, StatusHistoryEntry
from security import authorize

logger = logging.getLogger(__name__)

TAX_RATE = 0.08
FREE_SHIPPING_THRESHOLD = 50.00
FLAT_SHIPPING_FEE = 10.00

TRANSITIONS = {
    "pending": ("confirmed", "cancelled"),
    "confirmed": ("processing", "cancelled"),
    "processing": ("shipped", "cancelled"),
    "shipped": ("delivered",),
    "delivered": (),
    "cancelled": (),
}
ORDER_STATUSES = tuple(TRANSITIONS)
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

STATUS_DISPLAY = {
    "pending": "Pending",
    "confirmed": "Confirmed",
    "processing": "Processing",
    "shipped": "Shipped",
    "delivered": "Delivered",
    "cancelled": "Cancelled",
}

ORDER_SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "total": "total",
    "orderNumber": "order_number",
}

# status -> timestamp field stamped when the order enters it
_STATUS_TIMESTAMPS = {"shipped": "shipped_at", "delivered": "delivered_at"}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


def shipping_cost_for(subtotal: float) -> float:
    return 0.0 if subtotal >= FREE_SHIPPING_THRESHOLD else FLAT_SHIPPING_FEE


def compute_order_totals(items: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    """Subtotal, shipping, tax and total, all rounded to cents together."""
    subtotal = round(sum(item["price"] * item["quantity"] for item in items), 2)
    shipping = shipping_cost_for(subtotal)
    tax = round(subtotal * TAX_RATE, 2)
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping,
        "tax": tax,
        "total": round(subtotal + shipping + tax, 2),
    }


def present_order(order: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(order)
    out["formatted_order_number"] = f"#{order['order_number']}"
    out["status_display"] = STATUS_DISPLAY.get(order["order_status"], order["order_status"])
    return out


class OrderService:
    def __init__(self, db: Database, catalog: Optional[ProductCatalog] = None):
        self.db = db
        self.collection = db["order"]
        self.catalog = catalog or ProductCatalog(db)

    def generate_order_number(self) -> str:
        seq = next_sequence(self.db, "order_number")
        return f"ORD-{int(time.time() * 1000)}-{seq:04d}"

    def create(self, user_id: str, lines: List[Dict[str, Any]], shipping_address: ShippingAddress,
               payment_method: str, notes: Optional[str] = None) -> Dict[str, Any]:
        """Persist a pending order from populated cart lines.

        Each line needs ``quantity`` and a ``product`` document; name and
        price are copied from the product as it is right now.
        """
        items = [
            OrderItem(
                product_id=str(line["product"]["_id"]),
                name=line["product"]["name"],
                price=line["product"]["price"],
                quantity=line["quantity"],
            )
            for line in lines
        ]
        totals = compute_order_totals([item.model_dump() for item in items])
        now = utcnow()
        order = Order(
            order_number=self.generate_order_number(),
            user_id=str(user_id),
            items=items,
            shipping_address=shipping_address,
            payment_method=payment_method,
            notes=notes,
            status_history=[StatusHistoryEntry(status="pending", timestamp=now, actor=str(user_id),
                                               note="Order placed")],
            **totals,
        )
        doc = insert_document(self.db, "order", dict(order.model_dump(), created_at=now))
        logger.info("Created order %s for user %s, total %.2f", doc["order_number"], user_id, doc["total"])
        return doc

    def get(self, order_id: str) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": parse_object_id(order_id, "order id")})
        if not doc:
            raise NotFoundError("Order", str(order_id))
        return doc

    def get_for(self, order_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
        order = self.get(order_id)
        authorize(actor, "order:read", order)
        return order

    def list_for_user(self, user_id: str, page: int = 1, limit: int = 10,
                      status: Optional[str] = None) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        query: Dict[str, Any] = {"user_id": str(user_id)}
        if status:
            query["order_status"] = status
        return paginate(self.db, "order", query, sort_spec("created_at", "desc"), page, limit)

    def build_filter(self, status: Optional[str] = None, payment_status: Optional[str] = None,
                     date_from: Optional[datetime] = None, date_to: Optional[datetime] = None) -> Dict[str, Any]:
        query: Dict[str, Any] = {}
        if status:
            query["order_status"] = status
        if payment_status:
            query["payment_status"] = payment_status
        if date_from or date_to:
            query["created_at"] = {}
            if date_from:
                query["created_at"]["$gte"] = date_from
            if date_to:
                query["created_at"]["$lte"] = date_to
        return query

    def list_all(self, page: int = 1, limit: int = 10, status: Optional[str] = None,
                 payment_status: Optional[str] = None, date_from: Optional[datetime] = None,
                 date_to: Optional[datetime] = None, sort_by: str = "createdAt",
                 sort_order: str = "desc") -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        if sort_by not in ORDER_SORT_FIELDS:
            raise ValidationError.for_field("sortBy", "Sort by must be one of: " + ", ".join(ORDER_SORT_FIELDS))
        query = self.build_filter(status, payment_status, date_from, date_to)
        return paginate(self.db, "order", query, sort_spec(ORDER_SORT_FIELDS[sort_by], sort_order), page, limit)

    def transition(self, order_id: str, target: str, actor_id: str, note: Optional[str] = None,
                   tracking_number: Optional[str] = None, extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Move an order along one edge of TRANSITIONS.

        The write only matches while the order is still in the status we
        checked, so a concurrent change surfaces as InvalidTransitionError
        instead of being overwritten.
        """
        order = self.get(order_id)
        current = order["order_status"]
        if not can_transition(current, target):
            raise InvalidTransitionError(current, target, TRANSITIONS.get(current, ()))

        now = utcnow()
        entry = StatusHistoryEntry(
            status=target, timestamp=now, actor=str(actor_id),
            note=note or f"Status changed to {target}",
        ).model_dump()
        changes: Dict[str, Any] = {"order_status": target, "updated_at": now}
        if target in _STATUS_TIMESTAMPS:
            changes[_STATUS_TIMESTAMPS[target]] = now
        if tracking_number:
            changes["tracking_number"] = tracking_number
        if extra:
            changes.update(extra)

        updated = self.collection.find_one_and_update(
            {"_id": order["_id"], "order_status": current},
            {"$set": changes, "$push": {"status_history": entry}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            latest = self.get(order_id)
            raise InvalidTransitionError(latest["order_status"], target,
                                         TRANSITIONS.get(latest["order_status"], ()))
        logger.info("Order %s moved %s -> %s by %s", updated["order_number"], current, target, actor_id)
        return updated

    def set_payment_status(self, order_id: str, status: str, transaction_id: Optional[str] = None) -> Dict[str, Any]:
        if status not in PAYMENT_STATUSES:
            raise ValidationError.for_field("paymentStatus", f"Unknown payment status {status}")
        changes: Dict[str, Any] = {"payment_status": status, "updated_at": utcnow()}
        if transaction_id:
            changes["transaction_id"] = transaction_id
        updated = self.collection.find_one_and_update(
            {"_id": parse_object_id(order_id, "order id")},
            {"$set": changes},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise NotFoundError("Order", str(order_id))
        return updated

    def flag_for_reconciliation(self, order_id: str, errors: List[Dict[str, Any]]) -> Dict[str, Any]:
        return self.collection.find_one_and_update(
            {"_id": parse_object_id(order_id, "order id")},
            {"$set": {"needs_reconciliation": True, "updated_at": utcnow()},
             "$push": {"stock_sync_errors": {"$each": errors}}},
            return_document=ReturnDocument.AFTER,
        )

    def recalculate_totals(self, order_id: str) -> Dict[str, Any]:
        order = self.get(order_id)
        totals = compute_order_totals(order["items"])
        totals["updated_at"] = utcnow()
        return self.collection.find_one_and_update(
            {"_id": order["_id"]}, {"$set": totals}, return_document=ReturnDocument.AFTER,
        )

    def cancel(self, order_id: str, actor_id: str, note: Optional[str] = None) -> Dict[str, Any]:
        """Soft-delete an order by cancelling it.

        A paid order that hasn't shipped gives its units back to the catalog
        and is marked refunded.
        """
        order = self.get(order_id)
        refund = order["payment_status"] == "paid"
        extra = {"payment_status": "refunded"} if refund else None
        cancelled = self.transition(order_id, "cancelled", actor_id,
                                    note=note or "Order cancelled by admin", extra=extra)
        if refund:
            for item in order["items"]:
                self.catalog.increment_stock(item["product_id"], item["quantity"])
            logger.info("Refunded order %s and restocked %d lines", order["order_number"], len(order["items"]))
        return cancelled

    def update_status(self, order_id: str, target: str, actor_id: str, note: Optional[str] = None,
                      tracking_number: Optional[str] = None) -> Dict[str, Any]:
        """Admin status change; cancelling always goes through the refund path."""
        if target == "cancelled":
            return self.cancel(order_id, actor_id, note)
        return self.transition(order_id, target, actor_id, note, tracking_number)
