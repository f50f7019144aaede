"""Checkout: cart -> order -> payment -> stock.

The steps run one after another with no transaction around them. If the
payment fails the order stays behind as pending/failed and nothing else is
touched. If a stock decrement fails after the payment went through, the
order is flagged ``needs_reconciliation`` and left for someone to sort out;
nothing is rolled back here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pymongo.database import Database

from cart import CartService
from catalog import ProductCatalog, in_stock
from errors import EmptyCartError, InsufficientStockError, NotFoundError, ProductUnavailableError
from orders import OrderService
from payment import PaymentGateway, PaymentRequest, PaymentResult, generate_receipt
from schemas import ShippingAddress
from security import authorize

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


@dataclass
class CheckoutResult:
    order: Dict[str, Any]
    payment: PaymentResult
    receipt: Optional[Dict[str, Any]] = None

    @property
    def success(self) -> bool:
        return self.payment.success


class CheckoutService:
    def __init__(self, db: Database, gateway: PaymentGateway, catalog: Optional[ProductCatalog] = None,
                 carts: Optional[CartService] = None, orders: Optional[OrderService] = None):
        self.db = db
        self.gateway = gateway
        self.catalog = catalog or ProductCatalog(db)
        self.carts = carts or CartService(db, self.catalog)
        self.orders = orders or OrderService(db, self.catalog)

    def _check_lines(self, lines: List[Dict[str, Any]]) -> None:
        for line in lines:
            product = line.get("product")
            if product is None:
                raise NotFoundError("Product", line["product_id"])
            if not product.get("is_active"):
                raise ProductUnavailableError(product["name"])
            if not in_stock(product, line["quantity"]):
                raise InsufficientStockError(product["name"])

    def checkout(self, user: Dict[str, Any], shipping_address: ShippingAddress, payment_method: str,
                 notes: Optional[str] = None) -> CheckoutResult:
        authorize(user, "order:checkout")
        user_id = str(user["_id"])
        cart = self.carts.get_populated(user_id)
        lines = cart["items"]
        if not lines:
            raise EmptyCartError()
        self._check_lines(lines)

        order = self.orders.create(user_id, lines, shipping_address, payment_method, notes)
        order_id = str(order["_id"])

        payment = self.gateway.charge(PaymentRequest(
            amount=order["total"],
            currency="USD",
            payment_method=payment_method,
            order_id=order_id,
        ))

        if not payment.success:
            order = self.orders.set_payment_status(order_id, "failed")
            logger.info("Payment failed for order %s: %s", order["order_number"], payment.message)
            return CheckoutResult(order=order, payment=payment)

        self.orders.set_payment_status(order_id, "paid", payment.transaction_id)
        order = self.orders.transition(order_id, "confirmed", SYSTEM_ACTOR, note="Payment received")

        sync_errors = []
        for line in lines:
            try:
                self.catalog.decrement_stock(line["product_id"], line["quantity"])
            except (InsufficientStockError, NotFoundError) as exc:
                logger.error("Stock decrement failed for product %s on paid order %s: %s",
                             line["product_id"], order["order_number"], exc)
                sync_errors.append({
                    "product_id": line["product_id"],
                    "quantity": line["quantity"],
                    "reason": exc.reason,
                })
        if sync_errors:
            order = self.orders.flag_for_reconciliation(order_id, sync_errors)

        self.carts.clear(user_id)
        receipt = generate_receipt(payment, order, user.get("email"))
        logger.info("Checkout complete for order %s", order["order_number"])
        return CheckoutResult(order=order, payment=payment, receipt=receipt)
