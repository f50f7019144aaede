"""Per-user shopping cart.

A cart is one document per user. Every mutation loads the document, edits
its lines in memory, recomputes the totals and writes the whole document
back with a single ``replace_one``, so readers never see lines and totals
that disagree.
"""

import logging
from typing import Any, Dict, Iterable, List, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from catalog import ProductCatalog, in_stock, present_product
from database import utcnow
from errors import InsufficientStockError, NotFoundError, ProductUnavailableError
from schemas import Cart

logger = logging.getLogger(__name__)


def compute_totals(items: Iterable[Dict[str, Any]]) -> Tuple[int, float]:
    items = list(items)
    total_items = sum(item["quantity"] for item in items)
    total_price = round(sum(item["quantity"] * item["price"] for item in items), 2)
    return total_items, total_price


def _find_line(cart: Dict[str, Any], product_id: str):
    for item in cart["items"]:
        if item["product_id"] == product_id:
            return item
    return None


class CartService:
    def __init__(self, db: Database, catalog: ProductCatalog = None):
        self.db = db
        self.collection = db["cart"]
        self.catalog = catalog or ProductCatalog(db)

    def get_or_create(self, user_id: str) -> Dict[str, Any]:
        now = utcnow()
        return self.collection.find_one_and_update(
            {"user_id": str(user_id)},
            {"$setOnInsert": {
                "items": [],
                "total_items": 0,
                "total_price": 0.0,
                "created_at": now,
                "updated_at": now,
            }},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )

    def get_populated(self, user_id: str) -> Dict[str, Any]:
        """The cart with each line's live product document under ``product``."""
        cart = self.get_or_create(user_id)
        products = self.catalog.get_many([item["product_id"] for item in cart["items"]])
        cart["items"] = [
            dict(item, product=products.get(item["product_id"])) for item in cart["items"]
        ]
        return cart

    def present(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(cart)
        out["items"] = [
            dict(item, product=present_product(item["product"])) if item.get("product") else item
            for item in cart["items"]
        ]
        return out

    def item_count(self, user_id: str) -> int:
        cart = self.collection.find_one({"user_id": str(user_id)}, {"total_items": 1})
        return cart["total_items"] if cart else 0

    def add_item(self, user_id: str, product_id: str, quantity: int = 1) -> Dict[str, Any]:
        product = self.catalog.get(product_id)
        if not product.get("is_active"):
            raise ProductUnavailableError(product["name"])
        cart = self.get_or_create(user_id)
        line = _find_line(cart, str(product["_id"]))
        wanted = quantity + (line["quantity"] if line else 0)
        if not in_stock(product, wanted):
            raise InsufficientStockError(product["name"])

        if line:
            line["quantity"] = wanted
        else:
            cart["items"].append({
                "product_id": str(product["_id"]),
                "quantity": quantity,
                "price": product["price"],
            })
        return self._save(cart)

    def update_item_quantity(self, user_id: str, product_id: str, quantity: int) -> Dict[str, Any]:
        if quantity <= 0:
            return self.remove_item(user_id, product_id)
        product = self.catalog.get(product_id)
        if not in_stock(product, quantity):
            raise InsufficientStockError(product["name"])
        cart = self.get_or_create(user_id)
        line = _find_line(cart, str(product["_id"]))
        if line is None:
            raise NotFoundError("Item in cart", product_id)
        line["quantity"] = quantity
        line["price"] = product["price"]
        return self._save(cart)

    def remove_item(self, user_id: str, product_id: str) -> Dict[str, Any]:
        cart = self.get_or_create(user_id)
        remaining = [item for item in cart["items"] if item["product_id"] != str(product_id)]
        if len(remaining) == len(cart["items"]):
            return cart
        cart["items"] = remaining
        return self._save(cart)

    def clear(self, user_id: str) -> Dict[str, Any]:
        cart = self.get_or_create(user_id)
        cart["items"] = []
        return self._save(cart)

    def _save(self, cart: Dict[str, Any]) -> Dict[str, Any]:
        items: List[Dict[str, Any]] = [
            {"product_id": item["product_id"], "quantity": item["quantity"], "price": item["price"]}
            for item in cart["items"]
        ]
        total_items, total_price = compute_totals(items)
        doc = Cart(user_id=cart["user_id"], items=items, total_items=total_items,
                   total_price=total_price).model_dump()
        doc["created_at"] = cart.get("created_at") or utcnow()
        doc["updated_at"] = utcnow()
        self.collection.replace_one({"_id": cart["_id"]}, doc)
        doc["_id"] = cart["_id"]
        return doc
