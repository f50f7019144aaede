"""Product catalog backed by the ``product`` collection."""

import logging
import secrets
import string
import time
from typing import Any, Dict, List, Optional, Tuple

from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import insert_document, paginate, parse_object_id, search_regex, sort_spec, utcnow
from errors import DuplicateError, InsufficientStockError, NotFoundError, ValidationError
from schemas import Product, ProductCreate, ProductUpdate
from security import authorize

logger = logging.getLogger(__name__)

PRODUCT_SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "name": "name",
    "price": "price",
}

_SKU_ALPHABET = string.ascii_uppercase + string.digits


def generate_sku() -> str:
    suffix = "".join(secrets.choice(_SKU_ALPHABET) for _ in range(9))
    return f"SKU-{int(time.time() * 1000)}-{suffix}"


def is_available(product: Dict[str, Any]) -> bool:
    return product.get("stock", 0) > 0 and bool(product.get("is_active"))


def in_stock(product: Dict[str, Any], quantity: int = 1) -> bool:
    return product.get("stock", 0) >= quantity and bool(product.get("is_active"))


def present_product(product: Dict[str, Any]) -> Dict[str, Any]:
    """Add the derived fields clients expect next to the stored ones."""
    out = dict(product)
    out["is_available"] = is_available(product)
    out["formatted_price"] = f"${product.get('price', 0):.2f}"
    return out


class ProductCatalog:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db["product"]

    def create(self, data: ProductCreate, actor: Dict[str, Any]) -> Dict[str, Any]:
        authorize(actor, "product:create")
        fields = data.model_dump()
        fields["sku"] = (fields.get("sku") or generate_sku()).upper()
        product = Product(created_by=str(actor["_id"]), **fields)
        try:
            doc = insert_document(self.db, "product", product)
        except DuplicateKeyError:
            raise DuplicateError(f"SKU {product.sku} already exists")
        logger.info("Created product %s (%s)", doc["_id"], doc["sku"])
        return doc

    def get(self, product_id: str) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": parse_object_id(product_id, "product id")})
        if not doc:
            raise NotFoundError("Product", str(product_id))
        return doc

    def get_many(self, product_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        oids = [parse_object_id(pid, "product id") for pid in product_ids]
        return {str(doc["_id"]): doc for doc in self.collection.find({"_id": {"$in": oids}})}

    def list(self, page: int = 1, limit: int = 10, category: Optional[str] = None,
             min_price: Optional[float] = None, max_price: Optional[float] = None,
             search: Optional[str] = None, is_active: Optional[bool] = True,
             sort_by: str = "createdAt", sort_order: str = "desc") -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
        if sort_by not in PRODUCT_SORT_FIELDS:
            raise ValidationError.for_field("sortBy", "Sort by must be one of: " + ", ".join(PRODUCT_SORT_FIELDS))
        if min_price is not None and max_price is not None and min_price > max_price:
            raise ValidationError.for_field("minPrice", "minPrice cannot exceed maxPrice")

        query: Dict[str, Any] = {}
        if is_active is not None:
            query["is_active"] = is_active
        if category:
            query["category"] = category
        if min_price is not None or max_price is not None:
            query["price"] = {}
            if min_price is not None:
                query["price"]["$gte"] = min_price
            if max_price is not None:
                query["price"]["$lte"] = max_price
        if search and search.strip():
            pattern = search_regex(search)
            query["$or"] = [{"name": pattern}, {"description": pattern}]

        sort = sort_spec(PRODUCT_SORT_FIELDS[sort_by], sort_order)
        return paginate(self.db, "product", query, sort, page, limit)

    def list_by_category(self, category: str, page: int = 1, limit: int = 10):
        return self.list(page=page, limit=limit, category=category)

    def update(self, product_id: str, changes: ProductUpdate, actor: Dict[str, Any]) -> Dict[str, Any]:
        product = self.get(product_id)
        authorize(actor, "product:update", product)
        fields = changes.model_dump(exclude_unset=True)
        fields = {k: v for k, v in fields.items() if v is not None}
        if not fields:
            raise ValidationError("At least one field must be provided for update")
        fields["updated_at"] = utcnow()
        self.collection.update_one({"_id": product["_id"]}, {"$set": fields})
        return self.get(product_id)

    def soft_delete(self, product_id: str, actor: Dict[str, Any]) -> Dict[str, Any]:
        product = self.get(product_id)
        authorize(actor, "product:delete", product)
        self.collection.update_one(
            {"_id": product["_id"]},
            {"$set": {"is_active": False, "updated_at": utcnow()}},
        )
        logger.info("Deactivated product %s", product["_id"])
        return self.get(product_id)

    def decrement_stock(self, product_id: str, quantity: int) -> Dict[str, Any]:
        """Take ``quantity`` units in one conditional write, or raise."""
        if quantity < 1:
            raise ValidationError.for_field("quantity", "Quantity must be at least 1")
        oid = parse_object_id(product_id, "product id")
        result = self.collection.update_one(
            {"_id": oid, "stock": {"$gte": quantity}},
            {"$inc": {"stock": -quantity}, "$set": {"updated_at": utcnow()}},
        )
        if result.matched_count == 0:
            product = self.get(product_id)
            raise InsufficientStockError(product.get("name"))
        return self.get(product_id)

    def increment_stock(self, product_id: str, quantity: int) -> Dict[str, Any]:
        if quantity < 1:
            raise ValidationError.for_field("quantity", "Quantity must be at least 1")
        oid = parse_object_id(product_id, "product id")
        result = self.collection.update_one(
            {"_id": oid},
            {"$inc": {"stock": quantity}, "$set": {"updated_at": utcnow()}},
        )
        if result.matched_count == 0:
            raise NotFoundError("Product", str(product_id))
        return self.get(product_id)
