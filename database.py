"""
MongoDB helpers

The app opens one client at startup and hands the resulting Database to
every service; nothing in this module holds connection state of its own.
Collections are named after the lowercased schema class ("product",
"cart", "order", "user").
"""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

from errors import ValidationError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def connect(url: str, name: str) -> Tuple[MongoClient, Database]:
    client = MongoClient(url, serverSelectionTimeoutMS=30000, socketTimeoutMS=45000)
    logger.info("Connected to MongoDB database %s", name)
    return client, client[name]


def close(client: Optional[MongoClient]) -> None:
    if client is not None:
        client.close()
        logger.info("MongoDB connection closed")


def ensure_indexes(db: Database) -> None:
    db["user"].create_index("email", unique=True)
    db["session"].create_index("token", unique=True)
    db["product"].create_index("sku", unique=True)
    db["product"].create_index("category")
    db["product"].create_index("price")
    db["product"].create_index("is_active")
    db["cart"].create_index("user_id", unique=True)
    db["order"].create_index("order_number", unique=True)
    db["order"].create_index("user_id")
    db["order"].create_index("order_status")
    db["order"].create_index("payment_status")
    db["order"].create_index([("created_at", DESCENDING)])


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what pymongo hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_object_id(value: Union[str, ObjectId], label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise ValidationError.for_field(label, f"Invalid {label}")


def insert_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    """Insert with created_at/updated_at stamps and return the stored document."""
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    result = db[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def next_sequence(db: Database, name: str) -> int:
    counter = db["counter"].find_one_and_update(
        {"_id": name},
        {"$inc": {"value": 1}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return counter["value"]


def sort_spec(field: str, order: str = "desc") -> List[Tuple[str, int]]:
    direction = ASCENDING if order == "asc" else DESCENDING
    # _id as tie-breaker keeps page boundaries stable
    return [(field, direction), ("_id", direction)]


def paginate(db: Database, collection_name: str, filter_dict: Dict[str, Any],
             sort: Sequence[Tuple[str, int]], page: int = 1, limit: int = 10) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """Return one page of documents plus the pagination block for the response."""
    if page < 1:
        raise ValidationError.for_field("page", "Page must be at least 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError.for_field("limit", f"Limit must be between 1 and {MAX_PAGE_SIZE}")

    collection = db[collection_name]
    total = collection.count_documents(filter_dict)
    docs = list(collection.find(filter_dict).sort(list(sort)).skip((page - 1) * limit).limit(limit))
    total_pages = math.ceil(total / limit) if total else 0
    pagination = {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total,
        "limit": limit,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }
    return docs, pagination


# Keys whose nested mapping holds user data and keeps its original spelling
_VERBATIM_KEYS = {"specifications"}


def to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def serialize_doc(doc: Any) -> Any:
    """Make a stored document JSON-friendly: ids become strings, keys camelCase."""
    if isinstance(doc, dict):
        out = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = str(v)
            elif k in _VERBATIM_KEYS:
                out[to_camel(k)] = dict(v) if v else {}
            else:
                out[to_camel(k)] = serialize_doc(v)
        return out
    if isinstance(doc, (list, tuple)):
        return [serialize_doc(v) for v in doc]
    if isinstance(doc, ObjectId):
        return str(doc)
    if hasattr(doc, "isoformat"):
        return doc.isoformat()
    return doc


def search_regex(text: str) -> Dict[str, str]:
    return {"$regex": re.escape(text.strip()), "$options": "i"}
