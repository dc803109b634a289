"""
Database helpers for the Marketplace API

A single MongoDB database is shared by the whole process. Each Pydantic schema in
schemas.py maps to a collection named after the lowercased class name.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import MarketplaceError, ValidationError

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "marketplace")

client = MongoClient(DATABASE_URL) if DATABASE_URL else None
db = client[DATABASE_NAME] if client is not None else None


def get_db():
    if db is None:
        raise MarketplaceError("Database not configured", status_code=500)
    return db


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_obj_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def find_by_id(database, collection_name: str, id_str: str) -> Optional[Dict]:
    """Look up a document by a path id; an id that can't be an ObjectId matches nothing."""
    try:
        oid = ObjectId(id_str)
    except (InvalidId, TypeError):
        return None
    return database[collection_name].find_one({"_id": oid})


def sanitize(doc: Optional[Dict]) -> Optional[Dict]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    return d


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    doc.setdefault("created_at", now())
    doc.setdefault("updated_at", now())
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[Dict] = None,
                  limit: Optional[int] = None, sort=None) -> List[Dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return [sanitize(d) for d in cursor]


def ensure_indexes(database) -> None:
    """Create the uniqueness constraints the services rely on.

    The review triple and the single pending application per user are the
    storage-level guarantees behind the duplicate checks in catalog.py and
    vendors.py.
    """
    try:
        database["user"].create_index([("email", ASCENDING)], unique=True)
        database["review"].create_index(
            [("product_id", ASCENDING), ("user_id", ASCENDING), ("order_id", ASCENDING)],
            unique=True,
        )
        database["review"].create_index([("product_id", ASCENDING), ("created_at", DESCENDING)])
        database["vendorapplication"].create_index(
            [("user_id", ASCENDING)],
            unique=True,
            partialFilterExpression={"status": "pending"},
        )
        database["product"].create_index(
            [("slug", ASCENDING)],
            unique=True,
            partialFilterExpression={"slug": {"$type": "string"}},
        )
        database["wishlist"].create_index([("user_id", ASCENDING)], unique=True)
        database["cart"].create_index([("user_id", ASCENDING)], unique=True)
        database["order"].create_index([("customer_id", ASCENDING), ("created_at", DESCENDING)])
    except PyMongoError as exc:
        logger.warning("Unable to ensure indexes: %s", exc)
