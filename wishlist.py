"""Per-user wishlists: a set of product ids, created on the first add."""

import logging
from typing import Dict

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, find_by_id, now, sanitize
from errors import AuthorizationError, ConflictError, NotFoundError
from schemas import Wishlist

logger = logging.getLogger(__name__)


def get_wishlist(db, user_id: str) -> Dict:
    doc = db["wishlist"].find_one({"user_id": user_id})
    if not doc:
        return Wishlist(user_id=user_id).model_dump()
    return sanitize(doc)


def add_product(db, user: Dict, product_id: str) -> Dict:
    product = find_by_id(db, "product", product_id)
    if not product:
        raise NotFoundError("This product isn't available to add to a wishlist")
    if product.get("vendor_id") == user["id"]:
        raise AuthorizationError("You cannot add your own product to your wishlist")
    if product_id in get_wishlist(db, user["id"])["products"]:
        raise ConflictError("Product already in wishlist")
    if db["wishlist"].find_one({"user_id": user["id"]}) is None:
        try:
            create_document(db, "wishlist", Wishlist(user_id=user["id"]))
        except DuplicateKeyError:
            logger.debug("Wishlist for %s created by a concurrent request", user["id"])
    doc = db["wishlist"].find_one_and_update(
        {"user_id": user["id"]},
        {"$addToSet": {"products": product_id}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return sanitize(doc)


def remove_product(db, user: Dict, product_id: str) -> Dict:
    if product_id not in get_wishlist(db, user["id"])["products"]:
        raise NotFoundError("This product is not in your wishlist")
    doc = db["wishlist"].find_one_and_update(
        {"user_id": user["id"]},
        {"$pull": {"products": product_id}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return sanitize(doc)


def clear(db, user: Dict) -> Dict:
    wishlist = db["wishlist"].find_one({"user_id": user["id"]})
    if not wishlist:
        raise NotFoundError("You don't have a wishlist to clear")
    db["wishlist"].update_one({"_id": wishlist["_id"]}, {"$set": {"products": [], "updated_at": now()}})
    return get_wishlist(db, user["id"])
