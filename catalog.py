"""
Product catalog and review consistency.

Product.rating and Product.review_count are cache fields. Every review write
re-derives both from the full set of reviews for the product, so the cache is
an exact function of the review collection after each successful call and
concurrent writers converge on the next write.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as SchemaError
from pymongo import DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, find_by_id, now, sanitize, to_obj_id
from errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from schemas import Product, Review
from security import load_owned

logger = logging.getLogger(__name__)

CACHE_FIELDS = ("rating", "review_count")
PROTECTED_FIELDS = ("vendor_id",) + CACHE_FIELDS


# Products

def _load_product(db, product_id: str) -> Dict:
    doc = find_by_id(db, "product", product_id)
    if not doc:
        raise NotFoundError("Product not found")
    return doc


def get_product(db, product_id: str) -> Dict:
    return sanitize(_load_product(db, product_id))


def create_product(db, vendor: Dict, data: Dict[str, Any]) -> Dict:
    fields = {k: v for k, v in data.items() if k not in PROTECTED_FIELDS}
    try:
        product = Product(vendor_id=vendor["id"], **fields)
    except SchemaError as exc:
        raise ValidationError(f"Invalid product: {exc}")
    try:
        pid = create_document(db, "product", product)
    except DuplicateKeyError:
        raise ConflictError("A product with this slug already exists")
    logger.info("Vendor %s created product %s", vendor["id"], pid)
    return get_product(db, pid)


def update_product(db, user: Dict, product_id: str, changes: Dict[str, Any]) -> Dict:
    current = load_owned(db, "product", product_id, user, "vendor_id", "update this product",
                         missing="Product not found")

    patch = {k: v for k, v in changes.items() if v is not None and k not in PROTECTED_FIELDS}
    patch = {k: v for k, v in patch.items() if k in Product.model_fields}
    if not patch:
        raise ValidationError("No fields to update")
    merged = {k: current.get(k) for k in Product.model_fields if k in current}
    merged.update(patch)
    try:
        Product(**merged)
    except SchemaError as exc:
        raise ValidationError(f"Invalid product: {exc}")

    patch["updated_at"] = now()
    try:
        doc = db["product"].find_one_and_update(
            {"_id": current["_id"]}, {"$set": patch}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ConflictError("A product with this slug already exists")
    if doc is None:
        raise NotFoundError("Product not found")
    return sanitize(doc)


def delete_product(db, user: Dict, product_id: str) -> None:
    current = load_owned(db, "product", product_id, user, "vendor_id", "delete this product",
                         missing="Product not found")
    db["product"].delete_one({"_id": current["_id"]})
    removed = db["review"].delete_many({"product_id": product_id}).deleted_count
    db["wishlist"].update_many({"products": product_id}, {"$pull": {"products": product_id}})
    db["cart"].update_many({"items.product_id": product_id}, {"$pull": {"items": {"product_id": product_id}}})
    logger.info("Product %s deleted by %s (%d reviews removed)", product_id, user["id"], removed)


def list_products(
    db,
    q: Optional[str] = None,
    category: Optional[str] = None,
    vendor_id: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    include_inactive: bool = False,
    limit: int = 50,
) -> List[Dict]:
    query: Dict[str, Any] = {}
    if not include_inactive:
        query["is_active"] = True
    if category:
        query["category"] = category
    if vendor_id:
        query["vendor_id"] = vendor_id
    if q:
        pattern = {"$regex": re.escape(q), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"tags": pattern}]
    price: Dict[str, float] = {}
    if min_price is not None:
        price["$gte"] = min_price
    if max_price is not None:
        price["$lte"] = max_price
    if price:
        query["price"] = price
    cursor = db["product"].find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
    return [sanitize(p) for p in cursor]


# Reviews

def _validate_review_input(rating: Any, review_text: Optional[str]) -> None:
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be a number between 1 and 5")
    if review_text is not None and not 1 <= len(review_text.strip()) <= 1000:
        raise ValidationError("Review text must be between 1 and 1000 characters")


def recompute_product_rating(db, product_id: str) -> Dict[str, Any]:
    """Set rating/review_count on the product from all of its reviews."""
    agg = list(db["review"].aggregate([
        {"$match": {"product_id": product_id}},
        {"$group": {"_id": None, "avg": {"$avg": "$rating"}, "count": {"$sum": 1}}},
    ]))
    # An empty match may still yield one group with avg None and count 0.
    rating = float(agg[0]["avg"]) if agg and agg[0]["avg"] is not None else 0.0
    count = int(agg[0]["count"] or 0) if agg else 0
    db["product"].update_one(
        {"_id": to_obj_id(product_id)},
        {"$set": {"rating": rating, "review_count": count, "updated_at": now()}},
    )
    logger.debug("Product %s rating recomputed: %.3f over %d reviews", product_id, rating, count)
    return {"rating": rating, "review_count": count}


def submit_review(db, user: Dict, product_id: str, order_id: str, rating: Any, review_text: str) -> Dict:
    _validate_review_input(rating, review_text)
    if not review_text:
        raise ValidationError("Review text is required")

    order = find_by_id(db, "order", order_id)
    eligible = (
        order is not None
        and order.get("customer_id") == user["id"]
        and order.get("status") == "delivered"
        and any(p.get("product_id") == product_id for p in order.get("products", []))
    )
    if not eligible:
        raise AuthorizationError("You can only review products from your delivered orders")

    if db["review"].find_one({"product_id": product_id, "user_id": user["id"], "order_id": order_id}):
        raise ConflictError("You have already reviewed this product for this order")

    product = _load_product(db, product_id)
    review = Review(
        product_id=product_id,
        vendor_id=product.get("vendor_id"),
        user_id=user["id"],
        order_id=order_id,
        rating=rating,
        review_text=review_text,
    )
    try:
        review_id = create_document(db, "review", review)
    except DuplicateKeyError:
        raise ConflictError("You have already reviewed this product for this order")

    try:
        recompute_product_rating(db, product_id)
    except PyMongoError as exc:
        logger.error("Rating recompute failed for product %s, removing review %s: %s", product_id, review_id, exc)
        db["review"].delete_one({"_id": to_obj_id(review_id)})
        raise

    logger.info("Review %s submitted by %s for product %s", review_id, user["id"], product_id)
    return {
        "review": sanitize(db["review"].find_one({"_id": to_obj_id(review_id)})),
        "product": get_product(db, product_id),
    }


def update_review(db, user: Dict, review_id: str, rating: Optional[int] = None,
                  review_text: Optional[str] = None) -> Dict:
    review = load_owned(db, "review", review_id, user, "user_id", "update this review", allow_admin=False)
    changes: Dict[str, Any] = {}
    if rating is not None:
        _validate_review_input(rating, None)
        changes["rating"] = rating
    if review_text is not None:
        _validate_review_input(review.get("rating", 1), review_text)
        changes["review_text"] = review_text
    if not changes:
        raise ValidationError("No fields to update")
    changes["updated_at"] = now()
    db["review"].update_one({"_id": review["_id"]}, {"$set": changes})
    recompute_product_rating(db, review["product_id"])
    return {
        "review": sanitize(db["review"].find_one({"_id": review["_id"]})),
        "product": get_product(db, review["product_id"]),
    }


def delete_review(db, user: Dict, review_id: str) -> Dict:
    review = load_owned(db, "review", review_id, user, "user_id", "delete this review",
                        missing="This review does not exist")
    db["review"].delete_one({"_id": review["_id"]})
    return recompute_product_rating(db, review["product_id"])


def list_reviews(db, product_id: Optional[str] = None) -> List[Dict]:
    q = {"product_id": product_id} if product_id else {}
    reviews = [sanitize(r) for r in db["review"].find(q).sort([("created_at", DESCENDING), ("_id", DESCENDING)])]
    author_ids = {r["user_id"] for r in reviews}
    authors = {}
    if author_ids:
        oids = [to_obj_id(a) for a in author_ids]
        authors = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": oids}})}
    for r in reviews:
        author = authors.get(r["user_id"])
        r["username"] = author.get("username") if author else None
    return reviews
